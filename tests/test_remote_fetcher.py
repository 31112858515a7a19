"""Tests for the remote index client."""

from datetime import datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest
import requests

from pynvm.core import remote_fetcher
from pynvm.core.config_manager import NetworkOptions
from pynvm.core.models import RemoteIndexCache, VersionEntry
from pynvm.core.remote_fetcher import CACHE_KEY, NetworkError, RemoteIndexClient, get_platform_info

NOW = datetime(2024, 5, 1, 12, 0, 0)

INDEX = [
    {"version": "v22.1.0", "date": "2024-04-24", "files": ["linux-x64", "osx-arm64-tar"], "lts": False},
    {"version": "v20.12.2", "date": "2024-04-10", "files": ["linux-x64", "win-x64-zip"], "lts": "Iron"},
    {"version": "v18.20.2", "date": "2024-04-10", "files": ["linux-x64"], "lts": "Hydrogen"},
    {"version": "v16.0.0", "date": "2021-04-20", "files": ["win-x64-zip"], "lts": False},
    {"version": "v0.12.0", "files": ["linux-x64"], "lts": True},
    {"version": "nightly", "files": ["linux-x64"]},
]

LINUX_X64 = {"os": "linux", "arch": "x64", "ext": "tar.gz", "files_key": "linux-x64"}


def json_response(data, status=200):
    response = MagicMock()
    response.status_code = status
    response.json.return_value = data
    if status >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(f"{status} error")
    return response


def text_response(text):
    response = MagicMock()
    response.text = text
    return response


@pytest.fixture(autouse=True)
def linux_x64(monkeypatch):
    monkeypatch.setattr(remote_fetcher, "get_platform_info", lambda arch_map=None: dict(LINUX_X64))


@pytest.fixture
def client(config_manager):
    return RemoteIndexClient(config_manager, NetworkOptions(), clock=lambda: NOW)


def seed_cache(config_manager, fetched_at, versions=("20.0.0",)):
    snapshot = RemoteIndexCache(
        entries=[VersionEntry(version=v) for v in versions],
        fetched_at=fetched_at,
        source="seed",
    )
    config_manager.set_cache(CACHE_KEY, snapshot.to_dict())
    config_manager.save_cache()


class TestFetchIndex:

    @patch("pynvm.core.remote_fetcher.requests.get")
    def test_parses_and_filters_platform(self, mock_get, client):
        mock_get.return_value = json_response(INDEX)
        index = client.get_index()

        versions = [e.version for e in index.entries]
        assert versions == ["22.1.0", "20.12.2", "18.20.2", "0.12.0"]
        mock_get.assert_called_once_with(
            "https://nodejs.org/dist/index.json", verify=True, timeout=30.0
        )

    @patch("pynvm.core.remote_fetcher.requests.get")
    def test_lts_codenames(self, mock_get, client):
        mock_get.return_value = json_response(INDEX)
        index = client.get_index()
        assert index.find("22.1.0").lts is None
        assert index.find("20.12.2").lts == "Iron"
        assert index.find("0.12.0").lts == "LTS"

    @patch("pynvm.core.remote_fetcher.requests.get")
    def test_download_and_checksum_urls(self, mock_get, client):
        mock_get.return_value = json_response(INDEX)
        entry = client.get_index().find("20.12.2")
        assert entry.download_url == "https://nodejs.org/dist/v20.12.2/node-v20.12.2-linux-x64.tar.gz"
        assert entry.checksum_url == "https://nodejs.org/dist/v20.12.2/SHASUMS256.txt"
        assert entry.release_date == "2024-04-10"

    @patch("pynvm.core.remote_fetcher.requests.get")
    def test_single_fetch_per_process(self, mock_get, client):
        mock_get.return_value = json_response(INDEX)
        client.get_index()
        client.get_index()
        client.fetch_index()
        assert mock_get.call_count == 1
        assert client.fetch_count == 1

    @patch("pynvm.core.remote_fetcher.requests.get")
    def test_fetch_writes_disk_cache(self, mock_get, client, config_manager):
        mock_get.return_value = json_response(INDEX)
        client.get_index()
        cached = RemoteIndexCache.from_dict(config_manager.get_cache()[CACHE_KEY])
        assert cached.fetched_at == NOW
        assert len(cached.entries) == 4

    @patch("pynvm.core.remote_fetcher.requests.get")
    def test_invalid_json_is_network_error(self, mock_get, client):
        response = json_response(None)
        response.json.side_effect = ValueError("bad json")
        mock_get.return_value = response
        with pytest.raises(NetworkError):
            client.get_index()

    @patch("pynvm.core.remote_fetcher.requests.get")
    def test_unexpected_shape_is_network_error(self, mock_get, client):
        mock_get.return_value = json_response("not a list")
        with pytest.raises(NetworkError):
            client.get_index()

    @patch("pynvm.core.remote_fetcher.requests.get")
    def test_proxy_is_passed_through(self, mock_get, config_manager):
        mock_get.return_value = json_response(INDEX)
        network = NetworkOptions(proxy="http://proxy:3128", verify_tls=False, timeout=5.0)
        RemoteIndexClient(config_manager, network, clock=lambda: NOW).get_index()
        _, kwargs = mock_get.call_args
        assert kwargs["proxies"] == {"http": "http://proxy:3128", "https": "http://proxy:3128"}
        assert kwargs["verify"] is False


class TestCacheFallback:

    @patch("pynvm.core.remote_fetcher.requests.get")
    def test_fresh_disk_snapshot_skips_network(self, mock_get, client, config_manager):
        seed_cache(config_manager, NOW - timedelta(hours=1))
        index = client.get_index()
        assert index.source == "seed"
        mock_get.assert_not_called()

    @patch("pynvm.core.remote_fetcher.requests.get")
    def test_expired_snapshot_is_refreshed(self, mock_get, client, config_manager):
        seed_cache(config_manager, NOW - timedelta(days=2))
        mock_get.return_value = json_response(INDEX)
        index = client.get_index()
        assert index.find("22.1.0") is not None
        assert mock_get.call_count == 1

    @patch("pynvm.core.remote_fetcher.requests.get")
    def test_network_failure_falls_back_to_stale_snapshot(self, mock_get, client, config_manager):
        seed_cache(config_manager, NOW - timedelta(days=2))
        mock_get.side_effect = requests.exceptions.ConnectionError("offline")
        index = client.get_index()
        assert index.source == "seed"

    @patch("pynvm.core.remote_fetcher.requests.get")
    def test_snapshot_past_hard_ceiling_is_not_used(self, mock_get, client, config_manager):
        seed_cache(config_manager, NOW - timedelta(days=8))
        mock_get.side_effect = requests.exceptions.ConnectionError("offline")
        with pytest.raises(NetworkError):
            client.get_index()

    @patch("pynvm.core.remote_fetcher.requests.get")
    def test_failure_without_cache_is_not_retried(self, mock_get, client):
        mock_get.side_effect = requests.exceptions.Timeout("slow")
        with pytest.raises(NetworkError):
            client.get_index()
        with pytest.raises(NetworkError):
            client.get_index()
        assert mock_get.call_count == 1

    @patch("pynvm.core.remote_fetcher.requests.get")
    def test_http_error_is_network_error(self, mock_get, client):
        mock_get.return_value = json_response({}, status=503)
        with pytest.raises(NetworkError):
            client.get_index()

    def test_corrupt_cache_entry_is_ignored(self, client, config_manager):
        config_manager.set_cache(CACHE_KEY, {"versions": "nope"})
        assert client.peek_index() is None


class TestPeekIndex:

    @patch("pynvm.core.remote_fetcher.requests.get")
    def test_peek_never_touches_network(self, mock_get, client):
        assert client.peek_index() is None
        mock_get.assert_not_called()
        assert client.fetch_count == 0

    def test_peek_returns_expired_but_usable_snapshot(self, client, config_manager):
        seed_cache(config_manager, NOW - timedelta(days=3))
        assert client.peek_index().source == "seed"

    def test_peek_ignores_snapshot_past_hard_ceiling(self, client, config_manager):
        seed_cache(config_manager, NOW - timedelta(days=30))
        assert client.peek_index() is None


class TestFetchChecksum:

    SHASUMS = (
        "aaaa  node-v20.12.2-darwin-arm64.tar.gz\n"
        "BBBB  node-v20.12.2-linux-x64.tar.gz\n"
        "cccc  node-v20.12.2-win-x64.zip\n"
    )

    def _entry(self, **kwargs):
        return VersionEntry(
            version="20.12.2",
            download_url="https://nodejs.org/dist/v20.12.2/node-v20.12.2-linux-x64.tar.gz",
            checksum_url="https://nodejs.org/dist/v20.12.2/SHASUMS256.txt",
            **kwargs,
        )

    @patch("pynvm.core.remote_fetcher.requests.get")
    def test_looks_up_file_name(self, mock_get, client):
        mock_get.return_value = text_response(self.SHASUMS)
        assert client.fetch_checksum(self._entry()) == "bbbb"

    @patch("pynvm.core.remote_fetcher.requests.get")
    def test_embedded_checksum_skips_request(self, mock_get, client):
        assert client.fetch_checksum(self._entry(checksum="ABCDEF")) == "abcdef"
        mock_get.assert_not_called()

    @patch("pynvm.core.remote_fetcher.requests.get")
    def test_missing_file_returns_empty(self, mock_get, client):
        mock_get.return_value = text_response("dddd  node-v20.12.2-aix-ppc64.tar.gz\n")
        assert client.fetch_checksum(self._entry()) == ""

    @patch("pynvm.core.remote_fetcher.requests.get")
    def test_request_failure_is_network_error(self, mock_get, client):
        mock_get.side_effect = requests.exceptions.ConnectionError("offline")
        with pytest.raises(NetworkError):
            client.fetch_checksum(self._entry())


class TestPlatformInfo:

    def test_linux_arm64(self, monkeypatch):
        monkeypatch.setattr(remote_fetcher.platform, "machine", lambda: "aarch64")
        monkeypatch.setattr(remote_fetcher.sys, "platform", "linux")
        info = get_platform_info()
        assert info == {"os": "linux", "arch": "arm64", "ext": "tar.gz", "files_key": "linux-arm64"}

    def test_darwin_uses_osx_files_key(self, monkeypatch):
        monkeypatch.setattr(remote_fetcher.platform, "machine", lambda: "x86_64")
        monkeypatch.setattr(remote_fetcher.sys, "platform", "darwin")
        info = get_platform_info()
        assert info["os"] == "darwin"
        assert info["files_key"] == "osx-x64-tar"

    def test_arch_map_overrides_detected_arch(self, monkeypatch):
        monkeypatch.setattr(remote_fetcher.platform, "machine", lambda: "x86_64")
        monkeypatch.setattr(remote_fetcher.sys, "platform", "win32")
        info = get_platform_info({"x64": "arm64"})
        assert info == {"os": "win", "arch": "arm64", "ext": "zip", "files_key": "win-arm64-zip"}
