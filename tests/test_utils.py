"""Tests for retry, throttling and input validation helpers."""

import io
import os
from unittest.mock import MagicMock

import pytest
import requests

from pynvm.utils.input_validator import InputValidationError, InputValidator
from pynvm.utils.retry import RetryHandler
from pynvm.utils.speed_limiter import SpeedLimiter


def http_error(status):
    response = MagicMock()
    response.status_code = status
    return requests.exceptions.HTTPError(str(status), response=response)


class TestRetryHandler:

    def test_retries_transient_errors(self):
        delays = []
        handler = RetryHandler(max_retries=3, jitter=False, sleep=delays.append)
        func = MagicMock(side_effect=[requests.exceptions.ConnectionError(), http_error(503), "ok"])

        assert handler.execute(func) == "ok"
        assert func.call_count == 3
        assert delays == [1.0, 2.0]

    def test_gives_up_after_max_retries(self):
        handler = RetryHandler(max_retries=1, sleep=lambda _: None)
        func = MagicMock(side_effect=requests.exceptions.Timeout())
        with pytest.raises(requests.exceptions.Timeout):
            handler.execute(func)
        assert func.call_count == 2

    def test_client_errors_are_not_retried(self):
        handler = RetryHandler(sleep=lambda _: None)
        func = MagicMock(side_effect=http_error(404))
        with pytest.raises(requests.exceptions.HTTPError):
            handler.execute(func)
        assert func.call_count == 1

    @pytest.mark.parametrize("status", [408, 429, 500, 502])
    def test_retryable_statuses(self, status):
        assert RetryHandler.is_retryable_error(http_error(status))

    def test_delay_is_capped(self):
        handler = RetryHandler(base_delay=10, max_delay=15, jitter=False)
        assert handler._calculate_delay(5) == 15


class TestSpeedLimiter:

    def test_unlimited_never_sleeps(self):
        sleep = MagicMock()
        limiter = SpeedLimiter(0, clock=lambda: 0.0, sleep=sleep)
        assert limiter.write_with_limit(io.BytesIO(), b"x" * 4096) == 4096
        sleep.assert_not_called()

    def test_sleeps_when_ahead_of_budget(self):
        sleeps = []
        limiter = SpeedLimiter(1000, clock=lambda: 0.0, sleep=sleeps.append)
        buf = io.BytesIO()
        limiter.write_with_limit(buf, b"x" * 500)
        limiter.write_with_limit(buf, b"x" * 500)
        assert sleeps == [0.5, 1.0]
        assert buf.getvalue() == b"x" * 1000


class TestInputValidator:

    def test_version_token_is_stripped(self):
        assert InputValidator.validate_version_token("  v20.1 ") == "v20.1"

    @pytest.mark.parametrize("token", ["", "   ", "20;ls", "../20", "x" * 65])
    def test_bad_version_tokens(self, token):
        with pytest.raises(InputValidationError):
            InputValidator.validate_version_token(token)

    @pytest.mark.parametrize("url", ["http://proxy:3128", "https://user:pw@proxy.example.com:443", "socks5://127.0.0.1:1080"])
    def test_valid_proxies(self, url):
        assert InputValidator.validate_proxy_url(url) == url

    def test_empty_proxy_means_none(self):
        assert InputValidator.validate_proxy_url("  ") is None

    def test_bad_proxy(self):
        with pytest.raises(InputValidationError):
            InputValidator.validate_proxy_url("ftp://proxy:21")

    def test_safe_join_allows_children_and_base(self, tmp_path):
        base = str(tmp_path)
        assert InputValidator.safe_join_path(base, "a", "b") == os.path.join(base, "a", "b")
        assert InputValidator.safe_join_path(base, "a", "..") == base

    def test_safe_join_rejects_escape(self, tmp_path):
        with pytest.raises(InputValidationError):
            InputValidator.safe_join_path(str(tmp_path), "..", "etc")
