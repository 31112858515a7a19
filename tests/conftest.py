"""Shared fixtures for pynvm tests."""

import hashlib
import io
import os
import tarfile
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

import pytest

# pynvm modules configure logging on import; keep the log file out of the real home
os.environ.setdefault("NVM_HOME", tempfile.mkdtemp(prefix="pynvm-test-home-"))

from pynvm.core.config_manager import ConfigManager  # noqa: E402
from pynvm.core.interfaces import IRemoteIndexClient  # noqa: E402
from pynvm.core.local_manager import LocalInventory, write_marker  # noqa: E402
from pynvm.core.models import RemoteIndexCache, VersionEntry  # noqa: E402
from pynvm.core.remote_fetcher import NetworkError  # noqa: E402


class FakeIndexClient(IRemoteIndexClient):
    """In-memory index client that records how often the network would be hit."""

    def __init__(
        self,
        entries: Optional[List[VersionEntry]] = None,
        offline: bool = False,
        snapshot: bool = True,
        checksums: Optional[Dict[str, str]] = None,
    ):
        self.entries = entries or []
        self.offline = offline
        self.snapshot = snapshot
        self.checksums = checksums or {}
        self.get_calls = 0
        self.peek_calls = 0

    def get_index(self):
        self.get_calls += 1
        if self.offline:
            raise NetworkError("offline")
        return RemoteIndexCache(entries=list(self.entries), fetched_at=datetime.now())

    def peek_index(self):
        self.peek_calls += 1
        if not self.snapshot:
            return None
        return RemoteIndexCache(entries=list(self.entries), fetched_at=datetime.now())

    def fetch_checksum(self, entry):
        if entry.checksum:
            return entry.checksum
        return self.checksums.get(entry.version, "")


def remote(version: str, lts: Optional[str] = None, checksum: str = "") -> VersionEntry:
    """Build a not-installed entry as the index would return it."""
    return VersionEntry(
        version=version,
        lts=lts,
        download_url=f"https://nodejs.org/dist/v{version}/node-v{version}-linux-x64.tar.gz",
        checksum=checksum,
    )


def make_installed(install_root: Path, version: str, lts: Optional[str] = None) -> Path:
    """Create a complete install directory with a valid marker."""
    path = Path(install_root) / f"v{version}"
    (path / "bin").mkdir(parents=True)
    (path / "bin" / "node").write_text("#!/bin/sh\necho v" + version + "\n")
    write_marker(path, VersionEntry(version=version, lts=lts), "0" * 64)
    return path


def build_node_tarball(version: str, extra: Optional[Dict[str, bytes]] = None) -> bytes:
    """Build a tar.gz shaped like an official Node.js release archive."""
    top = f"node-v{version}-linux-x64"
    files = {
        f"{top}/bin/node": f"#!/bin/sh\necho v{version}\n".encode(),
        f"{top}/README.md": b"node\n",
        # incompressible so the archive spans several download chunks
        f"{top}/lib/blob.bin": b"".join(hashlib.sha256(str(i).encode()).digest() for i in range(128)),
    }
    files.update(extra or {})
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tf:
        for name, data in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = 0o755
            tf.addfile(info, io.BytesIO(data))
    return buf.getvalue()


def sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


@pytest.fixture
def nvm_home(tmp_path, monkeypatch):
    """Temporary NVM_HOME with proxy-related variables cleared."""
    home = tmp_path / "nvm-home"
    home.mkdir()
    monkeypatch.setenv("NVM_HOME", str(home))
    monkeypatch.delenv("NVM_PROXY", raising=False)
    monkeypatch.delenv("NVM_VERIFY_SSL", raising=False)
    monkeypatch.delenv("NVM_USE", raising=False)
    return home


@pytest.fixture
def config_manager(nvm_home):
    return ConfigManager(nvm_home)


@pytest.fixture
def install_root(config_manager):
    root = config_manager.install_root
    root.mkdir(parents=True, exist_ok=True)
    return root


@pytest.fixture
def inventory(install_root):
    return LocalInventory(install_root)
