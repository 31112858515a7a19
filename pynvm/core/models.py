"""
数据模型模块。

定义版本条目、远程索引快照、会话指针和清理结果等数据结构。
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pynvm.core.version_spec import parse_version_key


class InstallStatus(Enum):
    """版本安装状态。"""
    NOT_INSTALLED = "not-installed"
    DOWNLOADING = "downloading"
    INSTALLED = "installed"
    CORRUPT = "corrupt"


@dataclass(frozen=True)
class VersionEntry:
    """
    一个具体的版本，由完整版本号唯一标识。

    lts 为 LTS 代号（如 "Iron"），非 LTS 版本为 None。
    checksum 为空时，安装器从 checksum_url 指向的校验文件读取。
    """

    version: str
    lts: Optional[str] = None
    download_url: str = ""
    checksum: str = ""
    checksum_url: str = ""
    release_date: Optional[str] = None
    status: InstallStatus = InstallStatus.NOT_INSTALLED
    path: Optional[str] = None

    def __post_init__(self):
        if parse_version_key(self.version) is None:
            raise ValueError(f"无效的版本号: {self.version!r}")
        normalized = self.version.strip().lstrip("vV")
        if normalized != self.version:
            object.__setattr__(self, "version", normalized)

    @property
    def version_key(self) -> tuple[int, int, int]:
        return parse_version_key(self.version)

    @property
    def is_installed(self) -> bool:
        return self.status is InstallStatus.INSTALLED

    @property
    def dir_name(self) -> str:
        """安装目录名，如 "v20.1.0"。"""
        return f"v{self.version}"

    def with_status(self, status: InstallStatus, path: Optional[str] = None) -> "VersionEntry":
        return replace(self, status=status, path=path if path is not None else self.path)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "lts": self.lts,
            "download_url": self.download_url,
            "checksum": self.checksum,
            "checksum_url": self.checksum_url,
            "release_date": self.release_date,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VersionEntry":
        return cls(
            version=data["version"],
            lts=data.get("lts") or None,
            download_url=data.get("download_url", ""),
            checksum=data.get("checksum", ""),
            checksum_url=data.get("checksum_url", ""),
            release_date=data.get("release_date"),
        )


@dataclass
class RemoteIndexCache:
    """远程版本目录的快照及其获取时间。"""

    entries: list[VersionEntry]
    fetched_at: datetime
    source: str = ""

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        now = now or datetime.now()
        return (now - self.fetched_at).total_seconds()

    def is_stale(self, expire_seconds: int, now: Optional[datetime] = None) -> bool:
        return self.age_seconds(now) >= expire_seconds

    def find(self, version: str) -> Optional[VersionEntry]:
        return next((e for e in self.entries if e.version == version), None)

    def to_dict(self) -> dict[str, Any]:
        return {
            "last_update": self.fetched_at.isoformat(),
            "source": self.source,
            "versions": [e.to_dict() for e in self.entries],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RemoteIndexCache":
        return cls(
            entries=[VersionEntry.from_dict(v) for v in data["versions"]],
            fetched_at=datetime.fromisoformat(data["last_update"]),
            source=data.get("source", ""),
        )


@dataclass(frozen=True)
class EnvMutation:
    """一条环境变量修改，value 为 None 表示删除该变量。"""

    name: str
    value: Optional[str]


@dataclass(frozen=True)
class SessionPointer:
    """
    当前 shell 会话的版本覆盖。

    不落盘，调用者负责把 mutations 应用到自己的 shell。
    version 为 None 表示会话覆盖已撤销。
    """

    version: Optional[str]
    bin_dir: Optional[str]
    mutations: tuple[EnvMutation, ...] = ()


@dataclass
class CleanResult:
    """清理结果。"""

    removed: list[str] = field(default_factory=list)
    retained: list[str] = field(default_factory=list)
