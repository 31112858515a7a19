"""
本地版本清单模块。

通过扫描安装根目录得到已安装版本。清单不单独持久化，每次调用都从磁盘重建，
只有带有效完整性标记的目录才算已安装。
"""

import json
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from pynvm.utils.logger import get_logger
from pynvm.core.interfaces import ILocalInventory
from pynvm.core.models import InstallStatus, VersionEntry
from pynvm.core.version_spec import parse_version_key
from pynvm.core import version_utils

logger = get_logger()

MARKER_FILE = ".pynvm-install.json"
STAGING_PREFIX = ".staging-"


@dataclass(frozen=True)
class IncompleteInstall:
    """未完成或已损坏的安装目录，只对清理器可见。"""

    path: str
    status: InstallStatus
    version: Optional[str] = None


def read_marker(version_dir: Path) -> Optional[Dict[str, Any]]:
    """
    读取版本目录中的完整性标记。

    参数:
        version_dir: 版本安装目录

    返回:
        标记内容字典，不存在或无法解析返回 None
    """
    marker = Path(version_dir) / MARKER_FILE
    try:
        with open(marker, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as e:
        logger.warning(f"无法读取完整性标记 {marker}: {e}")
        return None
    return data if isinstance(data, dict) else None


def write_marker(version_dir: Path, entry: VersionEntry, checksum: str) -> None:
    """
    写入完整性标记，只能在校验和验证通过后调用。

    参数:
        version_dir: 版本目录（通常仍位于临时目录中）
        entry: 版本条目
        checksum: 已验证的 sha256 校验和
    """
    data = {
        "version": entry.version,
        "lts": entry.lts,
        "checksum": checksum,
        "download_url": entry.download_url,
        "installed_at": datetime.now().isoformat(),
    }
    with open(Path(version_dir) / MARKER_FILE, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)


class LocalInventory(ILocalInventory):
    """
    本地版本清单类。

    只读，不修改磁盘。实现 ILocalInventory 抽象接口。
    """

    def __init__(self, install_root: Path):
        """
        初始化本地版本清单。

        参数:
            install_root: 版本安装根目录
        """
        self.install_root = Path(install_root)

    def version_dir(self, version: str) -> Path:
        """返回指定版本的最终安装目录。"""
        return self.install_root / f"v{version}"

    def _iter_dirs(self) -> List[os.DirEntry]:
        try:
            with os.scandir(self.install_root) as it:
                return [d for d in it if d.is_dir(follow_symlinks=False)]
        except FileNotFoundError:
            return []

    def _load_entry(self, path: Path) -> Optional[VersionEntry]:
        """
        根据目录名和完整性标记构造已安装条目。

        参数:
            path: 版本目录

        返回:
            VersionEntry 实例，目录不是有效安装返回 None
        """
        version = path.name[1:]
        marker = read_marker(path)
        if marker is None or marker.get("version") != version:
            return None
        return VersionEntry(
            version=version,
            lts=marker.get("lts") or None,
            download_url=marker.get("download_url", ""),
            checksum=marker.get("checksum", ""),
            status=InstallStatus.INSTALLED,
            path=str(path),
        )

    def list(self) -> List[VersionEntry]:
        """
        按版本号降序列出已安装版本。

        返回:
            已安装的版本条目列表
        """
        entries = []
        for item in self._iter_dirs():
            if not item.name.startswith("v") or parse_version_key(item.name) is None:
                continue
            entry = self._load_entry(Path(item.path))
            if entry is not None:
                entries.append(entry)
        logger.debug(f"找到 {len(entries)} 个本地版本")
        return version_utils.sort_versions_desc(entries)

    def has(self, version: str) -> bool:
        """检查指定版本是否已完整安装。"""
        return self.get(version) is not None

    def get(self, version: str) -> Optional[VersionEntry]:
        """
        获取已安装的版本条目。

        参数:
            version: 完整版本号

        返回:
            VersionEntry 实例，未安装或安装不完整返回 None
        """
        path = self.version_dir(version)
        if not path.is_dir():
            return None
        return self._load_entry(path)

    def find_by_path(self, path: str) -> Optional[VersionEntry]:
        """
        根据目录路径查找已安装条目。

        参数:
            path: 版本目录路径（可以是符号链接解析后的路径）

        返回:
            VersionEntry 实例，路径不在安装根目录下或不是有效安装返回 None
        """
        candidate = Path(path)
        try:
            if candidate.resolve().parent != self.install_root.resolve():
                return None
        except OSError:
            return None
        if parse_version_key(candidate.name) is None:
            return None
        return self.get(candidate.name[1:])

    def scan_incomplete(self) -> List[IncompleteInstall]:
        """
        扫描临时安装目录和缺少有效完整性标记的版本目录。

        返回:
            IncompleteInstall 列表
        """
        results = []
        for item in self._iter_dirs():
            if item.name.startswith(STAGING_PREFIX):
                results.append(IncompleteInstall(item.path, InstallStatus.DOWNLOADING))
            elif item.name.startswith("v") and parse_version_key(item.name) is not None:
                if self._load_entry(Path(item.path)) is None:
                    results.append(IncompleteInstall(item.path, InstallStatus.CORRUPT, item.name[1:]))
        return results
