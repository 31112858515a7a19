"""
远程版本索引模块。

从镜像源获取 Node.js 版本目录（index.json），并在内存和缓存文件中保存快照。
每个进程最多发起一次索引请求。
"""

import platform
import sys
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import requests

from pynvm.utils.logger import get_logger
from pynvm.core.config_manager import ConfigManager, ConfigSaveError, NetworkOptions
from pynvm.core.interfaces import IRemoteIndexClient
from pynvm.core.models import RemoteIndexCache, VersionEntry
from pynvm.core.version_spec import parse_version_key

logger = get_logger()

INDEX_FILE = "index.json"
CHECKSUM_FILE = "SHASUMS256.txt"
CACHE_KEY = "node_index"

_MACHINE_ARCH = {
    "x86_64": "x64",
    "amd64": "x64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv7l": "armv7l",
    "i386": "x86",
    "i686": "x86",
    "x86": "x86",
    "ppc64le": "ppc64le",
    "s390x": "s390x",
}


class RemoteFetcherError(Exception):
    """远程获取错误异常。"""
    pass


class NetworkError(RemoteFetcherError):
    """网络错误异常，属于临时性错误，调用者可以回退到缓存或稍后重试。"""
    pass


def get_platform_info(arch_map: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """
    获取当前平台对应的发行包命名信息。

    参数:
        arch_map: 架构名称映射，用于覆盖自动识别的结果

    返回:
        包含 os、arch、ext、files_key 的字典
    """
    machine = platform.machine().lower()
    arch = _MACHINE_ARCH.get(machine, machine or "x64")
    if arch_map:
        arch = arch_map.get(arch, arch)

    if sys.platform.startswith("win"):
        return {"os": "win", "arch": arch, "ext": "zip", "files_key": f"win-{arch}-zip"}
    if sys.platform == "darwin":
        return {"os": "darwin", "arch": arch, "ext": "tar.gz", "files_key": f"osx-{arch}-tar"}
    return {"os": "linux", "arch": arch, "ext": "tar.gz", "files_key": f"linux-{arch}"}


def _render_url_template(template: str, variables: Dict[str, str]) -> str:
    """
    渲染 URL 模板，替换变量占位符。

    参数:
        template: URL 模板字符串
        variables: 变量字典

    返回:
        渲染后的 URL
    """
    result = template
    for key, value in variables.items():
        result = result.replace("{" + key + "}", value)
    return result


class RemoteIndexClient(IRemoteIndexClient):
    """
    远程版本索引客户端。

    负责从镜像源获取可用版本目录，读取顺序为：
    内存快照 → 未过期的缓存文件 → 网络 → 未超过硬上限的旧缓存。
    实现 IRemoteIndexClient 抽象接口。
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        network: Optional[NetworkOptions] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        初始化远程索引客户端。

        参数:
            config_manager: 配置管理器实例
            network: 网络选项，默认从配置解析
            clock: 当前时间函数，测试时可替换
        """
        self.config_manager = config_manager
        self.network = network or config_manager.resolve_network_options()
        self._clock = clock
        self._memory_cache: Optional[RemoteIndexCache] = None
        self._fetch_attempted = False
        self._fetch_error: Optional[NetworkError] = None

    @property
    def mirror(self) -> str:
        return self.config_manager.get_mirror()

    @property
    def fetch_count(self) -> int:
        """本进程内实际发起的索引请求次数（0 或 1）。"""
        return 1 if self._fetch_attempted else 0

    def get_index(self) -> RemoteIndexCache:
        """
        获取版本目录快照。

        返回:
            RemoteIndexCache 实例

        抛出:
            NetworkError: 网络失败且没有可用的缓存
        """
        if self._memory_cache is not None:
            return self._memory_cache

        now = self._clock()
        snapshot = self._load_disk_snapshot()
        if snapshot is not None and not snapshot.is_stale(self.config_manager.get_cache_expire_time(), now):
            logger.info("使用本地缓存的版本索引")
            self._memory_cache = snapshot
            return snapshot

        try:
            return self.fetch_index()
        except NetworkError as e:
            if snapshot is not None and snapshot.age_seconds(now) < self.config_manager.get_cache_max_age():
                logger.warning(f"获取版本索引失败，使用 {int(snapshot.age_seconds(now))} 秒前的缓存: {e}")
                self._memory_cache = snapshot
                return snapshot
            raise

    def peek_index(self) -> Optional[RemoteIndexCache]:
        """
        不访问网络，返回内存或缓存文件中未超过硬上限的快照。

        返回:
            RemoteIndexCache 实例，没有可用快照返回 None
        """
        if self._memory_cache is not None:
            return self._memory_cache

        snapshot = self._load_disk_snapshot()
        if snapshot is None:
            return None
        if snapshot.age_seconds(self._clock()) >= self.config_manager.get_cache_max_age():
            logger.debug("缓存的版本索引已超过最大年龄，忽略")
            return None
        self._memory_cache = snapshot
        return snapshot

    def fetch_index(self) -> RemoteIndexCache:
        """
        从镜像源获取版本目录并更新缓存。

        同一进程内只会真正请求一次，之后返回上次的结果或错误。

        返回:
            RemoteIndexCache 实例

        抛出:
            NetworkError: 请求失败、响应状态异常或内容无法解析
        """
        if self._fetch_attempted:
            if self._memory_cache is not None:
                return self._memory_cache
            raise self._fetch_error or NetworkError("版本索引不可用")

        self._fetch_attempted = True
        index_url = self.mirror + INDEX_FILE
        logger.info(f"正在获取版本索引: {index_url}")

        try:
            response = requests.get(index_url, **self.network.as_requests_kwargs())
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.RequestException as e:
            self._fetch_error = NetworkError(f"获取版本索引失败 ({index_url}): {e}")
            logger.error(str(self._fetch_error))
            raise self._fetch_error from e
        except ValueError as e:
            self._fetch_error = NetworkError(f"版本索引不是有效的 JSON ({index_url}): {e}")
            logger.error(str(self._fetch_error))
            raise self._fetch_error from e

        try:
            entries = self._parse_index(data)
        except NetworkError as e:
            self._fetch_error = e
            logger.error(str(e))
            raise
        snapshot = RemoteIndexCache(entries=entries, fetched_at=self._clock(), source=index_url)
        self._memory_cache = snapshot
        self._update_cache(snapshot)
        logger.info(f"成功获取 {len(entries)} 个可用版本")
        return snapshot

    def fetch_checksum(self, entry: VersionEntry) -> str:
        """
        获取指定版本安装包的 sha256 校验和。

        条目自带校验和时直接返回，否则下载校验文件并按文件名查找。

        参数:
            entry: 版本条目

        返回:
            小写十六进制校验和，校验文件中没有对应文件时返回空字符串

        抛出:
            NetworkError: 校验文件下载失败
        """
        if entry.checksum:
            return entry.checksum.lower()
        if not entry.checksum_url:
            return ""

        file_name = entry.download_url.rsplit("/", 1)[-1]
        logger.debug(f"获取校验文件: {entry.checksum_url}")
        try:
            response = requests.get(entry.checksum_url, **self.network.as_requests_kwargs())
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise NetworkError(f"获取 {entry.version} 的校验文件失败: {e}") from e

        for line in response.text.splitlines():
            parts = line.split()
            if len(parts) == 2 and parts[1].lstrip("*") == file_name:
                return parts[0].lower()

        logger.warning(f"校验文件中没有 {file_name} 的记录")
        return ""

    def _parse_index(self, data: Any) -> List[VersionEntry]:
        """
        解析 index.json 内容为版本条目列表。

        没有当前平台安装包的版本和格式无效的条目会被过滤。

        参数:
            data: 解析后的 JSON 数据

        返回:
            版本条目列表
        """
        if isinstance(data, dict):
            data = data.get("versions", [])
        if not isinstance(data, list):
            raise NetworkError(f"版本索引格式不支持: {type(data).__name__}")

        platform_info = get_platform_info(self.config_manager.get_arch_map())
        template = self.config_manager.get_download_url_template()
        entries = []
        skipped = 0

        for item in data:
            if not isinstance(item, dict):
                skipped += 1
                continue
            version = str(item.get("version", "")).strip().lstrip("v")
            if parse_version_key(version) is None:
                skipped += 1
                continue

            files = item.get("files")
            if isinstance(files, list) and platform_info["files_key"] not in files:
                continue

            lts = item.get("lts")
            if lts is True:
                lts = "LTS"
            elif not isinstance(lts, str) or not lts:
                lts = None

            variables = dict(platform_info, mirror=self.mirror, version=version)
            entries.append(VersionEntry(
                version=version,
                lts=lts,
                download_url=_render_url_template(template, variables),
                checksum=str(item.get("sha256") or item.get("checksum") or ""),
                checksum_url=f"{self.mirror}v{version}/{CHECKSUM_FILE}",
                release_date=item.get("date"),
            ))

        if skipped:
            logger.warning(f"版本索引中有 {skipped} 个无效项被过滤")
        return entries

    def _load_disk_snapshot(self) -> Optional[RemoteIndexCache]:
        """
        读取缓存文件中的版本索引快照。

        返回:
            RemoteIndexCache 实例，不存在或已损坏返回 None
        """
        cached = self.config_manager.get_cache().get(CACHE_KEY)
        if not cached:
            return None
        try:
            return RemoteIndexCache.from_dict(cached)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"缓存的版本索引已损坏，忽略: {e}")
            return None

    def _update_cache(self, snapshot: RemoteIndexCache) -> None:
        """
        把快照写入缓存文件，写入失败只记录警告。

        参数:
            snapshot: 版本索引快照
        """
        self.config_manager.set_cache(CACHE_KEY, snapshot.to_dict())
        try:
            self.config_manager.save_cache()
        except ConfigSaveError as e:
            logger.warning(f"保存版本索引缓存失败: {e}")
