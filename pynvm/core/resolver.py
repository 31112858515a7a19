"""
版本解析模块。

把版本说明符解析为唯一的具体版本。远程范围（安装）优先使用本地已安装版本，
只有在需要时才访问远程索引；本地范围（切换、卸载）只看已安装版本。
"""

from enum import Enum
from typing import List

from pynvm.utils.logger import get_logger
from pynvm.core.interfaces import ILocalInventory, IRemoteIndexClient
from pynvm.core.models import VersionEntry
from pynvm.core.remote_fetcher import NetworkError
from pynvm.core.version_spec import ALIAS_LTS, Alias, Exact, Partial, VersionSpec
from pynvm.core import version_utils

logger = get_logger()


class ResolutionScope(Enum):
    """别名与前缀的解析上下文。"""
    REMOTE = "remote"
    LOCAL = "local"


class ResolutionError(Exception):
    """版本解析错误异常。"""

    def __init__(self, spec: VersionSpec, message: str):
        self.spec = spec
        super().__init__(message)


class VersionNotFoundError(ResolutionError):
    """没有满足说明符的版本。"""

    def __init__(self, spec: VersionSpec, scope: ResolutionScope = ResolutionScope.REMOTE):
        where = "已安装版本" if scope is ResolutionScope.LOCAL else "本地及远程版本"
        super().__init__(spec, f"在{where}中找不到满足 {spec} 的版本")


class NoLtsAvailableError(ResolutionError):
    """版本目录中没有任何 LTS 版本。"""

    def __init__(self, spec: VersionSpec, scope: ResolutionScope = ResolutionScope.REMOTE):
        where = "已安装版本" if scope is ResolutionScope.LOCAL else "远程版本目录"
        super().__init__(spec, f"{where}中没有 LTS 版本")


class AmbiguousVersionError(ResolutionError):
    """前缀匹配到多个已安装版本。"""

    def __init__(self, spec: VersionSpec, candidates: List[VersionEntry]):
        self.candidates = candidates
        versions = ", ".join(c.version for c in candidates)
        super().__init__(spec, f"{spec} 匹配多个已安装版本: {versions}")


class Resolver:
    """
    版本解析器类。

    结合本地清单和远程索引把 VersionSpec 解析为一个 VersionEntry。
    给定相同的本地清单和索引快照，结果是确定的。
    """

    def __init__(self, inventory: ILocalInventory, index_client: IRemoteIndexClient):
        """
        初始化版本解析器。

        参数:
            inventory: 本地版本清单
            index_client: 远程索引客户端
        """
        self.inventory = inventory
        self.index_client = index_client

    def resolve(self, spec: VersionSpec, scope: ResolutionScope = ResolutionScope.REMOTE) -> VersionEntry:
        """
        解析版本说明符。

        参数:
            spec: 版本说明符
            scope: REMOTE 用于安装，LOCAL 只在已安装版本中选择

        返回:
            选中的版本条目，远程条目状态为 not-installed

        抛出:
            ResolutionError: 找不到版本或没有 LTS 版本
            NetworkError: 需要远程索引但获取失败且没有可用缓存
        """
        if scope is ResolutionScope.LOCAL:
            return self.resolve_installed(spec, pick_latest=True)

        logger.debug(f"解析版本 {spec}")
        if isinstance(spec, Exact):
            return self._resolve_exact(spec)
        if isinstance(spec, Partial):
            return self._resolve_partial(spec)
        return self._resolve_alias(spec)

    def resolve_installed(self, spec: VersionSpec, pick_latest: bool = False) -> VersionEntry:
        """
        只在已安装版本中解析说明符。

        "latest" 指已安装的最高版本，与安装时的远程最高版本不同。

        参数:
            spec: 版本说明符
            pick_latest: 前缀匹配到多个版本时取最高版本，否则报错

        返回:
            已安装的版本条目

        抛出:
            VersionNotFoundError: 没有匹配的已安装版本
            NoLtsAvailableError: 已安装版本中没有 LTS
            AmbiguousVersionError: 前缀匹配多个版本且未指定 pick_latest
        """
        installed = self.inventory.list()

        if isinstance(spec, Alias):
            if spec.name == ALIAS_LTS:
                entry = version_utils.select_lts(installed)
                if entry is None:
                    raise NoLtsAvailableError(spec, ResolutionScope.LOCAL)
            else:
                entry = version_utils.select_latest(installed)
            if entry is None:
                raise VersionNotFoundError(spec, ResolutionScope.LOCAL)
            return entry

        matches = [e for e in installed if spec.matches(e.version_key)]
        if not matches:
            raise VersionNotFoundError(spec, ResolutionScope.LOCAL)
        if len(matches) > 1 and not pick_latest:
            raise AmbiguousVersionError(spec, matches)
        return version_utils.select_latest(matches)

    def _resolve_exact(self, spec: Exact) -> VersionEntry:
        local = self.inventory.get(str(spec))
        if local is not None:
            logger.debug(f"{spec} 已安装，无需访问远程索引")
            return local

        index = self._get_index(spec)
        entry = index.find(str(spec))
        if entry is None:
            raise VersionNotFoundError(spec)
        return entry

    def _resolve_partial(self, spec: Partial) -> VersionEntry:
        """
        在本地与远程版本中选择满足前缀的最高版本。

        本地已有匹配时只查看内存或缓存文件中已有的快照，更高的远程版本
        只有在快照存在时才会被选中；没有快照时直接使用本地最高版本。
        """
        local = [e for e in self.inventory.list() if spec.matches(e.version_key)]

        if local:
            # 本地已有匹配时只使用现成的快照，不为了检查更高版本而联网
            index = self.index_client.peek_index()
        else:
            index = self._get_index(spec)

        remote = index.entries if index is not None else []
        entry = version_utils.select_matching(spec, local, remote)
        if entry is None:
            raise VersionNotFoundError(spec)
        return entry

    def _resolve_alias(self, spec: Alias) -> VersionEntry:
        index = self._get_index(spec)
        if spec.name == ALIAS_LTS:
            entry = version_utils.select_lts(index.entries)
            if entry is None:
                raise NoLtsAvailableError(spec)
        else:
            entry = version_utils.select_latest(index.entries)
            if entry is None:
                raise VersionNotFoundError(spec)

        installed = self.inventory.get(entry.version)
        return installed if installed is not None else entry

    def _get_index(self, spec: VersionSpec):
        try:
            return self.index_client.get_index()
        except NetworkError as e:
            raise NetworkError(f"解析 {spec} 需要远程版本索引: {e}") from e

