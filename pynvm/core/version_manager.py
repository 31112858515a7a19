"""
版本管理器模块。

把版本解析、安装、切换和清理组合为命令行使用的各项操作。
"""

import os
import shutil
import tempfile
from typing import Callable, List, Mapping, Optional

from pynvm.utils.logger import get_logger
from pynvm.utils.input_validator import InputValidator, InputValidationError
from pynvm.core.cache_janitor import CacheJanitor
from pynvm.core.config_manager import ConfigManager, NetworkOptions
from pynvm.core.download_manager import Installer, PostInstallHook
from pynvm.core.env_manager import SwitchEngine, SwitchError
from pynvm.core.interfaces import IRemoteIndexClient
from pynvm.core.local_manager import LocalInventory, STAGING_PREFIX
from pynvm.core.models import CleanResult, SessionPointer, VersionEntry
from pynvm.core.remote_fetcher import RemoteIndexClient
from pynvm.core.resolver import ResolutionScope, Resolver
from pynvm.core.version_spec import ParseError, VersionSpec, parse_version_spec
from pynvm.core import version_utils

logger = get_logger()


class VersionManagerError(Exception):
    """版本管理错误异常。"""
    pass


class VersionInUseError(VersionManagerError):
    """版本正被默认链接或当前会话使用，拒绝卸载。"""
    pass


class VersionManager:
    """
    版本管理器类。

    本类作为协调者，将具体工作委托给解析器、安装器、切换引擎和清理器。
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        network: Optional[NetworkOptions] = None,
        environ: Optional[Mapping[str, str]] = None,
        index_client: Optional[IRemoteIndexClient] = None,
    ):
        """
        初始化版本管理器。

        参数:
            config_manager: 配置管理器实例
            network: 网络选项，默认从配置和环境变量解析
            environ: 调用者 shell 的环境变量，默认 os.environ
            index_client: 远程索引客户端，默认按配置创建
        """
        self.config_manager = config_manager
        self.environ = os.environ if environ is None else environ
        self.network = network or config_manager.resolve_network_options(environ=self.environ)

        self.inventory = LocalInventory(config_manager.install_root)
        self.index_client = index_client or RemoteIndexClient(config_manager, self.network)
        self.resolver = Resolver(self.inventory, self.index_client)
        self.installer = Installer(config_manager, self.inventory, self.index_client, self.network)
        self.switch_engine = SwitchEngine(config_manager.link_path, self.inventory)
        self.janitor = CacheJanitor(
            self.inventory,
            self.switch_engine,
            config_manager.get_staging_stale_age(),
            self.environ,
        )

    @staticmethod
    def parse(token: str) -> VersionSpec:
        """
        校验并解析用户输入的版本参数。

        抛出:
            ParseError: 参数为空、包含非法字符或格式无效
        """
        try:
            token = InputValidator.validate_version_token(token)
        except InputValidationError as e:
            raise ParseError(token or "", str(e)) from e
        return parse_version_spec(token)

    def install(
        self,
        token: str,
        progress_callback: Optional[Callable[[int, int], None]] = None,
        post_install: Optional[PostInstallHook] = None,
    ) -> VersionEntry:
        """
        解析并安装版本，已安装时直接返回现有条目。

        参数:
            token: 版本参数，如 "20"、"20.1.0"、"lts"
            progress_callback: 下载进度回调
            post_install: 安装成功后调用的钩子

        返回:
            已安装的版本条目
        """
        spec = self.parse(token)
        entry = self.resolver.resolve(spec, ResolutionScope.REMOTE)
        if entry.is_installed:
            logger.info(f"{spec} 解析为已安装的 {entry.version}")
            return entry
        logger.info(f"{spec} 解析为 {entry.version}")
        return self.installer.install(entry, progress_callback, post_install)

    def uninstall(self, token: str, latest: bool = False) -> VersionEntry:
        """
        卸载一个已安装版本。

        参数:
            token: 版本参数
            latest: 前缀匹配多个版本时卸载其中最高的版本

        返回:
            被卸载的版本条目

        抛出:
            VersionInUseError: 版本是默认版本或当前会话版本
        """
        spec = self.parse(token)
        entry = self.resolver.resolve_installed(spec, pick_latest=latest)

        default = self.switch_engine.get_default()
        if default is not None and default.version == entry.version:
            raise VersionInUseError(f"{entry.version} 是默认版本，请先执行 unlink")
        if self.switch_engine.current_session(self.environ) == entry.version:
            raise VersionInUseError(f"{entry.version} 正在当前 shell 中使用，请先执行 stop")

        # 先移出最终位置，删除中途失败时留下的只是临时目录
        doomed = tempfile.mkdtemp(prefix=f"{STAGING_PREFIX}rm-{entry.dir_name}-", dir=self.inventory.install_root)
        try:
            os.replace(entry.path, os.path.join(doomed, entry.dir_name))
        except OSError as e:
            os.rmdir(doomed)
            raise VersionManagerError(f"无法卸载 {entry.version}: {e}") from e
        shutil.rmtree(doomed, ignore_errors=True)
        logger.info(f"已卸载 {entry.version}")
        return entry

    def use(self, token: Optional[str] = None) -> SessionPointer:
        """
        在当前 shell 中使用指定版本。

        参数:
            token: 版本参数，省略时使用默认版本

        返回:
            SessionPointer，调用者负责把其中的修改应用到 shell
        """
        if token is None:
            entry = self.switch_engine.get_default()
            if entry is None:
                raise SwitchError("没有指定版本，也没有设置默认版本")
        else:
            entry = self.resolver.resolve(self.parse(token), ResolutionScope.LOCAL)
        return self.switch_engine.set_session(entry, self.environ)

    def stop(self) -> SessionPointer:
        """撤销当前 shell 中的版本覆盖。"""
        return self.switch_engine.unset_session(self.environ)

    def link(self, token: str) -> VersionEntry:
        """
        把已安装版本设置为默认版本。

        返回:
            新的默认版本条目
        """
        entry = self.resolver.resolve(self.parse(token), ResolutionScope.LOCAL)
        self.switch_engine.set_default(entry)
        return entry

    def unlink(self) -> None:
        """删除默认版本链接。"""
        self.switch_engine.unset_default()

    def list_local(self) -> List[VersionEntry]:
        """按版本号降序列出已安装版本。"""
        return self.inventory.list()

    def list_remote(self) -> List[VersionEntry]:
        """按版本号降序列出远程可用版本。"""
        return version_utils.sort_versions_desc(self.index_client.get_index().entries)

    def current_default(self) -> Optional[VersionEntry]:
        return self.switch_engine.get_default()

    def current_session(self) -> Optional[str]:
        return self.switch_engine.current_session(self.environ)

    def cleanup(self) -> CleanResult:
        """清理中断安装留下的临时目录和损坏的版本目录。"""
        return self.janitor.clean()

    def clear_index_cache(self) -> None:
        """清空缓存文件中的远程版本索引，下次解析时重新获取。"""
        self.config_manager.clear_cache()
