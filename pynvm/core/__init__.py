"""
pynvm 核心模块。

提供版本解析、远程索引、本地清单、安装、切换和清理功能。
"""

from .interfaces import IConfigManager, IRemoteIndexClient, ILocalInventory, ISwitchEngine
from .config_manager import ConfigManager, NetworkOptions, ConfigValidationError, ConfigLoadError, ConfigSaveError
from .version_spec import VersionSpec, Exact, Partial, Alias, LATEST, LTS, ParseError, parse_version_spec
from .models import InstallStatus, VersionEntry, RemoteIndexCache, EnvMutation, SessionPointer, CleanResult
from .remote_fetcher import RemoteIndexClient, RemoteFetcherError, NetworkError
from .local_manager import LocalInventory
from .resolver import Resolver, ResolutionScope, ResolutionError, VersionNotFoundError, NoLtsAvailableError, AmbiguousVersionError
from .download_manager import Installer, InstallError, ChecksumMismatchError, DownloadInterruptedError, ExtractionError
from .env_manager import SwitchEngine, SwitchError, render_shell
from .cache_janitor import CacheJanitor
from .version_manager import VersionManager, VersionManagerError, VersionInUseError
from . import version_utils

__all__ = [
    "IConfigManager", "IRemoteIndexClient", "ILocalInventory", "ISwitchEngine",
    "ConfigManager", "NetworkOptions", "ConfigValidationError", "ConfigLoadError", "ConfigSaveError",
    "VersionSpec", "Exact", "Partial", "Alias", "LATEST", "LTS", "ParseError", "parse_version_spec",
    "InstallStatus", "VersionEntry", "RemoteIndexCache", "EnvMutation", "SessionPointer", "CleanResult",
    "RemoteIndexClient", "RemoteFetcherError", "NetworkError",
    "LocalInventory",
    "Resolver", "ResolutionScope", "ResolutionError", "VersionNotFoundError", "NoLtsAvailableError", "AmbiguousVersionError",
    "Installer", "InstallError", "ChecksumMismatchError", "DownloadInterruptedError", "ExtractionError",
    "SwitchEngine", "SwitchError", "render_shell",
    "CacheJanitor",
    "VersionManager", "VersionManagerError", "VersionInUseError",
    "version_utils",
]
