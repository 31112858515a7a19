"""
配置管理器模块。

提供配置的加载、保存和验证功能，以及网络选项（代理、SSL 校验）的解析。
"""

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

from pynvm.utils.logger import get_logger, get_home_dir
from pynvm.core.interfaces import IConfigManager
from pynvm.utils.input_validator import InputValidator, InputValidationError

logger = get_logger()

PROXY_ENV = "NVM_PROXY"
VERIFY_SSL_ENV = "NVM_VERIFY_SSL"


class ConfigValidationError(Exception):
    """配置验证错误异常。"""
    pass


class ConfigLoadError(Exception):
    """配置加载错误异常。"""
    pass


class ConfigSaveError(Exception):
    """配置保存错误异常。"""
    pass


def _atomic_save_json(file_path: Path, data: Any, indent: int = 2) -> None:
    """
    原子保存 JSON 数据到文件，防止写入中断导致文件损坏。

    参数:
        file_path: 目标文件路径
        data: 要保存的数据
        indent: JSON 缩进
    """
    temp_path = file_path.with_suffix(file_path.suffix + f".{os.getpid()}.tmp")

    try:
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=indent, ensure_ascii=False)
        os.replace(temp_path, file_path)
    except BaseException:
        if temp_path.exists():
            try:
                temp_path.unlink()
            except OSError:
                pass
        raise


@dataclass(frozen=True)
class NetworkOptions:
    """
    一次调用使用的网络选项。

    verify_tls 为 False 表示调用者明确接受不校验证书的风险。
    """

    proxy: Optional[str] = None
    verify_tls: bool = True
    timeout: float = 30.0

    def as_requests_kwargs(self) -> dict[str, Any]:
        """
        转换为 requests 调用的关键字参数。

        返回:
            包含 proxies、verify、timeout 的字典
        """
        kwargs: dict[str, Any] = {
            "verify": self.verify_tls,
            "timeout": self.timeout,
        }
        if self.proxy:
            kwargs["proxies"] = {"http": self.proxy, "https": self.proxy}
        return kwargs


def _parse_bool(value: str) -> bool:
    return value.strip().lower() != "false"


class ConfigManager(IConfigManager):
    """
    配置管理器类。

    负责管理配置的加载、保存、验证和访问，远程版本索引快照也存放在
    缓存文件中。实现 IConfigManager 抽象接口。
    """

    REQUIRED_FIELDS = {
        "settings": dict,
    }

    SETTINGS_FIELDS = {
        "mirror": str,
        "download_url_template": str,
        "arch_map": dict,
        "cache_expire_time": int,
        "cache_max_age": int,
        "staging_stale_age": int,
        "request_timeout": int,
        "download_retry_count": int,
        "download_speed_limit": int,
        "proxy": str,
        "verify_ssl": bool,
    }

    DEFAULT_SETTINGS = {
        "mirror": "https://nodejs.org/dist/",
        "download_url_template": "{mirror}v{version}/node-v{version}-{os}-{arch}.{ext}",
        "arch_map": {},
        "cache_expire_time": 86400,
        "cache_max_age": 7 * 86400,
        "staging_stale_age": 3600,
        "request_timeout": 30,
        "download_retry_count": 3,
        "download_speed_limit": 0,
        "proxy": "",
        "verify_ssl": True,
    }

    def __init__(self, home_dir: Optional[Path] = None):
        """
        初始化配置管理器。

        参数:
            home_dir: pynvm 主目录，默认为 NVM_HOME 或 ~/.pynvm
        """
        # 相对路径会让默认版本链接的目标按链接所在目录解析，统一转为绝对路径
        self.home_dir = Path(home_dir).expanduser().absolute() if home_dir else get_home_dir()
        self.config_dir = self.home_dir / "config"
        self.config_file = self.config_dir / "config.json"
        self.cache_file = self.config_dir / "cache.json"
        self._config: dict[str, Any] = {}
        self._cache: dict[str, Any] = {}
        self._cache_loaded = False

    @property
    def install_root(self) -> Path:
        """版本安装根目录。"""
        return self.home_dir / "nodejs"

    @property
    def link_path(self) -> Path:
        """默认版本符号链接路径。"""
        return self.home_dir / "default"

    def _ensure_config_dir(self) -> None:
        """确保配置目录存在。"""
        self.config_dir.mkdir(parents=True, exist_ok=True)

    def get_default_config(self) -> dict[str, Any]:
        """
        获取内置默认配置。

        返回:
            默认配置字典
        """
        settings = dict(self.DEFAULT_SETTINGS)
        settings["arch_map"] = {}
        return {
            "settings": settings,
            "cache": str(self.cache_file.absolute()),
        }

    def load_config(self, strict: bool = False) -> dict[str, Any]:
        """
        加载配置文件。

        配置文件不存在时使用默认配置且不写盘；文件损坏或验证失败时
        记录错误并回退到默认配置。

        参数:
            strict: 为 True 时文件损坏直接抛出异常，不回退到默认配置

        返回:
            配置字典

        抛出:
            ConfigLoadError: strict 模式下文件无法读取或验证失败
        """
        if not self.config_file.exists():
            logger.debug(f"配置文件不存在，使用默认配置: {self.config_file}")
            self._config = self.get_default_config()
            return self._config

        try:
            logger.debug(f"从文件加载配置: {self.config_file}")
            with open(self.config_file, "r", encoding="utf-8") as f:
                self._config = json.load(f)
            self._ensure_backward_compatibility()
            self.validate_config(self._config)
            logger.debug("配置加载成功")
        except (IOError, OSError, json.JSONDecodeError) as e:
            if strict:
                self._config = {}
                raise ConfigLoadError(f"无法加载配置文件 {self.config_file}: {e}") from e
            logger.error(f"加载配置文件失败，使用默认配置: {e}")
            self._config = self.get_default_config()
        except ConfigValidationError as e:
            if strict:
                self._config = {}
                raise ConfigLoadError(f"配置文件 {self.config_file} 无效: {e}") from e
            logger.error(f"配置验证失败，使用默认配置: {e}")
            self._config = self.get_default_config()
        return self._config

    def _ensure_backward_compatibility(self) -> None:
        """为旧版本配置补齐新增字段。"""
        if not isinstance(self._config, dict):
            raise ConfigValidationError("配置文件顶层必须是对象")

        settings = self._config.setdefault("settings", {})
        if not isinstance(settings, dict):
            return
        for field, default in self.DEFAULT_SETTINGS.items():
            if field not in settings:
                settings[field] = dict(default) if isinstance(default, dict) else default
        self._config["cache"] = str(self.cache_file.absolute())

    def validate_config(self, config: dict[str, Any]) -> bool:
        """
        验证配置的有效性。

        参数:
            config: 要验证的配置字典

        返回:
            验证通过返回 True

        抛出:
            ConfigValidationError: 配置验证失败时抛出
        """
        for field, expected_type in self.REQUIRED_FIELDS.items():
            if field not in config:
                raise ConfigValidationError(f"缺少必需字段: {field}")
            if not isinstance(config[field], expected_type):
                raise ConfigValidationError(
                    f"字段 '{field}' 必须是 {expected_type.__name__} 类型，"
                    f"实际为 {type(config[field]).__name__}"
                )

        settings = config["settings"]
        for field, expected_type in self.SETTINGS_FIELDS.items():
            if field not in settings:
                raise ConfigValidationError(f"settings 中缺少必需字段: {field}")
            value = settings[field]
            # bool 是 int 的子类，数值字段不接受 true/false
            if expected_type is int and isinstance(value, bool):
                raise ConfigValidationError(f"字段 'settings.{field}' 必须是 int 类型，实际为 bool")
            if not isinstance(value, expected_type):
                raise ConfigValidationError(
                    f"字段 'settings.{field}' 必须是 {expected_type.__name__} 类型，"
                    f"实际为 {type(value).__name__}"
                )
            if expected_type is int and value < 0:
                raise ConfigValidationError(f"字段 'settings.{field}' 不能为负数")

        if settings["proxy"]:
            try:
                InputValidator.validate_proxy_url(settings["proxy"])
            except InputValidationError as e:
                raise ConfigValidationError(f"settings.proxy 无效: {e}") from e

        logger.debug("配置验证通过")
        return True

    def save_config(self, config: dict[str, Any] | None = None) -> None:
        """
        保存配置到文件。

        参数:
            config: 要保存的配置字典，如果为 None 则保存当前配置
        """
        if config is not None:
            self.validate_config(config)
            self._config = config
        else:
            self.validate_config(self._config)
        try:
            self._ensure_config_dir()
            logger.debug(f"保存配置到 {self.config_file}")
            _atomic_save_json(self.config_file, self._config, indent=2)
        except (IOError, OSError) as e:
            logger.error(f"保存配置失败: {e}")
            raise ConfigSaveError(f"无法保存配置到 {self.config_file}: {e}") from e

    @property
    def config(self) -> dict[str, Any]:
        """
        获取配置字典（延迟加载）。

        返回:
            配置字典
        """
        if not self._config:
            self.load_config()
        return self._config

    def get_config(self) -> dict[str, Any]:
        """获取配置字典。"""
        return self.config

    def get_settings(self) -> dict[str, Any]:
        """获取 settings 配置部分。"""
        return self.config.get("settings", {})

    def set_setting(self, key: str, value: Any) -> None:
        """
        修改单个设置项并保存。

        参数:
            key: 设置项名称
            value: 设置值

        抛出:
            ConfigValidationError: 未知设置项或类型不符
            ConfigLoadError: 现有配置文件损坏
        """
        if key not in self.SETTINGS_FIELDS:
            raise ConfigValidationError(f"未知设置项: {key}")
        # 修改前严格重新加载，避免用默认配置覆盖用户写坏的配置文件
        config = json.loads(json.dumps(self.load_config(strict=True)))
        config["settings"][key] = value
        self.save_config(config)
        logger.info(f"已设置 {key} = {value}")

    def _setting(self, key: str) -> Any:
        return self.get_settings().get(key, self.DEFAULT_SETTINGS[key])

    def get_mirror(self) -> str:
        """获取版本索引镜像地址，保证以 / 结尾。"""
        mirror = self._setting("mirror")
        return mirror if mirror.endswith("/") else mirror + "/"

    def get_download_url_template(self) -> str:
        """获取下载 URL 模板。"""
        return self._setting("download_url_template")

    def get_arch_map(self) -> dict[str, str]:
        """获取架构名称映射。"""
        return self._setting("arch_map")

    def get_cache_expire_time(self) -> int:
        """获取索引缓存过期时间（秒）。"""
        return self._setting("cache_expire_time")

    def get_cache_max_age(self) -> int:
        """获取网络失败时允许回退的缓存最大年龄（秒）。"""
        return self._setting("cache_max_age")

    def get_staging_stale_age(self) -> int:
        """获取临时安装目录被视为过期的最小年龄（秒）。"""
        return self._setting("staging_stale_age")

    def get_request_timeout(self) -> int:
        """获取网络请求超时时间（秒）。"""
        return self._setting("request_timeout")

    def get_download_retry_count(self) -> int:
        """获取下载连接重试次数。"""
        return self._setting("download_retry_count")

    def get_download_speed_limit(self) -> int:
        """获取下载速度限制（字节/秒，0 表示不限制）。"""
        return self._setting("download_speed_limit")

    def _load_cache(self) -> None:
        """加载缓存文件，损坏时视为空缓存。"""
        self._cache_loaded = True
        if not self.cache_file.exists():
            self._cache = {}
            return
        try:
            with open(self.cache_file, "r", encoding="utf-8") as f:
                data = json.load(f)
            self._cache = data if isinstance(data, dict) else {}
        except (IOError, OSError, json.JSONDecodeError) as e:
            logger.warning(f"缓存文件损坏，忽略: {e}")
            self._cache = {}

    def get_cache(self) -> dict[str, Any]:
        """获取缓存字典。"""
        if not self._cache_loaded:
            self._load_cache()
        return self._cache

    def set_cache(self, key: str, value: Any) -> None:
        """
        设置缓存值。

        参数:
            key: 缓存键
            value: 缓存值
        """
        self.get_cache()[key] = value

    def save_cache(self, cache: dict[str, Any] | None = None) -> None:
        """
        保存缓存到文件。

        参数:
            cache: 要保存的缓存字典，如果为 None 则保存当前缓存
        """
        if cache is not None:
            self._cache = cache
            self._cache_loaded = True
        try:
            self._ensure_config_dir()
            logger.debug(f"保存缓存到 {self.cache_file}")
            _atomic_save_json(self.cache_file, self.get_cache(), indent=2)
        except (IOError, OSError) as e:
            logger.error(f"保存缓存失败: {e}")
            raise ConfigSaveError(f"无法保存缓存到 {self.cache_file}: {e}") from e

    def clear_cache(self) -> None:
        """清空缓存。"""
        self._cache = {}
        self._cache_loaded = True
        self.save_cache()
        logger.info("缓存已清空")

    def resolve_network_options(
        self,
        proxy: Optional[str] = None,
        verify_ssl: Optional[bool] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> NetworkOptions:
        """
        解析本次调用使用的网络选项。

        优先级：命令行参数 > 环境变量（NVM_PROXY / NVM_VERIFY_SSL）> 配置文件。

        参数:
            proxy: 命令行指定的代理，None 表示未指定
            verify_ssl: 命令行指定的 SSL 校验开关，None 表示未指定
            environ: 环境变量映射，默认为 os.environ

        返回:
            NetworkOptions 实例
        """
        env = os.environ if environ is None else environ

        if proxy is not None:
            effective_proxy = proxy
        elif env.get(PROXY_ENV) is not None:
            effective_proxy = env[PROXY_ENV]
        else:
            effective_proxy = self._setting("proxy")

        if verify_ssl is not None:
            effective_verify = verify_ssl
        elif env.get(VERIFY_SSL_ENV) is not None:
            effective_verify = _parse_bool(env[VERIFY_SSL_ENV])
        else:
            effective_verify = self._setting("verify_ssl")

        try:
            effective_proxy = InputValidator.validate_proxy_url(effective_proxy)
        except InputValidationError as e:
            raise ConfigValidationError(str(e)) from e

        if not effective_verify:
            logger.warning("已关闭 SSL 证书校验，下载内容仅依赖校验和保证完整性")

        return NetworkOptions(
            proxy=effective_proxy,
            verify_tls=effective_verify,
            timeout=float(self.get_request_timeout()),
        )
