"""
核心模块抽象接口定义。

定义配置管理、远程索引、本地版本清单和版本切换的抽象接口。
"""

from abc import ABC, abstractmethod
from typing import Any, List, Mapping, Optional


class IConfigManager(ABC):
    """配置管理器抽象接口。"""

    @abstractmethod
    def get_config(self) -> dict[str, Any]:
        """获取配置字典。"""
        pass

    @abstractmethod
    def save_config(self, config: dict[str, Any] | None = None) -> None:
        """保存配置到文件。"""
        pass

    @abstractmethod
    def get_settings(self) -> dict[str, Any]:
        """获取 settings 配置部分。"""
        pass

    @abstractmethod
    def get_cache(self) -> dict[str, Any]:
        """获取缓存字典。"""
        pass

    @abstractmethod
    def set_cache(self, key: str, value: Any) -> None:
        """设置缓存值。"""
        pass

    @abstractmethod
    def save_cache(self, cache: dict[str, Any] | None = None) -> None:
        """保存缓存到文件。"""
        pass


class IRemoteIndexClient(ABC):
    """远程版本索引客户端抽象接口。"""

    @abstractmethod
    def get_index(self):
        """获取版本目录快照，必要时访问网络。"""
        pass

    @abstractmethod
    def peek_index(self):
        """不访问网络，返回已有快照，没有则返回 None。"""
        pass

    @abstractmethod
    def fetch_checksum(self, entry) -> str:
        """获取指定版本安装包的校验和。"""
        pass


class ILocalInventory(ABC):
    """本地版本清单抽象接口。"""

    @abstractmethod
    def list(self) -> List[Any]:
        """按版本号降序列出已安装版本。"""
        pass

    @abstractmethod
    def has(self, version: str) -> bool:
        """检查指定版本是否已完整安装。"""
        pass

    @abstractmethod
    def get(self, version: str) -> Optional[Any]:
        """获取已安装版本条目，未安装返回 None。"""
        pass


class ISwitchEngine(ABC):
    """版本切换引擎抽象接口。"""

    @abstractmethod
    def set_default(self, entry) -> None:
        """把默认版本链接指向指定版本。"""
        pass

    @abstractmethod
    def unset_default(self) -> None:
        """删除默认版本链接。"""
        pass

    @abstractmethod
    def get_default(self) -> Optional[Any]:
        """获取当前默认版本。"""
        pass

    @abstractmethod
    def set_session(self, entry, environ: Mapping[str, str]):
        """生成仅作用于当前 shell 的环境变量修改。"""
        pass

    @abstractmethod
    def unset_session(self, environ: Mapping[str, str]):
        """生成撤销当前 shell 版本覆盖的环境变量修改。"""
        pass

    @abstractmethod
    def current_session(self, environ: Mapping[str, str]) -> Optional[str]:
        """读取当前 shell 的会话版本。"""
        pass
