"""
版本切换模块。

提供两种互相独立的切换方式：
- 默认版本：安装根目录旁的 default 符号链接，对所有新 shell 生效
- 会话版本：只针对当前 shell 的环境变量修改，不落盘
"""

import itertools
import os
import shlex
import sys
from pathlib import Path
from typing import Iterable, List, Mapping, Optional

from pynvm.utils.logger import get_logger
from pynvm.core.interfaces import ISwitchEngine
from pynvm.core.local_manager import LocalInventory
from pynvm.core.models import EnvMutation, SessionPointer, VersionEntry
from pynvm.core.version_spec import parse_version_key

logger = get_logger()

SESSION_VAR = "NVM_USE"
TEMP_LINK_PREFIX = ".default.tmp-"
SHELLS = ("sh", "fish")

_temp_counter = itertools.count()


class SwitchError(Exception):
    """版本切换错误异常。"""
    pass


def bin_dir_for(install_dir: str) -> str:
    """
    返回版本目录中可执行文件所在的目录。

    Windows 发行包的 node.exe 位于根目录，其他平台位于 bin 子目录。
    """
    if sys.platform.startswith("win"):
        return str(install_dir)
    return os.path.join(str(install_dir), "bin")


def _normalize(path: str) -> str:
    return os.path.normcase(os.path.abspath(path.rstrip("/\\") or path))


class SwitchEngine(ISwitchEngine):
    """
    版本切换引擎类。

    默认版本链接的替换总是先创建临时链接再重命名覆盖，
    读取方不会看到链接缺失的中间状态。
    实现 ISwitchEngine 抽象接口。
    """

    def __init__(self, link_path: Path, inventory: LocalInventory):
        """
        初始化版本切换引擎。

        参数:
            link_path: 默认版本链接路径
            inventory: 本地版本清单
        """
        self.link_path = Path(link_path)
        self.inventory = inventory

    def _require_installed(self, entry: VersionEntry) -> VersionEntry:
        installed = self.inventory.get(entry.version)
        if installed is None:
            raise SwitchError(f"{entry.version} 未安装或安装不完整")
        return installed

    def set_default(self, entry: VersionEntry) -> None:
        """
        把默认版本链接指向指定版本。

        参数:
            entry: 已安装的版本条目

        抛出:
            SwitchError: 版本未安装、链接路径被普通文件占用或创建链接失败
        """
        installed = self._require_installed(entry)
        if self.link_path.exists() and not self.link_path.is_symlink():
            raise SwitchError(f"{self.link_path} 已存在且不是符号链接，拒绝覆盖")

        self.link_path.parent.mkdir(parents=True, exist_ok=True)
        temp_link = self.link_path.parent / f"{TEMP_LINK_PREFIX}{os.getpid()}-{next(_temp_counter)}"
        try:
            os.symlink(os.path.abspath(installed.path), temp_link, target_is_directory=True)
            os.replace(temp_link, self.link_path)
        except OSError as e:
            if temp_link.is_symlink():
                temp_link.unlink()
            raise SwitchError(f"无法把默认版本设置为 {entry.version}: {e}") from e
        logger.info(f"默认版本已设置为 {installed.version}")

    def unset_default(self) -> None:
        """删除默认版本链接，链接不存在时什么也不做。"""
        if not self.link_path.is_symlink():
            if self.link_path.exists():
                raise SwitchError(f"{self.link_path} 不是符号链接，拒绝删除")
            logger.debug("默认版本链接不存在，无需删除")
            return
        try:
            self.link_path.unlink()
        except FileNotFoundError:
            return
        except OSError as e:
            raise SwitchError(f"无法删除默认版本链接: {e}") from e
        logger.info("已删除默认版本链接")

    def default_target(self) -> Optional[Path]:
        """
        返回默认版本链接指向的目录，不检查目标是否有效。

        返回:
            目标目录路径，没有链接返回 None
        """
        if not self.link_path.is_symlink():
            return None
        target = Path(os.readlink(self.link_path))
        if not target.is_absolute():
            target = self.link_path.parent / target
        return target

    def get_default(self) -> Optional[VersionEntry]:
        """
        获取当前默认版本。

        返回:
            已安装的版本条目，没有链接或链接指向无效安装返回 None
        """
        target = self.default_target()
        if target is None:
            return None
        entry = self.inventory.find_by_path(str(target))
        if entry is None:
            logger.warning(f"默认版本链接指向无效目录: {target}")
        return entry

    def _is_managed(self, path_entry: str) -> bool:
        root = _normalize(str(self.inventory.install_root))
        return _normalize(path_entry).startswith(root + os.sep)

    def _strip_managed(self, environ: Mapping[str, str]) -> List[str]:
        parts = environ.get("PATH", "").split(os.pathsep)
        return [p for p in parts if p and not self._is_managed(p)]

    def set_session(self, entry: VersionEntry, environ: Mapping[str, str]) -> SessionPointer:
        """
        生成把指定版本放到当前 shell 搜索路径最前面的环境变量修改。

        不修改默认版本链接，也不修改 environ 本身。

        参数:
            entry: 已安装的版本条目
            environ: 当前 shell 的环境变量

        返回:
            SessionPointer 实例，mutations 需要由调用者的 shell 执行

        抛出:
            SwitchError: 版本未安装
        """
        installed = self._require_installed(entry)
        bin_dir = bin_dir_for(installed.path)
        new_path = os.pathsep.join([bin_dir] + self._strip_managed(environ))
        logger.info(f"当前会话切换到 {installed.version}")
        return SessionPointer(
            version=installed.version,
            bin_dir=bin_dir,
            mutations=(EnvMutation("PATH", new_path), EnvMutation(SESSION_VAR, installed.version)),
        )

    def unset_session(self, environ: Mapping[str, str]) -> SessionPointer:
        """
        生成撤销当前 shell 版本覆盖的环境变量修改。

        参数:
            environ: 当前 shell 的环境变量

        返回:
            version 为 None 的 SessionPointer
        """
        new_path = os.pathsep.join(self._strip_managed(environ))
        return SessionPointer(
            version=None,
            bin_dir=None,
            mutations=(EnvMutation("PATH", new_path), EnvMutation(SESSION_VAR, None)),
        )

    def current_session(self, environ: Mapping[str, str]) -> Optional[str]:
        """读取当前 shell 的会话版本，格式无效时返回 None。"""
        value = environ.get(SESSION_VAR, "").strip().lstrip("v")
        if not value or parse_version_key(value) is None:
            return None
        return value


def render_shell(mutations: Iterable[EnvMutation], shell: str = "sh") -> str:
    """
    把环境变量修改渲染为可以 eval 的 shell 脚本。

    参数:
        mutations: 环境变量修改列表
        shell: "sh" 或 "fish"

    返回:
        shell 脚本文本

    抛出:
        SwitchError: 不支持的 shell
    """
    if shell not in SHELLS:
        raise SwitchError(f"不支持的 shell: {shell}，可选: {', '.join(SHELLS)}")

    lines = []
    for m in mutations:
        if shell == "fish":
            if m.value is None:
                lines.append(f"set -e {m.name}")
            elif m.name == "PATH":
                parts = " ".join(shlex.quote(p) for p in m.value.split(os.pathsep) if p)
                lines.append(f"set -gx PATH {parts}")
            else:
                lines.append(f"set -gx {m.name} {shlex.quote(m.value)}")
        else:
            if m.value is None:
                lines.append(f"unset {m.name}")
            else:
                lines.append(f"export {m.name}={shlex.quote(m.value)}")
    return "\n".join(lines) + "\n"
