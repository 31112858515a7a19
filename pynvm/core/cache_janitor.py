"""
安装目录清理模块。

删除中断安装留下的临时目录、损坏的版本目录和残留的临时链接。
"""

import os
import shutil
import time
from typing import Mapping, Optional, Set

from pynvm.utils.logger import get_logger
from pynvm.core.env_manager import SwitchEngine, TEMP_LINK_PREFIX
from pynvm.core.local_manager import LocalInventory
from pynvm.core.models import CleanResult, InstallStatus

logger = get_logger()


def _newest_mtime(path: str) -> float:
    """返回目录及其内部所有文件中最新的修改时间。"""
    newest = os.lstat(path).st_mtime
    for root, dirs, files in os.walk(path):
        for name in dirs + files:
            try:
                newest = max(newest, os.lstat(os.path.join(root, name)).st_mtime)
            except FileNotFoundError:
                continue
    return newest


def _same_path(path: str) -> str:
    return os.path.normcase(os.path.realpath(path))


class CacheJanitor:
    """
    清理器类。

    只删除能确认不再使用的目录：默认版本链接的目标和本进程会话的目标
    即使已损坏也会保留。
    """

    def __init__(
        self,
        inventory: LocalInventory,
        switch_engine: SwitchEngine,
        stale_age: int = 3600,
        environ: Optional[Mapping[str, str]] = None,
    ):
        """
        初始化清理器。

        参数:
            inventory: 本地版本清单
            switch_engine: 版本切换引擎，用于确定受保护的版本
            stale_age: 临时目录超过该秒数未修改才视为废弃
            environ: 当前进程的环境变量，默认 os.environ
        """
        self.inventory = inventory
        self.switch_engine = switch_engine
        self.stale_age = stale_age
        self.environ = os.environ if environ is None else environ

    def _protected_paths(self) -> Set[str]:
        protected = set()
        target = self.switch_engine.default_target()
        if target is not None:
            protected.add(_same_path(str(target)))
        session_version = self.switch_engine.current_session(self.environ)
        if session_version:
            protected.add(_same_path(str(self.inventory.version_dir(session_version))))
        return protected

    def clean(self, now: Optional[float] = None) -> CleanResult:
        """
        扫描安装根目录并删除废弃的目录。

        参数:
            now: 当前时间戳（秒），默认 time.time()

        返回:
            CleanResult，包含已删除和保留的路径
        """
        now = time.time() if now is None else now
        protected = self._protected_paths()
        result = CleanResult()

        for item in self.inventory.scan_incomplete():
            if item.status is InstallStatus.DOWNLOADING:
                try:
                    age = now - _newest_mtime(item.path)
                except FileNotFoundError:
                    continue
                if age < self.stale_age:
                    logger.debug(f"临时目录仍在使用中，保留: {item.path}")
                    result.retained.append(item.path)
                    continue
            elif _same_path(item.path) in protected:
                logger.warning(f"{item.path} 已损坏但仍被引用，保留")
                result.retained.append(item.path)
                continue
            self._remove_tree(item.path, result)

        self._clean_temp_links(now, result)
        logger.info(f"清理完成: 删除 {len(result.removed)} 项，保留 {len(result.retained)} 项")
        return result

    def _remove_tree(self, path: str, result: CleanResult) -> None:
        try:
            shutil.rmtree(path)
        except FileNotFoundError:
            return
        except OSError as e:
            logger.error(f"删除 {path} 失败: {e}")
            result.retained.append(path)
            return
        logger.info(f"已删除 {path}")
        result.removed.append(path)

    def _clean_temp_links(self, now: float, result: CleanResult) -> None:
        link_dir = self.switch_engine.link_path.parent
        if not link_dir.is_dir():
            return
        for candidate in link_dir.glob(f"{TEMP_LINK_PREFIX}*"):
            try:
                age = now - os.lstat(candidate).st_mtime
                if age < self.stale_age:
                    result.retained.append(str(candidate))
                    continue
                candidate.unlink()
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.error(f"删除临时链接 {candidate} 失败: {e}")
                result.retained.append(str(candidate))
                continue
            logger.info(f"已删除临时链接 {candidate}")
            result.removed.append(str(candidate))
