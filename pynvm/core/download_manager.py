"""
安装模块。

提供版本的下载、校验、解压和安装功能。安装过程全部在安装根目录下的临时目录中
进行，校验通过后通过一次目录重命名出现在最终位置。
"""

import hashlib
import os
import shutil
import tarfile
import tempfile
import zipfile
from pathlib import Path
from typing import Callable, Optional

import requests

from pynvm.utils.logger import get_logger
from pynvm.utils.retry import RetryHandler
from pynvm.utils.speed_limiter import SpeedLimiter
from pynvm.utils.input_validator import InputValidator, InputValidationError
from pynvm.core.config_manager import ConfigManager, NetworkOptions
from pynvm.core.interfaces import IRemoteIndexClient
from pynvm.core.local_manager import LocalInventory, STAGING_PREFIX, write_marker
from pynvm.core.models import InstallStatus, VersionEntry
from pynvm.core.remote_fetcher import NetworkError

logger = get_logger()

CHUNK_SIZE = 64 * 1024

PostInstallHook = Callable[[str, str], None]


class InstallError(Exception):
    """安装错误异常。"""

    def __init__(self, version: str, message: str):
        self.version = version
        super().__init__(message)


class ChecksumMismatchError(InstallError):
    """下载内容的校验和与版本目录声明的不一致。"""

    def __init__(self, version: str, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__(version, f"{version} 校验和不匹配: 期望 {expected}，实际 {actual}")


class DownloadInterruptedError(InstallError):
    """下载中断，临时目录保留给清理器处理。"""

    def __init__(self, version: str, staging_dir: str, reason: str):
        self.staging_dir = staging_dir
        message = f"下载 {version} 中断: {reason}"
        if staging_dir:
            message = f"{message}（临时目录: {staging_dir}）"
        super().__init__(version, message)


class ExtractionError(InstallError):
    """安装包解压失败。"""
    pass


class Installer:
    """
    安装器类。

    负责把一个具体版本下载、校验并安装到独立的版本目录中。
    重复安装同一版本不会重复下载。
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        inventory: LocalInventory,
        index_client: IRemoteIndexClient,
        network: Optional[NetworkOptions] = None,
        retry_handler: Optional[RetryHandler] = None,
    ):
        """
        初始化安装器。

        参数:
            config_manager: 配置管理器实例
            inventory: 本地版本清单
            index_client: 远程索引客户端，用于获取校验和
            network: 网络选项，默认从配置解析
            retry_handler: 建立下载连接时使用的重试处理器
        """
        self.config_manager = config_manager
        self.inventory = inventory
        self.index_client = index_client
        self.network = network or config_manager.resolve_network_options()
        self.retry_handler = retry_handler or RetryHandler(
            max_retries=config_manager.get_download_retry_count()
        )

    @property
    def install_root(self) -> Path:
        return self.inventory.install_root

    def install(
        self,
        entry: VersionEntry,
        progress_callback: Optional[Callable[[int, int], None]] = None,
        post_install: Optional[PostInstallHook] = None,
    ) -> VersionEntry:
        """
        安装指定版本。

        参数:
            entry: 解析得到的版本条目
            progress_callback: 下载进度回调 (已下载字节, 总字节)
            post_install: 安装成功后调用的钩子 (版本号, 安装目录)

        返回:
            状态为 installed 的版本条目

        抛出:
            ChecksumMismatchError: 校验失败，临时目录已删除
            DownloadInterruptedError: 下载中断，临时目录保留
            InstallError: 其他安装失败
        """
        existing = self.inventory.get(entry.version)
        if existing is not None:
            logger.info(f"{entry.version} 已安装: {existing.path}")
            return existing

        if not entry.download_url:
            raise InstallError(entry.version, f"{entry.version} 没有下载地址")

        expected = self._resolve_checksum(entry)
        response = self._connect(entry)

        try:
            self.install_root.mkdir(parents=True, exist_ok=True)
            staging_dir = Path(tempfile.mkdtemp(prefix=f"{STAGING_PREFIX}v{entry.version}-", dir=self.install_root))
        except OSError as e:
            response.close()
            raise InstallError(entry.version, f"无法创建 {entry.version} 的临时目录: {e}") from e
        logger.info(f"开始安装 {entry.version}，临时目录: {staging_dir}")

        archive_path = staging_dir / entry.download_url.rsplit("/", 1)[-1]
        actual = self._download(entry, response, archive_path, staging_dir, progress_callback)

        if actual != expected:
            shutil.rmtree(staging_dir, ignore_errors=True)
            logger.error(f"{entry.version} 校验和不匹配，已删除临时目录")
            raise ChecksumMismatchError(entry.version, expected, actual)

        payload_dir = staging_dir / "payload"
        try:
            self._extract_archive(entry.version, archive_path, payload_dir)
        except ExtractionError:
            shutil.rmtree(staging_dir, ignore_errors=True)
            raise
        except (OSError, tarfile.TarError, zipfile.BadZipFile) as e:
            shutil.rmtree(staging_dir, ignore_errors=True)
            raise ExtractionError(entry.version, f"解压 {entry.version} 失败: {e}") from e

        write_marker(payload_dir, entry, actual)
        installed = self._promote(entry, payload_dir, staging_dir)

        if post_install is not None:
            post_install(installed.version, installed.path)
        return installed

    def _resolve_checksum(self, entry: VersionEntry) -> str:
        try:
            checksum = self.index_client.fetch_checksum(entry)
        except NetworkError as e:
            raise InstallError(entry.version, f"无法获取 {entry.version} 的校验和: {e}") from e
        if not checksum:
            raise InstallError(entry.version, f"{entry.version} 没有可用的校验和，拒绝安装")
        return checksum

    def _connect(self, entry: VersionEntry) -> requests.Response:
        """
        建立下载连接，临时性错误按指数退避重试。

        参数:
            entry: 版本条目

        返回:
            流式响应对象
        """
        logger.info(f"正在从 {entry.download_url} 下载 {entry.version}")

        def _do_connect():
            response = requests.get(entry.download_url, stream=True, **self.network.as_requests_kwargs())
            response.raise_for_status()
            return response

        try:
            return self.retry_handler.execute(_do_connect)
        except requests.exceptions.RequestException as e:
            raise DownloadInterruptedError(entry.version, "", str(e)) from e

    def _download(
        self,
        entry: VersionEntry,
        response: requests.Response,
        archive_path: Path,
        staging_dir: Path,
        progress_callback: Optional[Callable[[int, int], None]],
    ) -> str:
        """
        流式写入安装包，边写边计算 sha256。

        参数:
            entry: 版本条目
            response: 已建立的流式响应
            archive_path: 安装包保存路径
            staging_dir: 临时目录
            progress_callback: 下载进度回调

        返回:
            下载内容的 sha256 校验和
        """
        digest = hashlib.sha256()
        speed_limiter = SpeedLimiter(self.config_manager.get_download_speed_limit())
        total = int(response.headers.get("content-length") or 0)
        encoded = bool(response.headers.get("content-encoding"))
        downloaded = 0

        try:
            with response, open(archive_path, "wb") as f:
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    if not chunk:
                        continue
                    digest.update(chunk)
                    speed_limiter.write_with_limit(f, chunk)
                    downloaded += len(chunk)
                    if progress_callback and total > 0:
                        progress_callback(downloaded, total)
        except (requests.exceptions.RequestException, OSError) as e:
            logger.error(f"下载 {entry.version} 中断，已下载 {downloaded} 字节")
            raise DownloadInterruptedError(entry.version, str(staging_dir), str(e)) from e

        if total and not encoded and downloaded != total:
            raise DownloadInterruptedError(
                entry.version, str(staging_dir), f"只收到 {downloaded}/{total} 字节"
            )

        logger.info(f"下载完成: {downloaded} 字节")
        return digest.hexdigest()

    def _extract_archive(self, version: str, archive_path: Path, target_dir: Path) -> None:
        """
        解压安装包，防止路径遍历，并去掉唯一的顶层目录。

        参数:
            version: 版本号，用于错误信息
            archive_path: 压缩包路径
            target_dir: 目标目录（不能已存在）
        """
        unpack_dir = target_dir.parent / "unpack"
        unpack_dir.mkdir()
        name = archive_path.name

        if name.endswith(".zip"):
            with zipfile.ZipFile(archive_path, "r") as zf:
                for member in zf.namelist():
                    self._check_member(version, unpack_dir, member)
                zf.extractall(unpack_dir)
        elif name.endswith((".tar.gz", ".tgz", ".tar.xz")):
            with tarfile.open(archive_path, "r:*") as tf:
                for member in tf.getmembers():
                    self._check_member(version, unpack_dir, member.name)
                    if member.issym():
                        self._check_member(version, unpack_dir, os.path.dirname(member.name), member.linkname)
                    elif member.islnk():
                        self._check_member(version, unpack_dir, member.linkname)
                    elif not (member.isfile() or member.isdir()):
                        raise ExtractionError(version, f"压缩包包含不支持的成员类型: {member.name}")
                if hasattr(tarfile, "data_filter"):
                    tf.extractall(unpack_dir, filter="data")
                else:
                    tf.extractall(unpack_dir)
        else:
            raise ExtractionError(version, f"不支持的安装包格式: {name}")

        children = list(unpack_dir.iterdir())
        if len(children) == 1 and children[0].is_dir():
            os.rename(children[0], target_dir)
            unpack_dir.rmdir()
        else:
            os.rename(unpack_dir, target_dir)

    @staticmethod
    def _check_member(version: str, base: Path, *parts: str) -> None:
        """检查压缩包成员（或链接目标）解析后仍位于解压目录内。"""
        if any(p.startswith(("/", "\\")) or os.path.isabs(p) for p in parts):
            raise ExtractionError(version, f"压缩包包含非法路径: {'/'.join(parts)}")
        try:
            InputValidator.safe_join_path(str(base), *parts)
        except InputValidationError as e:
            raise ExtractionError(version, f"压缩包包含非法路径: {'/'.join(parts)}") from e

    def _promote(self, entry: VersionEntry, payload_dir: Path, staging_dir: Path) -> VersionEntry:
        """
        把校验过的目录重命名到最终位置。

        并发安装同一版本时，重命名失败且最终目录已是有效安装，视为成功。

        参数:
            entry: 版本条目
            payload_dir: 已解压并写入完整性标记的目录
            staging_dir: 临时目录

        返回:
            已安装的版本条目
        """
        final_dir = self.inventory.version_dir(entry.version)
        try:
            os.rename(payload_dir, final_dir)
        except OSError as e:
            winner = self.inventory.get(entry.version)
            shutil.rmtree(staging_dir, ignore_errors=True)
            if winner is not None:
                logger.info(f"{entry.version} 已被其他进程安装，使用现有安装")
                return winner
            raise InstallError(
                entry.version, f"无法移动 {entry.version} 到 {final_dir}: {e}（目录损坏时请先执行 cleanup）"
            ) from e

        shutil.rmtree(staging_dir, ignore_errors=True)
        logger.info(f"成功安装 {entry.version} 到 {final_dir}")
        return entry.with_status(InstallStatus.INSTALLED, str(final_dir))
