"""
pynvm 命令行接口模块。
"""

import argparse
import json
import logging
import sys
from typing import Optional

from pynvm import __version__
from pynvm.core.config_manager import ConfigManager, ConfigLoadError, ConfigSaveError, ConfigValidationError
from pynvm.core.download_manager import InstallError
from pynvm.core.env_manager import SHELLS, SwitchError, render_shell
from pynvm.core.remote_fetcher import NetworkError
from pynvm.core.resolver import ResolutionError
from pynvm.core.version_manager import VersionManager, VersionManagerError
from pynvm.core.version_spec import ParseError
from pynvm.core import version_utils
from pynvm.utils.logger import get_logger, set_log_level

logger = get_logger()

HANDLED_ERRORS = (
    ParseError,
    NetworkError,
    ResolutionError,
    InstallError,
    SwitchError,
    VersionManagerError,
    ConfigValidationError,
    ConfigLoadError,
    ConfigSaveError,
)


def _info(message: str) -> None:
    """输出给用户看的提示信息，走 stderr，stdout 留给 shell 代码和列表。"""
    print(message, file=sys.stderr)


def create_parser() -> argparse.ArgumentParser:
    """
    创建并配置命令行参数解析器。

    返回:
        配置好的 ArgumentParser 实例
    """
    parser = argparse.ArgumentParser(
        prog="pynvm",
        description="pynvm - Node.js 版本管理器",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
环境变量:
  NVM_HOME          数据目录（默认 ~/.pynvm）
  NVM_PROXY         网络代理 URL
  NVM_VERIFY_SSL    (true/false) 是否校验 SSL 证书

示例:
  pynvm install lts
  pynvm install latest
  eval "$(pynvm use 20)"
  pynvm uninstall 22.3 --latest
        """,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="启用详细输出",
    )
    parser.add_argument(
        "--proxy",
        "-p",
        type=str,
        default=None,
        help="网络代理 URL",
    )
    parser.add_argument(
        "--verifyssl",
        "--ssl",
        dest="verifyssl",
        action="store_true",
        default=None,
        help="校验 SSL 证书",
    )
    parser.add_argument(
        "--no-ssl",
        "--no-verifyssl",
        dest="verifyssl",
        action="store_false",
        default=None,
        help="不校验 SSL 证书",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        title="命令",
        description="可用的 CLI 命令",
    )

    install_parser = subparsers.add_parser("install", help="安装指定版本的 Node.js")
    install_parser.add_argument("version", help="版本号、前缀或别名 (latest, lts)")

    uninstall_parser = subparsers.add_parser("uninstall", help="卸载指定版本的 Node.js")
    uninstall_parser.add_argument("version", help="已安装的版本号或前缀")
    uninstall_parser.add_argument(
        "--latest",
        action="store_true",
        help="前缀匹配多个版本时卸载最高的版本",
    )

    for name, aliases, help_text in (
        ("use", [], "在当前 shell 中使用指定版本"),
        ("stop", ["unuse"], "撤销当前 shell 中的版本切换"),
    ):
        sub = subparsers.add_parser(name, aliases=aliases, help=help_text)
        if name == "use":
            sub.add_argument("version", nargs="?", default=None, help="版本号（省略则使用默认版本）")
        sub.add_argument(
            "--shell",
            choices=SHELLS,
            default="sh",
            help="输出的 shell 代码格式",
        )

    link_parser = subparsers.add_parser("link", help="把指定版本设置为默认版本")
    link_parser.add_argument("version", help="已安装的版本号或前缀")

    subparsers.add_parser("unlink", help="删除默认版本")

    ls_parser = subparsers.add_parser("ls", help="列出已安装的版本")
    ls_parser.add_argument(
        "--format",
        "-f",
        choices=["simple", "json"],
        default="simple",
        help="输出格式",
    )

    ls_remote_parser = subparsers.add_parser("ls-remote", help="列出可安装的远程版本")
    ls_remote_parser.add_argument(
        "--format",
        "-f",
        choices=["simple", "json"],
        default="simple",
        help="输出格式",
    )

    cleanup_parser = subparsers.add_parser("cleanup", help="清理中断安装留下的临时文件")
    cleanup_parser.add_argument(
        "--index-cache",
        action="store_true",
        help="同时清空本地缓存的远程版本索引",
    )

    config_parser = subparsers.add_parser("config", help="显示或修改配置")
    config_parser.add_argument(
        "--set",
        "-s",
        type=str,
        help="设置配置值（格式：key=value）",
    )

    return parser


def run_cli(args: argparse.Namespace, config_manager: Optional[ConfigManager] = None) -> int:
    """
    运行命令行接口。

    参数:
        args: 解析后的命令行参数
        config_manager: 配置管理器实例，默认按 NVM_HOME 创建

    返回:
        退出码（0 表示成功）
    """
    if args.verbose:
        set_log_level(logging.DEBUG)

    if args.command is None:
        _info("未指定命令。使用 --help 查看帮助信息。")
        return 1

    command_handlers = {
        "install": handle_install,
        "uninstall": handle_uninstall,
        "use": handle_use,
        "stop": handle_stop,
        "unuse": handle_stop,
        "link": handle_link,
        "unlink": handle_unlink,
        "ls": handle_ls,
        "ls-remote": handle_ls_remote,
        "cleanup": handle_cleanup,
        "config": handle_config,
    }

    handler = command_handlers.get(args.command)
    if handler is None:
        _info(f"未知命令: {args.command}")
        return 1

    try:
        config_manager = config_manager or ConfigManager()
        return handler(args, config_manager)
    except HANDLED_ERRORS as e:
        logger.debug(f"{args.command} 失败", exc_info=True)
        _info(f"错误: {e}")
        return 1


def _get_manager(args: argparse.Namespace, config_manager: ConfigManager) -> VersionManager:
    """按命令行的网络选项创建版本管理器。"""
    network = config_manager.resolve_network_options(
        proxy=args.proxy,
        verify_ssl=args.verifyssl,
    )
    return VersionManager(config_manager, network=network)


def handle_install(args: argparse.Namespace, config_manager: ConfigManager) -> int:
    """
    处理 install 命令：解析并安装版本。

    参数:
        args: 解析后的命令行参数
        config_manager: 配置管理器实例

    返回:
        退出码
    """
    version_manager = _get_manager(args, config_manager)
    _info(f"正在安装 Node.js {args.version}...")

    def progress(downloaded: int, total: int):
        percent = int(downloaded / total * 100) if total > 0 else 0
        bar_len = 40
        filled = int(bar_len * percent / 100)
        bar = "=" * filled + "-" * (bar_len - filled)
        print(f"\r[{bar}] {percent}% ({downloaded}/{total} 字节)", end="", file=sys.stderr, flush=True)

    entry = version_manager.install(args.version, progress_callback=progress)
    _info(f"\n已安装 Node.js v{entry.version}: {entry.path}")
    if version_manager.current_default() is None:
        _info(f"提示: 执行 pynvm link {entry.version} 把它设置为默认版本")
    return 0


def handle_uninstall(args: argparse.Namespace, config_manager: ConfigManager) -> int:
    """处理 uninstall 命令：卸载已安装版本。"""
    version_manager = _get_manager(args, config_manager)
    entry = version_manager.uninstall(args.version, latest=args.latest)
    _info(f"已卸载 Node.js v{entry.version}")
    return 0


def handle_use(args: argparse.Namespace, config_manager: ConfigManager) -> int:
    """
    处理 use 命令：输出切换当前 shell 版本的 shell 代码。

    需要配合 eval 使用，例如 eval "$(pynvm use 20)"。
    """
    version_manager = _get_manager(args, config_manager)
    pointer = version_manager.use(args.version)
    sys.stdout.write(render_shell(pointer.mutations, args.shell))
    _info(f"当前 shell 使用 Node.js v{pointer.version}")
    return 0


def handle_stop(args: argparse.Namespace, config_manager: ConfigManager) -> int:
    """处理 stop 命令：输出撤销当前 shell 版本切换的 shell 代码。"""
    version_manager = _get_manager(args, config_manager)
    pointer = version_manager.stop()
    sys.stdout.write(render_shell(pointer.mutations, args.shell))
    _info("已撤销当前 shell 的版本切换")
    return 0


def handle_link(args: argparse.Namespace, config_manager: ConfigManager) -> int:
    """处理 link 命令：设置默认版本。"""
    version_manager = _get_manager(args, config_manager)
    entry = version_manager.link(args.version)
    _info(f"默认版本已设置为 Node.js v{entry.version}")
    _info(f"请确保 {version_manager.switch_engine.link_path} 下的可执行目录在 PATH 中")
    return 0


def handle_unlink(args: argparse.Namespace, config_manager: ConfigManager) -> int:
    """处理 unlink 命令：删除默认版本。"""
    version_manager = _get_manager(args, config_manager)
    version_manager.unlink()
    _info("已删除默认版本")
    return 0


def handle_ls(args: argparse.Namespace, config_manager: ConfigManager) -> int:
    """
    处理 ls 命令：列出已安装的版本。

    默认版本用 * 标记，当前 shell 使用的版本用 > 标记。
    """
    version_manager = _get_manager(args, config_manager)
    versions = version_manager.list_local()
    default = version_manager.current_default()
    default_version = default.version if default else None
    session_version = version_manager.current_session()

    if args.format == "json":
        result = {
            "default": default_version,
            "session": session_version,
            "versions": [dict(v.to_dict(), path=v.path) for v in versions],
        }
        print(json.dumps(result, indent=2, ensure_ascii=False))
        return 0

    if not versions:
        _info("没有已安装的版本")
        return 0

    for v in versions:
        marker = ">" if v.version == session_version else ("*" if v.version == default_version else " ")
        label = f" ({v.lts})" if v.lts else ""
        print(f"{marker} v{v.version}{label}")
        if args.verbose:
            print(f"     路径: {v.path}")
    return 0


def handle_ls_remote(args: argparse.Namespace, config_manager: ConfigManager) -> int:
    """处理 ls-remote 命令：按主版本分组列出远程版本。"""
    version_manager = _get_manager(args, config_manager)
    versions = version_manager.list_remote()
    installed = {v.version for v in version_manager.list_local()}

    if args.format == "json":
        print(json.dumps([v.to_dict() for v in versions], indent=2, ensure_ascii=False))
        return 0

    for group in version_utils.group_versions_by_major(versions):
        lts = f" LTS: {group['lts']}" if group["lts"] else ""
        print(f"v{group['major_version']}.x{lts}")
        for v in group["versions"]:
            mark = " (已安装)" if v.version in installed else ""
            print(f"    v{v.version}{mark}")
    return 0


def handle_cleanup(args: argparse.Namespace, config_manager: ConfigManager) -> int:
    """处理 cleanup 命令：清理临时目录和损坏的安装。"""
    version_manager = _get_manager(args, config_manager)
    result = version_manager.cleanup()
    for path in result.removed:
        _info(f"已删除: {path}")
    for path in result.retained:
        _info(f"保留: {path}")
    _info(f"清理完成，删除 {len(result.removed)} 项")
    if args.index_cache:
        version_manager.clear_index_cache()
        _info("已清空版本索引缓存")
    return 0


def handle_config(args: argparse.Namespace, config_manager: ConfigManager) -> int:
    """
    处理 config 命令：显示或修改配置。

    参数:
        args: 解析后的命令行参数
        config_manager: 配置管理器实例

    返回:
        退出码
    """
    if args.set:
        key, sep, value = args.set.partition("=")
        if not key or not sep:
            _info("格式无效。请使用: key=value")
            return 1

        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            pass

        config_manager.set_setting(key, value)
        _info(f"已设置 {key} = {value}")
    else:
        print(json.dumps(config_manager.get_config(), indent=2, ensure_ascii=False))
    return 0
