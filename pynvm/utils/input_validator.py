"""
输入验证模块。

提供版本号、代理地址和文件路径等用户输入的验证功能。
"""

import os
import re
from typing import Optional

from pynvm.utils.logger import get_logger

logger = get_logger()


class InputValidationError(Exception):
    """输入验证错误异常。"""
    pass


class InputValidator:
    """
    输入验证器类。

    提供用户输入的验证和 sanitization 功能。
    """

    VERSION_TOKEN_PATTERN = re.compile(r'^[a-zA-Z0-9.]+$')
    MAX_VERSION_LENGTH = 64
    PROXY_URL_PATTERN = re.compile(
        r'^(?:https?|socks5h?)://'
        r'(?:[^@/\s]+@)?'
        r'[A-Za-z0-9.\-\[\]:]+'
        r'(?::\d+)?/?$',
        re.IGNORECASE
    )

    @classmethod
    def validate_version_token(cls, token: str) -> str:
        """
        验证版本号参数的基本格式。

        只检查长度和字符集，语义解析由 version_spec 负责。

        参数:
            token: 用户输入的版本号

        返回:
            去除首尾空白后的版本号

        抛出:
            InputValidationError: 版本号为空、过长或包含非法字符
        """
        if token is None or not token.strip():
            raise InputValidationError("版本号不能为空")

        token = token.strip()
        if len(token) > cls.MAX_VERSION_LENGTH:
            raise InputValidationError(f"版本号不能超过 {cls.MAX_VERSION_LENGTH} 个字符")

        if not cls.VERSION_TOKEN_PATTERN.match(token):
            raise InputValidationError(f"版本号包含非法字符: {token}")

        return token

    @classmethod
    def validate_proxy_url(cls, url: Optional[str]) -> Optional[str]:
        """
        验证代理 URL 的有效性。

        参数:
            url: 代理 URL，空值表示不使用代理

        返回:
            规范化后的代理 URL，未设置返回 None
        """
        if not url or not url.strip():
            return None

        url = url.strip()
        if not cls.PROXY_URL_PATTERN.match(url):
            raise InputValidationError(f"代理 URL 格式无效: {url}")

        return url

    @classmethod
    def safe_join_path(cls, base_path: str, *paths: str) -> str:
        """
        安全连接路径，防止路径遍历。

        参数:
            base_path: 基础路径
            *paths: 要连接的路径部分

        返回:
            安全连接后的路径

        抛出:
            InputValidationError: 如果结果路径位于 base_path 外部
        """
        base = os.path.abspath(base_path)
        joined = os.path.abspath(os.path.join(base, *paths))
        if joined != base and not joined.startswith(base + os.sep):
            raise InputValidationError(f"路径遍历检测: {joined}")
        return joined
