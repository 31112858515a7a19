"""
pynvm 工具模块。

提供日志记录、输入验证、重试和限速等工具功能。
"""

from .logger import get_logger, setup_logger, set_log_level
from .retry import RetryHandler
from .speed_limiter import SpeedLimiter
from .input_validator import InputValidator, InputValidationError

__all__ = [
    "get_logger",
    "setup_logger",
    "set_log_level",
    "RetryHandler",
    "SpeedLimiter",
    "InputValidator",
    "InputValidationError",
]
