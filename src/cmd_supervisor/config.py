"""CMDSUP 环境变量配置管理。

环境变量:
    CMDSUP_GRACE_PERIOD: 发送 SIGINT 后等待子进程退出的宽限时间（秒）
        - 默认 10.0 秒
        - 限制在 0.1-300 秒范围，无效值使用默认值
        - 超时后强制杀死整个进程组

    CMDSUP_KILL_TIMEOUT: 强制杀死后等待回收子进程的时间（秒）
        - 默认 1.0 秒
        - 限制在 0.1-30 秒范围

    CMDSUP_SHELL: 执行命令使用的 shell
        - 默认 sh（以 `sh -c <cmd>` 方式执行）

    CMDSUP_VERBOSE: 详细模式
        - true/1/yes = 开启 (DEBUG 日志，打印 argv 与继承的环境变量)
        - false/0/no = 关闭 (默认)

    CMDSUP_LOG_DEBUG: 日志调试模式
        - true/1/yes = 开启 (DEBUG 日志输出到临时文件)
        - false/0/no = 关闭 (默认，日志输出到 stderr)
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

__all__ = [
    "Config",
    "load_config",
    "get_config",
    "reload_config",
    "DEFAULT_COMMAND",
    "DEFAULT_GRACE_PERIOD",
    "DEFAULT_KILL_TIMEOUT",
    "GRACE_PERIOD_RANGE",
    "KILL_TIMEOUT_RANGE",
    "clamp_seconds",
]

# 未提供 --cmd 时执行的占位命令
DEFAULT_COMMAND = "echo Please provide a command to run!"

DEFAULT_GRACE_PERIOD = 10.0
DEFAULT_KILL_TIMEOUT = 1.0

# 秒数取值范围（环境变量与命令行参数共用）
GRACE_PERIOD_RANGE = (0.1, 300.0)
KILL_TIMEOUT_RANGE = (0.1, 30.0)
DEFAULT_SHELL = "sh"


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """解析布尔值环境变量。"""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_seconds(
    value: str | None,
    default: float,
    minimum: float,
    maximum: float,
) -> float:
    """解析秒数环境变量，超出范围时截断。"""
    if not value:
        return default
    try:
        seconds = float(value)
    except ValueError:
        return default
    if seconds != seconds:  # NaN
        return default
    return clamp_seconds(seconds, minimum, maximum)


def clamp_seconds(seconds: float, minimum: float, maximum: float) -> float:
    """将秒数截断到 [minimum, maximum] 范围内。"""
    return max(minimum, min(seconds, maximum))


def _generate_log_file_path() -> str:
    """生成日志文件路径。

    Returns:
        临时目录下的日志文件绝对路径
    """
    log_dir = Path(tempfile.gettempdir()) / "cmd-supervisor"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"cmdsup_debug_{timestamp}.log"

    return str(log_file.resolve())


@dataclass
class Config:
    """CMDSUP 配置。

    Attributes:
        grace_period: SIGINT 之后到强制杀死之间的宽限时间（秒）
        kill_timeout: 强制杀死后等待回收的时间（秒）
        shell: 执行命令使用的 shell
        verbose: 详细模式（DEBUG 日志）
        log_debug: 日志调试模式（输出到临时文件）
        log_file: 日志文件路径（当 log_debug=True 时自动设置）
    """

    grace_period: float = DEFAULT_GRACE_PERIOD
    kill_timeout: float = DEFAULT_KILL_TIMEOUT
    shell: str = DEFAULT_SHELL
    verbose: bool = False
    log_debug: bool = False
    log_file: str | None = None

    def __repr__(self) -> str:
        return (
            f"Config(grace_period={self.grace_period}, "
            f"kill_timeout={self.kill_timeout}, "
            f"shell={self.shell}, "
            f"verbose={self.verbose}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file})"
        )


def load_config() -> Config:
    """从环境变量加载配置。"""
    log_debug = _parse_bool(os.environ.get("CMDSUP_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    return Config(
        grace_period=_parse_seconds(
            os.environ.get("CMDSUP_GRACE_PERIOD"),
            DEFAULT_GRACE_PERIOD,
            *GRACE_PERIOD_RANGE,
        ),
        kill_timeout=_parse_seconds(
            os.environ.get("CMDSUP_KILL_TIMEOUT"),
            DEFAULT_KILL_TIMEOUT,
            *KILL_TIMEOUT_RANGE,
        ),
        shell=os.environ.get("CMDSUP_SHELL", "").strip() or DEFAULT_SHELL,
        verbose=_parse_bool(os.environ.get("CMDSUP_VERBOSE"), default=False),
        log_debug=log_debug,
        log_file=log_file,
    )


# 全局配置实例（延迟加载）
_config: Config | None = None


def get_config() -> Config:
    """获取全局配置实例。"""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """重新加载配置（用于测试）。"""
    global _config
    _config = load_config()
    return _config
