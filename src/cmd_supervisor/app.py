"""cmd-supervisor 应用入口。

包含命令行解析、日志配置、监督流程的组装和主入口点。
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import math
import signal
import sys
from dataclasses import replace
from typing import Sequence

from .config import DEFAULT_COMMAND, GRACE_PERIOD_RANGE, Config, clamp_seconds, get_config
from .errors import RunCancelled, SupervisorError
from .launcher import build_descriptor
from .runtime import LifecycleController
from .signal_bridge import CancellationToken, SignalBridge

__all__ = ["run_supervisor", "main", "parse_args", "exit_code_for"]

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


class JsonSerializingFormatter(logging.Formatter):
    """尝试将日志参数中的对象 JSON 序列化的格式化器。"""

    def format(self, record: logging.LogRecord) -> str:
        if record.args:
            new_args = []
            for arg in record.args:
                try:
                    if hasattr(arg, "model_dump"):
                        # Pydantic 模型
                        new_args.append(json.dumps(arg.model_dump(mode="json"), ensure_ascii=False))
                    elif isinstance(arg, dict):
                        new_args.append(json.dumps(arg, ensure_ascii=False, default=str))
                    else:
                        new_args.append(arg)
                except (TypeError, ValueError):
                    new_args.append(arg)
            record.args = tuple(new_args)
        return super().format(record)


def _positive_seconds(value: str) -> float:
    try:
        seconds = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid number of seconds: {value!r}") from None
    if not math.isfinite(seconds) or seconds <= 0:
        raise argparse.ArgumentTypeError(
            f"grace period must be a positive finite number: {value!r}"
        )
    return clamp_seconds(seconds, *GRACE_PERIOD_RANGE)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """解析命令行参数。"""
    parser = argparse.ArgumentParser(
        prog="cmd-supervisor",
        description=(
            "Run a shell command, forward SIGINT/SIGTERM to its process group "
            "and kill it if it does not exit within the grace period."
        ),
    )
    parser.add_argument("--cmd", default=DEFAULT_COMMAND, help="Command to run")
    parser.add_argument(
        "--grace-period",
        type=_positive_seconds,
        default=None,
        help=(
            "Seconds between SIGINT and SIGKILL, clamped to 0.1-300 "
            "(default: CMDSUP_GRACE_PERIOD or 10)"
        ),
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log the resolved argv and inherited environment",
    )
    return parser.parse_args(argv)


def configure_logging(config: Config) -> None:
    """配置日志输出。

    - CMDSUP_LOG_DEBUG: DEBUG 日志输出到临时文件
    - CMDSUP_VERBOSE / --verbose: DEBUG 日志输出到 stderr
    - 默认: INFO 日志输出到 stderr
    """
    log_handlers: list[logging.Handler] = []

    if config.log_debug and config.log_file:
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(JsonSerializingFormatter(LOG_FORMAT))
        log_handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        log_handlers.append(stderr_handler)
        log_level = logging.DEBUG if config.verbose else logging.INFO

    # 配置 root logger（第三方库）为 WARNING，减少噪音
    logging.basicConfig(
        level=logging.WARNING,
        handlers=log_handlers,
        force=True,
    )
    # 只对 cmd_supervisor 命名空间启用详细日志
    logging.getLogger("cmd_supervisor").setLevel(log_level)


async def run_supervisor(command: str, config: Config | None = None) -> int:
    """运行并监督一个命令。

    并发结构：
    - SignalBridge: 监听 SIGINT/SIGTERM，第一次收到时触发取消令牌
    - LifecycleController: 启动子进程并在子进程退出与取消之间竞速

    Args:
        command: 要执行的 shell 命令
        config: 配置（默认读取全局配置）

    Returns:
        子进程退出码（成功时为 0）

    Raises:
        SupervisorError: 启动失败、异常退出或被取消
    """
    config = config or get_config()

    token = CancellationToken()
    bridge = SignalBridge(token)
    controller = LifecycleController(
        token,
        grace_period=config.grace_period,
        kill_timeout=config.kill_timeout,
    )
    descriptor = build_descriptor(command, shell=config.shell)

    try:
        await bridge.start()
        return await controller.run(descriptor)
    finally:
        await bridge.stop()
        logger.debug(f"Supervisor finished (state={controller.state.value})")


def exit_code_for(error: BaseException | None) -> int:
    """将运行结果映射为进程退出码。

    - 成功: 0
    - 被取消: 128 + 触发信号编号（与 shell 约定一致，SIGINT -> 130）
    - 其他错误: 1
    """
    if error is None:
        return 0
    if isinstance(error, RunCancelled):
        sig = error.signal if error.signal is not None else signal.SIGINT
        return 128 + int(sig)
    return 1


def main(argv: Sequence[str] | None = None) -> None:
    """主入口点。"""
    args = parse_args(argv)

    # 命令行参数覆盖环境变量，不修改全局配置实例
    config = get_config()
    if args.verbose:
        config = replace(config, verbose=True)
    if args.grace_period is not None:
        config = replace(config, grace_period=args.grace_period)

    configure_logging(config)
    logger.info("Logger initialized")
    logger.debug(f"Starting cmd-supervisor: {config}")

    error: SupervisorError | None = None
    try:
        asyncio.run(run_supervisor(args.cmd, config))
    except RunCancelled as e:
        error = e
        logger.warning(
            f"Command cancelled: {e} (cmd={args.cmd!r}, "
            f"signal={e.signal.name if e.signal else None}, killed={e.killed})"
        )
    except SupervisorError as e:
        error = e
        logger.error(f"Failed to run the command: {e} (cmd={args.cmd!r})")

    sys.exit(exit_code_for(error))


if __name__ == "__main__":
    main()
