"""命令启动描述构建模块。

根据原始命令字符串和调用者身份生成最终的 argv 与环境变量：
- 未设置 SUDO_USER: 直接执行 `sh -c <cmd>`
- 设置了 SUDO_USER: 以原调用用户身份降权执行，保留环境变量并显式
  重新指定 PATH（sudo 会重置 PATH）

Example:
    ```python
    descriptor = build_descriptor("sleep 30")
    # descriptor.argv == ("sh", "-c", "sleep 30")

    descriptor = build_descriptor("make", {"SUDO_USER": "alice", "PATH": "/usr/bin"})
    # descriptor.argv == ("sudo", "-E", "-u", "alice", "env", "PATH=/usr/bin", "sh", "-c", "make")
    ```
"""

from __future__ import annotations

import logging
import os
import shlex
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from .config import DEFAULT_SHELL

__all__ = ["CommandDescriptor", "build_descriptor", "log_descriptor"]

logger = logging.getLogger(__name__)

# 降权工具
DEFAULT_DEESCALATOR = "sudo"


@dataclass(frozen=True)
class CommandDescriptor:
    """准备好启动的命令描述（构建后不可变）。

    Attributes:
        command: 原始命令字符串
        sudo_user: 原调用用户（来自 SUDO_USER，未设置为 None）
        argv: 最终参数向量
        env: 子进程继承的环境变量（只读副本）
    """

    command: str
    sudo_user: str | None
    argv: tuple[str, ...]
    env: Mapping[str, str] = field(default_factory=dict, repr=False)

    @property
    def is_deescalated(self) -> bool:
        """是否通过降权工具执行。"""
        return self.sudo_user is not None

    def describe(self) -> str:
        """返回 argv 的 shell 转义形式（用于日志）。"""
        return shlex.join(self.argv)


def build_descriptor(
    command: str,
    environ: Mapping[str, str] | None = None,
    *,
    shell: str = DEFAULT_SHELL,
    deescalator: str = DEFAULT_DEESCALATOR,
) -> CommandDescriptor:
    """构建命令描述。

    Args:
        command: 要执行的 shell 命令
        environ: 当前进程环境（默认 os.environ）
        shell: 执行命令的 shell
        deescalator: 降权工具（默认 sudo）

    Returns:
        不可变的 CommandDescriptor
    """
    env = dict(os.environ if environ is None else environ)
    sudo_user = env.get("SUDO_USER") or None

    if sudo_user is None:
        argv: tuple[str, ...] = (shell, "-c", command)
    else:
        # -E 保留调用者环境；PATH 需要显式传入，否则会被 sudo 的 secure_path 覆盖
        argv = (
            deescalator,
            "-E",
            "-u",
            sudo_user,
            "env",
            f"PATH={env.get('PATH', '')}",
            shell,
            "-c",
            command,
        )

    return CommandDescriptor(
        command=command,
        sudo_user=sudo_user,
        argv=argv,
        env=MappingProxyType(env),
    )


def log_descriptor(descriptor: CommandDescriptor) -> None:
    """在 DEBUG 级别打印解析后的 argv 与完整的继承环境。"""
    if not logger.isEnabledFor(logging.DEBUG):
        return
    if descriptor.is_deescalated:
        logger.debug(f"Running as SUDO_USER={descriptor.sudo_user}")
    logger.debug(f"Env inherited by the app: {dict(descriptor.env)}")
    logger.debug(f"Executing: {descriptor.describe()}")
