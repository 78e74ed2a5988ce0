"""cmd-supervisor 异常类。

所有失败都以单个异常的形式抛给顶层调用方：
- SpawnError: 子进程启动失败（不重试）
- UnexpectedExitError: 未请求取消时子进程异常退出
- RunCancelled: 收到终止信号后的预期结果（不是应用错误）
"""

from __future__ import annotations

import signal

__all__ = [
    "SupervisorError",
    "SpawnError",
    "UnexpectedExitError",
    "RunCancelled",
    "describe_returncode",
]


class SupervisorError(Exception):
    """cmd-supervisor 基础异常。"""
    pass


class SpawnError(SupervisorError):
    """子进程启动失败（找不到可执行文件、权限不足等）。

    Attributes:
        command: 原始命令字符串
    """

    def __init__(self, command: str, cause: BaseException) -> None:
        self.command = command
        super().__init__(f"failed to start the app: {cause}")


class UnexpectedExitError(SupervisorError):
    """未请求取消时子进程以非零状态退出。

    Attributes:
        returncode: 子进程返回码（负数表示被信号终止）
    """

    def __init__(self, returncode: int) -> None:
        self.returncode = returncode
        super().__init__(
            f"unexpected error while waiting for the app to exit: {describe_returncode(returncode)}"
        )


class RunCancelled(SupervisorError):
    """运行被终止信号取消。

    无论子进程在宽限期内自行退出还是被强制杀死，都报告同一个取消原因，
    调用方据此区分"用户要求停止"与"子进程自身出错"。

    Attributes:
        signal: 触发取消的主机信号（未知时为 None）
        returncode: 子进程返回码（未启动时为 None）
        killed: 是否在宽限期结束后被强制杀死
    """

    def __init__(
        self,
        sig: signal.Signals | None = None,
        returncode: int | None = None,
        killed: bool = False,
    ) -> None:
        self.signal = sig
        self.returncode = returncode
        self.killed = killed
        reason = f"received {sig.name}" if sig is not None else "cancellation requested"
        super().__init__(f"run cancelled: {reason}")


def describe_returncode(returncode: int) -> str:
    """将返回码转换为可读描述。

    >>> describe_returncode(3)
    'exit status 3'
    >>> describe_returncode(-9)
    'signal: SIGKILL'
    """
    if returncode < 0:
        try:
            return f"signal: {signal.Signals(-returncode).name}"
        except ValueError:
            return f"signal: {-returncode}"
    return f"exit status {returncode}"
