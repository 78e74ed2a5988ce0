"""信号桥接模块。

主机终止信号（SIGINT / SIGTERM）的唯一消费者，将第一个到达的信号转换为
一次性的取消事件：
- 两种信号的下游行为完全相同
- 取消只触发一次；之后到达的信号被丢弃（不排队）
- 记录触发取消的信号，用于诊断

Example:
    ```python
    token = CancellationToken()
    bridge = SignalBridge(token)

    async def main():
        await bridge.start()
        try:
            await controller.run(descriptor)
        finally:
            await bridge.stop()

    asyncio.run(main())
    ```
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from typing import Optional

__all__ = ["CancellationToken", "SignalBridge", "HANDLED_SIGNALS"]

logger = logging.getLogger(__name__)

# 监听的终止信号
HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)

IS_WINDOWS = sys.platform == "win32"


class CancellationToken:
    """一次性取消令牌。

    fire() 只有第一次调用生效，之后的调用被丢弃。

    Attributes:
        reason: 触发取消的信号（未触发或程序化取消时为 None）
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[signal.Signals] = None

    @property
    def fired(self) -> bool:
        """是否已触发取消。"""
        return self._event.is_set()

    def fire(self, reason: Optional[signal.Signals] = None) -> bool:
        """触发取消。

        Args:
            reason: 触发取消的信号

        Returns:
            本次调用是否真正触发了取消（重复调用返回 False）
        """
        if self._event.is_set():
            return False
        self.reason = reason
        self._event.set()
        return True

    async def wait(self) -> Optional[signal.Signals]:
        """等待取消被触发，返回触发信号。"""
        await self._event.wait()
        return self.reason


class SignalBridge:
    """信号桥接器。

    在整个运行期间监听 SIGINT 和 SIGTERM，第一次收到时触发取消令牌。

    Attributes:
        token: 取消令牌
    """

    def __init__(self, token: CancellationToken) -> None:
        """初始化信号桥接器。

        Args:
            token: 收到信号时触发的取消令牌
        """
        self.token = token

        # 内部状态
        self._original_handlers: dict[signal.Signals, object] = {}
        self._running: bool = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def received_signal(self) -> Optional[signal.Signals]:
        """触发取消的信号（尚未收到时为 None）。"""
        return self.token.reason

    @property
    def is_running(self) -> bool:
        """是否正在监听信号。"""
        return self._running

    async def start(self) -> None:
        """启动信号监听。

        必须在 asyncio 事件循环中调用。
        """
        if self._running:
            logger.warning("SignalBridge already running")
            return

        self._loop = asyncio.get_running_loop()
        self._running = True

        if not IS_WINDOWS:
            for sig in HANDLED_SIGNALS:
                self._loop.add_signal_handler(sig, self._handle_signal, sig)
        else:
            # Windows: 只能用 signal.signal()，回调在主线程执行，转交给事件循环
            loop = self._loop

            def forward(signum, frame) -> None:
                loop.call_soon_threadsafe(self._handle_signal, signal.Signals(signum))

            for sig in HANDLED_SIGNALS:
                self._original_handlers[sig] = signal.signal(sig, forward)

        logger.debug(
            f"Signal handlers installed ({', '.join(s.name for s in HANDLED_SIGNALS)})"
        )

    async def stop(self) -> None:
        """停止信号监听，恢复原始处理器。"""
        if not self._running:
            return

        self._running = False

        if not IS_WINDOWS and self._loop:
            for sig in HANDLED_SIGNALS:
                try:
                    self._loop.remove_signal_handler(sig)
                except (ValueError, RuntimeError) as e:
                    logger.debug(f"Error removing {sig.name} handler: {e}")
        elif IS_WINDOWS:
            for sig, handler in self._original_handlers.items():
                try:
                    signal.signal(sig, handler)
                except (ValueError, OSError) as e:
                    logger.debug(f"Error restoring {sig.name} handler: {e}")
            self._original_handlers.clear()

        logger.debug("Signal handlers removed")

    def _handle_signal(self, sig: signal.Signals) -> None:
        """处理终止信号。

        第一次调用触发取消令牌；之后的信号只记录日志。
        """
        if self.token.fire(sig):
            logger.info(f"Received signal, cancelling (signal={sig.name})")
        else:
            logger.debug(
                f"Dropped {sig.name}: cancellation already requested "
                f"(signal={self.token.reason.name if self.token.reason else None})"
            )
