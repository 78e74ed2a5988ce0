"""cmd-supervisor - 单命令进程生命周期监督器。

启动一个 shell 命令，将 SIGINT/SIGTERM 转发给其整个进程组，
宽限期后仍未退出则强制杀死。

环境变量:
    CMDSUP_GRACE_PERIOD: SIGINT 到强制杀死之间的宽限时间 (默认 10s)
    CMDSUP_VERBOSE: 详细日志 (默认 false)
    CMDSUP_LOG_DEBUG: 日志输出到临时文件 (默认 false)

用法:
    cmd-supervisor --cmd "sleep 30"
"""

__version__ = "0.1.0"

from .app import main

__all__ = ["__version__", "main"]
