"""Pytest 配置和 fixtures。"""

from __future__ import annotations

import asyncio
import os
import sys
import time
from collections.abc import Callable
from pathlib import Path

import pytest

# 项目根目录
PROJECT_ROOT = Path(__file__).parent.parent

# 添加 src 目录到 Python 路径
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from cmd_supervisor.launcher import CommandDescriptor  # noqa: E402

# 测试用子进程脚本
FIXTURES_DIR = PROJECT_ROOT / "tests" / "fixtures"
FAKE_APP_PATH = FIXTURES_DIR / "fake_app.py"


@pytest.fixture
def project_root() -> Path:
    """项目根目录。"""
    return PROJECT_ROOT


@pytest.fixture
def fake_app_path() -> Path:
    """fake_app.py 路径。"""
    return FAKE_APP_PATH


@pytest.fixture
def fake_app() -> Callable[..., CommandDescriptor]:
    """构建直接执行 fake_app.py 的命令描述（不经过 shell）。"""

    def build(*args: str) -> CommandDescriptor:
        argv = (sys.executable, str(FAKE_APP_PATH), *args)
        return CommandDescriptor(
            command=" ".join(argv),
            sudo_user=None,
            argv=argv,
            env=dict(os.environ),
        )

    return build


async def wait_for_file(path: Path, timeout: float = 10.0) -> str:
    """等待文件出现并返回其内容。"""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if path.exists():
            content = path.read_text(encoding="utf-8")
            if content:
                return content
        await asyncio.sleep(0.05)
    raise TimeoutError(f"File not created: {path}")


def read_pid_file(content: str) -> tuple[int, int]:
    """解析 fake_app 写入的 "<pid> <pgid>"。"""
    pid, pgid = content.split()
    return int(pid), int(pgid)


def pid_alive(pid: int) -> bool:
    """检查进程是否存活（僵尸进程视为已退出）。"""
    stat_file = Path(f"/proc/{pid}/stat")
    if stat_file.exists():
        try:
            # 格式: pid (comm) state ...
            state = stat_file.read_text().rsplit(")", 1)[1].split()[0]
        except (OSError, IndexError):
            return False
        return state != "Z"
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True
