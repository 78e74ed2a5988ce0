"""App 模块测试。

测试命令行解析、退出码映射、日志配置和 run_supervisor 的组装。
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import signal
import sys
from pathlib import Path
from unittest import mock

import pytest

from cmd_supervisor.app import (
    JsonSerializingFormatter,
    configure_logging,
    exit_code_for,
    main,
    parse_args,
    run_supervisor,
)
from cmd_supervisor.config import (
    DEFAULT_COMMAND,
    DEFAULT_GRACE_PERIOD,
    Config,
    get_config,
    reload_config,
)
from cmd_supervisor.errors import RunCancelled, SpawnError, UnexpectedExitError
from cmd_supervisor.runtime import LifecycleEvent, LifecycleState

from conftest import wait_for_file


@pytest.fixture(autouse=True)
def restore_logging():
    """恢复 configure_logging 修改过的 logger 状态。"""
    root = logging.getLogger()
    package = logging.getLogger("cmd_supervisor")
    handlers, root_level, package_level = root.handlers[:], root.level, package.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(root_level)
    package.setLevel(package_level)
    reload_config()


class TestParseArgs:
    """命令行解析测试。"""

    def test_defaults(self):
        args = parse_args([])
        assert args.cmd == DEFAULT_COMMAND
        assert args.grace_period is None
        assert args.verbose is False

    def test_all_flags(self):
        args = parse_args(["--cmd", "sleep 30", "--grace-period", "2.5", "-v"])
        assert args.cmd == "sleep 30"
        assert args.grace_period == 2.5
        assert args.verbose is True

    @pytest.mark.parametrize("value", ["0", "-1", "abc", "inf", "-inf", "nan"])
    def test_invalid_grace_period(self, value: str):
        with pytest.raises(SystemExit):
            parse_args(["--grace-period", value])

    @pytest.mark.parametrize(
        ("value", "expected"),
        [("1000", 300.0), ("1e9", 300.0), ("0.01", 0.1), ("2.5", 2.5)],
    )
    def test_grace_period_clamped(self, value: str, expected: float):
        """与 CMDSUP_GRACE_PERIOD 使用相同的取值范围。"""
        assert parse_args(["--grace-period", value]).grace_period == expected


class TestExitCode:
    """退出码映射测试。"""

    def test_success(self):
        assert exit_code_for(None) == 0

    def test_cancelled_by_sigint(self):
        assert exit_code_for(RunCancelled(signal.SIGINT)) == 130

    def test_cancelled_by_sigterm(self):
        assert exit_code_for(RunCancelled(signal.SIGTERM, killed=True)) == 143

    def test_cancelled_without_signal(self):
        assert exit_code_for(RunCancelled()) == 130

    def test_failures(self):
        assert exit_code_for(UnexpectedExitError(3)) == 1
        assert exit_code_for(SpawnError("x", FileNotFoundError("x"))) == 1


class TestErrors:
    """错误消息测试。"""

    def test_cancel_message(self):
        assert str(RunCancelled(signal.SIGTERM)) == "run cancelled: received SIGTERM"

    def test_wait_error_for_signal(self):
        error = UnexpectedExitError(-signal.SIGKILL)
        assert str(error).endswith("signal: SIGKILL")

    def test_spawn_message(self):
        error = SpawnError("foo", FileNotFoundError("No such file or directory: 'foo'"))
        assert str(error) == "failed to start the app: No such file or directory: 'foo'"


class TestConfigureLogging:
    """日志配置测试。"""

    def test_default_info(self):
        configure_logging(Config())
        assert logging.getLogger("cmd_supervisor").level == logging.INFO
        assert logging.getLogger().level == logging.WARNING

    def test_verbose_debug(self):
        configure_logging(Config(verbose=True))
        assert logging.getLogger("cmd_supervisor").level == logging.DEBUG

    def test_log_file(self, tmp_path: Path):
        log_file = tmp_path / "debug.log"
        configure_logging(Config(log_debug=True, log_file=str(log_file)))

        logger = logging.getLogger("cmd_supervisor.test")
        logger.debug("Lifecycle: %s", LifecycleEvent(state=LifecycleState.KILLED, pid=7))
        for handler in logging.getLogger().handlers:
            handler.flush()

        content = log_file.read_text(encoding="utf-8")
        payload = content.split("Lifecycle: ", 1)[1].strip()
        assert json.loads(payload)["state"] == "killed"

    def test_formatter_leaves_plain_args(self):
        formatter = JsonSerializingFormatter("%(message)s")
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "%s=%d", ("a", 1), None)
        assert formatter.format(record) == "a=1"


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX-specific test")
class TestRunSupervisor:
    """run_supervisor 组装测试。"""

    @pytest.mark.asyncio
    @pytest.mark.timeout(20)
    async def test_success(self, capfd: pytest.CaptureFixture[str]):
        returncode = await run_supervisor("echo supervised", Config(grace_period=1.0))

        assert returncode == 0
        assert "supervised" in capfd.readouterr().out

    @pytest.mark.asyncio
    @pytest.mark.timeout(20)
    async def test_failure(self):
        with pytest.raises(UnexpectedExitError):
            await run_supervisor("exit 4", Config(grace_period=1.0))

    @pytest.mark.asyncio
    @pytest.mark.timeout(20)
    async def test_host_signal_cancels(self, fake_app_path: Path, tmp_path: Path):
        pid_file = tmp_path / "app.pid"
        command = f"exec {sys.executable} {fake_app_path} --duration 30 --pid-file {pid_file}"

        async def send_signal_when_started() -> None:
            await wait_for_file(pid_file)
            os.kill(os.getpid(), signal.SIGTERM)

        sender = asyncio.create_task(send_signal_when_started())
        with pytest.raises(RunCancelled) as exc_info:
            await run_supervisor(command, Config(grace_period=5.0))
        await sender

        assert exc_info.value.signal == signal.SIGTERM
        assert exc_info.value.killed is False


class TestMain:
    """main() 入口测试。"""

    @pytest.fixture(autouse=True)
    def no_logging_setup(self):
        with mock.patch("cmd_supervisor.app.configure_logging"):
            yield

    def test_exit_zero_on_success(self):
        with mock.patch("cmd_supervisor.app.asyncio.run") as run:
            run.side_effect = lambda coro: coro.close()
            with pytest.raises(SystemExit) as exc_info:
                main(["--cmd", "true"])

        assert exc_info.value.code == 0

    def test_cancelled_exit_code_and_log(self, caplog: pytest.LogCaptureFixture):
        def cancelled(coro):
            coro.close()
            raise RunCancelled(signal.SIGINT, returncode=130)

        with mock.patch("cmd_supervisor.app.asyncio.run", side_effect=cancelled):
            with caplog.at_level(logging.INFO, logger="cmd_supervisor"):
                with pytest.raises(SystemExit) as exc_info:
                    main(["--cmd", "sleep 30"])

        assert exc_info.value.code == 130
        assert "cmd='sleep 30'" in caplog.text
        assert "signal=SIGINT" in caplog.text

    def test_failure_exit_code(self, caplog: pytest.LogCaptureFixture):
        def failed(coro):
            coro.close()
            raise UnexpectedExitError(2)

        with mock.patch("cmd_supervisor.app.asyncio.run", side_effect=failed):
            with caplog.at_level(logging.INFO, logger="cmd_supervisor"):
                with pytest.raises(SystemExit) as exc_info:
                    main(["--cmd", "false"])

        assert exc_info.value.code == 1
        assert "Failed to run the command" in caplog.text

    def test_flags_override_config(self):
        with mock.patch("cmd_supervisor.app.run_supervisor") as run_supervisor_mock, mock.patch(
            "cmd_supervisor.app.asyncio.run"
        ):
            with pytest.raises(SystemExit):
                main(["--cmd", "true", "--grace-period", "3", "--verbose"])

        command, config = run_supervisor_mock.call_args.args
        assert command == "true"
        assert config.grace_period == 3.0
        assert config.verbose is True

    def test_flags_leave_global_config_untouched(self):
        with mock.patch.dict(os.environ, {"CMDSUP_GRACE_PERIOD": "", "CMDSUP_VERBOSE": "false"}):
            original = reload_config()
        with mock.patch("cmd_supervisor.app.run_supervisor") as run_supervisor_mock, mock.patch(
            "cmd_supervisor.app.asyncio.run"
        ):
            with pytest.raises(SystemExit):
                main(["--cmd", "true", "--grace-period", "3", "--verbose"])

        _, config = run_supervisor_mock.call_args.args
        assert config is not original
        assert get_config() is original
        assert original.grace_period == DEFAULT_GRACE_PERIOD
        assert original.verbose is False
