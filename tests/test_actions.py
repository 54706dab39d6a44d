"""Tests for trigger actions."""

import signal
import subprocess
from unittest.mock import MagicMock, patch

import psutil
import pytest
import requests

from dms.actions import (
    ActionError,
    ActionFactory,
    ExecAction,
    KillAction,
    ShutdownAction,
    WebhookAction,
    trigger,
)
from dms.config import ActionConfig

from conftest import RecordingAction


class TestTrigger:
    """Test sequential action execution."""

    def test_runs_in_order(self, recorder, calls):
        logger, log = recorder
        actions = [RecordingAction(name, calls) for name in ("a", "b", "c")]

        trigger(actions, logger)

        assert calls == ["a", "b", "c"]
        assert log.messages == ["[a]", "[b]", "[c]"]

    def test_continues_after_failure(self, recorder, calls):
        logger, log = recorder
        actions = [
            RecordingAction("a", calls),
            RecordingAction("b", calls, error="expected error"),
            RecordingAction("c", calls),
        ]

        trigger(actions, logger)

        assert calls == ["a", "b", "c"]
        assert "action error: expected error" in log.messages

    def test_unexpected_exception_logged(self, recorder):
        logger, log = recorder
        action = MagicMock()
        action.describe.return_value = "broken"
        action.execute.side_effect = RuntimeError("kaboom")

        trigger([action], logger)

        assert log.has("action error: kaboom")

    def test_empty(self, recorder):
        logger, log = recorder
        trigger([], logger)
        assert log.messages == []


class TestExecAction:
    """Test subprocess actions."""

    def test_empty_command(self):
        with pytest.raises(ActionError, match="non-empty"):
            ExecAction("")

    def test_blank_command(self):
        with pytest.raises(ActionError):
            ExecAction("   ")

    def test_describe(self):
        action = ExecAction("echo 'hello world'")
        assert action.args == ["echo", "hello world"]
        assert action.describe() == "echo 'hello world'"
        assert str(action) == action.describe()

    @patch("dms.actions.subprocess.run")
    def test_dry_run(self, mock_run):
        ExecAction("systemctl stop app", dry_run=True).execute()
        mock_run.assert_not_called()

    @patch("dms.actions.subprocess.run")
    def test_success(self, mock_run):
        mock_run.return_value = MagicMock(returncode=0)

        action = ExecAction("systemctl stop app", working_dir="/opt/app", env={"KEY": "value"})
        action.execute()

        mock_run.assert_called_once()
        args, kwargs = mock_run.call_args
        assert args[0] == ["systemctl", "stop", "app"]
        assert kwargs["cwd"] == "/opt/app"
        assert kwargs["env"]["KEY"] == "value"

    @patch("dms.actions.subprocess.run")
    def test_nonzero_exit(self, mock_run):
        mock_run.return_value = MagicMock(returncode=3)

        with pytest.raises(ActionError, match="status 3"):
            ExecAction("false").execute()

    @patch("dms.actions.subprocess.run")
    def test_timeout(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="sleep", timeout=1)

        with pytest.raises(ActionError, match="timed out"):
            ExecAction("sleep 10", timeout=1).execute()

    @patch("dms.actions.subprocess.run")
    def test_missing_executable(self, mock_run):
        mock_run.side_effect = FileNotFoundError("no such file")

        with pytest.raises(ActionError, match="failed to start"):
            ExecAction("does-not-exist").execute()


class TestWebhookAction:
    """Test webhook actions."""

    def test_requires_url(self):
        with pytest.raises(ActionError):
            WebhookAction("")

    @patch("dms.actions.requests.request")
    def test_success(self, mock_request):
        mock_request.return_value = MagicMock(status_code=200)

        action = WebhookAction("https://example.com/hook", headers={"X-Token": "abc"})
        action.execute()

        kwargs = mock_request.call_args.kwargs
        assert kwargs["method"] == "POST"
        assert kwargs["url"] == "https://example.com/hook"
        assert kwargs["headers"] == {"X-Token": "abc"}
        assert kwargs["json"]["event_type"] == "triggered"

    @patch("dms.actions.requests.request")
    def test_custom_payload(self, mock_request):
        WebhookAction("https://example.com/hook", method="put", payload={"a": 1}).execute()

        kwargs = mock_request.call_args.kwargs
        assert kwargs["method"] == "PUT"
        assert kwargs["json"] == {"a": 1}

    @patch("dms.actions.requests.request")
    def test_http_error(self, mock_request):
        response = MagicMock()
        response.raise_for_status.side_effect = requests.HTTPError("500 Server Error")
        mock_request.return_value = response

        with pytest.raises(ActionError, match="500"):
            WebhookAction("https://example.com/hook").execute()

    @patch("dms.actions.requests.request")
    def test_connection_error(self, mock_request):
        mock_request.side_effect = requests.ConnectionError("refused")

        with pytest.raises(ActionError, match="Webhook error"):
            WebhookAction("https://example.com/hook").execute()

    @patch("dms.actions.requests.request")
    def test_dry_run(self, mock_request):
        WebhookAction("https://example.com/hook", dry_run=True).execute()
        mock_request.assert_not_called()


class TestKillAction:
    """Test process-signalling actions."""

    def test_requires_target(self):
        with pytest.raises(ActionError):
            KillAction()

    def test_describe(self):
        action = KillAction(process_name="nginx", sig=signal.SIGKILL)
        assert action.describe() == "kill -SIGKILL name=nginx"

    def test_pid_file_missing(self):
        action = KillAction(pid_file="/nonexistent/path/test.pid")
        with pytest.raises(ActionError, match="not found"):
            action.execute()

    def test_pid_file_invalid(self, tmp_path):
        pid_file = tmp_path / "app.pid"
        pid_file.write_text("not-a-pid")

        with pytest.raises(ActionError, match="Invalid PID file"):
            KillAction(pid_file=str(pid_file)).execute()

    @patch("dms.actions.psutil.Process")
    @patch("dms.actions.psutil.pid_exists", return_value=True)
    def test_pid_file_signals_process(self, mock_exists, mock_process, tmp_path):
        pid_file = tmp_path / "app.pid"
        pid_file.write_text("4242\n")
        proc = MagicMock(pid=4242)
        mock_process.return_value = proc

        KillAction(pid_file=str(pid_file)).execute()

        mock_process.assert_called_once_with(4242)
        proc.send_signal.assert_called_once_with(signal.SIGTERM)

    @patch("dms.actions.psutil.pid_exists", return_value=False)
    def test_stale_pid_file(self, mock_exists, tmp_path):
        pid_file = tmp_path / "app.pid"
        pid_file.write_text("4242")

        with pytest.raises(ActionError, match="No process found"):
            KillAction(pid_file=str(pid_file)).execute()

    def test_process_name_not_running(self):
        action = KillAction(process_name="nonexistent_process_12345")
        with pytest.raises(ActionError, match="No process found"):
            action.execute()

    @patch("dms.actions.psutil.process_iter")
    def test_process_name_signals_matches(self, mock_iter):
        match = MagicMock(pid=100, info={"name": "app", "pid": 100})
        other = MagicMock(pid=101, info={"name": "other", "pid": 101})
        mock_iter.return_value = [match, other]

        KillAction(process_name="app", sig=signal.SIGKILL).execute()

        match.send_signal.assert_called_once_with(signal.SIGKILL)
        other.send_signal.assert_not_called()

    @patch("dms.actions.psutil.process_iter")
    def test_process_already_gone(self, mock_iter):
        proc = MagicMock(pid=100, info={"name": "app", "pid": 100})
        proc.send_signal.side_effect = psutil.NoSuchProcess(100)
        mock_iter.return_value = [proc]

        KillAction(process_name="app").execute()

    @patch("dms.actions.psutil.process_iter")
    def test_access_denied(self, mock_iter):
        proc = MagicMock(pid=1, info={"name": "init", "pid": 1})
        proc.send_signal.side_effect = psutil.AccessDenied(1)
        mock_iter.return_value = [proc]

        with pytest.raises(ActionError, match="Access denied"):
            KillAction(process_name="init").execute()

    @patch("dms.actions.psutil.process_iter")
    def test_dry_run(self, mock_iter):
        proc = MagicMock(pid=100, info={"name": "app", "pid": 100})
        mock_iter.return_value = [proc]

        KillAction(process_name="app", dry_run=True).execute()
        proc.send_signal.assert_not_called()


class TestShutdownAction:
    def test_invokes_callback(self):
        callback = MagicMock()
        action = ShutdownAction(callback)

        assert action.describe() == "Shutdowner"
        action.execute()
        callback.assert_called_once_with()


class TestActionFactory:
    """Test creating actions from configuration."""

    def test_create_exec(self):
        config = ActionConfig(type="exec", command="echo hi", timeout=5)
        action = ActionFactory.create(config, working_dir="/srv", dry_run=True)

        assert isinstance(action, ExecAction)
        assert action.working_dir == "/srv"
        assert action.timeout == 5
        assert action.dry_run is True

    def test_exec_working_dir_override(self):
        config = ActionConfig(type="exec", command="echo hi", working_dir="/opt")
        action = ActionFactory.create(config, working_dir="/srv")
        assert action.working_dir == "/opt"

    def test_create_webhook(self):
        config = ActionConfig(type="WEBHOOK", url="https://example.com", method="PUT")
        action = ActionFactory.create(config)

        assert isinstance(action, WebhookAction)
        assert action.method == "PUT"
        assert action.timeout == 30

    def test_create_kill(self):
        config = ActionConfig(type="kill", process_name="app", signal="sigkill")
        action = ActionFactory.create(config)

        assert isinstance(action, KillAction)
        assert action.sig == signal.SIGKILL

    def test_unknown_signal(self):
        config = ActionConfig(type="kill", process_name="app", signal="SIGNOPE")
        with pytest.raises(ActionError, match="Unknown signal"):
            ActionFactory.create(config)

    def test_unknown_type(self):
        with pytest.raises(ValueError, match="Unknown action type"):
            ActionFactory.create(ActionConfig(type="carrier-pigeon"))

    def test_register(self):
        built = []

        def build(config, working_dir, dry_run):
            action = ShutdownAction(lambda: None)
            built.append(action)
            return action

        ActionFactory.register("Custom", build)
        try:
            action = ActionFactory.create(ActionConfig(type="custom"))
            assert built == [action]
        finally:
            ActionFactory._builders.pop("custom")

    def test_types(self):
        assert set(ActionFactory.types()) >= {"exec", "kill", "webhook"}

        ActionFactory.register("Custom", lambda config, working_dir, dry_run: None)
        try:
            assert "custom" in ActionFactory.types()
        finally:
            ActionFactory._builders.pop("custom")
        assert "custom" not in ActionFactory.types()
