"""Actions fired when a switch triggers."""

from __future__ import annotations

import logging
import os
import shlex
import signal
import subprocess
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Iterable, Optional

import psutil
import requests

if TYPE_CHECKING:
    from .config import ActionConfig

logger = logging.getLogger("dms")


class ActionError(Exception):
    """Raised by an action that failed to do its work."""


class Action(ABC):
    """A unit of work held in reserve by a switch."""

    @abstractmethod
    def describe(self) -> str:
        """Short human-readable description, used for logging."""
        pass

    @abstractmethod
    def execute(self):
        """Do the work. Raises on failure."""
        pass

    def __str__(self) -> str:
        return self.describe()


def trigger(actions: Iterable[Action], log: Optional[logging.Logger] = None):
    """Execute each action in order, logging failures and carrying on."""
    log = log or logger
    for action in actions:
        log.info(f"[{action.describe()}]")
        try:
            action.execute()
        except Exception as e:
            log.error(f"action error: {e}")


class ExecAction(Action):
    """Run a command as a subprocess."""

    def __init__(
        self,
        command: str,
        working_dir: Optional[str] = None,
        env: Optional[dict] = None,
        timeout: Optional[float] = None,
        dry_run: bool = False,
    ):
        self.args = shlex.split(command) if command else []
        if not self.args:
            raise ActionError("A non-empty command is required")

        self.command = command
        self.working_dir = working_dir
        self.env = env or {}
        self.timeout = timeout
        self.dry_run = dry_run

    def describe(self) -> str:
        return shlex.join(self.args)

    def execute(self):
        if self.dry_run:
            logger.info(f"[DRY-RUN] Would execute: {self.describe()}")
            return

        env = dict(os.environ)
        env.update(self.env)

        try:
            result = subprocess.run(
                self.args,
                cwd=self.working_dir,
                env=env,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            raise ActionError(f"Command timed out after {self.timeout}s: {self.describe()}")
        except OSError as e:
            raise ActionError(f"Command failed to start: {e}") from e

        if result.returncode != 0:
            raise ActionError(f"Command exited with status {result.returncode}: {self.describe()}")


class WebhookAction(Action):
    """Send an HTTP request when the switch triggers."""

    def __init__(
        self,
        url: str,
        method: str = "POST",
        headers: Optional[dict] = None,
        payload: Optional[dict] = None,
        timeout: float = 30,
        dry_run: bool = False,
    ):
        if not url:
            raise ActionError("Webhook url required")

        self.url = url
        self.method = method.upper()
        self.headers = headers or {}
        self.payload = payload
        self.timeout = timeout
        self.dry_run = dry_run

    def describe(self) -> str:
        return f"{self.method} {self.url}"

    def execute(self):
        if self.dry_run:
            logger.info(f"[DRY-RUN] Would send: {self.describe()}")
            return

        payload = self.payload
        if payload is None:
            payload = {
                "event_type": "triggered",
                "timestamp": datetime.now().isoformat(),
            }

        try:
            response = requests.request(
                method=self.method,
                url=self.url,
                json=payload,
                headers=self.headers,
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise ActionError(f"Webhook error: {e}") from e


class KillAction(Action):
    """Signal processes found by name or through a PID file."""

    def __init__(
        self,
        process_name: Optional[str] = None,
        pid_file: Optional[str] = None,
        sig: int = signal.SIGTERM,
        dry_run: bool = False,
    ):
        if not process_name and not pid_file:
            raise ActionError("Kill action requires process_name or pid_file")

        self.process_name = process_name
        self.pid_file = pid_file
        self.sig = sig
        self.dry_run = dry_run

    def describe(self) -> str:
        target = f"name={self.process_name}" if self.process_name else f"pid_file={self.pid_file}"
        return f"kill -{signal.Signals(self.sig).name} {target}"

    def find(self) -> list[psutil.Process]:
        """Locate the target processes."""
        if self.pid_file:
            return self._find_by_pid_file()
        return self._find_by_name()

    def execute(self):
        processes = self.find()
        if not processes:
            raise ActionError(f"No process found for {self.describe()}")

        for proc in processes:
            if self.dry_run:
                logger.info(f"[DRY-RUN] Would signal PID {proc.pid}")
                continue
            try:
                proc.send_signal(self.sig)
                logger.info(f"Sent {signal.Signals(self.sig).name} to PID {proc.pid}")
            except psutil.NoSuchProcess:
                logger.warning(f"Process {proc.pid} exited before it could be signalled")
            except psutil.AccessDenied as e:
                raise ActionError(f"Access denied signalling PID {proc.pid}") from e

    def _find_by_name(self) -> list[psutil.Process]:
        found = []
        for proc in psutil.process_iter(["name", "pid"]):
            try:
                if proc.info["name"] == self.process_name and proc.pid != os.getpid():
                    found.append(proc)
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                continue
        return found

    def _find_by_pid_file(self) -> list[psutil.Process]:
        pid_path = Path(self.pid_file)
        if not pid_path.exists():
            raise ActionError(f"PID file not found: {pid_path}")

        try:
            pid = int(pid_path.read_text().strip())
        except ValueError:
            raise ActionError(f"Invalid PID file: {pid_path}")

        if not psutil.pid_exists(pid):
            return []
        try:
            return [psutil.Process(pid)]
        except psutil.NoSuchProcess:
            return []


class ShutdownAction(Action):
    """Asks the owning process to exit once the other actions have run."""

    def __init__(self, shutdown: Callable[[], None]):
        self.shutdown = shutdown

    def describe(self) -> str:
        return "Shutdowner"

    def execute(self):
        self.shutdown()


def _build_exec(config: "ActionConfig", working_dir: Optional[str], dry_run: bool) -> Action:
    return ExecAction(
        config.command,
        working_dir=config.working_dir or working_dir,
        env=config.env,
        timeout=config.timeout,
        dry_run=dry_run,
    )


def _build_webhook(config: "ActionConfig", working_dir: Optional[str], dry_run: bool) -> Action:
    return WebhookAction(
        config.url,
        method=config.method,
        headers=config.headers,
        payload=config.payload,
        timeout=config.timeout or 30,
        dry_run=dry_run,
    )


def _build_kill(config: "ActionConfig", working_dir: Optional[str], dry_run: bool) -> Action:
    try:
        sig = signal.Signals[config.signal.upper()]
    except KeyError:
        raise ActionError(f"Unknown signal: {config.signal}")

    return KillAction(
        process_name=config.process_name,
        pid_file=config.pid_file,
        sig=sig,
        dry_run=dry_run,
    )


class ActionFactory:
    """Factory for creating actions from configuration."""

    _builders = {
        "exec": _build_exec,
        "webhook": _build_webhook,
        "kill": _build_kill,
    }

    @classmethod
    def create(
        cls,
        config: "ActionConfig",
        working_dir: Optional[str] = None,
        dry_run: bool = False,
    ) -> Action:
        """Create an action instance from config."""
        builder = cls._builders.get(config.type.lower())
        if not builder:
            raise ValueError(f"Unknown action type: {config.type}")
        return builder(config, working_dir, dry_run)

    @classmethod
    def register(cls, name: str, builder: Callable[..., Action]):
        """Register a custom action type, built with (config, working_dir, dry_run)."""
        cls._builders[name.lower()] = builder

    @classmethod
    def types(cls) -> tuple[str, ...]:
        """Names of every action type the factory can build."""
        return tuple(sorted(cls._builders))
