"""Main daemon wiring the switch to its actions and HTTP transport."""

from __future__ import annotations

import logging
import os
import signal
import threading
from pathlib import Path
from typing import Optional

from .actions import Action, ActionError, ActionFactory, ShutdownAction
from .clock import Clock
from .config import DmsConfig
from .server import PostponeServer
from .switch import Switch, SwitchStoppedError

logger = logging.getLogger("dms")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> logging.Logger:
    """Configure the dms logger with a console handler and an optional file handler."""
    lvl = getattr(logging, level.upper(), logging.INFO)
    logger.setLevel(lvl)
    logger.propagate = False

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    console = logging.StreamHandler()
    console.setLevel(lvl)
    console.setFormatter(formatter)
    logger.addHandler(console)

    if log_file:
        try:
            log_path = Path(log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_path)
            file_handler.setLevel(lvl)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        except OSError:
            logger.warning(f"Cannot write to log file: {log_file}")

    return logger


class DeadMansSwitch:
    """Runs a switch with its HTTP postpone endpoint until shutdown."""

    def __init__(self, config: DmsConfig, clock: Optional[Clock] = None):
        self.config = config
        self._shutdown = threading.Event()

        self.actions: list[Action] = self._build_actions()
        self.actions.append(ShutdownAction(self.shutdown))

        self.switch = Switch(
            ttl=config.ttl_seconds,
            max_misses=config.misses,
            actions=self.actions,
            logger=logger,
            clock=clock,
        )
        self.server = PostponeServer(self.switch, config.http, logger=logger)

    def _build_actions(self) -> list[Action]:
        actions = []
        for action_config in self.config.actions:
            if not action_config.enabled:
                continue
            try:
                actions.append(
                    ActionFactory.create(
                        action_config,
                        working_dir=self.config.dir,
                        dry_run=self.config.dry_run,
                    )
                )
            except (ActionError, ValueError) as e:
                raise ValueError(f"Invalid {action_config.type} action: {e}") from e
        return actions

    def _write_pid_file(self):
        if not self.config.pid_file or self.config.dry_run:
            return

        pid_path = Path(self.config.pid_file)
        try:
            pid_path.parent.mkdir(parents=True, exist_ok=True)
            pid_path.write_text(str(os.getpid()))
            logger.debug(f"Wrote PID file: {pid_path}")
        except OSError as e:
            logger.warning(f"Failed to write PID file: {e}")

    def _remove_pid_file(self):
        if not self.config.pid_file or self.config.dry_run:
            return

        pid_path = Path(self.config.pid_file)
        try:
            pid_path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Failed to remove PID file: {e}")

    @property
    def shutting_down(self) -> bool:
        return self._shutdown.is_set()

    def shutdown(self):
        """Request the daemon to exit."""
        self._shutdown.set()

    def start(self):
        """Start the HTTP endpoint, then arm the switch. Bind errors propagate."""
        self.server.start()
        self.switch.start()

        logger.info(
            f"Switch armed: {len(self.actions) - 1} action(s), "
            f"ttl={self.switch.ttl}s, max misses={self.switch.max_misses}"
        )
        if self.config.dry_run:
            logger.info("Running in DRY-RUN mode")

    def stop(self):
        """Disarm the switch and close the HTTP endpoint."""
        try:
            self.switch.stop()
        except SwitchStoppedError:
            logger.debug("Switch already stopped")

        self.server.stop()
        self.switch.join(timeout=5)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until shutdown is requested. Returns True if it was."""
        return self._shutdown.wait(timeout)

    def run(self):
        """Run until a signal arrives or the switch triggers."""

        def handle_signal(signum, frame):
            logger.info(f"Received signal {signum}, shutting down...")
            self.shutdown()

        signal.signal(signal.SIGTERM, handle_signal)
        signal.signal(signal.SIGINT, handle_signal)

        self._write_pid_file()
        try:
            self.start()
            # Wake periodically so signal handlers get a chance to run
            while not self.wait(timeout=1):
                pass
        finally:
            self.stop()
            self._remove_pid_file()
            logger.info("dms stopped")
