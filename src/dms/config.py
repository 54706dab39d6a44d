"""Configuration management for dms."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

import yaml

from .actions import ActionFactory

DEFAULT_HTTP = ":8080"
DEFAULT_TTL = "1m"

_DURATION_UNITS = {
    "h": 3600.0,
    "m": 60.0,
    "s": 1.0,
    "ms": 1e-3,
    "us": 1e-6,
    "µs": 1e-6,
    "ns": 1e-9,
}

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(h|ms|m|s|us|µs|ns)")


class ConfigError(ValueError):
    """Raised for configuration values that cannot be used."""


def parse_duration(value: Union[str, int, float]) -> float:
    """
    Parse a duration into seconds.

    Accepts a number of seconds or a Go-style duration string such as
    ``"1m"``, ``"1h30m"`` or ``"1.5s"``.
    """
    if isinstance(value, bool):
        raise ConfigError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)

    text = str(value).strip()
    if not text:
        raise ConfigError("Invalid duration: empty string")

    try:
        return float(text)
    except ValueError:
        pass

    sign = 1.0
    if text[0] in "+-":
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]

    pos = 0
    total = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()

    if pos == 0 or pos != len(text):
        raise ConfigError(f"Invalid duration: {value!r}")

    return sign * total


def parse_listen_address(address: Union[str, int]) -> tuple[str, int]:
    """Parse ``"8080"``, ``":8080"`` or ``"host:port"`` into (host, port)."""
    text = str(address).strip()
    if text.isdigit():
        return "", int(text)

    host, sep, port = text.rpartition(":")
    if not sep or not port.isdigit():
        raise ConfigError(f"Invalid listen address: {address!r}")

    host = host.strip("[]")
    port_num = int(port)
    if port_num > 65535:
        raise ConfigError(f"Invalid port in listen address: {address!r}")

    return host, port_num


@dataclass
class ActionConfig:
    """Configuration for a single action."""

    type: str  # exec, webhook, kill, or a type added with ActionFactory.register
    enabled: bool = True

    # Exec
    command: Optional[str] = None
    working_dir: Optional[str] = None
    env: dict = field(default_factory=dict)

    # Webhook
    url: Optional[str] = None
    method: str = "POST"
    headers: dict = field(default_factory=dict)
    payload: Optional[dict] = None

    # Kill
    process_name: Optional[str] = None
    pid_file: Optional[str] = None
    signal: str = "SIGTERM"

    # Common
    timeout: Optional[float] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ActionConfig":
        """Create action configuration from dictionary."""
        if "type" not in data:
            raise ConfigError(f"Action is missing a type: {data}")

        return cls(
            type=data["type"],
            enabled=data.get("enabled", True),
            command=data.get("command"),
            working_dir=data.get("working_dir"),
            env=data.get("env", {}),
            url=data.get("url"),
            method=data.get("method", "POST"),
            headers=data.get("headers", {}),
            payload=data.get("payload"),
            process_name=data.get("process_name"),
            pid_file=data.get("pid_file"),
            signal=data.get("signal", "SIGTERM"),
            timeout=data.get("timeout"),
        )

    def validate(self) -> list[str]:
        """Validate action configuration, return list of errors."""
        errors = []
        kind = self.type.lower()

        if kind not in ActionFactory.types():
            errors.append(f"Action '{self.type}': unknown action type")
        elif kind == "exec" and not (self.command or "").strip():
            errors.append("Action 'exec': command required")
        elif kind == "webhook" and not self.url:
            errors.append("Action 'webhook': url required")
        elif kind == "kill" and not (self.process_name or self.pid_file):
            errors.append("Action 'kill': process_name or pid_file required")

        return errors


@dataclass
class DmsConfig:
    """Main configuration for the switch daemon."""

    actions: list[ActionConfig] = field(default_factory=list)

    # Switch settings
    ttl: str = DEFAULT_TTL
    misses: int = 0
    dir: Optional[str] = None

    # Global settings
    http: str = DEFAULT_HTTP
    log_file: Optional[str] = None
    log_level: str = "INFO"
    pid_file: Optional[str] = None
    dry_run: bool = False

    @property
    def ttl_seconds(self) -> float:
        return parse_duration(self.ttl)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "DmsConfig":
        """Load configuration from YAML file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path) as f:
            data = yaml.safe_load(f)

        return cls.from_dict(data or {})

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DmsConfig":
        """Create configuration from dictionary."""
        config = cls()

        config.ttl = str(data.get("ttl", config.ttl))
        config.misses = int(data.get("misses", config.misses))
        config.dir = data.get("dir", config.dir)
        config.http = str(data.get("http", config.http))
        config.log_file = data.get("log_file", config.log_file)
        config.log_level = data.get("log_level", config.log_level)
        config.pid_file = data.get("pid_file", config.pid_file)
        config.dry_run = data.get("dry_run", config.dry_run)

        for action_data in data.get("actions") or []:
            config.actions.append(ActionConfig.from_dict(action_data))

        return config

    def validate(self) -> list[str]:
        """Validate configuration, return list of errors."""
        errors = []

        if not any(a.enabled for a in self.actions):
            errors.append("At least one action must be configured")

        for action in self.actions:
            errors.extend(action.validate())

        try:
            if self.ttl_seconds <= 0:
                errors.append(f"ttl must be positive: {self.ttl}")
        except ConfigError as e:
            errors.append(str(e))

        if self.misses < 0:
            errors.append(f"misses must not be negative: {self.misses}")

        try:
            parse_listen_address(self.http)
        except ConfigError as e:
            errors.append(str(e))

        return errors

    def to_dict(self) -> dict[str, Any]:
        """Export configuration to dictionary."""
        return {
            "ttl": self.ttl,
            "misses": self.misses,
            "dir": self.dir,
            "http": self.http,
            "log_file": self.log_file,
            "log_level": self.log_level,
            "pid_file": self.pid_file,
            "dry_run": self.dry_run,
            "actions": [
                {
                    "type": a.type,
                    "enabled": a.enabled,
                    "command": a.command,
                    "url": a.url,
                    "process_name": a.process_name,
                    "pid_file": a.pid_file,
                }
                for a in self.actions
            ],
        }
