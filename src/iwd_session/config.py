"""Configuration management for the session manager."""
from __future__ import annotations

import json
import logging
import math
import os
from dataclasses import asdict, dataclass, field, replace
from pathlib import Path
from threading import Lock
from typing import Any, Mapping

from .eap import DEFAULT_STATE_DIR
from .session_log import DEFAULT_LOG_PATH

DEFAULT_TICK_RATE = 2.0
DEFAULT_NOTIFICATION_TTL = 2

STATE_DIR_ENV = "IWD_SESSION_STATE_DIR"
INTERFACE_ENV = "IWD_SESSION_INTERFACE"


@dataclass(frozen=True, slots=True)
class KeyBindings:
    """Keys for the station view; ``ctrl+`` prefixes a control chord."""

    start_scanning: str = "s"
    toggle_connect: str = "space"
    forget: str = "d"
    toggle_autoconnect: str = "a"
    connect_hidden: str = "n"
    toggle_power: str = "o"
    quit: str = "q"

    def __post_init__(self) -> None:
        for name, value in asdict(self).items():
            if not isinstance(value, str) or not value.strip():
                raise ValueError(f"Key binding '{name}' must be a non-empty string")

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class SessionConfig:
    """Settings applied when the session starts."""

    tick_rate: float = DEFAULT_TICK_RATE
    state_dir: str = str(DEFAULT_STATE_DIR)
    interface: str | None = None
    auto_scan: bool = False
    notification_ttl: int = DEFAULT_NOTIFICATION_TTL
    log_path: str | None = str(DEFAULT_LOG_PATH)
    keys: KeyBindings = field(default_factory=KeyBindings)

    def __post_init__(self) -> None:
        try:
            tick_rate = float(self.tick_rate)
        except (TypeError, ValueError) as exc:
            raise ValueError("Tick rate must be numeric") from exc
        if not math.isfinite(tick_rate) or tick_rate <= 0:
            raise ValueError("Tick rate must be a positive number of seconds")
        if not isinstance(self.notification_ttl, int) or self.notification_ttl < 1:
            raise ValueError("Notification TTL must be a positive integer")
        if not isinstance(self.state_dir, str) or not self.state_dir.strip():
            raise ValueError("State directory must be a non-empty path")
        object.__setattr__(self, "tick_rate", tick_rate)

    @property
    def state_path(self) -> Path:
        return Path(self.state_dir)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


DEFAULT_SESSION_CONFIG = SessionConfig()


def _parse_bool(value: Any, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        text = value.strip().lower()
        if text in {"1", "true", "yes", "on"}:
            return True
        if text in {"0", "false", "no", "off"}:
            return False
    raise ValueError("Expected a boolean value")


def _parse_config(payload: Mapping[str, Any]) -> SessionConfig:
    keys_payload = payload.get("keys")
    keys = KeyBindings()
    if isinstance(keys_payload, Mapping):
        known = {
            name: keys_payload[name]
            for name in KeyBindings.__dataclass_fields__
            if name in keys_payload
        }
        keys = KeyBindings(**known)
    interface = payload.get("interface")
    if interface is not None and not isinstance(interface, str):
        raise ValueError("Interface must be a string")
    log_path = payload.get("log_path", DEFAULT_SESSION_CONFIG.log_path)
    if log_path is not None and not isinstance(log_path, str):
        raise ValueError("Log path must be a string")
    return SessionConfig(
        tick_rate=payload.get("tick_rate", DEFAULT_TICK_RATE),
        state_dir=payload.get("state_dir", str(DEFAULT_STATE_DIR)),
        interface=(interface.strip() or None) if isinstance(interface, str) else None,
        auto_scan=_parse_bool(payload.get("auto_scan"), default=False),
        notification_ttl=payload.get("notification_ttl", DEFAULT_NOTIFICATION_TTL),
        log_path=log_path,
        keys=keys,
    )


def _apply_environment(config: SessionConfig) -> SessionConfig:
    state_dir = os.environ.get(STATE_DIR_ENV)
    interface = os.environ.get(INTERFACE_ENV)
    if state_dir and state_dir.strip():
        config = replace(config, state_dir=state_dir.strip())
    if interface and interface.strip():
        config = replace(config, interface=interface.strip())
    return config


class ConfigManager:
    """Stores configuration state on disk with thread-safety."""

    def __init__(self, config_path: Path | str) -> None:
        self._path = Path(config_path)
        self._lock = Lock()
        self._ensure_parent()
        self._config = _apply_environment(self._load())

    def _ensure_parent(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)

    def _load(self) -> SessionConfig:
        if not self._path.exists():
            return DEFAULT_SESSION_CONFIG
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
            if not isinstance(payload, dict):
                raise ValueError("Configuration file must contain a JSON object")
            return _parse_config(payload)
        except (OSError, ValueError, TypeError) as exc:
            logging.getLogger(__name__).warning(
                "Invalid configuration in %s, using defaults: %s", self._path, exc
            )
            return DEFAULT_SESSION_CONFIG

    def _save(self) -> None:
        self._path.write_text(json.dumps(self._config.to_dict(), indent=2), encoding="utf-8")

    @property
    def path(self) -> Path:
        return self._path

    def get_config(self) -> SessionConfig:
        with self._lock:
            return self._config

    def update(self, data: Mapping[str, Any]) -> SessionConfig:
        """Merge ``data`` into the stored settings and persist the result."""

        with self._lock:
            merged = self._config.to_dict()
            for key, value in data.items():
                if key == "keys" and isinstance(value, Mapping):
                    merged["keys"] = {**merged["keys"], **value}
                else:
                    merged[key] = value
            config = _parse_config(merged)
            self._config = config
            self._save()
        return config


__all__ = [
    "ConfigManager",
    "DEFAULT_NOTIFICATION_TTL",
    "DEFAULT_SESSION_CONFIG",
    "DEFAULT_TICK_RATE",
    "INTERFACE_ENV",
    "KeyBindings",
    "STATE_DIR_ENV",
    "SessionConfig",
]
