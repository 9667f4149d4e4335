"""Events flowing through the session loop."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class RequestKind(str, Enum):
    """Kinds of secrets the daemon can ask the agent for."""

    PASSPHRASE = "passphrase"
    PRIVATE_KEY_PASSPHRASE = "private_key_passphrase"
    USERNAME_AND_PASSWORD = "username_and_password"
    PASSWORD = "password"


class NotificationLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class Tick:
    """Periodic refresh trigger."""


@dataclass(frozen=True, slots=True)
class KeyPress:
    """A single key press from the terminal.

    ``code`` is either one of the named keys below or a single character.
    """

    code: str
    ctrl: bool = False

    ENTER = "enter"
    ESC = "esc"
    TAB = "tab"
    BACKTAB = "backtab"
    UP = "up"
    DOWN = "down"
    LEFT = "left"
    RIGHT = "right"
    BACKSPACE = "backspace"

    @property
    def char(self) -> str | None:
        if len(self.code) == 1:
            return self.code
        return None

    def matches(self, binding: str) -> bool:
        """Return True when the key matches a binding such as ``"s"`` or ``"ctrl+r"``."""

        wanted = binding.strip()
        ctrl = False
        if wanted.lower().startswith("ctrl+"):
            ctrl = True
            wanted = wanted[5:]
        if wanted == "space":
            wanted = " "
        return self.code == wanted and self.ctrl == ctrl


@dataclass(frozen=True, slots=True)
class CredentialRequested:
    kind: RequestKind
    network: str
    username: str | None = None


@dataclass(frozen=True, slots=True)
class AuthConfigured:
    network: str


@dataclass(frozen=True, slots=True)
class ConfigureEnterprise:
    network: str


@dataclass(frozen=True, slots=True)
class ConnectHidden:
    name: str


@dataclass(slots=True)
class Notification:
    message: str
    level: NotificationLevel = NotificationLevel.INFO
    ttl: int = 1

    def to_dict(self) -> dict[str, object]:
        return {"message": self.message, "level": self.level.value, "ttl": self.ttl}


Event = (
    Tick
    | KeyPress
    | CredentialRequested
    | AuthConfigured
    | ConfigureEnterprise
    | ConnectHidden
    | Notification
)


__all__ = [
    "AuthConfigured",
    "ConfigureEnterprise",
    "ConnectHidden",
    "CredentialRequested",
    "Event",
    "KeyPress",
    "Notification",
    "NotificationLevel",
    "RequestKind",
    "Tick",
]
