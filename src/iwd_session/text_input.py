"""Single-line text buffer fed by key presses."""

from __future__ import annotations

from .events import KeyPress


class TextInput:
    """Editable text with a cursor, driven by :class:`KeyPress` events."""

    def __init__(self, value: str = "") -> None:
        self._value = value
        self._cursor = len(value)

    @property
    def value(self) -> str:
        return self._value

    @property
    def cursor(self) -> int:
        return self._cursor

    def is_empty(self) -> bool:
        return not self._value

    def reset(self) -> None:
        self._value = ""
        self._cursor = 0

    def set(self, value: str) -> None:
        self._value = value
        self._cursor = len(value)

    def handle_key(self, key: KeyPress) -> bool:
        """Apply an editing key and return True when it was consumed."""

        if key.ctrl:
            if key.code == "u":
                self._value = self._value[self._cursor:]
                self._cursor = 0
                return True
            return False
        char = key.char
        if char is not None:
            self._value = self._value[: self._cursor] + char + self._value[self._cursor:]
            self._cursor += 1
            return True
        if key.code == KeyPress.BACKSPACE:
            if self._cursor > 0:
                self._value = self._value[: self._cursor - 1] + self._value[self._cursor:]
                self._cursor -= 1
            return True
        if key.code == KeyPress.LEFT:
            self._cursor = max(0, self._cursor - 1)
            return True
        if key.code == KeyPress.RIGHT:
            self._cursor = min(len(self._value), self._cursor + 1)
            return True
        return False

    def masked(self, mask: str = "*") -> str:
        return mask * len(self._value)

    def __repr__(self) -> str:
        return f"TextInput(len={len(self._value)})"


__all__ = ["TextInput"]
