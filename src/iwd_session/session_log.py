"""Persistent journal of session activity (credential prompts, connections, profiles)."""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import deque
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

CATEGORIES = ("agent", "station", "eap", "session")
DEFAULT_LOG_PATH = Path("data/session_log.jsonl")


@dataclass(frozen=True, slots=True)
class SessionLogEntry:
    category: str
    event: str
    message: str
    network: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        # Optional keys are left out of the journal when unset.
        return {key: value for key, value in asdict(self).items() if value not in (None, {})}

    @classmethod
    def from_json(cls, line: str) -> "SessionLogEntry | None":
        """Rebuild an entry from one journal line; malformed lines yield ``None``."""

        try:
            data = json.loads(line)
        except ValueError:
            return None
        if not isinstance(data, dict):
            return None
        event, message = data.get("event"), data.get("message")
        if not (isinstance(event, str) and isinstance(message, str)):
            return None
        category = data.get("category")
        network = data.get("network")
        metadata = data.get("metadata")
        stamp = data.get("timestamp")
        return cls(
            category=category if category in CATEGORIES else "session",
            event=event,
            message=message,
            network=network if isinstance(network, str) else None,
            metadata=metadata if isinstance(metadata, dict) else {},
            timestamp=float(stamp) if isinstance(stamp, (int, float)) else time.time(),
        )


class SessionLog:
    """JSON-lines journal with the most recent entries kept in memory.

    Only network names and request kinds are recorded, never secrets. With
    ``path=None`` the journal is memory-only; a journal whose file cannot
    be written keeps working in memory and logs a warning.
    """

    def __init__(
        self, path: Path | str | None = DEFAULT_LOG_PATH, *, max_entries: int = 500
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be positive")
        self._recent: deque[SessionLogEntry] = deque(maxlen=max_entries)
        self._guard = threading.Lock()
        self._file = self._prepare(Path(path)) if path is not None else None
        if self._file is not None and self._file.exists():
            self._load(self._file)

    @staticmethod
    def _prepare(path: Path) -> Path | None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:  # pragma: no cover - depends on filesystem permissions
            logger.warning("Session log disabled, cannot create %s: %s", path.parent, exc)
            return None
        return path

    def _load(self, path: Path) -> None:
        try:
            with path.open(encoding="utf-8") as handle:
                for line in handle:
                    entry = SessionLogEntry.from_json(line) if line.strip() else None
                    if entry is not None:
                        self._recent.append(entry)
        except OSError as exc:  # pragma: no cover - depends on filesystem permissions
            logger.warning("Unable to read session log %s: %s", path, exc)

    @property
    def path(self) -> Path | None:
        return self._file

    def record(
        self,
        category: str,
        event: str,
        message: str,
        *,
        network: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> SessionLogEntry:
        if category not in CATEGORIES:
            raise ValueError(f"Unknown log category: {category}")
        details = {key: value for key, value in (metadata or {}).items() if value is not None}
        entry = SessionLogEntry(category, event, message, network, details)
        with self._guard:
            self._recent.append(entry)
            if self._file is not None:
                self._write(self._file, entry)
        return entry

    @staticmethod
    def _write(path: Path, entry: SessionLogEntry) -> None:
        line = json.dumps(entry.to_dict(), separators=(",", ":"))
        try:
            with path.open("a", encoding="utf-8") as handle:
                print(line, file=handle)
        except OSError as exc:  # pragma: no cover - depends on filesystem permissions
            logger.warning("Unable to append to session log %s: %s", path, exc)

    def tail(
        self, limit: int | None = None, *, category: str | None = None
    ) -> list[SessionLogEntry]:
        """Return the newest ``limit`` entries, oldest first."""

        with self._guard:
            selected = [item for item in self._recent if category in (None, item.category)]
        if limit is not None and limit > 0:
            return selected[-limit:]
        return selected


__all__ = ["CATEGORIES", "DEFAULT_LOG_PATH", "SessionLog", "SessionLogEntry"]
