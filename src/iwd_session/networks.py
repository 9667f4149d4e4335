"""Network list state and the reconciler that keeps it cursor-stable."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Sequence

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class KnownNetworkInfo:
    """Daemon-owned metadata for a network with a stored profile."""

    name: str
    network_type: str
    autoconnect: bool = True
    hidden: bool = False
    last_connected: datetime | None = None

    def to_dict(self) -> dict[str, object | None]:
        return {
            "name": self.name,
            "network_type": self.network_type,
            "autoconnect": self.autoconnect,
            "hidden": self.hidden,
            "last_connected": (
                self.last_connected.isoformat() if self.last_connected else None
            ),
        }


@dataclass(slots=True)
class NetworkEntry:
    """A discovered network as reported by one daemon poll."""

    name: str
    network_type: str
    connected: bool = False
    known: KnownNetworkInfo | None = None
    # Signal strength in 100 * dBm, as reported by iwd.
    signal: int = 0

    @property
    def is_known(self) -> bool:
        return self.known is not None

    @property
    def signal_percent(self) -> int:
        dbm = self.signal // 100
        if dbm >= -50:
            return 100
        return max(0, min(100, 2 * (100 + dbm)))

    def to_dict(self) -> dict[str, object | None]:
        return {
            "name": self.name,
            "network_type": self.network_type,
            "connected": self.connected,
            "signal": self.signal,
            "signal_percent": self.signal_percent,
            "known": self.known.to_dict() if self.known else None,
        }


@dataclass(slots=True)
class NetworkList:
    """Ordered entries plus a selection cursor.

    An empty list has no cursor; a non-empty one keeps it in ``[0, len)``.
    """

    entries: list[NetworkEntry] = field(default_factory=list)
    cursor: int | None = None

    def __post_init__(self) -> None:
        if not self.entries:
            self.cursor = None
        elif self.cursor is None or not 0 <= self.cursor < len(self.entries):
            self.cursor = 0

    def __len__(self) -> int:
        return len(self.entries)

    @classmethod
    def fresh(cls, entries: Iterable[NetworkEntry]) -> "NetworkList":
        items = list(entries)
        return cls(items, 0 if items else None)

    @property
    def selected(self) -> NetworkEntry | None:
        if self.cursor is None:
            return None
        return self.entries[self.cursor]

    def select_next(self) -> None:
        if not self.entries:
            return
        if self.cursor is None:
            self.cursor = 0
        elif self.cursor < len(self.entries) - 1:
            self.cursor += 1

    def select_previous(self) -> None:
        if not self.entries:
            return
        if self.cursor is None:
            self.cursor = 0
        else:
            self.cursor = max(0, self.cursor - 1)

    def select_name(self, name: str) -> bool:
        for index, entry in enumerate(self.entries):
            if entry.name == name:
                self.cursor = index
                return True
        return False

    def find(self, name: str) -> NetworkEntry | None:
        for entry in self.entries:
            if entry.name == name:
                return entry
        return None


@dataclass(slots=True)
class StationSnapshot:
    """Raw station state fetched from the daemon on one tick."""

    state: str
    scanning: bool
    connected_network: str | None
    networks: list[NetworkEntry]
    powered: bool = True


@dataclass(slots=True)
class NetworkListState:
    known: NetworkList = field(default_factory=NetworkList)
    new: NetworkList = field(default_factory=NetworkList)
    connected_network: str | None = None
    station_state: str = "disconnected"
    scanning: bool = False
    powered: bool = True

    def is_connected(self, entry: NetworkEntry) -> bool:
        """Connectedness follows the station, not the per-row flag."""

        return self.connected_network is not None and entry.name == self.connected_network

    def _entry_dict(self, entry: NetworkEntry) -> dict[str, object | None]:
        payload = entry.to_dict()
        payload["connected"] = self.is_connected(entry)
        return payload

    def to_dict(self) -> dict[str, object | None]:
        return {
            "powered": self.powered,
            "station_state": self.station_state,
            "scanning": self.scanning,
            "connected_network": self.connected_network,
            "known": [self._entry_dict(entry) for entry in self.known.entries],
            "known_cursor": self.known.cursor,
            "new": [self._entry_dict(entry) for entry in self.new.entries],
            "new_cursor": self.new.cursor,
        }


def partition(entries: Iterable[NetworkEntry]) -> tuple[list[NetworkEntry], list[NetworkEntry]]:
    """Split a snapshot into (known, new) by presence of known-network metadata."""

    known: list[NetworkEntry] = []
    new: list[NetworkEntry] = []
    for entry in entries:
        (known if entry.is_known else new).append(entry)
    return known, new


class NetworkListReconciler:
    """Merge freshly polled snapshots into the persistent list state.

    The daemon hands back new objects on every poll. When a partition keeps
    its size the previous entries stay in place and the live values (signal,
    connection flag, autoconnect) are copied forward by name, so the cursor
    survives. When the size changes
    the partition is replaced and the cursor reset to the first row.

    A same-size swap (one network leaves while another appears) is not
    detected: the departed entry keeps its stale values.
    """

    def reconcile(self, state: NetworkListState, snapshot: StationSnapshot) -> NetworkListState:
        known, new = partition(snapshot.networks)
        state.known = self._merge(state.known, known, copy_known_flags=True)
        state.new = self._merge(state.new, new, copy_known_flags=False)
        state.connected_network = snapshot.connected_network
        state.station_state = snapshot.state
        state.scanning = snapshot.scanning
        state.powered = snapshot.powered
        return state

    @staticmethod
    def _merge(
        previous: NetworkList,
        fresh: Sequence[NetworkEntry],
        *,
        copy_known_flags: bool,
    ) -> NetworkList:
        if len(previous) != len(fresh):
            logger.debug(
                "Network membership changed (%d -> %d); resetting cursor",
                len(previous),
                len(fresh),
            )
            return NetworkList.fresh(fresh)
        by_name = {entry.name: entry for entry in fresh}
        for entry in previous.entries:
            refreshed = by_name.get(entry.name)
            if refreshed is None:
                continue
            entry.signal = refreshed.signal
            entry.connected = refreshed.connected
            if copy_known_flags and entry.known is not None and refreshed.known is not None:
                entry.known.autoconnect = refreshed.known.autoconnect
        return previous


__all__ = [
    "KnownNetworkInfo",
    "NetworkEntry",
    "NetworkList",
    "NetworkListReconciler",
    "NetworkListState",
    "StationSnapshot",
    "partition",
]
