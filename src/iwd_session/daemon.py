"""Clients for the iwd wireless daemon."""

from __future__ import annotations

import asyncio
import logging
import re
import subprocess
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Sequence

from .eap import DEFAULT_STATE_DIR, profile_path
from .errors import DaemonCallFailed
from .networks import KnownNetworkInfo, NetworkEntry, StationSnapshot

if TYPE_CHECKING:  # pragma: no cover - imports for typing only
    from .agent import CredentialBridge
    from .config import SessionConfig

logger = logging.getLogger(__name__)

ANSI_ESCAPE_RE = re.compile(r"\x1B\[[0-?]*[ -/]*[@-~]")
_COLUMN_SPLIT_RE = re.compile(r"\s{2,}")
_LAST_CONNECTED_FORMATS = ("%Y-%m-%dT%H:%M:%SZ", "%b %d, %I:%M %p", "%Y-%m-%d %H:%M:%S")


def strip_ansi(text: str) -> str:
    return ANSI_ESCAPE_RE.sub("", text)


class DaemonClient:
    """Abstract interface over the wireless daemon.

    Every operation raises :class:`DaemonCallFailed` when the daemon rejects
    it or cannot be reached.
    """

    async def register_agent(self, agent: "CredentialBridge") -> None:  # pragma: no cover
        raise NotImplementedError

    async def unregister_agent(self) -> None:  # pragma: no cover
        raise NotImplementedError

    async def station_snapshot(self) -> StationSnapshot:  # pragma: no cover
        raise NotImplementedError

    async def scan(self) -> None:  # pragma: no cover
        raise NotImplementedError

    async def connect(self, name: str) -> None:  # pragma: no cover
        raise NotImplementedError

    async def connect_hidden(self, name: str) -> None:  # pragma: no cover
        raise NotImplementedError

    async def disconnect(self) -> None:  # pragma: no cover
        raise NotImplementedError

    async def forget(self, name: str) -> None:  # pragma: no cover
        raise NotImplementedError

    async def set_autoconnect(self, name: str, enabled: bool) -> None:  # pragma: no cover
        raise NotImplementedError

    async def set_powered(self, enabled: bool) -> None:  # pragma: no cover
        raise NotImplementedError


def _table_rows(output: str) -> list[list[str]]:
    """Return the data rows of an iwctl table, split into columns.

    iwctl frames its tables with dashed rules: title, rule, header, rule,
    rows. Everything after the second rule is data.
    """

    rows: list[list[str]] = []
    rules = 0
    for raw in strip_ansi(output).splitlines():
        line = raw.rstrip()
        if line.strip().startswith("---"):
            rules += 1
            continue
        if rules < 2 or not line.strip():
            continue
        rows.append([column for column in _COLUMN_SPLIT_RE.split(line.strip()) if column])
    return rows


def _parse_signal(value: str) -> int:
    """Convert an iwctl signal column to 100 * dBm."""

    text = value.strip()
    if text.startswith("*") or not text:
        # Star rendering: four stars at -50 dBm, one fewer per 12.5 dB.
        stars = text.count("*")
        return int((-100 + stars * 12.5) * 100)
    try:
        return int(text) * 100
    except ValueError:
        return -10000


def _is_on(value: str) -> bool:
    return value.strip().lower() in {"yes", "true", "on"}


def _parse_last_connected(value: str) -> datetime | None:
    text = value.strip()
    for fmt in _LAST_CONNECTED_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def parse_networks(output: str) -> list[tuple[str, str, bool, int]]:
    """Parse ``station <iface> get-networks rssi-dbms`` into (name, type, connected, signal)."""

    networks: list[tuple[str, str, bool, int]] = []
    for columns in _table_rows(output):
        connected = False
        if columns and columns[0].startswith(">"):
            connected = True
            first = columns[0][1:].strip()
            columns = ([first] if first else []) + columns[1:]
        if len(columns) < 2:
            continue
        name, security = columns[0], columns[1]
        signal = _parse_signal(columns[2]) if len(columns) > 2 else -10000
        networks.append((name, security, connected, signal))
    return networks


def parse_known_networks(output: str) -> dict[str, KnownNetworkInfo]:
    """Parse ``known-networks list`` into records keyed by name."""

    known: dict[str, KnownNetworkInfo] = {}
    for columns in _table_rows(output):
        if len(columns) < 2:
            continue
        name, security = columns[0], columns[1]
        hidden = False
        last_connected = None
        for extra in columns[2:]:
            if extra == "*":
                hidden = True
            else:
                last_connected = _parse_last_connected(extra)
        known[name] = KnownNetworkInfo(
            name=name,
            network_type=security,
            hidden=hidden,
            last_connected=last_connected,
        )
    return known


def parse_properties(output: str) -> dict[str, str]:
    """Parse an iwctl ``show`` table into a property/value mapping.

    The optional settable marker (``*``) in the first column is dropped.
    """

    properties: dict[str, str] = {}
    for columns in _table_rows(output):
        if columns and columns[0] == "*":
            columns = columns[1:]
        if not columns:
            continue
        value = columns[1] if len(columns) > 1 else ""
        properties[columns[0]] = value
    return properties


class IwctlClient(DaemonClient):
    """Drive iwd through the ``iwctl`` command-line client.

    ``iwctl`` cannot host an agent object, so passphrases for unknown PSK
    networks are requested from the registered agent here and passed on
    the command line as ``--passphrase``. While that ``iwctl`` process
    runs, the passphrase is readable by other local users through
    ``/proc/<pid>/cmdline`` and process listings. Use a D-Bus agent where
    that exposure matters.

    AutoConnect flags are read once per known network and cached until the
    set of known networks changes.
    """

    def __init__(
        self,
        interface: str | None = None,
        *,
        state_dir: Path | str = DEFAULT_STATE_DIR,
        timeout: float = 15.0,
        binary: str = "iwctl",
    ) -> None:
        self._preferred_interface = interface
        self._detected_interface: str | None = None
        self._state_dir = Path(state_dir)
        self._timeout = timeout
        self._binary = binary
        self._agent: CredentialBridge | None = None
        self._networks: dict[str, NetworkEntry] = {}
        self._known_names: frozenset[str] = frozenset()
        self._autoconnect_cache: dict[str, bool] = {}

    @classmethod
    def from_config(cls, config: "SessionConfig", **kwargs) -> "IwctlClient":
        return cls(config.interface, state_dir=config.state_path, **kwargs)

    @property
    def interface(self) -> str | None:
        return self._preferred_interface or self._detected_interface

    @property
    def state_dir(self) -> Path:
        return self._state_dir

    # ------------------------------- helpers -------------------------------
    def _run(self, operation: str, args: Sequence[str]) -> str:
        command = [self._binary, *args]
        try:
            completed = subprocess.run(
                command,
                check=True,
                capture_output=True,
                text=True,
                timeout=self._timeout,
            )
        except FileNotFoundError as exc:  # pragma: no cover - environment specific
            raise DaemonCallFailed(operation, "iwctl command unavailable") from exc
        except subprocess.TimeoutExpired as exc:  # pragma: no cover - environment specific
            raise DaemonCallFailed(operation, "iwctl command timed out") from exc
        except subprocess.CalledProcessError as exc:
            stderr = strip_ansi(exc.stderr or "").strip()
            stdout = strip_ansi(exc.stdout or "").strip()
            error_output = stderr or stdout or str(exc)
            raise DaemonCallFailed(operation, error_output) from exc
        return strip_ansi(completed.stdout)

    async def _call(self, operation: str, args: Sequence[str]) -> str:
        return await asyncio.to_thread(self._run, operation, args)

    async def _interface(self) -> str:
        if self._preferred_interface:
            return self._preferred_interface
        if self._detected_interface:
            return self._detected_interface
        output = await self._call("station list", ["station", "list"])
        for columns in _table_rows(output):
            if columns:
                self._detected_interface = columns[0]
                logger.info("Using wireless station %s", self._detected_interface)
                return self._detected_interface
        raise DaemonCallFailed("station list", "No wireless station detected")

    async def _autoconnect(self, name: str) -> bool:
        cached = self._autoconnect_cache.get(name)
        if cached is not None:
            return cached
        try:
            output = await self._call("known-networks show", ["known-networks", name, "show"])
        except DaemonCallFailed as exc:
            logger.debug("Unable to read AutoConnect for %s: %s", name, exc)
            return True
        value = parse_properties(output).get("AutoConnect", "yes")
        enabled = _is_on(value)
        self._autoconnect_cache[name] = enabled
        return enabled

    async def _powered(self, interface: str) -> bool:
        device = parse_properties(await self._call("device show", ["device", interface, "show"]))
        return _is_on(device.get("Powered", "on"))

    # ------------------------------ agent hooks ----------------------------
    async def register_agent(self, agent: "CredentialBridge") -> None:
        self._agent = agent

    async def unregister_agent(self) -> None:
        self._agent = None

    # ------------------------------ operations -----------------------------
    async def station_snapshot(self) -> StationSnapshot:
        interface = await self._interface()
        if not await self._powered(interface):
            # A powered-off device has no station to query.
            self._networks = {}
            return StationSnapshot(
                state="disconnected",
                scanning=False,
                connected_network=None,
                networks=[],
                powered=False,
            )
        station = parse_properties(
            await self._call("station show", ["station", interface, "show"])
        )
        visible = parse_networks(
            await self._call(
                "get-networks", ["station", interface, "get-networks", "rssi-dbms"]
            )
        )
        known = parse_known_networks(
            await self._call("known-networks list", ["known-networks", "list"])
        )
        names = frozenset(known)
        if names != self._known_names:
            self._known_names = names
            self._autoconnect_cache.clear()
        entries: list[NetworkEntry] = []
        for name, security, connected, signal in visible:
            info = known.get(name)
            if info is not None:
                info.autoconnect = await self._autoconnect(name)
            entries.append(
                NetworkEntry(
                    name=name,
                    network_type=security,
                    connected=connected,
                    known=info,
                    signal=signal,
                )
            )
        self._networks = {entry.name: entry for entry in entries}
        connected_network = station.get("Connected network") or None
        return StationSnapshot(
            state=station.get("State", "disconnected"),
            scanning=station.get("Scanning", "no").lower() == "yes",
            connected_network=connected_network,
            networks=entries,
        )

    async def scan(self) -> None:
        interface = await self._interface()
        await self._call("scan", ["station", interface, "scan"])

    async def connect(self, name: str) -> None:
        interface = await self._interface()
        args = ["station", interface, "connect", name]
        entry = self._networks.get(name)
        if entry is not None and not entry.is_known:
            if entry.network_type == "8021x":
                if not profile_path(name, self._state_dir).exists():
                    raise DaemonCallFailed(
                        "connect", f"{name} needs an enterprise profile before connecting"
                    )
            elif entry.network_type == "psk":
                if self._agent is None:
                    raise DaemonCallFailed("connect", "No agent registered")
                passphrase = await self._agent.request_passphrase(name)
                args = ["--passphrase", passphrase, *args]
        await self._call("connect", args)

    async def connect_hidden(self, name: str) -> None:
        interface = await self._interface()
        await self._call("connect-hidden", ["station", interface, "connect-hidden", name])

    async def disconnect(self) -> None:
        interface = await self._interface()
        await self._call("disconnect", ["station", interface, "disconnect"])

    async def forget(self, name: str) -> None:
        await self._call("forget", ["known-networks", name, "forget"])
        self._networks.pop(name, None)
        self._autoconnect_cache.pop(name, None)

    async def set_autoconnect(self, name: str, enabled: bool) -> None:
        await self._call(
            "set-autoconnect",
            ["known-networks", name, "set-property", "AutoConnect", "yes" if enabled else "no"],
        )
        self._autoconnect_cache[name] = enabled

    async def set_powered(self, enabled: bool) -> None:
        interface = await self._interface()
        await self._call(
            "set-powered",
            ["device", interface, "set-property", "Powered", "on" if enabled else "off"],
        )


__all__ = [
    "DaemonClient",
    "IwctlClient",
    "parse_known_networks",
    "parse_networks",
    "parse_properties",
    "strip_ansi",
]
