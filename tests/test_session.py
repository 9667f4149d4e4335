import asyncio
from pathlib import Path

from iwd_session.config import SessionConfig
from iwd_session.daemon import DaemonClient, IwctlClient
from iwd_session.eap import Scheme
from iwd_session.errors import DaemonCallFailed
from iwd_session.events import KeyPress, NotificationLevel, RequestKind, Tick
from iwd_session.networks import KnownNetworkInfo, NetworkEntry, StationSnapshot
from iwd_session.session import FocusedList, Session
from iwd_session.session_log import SessionLog


class FakeDaemon(DaemonClient):
    def __init__(self) -> None:
        self.agent = None
        self.calls: list[tuple] = []
        self.connected: str | None = None
        self.fail: set[str] = set()
        self.powered = True
        self.networks = [
            NetworkEntry(
                "Home",
                "psk",
                known=KnownNetworkInfo("Home", "psk", autoconnect=True),
                signal=-5500,
            ),
            NetworkEntry(
                "Office",
                "psk",
                known=KnownNetworkInfo("Office", "psk", autoconnect=False),
                signal=-6500,
            ),
            NetworkEntry("Cafe", "psk", signal=-7000),
            NetworkEntry("corpnet", "8021x", signal=-6000),
        ]

    def _check(self, operation: str) -> None:
        if operation in self.fail:
            raise DaemonCallFailed(operation, f"{operation} failed")

    async def register_agent(self, agent) -> None:
        self.agent = agent

    async def unregister_agent(self) -> None:
        self.calls.append(("unregister",))
        self.agent = None

    async def station_snapshot(self) -> StationSnapshot:
        self._check("snapshot")
        if not self.powered:
            return StationSnapshot("disconnected", False, None, [], powered=False)
        entries = []
        for entry in self.networks:
            known = None
            if entry.known is not None:
                known = KnownNetworkInfo(
                    entry.known.name, entry.known.network_type, entry.known.autoconnect
                )
            entries.append(
                NetworkEntry(
                    entry.name,
                    entry.network_type,
                    connected=entry.name == self.connected,
                    known=known,
                    signal=entry.signal,
                )
            )
        return StationSnapshot(
            state="connected" if self.connected else "disconnected",
            scanning=False,
            connected_network=self.connected,
            networks=entries,
        )

    async def scan(self) -> None:
        self._check("scan")
        self.calls.append(("scan",))

    async def connect(self, name: str) -> None:
        self._check("connect")
        entry = next((item for item in self.networks if item.name == name), None)
        if entry is not None and entry.known is None and entry.network_type == "psk":
            passphrase = await self.agent.request_passphrase(name)
            self.calls.append(("connect", name, passphrase))
        else:
            self.calls.append(("connect", name))
        self.connected = name

    async def connect_hidden(self, name: str) -> None:
        self.calls.append(("connect_hidden", name))

    async def disconnect(self) -> None:
        self._check("disconnect")
        self.calls.append(("disconnect",))
        self.connected = None

    async def forget(self, name: str) -> None:
        self._check("forget")
        self.calls.append(("forget", name))
        self.networks = [entry for entry in self.networks if entry.name != name]

    async def set_autoconnect(self, name: str, enabled: bool) -> None:
        self._check("autoconnect")
        self.calls.append(("autoconnect", name, enabled))
        for entry in self.networks:
            if entry.name == name and entry.known is not None:
                entry.known.autoconnect = enabled

    async def set_powered(self, enabled: bool) -> None:
        self._check("power")
        self.calls.append(("power", enabled))
        self.powered = enabled
        if not enabled:
            self.connected = None


def _session(tmp_path: Path, daemon: FakeDaemon | None = None, **overrides) -> Session:
    config = SessionConfig(state_dir=str(tmp_path), log_path=None, **overrides)
    return Session(daemon or FakeDaemon(), config, log=SessionLog(None))


async def _press(session: Session, *codes: str) -> None:
    for code in codes:
        await session.handle_event(KeyPress(code))


async def _until(predicate) -> None:
    for _ in range(200):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never met")


def _messages(session: Session) -> list[str]:
    return [item.message for item in session.notifications]


def test_start_registers_agent_and_loads_lists(tmp_path: Path) -> None:
    async def runner() -> None:
        daemon = FakeDaemon()
        session = _session(tmp_path, daemon)
        await session.start()
        assert daemon.agent is session.bridge
        assert [entry.name for entry in session.networks.known.entries] == ["Home", "Office"]
        assert [entry.name for entry in session.networks.new.entries] == ["Cafe", "corpnet"]
        assert session.selected is not None and session.selected.name == "Home"

    asyncio.run(runner())


def test_navigation_keys_move_cursor_and_focus(tmp_path: Path) -> None:
    async def runner() -> None:
        session = _session(tmp_path)
        await session.start()
        await _press(session, "j")
        assert session.selected.name == "Office"
        await _press(session, KeyPress.DOWN)
        assert session.selected.name == "Office"
        await _press(session, "k")
        assert session.selected.name == "Home"

        await _press(session, KeyPress.TAB)
        assert session.focus is FocusedList.NEW
        assert session.selected.name == "Cafe"
        await _press(session, KeyPress.BACKTAB)
        assert session.focus is FocusedList.KNOWN

    asyncio.run(runner())


def test_tick_keeps_cursor_and_expires_notifications(tmp_path: Path) -> None:
    async def runner() -> None:
        session = _session(tmp_path, notification_ttl=2)
        await session.start()
        await _press(session, "j", "s")
        assert _messages(session) == ["Start Scanning"]

        await session.handle_event(Tick())
        assert session.selected.name == "Office"
        assert _messages(session) == ["Start Scanning"]
        await session.handle_event(Tick())
        assert session.notifications == []

    asyncio.run(runner())


def test_connect_to_unknown_psk_network_prompts_for_passphrase(tmp_path: Path) -> None:
    async def runner() -> None:
        daemon = FakeDaemon()
        session = _session(tmp_path, daemon)
        await session.start()
        await _press(session, KeyPress.TAB, " ")
        await _until(lambda: session.bridge.passphrase_required)

        await session.process_pending()
        assert session.prompt.request is not None
        assert session.prompt.request.kind is RequestKind.PASSPHRASE
        assert session.prompt.request.network == "Cafe"

        await _press(session, "p", "w", "x", KeyPress.BACKSPACE, "d")
        await _press(session, KeyPress.ENTER)
        await session.wait_idle()
        await session.process_pending()

        assert ("connect", "Cafe", "pwd") in daemon.calls
        assert "Connected to Cafe" in _messages(session)
        assert not session.bridge.passphrase_required
        assert [entry.event for entry in session.log.tail(category="agent")] == [
            "requested",
            "answered",
        ]

    asyncio.run(runner())


def test_escape_cancels_credential_prompt(tmp_path: Path) -> None:
    async def runner() -> None:
        daemon = FakeDaemon()
        session = _session(tmp_path, daemon)
        await session.start()
        await _press(session, KeyPress.TAB, " ")
        await _until(lambda: session.bridge.pending is not None)

        await _press(session, "a", KeyPress.ESC)
        await session.wait_idle()
        assert session.bridge.pending is None
        assert not any(call[0] == "connect" for call in daemon.calls)
        assert daemon.connected is None

    asyncio.run(runner())


def test_space_disconnects_connected_network(tmp_path: Path) -> None:
    async def runner() -> None:
        daemon = FakeDaemon()
        daemon.connected = "Home"
        session = _session(tmp_path, daemon)
        await session.start()
        await _press(session, " ")
        assert ("disconnect",) in daemon.calls
        assert _messages(session) == ["Disconnected from Home"]

    asyncio.run(runner())


def test_space_connects_after_disconnect_with_unchanged_list(tmp_path: Path) -> None:
    async def runner() -> None:
        daemon = FakeDaemon()
        daemon.connected = "Home"
        session = _session(tmp_path, daemon)
        await session.start()
        assert session.selected.connected

        # Dropped by the daemon; both partitions keep their size.
        daemon.connected = None
        await session.refresh()
        assert session.networks.connected_network is None
        assert session.selected.name == "Home"
        assert not session.selected.connected
        row = session.networks.to_dict()["known"][0]
        assert row["name"] == "Home" and row["connected"] is False

        await _press(session, " ")
        await session.wait_idle()
        assert daemon.calls == [("connect", "Home")]

        await session.refresh()
        assert session.selected.connected
        await _press(session, " ")
        assert daemon.calls[-1] == ("disconnect",)

    asyncio.run(runner())


def test_power_key_toggles_device(tmp_path: Path) -> None:
    async def runner() -> None:
        daemon = FakeDaemon()
        daemon.connected = "Home"
        session = _session(tmp_path, daemon)
        await session.start()
        assert session.to_dict()["networks"]["powered"] is True

        await _press(session, "o")
        assert daemon.calls == [("power", False)]
        assert session.networks.powered is False
        assert "Device Powered Off" in _messages(session)

        await session.handle_event(Tick())
        assert session.networks.known.entries == []
        assert session.selected is None
        assert session.to_dict()["networks"]["powered"] is False

        await _press(session, "o")
        assert daemon.calls[-1] == ("power", True)
        assert "Device Powered On" in _messages(session)
        await session.handle_event(Tick())
        assert session.networks.powered is True
        assert [entry.name for entry in session.networks.known.entries] == ["Home", "Office"]
        power_entries = [
            entry.metadata for entry in session.log.tail(category="station")
            if entry.event == "power"
        ]
        assert power_entries == [{"powered": False}, {"powered": True}]

    asyncio.run(runner())


def test_power_failure_keeps_state(tmp_path: Path) -> None:
    async def runner() -> None:
        daemon = FakeDaemon()
        daemon.fail = {"power"}
        session = _session(tmp_path, daemon)
        await session.start()
        await _press(session, "o")
        assert session.networks.powered is True
        assert _messages(session) == ["power failed"]

    asyncio.run(runner())


def test_from_config_shares_state_dir_with_iwctl_client(tmp_path: Path) -> None:
    config = SessionConfig(state_dir=str(tmp_path / "iwd"), interface="wlan5", log_path=None)
    session = Session.from_config(config, log=SessionLog(None))
    assert isinstance(session.daemon, IwctlClient)
    assert session.daemon.interface == "wlan5"
    assert session.daemon.state_dir == tmp_path / "iwd"
    assert session.open_wizard("corpnet").path.parent == session.daemon.state_dir

    daemon = FakeDaemon()
    assert Session.from_config(config, daemon=daemon, log=SessionLog(None)).daemon is daemon


def test_forget_and_autoconnect_apply_to_known_network(tmp_path: Path) -> None:
    async def runner() -> None:
        daemon = FakeDaemon()
        session = _session(tmp_path, daemon)
        await session.start()
        await _press(session, "a")
        assert ("autoconnect", "Home", False) in daemon.calls
        assert "Disable Autoconnect for: Home" in _messages(session)
        assert session.networks.known.find("Home").known.autoconnect is False

        await _press(session, "d")
        assert ("forget", "Home") in daemon.calls
        assert "Network Removed" in _messages(session)

        await session.handle_event(Tick())
        assert [entry.name for entry in session.networks.known.entries] == ["Office"]

    asyncio.run(runner())


def test_forget_is_ignored_for_new_networks(tmp_path: Path) -> None:
    async def runner() -> None:
        daemon = FakeDaemon()
        session = _session(tmp_path, daemon)
        await session.start()
        await _press(session, KeyPress.TAB, "d", "a")
        assert daemon.calls == []

    asyncio.run(runner())


def test_daemon_failure_becomes_error_notification(tmp_path: Path) -> None:
    async def runner() -> None:
        daemon = FakeDaemon()
        daemon.fail = {"scan", "snapshot"}
        session = _session(tmp_path, daemon)
        await session.start()
        await _press(session, "s")
        levels = {item.message: item.level for item in session.notifications}
        assert levels["scan failed"] is NotificationLevel.ERROR
        assert levels["snapshot failed"] is NotificationLevel.ERROR

    asyncio.run(runner())


def test_enterprise_network_opens_wizard_and_reconnects(tmp_path: Path) -> None:
    async def runner() -> None:
        daemon = FakeDaemon()
        session = _session(tmp_path, daemon)
        await session.start()
        await _press(session, KeyPress.TAB, "j", " ")
        assert session.wizard is not None
        assert session.wizard.network == "corpnet"

        while session.wizard.scheme is not Scheme.PWD:
            await _press(session, KeyPress.RIGHT)
        # Keys bound to commands are typed into the focused field.
        await _press(session, KeyPress.ENTER, "b", "o", "b", KeyPress.TAB)
        await _press(session, "s", "e", "c", "r", "e", "t", KeyPress.TAB, KeyPress.ENTER)

        await session.process_pending()
        assert session.wizard is None
        assert (tmp_path / "corpnet.8021x").exists()
        assert "Network corpnet configured" in _messages(session)
        await session.wait_idle()
        assert ("connect", "corpnet") in daemon.calls
        assert daemon.calls.count(("scan",)) == 0

    asyncio.run(runner())


def test_escape_closes_wizard(tmp_path: Path) -> None:
    async def runner() -> None:
        session = _session(tmp_path)
        await session.start()
        session.open_wizard("corpnet")
        await _press(session, KeyPress.ESC)
        assert session.wizard is None
        assert [entry.event for entry in session.log.tail(category="eap")] == [
            "opened",
            "closed",
        ]

    asyncio.run(runner())


def test_hidden_network_prompt(tmp_path: Path) -> None:
    async def runner() -> None:
        daemon = FakeDaemon()
        session = _session(tmp_path, daemon)
        await session.start()
        await _press(session, "n")
        assert session.hidden_prompt is not None
        await _press(session, "l", "a", "b", KeyPress.ENTER)
        assert session.hidden_prompt is None
        await session.wait_idle()
        await session.process_pending()
        assert ("connect_hidden", "lab") in daemon.calls
        assert "Connected to lab" in _messages(session)

    asyncio.run(runner())


def test_run_stops_on_quit_and_cleans_up(tmp_path: Path) -> None:
    async def runner() -> None:
        daemon = FakeDaemon()
        session = _session(tmp_path, daemon, tick_rate=0.01)
        session.send_key(KeyPress("q"))
        await asyncio.wait_for(session.run(), timeout=2)
        assert not session.running
        assert session.bridge.closed
        assert session.events.closed
        assert ("unregister",) in daemon.calls

    asyncio.run(runner())


def test_close_cancels_pending_connection(tmp_path: Path) -> None:
    async def runner() -> None:
        daemon = FakeDaemon()
        session = _session(tmp_path, daemon)
        await session.start()
        await _press(session, KeyPress.TAB, " ")
        await _until(lambda: session.bridge.pending is not None)

        await session.close()
        assert session.bridge.pending is None
        assert daemon.connected is None
        await session.close()

    asyncio.run(runner())
