from datetime import datetime

from iwd_session.networks import (
    KnownNetworkInfo,
    NetworkEntry,
    NetworkList,
    NetworkListReconciler,
    NetworkListState,
    StationSnapshot,
    partition,
)


def _known(name: str, *, autoconnect: bool = True, signal: int = -6000) -> NetworkEntry:
    return NetworkEntry(
        name=name,
        network_type="psk",
        known=KnownNetworkInfo(name=name, network_type="psk", autoconnect=autoconnect),
        signal=signal,
    )


def _new(name: str, *, signal: int = -7000, network_type: str = "psk") -> NetworkEntry:
    return NetworkEntry(name=name, network_type=network_type, signal=signal)


def _snapshot(*entries: NetworkEntry, connected: str | None = None) -> StationSnapshot:
    return StationSnapshot(
        state="connected" if connected else "disconnected",
        scanning=False,
        connected_network=connected,
        networks=list(entries),
    )


def test_partition_splits_by_known_metadata() -> None:
    known, new = partition([_known("Home"), _new("Cafe"), _known("Office")])
    assert [entry.name for entry in known] == ["Home", "Office"]
    assert [entry.name for entry in new] == ["Cafe"]


def test_empty_list_has_no_cursor() -> None:
    assert NetworkList().cursor is None
    assert NetworkList([_new("Cafe")], cursor=None).cursor == 0
    assert NetworkList([_new("Cafe")], cursor=5).cursor == 0


def test_reconcile_is_idempotent_for_same_snapshot() -> None:
    reconciler = NetworkListReconciler()
    state = NetworkListState()
    entries = [_known("A"), _known("B"), _known("C")]
    reconciler.reconcile(state, _snapshot(*entries))
    state.known.select_next()
    state.known.select_next()
    assert state.known.cursor == 2

    reconciler.reconcile(state, _snapshot(_known("A"), _known("B"), _known("C")))
    assert state.known.cursor == 2
    assert [entry.name for entry in state.known.entries] == ["A", "B", "C"]


def test_same_count_keeps_order_and_copies_signal_by_name() -> None:
    reconciler = NetworkListReconciler()
    state = NetworkListState()
    reconciler.reconcile(state, _snapshot(_new("Cafe", signal=-8000), _new("Library")))
    state.new.select_next()

    # The daemon reorders by signal strength; identity is by name.
    reconciler.reconcile(
        state, _snapshot(_new("Library", signal=-7000), _new("Cafe", signal=-4500))
    )
    assert [entry.name for entry in state.new.entries] == ["Cafe", "Library"]
    assert state.new.entries[0].signal == -4500
    assert state.new.cursor == 1


def test_membership_change_resets_cursor() -> None:
    reconciler = NetworkListReconciler()
    state = NetworkListState()
    reconciler.reconcile(state, _snapshot(*[_known(f"net-{i}") for i in range(5)]))
    for _ in range(4):
        state.known.select_next()
    assert state.known.cursor == 4

    reconciler.reconcile(state, _snapshot(_known("net-0"), _known("net-1")))
    assert state.known.cursor == 0
    assert len(state.known) == 2

    reconciler.reconcile(state, _snapshot())
    assert state.known.cursor is None
    assert state.known.selected is None


def test_autoconnect_flag_passes_through_for_known_networks() -> None:
    reconciler = NetworkListReconciler()
    state = NetworkListState()
    reconciler.reconcile(state, _snapshot(_known("A", autoconnect=False)))
    cursor = state.known.cursor

    reconciler.reconcile(state, _snapshot(_known("A", autoconnect=True)))
    entry = state.known.find("A")
    assert entry is not None and entry.known is not None
    assert entry.known.autoconnect is True
    assert state.known.cursor == cursor


def test_station_fields_follow_every_snapshot() -> None:
    reconciler = NetworkListReconciler()
    state = NetworkListState()
    reconciler.reconcile(state, _snapshot(_known("Home"), connected="Home"))
    assert state.connected_network == "Home"
    assert state.station_state == "connected"

    reconciler.reconcile(state, _snapshot(_known("Home")))
    assert state.connected_network is None
    assert state.station_state == "disconnected"


def test_cursor_navigation_clamps_at_edges() -> None:
    items = NetworkList.fresh([_new("A"), _new("B")])
    items.select_previous()
    assert items.cursor == 0
    items.select_next()
    items.select_next()
    assert items.cursor == 1
    assert items.select_name("A")
    assert items.cursor == 0
    assert not items.select_name("missing")


def test_signal_percent() -> None:
    assert _new("A", signal=-4000).signal_percent == 100
    assert _new("A", signal=-5000).signal_percent == 100
    assert _new("A", signal=-7000).signal_percent == 60
    assert _new("A", signal=-10000).signal_percent == 0


def test_to_dict_serialises_known_metadata() -> None:
    entry = _known("Home")
    assert entry.known is not None
    entry.known.last_connected = datetime(2024, 5, 1, 12, 30)
    payload = entry.to_dict()
    assert payload["known"]["last_connected"] == "2024-05-01T12:30:00"
    assert payload["signal_percent"] == 80


def test_same_count_copies_connection_state() -> None:
    reconciler = NetworkListReconciler()
    state = NetworkListState()
    home = _known("Home")
    home.connected = True
    reconciler.reconcile(state, _snapshot(home, _known("Office"), connected="Home"))
    state.known.select_next()
    previous = state.known.entries[0]

    reconciler.reconcile(state, _snapshot(_known("Home"), _known("Office")))
    assert state.known.entries[0] is previous
    assert previous.connected is False
    assert state.known.cursor == 1
    assert not state.is_connected(previous)
    assert [row["connected"] for row in state.to_dict()["known"]] == [False, False]

    office = _known("Office")
    office.connected = True
    reconciler.reconcile(state, _snapshot(_known("Home"), office, connected="Office"))
    assert [entry.connected for entry in state.known.entries] == [False, True]
    assert [row["connected"] for row in state.to_dict()["known"]] == [False, True]


def test_powered_flag_follows_snapshot() -> None:
    reconciler = NetworkListReconciler()
    state = NetworkListState()
    reconciler.reconcile(state, _snapshot(_known("Home")))
    assert state.to_dict()["powered"] is True

    off = StationSnapshot("disconnected", False, None, [], powered=False)
    reconciler.reconcile(state, off)
    assert state.powered is False
    assert state.known.cursor is None
