"""Cooperative event loop tying the agent, network lists and EAP wizard together."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Awaitable

from .agent import CredentialBridge
from .channels import Channel
from .config import DEFAULT_SESSION_CONFIG, SessionConfig
from .daemon import DaemonClient, IwctlClient
from .eap import EnterpriseAuthWizard
from .errors import Canceled, ChannelClosed, DaemonCallFailed, Disconnected
from .events import (
    AuthConfigured,
    ConfigureEnterprise,
    ConnectHidden,
    CredentialRequested,
    Event,
    KeyPress,
    Notification,
    NotificationLevel,
    RequestKind,
    Tick,
)
from .networks import NetworkEntry, NetworkList, NetworkListReconciler, NetworkListState
from .session_log import SessionLog
from .text_input import TextInput

logger = logging.getLogger(__name__)


class FocusedList(str, Enum):
    KNOWN = "known"
    NEW = "new"


class CredentialPrompt:
    """Input buffers backing the credential prompt."""

    def __init__(self) -> None:
        self.request: CredentialRequested | None = None
        self.username = TextInput()
        self.secret = TextInput()
        self.on_username = False

    def open(self, request: CredentialRequested) -> None:
        self.reset()
        self.request = request
        self.on_username = request.kind is RequestKind.USERNAME_AND_PASSWORD

    def reset(self) -> None:
        self.request = None
        self.username.reset()
        self.secret.reset()
        self.on_username = False

    @property
    def focused(self) -> TextInput:
        return self.username if self.on_username else self.secret

    def switch(self) -> None:
        if self.request is not None and self.request.kind is RequestKind.USERNAME_AND_PASSWORD:
            self.on_username = not self.on_username

    def to_dict(self) -> dict[str, object | None]:
        return {
            "kind": self.request.kind.value if self.request else None,
            "network": self.request.network if self.request else None,
            "username": self.username.value,
            "secret_length": len(self.secret.value),
            "focus": "username" if self.on_username else "secret",
        }


class Session:
    """Single-operator session against the wireless daemon.

    All list, wizard and prompt state is mutated from the task running
    :meth:`run`. Daemon calls that may block on a credential prompt run as
    background tasks and report back through the event channel.
    """

    def __init__(
        self,
        daemon: DaemonClient,
        config: SessionConfig = DEFAULT_SESSION_CONFIG,
        *,
        log: SessionLog | None = None,
        events: Channel[Event] | None = None,
    ) -> None:
        self.daemon = daemon
        self.config = config
        self.events: Channel[Event] = events if events is not None else Channel()
        self.bridge = CredentialBridge(self.events)
        self.networks = NetworkListState()
        self.reconciler = NetworkListReconciler()
        self.wizard: EnterpriseAuthWizard | None = None
        self.notifications: list[Notification] = []
        self.focus = FocusedList.KNOWN
        self.hidden_prompt: TextInput | None = None
        self.prompt = CredentialPrompt()
        self.log = log if log is not None else SessionLog(config.log_path)
        self.running = False
        self._closed = False
        self._tasks: set[asyncio.Task[None]] = set()

    @classmethod
    def from_config(
        cls,
        config: SessionConfig,
        *,
        daemon: DaemonClient | None = None,
        log: SessionLog | None = None,
    ) -> "Session":
        """Build a session whose iwctl client shares ``config``'s interface and state dir."""

        if daemon is None:
            daemon = IwctlClient.from_config(config)
        return cls(daemon, config, log=log)

    # ------------------------------ lifecycle ------------------------------
    async def start(self) -> None:
        await self.daemon.register_agent(self.bridge)
        self.log.record("session", "started", "Session started")
        if self.config.auto_scan:
            try:
                await self.scan()
            except DaemonCallFailed as exc:
                logger.warning("Initial scan failed: %s", exc)
        await self.refresh()

    async def run(self) -> None:
        """Process events until quit is requested or the channel closes."""

        await self.start()
        self.running = True
        ticker = asyncio.create_task(self._ticker())
        try:
            while self.running:
                try:
                    event = await self.events.recv()
                except ChannelClosed:
                    break
                await self.handle_event(event)
        finally:
            ticker.cancel()
            await asyncio.gather(ticker, return_exceptions=True)
            await self.close()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.running = False
        self.bridge.close()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        try:
            await self.daemon.unregister_agent()
        except DaemonCallFailed as exc:
            logger.warning("Unable to unregister agent: %s", exc)
        self.events.close()
        self.log.record("session", "stopped", "Session stopped")

    async def _ticker(self) -> None:
        while True:
            await asyncio.sleep(self.config.tick_rate)
            try:
                self.events.send(Tick())
            except ChannelClosed:
                return

    def send_key(self, key: KeyPress) -> None:
        self.events.send(key)

    async def process_pending(self) -> int:
        """Handle every event already queued without waiting for more."""

        handled = 0
        while True:
            try:
                event = self.events.recv_nowait()
            except (asyncio.QueueEmpty, ChannelClosed):
                return handled
            await self.handle_event(event)
            handled += 1

    async def wait_idle(self) -> None:
        """Wait for background daemon calls to finish."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------- dispatch ------------------------------
    async def handle_event(self, event: Event) -> None:
        if isinstance(event, Tick):
            self._expire_notifications()
            await self.refresh()
        elif isinstance(event, KeyPress):
            await self._on_key(event)
        elif isinstance(event, CredentialRequested):
            self.prompt.open(event)
            self.log.record(
                "agent",
                "requested",
                f"Daemon requested {event.kind.value}",
                network=event.network,
                metadata={"kind": event.kind.value},
            )
        elif isinstance(event, AuthConfigured):
            self._on_auth_configured(event)
        elif isinstance(event, ConfigureEnterprise):
            self.open_wizard(event.network)
        elif isinstance(event, ConnectHidden):
            self._spawn(self._connect_hidden(event.name))
        elif isinstance(event, Notification):
            self.notifications.append(event)
        else:  # pragma: no cover - exhaustive over Event
            logger.debug("Ignoring unknown event %r", event)

    def notify(self, message: str, level: NotificationLevel = NotificationLevel.INFO) -> None:
        self.notifications.append(Notification(message, level, self.config.notification_ttl))

    def _post(self, message: str, level: NotificationLevel = NotificationLevel.INFO) -> None:
        try:
            self.events.send(Notification(message, level, self.config.notification_ttl))
        except ChannelClosed:
            logger.debug("Dropping notification after shutdown: %s", message)

    def _expire_notifications(self) -> None:
        for notification in self.notifications:
            notification.ttl -= 1
        self.notifications = [item for item in self.notifications if item.ttl > 0]

    def _spawn(self, coro: Awaitable[None]) -> asyncio.Task[None]:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ------------------------------- station -------------------------------
    async def refresh(self) -> None:
        try:
            snapshot = await self.daemon.station_snapshot()
        except DaemonCallFailed as exc:
            self.notify(exc.message, NotificationLevel.ERROR)
            return
        previous = self.networks.connected_network
        self.reconciler.reconcile(self.networks, snapshot)
        current = self.networks.connected_network
        if current != previous:
            if current is not None:
                self.log.record("station", "connected", f"Connected to {current}", network=current)
            elif previous is not None:
                self.log.record(
                    "station", "disconnected", f"Disconnected from {previous}", network=previous
                )

    async def _invoke(
        self,
        operation: Awaitable[None],
        success: str,
        event: str,
        network: str | None = None,
        *,
        metadata: dict[str, object] | None = None,
    ) -> None:
        try:
            await operation
        except DaemonCallFailed as exc:
            self.notify(exc.message, NotificationLevel.ERROR)
            self.log.record(
                "station",
                "failed",
                exc.message,
                network=network,
                metadata={"operation": exc.operation},
            )
            raise
        self.notify(success)
        self.log.record("station", event, success, network=network, metadata=metadata)

    async def scan(self) -> None:
        await self._invoke(self.daemon.scan(), "Start Scanning", "scan")

    async def disconnect(self) -> None:
        name = self.networks.connected_network
        message = f"Disconnected from {name}" if name else "Disconnected"
        await self._invoke(self.daemon.disconnect(), message, "disconnect", name)

    async def forget(self, name: str) -> None:
        await self._invoke(self.daemon.forget(name), "Network Removed", "forget", name)

    async def set_autoconnect(self, name: str, enabled: bool) -> None:
        verb = "Enable" if enabled else "Disable"
        await self._invoke(
            self.daemon.set_autoconnect(name, enabled),
            f"{verb} Autoconnect for: {name}",
            "autoconnect",
            name,
        )
        entry = self.networks.known.find(name)
        if entry is not None and entry.known is not None:
            entry.known.autoconnect = enabled

    async def set_powered(self, enabled: bool) -> None:
        await self._invoke(
            self.daemon.set_powered(enabled),
            "Device Powered On" if enabled else "Device Powered Off",
            "power",
            metadata={"powered": enabled},
        )
        self.networks.powered = enabled

    async def toggle_power(self) -> None:
        await self.set_powered(not self.networks.powered)

    def find_network(self, name: str) -> NetworkEntry | None:
        return self.networks.known.find(name) or self.networks.new.find(name)

    def connect(self, name: str) -> asyncio.Task[None] | None:
        """Start connecting to ``name``.

        Unknown 802.1X networks open the enterprise wizard instead; the
        connection is retried once the profile is written.
        """

        entry = self.find_network(name)
        if entry is not None and not entry.is_known and entry.network_type == "8021x":
            self.open_wizard(name)
            return None
        return self._spawn(self._connect(name))

    async def _connect(self, name: str) -> None:
        try:
            await self.daemon.connect(name)
        except Canceled:
            logger.info("Connection to %s canceled", name)
            self.log.record("agent", "canceled", "Credential request canceled", network=name)
            return
        except DaemonCallFailed as exc:
            self._post(exc.message, NotificationLevel.ERROR)
            self.log.record("station", "failed", exc.message, network=name)
            return
        self._post(f"Connected to {name}")

    async def _connect_hidden(self, name: str) -> None:
        try:
            await self.daemon.connect_hidden(name)
        except Canceled:
            logger.info("Connection to hidden network %s canceled", name)
            return
        except DaemonCallFailed as exc:
            self._post(exc.message, NotificationLevel.ERROR)
            return
        self._post(f"Connected to {name}")

    async def toggle_connect(self) -> None:
        entry = self.selected
        if entry is None:
            return
        if self.networks.is_connected(entry):
            await self.disconnect()
        else:
            self.connect(entry.name)

    # ------------------------------- wizard --------------------------------
    def open_wizard(self, network: str) -> EnterpriseAuthWizard:
        self.wizard = EnterpriseAuthWizard(
            network, self.events, state_dir=self.config.state_dir
        )
        self.log.record("eap", "opened", "Enterprise configuration started", network=network)
        return self.wizard

    def close_wizard(self) -> None:
        if self.wizard is None:
            return
        network = self.wizard.network
        self.log.record("eap", "closed", "Enterprise configuration closed", network=network)
        self.wizard = None

    def _on_auth_configured(self, event: AuthConfigured) -> None:
        self.wizard = None
        self.notify(f"Network {event.network} configured")
        self.log.record("eap", "configured", "Enterprise profile written", network=event.network)
        if self.networks.known.select_name(event.network):
            self.focus = FocusedList.KNOWN
        elif self.networks.new.select_name(event.network):
            self.focus = FocusedList.NEW
        self._spawn(self._connect(event.network))

    # ------------------------------ navigation -----------------------------
    @property
    def current_list(self) -> NetworkList:
        return self.networks.known if self.focus is FocusedList.KNOWN else self.networks.new

    @property
    def selected(self) -> NetworkEntry | None:
        return self.current_list.selected

    async def _on_key(self, key: KeyPress) -> None:
        if self.bridge.pending is not None:
            self._prompt_key(key)
        elif self.wizard is not None:
            if key.code == KeyPress.ESC:
                self.close_wizard()
            elif key.matches("ctrl+s"):
                self.wizard.toggle_secrets()
            else:
                self.wizard.handle_key(key)
        elif self.hidden_prompt is not None:
            self._hidden_key(key)
        else:
            try:
                await self._navigate(key)
            except DaemonCallFailed as exc:
                logger.debug("%s failed: %s", exc.operation, exc.message)

    def _prompt_key(self, key: KeyPress) -> None:
        pending = self.bridge.pending
        try:
            if key.code == KeyPress.ESC:
                self.bridge.cancel()
                self.prompt.reset()
            elif key.code == KeyPress.ENTER:
                if pending is not None and pending.kind is RequestKind.USERNAME_AND_PASSWORD:
                    self.bridge.submit_username_and_password(
                        self.prompt.username.value, self.prompt.secret.value
                    )
                else:
                    self.bridge.submit_answer(self.prompt.secret.value)
                if pending is not None:
                    self.log.record(
                        "agent",
                        "answered",
                        "Credentials submitted",
                        network=pending.network,
                        metadata={"kind": pending.kind.value},
                    )
                self.prompt.reset()
            elif key.code == KeyPress.TAB:
                self.prompt.switch()
            else:
                self.prompt.focused.handle_key(key)
        except Disconnected:
            logger.debug("Credential agent already torn down")
            self.prompt.reset()

    def _hidden_key(self, key: KeyPress) -> None:
        prompt = self.hidden_prompt
        if prompt is None:
            return
        if key.code == KeyPress.ESC:
            self.hidden_prompt = None
        elif key.code == KeyPress.ENTER:
            name = prompt.value.strip()
            self.hidden_prompt = None
            if name:
                self._spawn(self._connect_hidden(name))
        else:
            prompt.handle_key(key)

    async def _navigate(self, key: KeyPress) -> None:
        keys = self.config.keys
        if key.code in (KeyPress.TAB, KeyPress.BACKTAB):
            self.focus = FocusedList.NEW if self.focus is FocusedList.KNOWN else FocusedList.KNOWN
        elif key.code == KeyPress.DOWN or key.matches("j"):
            self.current_list.select_next()
        elif key.code == KeyPress.UP or key.matches("k"):
            self.current_list.select_previous()
        elif key.matches(keys.quit):
            self.running = False
        elif key.matches(keys.start_scanning):
            await self.scan()
        elif key.matches(keys.toggle_connect):
            await self.toggle_connect()
        elif key.matches(keys.connect_hidden):
            self.hidden_prompt = TextInput()
        elif key.matches(keys.toggle_power):
            await self.toggle_power()
        elif self.focus is FocusedList.KNOWN:
            entry = self.selected
            if entry is None or entry.known is None:
                return
            if key.matches(keys.forget):
                await self.forget(entry.name)
            elif key.matches(keys.toggle_autoconnect):
                await self.set_autoconnect(entry.name, not entry.known.autoconnect)

    # ------------------------------- reporting -----------------------------
    def to_dict(self) -> dict[str, object | None]:
        pending = self.bridge.pending
        return {
            "running": self.running,
            "focus": self.focus.value,
            "networks": self.networks.to_dict(),
            "auth_request": pending.to_dict() if pending is not None else None,
            "prompt": self.prompt.to_dict() if pending is not None else None,
            "wizard": self.wizard.to_dict() if self.wizard is not None else None,
            "hidden_prompt": self.hidden_prompt.value if self.hidden_prompt is not None else None,
            "notifications": [item.to_dict() for item in self.notifications],
        }


__all__ = ["CredentialPrompt", "FocusedList", "Session"]
