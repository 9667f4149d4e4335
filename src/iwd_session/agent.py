"""Credential agent bridging daemon secret requests to the operator."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TypeVar

from .channels import Channel
from .errors import Canceled, ChannelClosed, Disconnected
from .events import CredentialRequested, Event, RequestKind

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CredentialRequest:
    """Describes the secret the daemon is currently waiting for."""

    kind: RequestKind
    network: str
    username: str | None = None

    def to_dict(self) -> dict[str, object | None]:
        return {
            "kind": self.kind.value,
            "network": self.network,
            "username": self.username,
        }


class CredentialBridge:
    """Agent registered with the daemon.

    Each daemon callback publishes a :class:`CredentialRequested` event and
    then waits for either an answer from the UI or a cancellation. The
    daemon is expected to keep at most one request outstanding; if it ever
    issues overlapping requests the most recent one owns
    :attr:`network_awaiting_auth`.
    """

    def __init__(self, events: Channel[Event]) -> None:
        self._events = events
        self._secrets: Channel[str] = Channel()
        self._credentials: Channel[tuple[str, str]] = Channel()
        self._cancellations: Channel[None] = Channel()
        self._pending: CredentialRequest | None = None
        self._closed = False

    # ------------------------------ properties -----------------------------
    @property
    def pending(self) -> CredentialRequest | None:
        return self._pending

    @property
    def network_awaiting_auth(self) -> str | None:
        return self._pending.network if self._pending is not None else None

    @property
    def closed(self) -> bool:
        return self._closed

    def awaiting(self, kind: RequestKind) -> bool:
        return self._pending is not None and self._pending.kind is kind

    @property
    def passphrase_required(self) -> bool:
        return self.awaiting(RequestKind.PASSPHRASE)

    @property
    def private_key_passphrase_required(self) -> bool:
        return self.awaiting(RequestKind.PRIVATE_KEY_PASSPHRASE)

    @property
    def username_and_password_required(self) -> bool:
        return self.awaiting(RequestKind.USERNAME_AND_PASSWORD)

    @property
    def password_required(self) -> bool:
        return self.awaiting(RequestKind.PASSWORD)

    # --------------------------- daemon-facing API --------------------------
    async def request_passphrase(self, network: str) -> str:
        request = CredentialRequest(RequestKind.PASSPHRASE, network)
        return await self._request(request, self._secrets)

    async def request_private_key_passphrase(self, network: str) -> str:
        request = CredentialRequest(RequestKind.PRIVATE_KEY_PASSPHRASE, network)
        return await self._request(request, self._secrets)

    async def request_username_and_password(self, network: str) -> tuple[str, str]:
        request = CredentialRequest(RequestKind.USERNAME_AND_PASSWORD, network)
        return await self._request(request, self._credentials)

    async def request_password(self, network: str, username: str | None = None) -> str:
        request = CredentialRequest(RequestKind.PASSWORD, network, username)
        return await self._request(request, self._secrets)

    # ----------------------------- UI-facing API ----------------------------
    def submit_answer(self, value: str) -> None:
        """Answer the pending passphrase, key passphrase or password request."""

        self._ensure_open()
        pending = self._pending
        if pending is None:
            logger.debug("Ignoring answer with no pending credential request")
            return
        if pending.kind is RequestKind.USERNAME_AND_PASSWORD:
            raise ValueError("Pending request expects a username and a password")
        self._pending = None
        self._send(self._secrets, value)

    def submit_username_and_password(self, username: str, value: str) -> None:
        self._ensure_open()
        pending = self._pending
        if pending is None:
            logger.debug("Ignoring credentials with no pending credential request")
            return
        if pending.kind is not RequestKind.USERNAME_AND_PASSWORD:
            raise ValueError("Pending request expects a single secret")
        self._pending = None
        self._send(self._credentials, (username, value))

    def cancel(self) -> None:
        """Abort whichever request is pending; a no-op when none is."""

        self._ensure_open()
        if self._pending is None:
            return
        logger.info("Credential request for %s canceled", self._pending.network)
        self._pending = None
        self._send(self._cancellations, None)

    def close(self) -> None:
        """Tear the bridge down, failing any pending request with Canceled."""

        if self._closed:
            return
        self._closed = True
        self._pending = None
        for channel in (self._secrets, self._credentials, self._cancellations):
            channel.close()

    # ----------------------------- implementation ---------------------------
    def _ensure_open(self) -> None:
        if self._closed:
            raise Disconnected()

    @staticmethod
    def _send(channel: Channel[T], item: T) -> None:
        try:
            channel.send(item)
        except ChannelClosed as exc:
            raise Disconnected() from exc

    async def _request(self, request: CredentialRequest, answers: Channel[T]) -> T:
        if self._closed:
            raise Canceled()
        for channel in (self._secrets, self._credentials, self._cancellations):
            dropped = channel.drain()
            if dropped:
                logger.debug("Dropped %d stale agent messages", dropped)
        self._pending = request
        try:
            self._events.send(
                CredentialRequested(request.kind, request.network, request.username)
            )
        except ChannelClosed:
            self._pending = None
            raise Canceled() from None
        logger.info("Daemon requested %s for %s", request.kind.value, request.network)

        answer_task = asyncio.ensure_future(answers.recv())
        cancel_task = asyncio.ensure_future(self._cancellations.recv())
        try:
            done, _ = await asyncio.wait(
                {answer_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for task in (answer_task, cancel_task):
                if not task.done():
                    task.cancel()
            # Cleared here too when the daemon abandons the call or on teardown.
            if self._pending is request:
                self._pending = None
        for task in done:
            task.exception()
        if cancel_task in done:
            raise Canceled()
        try:
            return answer_task.result()
        except ChannelClosed:
            raise Canceled() from None


__all__ = ["CredentialBridge", "CredentialRequest"]
