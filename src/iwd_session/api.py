"""FastAPI console exposing a running session for headless operation."""
from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from .errors import DaemonCallFailed, Disconnected
from .session import Session
from .version import APP_VERSION


class AnswerPayload(BaseModel):
    value: str


class CredentialsPayload(BaseModel):
    username: str = Field(min_length=1)
    password: str


class NetworkPayload(BaseModel):
    name: str = Field(min_length=1)


class AutoconnectPayload(BaseModel):
    name: str = Field(min_length=1)
    enabled: bool


class PowerPayload(BaseModel):
    enabled: bool


def create_app(session: Session) -> FastAPI:
    """Expose ``session`` over HTTP.

    The app must be served on the same asyncio event loop that runs
    :meth:`Session.run` (for example ``uvicorn.Server.serve`` gathered with
    it). Handlers then touch the bridge, prompt and list state between the
    loop's own awaits, never concurrently with it. Do not serve the app
    from a separate thread or a multi-worker server.
    """

    app = FastAPI(title="iwd-session", version=APP_VERSION)

    logger = logging.getLogger(__name__)
    app.state.session = session

    def _daemon_error(exc: DaemonCallFailed) -> HTTPException:
        logger.warning("%s failed: %s", exc.operation, exc.message)
        return HTTPException(status_code=503, detail=exc.message)

    @app.get("/api/status")
    async def get_status() -> dict[str, object | None]:
        payload = session.to_dict()
        payload["version"] = APP_VERSION
        return payload

    @app.get("/api/networks")
    async def get_networks() -> dict[str, object | None]:
        return session.networks.to_dict()

    @app.get("/api/auth/request")
    async def get_auth_request() -> dict[str, object | None]:
        pending = session.bridge.pending
        return {"pending": pending.to_dict() if pending is not None else None}

    @app.post("/api/auth/answer")
    async def answer(payload: AnswerPayload) -> dict[str, object | None]:
        pending = session.bridge.pending
        if pending is None:
            raise HTTPException(status_code=404, detail="No credential request pending")
        try:
            session.bridge.submit_answer(payload.value)
        except Disconnected as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        session.prompt.reset()
        session.log.record(
            "agent",
            "answered",
            "Credentials submitted remotely",
            network=pending.network,
            metadata={"kind": pending.kind.value},
        )
        return {"network": pending.network, "kind": pending.kind.value}

    @app.post("/api/auth/credentials")
    async def credentials(payload: CredentialsPayload) -> dict[str, object | None]:
        pending = session.bridge.pending
        if pending is None:
            raise HTTPException(status_code=404, detail="No credential request pending")
        try:
            session.bridge.submit_username_and_password(payload.username, payload.password)
        except Disconnected as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        session.prompt.reset()
        session.log.record(
            "agent",
            "answered",
            "Credentials submitted remotely",
            network=pending.network,
            metadata={"kind": pending.kind.value},
        )
        return {"network": pending.network, "kind": pending.kind.value}

    @app.post("/api/auth/cancel")
    async def cancel() -> dict[str, object | None]:
        pending = session.bridge.pending
        try:
            session.bridge.cancel()
        except Disconnected as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        session.prompt.reset()
        return {"canceled": pending is not None}

    @app.post("/api/networks/scan")
    async def scan() -> dict[str, object | None]:
        try:
            await session.scan()
        except DaemonCallFailed as exc:
            raise _daemon_error(exc) from exc
        return {"scanning": True}

    @app.post("/api/networks/connect", status_code=202)
    async def connect(payload: NetworkPayload) -> dict[str, object | None]:
        task = session.connect(payload.name)
        if task is None:
            return {"network": payload.name, "status": "configure"}
        return {"network": payload.name, "status": "connecting"}

    @app.post("/api/networks/forget")
    async def forget(payload: NetworkPayload) -> dict[str, object | None]:
        try:
            await session.forget(payload.name)
        except DaemonCallFailed as exc:
            raise _daemon_error(exc) from exc
        return {"network": payload.name, "forgotten": True}

    @app.post("/api/networks/autoconnect")
    async def autoconnect(payload: AutoconnectPayload) -> dict[str, object | None]:
        try:
            await session.set_autoconnect(payload.name, payload.enabled)
        except DaemonCallFailed as exc:
            raise _daemon_error(exc) from exc
        return {"network": payload.name, "autoconnect": payload.enabled}

    @app.post("/api/device/power")
    async def power(payload: PowerPayload) -> dict[str, object | None]:
        try:
            await session.set_powered(payload.enabled)
        except DaemonCallFailed as exc:
            raise _daemon_error(exc) from exc
        return {"powered": payload.enabled}

    @app.get("/api/log")
    async def get_log(limit: int | None = None, category: str | None = None) -> dict[str, object]:
        entries = session.log.tail(limit, category=category)
        return {"entries": [entry.to_dict() for entry in entries]}

    return app


__all__ = ["create_app"]
