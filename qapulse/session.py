"""
QA Pulse - Session Protocol Engine
====================================
Owns the lifecycle of one WebSocket connection.

Each session runs three asyncio tasks until the transport closes:

    reader  -> waits for frames, decodes, dispatches, queues one response per frame
    pusher  -> every `push_interval` seconds queues a fresh analytics snapshot
    writer  -> the only task that writes to the transport; drains the outbox

The reader and pusher never touch the transport for writing, so two
outbound documents can never interleave. All three share the `closed`
event: whichever loop ends first sets it and `run()` tears the rest down.

Transport contract (Starlette's WebSocket satisfies it):
    await transport.receive()        -> ASGI message dict
    await transport.send_text(str)
"""

import asyncio
import itertools
import logging
from dataclasses import dataclass

from starlette.websockets import WebSocketDisconnect

from qapulse import protocol
from qapulse.errors import AuthError, QAPulseError, StoreError, TransportError

logger = logging.getLogger(__name__)

# Close codes treated as a normal goodbye (not logged as errors).
GRACEFUL_CLOSE_CODES = (1000, 1001)

# Sent to the client for failures outside the QAPulseError hierarchy.
INTERNAL_ERROR = "internal error"

_session_ids = itertools.count(1)


@dataclass
class SessionSettings:
    """Per-session policy, built from the `session` config section."""
    push_interval: float = 5.0
    push_scope: str = "global"
    require_token: bool = False

    @classmethod
    def from_config(cls, section: dict) -> "SessionSettings":
        return cls(
            push_interval=float(section["push_interval"]),
            push_scope=section["push_scope"],
            require_token=section["require_token"],
        )


class Session:
    """
    One client connection: auth state, outbox, and its three loops.

    Attributes:
        id:        Process-unique session number (for logs).
        transport: The accepted WebSocket.
        user_id:   Authenticated user id, None until a successful `auth`.
        closed:    Set once the session is ending; stops every loop.
    """

    def __init__(self, transport, authenticator, analytics, users, issuer,
                 settings: SessionSettings | None = None):
        """
        Args:
            transport:     Accepted WebSocket (or any object with the same contract).
            authenticator: qapulse.auth.Authenticator for `auth` messages.
            analytics:     qapulse.analytics.AnalyticsReader for snapshots.
            users:         qapulse.store.UserStore for `request_user_data`.
            issuer:        qapulse.auth.TokenIssuer for the token-gating policy.
            settings:      Push interval/scope and token policy.
        """
        self.id = next(_session_ids)
        self.transport = transport
        self.authenticator = authenticator
        self.analytics = analytics
        self.users = users
        self.issuer = issuer
        self.settings = settings or SessionSettings()

        self.user_id: int | None = None
        self.closed = asyncio.Event()
        self._outbox: asyncio.Queue[str] = asyncio.Queue()

    @property
    def authenticated(self) -> bool:
        return self.user_id is not None

    async def run(self) -> None:
        """Serve the connection until it closes. Never raises for client errors."""
        logger.info("Session %d opened", self.id)
        tasks = [
            asyncio.create_task(self._read_loop(), name=f"session-{self.id}-reader"),
            asyncio.create_task(self._write_loop(), name=f"session-{self.id}-writer"),
            asyncio.create_task(self._push_loop(), name=f"session-{self.id}-pusher"),
        ]
        try:
            await self.closed.wait()
        finally:
            self.closed.set()
            for task in tasks:
                task.cancel()
            results = await asyncio.gather(*tasks, return_exceptions=True)
            for task, result in zip(tasks, results):
                if isinstance(result, Exception):
                    logger.error(
                        "Session %d: %s crashed", self.id, task.get_name(), exc_info=result
                    )
            logger.info("Session %d closed", self.id)

    def send(self, frame: str) -> None:
        """Queue one complete JSON document for the writer."""
        self._outbox.put_nowait(frame)

    # -- Loops ----------------------------------------------------------------

    async def _read_loop(self) -> None:
        try:
            while True:
                try:
                    message = await self._receive()
                except WebSocketDisconnect as e:
                    self._log_close(e.code)
                    return
                except TransportError as e:
                    logger.warning("Session %d: %s", self.id, e.message)
                    return

                if message["type"] == "websocket.disconnect":
                    self._log_close(message.get("code", 1000))
                    return

                raw = message.get("text")
                if raw is None:
                    raw = message.get("bytes") or b""
                self.send(await self.handle(raw))
        finally:
            self.closed.set()

    async def _write_loop(self) -> None:
        try:
            while True:
                frame = await self._outbox.get()
                try:
                    await self._send(frame)
                except TransportError as e:
                    logger.warning("Session %d: %s", self.id, e.message)
                    return
        finally:
            self.closed.set()

    async def _push_loop(self) -> None:
        while not self.closed.is_set():
            try:
                await asyncio.wait_for(self.closed.wait(), timeout=self.settings.push_interval)
                return
            except asyncio.TimeoutError:
                pass
            self.send(await self._push_frame())

    async def _receive(self) -> dict:
        try:
            return await self.transport.receive()
        except (RuntimeError, OSError) as e:
            raise TransportError(f"read failed: {e}") from e

    async def _send(self, frame: str) -> None:
        try:
            await self.transport.send_text(frame)
        except (WebSocketDisconnect, RuntimeError, OSError) as e:
            raise TransportError(f"write failed: {e}") from e

    def _log_close(self, code: int) -> None:
        if code in GRACEFUL_CLOSE_CODES:
            logger.debug("Session %d: client closed (code=%s)", self.id, code)
        else:
            logger.warning("Session %d: connection closed unexpectedly (code=%s)", self.id, code)

    # -- Dispatch -------------------------------------------------------------

    async def handle(self, raw: str | bytes) -> str:
        """
        Turn one inbound frame into exactly one outbound frame.

        Decode, auth, token and store failures all become an `error`
        envelope; the session keeps running.
        """
        try:
            message = protocol.decode(raw)
            if isinstance(message, protocol.AuthRequest):
                return await self._on_auth(message)
            if isinstance(message, protocol.AnalyticsRequest):
                return await self._on_analytics(message)
            return await self._on_user_data(message)
        except QAPulseError as e:
            return protocol.error_frame(e.message)
        except Exception:
            logger.exception("Session %d: failed to handle frame", self.id)
            return protocol.error_frame(INTERNAL_ERROR)

    async def _on_auth(self, message: protocol.AuthRequest) -> str:
        user_id, token = await self.authenticator.authenticate(message.username, message.password)
        self.user_id = user_id
        return protocol.auth_response_frame(token)

    async def _on_analytics(self, message: protocol.AnalyticsRequest) -> str:
        self._check_token(message.token)
        return protocol.analytics_frame(await self.analytics.global_snapshot())

    async def _on_user_data(self, message: protocol.UserDataRequest) -> str:
        user_id = self._check_token(message.token) or self.user_id
        if user_id is None:
            raise AuthError("not authenticated")
        profile = await self.users.get_profile(user_id)
        if profile is None:
            raise AuthError("user not found")
        return protocol.user_data_frame(profile)

    def _check_token(self, token: str | None) -> int | None:
        """Apply the token-gating policy. Returns the token's user id when gated."""
        if not self.settings.require_token:
            return None
        if not token:
            raise AuthError("token required")
        return self.issuer.validate(token)

    async def _push_frame(self) -> str:
        try:
            if self.settings.push_scope == "user" and self.user_id is not None:
                snapshot = await self.analytics.user_snapshot(self.user_id)
            else:
                snapshot = await self.analytics.global_snapshot()
        except StoreError as e:
            return protocol.error_frame(e.message)
        except Exception:
            logger.exception("Session %d: push failed", self.id)
            return protocol.error_frame(INTERNAL_ERROR)
        return protocol.analytics_frame(snapshot)
