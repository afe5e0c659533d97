"""
QA Pulse - WebSocket Session Manager
======================================
Accepts WebSocket connections and runs one Session per client.

Message types (server -> client):
    - "auth_response" : Token issued after a successful `auth`
    - "analytics"     : Snapshot, on request or pushed every push_interval seconds
    - "user_data"     : Profile of the authenticated user
    - "error"         : {"status": "error", "message": ...}

Message format:
    {
        "type": "analytics",
        "payload": {"total_tests": 3, "passed": 2, "failed": 1, "devices_online": 1}
    }

Usage:
    @app.websocket("/ws")
    async def ws_endpoint(websocket: WebSocket):
        await session_manager.serve(websocket)
"""

import logging

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from qapulse.session import Session, SessionSettings

logger = logging.getLogger(__name__)


class SessionManager:
    """
    Tracks live sessions for a single server process.

    Sessions are not shared across processes and nothing survives a
    reconnect; a new connection always starts unauthenticated.

    Attributes:
        active_sessions: Set of currently running Session instances.
    """

    def __init__(self, authenticator, analytics, users, issuer, settings: SessionSettings):
        """Hold the collaborators every new Session is built with."""
        self.authenticator = authenticator
        self.analytics = analytics
        self.users = users
        self.issuer = issuer
        self.settings = settings
        self.active_sessions: set[Session] = set()

    async def serve(self, websocket: WebSocket) -> None:
        """
        Accept a connection and run its session until the client goes away.

        Args:
            websocket: The incoming WebSocket connection to accept.
        """
        await websocket.accept()
        session = Session(
            websocket,
            authenticator=self.authenticator,
            analytics=self.analytics,
            users=self.users,
            issuer=self.issuer,
            settings=self.settings,
        )
        self.active_sessions.add(session)
        try:
            await session.run()
        finally:
            self.active_sessions.discard(session)
            if websocket.client_state == WebSocketState.CONNECTED:
                try:
                    await websocket.close()
                except (RuntimeError, OSError):
                    logger.debug("Session %d: transport already closed", session.id)

    @property
    def client_count(self) -> int:
        """Return the number of currently connected clients."""
        return len(self.active_sessions)
