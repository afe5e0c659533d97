"""
QA Pulse - HTTP Routes
========================
The small HTTP surface next to the WebSocket endpoint.

Routes:
    /health         - Liveness probe, plain-text "OK"
    /api/status     - Number of live WebSocket sessions
    /api/analytics  - Caller's own analytics snapshot (bearer token required)

See auth.py for token details.
"""

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

from qapulse.analytics import Analytics, AnalyticsReader
from qapulse.auth import TokenIssuer, require_auth
from qapulse.errors import StoreError
from qapulse.websocket import SessionManager


class StatusResponse(BaseModel):
    """Process status."""
    status: str = "ok"
    sessions: int = Field(description="Currently connected WebSocket clients")


def create_router(
    issuer: TokenIssuer,
    analytics: AnalyticsReader,
    session_manager: SessionManager,
) -> APIRouter:
    """
    Create the HTTP router.

    Args:
        issuer:          Validates bearer tokens for protected routes.
        analytics:       Computes snapshots for /api/analytics.
        session_manager: Reports the live session count.

    Returns:
        Configured APIRouter with all endpoints registered.
    """
    router = APIRouter()

    @router.get("/health", response_class=PlainTextResponse)
    async def health():
        """Liveness probe. Does not touch the database."""
        return "OK"

    @router.get("/api/status", response_model=StatusResponse)
    async def status():
        return StatusResponse(sessions=session_manager.client_count)

    @router.get("/api/analytics", response_model=Analytics)
    async def user_analytics(user_id: int = Depends(require_auth(issuer))):
        """Analytics scoped to the user named in the bearer token."""
        try:
            return await analytics.user_snapshot(user_id)
        except StoreError as e:
            raise HTTPException(status_code=503, detail=e.message)

    return router
