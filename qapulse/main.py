"""
QA Pulse - FastAPI Application
================================
Creates and configures the FastAPI application.

Responsibilities:
    - Load configuration and build the shared database engine
    - Wire the collaborators (auth, analytics, users, sessions) explicitly
    - Check the database on startup and refuse to serve if it is unreachable
    - Register the HTTP routes and the /ws WebSocket endpoint

Architecture:
    Nothing here is process-global: every collaborator is constructed in
    create_app() and handed to whatever needs it, so tests can pass their
    own config and engine.
"""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncEngine

from qapulse import store
from qapulse.analytics import AnalyticsReader
from qapulse.auth import Authenticator, CredentialVerifier, TokenIssuer
from qapulse.config import ConfigManager, validate
from qapulse.routes import create_router
from qapulse.session import SessionSettings
from qapulse.websocket import SessionManager

logger = logging.getLogger(__name__)

WEBSOCKET_ENDPOINT = "/ws"


def create_app(
    project_dir: str | None = None,
    config: dict | None = None,
    engine: AsyncEngine | None = None,
) -> FastAPI:
    """
    Application factory: create and configure the FastAPI instance.

    Args:
        project_dir: Directory holding config.yaml and .env. If None,
                     auto-detected from this file's location.
        config:      Already-loaded configuration (skips ConfigManager).
        engine:      Pre-built async engine (skips create_engine_from_config).

    Returns:
        Configured FastAPI application ready to run with uvicorn.
    """
    if config is None:
        if project_dir is None:
            project_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
        config = ConfigManager(project_dir, os.environ.get("QAPULSE_CONFIG")).load()
    else:
        validate(config)

    if engine is None:
        engine = store.create_engine_from_config(config["database"])

    # -- Initialize collaborators ----------------------------------------------
    users = store.UserStore(engine)
    analytics = AnalyticsReader(engine)
    verifier = CredentialVerifier(rounds=config["auth"]["bcrypt_rounds"])
    issuer = TokenIssuer(
        config["auth"]["jwt_secret"],
        token_hours=config["auth"]["token_hours"],
    )
    authenticator = Authenticator(
        users,
        verifier,
        issuer,
        unify_errors=config["session"]["unify_auth_errors"],
    )
    session_manager = SessionManager(
        authenticator=authenticator,
        analytics=analytics,
        users=users,
        issuer=issuer,
        settings=SessionSettings.from_config(config["session"]),
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Fail fast: a StoreError here aborts startup before any connection.
        await store.ping(engine)
        if config["database"]["create_tables"]:
            await store.create_tables(engine)
        logger.info("QA Pulse ready, WebSocket endpoint at %s", WEBSOCKET_ENDPOINT)
        try:
            yield
        finally:
            await engine.dispose()
            logger.info("Database connections closed")

    # -- Create FastAPI app ----------------------------------------------------
    app = FastAPI(
        title="QA Pulse",
        description="Real-time test and device analytics over WebSocket",
        version="1.0.0",
        docs_url="/docs",
        redoc_url=None,
        lifespan=lifespan,
    )

    # -- CORS middleware -------------------------------------------------------
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -- Store collaborators on app state --------------------------------------
    app.state.config = config
    app.state.engine = engine
    app.state.issuer = issuer
    app.state.session_manager = session_manager

    # -- Register HTTP routes --------------------------------------------------
    app.include_router(create_router(issuer, analytics, session_manager))

    # -- WebSocket endpoint ----------------------------------------------------
    @app.websocket(WEBSOCKET_ENDPOINT)
    async def websocket_endpoint(websocket: WebSocket):
        """
        One session per client: auth, analytics requests, periodic pushes.
        """
        await session_manager.serve(websocket)

    return app
