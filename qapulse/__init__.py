"""
QA Pulse - Server Package
=========================
Real-time backend that authenticates users and streams test/device analytics
over one WebSocket connection per client.

This package provides:
- FastAPI application with a /ws endpoint and a liveness probe
- Session protocol engine multiplexing auth, analytics queries and pushes
- bcrypt credential checks and JWT identity tokens
- Aggregate analytics over a relational store (SQLAlchemy, async)

Architecture:
    main.py      -> FastAPI app creation, lifespan, WebSocket endpoint
    session.py   -> Per-connection read/dispatch, push timer, single writer
    protocol.py  -> Envelope decoding into typed messages, response frames
    websocket.py -> Session registry, accept/close handling
    auth.py      -> Password hashing, JWT tokens, route protection
    analytics.py -> Pass/fail/device snapshot queries
    store.py     -> Table definitions, bounded engine, user lookups
    config.py    -> Read config.yaml and .env
    routes.py    -> HTTP endpoints
    errors.py    -> Error taxonomy
"""
