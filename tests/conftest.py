"""Shared fixtures: in-memory store, seeded users and session test doubles."""

import asyncio
import json

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from qapulse import store
from qapulse.analytics import Analytics
from qapulse.auth import Authenticator, CredentialVerifier, TokenIssuer
from qapulse.errors import StoreError
from qapulse.session import Session, SessionSettings

JWT_SECRET = "test-secret"

# bcrypt's minimum cost keeps the suite fast
FAST_ROUNDS = 4


@pytest.fixture(scope="session")
def verifier():
    return CredentialVerifier(rounds=FAST_ROUNDS)


@pytest.fixture(scope="session")
def alice_hash(verifier):
    return verifier.hash("secret")


@pytest.fixture
def issuer():
    return TokenIssuer(JWT_SECRET)


@pytest_asyncio.fixture
async def engine():
    """Empty in-memory SQLite database with the full schema."""
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    await store.create_tables(engine)
    yield engine
    await engine.dispose()


# -- Session test doubles ------------------------------------------------------

class FakeTransport:
    """
    Stands in for a Starlette WebSocket.

    Inbound frames are queued with push_text(); everything the session writes
    lands in `sent` and can be awaited with next_frame().
    """

    def __init__(self):
        self.inbox: asyncio.Queue = asyncio.Queue()
        self.outbox: asyncio.Queue = asyncio.Queue()
        self.sent: list[str] = []

    async def receive(self) -> dict:
        return await self.inbox.get()

    async def send_text(self, text: str) -> None:
        self.sent.append(text)
        self.outbox.put_nowait(text)

    def push_text(self, text: str) -> None:
        self.inbox.put_nowait({"type": "websocket.receive", "text": text})

    def push_json(self, data) -> None:
        self.push_text(json.dumps(data))

    def disconnect(self, code: int = 1000) -> None:
        self.inbox.put_nowait({"type": "websocket.disconnect", "code": code})

    async def next_frame(self, timeout: float = 2.0) -> dict:
        return json.loads(await asyncio.wait_for(self.outbox.get(), timeout))


class FakeUserStore:
    """In-memory UserStore with alice (id 1, team QA) and bob (id 2, no team)."""

    def __init__(self, alice_hash: str):
        self.records = {
            "alice": store.UserRecord(1, "alice", alice_hash, 10, "https://example.com/a.png"),
            "bob": store.UserRecord(2, "bob", alice_hash, None, ""),
        }
        self.teams = {10: "QA"}

    async def get_by_username(self, username):
        return self.records.get(username)

    async def get_profile(self, user_id):
        for record in self.records.values():
            if record.id == user_id:
                return store.UserProfile(
                    record.id,
                    record.username,
                    self.teams.get(record.team_id, ""),
                    record.avatar_url,
                )
        return None


class FakeAnalytics:
    """Returns fixed snapshots and records which scope was asked for."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: list = []

    async def global_snapshot(self):
        self.calls.append("global")
        if self.fail:
            raise StoreError("failed to load analytics")
        return Analytics(total_tests=3, passed=2, failed=1, devices_online=1)

    async def user_snapshot(self, user_id):
        self.calls.append(user_id)
        if self.fail:
            raise StoreError("failed to load analytics")
        return Analytics(total_tests=1, passed=1, failed=0, devices_online=1)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def fake_users(alice_hash):
    return FakeUserStore(alice_hash)


@pytest.fixture
def fake_analytics():
    return FakeAnalytics()


@pytest.fixture
def make_session(transport, fake_users, fake_analytics, verifier, issuer):
    """Build a Session over the fakes; keyword arguments override settings."""

    def _make(unify_errors=False, analytics=None, session_transport=None, authenticator=None,
              **settings):
        settings.setdefault("push_interval", 60)
        if authenticator is None:
            authenticator = Authenticator(fake_users, verifier, issuer, unify_errors=unify_errors)
        return Session(
            session_transport or transport,
            authenticator=authenticator,
            analytics=analytics or fake_analytics,
            users=fake_users,
            issuer=issuer,
            settings=SessionSettings(**settings),
        )

    return _make
