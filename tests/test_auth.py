"""
Tests for credential verification and identity tokens

This module tests:
- bcrypt hash/verify behaviour, including malformed stored hashes
- Token issue/validate, expiry against an injected clock
- Rejection of tampered, foreign and claim-less tokens
"""

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from qapulse.auth import Authenticator, TokenIssuer
from qapulse.errors import AuthError, InvalidSignature, TokenExpired

from tests.conftest import JWT_SECRET, FakeUserStore


class TestCredentialVerifier:

    @pytest.mark.parametrize("password", ["secret", "", "pässwörd", "a" * 60])
    def test_hash_then_verify(self, verifier, password):
        stored = verifier.hash(password)
        assert stored != password
        assert verifier.verify(stored, password) is True
        assert verifier.verify(stored, password + "x") is False

    def test_hashes_are_salted(self, verifier):
        assert verifier.hash("secret") != verifier.hash("secret")

    def test_malformed_stored_hash_is_a_mismatch(self, verifier):
        assert verifier.verify("plaintext-in-the-db", "plaintext-in-the-db") is False

    def test_plaintext_never_logged(self, verifier, caplog):
        with caplog.at_level("DEBUG"):
            verifier.verify("not-a-hash", "hunter2")
        assert "hunter2" not in caplog.text


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class TestTokenIssuer:

    def test_validate_returns_user_id(self, issuer):
        assert issuer.validate(issuer.issue(42)) == 42

    def test_expires_after_24_hours(self):
        clock = FrozenClock(datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc))
        issuer = TokenIssuer(JWT_SECRET, clock=clock)
        token = issuer.issue(7)

        clock.now += timedelta(hours=23, minutes=59)
        assert issuer.validate(token) == 7

        clock.now += timedelta(minutes=1)
        with pytest.raises(TokenExpired):
            issuer.validate(token)

    def test_claims(self):
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        token = TokenIssuer(JWT_SECRET, clock=FrozenClock(now)).issue(5)
        claims = jwt.get_unverified_claims(token)
        assert claims["user_id"] == 5
        assert claims["exp"] - claims["iat"] == 24 * 3600

    def test_configurable_lifetime(self):
        clock = FrozenClock(datetime(2026, 1, 1, tzinfo=timezone.utc))
        issuer = TokenIssuer(JWT_SECRET, token_hours=1, clock=clock)
        token = issuer.issue(1)
        clock.now += timedelta(hours=1, seconds=1)
        with pytest.raises(TokenExpired):
            issuer.validate(token)

    def test_other_secret_rejected(self, issuer):
        token = TokenIssuer("another-secret").issue(1)
        with pytest.raises(InvalidSignature):
            issuer.validate(token)

    def test_tampered_token_rejected(self, issuer):
        header, payload, signature = issuer.issue(1).split(".")
        forged = jwt.encode({"user_id": 99, "exp": 4102444800}, "guess", algorithm="HS256")
        with pytest.raises(InvalidSignature):
            issuer.validate(".".join([header, forged.split(".")[1], signature]))

    @pytest.mark.parametrize("claims", [{"exp": 4102444800}, {"user_id": 1}, {"user_id": "1", "exp": 4102444800}])
    def test_missing_or_wrong_claims_rejected(self, issuer, claims):
        token = jwt.encode(claims, JWT_SECRET, algorithm="HS256")
        with pytest.raises(InvalidSignature):
            issuer.validate(token)

    def test_garbage_rejected(self, issuer):
        with pytest.raises(InvalidSignature) as exc:
            issuer.validate("not.a.token")
        assert exc.value.message == "invalid token"


class TestAuthenticator:

    @pytest.fixture
    def authenticator(self, alice_hash, verifier, issuer):
        return Authenticator(FakeUserStore(alice_hash), verifier, issuer)

    async def test_success(self, authenticator, issuer):
        user_id, token = await authenticator.authenticate("alice", "secret")
        assert user_id == 1
        assert issuer.validate(token) == 1

    async def test_distinct_messages(self, authenticator):
        with pytest.raises(AuthError, match="user not found"):
            await authenticator.authenticate("nobody", "secret")
        with pytest.raises(AuthError, match="invalid password"):
            await authenticator.authenticate("alice", "nope")

    async def test_unified_messages(self, authenticator):
        authenticator.unify_errors = True
        with pytest.raises(AuthError, match="invalid credentials"):
            await authenticator.authenticate("nobody", "secret")
        with pytest.raises(AuthError, match="invalid credentials"):
            await authenticator.authenticate("alice", "nope")

    async def test_signing_failure(self, alice_hash, verifier):
        # jose refuses to sign HS256 with a non-string key
        issuer = TokenIssuer(JWT_SECRET)
        issuer.secret = None
        authenticator = Authenticator(FakeUserStore(alice_hash), verifier, issuer)
        with pytest.raises(AuthError, match="failed to generate token"):
            await authenticator.authenticate("alice", "secret")
