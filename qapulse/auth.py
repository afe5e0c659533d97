"""
QA Pulse - Authentication Module
==================================
Password verification and JWT identity tokens for analytics clients.

Security model:
- User accounts live in the `users` table with a bcrypt password hash
- A successful WebSocket `auth` message returns a JWT token
- Tokens carry the user id and expire after `auth.token_hours` (24 by default)
- Tokens are stateless: nothing is stored server-side, every use re-verifies
  the HS256 signature with the process-wide secret

Login flow (WebSocket):
    1. Client sends {"type": "auth", "payload": {"username": ..., "password": ...}}
    2. Authenticator looks up the user and checks the bcrypt hash
    3. TokenIssuer mints a token, sent back in an `auth_response` envelope

REST routes use `require_auth()` to validate a bearer token instead.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable

import bcrypt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import jwt
from jose.exceptions import JOSEError

from qapulse.errors import AuthError, InvalidSignature, TokenError, TokenExpired

logger = logging.getLogger(__name__)

# JWT configuration
JWT_ALGORITHM = "HS256"
JWT_EXPIRATION_HOURS = 24

# Security scheme for FastAPI dependency injection
security = HTTPBearer(auto_error=False)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CredentialVerifier:
    """
    Salted one-way password hashing with bcrypt.

    Attributes:
        rounds: bcrypt cost factor used when hashing new passwords.
    """

    def __init__(self, rounds: int = 12):
        self.rounds = rounds
        self._dummy_hash: str | None = None

    def hash(self, password: str) -> str:
        """Return a bcrypt hash of `password` suitable for the users table."""
        hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds))
        return hashed.decode("utf-8")

    def verify(self, stored_hash: str, candidate: str) -> bool:
        """
        Check a plaintext candidate against a stored bcrypt hash.

        Args:
            stored_hash: Hash as stored in the users table.
            candidate:   Plaintext password supplied by the client.

        Returns:
            True on match. A malformed stored hash counts as a mismatch.
        """
        try:
            return bcrypt.checkpw(candidate.encode("utf-8"), stored_hash.encode("utf-8"))
        except ValueError:
            logger.warning("Stored password hash is not a valid bcrypt hash")
            return False

    def burn(self, candidate: str) -> None:
        """Run one comparison against a throwaway hash so a miss costs the same as a hit."""
        if self._dummy_hash is None:
            self._dummy_hash = self.hash("qapulse-dummy-password")
        self.verify(self._dummy_hash, candidate)


class TokenIssuer:
    """
    Mints and validates signed, time-limited identity tokens.

    Attributes:
        secret:      Symmetric HS256 signing secret.
        token_hours: Lifetime of a freshly issued token.
    """

    def __init__(
        self,
        secret: str,
        token_hours: float = JWT_EXPIRATION_HOURS,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """
        Args:
            secret:      Signing secret (from QAPULSE_JWT_SECRET).
            token_hours: Token lifetime in hours.
            clock:       Returns the current aware UTC datetime. Tests swap it out.
        """
        self.secret = secret
        self.token_hours = token_hours
        self._clock = clock

    def issue(self, user_id: int) -> str:
        """
        Produce a signed token for `user_id` expiring `token_hours` from now.

        Raises:
            AuthError: If the token cannot be signed.
        """
        now = self._clock()
        payload = {
            "user_id": user_id,
            "iat": now,
            "exp": now + timedelta(hours=self.token_hours),
        }
        try:
            return jwt.encode(payload, self.secret, algorithm=JWT_ALGORITHM)
        except JOSEError as e:
            logger.error("Token signing failed for user %s: %s", user_id, e)
            raise AuthError("failed to generate token") from e

    def validate(self, token: str) -> int:
        """
        Verify a token and return the user id it asserts.

        Expiry is checked against the injected clock rather than jose's own,
        so the two never disagree.

        Raises:
            TokenExpired:     The token's exp is not in the future.
            InvalidSignature: The token is malformed, tampered or lacks claims.
        """
        try:
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=[JWT_ALGORITHM],
                options={"verify_exp": False},
            )
        except JOSEError as e:
            raise InvalidSignature() from e

        exp = claims.get("exp")
        user_id = claims.get("user_id")
        if not isinstance(exp, (int, float)) or not isinstance(user_id, int):
            raise InvalidSignature()
        if exp <= self._clock().timestamp():
            raise TokenExpired()
        return user_id


class Authenticator:
    """
    Username/password login: user lookup, bcrypt check, token minting.

    bcrypt is deliberately slow, so comparisons run in a worker thread to
    keep the event loop free for other sessions.

    Attributes:
        users:        UserStore used for lookups.
        verifier:     CredentialVerifier for hash comparison.
        issuer:       TokenIssuer for minting tokens.
        unify_errors: Report unknown-user and bad-password identically.
    """

    def __init__(self, users, verifier: CredentialVerifier, issuer: TokenIssuer,
                 unify_errors: bool = False):
        self.users = users
        self.verifier = verifier
        self.issuer = issuer
        self.unify_errors = unify_errors

    async def authenticate(self, username: str, password: str) -> tuple[int, str]:
        """
        Log a user in.

        Returns:
            (user_id, token) on success.

        Raises:
            AuthError:  Unknown user, wrong password, or token minting failure.
            StoreError: The user lookup failed.
        """
        user = await self.users.get_by_username(username)
        if user is None:
            if self.unify_errors:
                await asyncio.to_thread(self.verifier.burn, password)
                raise AuthError("invalid credentials")
            raise AuthError("user not found")

        matched = await asyncio.to_thread(self.verifier.verify, user.password_hash, password)
        if not matched:
            raise AuthError("invalid credentials" if self.unify_errors else "invalid password")

        token = self.issuer.issue(user.id)
        logger.info("User %s authenticated", user.id)
        return user.id, token


def require_auth(issuer: TokenIssuer):
    """
    Create a FastAPI dependency that enforces bearer-token authentication.

    Usage in routes:
        @router.get("/api/analytics")
        async def analytics(user_id: int = Depends(require_auth(issuer))): ...

    Args:
        issuer: The TokenIssuer used for token validation.

    Returns:
        A FastAPI dependency function resolving to the token's user id.
    """
    async def _verify(
        credentials: HTTPAuthorizationCredentials | None = Depends(security),
    ) -> int:
        if credentials is None:
            raise HTTPException(status_code=401, detail="Authentication required")

        try:
            return issuer.validate(credentials.credentials)
        except TokenError:
            raise HTTPException(status_code=401, detail="Invalid or expired token")

    return _verify
