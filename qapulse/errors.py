"""
QA Pulse - Error Taxonomy
==========================
Exceptions raised by the session protocol and its collaborators.

Recoverability is decided by the session engine, not by the raiser:
    DecodeError    -> error envelope, session continues
    AuthError      -> error envelope, session continues
    StoreError     -> error envelope, session continues (fatal only at startup)
    TransportError -> session ends
    TokenError     -> raised by TokenIssuer.validate()
"""


class QAPulseError(Exception):
    """Base class for all QA Pulse errors. `message` is safe to show a client."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class DecodeError(QAPulseError):
    """A frame or payload could not be decoded into a known message."""


class AuthError(QAPulseError):
    """Authentication failed (unknown user, bad password, token minting)."""


class TransportError(QAPulseError):
    """The underlying connection failed while reading or writing."""


class StoreError(QAPulseError):
    """A query against the relational store failed."""


class TokenError(QAPulseError):
    """Base class for token validation failures."""


class TokenExpired(TokenError):
    """The token's expiry is in the past."""

    def __init__(self, message: str = "token expired"):
        super().__init__(message)


class InvalidSignature(TokenError):
    """The token is malformed, tampered with, or signed with another secret."""

    def __init__(self, message: str = "invalid token"):
        super().__init__(message)
