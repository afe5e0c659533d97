"""WebSocket message envelope definition.

Every message on ``/ws``, in both directions, is one JSON text frame:

.. code-block:: json

    {"type": "auth" | "request_analytics" | "request_user_data", "payload": {...}}

Server replies use ``auth_response``, ``analytics``, ``user_data`` or ``error``.
Inbound frames decode into a closed set of typed messages; anything else is a
:class:`~qapulse.errors.DecodeError` carrying the message sent back to the client.
"""

from __future__ import annotations

from dataclasses import asdict
from typing import Any, Literal, Union

from pydantic import BaseModel, ValidationError

from qapulse.analytics import Analytics
from qapulse.errors import DecodeError
from qapulse.store import UserProfile

# Outbound message types
AUTH_RESPONSE = "auth_response"
ANALYTICS = "analytics"
USER_DATA = "user_data"
ERROR = "error"


class Envelope(BaseModel):
    type: str
    payload: Any = None


class AuthRequest(BaseModel):
    type: Literal["auth"] = "auth"
    username: str
    password: str

    def __repr__(self) -> str:
        return f"AuthRequest(username={self.username!r})"

    @classmethod
    def from_payload(cls, payload: Any) -> AuthRequest:
        if not isinstance(payload, dict):
            raise DecodeError("invalid auth request")
        try:
            return cls(username=payload.get("username"), password=payload.get("password"))
        except ValidationError as e:
            raise DecodeError("invalid auth request") from e


class AnalyticsRequest(BaseModel):
    type: Literal["request_analytics"] = "request_analytics"
    token: str | None = None

    @classmethod
    def from_payload(cls, payload: Any) -> AnalyticsRequest:
        return cls(token=_token_of(payload))


class UserDataRequest(BaseModel):
    type: Literal["request_user_data"] = "request_user_data"
    token: str | None = None

    @classmethod
    def from_payload(cls, payload: Any) -> UserDataRequest:
        return cls(token=_token_of(payload))


InboundMessage = Union[AuthRequest, AnalyticsRequest, UserDataRequest]

_INBOUND = {
    "auth": AuthRequest,
    "request_analytics": AnalyticsRequest,
    "request_user_data": UserDataRequest,
}


def _token_of(payload: Any) -> str | None:
    # Payload is optional for queries; only a string token is picked up.
    if isinstance(payload, dict) and isinstance(payload.get("token"), str):
        return payload["token"]
    return None


def decode(raw: str | bytes) -> InboundMessage:
    """Parse one inbound frame into its typed message.

    Raises:
        DecodeError: ``invalid message format`` for a frame that is not an
            envelope, ``unknown message type`` for a type outside the closed
            set, or a type-specific message when the payload is wrong.
    """
    try:
        envelope = Envelope.model_validate_json(raw)
    except ValidationError as e:
        raise DecodeError("invalid message format") from e

    message_cls = _INBOUND.get(envelope.type)
    if message_cls is None:
        raise DecodeError("unknown message type")
    return message_cls.from_payload(envelope.payload)


def encode(msg_type: str, payload: Any) -> str:
    return Envelope(type=msg_type, payload=payload).model_dump_json()


def error_frame(message: str) -> str:
    return encode(ERROR, {"status": "error", "message": message})


def auth_response_frame(token: str) -> str:
    return encode(AUTH_RESPONSE, {"status": "success", "message": "authenticated", "token": token})


def analytics_frame(snapshot: Analytics) -> str:
    return encode(ANALYTICS, snapshot.model_dump())


def user_data_frame(profile: UserProfile) -> str:
    return encode(USER_DATA, asdict(profile))
