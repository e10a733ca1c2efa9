from __future__ import annotations

import math
import time
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, List

from .errors import ProtocolError


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class Peer:
    """Another registered participant visible in the roster."""

    username: str
    id: str | None = None

    @classmethod
    def from_payload(cls, payload: Any) -> "Peer":
        if not isinstance(payload, dict):
            raise ProtocolError("peer payload must be an object")
        username = payload.get("username")
        if not isinstance(username, str) or not username:
            raise ProtocolError("peer username required")
        peer_id = payload.get("id")
        return cls(username=username, id=None if peer_id is None else str(peer_id))

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"username": self.username}
        if self.id is not None:
            payload["id"] = self.id
        return payload


@dataclass(frozen=True)
class Message:
    """A 1:1 chat message.

    Immutable apart from ``read``, which only ever moves from ``False`` to
    ``True`` through :meth:`as_read`.
    """

    sender: str
    recipient: str
    text: str
    timestamp_ms: int
    read: bool = False

    @classmethod
    def from_payload(cls, payload: Any) -> "Message":
        if not isinstance(payload, dict):
            raise ProtocolError("message payload must be an object")
        sender = payload.get("from")
        recipient = payload.get("to")
        text = payload.get("message")
        if not isinstance(sender, str) or not sender:
            raise ProtocolError("message.from required")
        if not isinstance(recipient, str) or not recipient:
            raise ProtocolError("message.to required")
        if not isinstance(text, str):
            raise ProtocolError("message.message must be a string")
        return cls(
            sender=sender,
            recipient=recipient,
            text=text,
            timestamp_ms=parse_timestamp(payload.get("timestamp")),
            read=payload.get("read") is True,
        )

    def as_read(self) -> "Message":
        if self.read:
            return self
        return replace(self, read=True)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "from": self.sender,
            "to": self.recipient,
            "message": self.text,
            "timestamp": self.timestamp_ms,
            "read": self.read,
        }


def parse_timestamp(value: Any) -> int:
    """Normalise a wire timestamp to integer epoch milliseconds.

    Accepts epoch milliseconds or an ISO-8601 string (a trailing ``Z`` is
    allowed). ``None`` falls back to the local clock.
    """

    if value is None:
        return _now_ms()
    if isinstance(value, bool):
        raise ProtocolError("timestamp must be a number or ISO-8601 string")
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            raise ProtocolError(f"timestamp must be finite, got {value!r}")
        try:
            return int(value)
        except (OverflowError, ValueError) as exc:
            raise ProtocolError(f"invalid timestamp {value!r}") from exc
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            raise ProtocolError(f"invalid timestamp {value!r}") from exc
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        try:
            return int(parsed.timestamp() * 1000)
        except (OverflowError, OSError) as exc:
            raise ProtocolError(f"invalid timestamp {value!r}") from exc
    raise ProtocolError("timestamp must be a number or ISO-8601 string")


def parse_messages(payload: Any) -> List[Message]:
    if not isinstance(payload, list):
        raise ProtocolError("history payload must be a list")
    return [Message.from_payload(item) for item in payload]


def parse_username(payload: Any, event: str) -> str:
    if not isinstance(payload, str) or not payload:
        raise ProtocolError(f"{event} payload must be a username string")
    return payload
