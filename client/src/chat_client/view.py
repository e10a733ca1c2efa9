from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence, Tuple

from .models import Message, Peer


@dataclass(frozen=True)
class ErrorNotice:
    kind: str
    message: str
    retryable: bool = False


@dataclass(frozen=True)
class MessageView:
    message: Message
    display_timestamp_ms: int
    outgoing: bool


@dataclass(frozen=True)
class ViewModel:
    """Snapshot handed to the rendering layer after every state change."""

    auth_state: str
    identity: str | None
    roster: Tuple[Peer, ...]
    active: str | None
    messages: Tuple[MessageView, ...]
    unread: Dict[str, int] = field(default_factory=dict)
    typing: str | None = None
    history_loading: bool = False
    error: ErrorNotice | None = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "auth_state": self.auth_state,
            "identity": self.identity,
            "roster": [peer.to_payload() for peer in self.roster],
            "active": self.active,
            "messages": [
                dict(item.message.to_payload(), display_timestamp=item.display_timestamp_ms)
                for item in self.messages
            ],
            "unread": dict(self.unread),
            "typing": self.typing,
            "history_loading": self.history_loading,
            "error": None
            if self.error is None
            else {"kind": self.error.kind, "message": self.error.message, "retryable": self.error.retryable},
        }


def message_views(messages: Sequence[Message], identity: str | None) -> Tuple[MessageView, ...]:
    """Wrap messages with a display timestamp that never goes backwards."""

    views: List[MessageView] = []
    latest: int | None = None
    for message in messages:
        latest = message.timestamp_ms if latest is None else max(latest, message.timestamp_ms)
        views.append(MessageView(message=message, display_timestamp_ms=latest, outgoing=message.sender == identity))
    return tuple(views)
