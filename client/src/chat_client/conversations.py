from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Set, Tuple

from .models import Message

logger = logging.getLogger(__name__)

_MessageKey = Tuple[str, str, str, int]


def _key(message: Message) -> _MessageKey:
    return (message.sender, message.recipient, message.text, message.timestamp_ms)


class ConversationStore:
    """Per-peer history, unread counters and the active selection.

    ``generation`` increases on every selection change. A history fetch
    remembers the generation it was issued under and its result is applied
    only if the generation is unchanged when it completes.
    """

    def __init__(self) -> None:
        self.active: str | None = None
        self.generation = 0
        self._history: Dict[str, List[Message]] = {}
        self._unread: Dict[str, int] = {}

    def select(self, peer: str) -> int:
        """Make ``peer`` the active selection and clear its unread counter."""

        self.active = peer
        self.generation += 1
        self._unread.pop(peer, None)
        return self.generation

    def clear_selection(self) -> None:
        if self.active is None:
            return
        self.active = None
        self.generation += 1

    def clear(self) -> None:
        """Drop every conversation, counter and the selection."""

        self.clear_selection()
        self._history = {}
        self._unread = {}

    def is_current(self, peer: str, generation: int) -> bool:
        return self.active == peer and self.generation == generation

    def apply_history(self, peer: str, messages: Iterable[Message], generation: int) -> bool:
        """Replace ``peer``'s history with a fetch result unless it is stale.

        The fetched list is authoritative, except that a message already
        marked read locally stays read.
        """

        if not self.is_current(peer, generation):
            logger.debug("discarding stale history for %s (generation %d)", peer, generation)
            return False
        read_keys: Set[_MessageKey] = {_key(m) for m in self._history.get(peer, []) if m.read}
        self._history[peer] = [m.as_read() if _key(m) in read_keys else m for m in messages]
        return True

    def receive_inbound(self, message: Message) -> bool:
        """Record a message from a peer; returns whether it is being viewed.

        A viewed message is stored as read. Otherwise the sender's unread
        counter grows by exactly one.
        """

        peer = message.sender
        if peer == self.active:
            self._history.setdefault(peer, []).append(message.as_read())
            return True
        self._history.setdefault(peer, []).append(message)
        self._unread[peer] = self._unread.get(peer, 0) + 1
        return False

    def receive_sent_confirmation(self, message: Message) -> bool:
        """Record a server-confirmed outbound message; returns whether it is visible."""

        peer = message.recipient
        self._history.setdefault(peer, []).append(message)
        return peer == self.active

    def apply_read_receipt(self, by: str) -> bool:
        if by != self.active:
            return False
        held = self._history.get(by, [])
        if all(m.read for m in held):
            return False
        self._history[by] = [m.as_read() for m in held]
        return True

    def seed_unread(self, snapshot: Mapping[str, Any]) -> None:
        counts: Dict[str, int] = {}
        for peer, count in snapshot.items():
            if not isinstance(peer, str) or isinstance(count, bool) or not isinstance(count, int) or count < 0:
                logger.warning("ignoring invalid unread count %r for %r", count, peer)
                continue
            if count == 0 or peer == self.active:
                continue
            counts[peer] = count
        self._unread = counts

    def forget_unread(self, peer: str) -> None:
        self._unread.pop(peer, None)

    def unread_counts(self) -> Dict[str, int]:
        return dict(self._unread)

    def unread(self, peer: str) -> int:
        return self._unread.get(peer, 0)

    def messages(self, peer: str) -> List[Message]:
        return list(self._history.get(peer, []))

    def visible_messages(self) -> List[Message]:
        if self.active is None:
            return []
        return self.messages(self.active)
