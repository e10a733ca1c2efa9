from __future__ import annotations

from typing import Dict, Iterable, List

from .models import Peer


class PresenceRegistry:
    """The set of currently connected peers, keyed by username.

    Insertion is idempotent: a second connect for a username already present
    replaces the entry in place instead of adding another one.
    """

    def __init__(self) -> None:
        self._peers: Dict[str, Peer] = {}

    def apply_initial_roster(self, peers: Iterable[Peer], *, exclude: str | None = None) -> None:
        self._peers = {}
        for peer in peers:
            if peer.username == exclude:
                continue
            self._peers[peer.username] = peer

    def apply_connect(self, peer: Peer) -> bool:
        """Insert ``peer``; returns ``False`` when the username was already present."""

        existed = peer.username in self._peers
        self._peers[peer.username] = peer
        return not existed

    def apply_disconnect(self, username: str) -> bool:
        return self._peers.pop(username, None) is not None

    def contains(self, username: str) -> bool:
        return username in self._peers

    def list(self) -> List[Peer]:
        return list(self._peers.values())

    def clear(self) -> None:
        self._peers = {}
