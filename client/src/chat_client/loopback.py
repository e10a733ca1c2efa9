from __future__ import annotations

from typing import Any, Dict, List

from .connection import TransportListener, build_frame
from .errors import NotConnectedError


class LoopbackTransport:
    """In-memory transport that records outbound frames and injects inbound ones."""

    def __init__(self) -> None:
        self.sent: List[Dict[str, Any]] = []
        self.connected = True
        self._listener: TransportListener | None = None

    def bind(self, listener: TransportListener) -> None:
        self._listener = listener

    def send_frame(self, frame: Dict[str, Any]) -> None:
        if not self.connected:
            raise NotConnectedError("loopback transport is disconnected")
        self.sent.append(frame)

    def deliver(self, frame: Any) -> None:
        if self._listener is None:
            raise RuntimeError("transport is not bound")
        self._listener.frame_received(frame)

    def emit(self, event: str, body: Any) -> None:
        self.deliver(build_frame(event, body))

    def ack(self, frame_id: int, body: Any) -> None:
        self.deliver(build_frame("ack", body, frame_id))

    def drop(self) -> None:
        self.connected = False
        if self._listener is not None:
            self._listener.connection_lost()

    def restore(self) -> None:
        self.connected = True
        if self._listener is not None:
            self._listener.connection_restored()

    def sent_events(self, event: str) -> List[Dict[str, Any]]:
        return [frame for frame in self.sent if frame["t"] == event]

    async def close(self) -> None:
        self.connected = False
