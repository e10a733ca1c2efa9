"""Connection gateway: typed send/subscribe primitives over a single transport."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

from .errors import AckTimeoutError, NotConnectedError, ProtocolError

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = 1
ACK_FRAME = "ack"

Handler = Callable[[Any], None]
AckCallback = Callable[[Any], None]


class TransportListener(Protocol):
    def frame_received(self, frame: Any) -> None: ...

    def connection_lost(self) -> None: ...

    def connection_restored(self) -> None: ...


class Transport(Protocol):
    def bind(self, listener: TransportListener) -> None: ...

    def send_frame(self, frame: Dict[str, Any]) -> None: ...

    async def close(self) -> None: ...


def build_frame(event: str, body: Any, frame_id: int | None = None) -> Dict[str, Any]:
    frame: Dict[str, Any] = {"v": PROTOCOL_VERSION, "t": event, "body": body}
    if frame_id is not None:
        frame["id"] = frame_id
    return frame


def parse_frame(frame: Any) -> Tuple[str, Optional[int], Any]:
    """Validate an inbound frame and return ``(event, id, body)``."""

    if not isinstance(frame, dict):
        raise ProtocolError("frame must be a JSON object")
    if frame.get("v") != PROTOCOL_VERSION:
        raise ProtocolError(f"unsupported frame version {frame.get('v')!r}")
    event = frame.get("t")
    if not isinstance(event, str) or not event:
        raise ProtocolError("frame type required")
    frame_id = frame.get("id")
    if frame_id is not None and (isinstance(frame_id, bool) or not isinstance(frame_id, int)):
        raise ProtocolError("frame id must be an integer")
    return event, frame_id, frame.get("body")


@dataclass
class _PendingAck:
    event: str
    callback: AckCallback
    on_error: Callable[[Exception], None] | None = None


class ConnectionGateway:
    """Owns the connection and routes frames to subscribers in arrival order.

    Ordering is preserved per event name because every frame is handed to its
    subscribers synchronously before the next one is read. Ordering across
    distinct event names is whatever the transport delivers.
    """

    def __init__(self, transport: Transport) -> None:
        self._transport = transport
        self._handlers: Dict[str, List[Handler]] = {}
        self._pending: Dict[int, _PendingAck] = {}
        self._reconnect_callbacks: List[Callable[[], None]] = []
        self._next_id = 1
        self._closed = False
        transport.bind(self)

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, event: str, handler: Handler) -> None:
        self._handlers.setdefault(event, []).append(handler)

    def unsubscribe(self, event: str, handler: Handler) -> None:
        handlers = self._handlers.get(event)
        if not handlers:
            return
        try:
            handlers.remove(handler)
        except ValueError:
            return
        if not handlers:
            self._handlers.pop(event, None)

    def unsubscribe_all(self) -> None:
        self._handlers.clear()
        self._reconnect_callbacks.clear()

    def on_reconnect(self, callback: Callable[[], None]) -> None:
        self._reconnect_callbacks.append(callback)

    def send(self, event: str, payload: Any, ack: AckCallback | None = None) -> None:
        """Emit ``event``; ``ack`` is called with the reply body if given."""

        self._send(event, payload, ack)

    def _send(
        self,
        event: str,
        payload: Any,
        ack: AckCallback | None,
        on_error: Callable[[Exception], None] | None = None,
    ) -> int | None:
        if self._closed:
            raise NotConnectedError("gateway is closed")
        frame_id: int | None = None
        if ack is not None:
            frame_id = self._next_id
            self._next_id += 1
            self._pending[frame_id] = _PendingAck(event=event, callback=ack, on_error=on_error)
        try:
            self._transport.send_frame(build_frame(event, payload, frame_id))
        except NotConnectedError:
            if frame_id is not None:
                self._pending.pop(frame_id, None)
            raise
        logger.debug("sent %s id=%s", event, frame_id)
        return frame_id

    async def request(self, event: str, payload: Any, timeout: float) -> Any:
        """Send ``event`` and wait for its ack body.

        Raises :class:`AckTimeoutError` when no ack arrives in ``timeout``
        seconds and :class:`NotConnectedError` when the connection drops first.
        """

        future: asyncio.Future = asyncio.get_running_loop().create_future()

        def _resolve(body: Any) -> None:
            if not future.done():
                future.set_result(body)

        def _fail(exc: Exception) -> None:
            if not future.done():
                future.set_exception(exc)

        frame_id = self._send(event, payload, _resolve, _fail)
        try:
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError as exc:
            raise AckTimeoutError(event, timeout) from exc
        finally:
            self._pending.pop(frame_id, None)

    def frame_received(self, frame: Any) -> None:
        try:
            event, frame_id, body = parse_frame(frame)
        except ProtocolError as exc:
            logger.warning("dropping malformed frame: %s", exc)
            return

        if event == ACK_FRAME:
            self._deliver_ack(frame_id, body)
            return

        handlers = self._handlers.get(event)
        if not handlers:
            logger.debug("no subscriber for %s", event)
            return
        for handler in list(handlers):
            try:
                handler(body)
            except ProtocolError as exc:
                logger.warning("dropping %s event: %s", event, exc)
            except Exception:
                logger.exception("%s handler failed", event)

    def _deliver_ack(self, frame_id: int | None, body: Any) -> None:
        if frame_id is None:
            logger.warning("dropping ack without id")
            return
        pending = self._pending.pop(frame_id, None)
        if pending is None:
            logger.debug("ack for unknown or expired id %s", frame_id)
            return
        try:
            pending.callback(body)
        except ProtocolError as exc:
            logger.warning("dropping %s ack: %s", pending.event, exc)
        except Exception:
            logger.exception("%s ack callback failed", pending.event)

    def connection_lost(self) -> None:
        self._fail_pending(NotConnectedError("connection lost"))

    def connection_restored(self) -> None:
        logger.info("connection restored")
        for callback in list(self._reconnect_callbacks):
            callback()

    def _fail_pending(self, exc: Exception) -> None:
        pending = list(self._pending.values())
        self._pending.clear()
        for entry in pending:
            if entry.on_error is not None:
                entry.on_error(exc)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._fail_pending(NotConnectedError("gateway closed"))
        await self._transport.close()
