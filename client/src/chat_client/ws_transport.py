from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

import aiohttp
from aiohttp import WSMsgType

from .config import ClientConfig
from .connection import TransportListener, build_frame
from .errors import NotConnectedError

logger = logging.getLogger(__name__)

OUTBOUND_QUEUE_SIZE = 1000


class WebSocketTransport:
    """aiohttp websocket client speaking JSON frames.

    Outbound frames are queued and written by a single writer task so callers
    never await. A reader task hands decoded frames to the bound listener one
    at a time. When the socket drops without :meth:`close` being called the
    transport reconnects with exponential backoff.
    """

    def __init__(
        self,
        config: ClientConfig,
        *,
        session: aiohttp.ClientSession | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.config = config
        self._session = session
        self._owns_session = session is None
        self._sleep = sleep
        self._listener: TransportListener | None = None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._outbound: asyncio.Queue[Optional[Dict[str, Any]]] | None = None
        self._writer_task: asyncio.Task | None = None
        self._run_task: asyncio.Task | None = None
        self._connected = False
        self._closing = False

    @property
    def connected(self) -> bool:
        return self._connected

    def bind(self, listener: TransportListener) -> None:
        self._listener = listener

    async def connect(self) -> None:
        if self._listener is None:
            raise RuntimeError("transport must be bound before connecting")
        if self._run_task is not None:
            return
        self._closing = False
        await self._open()
        self._run_task = asyncio.create_task(self._run())

    async def _open(self) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession()
        kwargs: Dict[str, Any] = {"max_msg_size": self.config.max_msg_size}
        if self.config.heartbeat_s is not None:
            kwargs["heartbeat"] = self.config.heartbeat_s
        self._ws = await self._session.ws_connect(self.config.url, **kwargs)
        self._outbound = asyncio.Queue(maxsize=OUTBOUND_QUEUE_SIZE)
        self._writer_task = asyncio.create_task(self._writer(self._ws, self._outbound))
        self._connected = True
        logger.info("connected to %s", self.config.url)

    def send_frame(self, frame: Dict[str, Any]) -> None:
        if not self._connected or self._outbound is None:
            raise NotConnectedError("websocket is not connected")
        try:
            self._outbound.put_nowait(frame)
        except asyncio.QueueFull as exc:
            raise NotConnectedError("outbound queue full") from exc

    async def _writer(
        self,
        ws: aiohttp.ClientWebSocketResponse,
        outbound: asyncio.Queue[Optional[Dict[str, Any]]],
    ) -> None:
        try:
            while True:
                frame = await outbound.get()
                if frame is None:
                    break
                await ws.send_json(frame)
        except asyncio.CancelledError:
            return
        except (aiohttp.ClientError, ConnectionError, RuntimeError) as exc:
            logger.warning("websocket write failed: %s", exc)

    async def _run(self) -> None:
        while True:
            await self._read_until_closed()
            await self._stop_writer()
            if self._closing:
                return
            self._connected = False
            logger.warning("connection to %s lost", self.config.url)
            assert self._listener is not None
            self._listener.connection_lost()
            if not await self._reconnect():
                logger.error("giving up on %s after %d attempts", self.config.url, self.config.max_reconnect_attempts)
                return
            self._listener.connection_restored()

    async def _read_until_closed(self) -> None:
        ws = self._ws
        assert ws is not None and self._listener is not None
        async for msg in ws:
            if msg.type == WSMsgType.TEXT:
                try:
                    frame = msg.json()
                except ValueError:
                    logger.warning("dropping non-JSON text frame")
                    continue
                if isinstance(frame, dict) and frame.get("t") == "ping":
                    self._reply_pong(frame)
                    continue
                self._listener.frame_received(frame)
            elif msg.type in {WSMsgType.CLOSE, WSMsgType.CLOSED, WSMsgType.ERROR}:
                break
            else:
                logger.warning("ignoring unsupported websocket message type %s", msg.type)

    def _reply_pong(self, ping: Dict[str, Any]) -> None:
        try:
            self.send_frame(build_frame("pong", None, ping.get("id")))
        except NotConnectedError:
            return

    async def _reconnect(self) -> bool:
        delay = self.config.reconnect_delay_s
        for attempt in range(1, self.config.max_reconnect_attempts + 1):
            await self._sleep(delay)
            if self._closing:
                return False
            try:
                await self._open()
            except (aiohttp.ClientError, OSError) as exc:
                logger.warning("reconnect attempt %d to %s failed: %s", attempt, self.config.url, exc)
                delay = min(max(delay * 2, self.config.reconnect_delay_s), self.config.max_reconnect_delay_s)
                continue
            return True
        return False

    async def _stop_writer(self) -> None:
        """Let the writer flush what is queued, then stop it."""

        if self._outbound is not None:
            try:
                self._outbound.put_nowait(None)
            except asyncio.QueueFull:
                if self._writer_task is not None:
                    self._writer_task.cancel()
        if self._writer_task is not None:
            await asyncio.gather(self._writer_task, return_exceptions=True)
            self._writer_task = None
        self._outbound = None

    async def close(self) -> None:
        self._closing = True
        self._connected = False
        await self._stop_writer()
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        if self._run_task is not None:
            await asyncio.gather(self._run_task, return_exceptions=True)
            self._run_task = None
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None
