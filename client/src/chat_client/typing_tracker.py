from __future__ import annotations

import asyncio
import enum
from typing import Any, Callable, Optional, Protocol

TYPING_EVENT = "typing"
STOP_TYPING_EVENT = "stopTyping"


class TimerHandle(Protocol):
    def cancel(self) -> Any: ...


Scheduler = Callable[[float, Callable[[], None]], TimerHandle]
Emit = Callable[[str, str], None]


def _loop_call_later(delay: float, callback: Callable[[], None]) -> TimerHandle:
    return asyncio.get_running_loop().call_later(delay, callback)


class OutboundTyping(str, enum.Enum):
    IDLE = "idle"
    TYPING = "typing"


class TypingTracker:
    """Debounced outbound typing signal plus the remote typing indicator.

    Outbound, only the ``IDLE -> TYPING`` and ``TYPING -> IDLE`` edges emit,
    through ``emit(event, peer)``. Every input while typing replaces the
    inactivity timer. Inbound, at most one remote peer is shown as typing and
    only while it is the active selection. The remote indicator expires after
    the same timeout unless another ``userTyping`` arrives, and
    ``on_remote_expired`` is called when it does.
    """

    def __init__(
        self,
        emit: Emit,
        timeout_s: float = 3.0,
        *,
        scheduler: Scheduler | None = None,
        on_remote_expired: Callable[[], None] | None = None,
    ) -> None:
        self._emit = emit
        self.timeout_s = timeout_s
        self._schedule = scheduler or _loop_call_later
        self.state = OutboundTyping.IDLE
        self.target: str | None = None
        self.remote: str | None = None
        self._timer: Optional[TimerHandle] = None
        self._remote_timer: Optional[TimerHandle] = None
        self._on_remote_expired = on_remote_expired

    def input_changed(self, text: str, peer: str) -> None:
        if not text:
            self.stop()
            return
        if self.state is OutboundTyping.TYPING and self.target != peer:
            self.stop()
        if self.state is OutboundTyping.IDLE:
            self.state = OutboundTyping.TYPING
            self.target = peer
            self._emit(TYPING_EVENT, peer)
        self._restart_timer()

    def stop(self) -> None:
        """Return to idle, emitting ``stopTyping`` if a typing signal is live."""

        self._cancel_timer()
        if self.state is not OutboundTyping.TYPING:
            return
        target = self.target
        self.state = OutboundTyping.IDLE
        self.target = None
        if target is not None:
            self._emit(STOP_TYPING_EVENT, target)

    def reset(self) -> None:
        """Drop all typing state without emitting anything."""

        self._cancel_timer()
        self._cancel_remote_timer()
        self.state = OutboundTyping.IDLE
        self.target = None
        self.remote = None

    def _restart_timer(self) -> None:
        self._cancel_timer()
        self._timer = self._schedule(self.timeout_s, self._expired)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _expired(self) -> None:
        self._timer = None
        self.stop()

    @property
    def timer_pending(self) -> bool:
        return self._timer is not None

    def remote_typing(self, username: str, active: str | None) -> bool:
        if username != active:
            return False
        changed = self.remote != username
        self.remote = username
        self._cancel_remote_timer()
        self._remote_timer = self._schedule(self.timeout_s, self._remote_expired)
        return changed

    def remote_stopped(self, username: str) -> bool:
        if self.remote != username:
            return False
        self.clear_remote()
        return True

    def clear_remote(self) -> bool:
        self._cancel_remote_timer()
        changed = self.remote is not None
        self.remote = None
        return changed

    @property
    def remote_timer_pending(self) -> bool:
        return self._remote_timer is not None

    def _cancel_remote_timer(self) -> None:
        if self._remote_timer is not None:
            self._remote_timer.cancel()
            self._remote_timer = None

    def _remote_expired(self) -> None:
        self._remote_timer = None
        if self.remote is None:
            return
        self.remote = None
        if self._on_remote_expired is not None:
            self._on_remote_expired()
