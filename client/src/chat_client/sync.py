"""Synchronizer: the single entry point for server events and user actions.

Every server event goes through :meth:`Synchronizer.dispatch`, which applies
events strictly one at a time in arrival order. Handlers read identity and
selection from the component objects at call time, never from values captured
when they were subscribed.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from functools import partial
from typing import Any, Callable, Deque, Dict, List, Tuple

from .config import ClientConfig
from .connection import ConnectionGateway
from .conversations import ConversationStore
from .errors import AckTimeoutError, FetchError, NotConnectedError, ProtocolError, ValidationError
from .models import Message, Peer, parse_messages, parse_username
from .presence import PresenceRegistry
from .session import SessionManager
from .typing_tracker import Scheduler, TypingTracker
from .view import ErrorNotice, ViewModel, message_views

logger = logging.getLogger(__name__)

Listener = Callable[[ViewModel], None]


class Synchronizer:
    def __init__(
        self,
        gateway: ConnectionGateway,
        config: ClientConfig | None = None,
        *,
        scheduler: Scheduler | None = None,
    ) -> None:
        self.config = config or ClientConfig()
        self.gateway = gateway
        self.session = SessionManager(gateway)
        self.presence = PresenceRegistry()
        self.conversations = ConversationStore()
        self.typing = TypingTracker(
            self._emit_typing,
            self.config.typing_timeout_s,
            scheduler=scheduler,
            on_remote_expired=self._notify,
        )
        self.error: ErrorNotice | None = None
        self._fetch_task: asyncio.Task | None = None
        self._listeners: List[Listener] = []
        self._queue: Deque[Tuple[str, Any]] = deque()
        self._dispatching = False
        self._torn_down = False
        self._handlers: Dict[str, Callable[[Any], bool]] = {
            "registrationSuccess": self._on_registration_success,
            "registrationError": self._on_registration_error,
            "newMessage": self._on_new_message,
            "messageSent": self._on_message_sent,
            "messagesRead": self._on_messages_read,
            "userConnected": self._on_user_connected,
            "userDisconnected": self._on_user_disconnected,
            "userTyping": self._on_user_typing,
            "userStoppedTyping": self._on_user_stopped_typing,
        }
        for event in self._handlers:
            gateway.subscribe(event, partial(self.dispatch, event))
        gateway.on_reconnect(self._on_reconnect)

    # -- view ---------------------------------------------------------------

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def view(self) -> ViewModel:
        return ViewModel(
            auth_state=self.session.state.value,
            identity=self.session.identity,
            roster=tuple(self.presence.list()),
            active=self.conversations.active,
            messages=message_views(self.conversations.visible_messages(), self.session.identity),
            unread=self.conversations.unread_counts(),
            typing=self.typing.remote,
            history_loading=self._fetch_task is not None and not self._fetch_task.done(),
            error=self.error,
        )

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.view()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("view listener failed")

    @property
    def torn_down(self) -> bool:
        return self._torn_down

    # -- inbound ------------------------------------------------------------

    def dispatch(self, event: str, payload: Any) -> None:
        """Apply one server event; events arriving mid-dispatch are queued."""

        if self._torn_down:
            return
        self._queue.append((event, payload))
        if self._dispatching:
            return
        self._dispatching = True
        try:
            while self._queue:
                event, payload = self._queue.popleft()
                handler = self._handlers.get(event)
                if handler is None:
                    logger.warning("no handler for %s", event)
                    continue
                try:
                    changed = handler(payload)
                except ProtocolError as exc:
                    logger.warning("dropping %s: %s", event, exc)
                    continue
                except Exception:
                    logger.exception("handler for %s failed", event)
                    continue
                logger.debug("applied %s", event)
                if changed:
                    self._notify()
        finally:
            self._dispatching = False

    def _registered_identity(self, event: str) -> str:
        if not self.session.registered or self.session.identity is None:
            raise ProtocolError(f"{event} received before registration")
        return self.session.identity

    def _on_registration_success(self, payload: Any) -> bool:
        roster, unread = self.session.apply_success(payload)
        self.presence.apply_initial_roster(roster, exclude=self.session.identity)
        self.conversations.seed_unread(unread)
        self.error = None
        active = self.conversations.active
        if active is not None:
            if self.presence.contains(active):
                self._start_fetch(active, self.conversations.generation)
            else:
                self._drop_selection()
        return True

    def _on_registration_error(self, payload: Any) -> bool:
        error = self.session.apply_failure(payload)
        self._forget_session_state()
        self.error = ErrorNotice("auth", error.message, retryable=True)
        return True

    def _on_new_message(self, payload: Any) -> bool:
        identity = self._registered_identity("newMessage")
        message = Message.from_payload(payload)
        if message.recipient != identity or message.sender == identity:
            raise ProtocolError(f"newMessage from {message.sender!r} to {message.recipient!r} is not inbound")
        viewed = self.conversations.receive_inbound(message)
        self.typing.remote_stopped(message.sender)
        if viewed:
            self._send_quietly("markAsRead", {"sender": message.sender, "receiver": identity})
        return True

    def _on_message_sent(self, payload: Any) -> bool:
        identity = self._registered_identity("messageSent")
        message = Message.from_payload(payload)
        if message.sender != identity:
            raise ProtocolError(f"messageSent from {message.sender!r} is not ours")
        return self.conversations.receive_sent_confirmation(message)

    def _on_messages_read(self, payload: Any) -> bool:
        self._registered_identity("messagesRead")
        if not isinstance(payload, dict):
            raise ProtocolError("messagesRead payload must be an object")
        by = parse_username(payload.get("by"), "messagesRead.by")
        return self.conversations.apply_read_receipt(by)

    def _on_user_connected(self, payload: Any) -> bool:
        identity = self._registered_identity("userConnected")
        peer = Peer.from_payload(payload)
        if peer.username == identity:
            return False
        self.presence.apply_connect(peer)
        return True

    def _on_user_disconnected(self, payload: Any) -> bool:
        self._registered_identity("userDisconnected")
        username = parse_username(payload, "userDisconnected")
        removed = self.presence.apply_disconnect(username)
        self.conversations.forget_unread(username)
        if self.conversations.active == username:
            self._drop_selection()
            return True
        if self.typing.target == username:
            self.typing.reset()
        return self.typing.remote_stopped(username) or removed

    def _on_user_typing(self, payload: Any) -> bool:
        self._registered_identity("userTyping")
        username = parse_username(payload, "userTyping")
        return self.typing.remote_typing(username, self.conversations.active)

    def _on_user_stopped_typing(self, payload: Any) -> bool:
        self._registered_identity("userStoppedTyping")
        username = parse_username(payload, "userStoppedTyping")
        return self.typing.remote_stopped(username)

    def _drop_selection(self) -> None:
        self._cancel_fetch()
        self.typing.reset()
        self.conversations.clear_selection()

    def _forget_session_state(self) -> None:
        """Discard everything learned under the previous identity."""

        self._cancel_fetch()
        self.typing.reset()
        self.presence.clear()
        self.conversations.clear()

    def _on_reconnect(self) -> None:
        if self._torn_down:
            return
        self._cancel_fetch()
        self.typing.reset()
        try:
            resent = self.session.reregister()
        except NotConnectedError as exc:
            logger.warning("could not re-register after reconnect: %s", exc)
            return
        if resent:
            self._notify()

    # -- outbound -----------------------------------------------------------

    def _check_alive(self) -> None:
        if self._torn_down:
            raise ValidationError("session has been torn down")

    def _send_quietly(self, event: str, payload: Dict[str, Any]) -> None:
        try:
            self.gateway.send(event, payload)
        except NotConnectedError as exc:
            logger.warning("could not send %s: %s", event, exc)

    def _emit_typing(self, event: str, peer: str) -> None:
        identity = self.session.identity
        if identity is None or self._torn_down:
            return
        self._send_quietly(event, {"to": peer, "from": identity})

    def register(self, username: str) -> str:
        self._check_alive()
        name = self.session.register(username)
        self.error = None
        self._notify()
        return name

    def select_conversation(self, peer: str) -> asyncio.Task:
        """Open ``peer``'s conversation and fetch its history.

        The unread counter is cleared in the same call. The returned task
        resolves to whether the fetched history was applied; a newer selection
        cancels it and discards any late result.
        """

        self._check_alive()
        self.session.require_registered()
        if not self.presence.contains(peer):
            raise ValidationError(f"{peer!r} is not connected")
        if self.typing.target is not None and self.typing.target != peer:
            self.typing.stop()
        if self.conversations.active != peer:
            self.typing.clear_remote()
        generation = self.conversations.select(peer)
        self.error = None
        task = self._start_fetch(peer, generation)
        self._notify()
        return task

    def send_message(self, text: str) -> bool:
        """Send ``text`` to the active selection; empty text or no selection is a no-op."""

        self._check_alive()
        identity = self.session.require_registered()
        body = (text or "").strip()
        active = self.conversations.active
        if not body or active is None:
            return False
        self.gateway.send("privateMessage", {"to": active, "from": identity, "message": body})
        self.typing.stop()
        if self.typing.clear_remote():
            self._notify()
        return True

    def input_changed(self, text: str) -> None:
        """Feed the compose box contents after every keystroke."""

        if self._torn_down or not self.session.registered:
            return
        active = self.conversations.active
        if active is None:
            return
        self.typing.input_changed(text, active)

    # -- history fetch ------------------------------------------------------

    def _start_fetch(self, peer: str, generation: int) -> asyncio.Task:
        self._cancel_fetch()
        identity = self.session.identity
        task = asyncio.get_running_loop().create_task(self._fetch_history(peer, identity, generation))
        self._fetch_task = task
        return task

    def _cancel_fetch(self) -> None:
        if self._fetch_task is not None and not self._fetch_task.done():
            self._fetch_task.cancel()
        self._fetch_task = None

    async def _fetch_history(self, peer: str, identity: str | None, generation: int) -> bool:
        try:
            body = await self.gateway.request(
                "getChatHistory",
                {"withUser": peer, "currentUser": identity},
                self.config.history_timeout_s,
            )
            messages = parse_messages(body)
        except (AckTimeoutError, NotConnectedError, ProtocolError) as exc:
            self._fetch_finished()
            if self._torn_down or not self.conversations.is_current(peer, generation):
                return False
            error = FetchError(peer, str(exc))
            logger.warning("%s", error)
            self.error = ErrorNotice("fetch", str(error), retryable=True)
            self._notify()
            return False
        self._fetch_finished()
        if self._torn_down:
            return False
        applied = self.conversations.apply_history(peer, messages, generation)
        if applied:
            self._notify()
        return applied

    def _fetch_finished(self) -> None:
        if self._fetch_task is asyncio.current_task():
            self._fetch_task = None

    # -- teardown -----------------------------------------------------------

    def teardown(self) -> None:
        """Release the typing timer, cancel the fetch and detach all handlers."""

        if self._torn_down:
            return
        self._torn_down = True
        self.typing.reset()
        self._cancel_fetch()
        self.gateway.unsubscribe_all()
        self._listeners.clear()
        self._queue.clear()

    async def aclose(self) -> None:
        self.teardown()
        await self.gateway.close()
