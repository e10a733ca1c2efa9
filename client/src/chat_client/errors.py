from __future__ import annotations


class ChatClientError(Exception):
    """Base class for every error raised by the chat client core."""


class ValidationError(ChatClientError):
    """Input rejected locally; nothing was sent over the wire."""


class AuthError(ChatClientError):
    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"registration rejected: {message}")


class FetchError(ChatClientError):
    def __init__(self, peer: str, reason: str) -> None:
        self.peer = peer
        self.reason = reason
        super().__init__(f"history fetch for {peer!r} failed: {reason}")


class ProtocolError(ChatClientError):
    """Malformed or unexpected frame or payload."""


class NotConnectedError(ChatClientError):
    pass


class AckTimeoutError(ChatClientError):
    def __init__(self, event: str, timeout: float) -> None:
        self.event = event
        self.timeout = timeout
        super().__init__(f"no ack for {event!r} within {timeout}s")
