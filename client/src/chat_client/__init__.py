"""Presence and messaging synchronization core for a 1:1 chat client."""

from .config import ClientConfig, load_config
from .connection import ConnectionGateway
from .conversations import ConversationStore
from .errors import (
    AckTimeoutError,
    AuthError,
    ChatClientError,
    FetchError,
    NotConnectedError,
    ProtocolError,
    ValidationError,
)
from .loopback import LoopbackTransport
from .models import Message, Peer
from .presence import PresenceRegistry
from .session import AuthState, SessionManager
from .sync import Synchronizer
from .typing_tracker import TypingTracker
from .view import ErrorNotice, ViewModel
from .ws_transport import WebSocketTransport

__all__ = [
    "AckTimeoutError",
    "AuthError",
    "AuthState",
    "ChatClientError",
    "ClientConfig",
    "ConnectionGateway",
    "ConversationStore",
    "ErrorNotice",
    "FetchError",
    "LoopbackTransport",
    "Message",
    "NotConnectedError",
    "Peer",
    "PresenceRegistry",
    "ProtocolError",
    "SessionManager",
    "Synchronizer",
    "TypingTracker",
    "ValidationError",
    "ViewModel",
    "WebSocketTransport",
    "load_config",
]
