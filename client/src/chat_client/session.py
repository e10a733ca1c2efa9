from __future__ import annotations

import enum
import logging
from typing import Any, Dict, List, Tuple

from .connection import ConnectionGateway
from .errors import AuthError, ProtocolError, ValidationError
from .models import Peer

logger = logging.getLogger(__name__)


class AuthState(str, enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    REGISTERING = "registering"
    REGISTERED = "registered"


class SessionManager:
    """Registration handshake and the local identity."""

    def __init__(self, gateway: ConnectionGateway) -> None:
        self._gateway = gateway
        self.state = AuthState.UNAUTHENTICATED
        self.identity: str | None = None
        self._requested: str | None = None

    @property
    def registered(self) -> bool:
        return self.state is AuthState.REGISTERED

    def register(self, username: str) -> str:
        name = (username or "").strip()
        if not name:
            raise ValidationError("username must not be empty")
        if self.state is not AuthState.UNAUTHENTICATED:
            raise ValidationError(f"cannot register while {self.state.value}")
        self._gateway.send("register", name)
        self._requested = name
        self.state = AuthState.REGISTERING
        return name

    def reregister(self) -> bool:
        """Repeat the handshake after a reconnect; returns whether one was sent."""

        name = self.identity or self._requested
        if name is None or self.state is AuthState.UNAUTHENTICATED:
            return False
        self._gateway.send("register", name)
        self._requested = name
        self.state = AuthState.REGISTERING
        return True

    def apply_success(self, payload: Any) -> Tuple[List[Peer], Dict[str, int]]:
        if not isinstance(payload, dict):
            raise ProtocolError("registrationSuccess payload must be an object")
        if self.state is AuthState.UNAUTHENTICATED:
            raise ProtocolError("registrationSuccess without a pending registration")
        current_user = payload.get("currentUser")
        if not isinstance(current_user, str) or not current_user:
            raise ProtocolError("registrationSuccess.currentUser required")
        if self.identity is not None and current_user != self.identity:
            raise ProtocolError(f"identity changed from {self.identity!r} to {current_user!r}")

        other_users = payload.get("otherUsers") or []
        if not isinstance(other_users, list):
            raise ProtocolError("registrationSuccess.otherUsers must be a list")
        roster = [Peer.from_payload(item) for item in other_users]

        unread = payload.get("unreadCounts") or {}
        if not isinstance(unread, dict):
            raise ProtocolError("registrationSuccess.unreadCounts must be an object")

        self.identity = current_user
        self._requested = None
        self.state = AuthState.REGISTERED
        logger.info("registered as %s", current_user)
        return roster, unread

    def apply_failure(self, payload: Any) -> AuthError:
        if not isinstance(payload, str):
            raise ProtocolError("registrationError payload must be a string")
        if self.state is not AuthState.REGISTERING:
            raise ProtocolError("registrationError without a pending registration")
        error = AuthError(payload)
        self.identity = None
        self._requested = None
        self.state = AuthState.UNAUTHENTICATED
        logger.info("registration rejected: %s", payload)
        return error

    def require_registered(self) -> str:
        if self.state is not AuthState.REGISTERED or self.identity is None:
            raise ValidationError("not registered")
        return self.identity
