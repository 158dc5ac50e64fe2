"""
Type definitions for the client session.

Connection states, credentials, and the tagged event variants that flow
through the session's single event queue.
"""

import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Optional


class ConnectionStatus(str, Enum):
    """State of the client session."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    RECONNECTING = "reconnecting"
    FAILED = "failed"

    @property
    def in_flight(self) -> bool:
        return self in (
            ConnectionStatus.CONNECTING,
            ConnectionStatus.AUTHENTICATING,
            ConnectionStatus.RECONNECTING,
        )

    @property
    def label(self) -> str:
        return _STATUS_LABELS[self]


_STATUS_LABELS = {
    ConnectionStatus.DISCONNECTED: "Disconnected",
    ConnectionStatus.CONNECTING: "Connecting...",
    ConnectionStatus.AUTHENTICATING: "Authenticating...",
    ConnectionStatus.AUTHENTICATED: "Connected",
    ConnectionStatus.RECONNECTING: "Reconnecting...",
    ConnectionStatus.FAILED: "Failed",
}


class AuthMethod(str, Enum):
    """Which credential the last auth frame presented."""
    RECONNECTION_TOKEN = "token"
    PAIRING_ID = "pairing_id"


@dataclass(frozen=True)
class Credentials:
    """
    Persisted credentials.

    ``reconnection_token`` and ``client_id`` are either both set or both
    empty; together they mark a previous successful pairing.
    """
    server_url: str = ""
    auth_id: str = ""
    reconnection_token: str = ""
    client_id: str = ""

    def has_token(self) -> bool:
        return bool(self.reconnection_token) and bool(self.client_id)

    def has_stored_credentials(self) -> bool:
        """True when an automatic connect at start-up makes sense."""
        return bool(self.server_url) and (bool(self.reconnection_token) or bool(self.auth_id))

    def with_token(self, reconnection_token: str, client_id: str) -> "Credentials":
        return replace(self, reconnection_token=reconnection_token, client_id=client_id)

    def without_token(self) -> "Credentials":
        return replace(self, reconnection_token="", client_id="")


# Close codes (matching WebSocket standard + custom)
class CloseCode:
    NORMAL = 1000
    GOING_AWAY = 1001
    PROTOCOL_ERROR = 1002
    POLICY_VIOLATION = 1008
    INTERNAL_ERROR = 1011
    TRY_AGAIN_LATER = 1013

    # Custom codes (4000-4999)
    AUTHENTICATION_FAILED = 4003
    AUTHENTICATION_TIMEOUT = 4008


# =============================================================================
# Transport events
# =============================================================================

@dataclass
class FrameReceived:
    """One frame from the socket. Exactly one of ``text``/``data`` is set."""
    generation: int
    text: Optional[str] = None
    data: Optional[bytes] = None
    received_at: float = field(default_factory=time.time)


@dataclass
class TransportFailed:
    """Terminal receive failure or remote close."""
    generation: int
    error: BaseException


# =============================================================================
# Session inputs
# =============================================================================

@dataclass
class ConnectRequested:
    pass


@dataclass
class DisconnectRequested:
    reason: str = "user request"


@dataclass
class PairRequested:
    raw_payload: str


@dataclass
class CredentialsUpdated:
    server_url: str
    auth_id: str


@dataclass
class EnteredBackground:
    pass


@dataclass
class EnteredForeground:
    pass


@dataclass
class KeepAliveFailed:
    """A liveness probe failed. ``reconnect`` is set for the foreground probe."""
    generation: int
    error: BaseException
    reconnect: bool = False


@dataclass
class SendRequested:
    """Outbound command. ``require_repository`` gates prompts."""
    message: Any
    require_repository: bool = False
    description: str = ""
