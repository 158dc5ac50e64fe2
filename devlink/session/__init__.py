"""
devlink client session.

A single WebSocket connection to the companion server with pairing-id or
reconnection-token authentication, keep-alive while backgrounded, and
recovery from server restarts.

Usage:
    from devlink.session import ConnectionManager

    manager = ConnectionManager(config.client)
    await manager.start()
    await manager.pair('{"uuid": "...", "url": "ws://host:9001/ws"}')
"""

# Type definitions
from .types import (
    AuthMethod,
    CloseCode,
    ConnectionStatus,
    Credentials,
)

# Errors
from .errors import (
    AuthRejected,
    InvalidConfiguration,
    NoCredentials,
    SessionError,
    SessionExpired,
    TransportError,
    TransportUnreachable,
)

# Components
from .auth import AuthFrame, AuthNegotiator, AuthResponse
from .credentials import CredentialStore
from .keepalive import KeepAlive
from .router import MessageRouter, RouterCallbacks
from .state import SessionEvent, SessionState
from .transport import BackgroundHost, NullBackgroundHost, WebSocketTransport, validate_url
from .connection_manager import ConnectionManager

__all__ = [
    # Types
    "AuthMethod",
    "CloseCode",
    "ConnectionStatus",
    "Credentials",
    # Errors
    "AuthRejected",
    "InvalidConfiguration",
    "NoCredentials",
    "SessionError",
    "SessionExpired",
    "TransportError",
    "TransportUnreachable",
    # Components
    "AuthFrame",
    "AuthNegotiator",
    "AuthResponse",
    "BackgroundHost",
    "ConnectionManager",
    "CredentialStore",
    "KeepAlive",
    "MessageRouter",
    "NullBackgroundHost",
    "RouterCallbacks",
    "SessionEvent",
    "SessionState",
    "WebSocketTransport",
    "validate_url",
]
