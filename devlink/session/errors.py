"""
Failure taxonomy for the client session.

None of these are process-fatal. The session records them in
``SessionState.failure`` and a fresh ``connect()`` recovers from any of them.
"""


class SessionError(Exception):
    """Base class for session failures."""

    #: Short status reason shown as "Failed: <reason>"
    reason: str = "session error"

    #: Whether the session retries on its own at the next foreground transition
    retried_automatically: bool = False

    def __init__(self, reason: str | None = None):
        if reason is not None:
            self.reason = reason
        super().__init__(self.reason)


class InvalidConfiguration(SessionError):
    """Empty or unparsable server URL."""
    reason = "invalid url"


class NoCredentials(SessionError):
    """Neither a reconnection token nor a pairing id is available."""
    reason = "no credentials"


class AuthRejected(SessionError):
    """The server rejected the pairing id."""
    reason = "invalid credentials"


class SessionExpired(SessionError):
    """The reconnection token was rejected: the server's session table was reset."""
    reason = "session expired"


class TransportUnreachable(SessionError):
    """Network failure while a reconnection token was in play. Credentials are kept."""
    reason = "cannot reach server"
    retried_automatically = True


class TransportError(SessionError):
    """Network-level failure of the WebSocket itself."""
    reason = "transport error"
