"""
Auth Negotiator.

Decides which credential to present, builds the first outbound frame, and
classifies inbound auth responses. It only reads credentials and returns
decisions; the connection manager applies them.
"""

import json
import logging
from dataclasses import dataclass
from typing import Optional

from devlink.protocol import AUTH_LITERALS, AuthStatus, TokenAuth, encode
from .types import AuthMethod, Credentials


logger = logging.getLogger("devlink.auth")


@dataclass(frozen=True)
class AuthFrame:
    """The first client frame and the credential kind it carries."""
    text: str
    method: AuthMethod


@dataclass(frozen=True)
class AuthResponse:
    """A classified auth reply from the server."""
    status: AuthStatus
    reconnection_token: Optional[str] = None
    client_id: Optional[str] = None
    legacy: bool = False  # Bare literal instead of a JSON object

    @property
    def succeeded(self) -> bool:
        return self.status == AuthStatus.SUCCESS


class AuthNegotiator:
    """Stateless helper over a ``Credentials`` snapshot."""

    @staticmethod
    def should_use_token(credentials: Credentials) -> bool:
        return credentials.has_token()

    def build_auth_frame(self, credentials: Credentials) -> Optional[AuthFrame]:
        """
        Build the first frame to send after the socket opens.

        Returns None when there is nothing to present; the caller must fail
        without sending anything.
        """
        if self.should_use_token(credentials):
            return AuthFrame(
                text=encode(TokenAuth(token=credentials.reconnection_token)),
                method=AuthMethod.RECONNECTION_TOKEN,
            )
        if credentials.auth_id:
            return AuthFrame(text=credentials.auth_id, method=AuthMethod.PAIRING_ID)
        return None

    def classify_inbound_frame(self, text: str) -> Optional[AuthResponse]:
        """
        Recognize an auth reply.

        Accepts ``{"status": ...}`` objects and the bare legacy literals.
        Returns None for anything else, including objects whose ``status``
        is not one of the three known values.
        """
        stripped = text.strip()
        if stripped in AUTH_LITERALS:
            return AuthResponse(status=AuthStatus(stripped), legacy=True)

        try:
            data = json.loads(stripped)
        except json.JSONDecodeError:
            return None

        if not isinstance(data, dict) or "status" not in data:
            return None

        status = data.get("status")
        if status not in AUTH_LITERALS:
            logger.warning(f"Unknown auth status: {status!r}")
            return None

        token = data.get("reconnection_token")
        client_id = data.get("client_id")
        return AuthResponse(
            status=AuthStatus(status),
            reconnection_token=token if isinstance(token, str) and token else None,
            client_id=client_id if isinstance(client_id, str) and client_id else None,
        )

    def refreshed_credentials(
        self,
        credentials: Credentials,
        response: AuthResponse
    ) -> Credentials:
        """
        Credentials to persist after ``AUTH_SUCCESS``.

        The token and client id are replaced only when the reply carries
        both, so they never get out of step.
        """
        if response.reconnection_token and response.client_id:
            return credentials.with_token(response.reconnection_token, response.client_id)
        if response.reconnection_token or response.client_id:
            logger.warning("Auth reply carried only one of token/client id; keeping previous pair")
        return credentials
