"""
Pairing and reconnection tokens for the companion server.

The pairing id is generated at start-up and shown in the pairing payload.
A successful pairing issues a client id plus a reconnection token; redeeming
a token rotates it and keeps the client id. Tokens live in memory only, so
restarting the server invalidates every one of them.
"""

import json
import logging
import secrets
import uuid
from dataclasses import dataclass
from typing import Optional

from devlink.protocol import AuthResult, AuthStatus, encode


logger = logging.getLogger("devlink.companion")


@dataclass(frozen=True)
class AuthOutcome:
    """Result of checking a client's first frame."""
    status: AuthStatus
    client_id: Optional[str] = None
    reconnection_token: Optional[str] = None
    method: str = "pairing_id"

    @property
    def succeeded(self) -> bool:
        return self.status == AuthStatus.SUCCESS

    def reply(self, legacy: bool = False) -> str:
        """Frame sent back to the client."""
        if legacy:
            return self.status.value
        return encode(AuthResult(
            status=self.status,
            reconnection_token=self.reconnection_token,
            client_id=self.client_id,
        ))


class AuthManager:
    """Holds the pairing id and the token table (token -> client id)."""

    def __init__(self, pairing_id: Optional[str] = None):
        self.pairing_id = pairing_id or str(uuid.uuid4())
        self._tokens: dict[str, str] = {}

    @property
    def token_count(self) -> int:
        return len(self._tokens)

    def authenticate(self, frame: str) -> AuthOutcome:
        """
        Check the first client frame.

        Accepts the raw pairing id or ``{"token": "<reconnection token>"}``.
        """
        text = frame.strip()
        token = self._extract_token(text)

        if token is not None:
            client_id = self._tokens.pop(token, None)
            if client_id is None:
                logger.warning("Unknown reconnection token")
                return AuthOutcome(status=AuthStatus.FAILED, method="token")
            new_token = self._issue(client_id)
            logger.info(f"Client {client_id[:8]} reconnected with token")
            return AuthOutcome(
                status=AuthStatus.SUCCESS,
                client_id=client_id,
                reconnection_token=new_token,
                method="token",
            )

        if secrets.compare_digest(text.encode("utf-8"), self.pairing_id.encode("utf-8")):
            client_id = str(uuid.uuid4())
            new_token = self._issue(client_id)
            logger.info(f"Client {client_id[:8]} paired")
            return AuthOutcome(
                status=AuthStatus.SUCCESS,
                client_id=client_id,
                reconnection_token=new_token,
            )

        logger.warning("Invalid pairing id")
        return AuthOutcome(status=AuthStatus.FAILED)

    def validate_token(self, token: str) -> Optional[str]:
        """Client id for ``token``, or None."""
        return self._tokens.get(token)

    def revoke_all(self) -> None:
        self._tokens.clear()

    def pairing_payload(self, url: str) -> str:
        """JSON encoded in the pairing QR code."""
        return json.dumps({"uuid": self.pairing_id, "url": url})

    def _issue(self, client_id: str) -> str:
        token = secrets.token_urlsafe(32)
        self._tokens[token] = client_id
        return token

    @staticmethod
    def _extract_token(text: str) -> Optional[str]:
        if not text.startswith("{"):
            return None
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            return None
        token = data.get("token") if isinstance(data, dict) else None
        return token if isinstance(token, str) else None
