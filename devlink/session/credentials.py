"""
Credential Store: durable storage for the four session credentials.
"""

import logging
from typing import Optional

from devlink.database import SettingsRepository, get_repository, init_database
from .types import Credentials


logger = logging.getLogger("devlink.database")

# Storage keys
SERVER_URL_KEY = "serverUrl"
AUTH_ID_KEY = "authId"
RECONNECTION_TOKEN_KEY = "reconnectionToken"
CLIENT_ID_KEY = "clientId"

CREDENTIAL_KEYS = (SERVER_URL_KEY, AUTH_ID_KEY, RECONNECTION_TOKEN_KEY, CLIENT_ID_KEY)


class CredentialStore:
    """
    Loads and saves ``Credentials`` through the settings repository.

    Every save writes all four keys, so a reload after a process restart
    reproduces exactly the last saved values.
    """

    def __init__(
        self,
        database_path: Optional[str] = None,
        repository: Optional[SettingsRepository] = None
    ):
        self._database_path = database_path
        self._repository = repository or get_repository()

    async def open(self) -> None:
        """Make sure this store's database is the open one. Safe to call repeatedly."""
        await init_database(self._database_path)

    async def load(self) -> Credentials:
        await self.open()
        values = await self._repository.get_many(CREDENTIAL_KEYS)
        credentials = Credentials(
            server_url=values.get(SERVER_URL_KEY, ""),
            auth_id=values.get(AUTH_ID_KEY, ""),
            reconnection_token=values.get(RECONNECTION_TOKEN_KEY, ""),
            client_id=values.get(CLIENT_ID_KEY, ""),
        )
        if credentials.server_url:
            logger.info(f"Found stored server URL: {credentials.server_url}")
        if credentials.reconnection_token:
            logger.info("Found stored reconnection token")
        return credentials

    async def save(self, credentials: Credentials) -> None:
        await self.open()
        await self._repository.set_many({
            SERVER_URL_KEY: credentials.server_url,
            AUTH_ID_KEY: credentials.auth_id,
            RECONNECTION_TOKEN_KEY: credentials.reconnection_token,
            CLIENT_ID_KEY: credentials.client_id,
        })
        logger.debug("Credentials saved")

    async def clear(self) -> Credentials:
        """Wipe every credential, including the server url."""
        cleared = Credentials()
        await self.save(cleared)
        logger.info("Stored credentials cleared")
        return cleared
