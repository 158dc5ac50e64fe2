"""
Observable session state.

One owned object holding everything the UI observes: connection status,
the last failure, credentials, and the router-fed observers (repositories,
commands, chat, event log). Only the connection manager writes the status
and credentials; subscribers are notified whenever either changes.

Cross-component signals go through a small set of named domain events
instead of ad-hoc broadcasts.
"""

import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from devlink.managers import ChatLog, CommandCatalog, EventLog, RepositoryCatalog
from .errors import SessionError
from .types import ConnectionStatus, Credentials


logger = logging.getLogger("devlink.session")

StateCallback = Callable[["SessionState"], Awaitable[None]]
EventCallback = Callable[..., Awaitable[None]]


class SessionEvent(str, Enum):
    """Named domain events."""
    STATUS_CHANGED = "status_changed"
    AUTHENTICATED = "authenticated"
    SERVER_RESTART_DETECTED = "server_restart_detected"
    REPOSITORY_LIST_UPDATED = "repository_list_updated"
    COMMANDS_UPDATED = "commands_updated"


class SessionState:
    """
    Single source of truth for the client session.

    Callbacks run on the session's event task. They may read the state and
    call ``ConnectionManager.submit``, but must not await session operations.
    """

    def __init__(self, event_log_limit: int = 500):
        self._status = ConnectionStatus.DISCONNECTED
        self._failure: Optional[SessionError] = None
        self._credentials = Credentials()

        self.repositories = RepositoryCatalog()
        self.commands = CommandCatalog()
        self.chat = ChatLog()
        self.events = EventLog(max_entries=event_log_limit)

        self._subscribers: list[StateCallback] = []
        self._handlers: dict[SessionEvent, list[EventCallback]] = {
            event: [] for event in SessionEvent
        }

    # =========================================================================
    # Read API
    # =========================================================================

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def failure(self) -> Optional[SessionError]:
        """The failure behind ``FAILED``; None in every other status."""
        return self._failure

    @property
    def failure_reason(self) -> Optional[str]:
        return self._failure.reason if self._failure else None

    @property
    def credentials(self) -> Credentials:
        return self._credentials

    @property
    def is_authenticated(self) -> bool:
        return self._status == ConnectionStatus.AUTHENTICATED

    @property
    def status_text(self) -> str:
        """Human-readable status, e.g. "Connected" or "Failed: no credentials"."""
        if self._status == ConnectionStatus.FAILED and self._failure is not None:
            return f"Failed: {self._failure.reason}"
        return self._status.label

    # =========================================================================
    # Observation
    # =========================================================================

    def subscribe(self, callback: StateCallback) -> Callable[[], None]:
        """
        Register a callback invoked with this state after every change.

        Returns:
            A function that removes the subscription
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def on(self, event: SessionEvent, callback: EventCallback) -> None:
        """Register a handler for a domain event."""
        self._handlers[SessionEvent(event)].append(callback)

    async def emit(self, event: SessionEvent, *args: Any) -> None:
        """Run every handler for ``event``; handler errors are logged."""
        for callback in list(self._handlers[SessionEvent(event)]):
            try:
                await callback(*args)
            except Exception as e:
                logger.error(f"Error in {event.value} handler: {e}", exc_info=True)

    # =========================================================================
    # Write API (connection manager only)
    # =========================================================================

    async def set_status(
        self,
        status: ConnectionStatus,
        failure: Optional[SessionError] = None
    ) -> bool:
        """
        Move to ``status``. ``failure`` is kept only for ``FAILED``.

        Returns:
            True if anything changed (and subscribers were notified)
        """
        failure = failure if status == ConnectionStatus.FAILED else None
        if status == self._status and failure is self._failure:
            return False

        previous = self._status
        self._status = status
        self._failure = failure
        logger.debug(f"Status: {previous.value} -> {self.status_text}")

        await self.emit(SessionEvent.STATUS_CHANGED, status, failure)
        await self._publish()
        return True

    async def set_credentials(self, credentials: Credentials) -> bool:
        if credentials == self._credentials:
            return False
        self._credentials = credentials
        await self._publish()
        return True

    async def _publish(self) -> None:
        for callback in list(self._subscribers):
            try:
                await callback(self)
            except Exception as e:
                logger.error(f"Error in state subscriber: {e}", exc_info=True)
