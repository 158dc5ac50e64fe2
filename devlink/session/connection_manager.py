"""
Session State Machine for the client's single server connection.

Every input (public calls, transport frames and failures, keep-alive
failures, app lifecycle transitions) is turned into an event and put on one
queue consumed by a single task, so state is only ever mutated from that
task and frames are processed strictly in arrival order.

Failure policy hinges on whether a reconnection token is in play: a rejected
token means the server restarted and the pairing is gone; a rejected pairing
id is just a bad id and the stored details are kept.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Optional

from devlink.config import ClientConfig
from devlink.managers import LogCategory, LogLevel
from devlink.protocol import (
    ListReposCommand,
    PromptCommand,
    Repository,
    SelectRepoCommand,
    encode,
    parse_pairing_payload,
)
from .auth import AuthNegotiator, AuthResponse
from .credentials import CredentialStore
from .errors import (
    AuthRejected,
    InvalidConfiguration,
    NoCredentials,
    SessionError,
    SessionExpired,
    TransportError,
    TransportUnreachable,
)
from .keepalive import KeepAlive
from .router import MessageRouter, RouterCallbacks
from .state import SessionEvent, SessionState
from .transport import BackgroundHost, WebSocketTransport, validate_url
from .types import (
    AuthMethod,
    ConnectionStatus,
    ConnectRequested,
    Credentials,
    CredentialsUpdated,
    DisconnectRequested,
    EnteredBackground,
    EnteredForeground,
    FrameReceived,
    KeepAliveFailed,
    PairRequested,
    SendRequested,
    TransportFailed,
)


logger = logging.getLogger("devlink.session")

_LOG_LEVELS = {
    LogLevel.INFO: logging.INFO,
    LogLevel.SUCCESS: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


class ConnectionManager:
    """
    Owns the transport, the credentials, and the session status.

    Usage:
        manager = ConnectionManager(ClientConfig.from_env())
        await manager.start()            # loads credentials, auto-connects
        await manager.pair(qr_payload)   # stores pairing details and connects
        await manager.request_repositories()
        await manager.stop()
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        store: Optional[CredentialStore] = None,
        transport: Optional[WebSocketTransport] = None,
        negotiator: Optional[AuthNegotiator] = None,
        host: Optional[BackgroundHost] = None
    ):
        """
        Initialize the connection manager.

        Args:
            config: Client configuration
            store: Credential store (defaults to the configured database)
            transport: Transport to drive (tests inject a scripted one)
            negotiator: Auth negotiator
            host: Host hook for background execution time
        """
        self.config = config or ClientConfig()
        self._store = store or CredentialStore(self.config.database_path)
        self._transport = transport or WebSocketTransport(self.config, host=host)
        self._negotiator = negotiator or AuthNegotiator()

        self.state = SessionState(event_log_limit=self.config.event_log_limit)

        router_callbacks = RouterCallbacks(
            on_repository_list=self._on_repository_list,
            on_commands=self._on_commands,
        )
        self._router = MessageRouter(
            repositories=self.state.repositories,
            commands=self.state.commands,
            chat=self.state.chat,
            events=self.state.events,
            callbacks=router_callbacks,
        )

        self.keepalive = KeepAlive(
            interval=self.config.keepalive_interval,
            probe=self._probe,
            on_failure=self._on_keepalive_failure,
        )

        self._queue: asyncio.Queue = asyncio.Queue()
        self._consumer: Optional[asyncio.Task] = None

        # Generation of the live socket; 0 when none is open
        self._generation = 0
        self._keepalive_generation = 0
        self._auth_method: Optional[AuthMethod] = None
        self._in_background = False
        # disconnect() calls waiting behind the event being handled
        self._disconnects_pending = 0

        self._handlers = {
            ConnectRequested: self._handle_connect,
            DisconnectRequested: self._handle_disconnect,
            PairRequested: self._handle_pair,
            CredentialsUpdated: self._handle_credentials_updated,
            EnteredBackground: self._handle_background,
            EnteredForeground: self._handle_foreground,
            FrameReceived: self._handle_frame,
            TransportFailed: self._handle_transport_failed,
            KeepAliveFailed: self._handle_keepalive_failed,
            SendRequested: self._handle_send,
        }

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def status(self) -> ConnectionStatus:
        return self.state.status

    @property
    def credentials(self) -> Credentials:
        return self.state.credentials

    @property
    def is_authenticated(self) -> bool:
        return self.state.is_authenticated

    @property
    def is_running(self) -> bool:
        return self._consumer is not None

    @property
    def in_background(self) -> bool:
        return self._in_background

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self, auto_connect: bool = True) -> None:
        """
        Load stored credentials and start processing events.

        Connects right away when stored credentials exist and
        ``auto_connect`` is set.
        """
        if self._consumer is not None:
            return

        credentials = await self._store.load()
        await self.state.set_credentials(credentials)

        self._consumer = asyncio.create_task(self._run(), name="devlink-session")
        logger.info("Session started")

        if auto_connect and credentials.has_stored_credentials():
            self._log(LogLevel.INFO, "Found stored credentials, connecting", LogCategory.CONNECTION)
            await self.connect()

    async def stop(self) -> None:
        """Disconnect and stop the event consumer."""
        if self._consumer is None:
            return

        await self.disconnect(reason="shutdown")

        consumer, self._consumer = self._consumer, None
        consumer.cancel()
        await asyncio.gather(consumer, return_exceptions=True)

        while not self._queue.empty():
            _, future = self._queue.get_nowait()
            if future is not None and not future.done():
                future.set_exception(RuntimeError("session stopped"))

        logger.info("Session stopped")

    # =========================================================================
    # Public API
    # =========================================================================

    async def connect(self) -> None:
        """
        Connect with the stored credentials.

        Never raises for session failures; the outcome is in ``state``.
        """
        await self._request(ConnectRequested())

    async def disconnect(self, reason: str = "user request") -> None:
        """
        Close the connection. Idempotent.

        A connection attempt still opening when this is called is abandoned
        before its auth frame is sent.
        """
        self._disconnects_pending += 1
        try:
            await self._request(DisconnectRequested(reason=reason))
        finally:
            self._disconnects_pending -= 1

    async def app_will_terminate(self) -> None:
        await self.disconnect(reason="app terminating")

    async def pair(self, payload: str, connect: bool = True) -> bool:
        """
        Store the details from a scanned pairing payload.

        Accepts ``{"uuid": ..., "url": ...}`` or a bare pairing id. Any
        previous reconnection token is dropped.

        Returns:
            False if the payload carried no pairing id
        """
        stored = await self._request(PairRequested(raw_payload=payload))
        if stored and connect:
            await self.connect()
        return stored

    async def update_credentials(self, server_url: str, auth_id: str, connect: bool = False) -> bool:
        """Store manually entered server url and pairing id."""
        stored = await self._request(CredentialsUpdated(server_url=server_url, auth_id=auth_id))
        if stored and connect:
            await self.connect()
        return stored

    async def enter_background(self) -> None:
        await self._request(EnteredBackground())

    async def enter_foreground(self) -> None:
        await self._request(EnteredForeground())

    async def request_repositories(self) -> bool:
        return await self._request(SendRequested(ListReposCommand(), description="list repositories"))

    async def select_repository(self, repository: Repository | str) -> bool:
        path = repository.path if isinstance(repository, Repository) else repository
        return await self._request(SendRequested(SelectRepoCommand(path=path), description="select repository"))

    async def send_prompt(self, text: str) -> bool:
        """
        Send a prompt (free text or a slash command) for the selected repository.

        Returns:
            True if the frame was written
        """
        return await self._request(
            SendRequested(PromptCommand(text=text), require_repository=True, description="prompt")
        )

    def submit(self, event: Any) -> None:
        """Queue an event without waiting for it to be applied."""
        if self._consumer is None:
            logger.warning(f"Session not running, dropping {type(event).__name__}")
            return
        self._queue.put_nowait((event, None))

    async def post(self, event: Any) -> Any:
        """Queue an event and wait until it has been applied (transport sink)."""
        return await self._request(event)

    # =========================================================================
    # Event queue
    # =========================================================================

    async def _request(self, event: Any) -> Any:
        if self._consumer is None:
            raise RuntimeError("ConnectionManager is not started")
        if asyncio.current_task() is self._consumer:
            raise RuntimeError("Session callbacks must use submit(), not await session operations")

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        await self._queue.put((event, future))
        return await future

    async def _run(self) -> None:
        """Single consumer: apply events one at a time, in order."""
        while True:
            event, future = await self._queue.get()
            try:
                result = await self._dispatch(event)
            except Exception as e:
                logger.error(f"Error handling {type(event).__name__}: {e}", exc_info=True)
                if future is not None and not future.done():
                    future.set_exception(e)
            else:
                if future is not None and not future.done():
                    future.set_result(result)

    async def _dispatch(self, event: Any) -> Any:
        handler = self._handlers.get(type(event))
        if handler is None:
            logger.warning(f"No handler for event {type(event).__name__}")
            return None
        return await handler(event)

    # =========================================================================
    # Connection handling
    # =========================================================================

    async def _handle_connect(self, event: ConnectRequested) -> None:
        status = self.state.status
        if status == ConnectionStatus.AUTHENTICATED or status.in_flight:
            logger.info(f"Connect ignored: already {status.value}")
            return
        await self._open_session()

    async def _open_session(self) -> None:
        credentials = self.state.credentials

        try:
            url = validate_url(credentials.server_url)
        except InvalidConfiguration as e:
            await self._fail(e)
            return

        frame = self._negotiator.build_auth_frame(credentials)
        self._auth_method = frame.method if frame else None

        if self._auth_method == AuthMethod.RECONNECTION_TOKEN:
            await self.state.set_status(ConnectionStatus.RECONNECTING)
            self._log(LogLevel.INFO, f"Reconnecting with token for client: {credentials.client_id}", LogCategory.CONNECTION)
        else:
            await self.state.set_status(ConnectionStatus.CONNECTING)
            self._log(LogLevel.INFO, "Connecting with initial authentication", LogCategory.CONNECTION)

        try:
            self._generation = await self._transport.open(url, self.post)
        except InvalidConfiguration as e:
            await self._fail(e)
            return
        except TransportError as e:
            await self._handle_transport_failure(e)
            return

        if self._disconnects_pending:
            logger.info("Disconnect requested while opening, abandoning connection attempt")
            await self._teardown()
            return

        if frame is None:
            await self._teardown()
            await self._fail(NoCredentials())
            return

        await self.state.set_status(ConnectionStatus.AUTHENTICATING)
        try:
            await self._transport.send(frame.text)
        except TransportError as e:
            await self._handle_transport_failure(e)
            return

        if frame.method == AuthMethod.RECONNECTION_TOKEN:
            self._log(LogLevel.INFO, "Sent reconnection token", LogCategory.AUTHENTICATION)
        else:
            self._log(LogLevel.INFO, "Sent pairing id", LogCategory.AUTHENTICATION)

    async def _handle_disconnect(self, event: DisconnectRequested) -> None:
        await self._teardown()
        if await self.state.set_status(ConnectionStatus.DISCONNECTED):
            self._log(LogLevel.INFO, f"Disconnected ({event.reason})", LogCategory.CONNECTION)

    async def _teardown(self) -> None:
        """Stop the keep-alive, close the socket, drop the selection."""
        self.keepalive.stop()
        self._generation = 0
        await self._transport.close()
        self.state.repositories.clear_selection()
        self.state.commands.reset_custom()

    async def _fail(self, error: SessionError) -> None:
        await self.state.set_status(ConnectionStatus.FAILED, failure=error)
        self._log(LogLevel.ERROR, f"Connection failed: {error.reason}", LogCategory.CONNECTION)

    # =========================================================================
    # Inbound frames and authentication
    # =========================================================================

    async def _handle_frame(self, event: FrameReceived) -> None:
        if event.generation != self._generation:
            logger.debug(f"Dropping frame from closed socket [gen={event.generation}]")
            return

        if event.text is None:
            self._router.handle_binary(event.data or b"")
            return

        response = self._negotiator.classify_inbound_frame(event.text)
        if response is not None:
            if self.state.status.in_flight:
                await self._handle_auth_response(response)
            else:
                logger.info(f"Ignoring {response.status.value} while {self.state.status.value}")
            return

        await self._router.handle_text(event.text)

    async def _handle_auth_response(self, response: AuthResponse) -> None:
        if response.succeeded:
            credentials = self._negotiator.refreshed_credentials(self.state.credentials, response)
            await self._store.save(credentials)
            await self.state.set_credentials(credentials)
            await self.state.set_status(ConnectionStatus.AUTHENTICATED)
            self._log(LogLevel.SUCCESS, "Authentication successful", LogCategory.AUTHENTICATION)

            if self._in_background:
                self._start_keepalive()

            await self.state.emit(SessionEvent.AUTHENTICATED, credentials)

            if self.config.auto_list_repositories:
                await self._write(ListReposCommand())
            return

        token_used = self._auth_method == AuthMethod.RECONNECTION_TOKEN
        await self._teardown()

        if token_used:
            # The server no longer knows the token: its session table was reset
            cleared = await self._store.clear()
            await self.state.set_credentials(cleared)
            self.state.repositories.clear()
            self.state.commands.clear()
            await self._fail(SessionExpired())
            self._log(LogLevel.WARNING, "Server was restarted. Please scan the QR code again.", LogCategory.CONNECTION)
            self.state.chat.add_server("⚠️ Previous session expired. Please reconnect with QR code.")
            await self.state.emit(SessionEvent.SERVER_RESTART_DETECTED)
        else:
            await self._fail(AuthRejected())

    async def _handle_transport_failed(self, event: TransportFailed) -> None:
        if event.generation != self._generation:
            logger.debug(f"Dropping failure from closed socket [gen={event.generation}]")
            return
        await self._handle_transport_failure(event.error)

    async def _handle_transport_failure(self, error: BaseException) -> None:
        await self._teardown()

        if self.state.credentials.has_token():
            # Server may just be down for a moment; keep the pairing
            self._log(
                LogLevel.WARNING,
                "Unable to reconnect. Server may be offline. Will retry when the app returns to the foreground.",
                LogCategory.CONNECTION,
            )
            await self._fail(TransportUnreachable())
            return

        if isinstance(error, SessionError):
            await self._fail(error)
        else:
            await self._fail(TransportError(str(error) or error.__class__.__name__))

    # =========================================================================
    # Keep-alive and app lifecycle
    # =========================================================================

    def _start_keepalive(self) -> None:
        self._keepalive_generation = self._generation
        self.keepalive.start()

    async def _probe(self) -> float:
        return await self._transport.ping()

    async def _on_keepalive_failure(self, error: BaseException) -> None:
        # Runs on the keep-alive task, never the consumer
        self.submit(KeepAliveFailed(generation=self._keepalive_generation, error=error))

    async def _handle_keepalive_failed(self, event: KeepAliveFailed) -> None:
        if event.generation != self._generation or not self.state.is_authenticated:
            logger.debug(f"Ignoring stale probe failure [gen={event.generation}]")
            return

        self._log(LogLevel.WARNING, f"Connection lost: {event.error}", LogCategory.CONNECTION)
        await self._teardown()
        await self.state.set_status(ConnectionStatus.DISCONNECTED)

        if event.reconnect and self.state.credentials.has_token():
            await self._open_session()

    async def _handle_background(self, event: EnteredBackground) -> None:
        if self._in_background:
            return
        self._in_background = True
        self._transport.begin_background()

        if self.state.is_authenticated:
            self._start_keepalive()
            self._log(LogLevel.INFO, "App entered background - keep-alive started", LogCategory.CONNECTION)

    async def _handle_foreground(self, event: EnteredForeground) -> None:
        self._in_background = False
        self._transport.end_background()
        self.keepalive.stop()

        status = self.state.status
        credentials = self.state.credentials

        if status in (ConnectionStatus.DISCONNECTED, ConnectionStatus.FAILED):
            if credentials.has_token() and credentials.server_url:
                self._log(LogLevel.INFO, "App returning to foreground - attempting reconnection", LogCategory.CONNECTION)
                await self._open_session()
        elif status == ConnectionStatus.AUTHENTICATED:
            self._log(LogLevel.INFO, "App returning to foreground - verifying connection", LogCategory.CONNECTION)
            try:
                await self._transport.ping()
            except TransportError as e:
                await self._handle_keepalive_failed(
                    KeepAliveFailed(generation=self._generation, error=e, reconnect=True)
                )
        else:
            self._log(LogLevel.INFO, "App returning to foreground - connection already in progress", LogCategory.CONNECTION)

    # =========================================================================
    # Credentials
    # =========================================================================

    async def _handle_pair(self, event: PairRequested) -> bool:
        payload = parse_pairing_payload(event.raw_payload)
        if not payload.uuid:
            self._log(LogLevel.ERROR, "Pairing payload has no pairing id", LogCategory.AUTHENTICATION)
            return False

        server_url = payload.url or self.state.credentials.server_url
        await self._replace_credentials(Credentials(server_url=server_url, auth_id=payload.uuid))
        self._log(LogLevel.INFO, "Pairing details stored", LogCategory.AUTHENTICATION)
        return True

    async def _handle_credentials_updated(self, event: CredentialsUpdated) -> bool:
        current = self.state.credentials
        server_url = event.server_url.strip()
        auth_id = event.auth_id.strip()

        if server_url == current.server_url and auth_id == current.auth_id:
            return True

        await self._replace_credentials(Credentials(server_url=server_url, auth_id=auth_id))
        self._log(LogLevel.INFO, "Connection details updated", LogCategory.GENERAL)
        return True

    async def _replace_credentials(self, credentials: Credentials) -> None:
        """New pairing details: close any session and forget the old token."""
        await self._teardown()
        await self.state.set_status(ConnectionStatus.DISCONNECTED)
        await self._store.save(credentials)
        await self.state.set_credentials(credentials)

    # =========================================================================
    # Outbound commands
    # =========================================================================

    async def _handle_send(self, event: SendRequested) -> bool:
        message = event.message

        if not self.state.is_authenticated:
            self._log(LogLevel.WARNING, f"Cannot send {message.type}: not connected", LogCategory.GENERAL)
            return False

        if event.require_repository and self.state.repositories.selected is None:
            self.state.chat.add_server("⚠️ Please select a repository first")
            return False

        if not await self._write(message):
            return False

        if isinstance(message, PromptCommand):
            self.state.chat.add_user(message.text)
        elif isinstance(message, SelectRepoCommand):
            repo = self.state.repositories.get(message.path) or Repository(
                name=Path(message.path).name or message.path,
                path=message.path,
            )
            if self.state.repositories.select(repo):
                self.state.commands.reset_custom()
        return True

    async def _write(self, message: Any) -> bool:
        try:
            await self._transport.send(encode(message))
        except TransportError as e:
            self._log(LogLevel.ERROR, f"Failed to send {message.type}: {e.reason}", LogCategory.GENERAL)
            return False
        return True

    # =========================================================================
    # Router callbacks
    # =========================================================================

    async def _on_repository_list(self, repositories: list[Repository]) -> None:
        await self.state.emit(SessionEvent.REPOSITORY_LIST_UPDATED, repositories)

    async def _on_commands(self, commands: list) -> None:
        await self.state.emit(SessionEvent.COMMANDS_UPDATED, commands)

    def _log(self, level: LogLevel, message: str, category: LogCategory) -> None:
        self.state.events.add(level, message, category)
        logger.log(_LOG_LEVELS[level], message)
