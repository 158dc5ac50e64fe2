"""
Transport: owns exactly one WebSocket connection at a time.

Frames are delivered to the owner one at a time: the reader waits until the
owner has finished with a frame before it receives the next one, so frames
are processed strictly in arrival order. A terminal failure is delivered
once, as ``TransportFailed``. Every event carries the generation of the
socket that produced it so the owner can drop events from a socket it has
already closed.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional, Protocol

from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI
from websockets.uri import parse_uri

from devlink.config import ClientConfig
from devlink.utils import truncate_output
from .errors import InvalidConfiguration, TransportError
from .types import CloseCode, FrameReceived, TransportFailed


logger = logging.getLogger("devlink.transport")

EventSink = Callable[[Any], Awaitable[Any]]

# Delay between opening attempts while waiting for connectivity
CONNECTIVITY_RETRY_DELAY = 0.5


class BackgroundHost(Protocol):
    """Host hook for extra execution time while the app is backgrounded."""

    def begin_background_task(self) -> Any: ...

    def end_background_task(self, token: Any) -> None: ...


class NullBackgroundHost:
    """Host that grants nothing. Used when the platform has no such concept."""

    def begin_background_task(self) -> Any:
        return None

    def end_background_task(self, token: Any) -> None:
        return None


def validate_url(url: str) -> str:
    """
    Check that ``url`` is a usable ws:// or wss:// URL.

    Raises:
        InvalidConfiguration: if the URL is empty or cannot be parsed
    """
    if not url or not url.strip():
        raise InvalidConfiguration("no server url")
    try:
        parse_uri(url.strip())
    except InvalidURI as e:
        raise InvalidConfiguration("invalid url") from e
    return url.strip()


def _waits_for_connectivity(error: BaseException) -> bool:
    # DNS and routing hiccups are worth waiting out; a refused or reset
    # connection means the server itself is not there.
    return isinstance(error, OSError) and not isinstance(error, ConnectionError)


class WebSocketTransport:
    """
    Single-connection WebSocket transport on top of ``websockets``.

    Usage:
        transport = WebSocketTransport(config)
        generation = await transport.open(url, on_event)
        await transport.send("hello")
        await transport.close()
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        host: Optional[BackgroundHost] = None,
        connect_func: Optional[Callable[..., Any]] = None
    ):
        self.config = config or ClientConfig()
        self._host = host or NullBackgroundHost()
        self._connect = connect_func or ws_connect

        self._ws: Any = None
        self._reader: Optional[asyncio.Task] = None
        self._generation = 0
        self._background_token: Any = None
        self._in_background = False

    # =========================================================================
    # Public API
    # =========================================================================

    @property
    def generation(self) -> int:
        """Generation of the current (or last) socket."""
        return self._generation

    @property
    def is_open(self) -> bool:
        return self._ws is not None

    async def open(self, url: str, on_event: EventSink) -> int:
        """
        Open a connection and start delivering its frames to ``on_event``.

        Any previous connection is closed first.

        Returns:
            The generation number of the new socket

        Raises:
            InvalidConfiguration: empty or unparsable URL (nothing is opened)
            TransportError: the socket could not be opened
        """
        url = validate_url(url)
        await self.close()

        self._generation += 1
        generation = self._generation

        ws = await self._open_with_connectivity_wait(url)
        self._ws = ws
        self._reader = asyncio.create_task(
            self._receive_loop(ws, generation, on_event),
            name=f"devlink-reader-{generation}",
        )
        logger.info(f"Connected to {url} [gen={generation}]")
        return generation

    async def send(self, text: str) -> None:
        """
        Write one text frame.

        Raises:
            TransportError: no open socket, or the write failed
        """
        ws = self._ws
        if ws is None:
            raise TransportError("not connected")
        try:
            await ws.send(text)
        except ConnectionClosed as e:
            raise TransportError(f"send failed: {e}") from e
        logger.debug(f"Sent: {truncate_output(text, 120)}")

    async def ping(self, timeout: Optional[float] = None) -> float:
        """
        Send one liveness probe and wait for the pong.

        Returns:
            Round-trip latency in milliseconds

        Raises:
            TransportError: no socket, socket closed, or no pong in time
        """
        ws = self._ws
        if ws is None:
            raise TransportError("not connected")

        timeout = self.config.probe_timeout if timeout is None else timeout
        started = time.monotonic()
        try:
            pong_waiter = await ws.ping()
            await asyncio.wait_for(pong_waiter, timeout)
        except ConnectionClosed as e:
            raise TransportError(f"probe failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise TransportError(f"no pong within {timeout}s") from e

        latency_ms = (time.monotonic() - started) * 1000
        logger.debug(f"Pong received in {latency_ms:.1f}ms")
        return latency_ms

    async def close(self) -> None:
        """
        Close the socket with "going away" and stop the reader.

        Idempotent; safe to call when nothing is open.
        """
        reader, self._reader = self._reader, None
        ws, self._ws = self._ws, None

        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            await asyncio.gather(reader, return_exceptions=True)

        if ws is not None:
            try:
                await ws.close(code=CloseCode.GOING_AWAY, reason="going away")
            except Exception as e:
                logger.debug(f"Error closing socket: {e}")
            logger.info(f"Disconnected [gen={self._generation}]")

    def begin_background(self) -> None:
        """Ask the host for extra execution time (best-effort)."""
        if self._in_background:
            return
        self._in_background = True
        try:
            self._background_token = self._host.begin_background_task()
        except Exception as e:
            logger.warning(f"Background task request failed: {e}")
            self._background_token = None

    def end_background(self) -> None:
        """Release any extra execution time granted by the host."""
        if not self._in_background:
            return
        self._in_background = False
        token, self._background_token = self._background_token, None
        if token is None:
            return
        try:
            self._host.end_background_task(token)
        except Exception as e:
            logger.warning(f"Background task release failed: {e}")

    # =========================================================================
    # Private Implementation
    # =========================================================================

    async def _open_with_connectivity_wait(self, url: str) -> Any:
        deadline = time.monotonic() + self.config.connectivity_wait
        while True:
            try:
                return await self._connect(
                    url,
                    ping_interval=None,  # Liveness is probed explicitly
                    open_timeout=self.config.open_timeout,
                    close_timeout=self.config.close_timeout,
                )
            except InvalidHandshake as e:
                raise TransportError(f"handshake rejected: {e}") from e
            except asyncio.TimeoutError as e:
                raise TransportError("timed out opening connection") from e
            except OSError as e:
                if not _waits_for_connectivity(e) or time.monotonic() >= deadline:
                    raise TransportError(str(e) or e.__class__.__name__) from e
                logger.debug(f"Waiting for connectivity: {e}")
                await asyncio.sleep(CONNECTIVITY_RETRY_DELAY)

    async def _receive_loop(self, ws: Any, generation: int, on_event: EventSink) -> None:
        """Deliver frames one at a time, then report how the socket ended."""
        try:
            async for message in ws:
                if isinstance(message, str):
                    event = FrameReceived(generation=generation, text=message)
                else:
                    event = FrameReceived(generation=generation, data=bytes(message))
                await on_event(event)
            error = TransportError(f"connection closed by server ({ws.close_code})")
        except asyncio.CancelledError:
            raise
        except ConnectionClosed as e:
            error = TransportError(f"connection lost: {e}")
        except Exception as e:
            logger.error(f"Receive loop error [gen={generation}]: {e}", exc_info=True)
            error = TransportError(str(e))

        logger.info(f"Receive loop ended [gen={generation}]: {error}")
        await on_event(TransportFailed(generation=generation, error=error))
