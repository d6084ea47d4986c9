"""Push message listener.

This module provides:
- PushListener: WebSocket client receiving commands and token refreshes

Architecture:
    Server ─push─► PushListener ─► CommandDispatcher ─► TaskQueue ─► TaskEngine
                        │
                        └─ token refresh ─► on_token callback (re-registration)

Frames are JSON objects:
- {"type": "token", "token": "..."}: the push token changed
- anything else: a command message ({"command": "...", ...params})

The listener runs its own asyncio loop in a daemon thread and reconnects
after reconnect_delay whenever the connection drops.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import ssl
import threading
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import websockets
from websockets.exceptions import WebSocketException

from deviceagent.agent.registration import redact_token

if TYPE_CHECKING:
    from websockets.asyncio.client import ClientConnection

    from deviceagent.agent.dispatcher import CommandDispatcher

logger = logging.getLogger(__name__)


class PushListener:
    """WebSocket listener delivering push messages to the agent.

    Usage:
        listener = PushListener(url, dispatcher, on_token=handle_token)
        listener.start()
        # ...
        listener.stop()
    """

    def __init__(
        self,
        url: str,
        dispatcher: CommandDispatcher,
        on_token: Callable[[str], Any],
        verify_ssl: bool = True,
        reconnect_delay: float = 5.0,
    ) -> None:
        """Initialize the push listener.

        Args:
            url: WebSocket URL of this device's push channel.
            dispatcher: Receives command messages.
            on_token: Called (off the event loop) with a refreshed push token.
            verify_ssl: Whether to verify the server certificate.
            reconnect_delay: Delay between reconnection attempts.
        """
        self._url = url
        self._dispatcher = dispatcher
        self._on_token = on_token
        self._verify_ssl = verify_ssl
        self._reconnect_delay = reconnect_delay

        self._ws: ClientConnection | None = None
        self._connected = False
        self._should_run = False

        self._thread: threading.Thread | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._stop_event: asyncio.Event | None = None

    @property
    def connected(self) -> bool:
        """Check if currently connected."""
        return self._connected

    def start(self) -> None:
        """Start the listener in a background thread."""
        if self._thread and self._thread.is_alive():
            logger.warning("PushListener already running")
            return

        self._should_run = True
        self._thread = threading.Thread(
            target=self._run_loop,
            name="PushListener",
            daemon=True,
        )
        self._thread.start()
        logger.info("PushListener started")

    def stop(self) -> None:
        """Stop the listener."""
        self._should_run = False

        if self._loop and self._stop_event:
            asyncio.run_coroutine_threadsafe(self._signal_stop(), self._loop)

        if self._loop and self._ws:
            with contextlib.suppress(TimeoutError):
                asyncio.run_coroutine_threadsafe(
                    self._close_connection(), self._loop
                ).result(timeout=2.0)

        if self._thread:
            self._thread.join(timeout=5.0)
            self._thread = None

        logger.info("PushListener stopped")

    async def _signal_stop(self) -> None:
        if self._stop_event:
            self._stop_event.set()

    def _run_loop(self) -> None:
        """Run the async event loop in a thread."""
        self._loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self._loop)
        self._stop_event = asyncio.Event()

        try:
            self._loop.run_until_complete(self._connection_loop())
        finally:
            self._loop.close()
            self._loop = None
            self._stop_event = None

    async def _connection_loop(self) -> None:
        """Main connection loop with automatic reconnection."""
        was_connected = False

        while self._should_run:
            try:
                await self._connect()
                was_connected = True
                await self._listen_for_messages()
            except WebSocketException as e:
                if was_connected:
                    logger.warning("PushListener disconnected: %s", e)
                logger.debug("WebSocket error: %s", e)
            except OSError as e:
                if was_connected:
                    logger.warning("PushListener connection lost")
                logger.debug("Connection error: %s", e)
            except Exception as e:
                logger.warning("PushListener error: %s", e)
                logger.debug("Full traceback:", exc_info=True)

            if not self._should_run:
                break

            self._connected = False
            logger.info("PushListener reconnecting in %.0fs...", self._reconnect_delay)
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(),  # type: ignore[union-attr]
                    timeout=self._reconnect_delay,
                )
                break
            except TimeoutError:
                pass

    async def _connect(self) -> None:
        """Establish WebSocket connection."""
        ssl_context: ssl.SSLContext | None = None
        if self._url.startswith("wss://"):
            ssl_context = ssl.create_default_context()
            if not self._verify_ssl:
                ssl_context.check_hostname = False
                ssl_context.verify_mode = ssl.CERT_NONE

        self._ws = await websockets.connect(
            self._url,
            ssl=ssl_context,
            open_timeout=10,
            close_timeout=5,
        )
        self._connected = True
        logger.info("PushListener connected")

    async def _listen_for_messages(self) -> None:
        while self._should_run and self._ws:
            try:
                message = await asyncio.wait_for(self._ws.recv(), timeout=30.0)
            except TimeoutError:
                continue
            except websockets.ConnectionClosed:
                logger.info("Connection closed by server")
                break

            if isinstance(message, bytes):
                message = message.decode("utf-8")
            # Handlers do blocking I/O (SQLite, HTTP)
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self.handle_message, message)

    def handle_message(self, message: str) -> None:
        """Route one raw push frame.

        Args:
            message: Raw JSON text.
        """
        try:
            data = json.loads(message)
        except json.JSONDecodeError:
            logger.warning("Invalid push message received: %s", message[:100])
            return
        if not isinstance(data, dict):
            logger.warning("Ignoring non-object push message: %s", message[:100])
            return

        if data.get("type") == "token":
            token = data.get("token")
            if not isinstance(token, str) or not token:
                logger.warning("Token refresh message without a token")
                return
            logger.info("Push token refreshed: %s", redact_token(token))
            try:
                self._on_token(token)
            except Exception:
                logger.exception("Error handling push token refresh")
            return

        self._dispatcher.dispatch(data)

    async def _close_connection(self) -> None:
        """Close the WebSocket connection."""
        if self._ws:
            with contextlib.suppress(WebSocketException):
                await self._ws.close()
            self._ws = None
        self._connected = False
