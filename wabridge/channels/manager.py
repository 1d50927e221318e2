"""Connection lifecycle manager for the WhatsApp transport."""

from __future__ import annotations

import asyncio
import contextlib
from enum import Enum
from typing import Any, Awaitable, Callable, Literal

from loguru import logger

from wabridge.bus.events import InboundMessage
from wabridge.bus.queue import MessageBus
from wabridge.channels.filter import InboundFilter
from wabridge.channels.sink import ReplySink
from wabridge.session.credentials import CredentialStore
from wabridge.transport.base import (
    ConnectionUpdate,
    CredentialsUpdated,
    DisconnectReason,
    MessageReceived,
    PairingToken,
    TransportEvent,
    TransportNotConnected,
    TransportSession,
)

RECONNECT_DELAY_SECONDS = 3.0


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AWAITING_PAIRING = "awaiting_pairing"
    OPEN = "open"
    CLOSED = "closed"
    LOGGED_OUT = "logged_out"


class ConnectionManager:
    """
    Owns one transport session at a time and keeps it connected.

    Responsibilities:
    - Load persisted credentials before every connect attempt
    - Surface pairing tokens while the device is not linked
    - Persist every credentials update as soon as it arrives
    - Reconnect after a fixed delay unless the device was logged out
    - Run inbound messages through the filter and publish survivors to the bus
    - Provide send/presence primitives against the current session
    """

    def __init__(
        self,
        transport_factory: Callable[[], TransportSession],
        credentials: CredentialStore,
        bus: MessageBus,
        inbound_filter: InboundFilter,
        reconnect_delay_s: float = RECONNECT_DELAY_SECONDS,
        on_pairing: Callable[[str], Any | Awaitable[Any]] | None = None,
    ):
        self.transport_factory = transport_factory
        self.credentials = credentials
        self.bus = bus
        self.filter = inbound_filter
        self.reconnect_delay_s = reconnect_delay_s
        self.on_pairing = on_pairing
        self.state = ConnectionState.DISCONNECTED
        self._session: TransportSession | None = None
        self._session_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._running = False
        self._finished = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    async def start(self) -> None:
        """Open the first connection; further reconnects happen on their own."""
        self._running = True
        self._finished.clear()
        await self._connect()

    async def run(self) -> None:
        """Connect and wait until stopped or logged out."""
        await self.start()
        await self._finished.wait()

    async def stop(self) -> None:
        """Cancel scheduled reconnects, close the session and flush credentials."""
        self._running = False
        if self._reconnect_task:
            self._reconnect_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reconnect_task
            self._reconnect_task = None

        session, self._session = self._session, None
        if session:
            try:
                await session.close()
            except Exception as e:
                logger.error(f"Error closing transport session: {e}")
        if self._session_task and self._session_task is not asyncio.current_task():
            self._session_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._session_task
        self._session_task = None

        await self.credentials.flush()
        if self.state != ConnectionState.LOGGED_OUT:
            self.state = ConnectionState.DISCONNECTED
        self._finished.set()
        logger.info("WhatsApp connection stopped")

    async def _connect(self) -> None:
        self.state = ConnectionState.CONNECTING
        credentials = await self.credentials.load()
        if credentials is None:
            self.state = ConnectionState.AWAITING_PAIRING
            logger.info("No stored credentials, waiting for device pairing")

        session = self.transport_factory()
        self._session = session
        try:
            await session.connect(credentials)
        except Exception as e:
            logger.warning(f"WhatsApp connect attempt failed: {e}")
            self._session = None
            with contextlib.suppress(Exception):
                await session.close()
            self.state = ConnectionState.CLOSED
            self._schedule_reconnect()
            return

        if not self._running:
            await session.close()
            return
        self._session_task = asyncio.create_task(self._consume(session))

    async def _consume(self, session: TransportSession) -> None:
        """Apply events from one session until it closes."""
        try:
            async for event in session.events():
                await self._handle_event(session, event)
                if session is not self._session:
                    return
            # Stream ended without a close event.
            if session is self._session and self.state != ConnectionState.CLOSED:
                await self._on_close(session, None)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"WhatsApp transport event stream failed: {e}")
            if session is self._session and self.state != ConnectionState.CLOSED:
                await self._on_close(session, None)

    async def _handle_event(self, session: TransportSession, event: TransportEvent) -> None:
        if isinstance(event, CredentialsUpdated):
            # Never batched: losing the latest update forces a new pairing.
            try:
                await self.credentials.save(event.credentials)
            except OSError as e:
                logger.error(f"Failed to persist credentials: {e}")
            return

        if session is not self._session:
            return

        if isinstance(event, PairingToken):
            self.state = ConnectionState.AWAITING_PAIRING
            logger.info("📱 Pairing required, scan the QR code with WhatsApp")
            if self.on_pairing:
                try:
                    result = self.on_pairing(event.qr)
                    if hasattr(result, "__await__"):
                        await result
                except Exception as e:
                    logger.error(f"Pairing callback failed: {e}")
            return

        if isinstance(event, ConnectionUpdate):
            if event.connection == "connecting":
                if self.state != ConnectionState.AWAITING_PAIRING:
                    self.state = ConnectionState.CONNECTING
                logger.info("⏳ Connecting...")
            elif event.connection == "open":
                self._on_open()
            elif event.connection == "close":
                await self._on_close(session, event.status_code)
            return

        if isinstance(event, MessageReceived):
            await self._on_messages(event)

    def _on_open(self) -> None:
        self.state = ConnectionState.OPEN
        if self._reconnect_task and not self._reconnect_task.done():
            self._reconnect_task.cancel()
            logger.debug("Connection opened, scheduled reconnect dropped")
        self._reconnect_task = None
        logger.info("✅ Connected to WhatsApp")

    async def _on_close(self, session: TransportSession, status_code: int | None) -> None:
        self.state = ConnectionState.CLOSED

        if status_code == DisconnectReason.LOGGED_OUT:
            self.state = ConnectionState.LOGGED_OUT
            self._running = False
            self._session = None
            with contextlib.suppress(Exception):
                await session.close()
            logger.info(f"Connection closed. Status: {status_code}. Reconnecting: False")
            logger.warning("Logged out. Run `wabridge logout` and restart to re-link the device.")
            self._finished.set()
            return

        # The session stays current until the reconnect fires, so an "open"
        # reported in the meantime still supersedes it.
        logger.info(f"Connection closed. Status: {status_code}. Reconnecting: {self._running}")
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if not self._running or self.reconnect_pending:
            return
        self._reconnect_task = asyncio.create_task(self._reconnect_later())

    async def _reconnect_later(self) -> None:
        await asyncio.sleep(self.reconnect_delay_s)
        # Past this point the attempt runs to completion.
        self._reconnect_task = None
        stale, self._session = self._session, None
        if stale:
            with contextlib.suppress(Exception):
                await stale.close()
        if self._running:
            await self._connect()

    async def _on_messages(self, event: MessageReceived) -> None:
        logger.debug(f"messages received type={event.type}, count={len(event.messages)}")
        if event.type != "notify":
            return
        for raw in event.messages:
            accepted = self.filter.check(raw)
            if accepted is None:
                continue
            await self.bus.publish_inbound(
                InboundMessage(
                    conversation=accepted.identity,
                    chat_id=accepted.jid,
                    content=accepted.text,
                    reply=ReplySink(accepted.jid, self, self.filter.registry),
                    message_id=accepted.message_id,
                )
            )

    def _require_session(self) -> TransportSession:
        if self._session is None or self.state != ConnectionState.OPEN:
            raise TransportNotConnected("WhatsApp is not connected")
        return self._session

    async def send_text(self, jid: str, text: str) -> str | None:
        return await self._require_session().send_text(jid, text)

    async def send_image(self, jid: str, data: bytes, caption: str | None = None) -> str | None:
        return await self._require_session().send_image(jid, data, caption=caption)

    async def set_presence(self, jid: str, state: Literal["composing", "paused"]) -> None:
        await self._require_session().set_presence(jid, state)

    def get_status(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "running": self._running,
            "reconnect_pending": self.reconnect_pending,
        }
