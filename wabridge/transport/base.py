"""Transport session boundary.

The messaging library (pairing, encryption, wire protocol) lives outside this
package. A transport session only has to deliver the events below and expose
send/presence primitives; everything stateful sits in the connection manager.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, AsyncIterator, Literal


class SendFailure(RuntimeError):
    """A send or presence command was rejected or could not be delivered."""


class TransportNotConnected(SendFailure):
    """No open transport session is available."""


class DisconnectReason(IntEnum):
    """Status codes reported with a closed connection."""

    CONNECTION_CLOSED = 428
    CONNECTION_LOST = 408
    CONNECTION_REPLACED = 440
    TIMED_OUT = 408
    LOGGED_OUT = 401
    BAD_SESSION = 500
    RESTART_REQUIRED = 515
    MULTIDEVICE_MISMATCH = 411
    FORBIDDEN = 403
    UNAVAILABLE_SERVICE = 503


@dataclass
class RawMessage:
    """One message as reported by the transport, before any filtering."""

    id: str
    remote_jid: str
    from_me: bool = False
    content: dict[str, Any] | None = None

    @property
    def is_group(self) -> bool:
        return self.remote_jid.endswith("@g.us")

    @property
    def text(self) -> str:
        """Plain text body, or empty for non-text message types."""
        if not self.content:
            return ""
        text = self.content.get("conversation")
        if not text:
            extended = self.content.get("extendedTextMessage")
            if isinstance(extended, dict):
                text = extended.get("text")
        return text if isinstance(text, str) else ""


@dataclass
class ConnectionUpdate:
    """Connection state change: connecting, open or close."""

    connection: Literal["connecting", "open", "close"]
    status_code: int | None = None


@dataclass
class PairingToken:
    """QR payload to be shown to the operator for device linking."""

    qr: str


@dataclass
class CredentialsUpdated:
    """Opaque credential material changed and must be persisted."""

    credentials: dict[str, Any]


@dataclass
class MessageReceived:
    """A batch of messages delivered by the transport."""

    messages: list[RawMessage] = field(default_factory=list)
    type: str = "notify"


TransportEvent = ConnectionUpdate | PairingToken | CredentialsUpdated | MessageReceived


class TransportSession(ABC):
    """
    One live connection to the messaging network.

    Sessions are single use: the connection manager creates a new one for
    every (re)connect attempt and drops it once its event stream ends.
    """

    @abstractmethod
    async def connect(self, credentials: dict[str, Any] | None) -> None:
        """Open the connection; ``None`` credentials start a fresh pairing."""
        pass

    @abstractmethod
    def events(self) -> AsyncIterator[TransportEvent]:
        """Yield transport events until the session is gone."""
        pass

    @abstractmethod
    async def send_text(self, jid: str, text: str) -> str | None:
        """Send a text message and return the transport message id."""
        pass

    @abstractmethod
    async def send_image(self, jid: str, data: bytes, caption: str | None = None) -> str | None:
        """Send an image and return the transport message id."""
        pass

    @abstractmethod
    async def set_presence(self, jid: str, state: Literal["composing", "paused"]) -> None:
        """Update the chat-state indicator for one conversation."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Tear the connection down; the event stream ends afterwards."""
        pass
