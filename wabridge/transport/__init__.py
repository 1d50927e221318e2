"""Transport session boundary and the websocket sidecar implementation."""

from wabridge.transport.base import (
    ConnectionUpdate,
    CredentialsUpdated,
    DisconnectReason,
    MessageReceived,
    PairingToken,
    RawMessage,
    SendFailure,
    TransportEvent,
    TransportNotConnected,
    TransportSession,
)

__all__ = [
    "ConnectionUpdate",
    "CredentialsUpdated",
    "DisconnectReason",
    "MessageReceived",
    "PairingToken",
    "RawMessage",
    "SendFailure",
    "TransportEvent",
    "TransportNotConnected",
    "TransportSession",
]
