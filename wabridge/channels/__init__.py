"""WhatsApp connection lifecycle, inbound filtering and reply sinks."""

from wabridge.channels.filter import InboundFilter, SentMessageRegistry
from wabridge.channels.manager import ConnectionManager, ConnectionState
from wabridge.channels.sink import ReplySink

__all__ = [
    "ConnectionManager",
    "ConnectionState",
    "InboundFilter",
    "ReplySink",
    "SentMessageRegistry",
]
