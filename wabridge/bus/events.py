"""Event types for the message bus."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from wabridge.channels.sink import ReplySink


@dataclass
class InboundMessage:
    """Filtered text message waiting for the engine."""

    conversation: str  # Normalized counterpart identity
    chat_id: str  # Transport address replies go to
    content: str
    reply: "ReplySink"
    message_id: str = ""

    @property
    def session_key(self) -> str:
        """Requests sharing this key are processed one at a time."""
        return self.conversation
