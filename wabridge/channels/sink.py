"""Reply sink bound to one conversation."""

from __future__ import annotations

from typing import TYPE_CHECKING

from wabridge.channels.filter import SentMessageRegistry

if TYPE_CHECKING:
    from wabridge.channels.manager import ConnectionManager


class ReplySink:
    """
    Output capability for a single conversation.

    The bridge loop only sees this object; it never touches the transport.
    Ids of sent messages are registered before a send returns so the echo
    cannot slip past the inbound filter.
    """

    def __init__(self, jid: str, sender: "ConnectionManager", registry: SentMessageRegistry):
        self.jid = jid
        self._sender = sender
        self._registry = registry

    async def send_text(self, chunk: str) -> str | None:
        message_id = await self._sender.send_text(self.jid, chunk)
        if message_id:
            self._registry.add(message_id)
        return message_id

    async def send_image(self, data: bytes, filename: str | None = None) -> str | None:
        message_id = await self._sender.send_image(self.jid, data, caption=filename)
        if message_id:
            self._registry.add(message_id)
        return message_id

    async def set_composing(self) -> None:
        await self._sender.set_presence(self.jid, "composing")

    async def set_paused(self) -> None:
        await self._sender.set_presence(self.jid, "paused")
