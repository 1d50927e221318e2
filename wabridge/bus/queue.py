"""Async message queue between the inbound filter and the bridge loop."""

import asyncio

from wabridge.bus.events import InboundMessage


class MessageBus:
    """
    Inbound queue that decouples the transport callbacks from engine work.

    The connection manager publishes filtered messages here; the bridge loop
    consumes them and fans them out to per-conversation workers.
    """

    def __init__(self):
        self.inbound: asyncio.Queue[InboundMessage] = asyncio.Queue()

    async def publish_inbound(self, msg: InboundMessage) -> None:
        """Publish a message for the bridge loop."""
        await self.inbound.put(msg)

    async def consume_inbound(self) -> InboundMessage:
        """Consume the next inbound message (blocks until available)."""
        return await self.inbound.get()

    @property
    def inbound_size(self) -> int:
        """Number of pending inbound messages."""
        return self.inbound.qsize()
