"""Message bus module decoupling the inbound filter from the bridge loop."""

from wabridge.bus.events import InboundMessage
from wabridge.bus.queue import MessageBus

__all__ = ["MessageBus", "InboundMessage"]
