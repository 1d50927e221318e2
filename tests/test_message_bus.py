import pytest

from wabridge.bus.events import InboundMessage
from wabridge.bus.queue import MessageBus


def _msg(conversation: str, content: str = "hello") -> InboundMessage:
    return InboundMessage(
        conversation=conversation,
        chat_id=f"{conversation}@s.whatsapp.net",
        content=content,
        reply=None,
    )


@pytest.mark.asyncio
async def test_inbound_messages_are_consumed_in_arrival_order():
    bus = MessageBus()
    await bus.publish_inbound(_msg("15551234567", "first"))
    await bus.publish_inbound(_msg("15551234567", "second"))
    assert bus.inbound_size == 2

    assert (await bus.consume_inbound()).content == "first"
    assert (await bus.consume_inbound()).content == "second"
    assert bus.inbound_size == 0


def test_session_key_is_conversation_identity():
    msg = _msg("15551234567")
    assert msg.session_key == "15551234567"
