"""Inbound filtering and echo suppression."""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable

from loguru import logger

from wabridge.transport.base import RawMessage

SENT_REGISTRY_TTL_SECONDS = 10 * 60
SENT_REGISTRY_MAX_ENTRIES = 1000


def normalize_identity(address: str) -> str:
    """Reduce a jid or phone string to bare digits-style identity.

    ``15551234567:12@s.whatsapp.net`` and ``+15551234567`` both become
    ``15551234567``.
    """
    local = address.split("@", 1)[0].split(":", 1)[0]
    return local.strip().lstrip("+").replace(" ", "")


def preview(text: str, limit: int = 50) -> str:
    return f"{text[:limit]}{'...' if len(text) > limit else ''}"


class SentMessageRegistry:
    """
    Ids of messages this process sent, kept until their echo arrives.

    Entries expire after ``ttl_seconds`` and the registry never holds more
    than ``max_entries`` (oldest dropped first).
    """

    def __init__(
        self,
        ttl_seconds: float = SENT_REGISTRY_TTL_SECONDS,
        max_entries: int = SENT_REGISTRY_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max(1, max_entries)
        self._clock = clock
        self._entries: OrderedDict[str, float] = OrderedDict()
        self._lock = threading.Lock()
        self._evictions = 0

    def add(self, message_id: str) -> None:
        with self._lock:
            self._evict_expired()
            self._entries.pop(message_id, None)
            self._entries[message_id] = self._clock() + self.ttl_seconds
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
                self._evictions += 1
                if self._evictions == 1 or self._evictions % 500 == 0:
                    logger.warning(
                        f"Sent-message registry overflow: evictions={self._evictions} max={self.max_entries}"
                    )

    def consume(self, message_id: str) -> bool:
        """Return True and forget the id if it was sent by us."""
        with self._lock:
            self._evict_expired()
            return self._entries.pop(message_id, None) is not None

    def __contains__(self, message_id: str) -> bool:
        with self._lock:
            self._evict_expired()
            return message_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            self._evict_expired()
            return len(self._entries)

    def _evict_expired(self) -> None:
        now = self._clock()
        expired = [key for key, expires_at in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug(f"Evicted {len(expired)} expired sent-message ids")


@dataclass(frozen=True)
class AcceptedMessage:
    """An inbound message that survived filtering."""

    message_id: str
    jid: str
    identity: str
    text: str


class InboundFilter:
    """Decides which raw transport messages reach the engine."""

    def __init__(self, identity: str, registry: SentMessageRegistry):
        self.identity = normalize_identity(identity)
        self.registry = registry

    def check(self, msg: RawMessage) -> AcceptedMessage | None:
        # Deletions, reactions and other payload-less notifications.
        if not msg.content:
            return None

        if self.registry.consume(msg.id):
            logger.debug(f"Dropping echo of sent message {msg.id}")
            return None

        if msg.is_group:
            return None

        sender = normalize_identity(msg.remote_jid)
        if sender != self.identity:
            logger.info(f"Ignoring message from chat {sender} (not {self.identity})")
            return None

        text = msg.text
        if not text:
            return None

        logger.info(f"📩 Received: {preview(text)}")
        return AcceptedMessage(message_id=msg.id, jid=msg.remote_jid, identity=sender, text=text)
