"""Bridge loop: turns filtered messages into engine runs and replies."""

from __future__ import annotations

import asyncio

from loguru import logger

from wabridge.agent.postprocess import MAX_CHUNK_CHARS, MediaReference, process_response, read_image
from wabridge.bus.events import InboundMessage
from wabridge.bus.queue import MessageBus
from wabridge.channels.filter import preview
from wabridge.channels.sink import ReplySink
from wabridge.engine.runner import (
    DEFAULT_ALLOWED_TOOLS,
    DEFAULT_TIMEOUT_MS,
    EngineError,
    EngineRequest,
    EngineRunner,
)


class BridgeLoop:
    """
    Consumes inbound messages and drives the engine for each one.

    It:
    1. Routes each message to a worker for its conversation
    2. Shows "composing" while the engine runs
    3. Post-processes the response into text chunks and images
    4. Sends chunks in order, then images
    5. Replies with a short error when the engine fails

    Messages of one conversation are handled strictly in arrival order;
    different conversations run concurrently.
    """

    def __init__(
        self,
        bus: MessageBus,
        engine: EngineRunner,
        cwd: str = "~",
        allowed_tools: list[str] | tuple[str, ...] = DEFAULT_ALLOWED_TOOLS,
        skill: str | None = None,
        max_turns: int | None = None,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        max_chunk_chars: int = MAX_CHUNK_CHARS,
    ):
        self.bus = bus
        self.engine = engine
        self.cwd = cwd
        self.allowed_tools = tuple(allowed_tools)
        self.skill = skill
        self.max_turns = max_turns
        self.timeout_ms = timeout_ms
        self.max_chunk_chars = max_chunk_chars
        self._running = False
        self._session_queues: dict[str, asyncio.Queue[InboundMessage]] = {}
        self._session_workers: dict[str, asyncio.Task[None]] = {}

    def build_request(self, text: str) -> EngineRequest:
        return EngineRequest(
            prompt=text,
            cwd=self.cwd,
            allowed_tools=self.allowed_tools,
            system_prompt_append=self.skill,
            max_turns=self.max_turns,
            timeout_ms=self.timeout_ms,
        )

    async def run(self) -> None:
        """Run the loop, dispatching messages from the bus."""
        self._running = True
        logger.info("Bridge loop started")

        try:
            while self._running:
                try:
                    msg = await asyncio.wait_for(self.bus.consume_inbound(), timeout=1.0)
                except asyncio.TimeoutError:
                    continue
                self.dispatch(msg)
        finally:
            await self._shutdown_session_workers()

    def dispatch(self, msg: InboundMessage) -> None:
        """Queue a message behind earlier ones from the same conversation."""
        queue = self._session_queues.setdefault(msg.session_key, asyncio.Queue())
        queue.put_nowait(msg)
        self._ensure_session_worker(msg.session_key)

    def stop(self) -> None:
        """Stop the bridge loop."""
        self._running = False
        logger.info("Bridge loop stopping")

    async def shutdown(self) -> None:
        """Stop, drop queued work and terminate in-flight engine processes."""
        self.stop()
        await self._shutdown_session_workers()
        await self.engine.terminate_all()

    def _ensure_session_worker(self, session_key: str) -> None:
        """Ensure a per-conversation worker exists."""
        worker = self._session_workers.get(session_key)
        if worker is None or worker.done():
            queue = self._session_queues[session_key]
            self._session_workers[session_key] = asyncio.create_task(
                self._session_worker(session_key, queue)
            )

    async def _session_worker(
        self,
        session_key: str,
        queue: asyncio.Queue[InboundMessage],
    ) -> None:
        """Process one conversation queue serially."""
        try:
            while not queue.empty():
                msg = queue.get_nowait()
                await self.process_message(msg)
        finally:
            if self._session_workers.get(session_key) is asyncio.current_task():
                self._session_workers.pop(session_key, None)
                if queue.empty():
                    self._session_queues.pop(session_key, None)
                elif self._running:
                    self._session_workers[session_key] = asyncio.create_task(
                        self._session_worker(session_key, queue)
                    )

    async def _shutdown_session_workers(self) -> None:
        """Cancel and await all active conversation workers."""
        workers = list(self._session_workers.values())
        self._session_workers.clear()
        self._session_queues.clear()
        for worker in workers:
            worker.cancel()
        if workers:
            await asyncio.gather(*workers, return_exceptions=True)

    async def process_message(self, msg: InboundMessage) -> None:
        """Handle one message end to end. Never raises, except on cancellation."""
        try:
            await self._process_message(msg)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"Error handling message from {msg.conversation}: {e}")

    async def _process_message(self, msg: InboundMessage) -> None:
        reply = msg.reply
        logger.info(f"🤖 Processing: {preview(msg.content)}")

        await self._presence(reply, composing=True)
        try:
            response = await self.engine.submit(self.build_request(msg.content))
        except EngineError as e:
            await self._presence(reply, composing=False)
            logger.error(f"❌ Engine error: {e}")
            await self._send_error(reply, e)
            return
        except BaseException:
            await self._presence(reply, composing=False)
            raise
        await self._presence(reply, composing=False)

        if response.session_id:
            logger.debug(f"Engine session {response.session_id} (cost={response.cost})")

        processed = process_response(response.text, self.max_chunk_chars)
        await self._send_chunks(reply, processed.chunks)
        images = await self._send_media(reply, processed.media)
        logger.info(f"✅ Response sent ({len(response.text)} chars, {images} images)")

    async def _send_chunks(self, reply: ReplySink, chunks: list[str]) -> bool:
        for i, chunk in enumerate(chunks):
            try:
                await reply.send_text(chunk)
            except Exception as e:
                # Later chunks would arrive out of order; drop them.
                logger.error(f"Failed to send chunk {i + 1}/{len(chunks)}, aborting remaining text: {e}")
                return False
        return True

    async def _send_media(self, reply: ReplySink, media: list[MediaReference]) -> int:
        sent = 0
        for ref in media:
            try:
                data = read_image(ref.path)
                await reply.send_image(data, ref.filename)
                sent += 1
                logger.info(f"📷 Sent image: {ref.filename}")
            except Exception as e:
                logger.error(f"Failed to send image {ref.path}: {e}")
        return sent

    @staticmethod
    async def _presence(reply: ReplySink, composing: bool) -> None:
        try:
            if composing:
                await reply.set_composing()
            else:
                await reply.set_paused()
        except Exception as e:
            logger.warning(f"Presence update failed: {e}")

    @staticmethod
    async def _send_error(reply: ReplySink, error: Exception) -> None:
        try:
            await reply.send_text(f"Error: {error}")
        except Exception as e:
            logger.error(f"Failed to send error reply: {e}")
