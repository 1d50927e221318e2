"""WhatsApp transport backed by a websocket sidecar.

The sidecar owns the messaging library and its wire protocol. This side
speaks JSON frames: commands carry a ``requestId`` and are answered with a
``response`` frame; everything else is an unsolicited event.
"""

from __future__ import annotations

import asyncio
import base64
import contextlib
import json
import uuid
from typing import Any, AsyncIterator, Literal

from loguru import logger

from wabridge.transport.base import (
    ConnectionUpdate,
    CredentialsUpdated,
    MessageReceived,
    PairingToken,
    RawMessage,
    SendFailure,
    TransportEvent,
    TransportNotConnected,
    TransportSession,
)


class WebSocketTransport(TransportSession):
    """Transport session talking to the WhatsApp sidecar over one websocket."""

    def __init__(
        self,
        bridge_url: str,
        token: str = "",
        command_timeout_s: float = 20.0,
        max_payload_bytes: int = 32 * 1024 * 1024,
    ):
        self.bridge_url = bridge_url
        self.token = token
        self.command_timeout_s = command_timeout_s
        self.max_payload_bytes = max_payload_bytes
        self._ws: Any | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._events: asyncio.Queue[TransportEvent | None] = asyncio.Queue()
        self._pending: dict[str, asyncio.Future[dict[str, Any]]] = {}
        self._send_lock = asyncio.Lock()

    async def connect(self, credentials: dict[str, Any] | None) -> None:
        import websockets

        self._ws = await websockets.connect(
            self.bridge_url,
            max_size=self.max_payload_bytes,
            ping_interval=20,
            ping_timeout=20,
        )
        self._reader_task = asyncio.create_task(self._read_loop())
        await self._command("connect", {"credentials": credentials})

    async def events(self) -> AsyncIterator[TransportEvent]:
        while True:
            event = await self._events.get()
            if event is None:
                return
            yield event

    async def send_text(self, jid: str, text: str) -> str | None:
        result = await self._command("send", {"jid": jid, "text": text})
        return result.get("messageId")

    async def send_image(self, jid: str, data: bytes, caption: str | None = None) -> str | None:
        payload: dict[str, Any] = {
            "jid": jid,
            "image": base64.b64encode(data).decode("ascii"),
        }
        if caption:
            payload["caption"] = caption
        result = await self._command("send", payload)
        return result.get("messageId")

    async def set_presence(self, jid: str, state: Literal["composing", "paused"]) -> None:
        await self._command("presence", {"jid": jid, "state": state})

    async def close(self) -> None:
        if self._ws is not None:
            with contextlib.suppress(Exception):
                await self._ws.close()
        if self._reader_task:
            self._reader_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader_task
            self._reader_task = None
        self._ws = None
        self._fail_pending("Transport closed")

    async def _command(self, command_type: str, payload: dict[str, Any]) -> dict[str, Any]:
        if self._ws is None:
            raise TransportNotConnected("Bridge websocket not connected")

        request_id = uuid.uuid4().hex
        future: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        envelope = {
            "type": command_type,
            "requestId": request_id,
            "token": self.token,
            "payload": payload,
        }
        try:
            async with self._send_lock:
                await self._ws.send(json.dumps(envelope))
            return await asyncio.wait_for(future, timeout=self.command_timeout_s)
        except asyncio.TimeoutError as e:
            raise SendFailure(f"{command_type} timed out after {self.command_timeout_s}s") from e
        except SendFailure:
            raise
        except Exception as e:
            raise SendFailure(f"{command_type} failed: {e}") from e
        finally:
            self._pending.pop(request_id, None)

    async def _read_loop(self) -> None:
        try:
            async for raw in self._ws:
                self._handle_frame(raw)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"WhatsApp bridge connection error: {e}")
        finally:
            # A vanished socket is reported like any other close.
            self._fail_pending("Bridge connection closed")
            self._events.put_nowait(ConnectionUpdate(connection="close"))
            self._events.put_nowait(None)

    def _handle_frame(self, raw: str | bytes) -> None:
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Invalid JSON from bridge")
            return
        if not isinstance(data, dict):
            logger.warning("Invalid bridge frame shape")
            return

        frame_type = data.get("type")
        payload = data.get("payload")
        if not isinstance(payload, dict):
            payload = {}

        if frame_type == "response":
            request_id = data.get("requestId")
            if isinstance(request_id, str):
                self._resolve_pending(request_id, payload)
            return

        event = self._parse_event(frame_type, payload)
        if event is not None:
            self._events.put_nowait(event)

    @staticmethod
    def _parse_event(frame_type: Any, payload: dict[str, Any]) -> TransportEvent | None:
        if frame_type == "connection":
            connection = payload.get("connection")
            if connection not in ("connecting", "open", "close"):
                return None
            status_code = payload.get("statusCode")
            return ConnectionUpdate(
                connection=connection,
                status_code=int(status_code) if isinstance(status_code, (int, float)) else None,
            )

        if frame_type == "qr":
            qr = payload.get("qr")
            return PairingToken(qr=qr) if isinstance(qr, str) and qr else None

        if frame_type == "creds":
            credentials = payload.get("credentials")
            if not isinstance(credentials, dict):
                logger.warning("Dropping malformed credentials update")
                return None
            return CredentialsUpdated(credentials=credentials)

        if frame_type == "messages":
            messages: list[RawMessage] = []
            for item in payload.get("messages") or []:
                if not isinstance(item, dict):
                    continue
                message_id = str(item.get("id") or "")
                remote_jid = str(item.get("remoteJid") or "")
                if not message_id or not remote_jid:
                    logger.warning("Dropping malformed inbound message event")
                    continue
                content = item.get("message")
                messages.append(
                    RawMessage(
                        id=message_id,
                        remote_jid=remote_jid,
                        from_me=bool(item.get("fromMe", False)),
                        content=content if isinstance(content, dict) else None,
                    )
                )
            return MessageReceived(messages=messages, type=str(payload.get("type") or "notify"))

        if frame_type == "error":
            logger.error(f"WhatsApp bridge error: {payload.get('error')}")
        return None

    def _resolve_pending(self, request_id: str, payload: dict[str, Any]) -> None:
        future = self._pending.get(request_id)
        if not future or future.done():
            return
        if payload.get("ok"):
            result = payload.get("result")
            future.set_result(result if isinstance(result, dict) else {})
            return
        error = payload.get("error")
        message = error.get("message") if isinstance(error, dict) else error
        future.set_exception(SendFailure(str(message or "Bridge command failed")))

    def _fail_pending(self, reason: str) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(SendFailure(reason))
        self._pending.clear()
