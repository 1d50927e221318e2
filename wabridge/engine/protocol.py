"""Parser for the engine's line-delimited output stream.

Each stdout line is parsed on its own into one record kind. Lines that are
not JSON objects come back as ``RawLine`` so the caller can keep them as
plain text; this also covers engines that print a whole-run JSON object or
plain text instead of a stream.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class TextBlock:
    text: str


@dataclass(frozen=True)
class ToolUseBlock:
    name: str
    input: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AssistantMessage:
    """A complete assistant turn with its content blocks."""

    blocks: tuple[TextBlock | ToolUseBlock, ...] = ()

    @property
    def text(self) -> str:
        return "".join(b.text for b in self.blocks if isinstance(b, TextBlock))


@dataclass(frozen=True)
class TextDelta:
    """Incremental text while a turn is being generated."""

    text: str


@dataclass(frozen=True)
class TerminalResult:
    """Final record of a run; its text is authoritative when present."""

    text: str | None = None
    session_id: str | None = None
    is_error: bool = False
    cost: float | None = None


@dataclass(frozen=True)
class IgnoredRecord:
    """Well-formed record the bridge has no use for (init, tool results)."""

    type: str


@dataclass(frozen=True)
class RawLine:
    """Unparseable output kept verbatim."""

    text: str


StreamRecord = AssistantMessage | TextDelta | TerminalResult | IgnoredRecord | RawLine


def parse_line(line: str) -> StreamRecord | None:
    """Parse one output line. Returns None for blank lines."""
    if not line.strip():
        return None
    try:
        data = json.loads(line)
    except ValueError:
        return RawLine(line)
    if not isinstance(data, dict):
        return RawLine(line)
    return parse_record(data)


def parse_record(data: dict[str, Any]) -> StreamRecord:
    record_type = data.get("type")

    if record_type == "assistant":
        return _parse_assistant(data.get("message"))

    if record_type == "stream_event":
        event = data.get("event")
        return _parse_delta(event) if isinstance(event, dict) else IgnoredRecord("stream_event")

    if record_type == "content_block_delta":
        return _parse_delta(data)

    # Whole-run JSON objects may omit the type but still carry a result.
    if record_type == "result" or (record_type is None and ("result" in data or "message" in data)):
        return _parse_result(data)

    return IgnoredRecord(str(record_type or "unknown"))


def _parse_assistant(message: Any) -> StreamRecord:
    if not isinstance(message, dict):
        return AssistantMessage()
    content = message.get("content")
    if isinstance(content, str):
        return AssistantMessage(blocks=(TextBlock(content),))

    blocks: list[TextBlock | ToolUseBlock] = []
    for block in content or []:
        if not isinstance(block, dict):
            continue
        block_type = block.get("type")
        if block_type == "text" and isinstance(block.get("text"), str):
            blocks.append(TextBlock(block["text"]))
        elif block_type == "tool_use":
            args = block.get("input")
            blocks.append(
                ToolUseBlock(
                    name=str(block.get("name") or "unknown"),
                    input=args if isinstance(args, dict) else {},
                )
            )
    return AssistantMessage(blocks=tuple(blocks))


def _parse_delta(event: dict[str, Any]) -> StreamRecord:
    if event.get("type") != "content_block_delta":
        return IgnoredRecord(str(event.get("type") or "stream_event"))
    delta = event.get("delta")
    if isinstance(delta, dict) and isinstance(delta.get("text"), str):
        return TextDelta(delta["text"])
    return IgnoredRecord("content_block_delta")


def _parse_result(data: dict[str, Any]) -> TerminalResult:
    text = data.get("result")
    if not isinstance(text, str) or not text:
        message = data.get("message")
        text = message if isinstance(message, str) and message else text
    session_id = data.get("session_id")
    cost = data.get("total_cost_usd", data.get("cost"))
    return TerminalResult(
        text=text if isinstance(text, str) and text else None,
        session_id=session_id if isinstance(session_id, str) else None,
        is_error=bool(data.get("is_error", False)),
        cost=float(cost) if isinstance(cost, (int, float)) else None,
    )
