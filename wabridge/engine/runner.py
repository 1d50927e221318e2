"""Engine process orchestrator: one subprocess per request."""

from __future__ import annotations

import asyncio
import contextlib
import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable, Sequence

from loguru import logger

from wabridge.engine.protocol import (
    AssistantMessage,
    RawLine,
    TerminalResult,
    TextBlock,
    TextDelta,
    ToolUseBlock,
    parse_line,
)

DEFAULT_TIMEOUT_MS = 300_000
DEFAULT_ALLOWED_TOOLS = ("Bash", "Read", "Write", "Edit")
STREAM_LIMIT = 16 * 1024 * 1024
TERMINATE_GRACE_SECONDS = 5.0
RESULT_EXIT_GRACE_SECONDS = 5.0

TextObserver = Callable[[str], Awaitable[None] | None]


class EngineError(RuntimeError):
    """Engine request failed; the message is shown to the counterpart."""


class EngineStartError(EngineError):
    """The engine binary could not be started."""


class EngineTimeout(EngineError):
    """The request exceeded its wall-clock timeout."""


class EngineProcessError(EngineError):
    """The engine exited non-zero without producing any text."""

    def __init__(self, command: str, returncode: int | None, stderr: str):
        super().__init__(f"{command} exited with code {returncode}: {stderr}")
        self.returncode = returncode
        self.stderr = stderr


@dataclass(frozen=True)
class EngineRequest:
    """One prompt for the engine. Built once per inbound message."""

    prompt: str
    cwd: str = "~"
    allowed_tools: tuple[str, ...] = DEFAULT_ALLOWED_TOOLS
    system_prompt_append: str | None = None
    max_turns: int | None = None
    timeout_ms: int = DEFAULT_TIMEOUT_MS


@dataclass
class EngineResponse:
    text: str
    session_id: str | None = None
    cost: float | None = None
    returncode: int | None = None
    is_error: bool = False


def expand_home(path: str) -> Path:
    return Path(path or "~").expanduser()


class _Collector:
    """Assembles response text from parsed stream records."""

    def __init__(self, on_text: TextObserver | None = None):
        self.on_text = on_text
        self.parts: list[str] = []
        self.result: TerminalResult | None = None
        self._streamed_since_message = False

    @property
    def text(self) -> str:
        if self.result is not None and self.result.text is not None:
            return self.result.text
        return "".join(self.parts)

    async def feed(self, line: str) -> bool:
        """Apply one output line. Returns True once the stream is logically complete."""
        record = parse_line(line)
        if record is None:
            return False

        if isinstance(record, TerminalResult):
            self.result = record
            return True

        if isinstance(record, TextDelta):
            self._streamed_since_message = True
            await self._append(record.text)
        elif isinstance(record, AssistantMessage):
            # With partial messages enabled the deltas already carried this text.
            already_streamed = self._streamed_since_message
            self._streamed_since_message = False
            for block in record.blocks:
                if isinstance(block, ToolUseBlock):
                    args_str = json.dumps(block.input, ensure_ascii=False)
                    logger.info(f"Tool call: {block.name}({args_str[:200]})")
                elif isinstance(block, TextBlock) and not already_streamed:
                    await self._append(block.text)
        elif isinstance(record, RawLine):
            self.parts.append(record.text)
        return False

    async def _append(self, text: str) -> None:
        if not text:
            return
        self.parts.append(text)
        if self.on_text:
            try:
                result = self.on_text(text)
                if hasattr(result, "__await__"):
                    await result
            except Exception as e:
                logger.warning(f"Engine text observer failed: {e}")


class EngineRunner:
    """
    Runs the reasoning engine CLI, one subprocess per request.

    The output stream is parsed line by line; a terminal result record ends
    the run even if the process lingers. Concurrent requests each get their
    own process; callers serialize per conversation.
    """

    def __init__(
        self,
        command: str | Sequence[str] = "claude",
        output_format: str = "stream-json",
        env: dict[str, str] | None = None,
        terminate_grace_s: float = TERMINATE_GRACE_SECONDS,
        result_grace_s: float = RESULT_EXIT_GRACE_SECONDS,
    ):
        self.command = [command] if isinstance(command, str) else list(command)
        self.output_format = output_format
        self.env = env or {}
        self.terminate_grace_s = terminate_grace_s
        self.result_grace_s = result_grace_s
        self._processes: set[asyncio.subprocess.Process] = set()

    @property
    def name(self) -> str:
        return Path(self.command[0]).name if self.command else "engine"

    @property
    def in_flight(self) -> int:
        return len(self._processes)

    def build_args(self, request: EngineRequest) -> list[str]:
        args = [*self.command, "-p", request.prompt, "--output-format", self.output_format]
        if self.output_format == "stream-json":
            args.append("--verbose")
        tools = list(dict.fromkeys(t for t in request.allowed_tools if t))
        if tools:
            args.extend(["--allowedTools", ",".join(tools)])
        if request.system_prompt_append:
            args.extend(["--append-system-prompt", request.system_prompt_append])
        if request.max_turns:
            args.extend(["--max-turns", str(request.max_turns)])
        return args

    async def submit(
        self,
        request: EngineRequest,
        on_text: TextObserver | None = None,
    ) -> EngineResponse:
        """Run one request. Raises an EngineError subclass on failure."""
        args = self.build_args(request)
        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                cwd=str(expand_home(request.cwd)),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env={**os.environ, "CI": "true", **self.env},
                limit=STREAM_LIMIT,
            )
        except OSError as e:
            raise EngineStartError(f"Failed to start {self.name}: {e}") from e

        self._processes.add(proc)
        collector = _Collector(on_text)
        stderr_task = asyncio.create_task(self._drain(proc.stderr))
        try:
            await asyncio.wait_for(self._collect(proc, collector), timeout=request.timeout_ms / 1000)
        except asyncio.TimeoutError:
            logger.warning(f"{self.name} timed out after {request.timeout_ms}ms, terminating")
            raise EngineTimeout(f"{self.name} timed out after {request.timeout_ms}ms") from None
        finally:
            if proc.returncode is None:
                await self._terminate(proc)
            self._processes.discard(proc)
            stderr = await self._finish_drain(stderr_task)

        return self._build_response(proc.returncode, collector, stderr)

    def _build_response(
        self,
        returncode: int | None,
        collector: _Collector,
        stderr: str,
    ) -> EngineResponse:
        text = collector.text
        result = collector.result
        if returncode != 0:
            if not text.strip():
                raise EngineProcessError(self.name, returncode, stderr.strip())
            logger.warning(
                f"{self.name} exited with code {returncode}, returning partial output ({len(text)} chars)"
            )
        if result and result.is_error:
            logger.warning(f"{self.name} reported an error result, sending it as the reply")
        if not text.strip():
            text = stderr.strip()
        return EngineResponse(
            text=text.strip(),
            session_id=result.session_id if result else None,
            cost=result.cost if result else None,
            returncode=returncode,
            is_error=bool(result and result.is_error),
        )

    async def _collect(self, proc: asyncio.subprocess.Process, collector: _Collector) -> None:
        async for line in self._iter_lines(proc.stdout):
            if await collector.feed(line):
                break
        else:
            await proc.wait()
            return

        # Result seen: give the process a moment to exit on its own.
        try:
            await asyncio.wait_for(proc.wait(), timeout=self.result_grace_s)
        except asyncio.TimeoutError:
            logger.debug(f"{self.name} still running after result, terminating")
            await self._terminate(proc)

    @staticmethod
    async def _iter_lines(stream: asyncio.StreamReader | None) -> AsyncIterator[str]:
        if stream is None:
            return
        while True:
            try:
                line = await stream.readline()
            except ValueError:
                logger.warning("Skipping oversized engine output line")
                continue
            if not line:
                return
            yield line.decode("utf-8", errors="replace")

    @staticmethod
    async def _drain(stream: asyncio.StreamReader | None) -> str:
        if stream is None:
            return ""
        data = await stream.read()
        return data.decode("utf-8", errors="replace")

    async def _finish_drain(self, task: asyncio.Task[str]) -> str:
        try:
            return await asyncio.wait_for(task, timeout=self.terminate_grace_s)
        except asyncio.TimeoutError:
            return ""
        except Exception as e:
            logger.debug(f"Reading {self.name} stderr failed: {e}")
            return ""

    async def _terminate(self, proc: asyncio.subprocess.Process) -> None:
        with contextlib.suppress(ProcessLookupError):
            proc.terminate()
        try:
            await asyncio.wait_for(proc.wait(), timeout=self.terminate_grace_s)
        except asyncio.TimeoutError:
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()

    async def terminate_all(self) -> None:
        """Terminate every in-flight engine process (used on shutdown)."""
        procs = list(self._processes)
        for proc in procs:
            if proc.returncode is None:
                await self._terminate(proc)
        if procs:
            logger.info(f"Terminated {len(procs)} in-flight {self.name} process(es)")
