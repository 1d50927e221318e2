import json
import sys
import textwrap
import time

import pytest

from wabridge.engine.runner import (
    EngineProcessError,
    EngineRequest,
    EngineRunner,
    EngineStartError,
    EngineTimeout,
)


def _engine(script: str, **kwargs) -> EngineRunner:
    """Engine whose 'binary' is a Python one-off script; CLI args land in sys.argv."""
    return EngineRunner(command=[sys.executable, "-c", textwrap.dedent(script)], **kwargs)


def _request(tmp_path, **kwargs) -> EngineRequest:
    return EngineRequest(prompt="hi", cwd=str(tmp_path), **kwargs)


def _emit(*records) -> str:
    lines = "\n".join(f"print({json.dumps(json.dumps(r))}, flush=True)" for r in records)
    return f"import sys, time\n{lines}\n"


def test_build_args():
    runner = EngineRunner(command="claude")
    request = EngineRequest(
        prompt="hello",
        allowed_tools=("Bash", "Read", "Bash"),
        system_prompt_append="Be brief.",
        max_turns=4,
    )
    assert runner.build_args(request) == [
        "claude", "-p", "hello",
        "--output-format", "stream-json", "--verbose",
        "--allowedTools", "Bash,Read",
        "--append-system-prompt", "Be brief.",
        "--max-turns", "4",
    ]


def test_build_args_json_mode_without_options():
    runner = EngineRunner(command="claude", output_format="json")
    request = EngineRequest(prompt="hello", allowed_tools=())
    assert runner.build_args(request) == ["claude", "-p", "hello", "--output-format", "json"]


@pytest.mark.asyncio
async def test_stream_result_overrides_assembled_text(tmp_path):
    engine = _engine(
        _emit(
            {"type": "system", "subtype": "init"},
            {"type": "assistant", "message": {"content": [
                {"type": "text", "text": "draft"},
                {"type": "tool_use", "name": "Bash", "input": {"command": "ls"}},
            ]}},
            {"type": "result", "result": "final answer", "session_id": "sess-9", "total_cost_usd": 0.5},
        )
    )
    response = await engine.submit(_request(tmp_path))
    assert response.text == "final answer"
    assert response.session_id == "sess-9"
    assert response.cost == 0.5
    assert response.returncode == 0


@pytest.mark.asyncio
async def test_deltas_are_assembled_and_streamed(tmp_path):
    engine = _engine(
        _emit(
            {"type": "stream_event", "event": {"type": "content_block_delta", "delta": {"text": "Hel"}}},
            {"type": "stream_event", "event": {"type": "content_block_delta", "delta": {"text": "lo"}}},
            {"type": "assistant", "message": {"content": [{"type": "text", "text": "Hello"}]}},
        )
    )
    seen = []
    response = await engine.submit(_request(tmp_path), on_text=seen.append)
    assert response.text == "Hello"
    assert seen == ["Hel", "lo"]
    assert response.session_id is None


@pytest.mark.asyncio
async def test_non_streaming_single_json_object(tmp_path):
    engine = _engine(_emit({"type": "result", "result": "one shot", "session_id": "abc"}))
    response = await engine.submit(_request(tmp_path))
    assert response.text == "one shot"
    assert response.session_id == "abc"


@pytest.mark.asyncio
async def test_raw_lines_pass_through(tmp_path):
    engine = _engine("print('plain line one')\nprint('plain line two')\n")
    response = await engine.submit(_request(tmp_path))
    assert response.text == "plain line one\nplain line two"


@pytest.mark.asyncio
async def test_nonzero_exit_after_result_is_partial_success(tmp_path):
    engine = _engine(_emit({"type": "result", "result": "partial but useful"}) + "sys.exit(1)\n")
    response = await engine.submit(_request(tmp_path))
    assert response.text == "partial but useful"
    assert response.returncode == 1


@pytest.mark.asyncio
async def test_nonzero_exit_without_output_fails_with_stderr(tmp_path):
    engine = _engine("import sys\nsys.stderr.write('boom')\nsys.exit(3)\n")
    with pytest.raises(EngineProcessError) as exc_info:
        await engine.submit(_request(tmp_path))
    assert exc_info.value.returncode == 3
    assert exc_info.value.stderr == "boom"
    assert "exited with code 3: boom" in str(exc_info.value)


@pytest.mark.asyncio
async def test_clean_exit_without_stdout_falls_back_to_stderr(tmp_path):
    engine = _engine("import sys\nsys.stderr.write('only stderr')\n")
    response = await engine.submit(_request(tmp_path))
    assert response.text == "only stderr"


@pytest.mark.asyncio
async def test_timeout_terminates_process(tmp_path):
    engine = _engine("import time\ntime.sleep(30)\n", terminate_grace_s=2.0)
    started = time.monotonic()
    with pytest.raises(EngineTimeout, match="timed out after 300ms"):
        await engine.submit(_request(tmp_path, timeout_ms=300))
    assert time.monotonic() - started < 5.0
    assert engine.in_flight == 0


@pytest.mark.asyncio
async def test_result_ends_stream_even_if_process_lingers(tmp_path):
    engine = _engine(
        _emit({"type": "result", "result": "done early"}) + "time.sleep(30)\n",
        result_grace_s=0.2,
        terminate_grace_s=2.0,
    )
    started = time.monotonic()
    response = await engine.submit(_request(tmp_path, timeout_ms=20_000))
    assert response.text == "done early"
    assert time.monotonic() - started < 5.0


@pytest.mark.asyncio
async def test_missing_binary_raises_start_error(tmp_path):
    engine = EngineRunner(command="wabridge-no-such-engine-binary")
    with pytest.raises(EngineStartError, match="Failed to start"):
        await engine.submit(_request(tmp_path))


@pytest.mark.asyncio
async def test_stdin_is_closed_and_ci_env_set(tmp_path):
    engine = _engine(
        "import os, sys\n"
        "data = sys.stdin.read()\n"
        "print(f'stdin={data!r} ci={os.environ.get(\"CI\")} cwd={os.getcwd()}')\n"
    )
    response = await engine.submit(_request(tmp_path))
    assert "stdin=''" in response.text
    assert "ci=true" in response.text
    assert str(tmp_path.resolve()) in response.text


@pytest.mark.asyncio
async def test_assistant_text_blocks_are_appended_without_separator(tmp_path):
    engine = _engine(
        _emit(
            {"type": "assistant", "message": {"content": [{"type": "text", "text": "Hello "}]}},
            {"type": "assistant", "message": {"content": [{"type": "text", "text": "world"}]}},
        )
        + "sys.exit(1)\n"
    )
    response = await engine.submit(_request(tmp_path))
    assert response.text == "Hello world"
    assert response.returncode == 1


@pytest.mark.asyncio
async def test_error_result_is_flagged_but_still_returned(tmp_path):
    engine = _engine(
        _emit({"type": "result", "result": "Reached max turns", "is_error": True})
    )
    response = await engine.submit(_request(tmp_path))
    assert response.text == "Reached max turns"
    assert response.is_error is True
