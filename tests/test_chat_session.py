"""End-to-end tests for the chat session over the background runtime."""

import asyncio
import time
from pathlib import Path
from typing import Iterator
from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import make_response

from chatdesk.chat import ChatSession, make_summary
from chatdesk.completion.types import ApiKeySelection, CodeAssistSelection
from chatdesk.config import Settings
from chatdesk.gemini import GeminiError
from chatdesk.schemas.conversation import Role, Turn
from chatdesk.services.runtime import BackgroundRuntime


class ScriptedStream:
    def __init__(self, chunks) -> None:
        self._chunks = list(chunks)

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self._chunks:
            raise StopAsyncIteration
        await asyncio.sleep(0)
        return self._chunks.pop(0)

    async def aclose(self) -> None:
        self._chunks.clear()


@pytest.fixture
def runtime() -> Iterator[BackgroundRuntime]:
    rt = BackgroundRuntime()
    yield rt
    rt.shutdown()


def wait_until_idle(session: ChatSession, timeout: float = 5.0) -> None:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        session.poll()
        if not session.is_generating:
            session.poll()
            return
        time.sleep(0.01)
    raise AssertionError("completion did not finish in time")


def make_session(settings: Settings, runtime: BackgroundRuntime, client, **kwargs) -> ChatSession:
    return ChatSession(
        settings, runtime, lambda s, model: ApiKeySelection(client), **kwargs
    )


def test_make_summary_uses_first_line_capitalised() -> None:
    assert make_summary("hello world\nsecond line") == "Hello world"
    assert make_summary("a" * 30) == "A" + "a" * 23 + "…"
    assert make_summary("") == ""


def test_send_message_streams_thought_and_answer(settings: Settings, runtime) -> None:
    client = MagicMock()
    client.stream_generate_content = AsyncMock(
        return_value=ScriptedStream(
            [
                make_response({"text": "Considering", "thought": True}),
                make_response({"text": "Answer"}, usage={"totalTokenCount": 4}),
            ]
        )
    )
    session = make_session(settings, runtime, client)

    assert session.send_message("what is up?") is True
    assert session.summary == "What is up?"
    wait_until_idle(session)

    assert [turn.role for turn in session.turns] == [Role.USER, Role.ASSISTANT, Role.ASSISTANT]
    assert session.turns[1].is_thought and session.turns[1].content == "Considering"
    assert session.turns[2].content == "Answer"
    assert session.turns[2].usage is not None
    assert not any(turn.is_generating for turn in session.turns)
    assert session.last_message_preview() == "Answer"


def test_send_message_ignores_empty_input(settings: Settings, runtime) -> None:
    session = make_session(settings, runtime, MagicMock())

    assert session.send_message("") is False
    assert session.turns == []


def test_failure_becomes_error_turn_and_is_removed_on_next_send(
    settings: Settings, runtime
) -> None:
    settings.use_streaming = False
    client = MagicMock()
    client.generate_content = AsyncMock(
        side_effect=[
            GeminiError(404, '{"error": {"code": 404, "status": "NOT_FOUND", "message": "gone"}}'),
            make_response({"text": "recovered"}),
        ]
    )
    alert = MagicMock()
    session = make_session(settings, runtime, client, alert=alert)

    session.send_message("first")
    wait_until_idle(session)

    assert session.turns[1].is_error
    assert "Model Not Found" in session.turns[1].content
    alert.assert_called_once()

    session.retry(1)
    wait_until_idle(session)

    assert [turn.content for turn in session.turns] == ["first", "recovered"]
    assert not any(turn.is_error for turn in session.turns)


def test_stop_keeps_partial_answer(settings: Settings, runtime) -> None:
    gate = asyncio.Event()

    class StallingStream(ScriptedStream):
        async def __anext__(self):
            if self._chunks:
                return self._chunks.pop(0)
            await gate.wait()
            raise StopAsyncIteration

    client = MagicMock()
    client.stream_generate_content = AsyncMock(
        return_value=StallingStream([make_response({"text": "partial"})])
    )
    session = make_session(settings, runtime, client)
    session.send_message("go")

    deadline = time.monotonic() + 5
    while session.turns[1].content != "partial" and time.monotonic() < deadline:
        session.poll()
        time.sleep(0.01)

    session.stop()
    wait_until_idle(session)

    assert session.turns[1].content == "partial"
    assert session.turns[1].is_error is False
    assert session.turns[1].is_generating is False


def test_regenerate_sends_history_up_to_target_with_prefix(settings: Settings, runtime) -> None:
    settings.use_streaming = False
    client = MagicMock()
    client.generate_content = AsyncMock(return_value=make_response({"text": " continued"}))
    session = make_session(settings, runtime, client)
    session.turns.extend(
        [Turn.user("q1"), Turn(role=Role.ASSISTANT, content="old"), Turn.user("q2")]
    )

    assert session.regenerate(1, prefix="Seed") is True
    wait_until_idle(session)

    assert session.turns[1].content == "Seed continued"
    request = client.generate_content.await_args.args[0]
    sent = [[part.text for part in block.parts] for block in request.contents]
    assert sent == [["q1"], ["Seed"]]


def test_delete_is_refused_while_generating(settings: Settings, runtime) -> None:
    gate = asyncio.Event()

    async def blocked(request):
        await gate.wait()

    settings.use_streaming = False
    client = MagicMock()
    client.generate_content = blocked
    session = make_session(settings, runtime, client)
    session.send_message("hold on")

    assert session.delete(0) is False
    session.stop()
    wait_until_idle(session)
    assert session.delete(0) is True


@pytest.mark.asyncio
async def test_count_tokens_includes_draft(settings: Settings, tmp_path: Path) -> None:
    client = MagicMock()
    client.count_tokens = AsyncMock(return_value=17)
    session = make_session(settings, MagicMock(), client)
    session.turns.append(Turn.user("earlier"))

    assert await session.count_tokens("draft text") == 17
    history = client.count_tokens.await_args.args[0]
    assert [block.role for block in history] == ["user", "user"]
    assert history[-1].parts[-1].text == "draft text"


@pytest.mark.asyncio
async def test_count_tokens_unavailable_for_code_assist(settings: Settings) -> None:
    session = ChatSession(
        settings, MagicMock(), lambda s, model: CodeAssistSelection(MagicMock())
    )

    assert await session.count_tokens("draft") is None


def test_retry_after_thought_resends_the_user_question(settings: Settings, runtime) -> None:
    settings.use_streaming = False
    client = MagicMock()
    client.generate_content = AsyncMock(return_value=make_response({"text": "answer"}))
    session = make_session(settings, runtime, client)
    session.turns.extend(
        [
            Turn.user("real question"),
            Turn(role=Role.ASSISTANT, content="my reasoning", is_thought=True),
            Turn(role=Role.ASSISTANT, content="boom", is_error=True),
        ]
    )

    assert session.retry(2) is True
    wait_until_idle(session)

    assert [turn.content for turn in session.turns if turn.is_user] == ["real question"]
    assert [turn.content for turn in session.turns] == ["real question", "answer"]
    request = client.generate_content.await_args.args[0]
    assert [[part.text for part in block.parts] for block in request.contents] == [
        ["real question"]
    ]


def test_retry_without_a_user_turn_is_refused(settings: Settings, runtime) -> None:
    session = make_session(settings, runtime, MagicMock())
    session.turns.append(Turn(role=Role.ASSISTANT, content="boom", is_error=True))

    assert session.retry(0) is False
    assert len(session.turns) == 1


@pytest.mark.asyncio
async def test_count_tokens_skipped_without_credentials(settings: Settings) -> None:
    settings.gemini_api_key = None
    client = MagicMock()
    client.count_tokens = AsyncMock(return_value=5)
    session = make_session(settings, MagicMock(), client)

    assert await session.count_tokens("draft") is None
    client.count_tokens.assert_not_awaited()
