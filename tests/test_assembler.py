"""Tests for applying channel output to the conversation log."""

from pathlib import Path
from unittest.mock import MagicMock

from chatdesk.completion.assembler import ConversationAssembler, ResponsePhase, Severity
from chatdesk.completion.channel import CompletionChannel
from chatdesk.completion.diagnosis import ALERT_TITLE
from chatdesk.completion.types import (
    CompletionCancelled,
    CompletionFailure,
    CompletionSuccess,
    FileUploaded,
    FileUploading,
    StatusMessage,
    TaskFailure,
    TextPart,
)
from chatdesk.schemas.content import RemoteFile, UsageMetadata
from chatdesk.schemas.conversation import Attachment, AttachmentState, Turn


def conversation() -> list[Turn]:
    return [Turn.user("question"), Turn.assistant(model="gemini-test")]


def test_thought_then_answer_splits_into_two_turns() -> None:
    turns = conversation()
    assembler = ConversationAssembler(turns)
    context = assembler.begin_response(1)

    assembler.apply_progress(TextPart(1, "abc", is_thought=True))
    assert turns[1].is_thought and turns[1].is_generating
    assert context.phase is ResponsePhase.THINKING

    assembler.apply_progress(TextPart(1, "def", is_thought=False))

    assert len(turns) == 3
    thought, answer = turns[1], turns[2]
    assert thought.is_thought and thought.content == "abc"
    assert thought.is_generating is False
    assert thought.generation_time is not None
    assert answer.content == "def"
    assert answer.is_thought is False
    assert answer.is_generating is True
    assert answer.model == "gemini-test"

    assembler.apply_terminal(CompletionSuccess(1, "abcdef"))
    assembler.ensure_trailing_stopped()
    assert answer.is_generating is False


def test_plain_answer_appends_in_place() -> None:
    turns = conversation()
    assembler = ConversationAssembler(turns)
    assembler.begin_response(1)

    assembler.apply_progress(TextPart(1, "Hel"))
    assembler.apply_progress(TextPart(1, "lo"))

    assert len(turns) == 2
    assert turns[1].content == "Hello"


def test_text_clears_status_message() -> None:
    turns = conversation()
    assembler = ConversationAssembler(turns)
    assembler.begin_response(1)

    assembler.apply_progress(StatusMessage(1, "Processing file: a.png..."))
    assert turns[1].status_message == "Processing file: a.png..."

    assembler.apply_progress(TextPart(1, "hi"))
    assert turns[1].status_message is None


def test_success_records_usage_on_answer_turn() -> None:
    turns = conversation()
    assembler = ConversationAssembler(turns)
    assembler.begin_response(1)
    usage = UsageMetadata(prompt_token_count=1, candidates_token_count=2, total_token_count=3)

    assembler.apply_progress(TextPart(1, "thinking", is_thought=True))
    assembler.apply_progress(TextPart(1, "answer"))
    assembler.apply_terminal(CompletionSuccess(1, "thinkinganswer", usage))

    assert turns[2].usage == usage
    assert turns[1].usage is None


def test_trailing_turn_is_stopped_when_terminal_targets_earlier_index() -> None:
    turns = conversation()
    assembler = ConversationAssembler(turns)
    turns.append(Turn.assistant("late answer"))
    channel = CompletionChannel()
    channel.activate()
    channel.handle().success(CompletionSuccess(1, ""))

    assert assembler.drain(channel) is True

    assert turns[-1].is_generating is False
    assert turns[1].is_generating is False


def test_failure_is_diagnosed_and_alerted() -> None:
    turns = conversation()
    alert = MagicMock()
    assembler = ConversationAssembler(turns, alert)
    assembler.begin_response(1)
    raw = 'HTTP 429: {\\"error\\": {\\"code\\": 429, \\"status\\": \\"RESOURCE_EXHAUSTED\\", \\"message\\": \\"Please retry in 7s.\\"}}'

    assembler.apply_terminal(CompletionFailure(1, raw))

    turn = turns[1]
    assert turn.is_error
    assert turn.is_generating is False
    assert "Quota Exhausted" in turn.content
    assert "retry in 7s." in turn.content
    alert.assert_called_once_with(ALERT_TITLE, turn.content, Severity.ERROR)


def test_task_failure_without_index_targets_trailing_turn() -> None:
    turns = conversation()
    assembler = ConversationAssembler(turns)

    assembler.apply_terminal(TaskFailure("Background task failed unexpectedly: boom"))

    assert turns[1].is_error
    assert turns[1].content == "Background task failed unexpectedly: boom"


def test_cancelled_task_stops_without_error() -> None:
    turns = conversation()
    assembler = ConversationAssembler(turns)
    assembler.begin_response(1)
    assembler.apply_progress(TextPart(1, "partial"))

    assembler.apply_terminal(CompletionCancelled(1))

    assert turns[1].is_generating is False
    assert turns[1].is_error is False
    assert turns[1].content == "partial"


def test_upload_events_drive_attachment_state(tmp_path: Path) -> None:
    path = tmp_path / "movie.mp4"
    other = tmp_path / "other.mp4"
    turns = [
        Turn.user("watch", attachments=[Attachment(path=path), Attachment(path=other)]),
        Turn.assistant(),
    ]
    assembler = ConversationAssembler(turns)
    assembler.begin_response(1)
    remote = RemoteFile(name="files/1", uri="https://example.com/files/1")

    assembler.apply_progress(FileUploading(0, path))
    assembler.apply_progress(FileUploading(0, other))
    assert turns[0].attachments[0].state is AttachmentState.UPLOADING

    assembler.apply_progress(FileUploaded(0, path, remote))
    assert turns[0].attachments[0].state is AttachmentState.UPLOADED
    assert turns[0].attachments[0].remote_file == remote

    assembler.apply_terminal(CompletionSuccess(1, ""))
    assert turns[0].attachments[1].state is AttachmentState.FAILED


def test_updates_for_missing_turns_are_dropped() -> None:
    turns = conversation()
    assembler = ConversationAssembler(turns)

    assembler.apply_progress(StatusMessage(9, "nobody home"))
    assembler.apply_progress(TextPart(9, "lost"))

    assert [turn.content for turn in turns] == ["question", ""]
