"""Tests for attachment resolution and upload reuse."""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from chatdesk.completion import attachments
from chatdesk.completion.attachments import (
    AttachmentResolver,
    AttachmentTooLarge,
    AttachmentUploadError,
    guess_mime_type,
    plan_conversion,
)
from chatdesk.completion.channel import CompletionChannel
from chatdesk.completion.types import FileUploaded, FileUploading, ProgressSink, StatusMessage
from chatdesk.gemini import GeminiError
from chatdesk.schemas.content import RemoteFile
from chatdesk.schemas.conversation import Attachment, AttachmentState

NOW = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


def uploaded(path: Path, expires: datetime) -> Attachment:
    attachment = Attachment(path=path)
    attachment.mark_uploaded(
        RemoteFile(
            name="files/abc",
            uri="https://example.com/files/abc",
            mime_type="text/plain",
            expiration_time=expires,
        )
    )
    return attachment


def make_sink() -> tuple[CompletionChannel, ProgressSink]:
    channel = CompletionChannel()
    channel.activate()
    return channel, ProgressSink(1, channel.handle())


@pytest.mark.asyncio
async def test_unexpired_upload_is_reused_without_network(tmp_path: Path) -> None:
    path = tmp_path / "notes.txt"
    path.write_text("hello")
    uploader = AsyncMock()
    resolver = AttachmentResolver(uploader, inline_max_bytes=1, clock=lambda: NOW)
    _, sink = make_sink()

    part = await resolver.resolve(
        uploaded(path, NOW + timedelta(hours=1)), allow_upload=True, progress=sink
    )

    uploader.upload_file.assert_not_awaited()
    assert part.file_data is not None
    assert part.file_data.file_uri == "https://example.com/files/abc"


@pytest.mark.asyncio
async def test_expired_upload_is_uploaded_again(tmp_path: Path) -> None:
    path = tmp_path / "notes.txt"
    path.write_text("hello world")
    fresh = RemoteFile(
        name="files/new", uri="https://example.com/files/new", mime_type="text/plain"
    )
    uploader = AsyncMock()
    uploader.upload_file.return_value = fresh
    resolver = AttachmentResolver(uploader, inline_max_bytes=4, clock=lambda: NOW)
    channel, sink = make_sink()

    attachment = uploaded(path, NOW - timedelta(minutes=1))
    part = await resolver.resolve(attachment, allow_upload=True, progress=sink, turn_index=0)

    uploader.upload_file.assert_awaited_once()
    assert part.file_data is not None
    assert part.file_data.file_uri == "https://example.com/files/new"

    events: list = []
    channel.extract(events.append)
    assert events == [
        StatusMessage(1, "Processing file: notes.txt..."),
        FileUploading(0, path),
        FileUploaded(0, path, fresh),
    ]
    # state changes are left to whoever applies the events
    assert attachment.state is AttachmentState.UPLOADED


@pytest.mark.asyncio
async def test_small_file_is_inlined_even_when_upload_allowed(tmp_path: Path) -> None:
    path = tmp_path / "tiny.md"
    path.write_text("# hi")
    uploader = AsyncMock()
    resolver = AttachmentResolver(uploader)
    channel, sink = make_sink()

    part = await resolver.resolve(Attachment(path=path), allow_upload=True, progress=sink)

    uploader.upload_file.assert_not_awaited()
    assert part.inline_data is not None
    events: list = []
    channel.extract(events.append)
    assert not any(isinstance(event, FileUploading) for event in events)


@pytest.mark.asyncio
async def test_upload_failure_is_an_attachment_error(tmp_path: Path) -> None:
    path = tmp_path / "big.txt"
    path.write_text("x" * 64)
    uploader = AsyncMock()
    uploader.upload_file.side_effect = GeminiError(500, "boom")
    resolver = AttachmentResolver(uploader, inline_max_bytes=8)
    _, sink = make_sink()

    with pytest.raises(AttachmentUploadError):
        await resolver.resolve(Attachment(path=path), allow_upload=True, progress=sink)


@pytest.mark.asyncio
async def test_oversized_inline_payload_is_rejected(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(attachments, "INLINE_CEILING_BYTES", 4)
    path = tmp_path / "big.txt"
    path.write_text("too large")

    with pytest.raises(AttachmentTooLarge):
        await plan_conversion(path, upload=False, inline_max_bytes=1024)


def test_guess_mime_type_prefers_text_extensions_and_sniffs_unknown(tmp_path: Path) -> None:
    assert guess_mime_type(Path("main.rs")) == "text/plain"
    assert guess_mime_type(Path("scan.pdf")) == "application/pdf"
    png_head = b"\x89PNG\r\n\x1a\n" + b"\x00" * 8
    assert guess_mime_type(Path("blob.unknownext"), png_head) == "image/png"
    assert guess_mime_type(Path("blob.unknownext"), b"") == "application/octet-stream"
