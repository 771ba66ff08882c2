"""Attachment resolution: reuse uploaded handles, inline small files, upload large ones."""

from __future__ import annotations

import asyncio
import base64
import logging
import mimetypes
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional, Union

from ..gemini import BackendError
from ..schemas.content import Blob, FileData, Part, RemoteFile
from ..schemas.conversation import Attachment
from .types import FileUploaded, FileUploader, FileUploading, ProgressSink, StatusMessage

logger = logging.getLogger(__name__)


# Hard ceiling for inline payloads accepted by the API in a single request.
INLINE_CEILING_BYTES = 20 * 1024 * 1024

TEXT_EXTENSIONS = frozenset(
    {
        "txt", "md", "rs", "py", "js", "html", "css", "json", "toml",
        "yaml", "log", "csv", "xml",
    }
)

EXTENSION_MIME_OVERRIDES = {
    "pdf": "application/pdf",
    "webp": "image/webp",
    "heic": "image/heic",
    "heif": "image/heif",
    "flac": "audio/flac",
    "opus": "audio/opus",
    "m4a": "audio/mp4",
    "webm": "video/webm",
    "flv": "video/x-flv",
}

UPLOAD_PREFERRED_PREFIXES = ("video/", "audio/")


class AttachmentError(RuntimeError):
    """Base error raised when an attachment cannot be turned into a part."""


class AttachmentReadError(AttachmentError):
    """Raised when the local file cannot be read."""


class AttachmentTooLarge(AttachmentError):
    """Raised when a file is too large to inline and may not be uploaded."""


class AttachmentUploadError(AttachmentError):
    """Raised when uploading the file to the backend fails."""


@dataclass(frozen=True)
class InlinePart:
    part: Part


@dataclass(frozen=True)
class UploadedFile:
    remote_file: RemoteFile

    def to_part(self) -> Part:
        return file_part(self.remote_file)


FileResult = Union[InlinePart, UploadedFile]


def file_part(remote_file: RemoteFile) -> Part:
    return Part(
        file_data=FileData(
            file_uri=remote_file.uri or "",
            mime_type=remote_file.mime_type or "",
        )
    )


def sniff_mime_from_bytes(data: bytes) -> Optional[str]:
    """Guess a mime type from magic bytes for common formats."""

    if not data or len(data) < 12:
        return None
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if data[:3] == b"\xff\xd8\xff":
        return "image/jpeg"
    if data.startswith(b"GIF87a") or data.startswith(b"GIF89a"):
        return "image/gif"
    if data.startswith(b"RIFF") and data[8:12] == b"WEBP":
        return "image/webp"
    if data.startswith(b"RIFF") and data[8:12] == b"WAVE":
        return "audio/wav"
    if data.startswith(b"%PDF"):
        return "application/pdf"
    if b"ftypheic" in data[:64] or b"ftypheif" in data[:64]:
        return "image/heic"
    if data[4:8] == b"ftyp":
        return "video/mp4"
    return None


def guess_mime_type(path: Path, head: bytes = b"") -> str:
    """Return the mime type used for *path* on the wire."""

    extension = path.suffix.lower().lstrip(".")
    if extension in TEXT_EXTENSIONS:
        return "text/plain"
    if extension in EXTENSION_MIME_OVERRIDES:
        return EXTENSION_MIME_OVERRIDES[extension]
    guessed, _ = mimetypes.guess_type(path.name)
    if guessed:
        return guessed
    return sniff_mime_from_bytes(head) or "application/octet-stream"


def should_upload(mime_type: str, size: int, inline_max_bytes: int) -> bool:
    return size > inline_max_bytes or mime_type.startswith(UPLOAD_PREFERRED_PREFIXES)


def _read_head(path: Path, size: int = 64) -> bytes:
    with path.open("rb") as handle:
        return handle.read(size)


@dataclass(frozen=True)
class ConversionPlan:
    path: Path
    mime_type: str
    size: int
    upload: bool


async def plan_conversion(
    path: Path, *, upload: bool, inline_max_bytes: int
) -> ConversionPlan:
    """Inspect the file and decide between inlining and uploading."""

    try:
        size = (await asyncio.to_thread(path.stat)).st_size
        head = await asyncio.to_thread(_read_head, path)
    except OSError as exc:
        raise AttachmentReadError(f"Failed to read {path}: {exc}") from exc

    mime_type = guess_mime_type(path, head)
    wants_upload = upload and should_upload(mime_type, size, inline_max_bytes)
    if not wants_upload and size > INLINE_CEILING_BYTES:
        raise AttachmentTooLarge(
            f"{path.name} is {size} bytes; files over {INLINE_CEILING_BYTES} bytes "
            "must be uploaded"
        )
    return ConversionPlan(path=path, mime_type=mime_type, size=size, upload=wants_upload)


async def convert_file_to_part(
    plan: ConversionPlan, uploader: Optional[FileUploader]
) -> FileResult:
    """Carry out a conversion plan; the upload branch blocks on network I/O."""

    if plan.upload:
        if uploader is None:
            raise AttachmentUploadError("No uploader is available for this backend")
        try:
            remote = await uploader.upload_file(
                plan.path, mime_type=plan.mime_type, display_name=plan.path.name
            )
        except BackendError as exc:
            raise AttachmentUploadError(
                f"Failed to upload {plan.path.name}: {exc}"
            ) from exc
        return UploadedFile(remote)

    try:
        data = await asyncio.to_thread(plan.path.read_bytes)
    except OSError as exc:
        raise AttachmentReadError(f"Failed to read {plan.path}: {exc}") from exc
    encoded = base64.b64encode(data).decode("ascii")
    return InlinePart(Part(inline_data=Blob(mime_type=plan.mime_type, data=encoded)))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AttachmentResolver:
    """Turn one attachment into a part: remote reference, inline bytes or upload."""

    def __init__(
        self,
        uploader: Optional[FileUploader] = None,
        *,
        inline_max_bytes: int = 4 * 1024 * 1024,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._uploader = uploader
        self._inline_max_bytes = inline_max_bytes
        self._clock = clock

    async def resolve(
        self,
        attachment: Attachment,
        *,
        allow_upload: bool,
        progress: Optional[ProgressSink] = None,
        turn_index: int = 0,
    ) -> Part:
        remote = attachment.reusable_remote(self._clock())
        if remote is not None:
            logger.debug("Reusing uploaded file %s for %s", remote.uri, attachment.name)
            return file_part(remote)

        if progress is not None:
            progress.send(
                StatusMessage(progress.turn_index, f"Processing file: {attachment.name}...")
            )

        # Uploads never happen without someone to report them to.
        upload = allow_upload and progress is not None and self._uploader is not None
        plan = await plan_conversion(
            attachment.path, upload=upload, inline_max_bytes=self._inline_max_bytes
        )
        if plan.upload and progress is not None:
            progress.send(FileUploading(turn_index, attachment.path))

        result = await convert_file_to_part(plan, self._uploader)
        if isinstance(result, UploadedFile):
            if progress is not None:
                progress.send(FileUploaded(turn_index, attachment.path, result.remote_file))
            return result.to_part()
        return result.part


__all__ = [
    "AttachmentError",
    "AttachmentReadError",
    "AttachmentResolver",
    "AttachmentTooLarge",
    "AttachmentUploadError",
    "ConversionPlan",
    "FileResult",
    "InlinePart",
    "UploadedFile",
    "convert_file_to_part",
    "file_part",
    "guess_mime_type",
    "plan_conversion",
    "should_upload",
    "sniff_mime_from_bytes",
]
