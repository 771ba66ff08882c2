"""Type definitions for the completion subsystem."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Protocol, Sequence, Union, runtime_checkable

from ..schemas.content import (
    Content,
    GenerateContentRequest,
    GenerateContentResponse,
    RemoteFile,
    UsageMetadata,
)

if TYPE_CHECKING:
    from ..code_assist import CodeAssistClient
    from ..gemini import ResponseStream
    from .channel import CompletionHandle


class GenerationBackend(Protocol):
    async def generate_content(
        self, request: GenerateContentRequest
    ) -> GenerateContentResponse:
        ...

    async def stream_generate_content(
        self, request: GenerateContentRequest
    ) -> "ResponseStream":
        ...


class FileUploader(Protocol):
    async def upload_file(
        self, path: Path, *, mime_type: str, display_name: Optional[str] = None
    ) -> RemoteFile:
        ...


@runtime_checkable
class TokenCounter(Protocol):
    async def count_tokens(self, contents: Sequence[Content]) -> int:
        ...


# Progress events. Every event names the turn it targets.


@dataclass(frozen=True)
class TextPart:
    turn_index: int
    text: str
    is_thought: bool = False


@dataclass(frozen=True)
class StatusMessage:
    turn_index: int
    text: str


@dataclass(frozen=True)
class FileUploading:
    turn_index: int
    path: Path


@dataclass(frozen=True)
class FileUploaded:
    turn_index: int
    path: Path
    remote_file: RemoteFile


ProgressEvent = Union[TextPart, StatusMessage, FileUploading, FileUploaded]


# Terminal outcomes.


@dataclass(frozen=True)
class CompletionSuccess:
    turn_index: int
    text: str
    usage: Optional[UsageMetadata] = None
    cancelled: bool = False


@dataclass(frozen=True)
class CompletionFailure:
    turn_index: int
    error_text: str


@dataclass(frozen=True)
class CompletionCancelled:
    """The background task was cancelled before it reported an outcome."""

    turn_index: Optional[int] = None


@dataclass(frozen=True)
class TaskFailure:
    """The background task died without reporting an outcome."""

    error_text: str
    turn_index: Optional[int] = None


CompletionResult = Union[CompletionSuccess, CompletionFailure, CompletionCancelled]
TerminalOutcome = Union[CompletionResult, TaskFailure]


@dataclass(frozen=True)
class ProgressSink:
    """Where progress for a turn should be reported."""

    turn_index: int
    handle: "CompletionHandle"

    def send(self, event: ProgressEvent) -> None:
        self.handle.send(event)


@dataclass(frozen=True)
class ApiKeySelection:
    client: GenerationBackend


@dataclass(frozen=True)
class CodeAssistSelection:
    client: "CodeAssistClient"


ClientSelection = Union[ApiKeySelection, CodeAssistSelection]


__all__ = [
    "ApiKeySelection",
    "ClientSelection",
    "CodeAssistSelection",
    "CompletionCancelled",
    "CompletionFailure",
    "CompletionResult",
    "CompletionSuccess",
    "FileUploaded",
    "FileUploader",
    "FileUploading",
    "GenerationBackend",
    "ProgressEvent",
    "ProgressSink",
    "StatusMessage",
    "TaskFailure",
    "TerminalOutcome",
    "TextPart",
    "TokenCounter",
]
