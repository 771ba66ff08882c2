"""Streaming completion controller."""

from .assembler import AlertSink, ConversationAssembler, ResponsePhase, Severity
from .attachments import AttachmentError, AttachmentResolver
from .cancellation import CancellationToken
from .channel import ChannelInactiveError, CompletionChannel, CompletionHandle
from .diagnosis import diagnose_error
from .executor import RequestExecutor
from .history import ExtraTurn, HistoryBuilder, fold_thoughts
from .types import (
    ApiKeySelection,
    ClientSelection,
    CodeAssistSelection,
    CompletionCancelled,
    CompletionFailure,
    CompletionSuccess,
    FileUploaded,
    FileUploading,
    ProgressEvent,
    StatusMessage,
    TaskFailure,
    TextPart,
)

__all__ = [
    "AlertSink",
    "ApiKeySelection",
    "AttachmentError",
    "AttachmentResolver",
    "CancellationToken",
    "ChannelInactiveError",
    "ClientSelection",
    "CodeAssistSelection",
    "CompletionCancelled",
    "CompletionChannel",
    "CompletionFailure",
    "CompletionHandle",
    "CompletionSuccess",
    "ConversationAssembler",
    "ExtraTurn",
    "FileUploaded",
    "FileUploading",
    "HistoryBuilder",
    "ProgressEvent",
    "RequestExecutor",
    "ResponsePhase",
    "Severity",
    "StatusMessage",
    "TaskFailure",
    "TextPart",
    "diagnose_error",
    "fold_thoughts",
]
