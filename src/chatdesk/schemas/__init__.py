"""Data models for the wire format and the conversation log."""

from .content import (
    SAFETY_SETTINGS,
    Content,
    GenerateContentRequest,
    GenerateContentResponse,
    GenerationConfig,
    Part,
    RemoteFile,
    UsageMetadata,
)
from .conversation import Attachment, AttachmentState, Role, Turn

__all__ = [
    "Attachment",
    "AttachmentState",
    "Content",
    "GenerateContentRequest",
    "GenerateContentResponse",
    "GenerationConfig",
    "Part",
    "RemoteFile",
    "Role",
    "SAFETY_SETTINGS",
    "Turn",
    "UsageMetadata",
]
