"""Conversation log models: turns and their attachments."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from time import monotonic
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .content import RemoteFile, UsageMetadata


class Role(str, Enum):
    USER = "User"
    ASSISTANT = "Assistant"

    @property
    def wire_role(self) -> str:
        return "user" if self is Role.USER else "model"


class AttachmentState(str, Enum):
    PENDING = "pending"
    UPLOADING = "uploading"
    UPLOADED = "uploaded"
    FAILED = "failed"


class Attachment(BaseModel):
    """A local file referenced by a turn, with its upload lifecycle."""

    model_config = ConfigDict(validate_assignment=True)

    path: Path
    state: AttachmentState = AttachmentState.PENDING
    remote_file: Optional[RemoteFile] = None

    @property
    def name(self) -> str:
        return self.path.name

    def mark_uploading(self) -> None:
        self.state = AttachmentState.UPLOADING

    def mark_uploaded(self, remote_file: RemoteFile) -> None:
        self.remote_file = remote_file
        self.state = AttachmentState.UPLOADED

    def mark_failed(self) -> None:
        self.state = AttachmentState.FAILED

    def reusable_remote(self, now: Optional[datetime] = None) -> Optional[RemoteFile]:
        """Return the remote handle if it can be referenced instead of re-sent."""

        if self.state is not AttachmentState.UPLOADED or self.remote_file is None:
            return None
        if not self.remote_file.uri or self.remote_file.is_expired(now):
            return None
        return self.remote_file


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Turn(BaseModel):
    """One message in the conversation log."""

    role: Role = Role.USER
    content: str = ""
    model: str = ""
    attachments: List[Attachment] = Field(default_factory=list)
    is_thought: bool = False
    is_error: bool = False
    usage: Optional[UsageMetadata] = None
    time: datetime = Field(default_factory=_utcnow)
    generation_time: Optional[float] = None

    # runtime-only state, never serialized
    is_generating: bool = Field(default=False, exclude=True)
    requested_at: float = Field(default_factory=monotonic, exclude=True)
    status_message: Optional[str] = Field(default=None, exclude=True)

    @classmethod
    def user(
        cls, content: str, model: str = "", attachments: Optional[List[Attachment]] = None
    ) -> "Turn":
        return cls(
            role=Role.USER,
            content=content,
            model=model,
            attachments=list(attachments or []),
        )

    @classmethod
    def assistant(cls, content: str = "", model: str = "") -> "Turn":
        return cls(role=Role.ASSISTANT, content=content, model=model, is_generating=True)

    @property
    def is_user(self) -> bool:
        return self.role is Role.USER

    @property
    def is_empty(self) -> bool:
        return not self.content and not self.attachments

    def elapsed(self) -> float:
        return monotonic() - self.requested_at

    def stop_generating(self) -> None:
        """Stop the turn's timer and record how long generation took."""

        self.is_generating = False
        self.generation_time = self.elapsed()
        self.status_message = None

    def find_attachment(self, path: Path) -> Optional[Attachment]:
        for attachment in self.attachments:
            if attachment.path == path:
                return attachment
        return None


__all__ = ["Attachment", "AttachmentState", "Role", "Turn"]
