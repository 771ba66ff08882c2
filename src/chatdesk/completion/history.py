"""Convert the conversation log into role-grouped content blocks."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

from ..schemas.content import Content, Part
from ..schemas.conversation import Attachment, Role, Turn
from .attachments import AttachmentError, AttachmentResolver
from .types import ProgressSink, StatusMessage

logger = logging.getLogger(__name__)

THOUGHT_PREFIX = "MY INNER REFLECTIONS: "
THOUGHT_SUFFIX = "--- end of inner reflections ---\n"


@dataclass
class ExtraTurn:
    """Content that is not in the log yet, e.g. the compose box."""

    text: str = ""
    attachments: list[Attachment] = field(default_factory=list)


def fold_thoughts(turns: Sequence[Turn]) -> list[Turn]:
    """Return copies of *turns* with completed thoughts folded into plain context."""

    folded: list[Turn] = []
    for turn in turns:
        if turn.is_thought and not turn.is_generating:
            turn = turn.model_copy(
                update={
                    "is_thought": False,
                    "content": f"{THOUGHT_PREFIX}{turn.content}{THOUGHT_SUFFIX}",
                }
            )
        folded.append(turn)
    return folded


class HistoryBuilder:
    """Build the request history, merging consecutive turns of the same role."""

    def __init__(self, resolver: AttachmentResolver) -> None:
        self._resolver = resolver

    async def build(
        self,
        turns: Sequence[Turn],
        extra: Optional[ExtraTurn] = None,
        *,
        allow_upload: bool = False,
        progress: Optional[ProgressSink] = None,
    ) -> list[Content]:
        history: list[Content] = []
        buffer: list[Part] = []
        active_role: Optional[Role] = None

        for index, turn in enumerate(turns):
            if turn.is_thought or turn.is_empty:
                continue

            if active_role is not None and active_role is not turn.role and buffer:
                history.append(Content(role=active_role.wire_role, parts=buffer))
                buffer = []
            active_role = turn.role

            await self._resolve_attachments(
                turn.attachments,
                buffer,
                allow_upload=allow_upload,
                progress=progress,
                turn_index=index,
            )
            if turn.content:
                buffer.append(Part.from_text(turn.content))

        if buffer and active_role is not None:
            history.append(Content(role=active_role.wire_role, parts=buffer))

        if extra is not None:
            extra_parts: list[Part] = []
            # Never uploaded and never reported: used for live token counting.
            await self._resolve_attachments(
                extra.attachments, extra_parts, allow_upload=False, progress=None
            )
            if extra.text:
                extra_parts.append(Part.from_text(extra.text))
            if extra_parts:
                history.append(Content(role=Role.USER.wire_role, parts=extra_parts))

        if progress is not None:
            progress.send(StatusMessage(progress.turn_index, ""))

        return history

    async def _resolve_attachments(
        self,
        attachments: Sequence[Attachment],
        buffer: list[Part],
        *,
        allow_upload: bool,
        progress: Optional[ProgressSink],
        turn_index: int = 0,
    ) -> None:
        for attachment in attachments:
            try:
                part = await self._resolver.resolve(
                    attachment,
                    allow_upload=allow_upload,
                    progress=progress,
                    turn_index=turn_index,
                )
            except AttachmentError as exc:
                logger.error("Failed to process file %s: %s", attachment.path, exc)
                continue
            buffer.append(part)


__all__ = [
    "ExtraTurn",
    "HistoryBuilder",
    "THOUGHT_PREFIX",
    "THOUGHT_SUFFIX",
    "fold_thoughts",
]
