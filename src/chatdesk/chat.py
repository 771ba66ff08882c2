"""Chat session: owns one conversation log and drives completions for it."""

from __future__ import annotations

import concurrent.futures
import logging
from pathlib import Path
from time import monotonic
from typing import TYPE_CHECKING, Callable, Iterable, List, Optional, Sequence

from .completion import (
    AlertSink,
    ApiKeySelection,
    AttachmentResolver,
    CancellationToken,
    ClientSelection,
    CompletionChannel,
    ConversationAssembler,
    ExtraTurn,
    HistoryBuilder,
    RequestExecutor,
    fold_thoughts,
)
from .completion.types import TokenCounter
from .schemas.content import GenerationConfig
from .schemas.conversation import Attachment, Role, Turn
from .services.export import ExportFormat, export_turns

if TYPE_CHECKING:
    from .config import Settings
    from .services.runtime import BackgroundRuntime

logger = logging.getLogger(__name__)

ClientFactory = Callable[["Settings", str], ClientSelection]

MAX_SUMMARY_LENGTH = 24


def make_summary(prompt: str) -> str:
    """First line of *prompt*, capitalised and clipped for a sidebar title."""

    first_line = prompt.split("\n", 1)[0]
    summary = first_line[:1].upper() + first_line[1:MAX_SUMMARY_LENGTH]
    if len(first_line) > MAX_SUMMARY_LENGTH:
        summary += "…"
    return summary


def _as_attachments(files: Iterable[Path | Attachment]) -> List[Attachment]:
    return [f if isinstance(f, Attachment) else Attachment(path=Path(f)) for f in files]


class ChatSession:
    """Foreground owner of a chat's turns.

    Only the foreground thread touches :attr:`turns`. Background completions
    report through the chat's channel and :meth:`poll` applies what they sent.
    """

    def __init__(
        self,
        settings: "Settings",
        runtime: "BackgroundRuntime",
        client_factory: ClientFactory,
        *,
        alert: Optional[AlertSink] = None,
        chat_id: int = 0,
        model: Optional[str] = None,
        generation_config: Optional[GenerationConfig] = None,
    ) -> None:
        self.settings = settings
        self.model = model or settings.default_model
        self.generation_config = generation_config or GenerationConfig()
        self.turns: List[Turn] = []
        self.summary = ""
        # compose state
        self.chatbox = ""
        self.files: List[Attachment] = []

        self._runtime = runtime
        self._client_factory = client_factory
        self._channel = CompletionChannel(chat_id)
        self._cancel = CancellationToken()
        self._assembler = ConversationAssembler(self.turns, alert)
        self._executor = RequestExecutor(
            self._make_resolver,
            settings=settings,
            poll_interval=settings.cancel_poll_interval,
            system_prompt=settings.system_prompt,
        )
        self._future: Optional[concurrent.futures.Future] = None

    @property
    def id(self) -> int:
        return self._channel.id

    @property
    def is_generating(self) -> bool:
        return self._channel.is_active

    def _make_resolver(self, selection: ClientSelection) -> AttachmentResolver:
        uploader = selection.client if isinstance(selection, ApiKeySelection) else None
        return AttachmentResolver(
            uploader,  # type: ignore[arg-type]
            inline_max_bytes=self.settings.inline_max_bytes,
        )

    # Actions

    def send_message(
        self,
        text: Optional[str] = None,
        attachments: Optional[Iterable[Path | Attachment]] = None,
    ) -> bool:
        """Append a user turn plus a placeholder and start a completion.

        Falls back to the compose state when no arguments are given. Returns
        ``False`` when there is nothing to send or a completion is running.
        """

        if text is not None:
            self.chatbox = text
        if attachments is not None:
            self.files = _as_attachments(attachments)
        if not self.chatbox and not self.files:
            return False
        if self.is_generating:
            logger.warning("Chat %d is still generating; message not sent", self.id)
            return False

        self.turns[:] = [turn for turn in self.turns if not turn.is_error]

        prompt = self.chatbox.rstrip()
        self.turns.append(Turn.user(prompt, self.model, self.files))
        if not self.summary:
            self.summary = make_summary(prompt)
        self.chatbox = ""
        self.files = []

        self.turns.append(Turn.assistant(model=self.model))
        self._spawn()
        return True

    def regenerate(self, index: int, prefix: str = "") -> bool:
        """Rewrite the assistant turn at *index*, optionally seeded with *prefix*."""

        if self.is_generating:
            return False
        turn = self.turns[index]
        if turn.role is not Role.ASSISTANT:
            raise ValueError(f"Turn {index} is not an assistant turn")

        turn.content = prefix
        turn.model = self.model
        turn.is_thought = False
        turn.is_error = False
        turn.usage = None
        turn.generation_time = None
        turn.is_generating = True
        turn.requested_at = monotonic()
        self._spawn(index)
        return True

    def retry(self, index: int) -> bool:
        """Resend the user turn that prompted the (failed) response at *index*.

        Every turn from that user turn up to *index*, thoughts included, is
        dropped before the message is sent again.
        """

        if self.is_generating:
            return False
        start = next(
            (i for i in range(index - 1, -1, -1) if self.turns[i].is_user), None
        )
        if start is None:
            return False
        prompt = self.turns[start]
        self.chatbox = prompt.content
        self.files = [a.model_copy() for a in prompt.attachments]
        del self.turns[start : index + 1]
        return self.send_message()

    def delete(self, index: int) -> bool:
        if self.is_generating:
            logger.warning("Refusing to delete turn %d while generating", index)
            return False
        del self.turns[index]
        return True

    def stop(self) -> None:
        """Ask the in-flight completion to stop early."""

        if self.is_generating:
            logger.info("Stopping generation for chat %d", self.id)
            self._cancel.cancel()

    def poll(self) -> bool:
        """Apply everything the background task has reported so far."""

        return self._assembler.drain(self._channel)

    # Background work

    def _spawn(self, target_index: Optional[int] = None) -> None:
        index = len(self.turns) - 1 if target_index is None else target_index
        snapshot = [turn.model_copy(deep=True) for turn in self.turns[: index + 1]]
        if self.settings.include_thoughts_in_history:
            snapshot = fold_thoughts(snapshot)

        selection = self._client_factory(self.settings, self.model)
        self._cancel.reset()
        self._assembler.begin_response(index)
        self._channel.activate()

        coro = self._executor.run(
            selection,
            snapshot,
            self.generation_config,
            self._cancel,
            index,
            streaming=self.settings.use_streaming,
            allow_upload=self.settings.public_file_upload,
            handle=self._channel.handle(),
        )
        self._future = self._runtime.submit(coro)
        self._channel.watch(self._future, index)

    async def count_tokens(
        self,
        text: str = "",
        attachments: Sequence[Path | Attachment] = (),
    ) -> Optional[int]:
        """Token count of the log plus a draft.

        ``None`` when the backend cannot count or credentials are missing.
        """

        missing = self.settings.missing_credentials()
        if missing:
            logger.info("Token count unavailable: %s", missing)
            return None
        selection = self._client_factory(self.settings, self.model)
        if not isinstance(selection, ApiKeySelection):
            return None
        if not isinstance(selection.client, TokenCounter):
            return None
        counter: TokenCounter = selection.client

        snapshot = [turn.model_copy(deep=True) for turn in self.turns]
        builder = HistoryBuilder(self._make_resolver(selection))
        history = await builder.build(
            snapshot, ExtraTurn(text, _as_attachments(attachments))
        )
        if not history:
            return 0
        return await counter.count_tokens(history)

    # Presentation helpers

    def last_message_preview(self) -> Optional[str]:
        for turn in reversed(self.turns):
            if not turn.content:
                continue
            return f"You: {turn.content}" if turn.is_user else turn.content
        return None

    def export(self, path: Path, fmt: Optional[ExportFormat] = None) -> str:
        return export_turns(self.turns, fmt or ExportFormat.from_path(path), path)


__all__ = ["ChatSession", "ClientFactory", "make_summary"]
