"""Execute a generation request and report through the completion channel."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from typing import Any, Awaitable, Callable, Optional, Sequence, TypeVar

from ..config import Settings
from ..gemini import BackendError
from ..schemas.content import (
    SAFETY_SETTINGS,
    Content,
    GenerateContentRequest,
    GenerateContentResponse,
    GenerationConfig,
    Part,
    UsageMetadata,
)
from ..schemas.conversation import Turn
from .attachments import AttachmentResolver
from .cancellation import CancellationToken
from .channel import CompletionHandle
from .history import HistoryBuilder
from .types import (
    ApiKeySelection,
    ClientSelection,
    CodeAssistSelection,
    CompletionFailure,
    CompletionSuccess,
    ProgressSink,
    TextPart,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

ResolverFactory = Callable[[ClientSelection], AttachmentResolver]


class Cancelled(Exception):
    """Internal signal: the cancellation token won a race."""


class _Accumulator:
    __slots__ = ("text", "usage")

    def __init__(self) -> None:
        self.text = ""
        self.usage: Optional[UsageMetadata] = None

    def consume(
        self, response: GenerateContentResponse, handle: CompletionHandle, index: int
    ) -> None:
        if response.usage_metadata is not None:
            self.usage = response.usage_metadata
        for part in response.first_parts():
            if not part.is_text:
                logger.debug("Skipping non-text part for turn %d", index)
                continue
            handle.send(TextPart(index, part.text or "", part.is_thought))
            self.text += part.text or ""


class RequestExecutor:
    """Run one completion: handshake, history, dispatch, stream, terminate."""

    def __init__(
        self,
        resolver_factory: ResolverFactory,
        *,
        settings: Optional[Settings] = None,
        poll_interval: float = 0.1,
        system_prompt: Optional[str] = None,
    ) -> None:
        self._resolver_factory = resolver_factory
        self._settings = settings
        self._poll_interval = poll_interval
        self._system_prompt = system_prompt

    async def run(
        self,
        selection: ClientSelection,
        turns: Sequence[Turn],
        config: GenerationConfig,
        cancel: CancellationToken,
        turn_index: int,
        *,
        streaming: bool,
        allow_upload: bool,
        handle: CompletionHandle,
    ) -> None:
        """Background-task body. Always ends with exactly one terminal report."""

        logger.info("Requesting completion... (history length: %d)", len(turns))

        if self._settings is not None:
            missing = self._settings.missing_credentials()
            if missing:
                logger.error("Cannot request completion: %s", missing)
                handle.error(CompletionFailure(turn_index, missing))
                return

        if isinstance(selection, CodeAssistSelection):
            await self._handshake(selection)
            # The OAuth backend has no file store; attachments are always inlined.
            allow_upload = False

        builder = HistoryBuilder(self._resolver_factory(selection))
        history = await builder.build(
            turns,
            allow_upload=allow_upload,
            progress=ProgressSink(turn_index, handle),
        )

        await self.execute(
            selection,
            history,
            config,
            cancel,
            turn_index,
            streaming=streaming,
            handle=handle,
        )

    async def _handshake(self, selection: CodeAssistSelection) -> None:
        client = selection.client
        try:
            project = await client.load_code_assist()
        except BackendError as exc:
            logger.warning("Code Assist handshake failed: %s", exc)
        else:
            client.set_project_id(project)

        try:
            await client.onboard_user()
        except BackendError as exc:
            logger.warning("Code Assist onboarding warning: %s", exc)

    def build_request(
        self, history: Sequence[Content], config: GenerationConfig
    ) -> GenerateContentRequest:
        system_instruction = None
        if self._system_prompt:
            system_instruction = Content(
                role="user", parts=[Part.from_text(self._system_prompt)]
            )
        return GenerateContentRequest(
            contents=list(history),
            generation_config=config,
            safety_settings=list(SAFETY_SETTINGS),
            system_instruction=system_instruction,
        )

    async def execute(
        self,
        selection: ClientSelection,
        history: Sequence[Content],
        config: GenerationConfig,
        cancel: CancellationToken,
        turn_index: int,
        *,
        streaming: bool,
        handle: CompletionHandle,
    ) -> None:
        if not isinstance(selection, (ApiKeySelection, CodeAssistSelection)):
            raise TypeError(f"Unsupported client selection: {selection!r}")

        request = self.build_request(history, config)
        accumulator = _Accumulator()
        cancelled = False
        try:
            if streaming:
                await self._stream(selection, request, cancel, turn_index, handle, accumulator)
            else:
                logger.info("Sending non-streaming request...")
                response = await self._race(
                    selection.client.generate_content(request), cancel
                )
                logger.info("Non-streaming response received.")
                accumulator.consume(response, handle, turn_index)
        except Cancelled:
            cancelled = True
            logger.info("Generation cancelled by user.")
        except BackendError as exc:
            logger.error("Failed to request completion: %s", exc)
            handle.error(CompletionFailure(turn_index, str(exc)))
            return

        logger.info(
            "Completion request finished. Total response length: %d",
            len(accumulator.text),
        )
        handle.success(
            CompletionSuccess(
                turn_index, accumulator.text, accumulator.usage, cancelled=cancelled
            )
        )

    async def _stream(
        self,
        selection: ClientSelection,
        request: GenerateContentRequest,
        cancel: CancellationToken,
        turn_index: int,
        handle: CompletionHandle,
        accumulator: _Accumulator,
    ) -> None:
        stream = await self._race(selection.client.stream_generate_content(request), cancel)
        logger.info("Reading stream response...")
        try:
            while True:
                try:
                    chunk = await self._race(stream.__anext__(), cancel)
                except StopAsyncIteration:
                    break
                accumulator.consume(chunk, handle, turn_index)
        finally:
            await stream.aclose()

    async def _race(self, operation: Awaitable[T], cancel: CancellationToken) -> T:
        """Await *operation* unless the cancellation token is observed first.

        A lost race cancels the operation, which aborts the underlying HTTP
        request rather than leaving it running in the background.
        """

        op_task: asyncio.Future[Any] = asyncio.ensure_future(operation)
        poll_task = asyncio.ensure_future(cancel.wait(self._poll_interval))
        try:
            done, _ = await asyncio.wait(
                {op_task, poll_task}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            op_task.cancel()
            poll_task.cancel()
            raise

        if poll_task in done:
            op_task.cancel()
            with suppress(asyncio.CancelledError, Exception):
                await op_task
            raise Cancelled()

        poll_task.cancel()
        with suppress(asyncio.CancelledError):
            await poll_task
        return op_task.result()


__all__ = ["Cancelled", "RequestExecutor", "ResolverFactory"]
