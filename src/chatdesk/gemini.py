"""Generative-language API client (API key protocol)."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncGenerator, Callable, Iterable, Mapping, Optional, Sequence

import httpx

from .config import Settings
from .schemas.content import (
    Content,
    GenerateContentRequest,
    GenerateContentResponse,
    RemoteFile,
)

logger = logging.getLogger(__name__)

_BAD_GATEWAY = httpx.codes.BAD_GATEWAY.value


class BackendError(Exception):
    """Wrap transport or API failures when communicating with a backend.

    The string form keeps the raw response body so that callers can look for
    an embedded JSON error object.
    """

    def __init__(self, status_code: int, detail: Any):
        super().__init__(f"HTTP {status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail


class GeminiError(BackendError):
    """Failure reported by the API-key backend."""


@dataclass
class ServerSentEvent:
    """Represents a parsed Server-Sent Event."""

    data: str
    event: str = "message"
    event_id: Optional[str] = None


async def iter_events(response: httpx.Response) -> AsyncGenerator[ServerSentEvent, None]:
    """Yield server-sent events from a streaming response."""

    buffer: list[str] = []
    async for line in response.aiter_lines():
        if not line:
            if buffer:
                yield parse_event(buffer)
                buffer.clear()
            continue
        if line.startswith(":"):
            continue
        buffer.append(line)
    if buffer:
        yield parse_event(buffer)


def parse_event(lines: Iterable[str]) -> ServerSentEvent:
    event_name: Optional[str] = None
    event_id: Optional[str] = None
    data_lines: list[str] = []

    for line in lines:
        field, _, value = line.partition(":")
        value = value.lstrip(" ")
        if field == "event":
            event_name = value or None
        elif field == "data":
            data_lines.append(value)
        elif field == "id":
            event_id = value or None

    data = "\n".join(data_lines)
    return ServerSentEvent(data=data, event=event_name or "message", event_id=event_id)


class ResponseStream:
    """Async iterator over the decoded chunks of an open streaming response."""

    def __init__(
        self,
        response: httpx.Response,
        decode: Callable[[Any], GenerateContentResponse],
        error_class: type[BackendError],
    ) -> None:
        self._response = response
        self._events = iter_events(response)
        self._decode = decode
        self._error_class = error_class
        self._closed = False

    def __aiter__(self) -> "ResponseStream":
        return self

    async def __anext__(self) -> GenerateContentResponse:
        while True:
            try:
                event = await self._events.__anext__()
            except StopAsyncIteration:
                await self.aclose()
                raise
            except httpx.HTTPError as exc:
                await self.aclose()
                raise self._error_class(_BAD_GATEWAY, str(exc)) from exc

            if not event.data or event.data == "[DONE]":
                continue
            try:
                payload = json.loads(event.data)
            except json.JSONDecodeError:
                logger.debug("Skipping non-JSON SSE payload: %s", event.data)
                continue
            if isinstance(payload, dict) and "error" in payload:
                await self.aclose()
                status_code = _error_status(payload["error"])
                raise self._error_class(status_code, event.data)
            return self._decode(payload)

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._events.aclose()
        finally:
            await self._response.aclose()


def _error_status(error: Any) -> int:
    if isinstance(error, Mapping):
        code = error.get("code")
        if isinstance(code, int):
            return code
    return _BAD_GATEWAY


def decode_error_body(raw: bytes) -> str:
    if not raw:
        return "The server returned an empty error response."
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        return raw.decode("utf-8", errors="ignore")


class PooledClientMixin:
    """Share one `httpx.AsyncClient` per base URL, timeout and proxy."""

    _client_lock: asyncio.Lock = asyncio.Lock()
    _client_pool: dict[tuple[str, float, str], httpx.AsyncClient] = {}

    _settings: Settings
    _http_client: Optional[httpx.AsyncClient]

    def _client_key(self) -> tuple[str, float, str]:
        return (
            self._base_url,
            float(self._settings.request_timeout),
            self._settings.http_proxy_url or "",
        )

    @property
    def _base_url(self) -> str:
        raise NotImplementedError

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is not None:
            return self._http_client

        key = self._client_key()
        client = PooledClientMixin._client_pool.get(key)
        if client is not None:
            return client

        async with PooledClientMixin._client_lock:
            client = PooledClientMixin._client_pool.get(key)
            if client is None:
                timeout = httpx.Timeout(self._settings.request_timeout, connect=10.0)
                limits = httpx.Limits(
                    max_connections=20,
                    max_keepalive_connections=10,
                )
                client = httpx.AsyncClient(
                    timeout=timeout,
                    limits=limits,
                    http2=True,
                    proxy=self._settings.http_proxy_url or None,
                )
                PooledClientMixin._client_pool[key] = client
        return client

    @classmethod
    async def aclose_shared(cls) -> None:
        async with PooledClientMixin._client_lock:
            clients = list(PooledClientMixin._client_pool.values())
            PooledClientMixin._client_pool.clear()
        for client in clients:
            try:
                await client.aclose()
            except Exception as exc:  # pragma: no cover - best effort cleanup
                logger.debug("Failed to close pooled HTTP client: %s", exc)


class GeminiClient(PooledClientMixin):
    """Client for the generative-language REST API authenticated by API key."""

    _file_poll_interval: float = 1.0
    _file_poll_attempts: int = 60

    def __init__(
        self,
        settings: Settings,
        *,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._settings = settings
        if api_key is None and settings.gemini_api_key is not None:
            api_key = settings.gemini_api_key.get_secret_value()
        self._api_key = api_key or ""
        self.model = _normalize_model(model or settings.default_model)
        self._http_client = http_client

    @property
    def _base_url(self) -> str:
        """Return the API base URL without a trailing slash."""

        return str(self._settings.gemini_base_url).rstrip("/")

    @property
    def _upload_url(self) -> str:
        return str(self._settings.gemini_upload_url).rstrip("/")

    @property
    def _headers(self) -> dict[str, str]:
        return {
            "x-goog-api-key": self._api_key,
            "Content-Type": "application/json",
        }

    def _model_url(self, method: str) -> str:
        return f"{self._base_url}/models/{self.model}:{method}"

    async def generate_content(
        self, request: GenerateContentRequest
    ) -> GenerateContentResponse:
        """Send a blocking generation request."""

        body = await self._post_json(
            self._model_url("generateContent"), request.to_payload()
        )
        return GenerateContentResponse.model_validate(body)

    async def stream_generate_content(
        self, request: GenerateContentRequest
    ) -> ResponseStream:
        """Open a streaming generation request and return its chunk iterator."""

        client = await self._get_http_client()
        http_request = client.build_request(
            "POST",
            self._model_url("streamGenerateContent"),
            params={"alt": "sse"},
            headers={**self._headers, "Accept": "text/event-stream"},
            json=request.to_payload(),
        )
        try:
            response = await client.send(http_request, stream=True)
        except httpx.HTTPError as exc:
            raise GeminiError(_BAD_GATEWAY, str(exc)) from exc

        if response.status_code >= 400:
            try:
                body = await response.aread()
            finally:
                await response.aclose()
            raise GeminiError(response.status_code, decode_error_body(body))

        logger.debug("Opened generation stream for model %s", self.model)
        return ResponseStream(
            response, GenerateContentResponse.model_validate, GeminiError
        )

    async def count_tokens(self, contents: Sequence[Content]) -> int:
        """Return the prompt token count for the given content blocks."""

        payload = {"contents": [content.to_payload() for content in contents]}
        body = await self._post_json(self._model_url("countTokens"), payload)
        total = body.get("totalTokens", 0)
        return int(total) if isinstance(total, (int, str)) else 0

    async def upload_file(
        self,
        path: Path,
        *,
        mime_type: str,
        display_name: Optional[str] = None,
    ) -> RemoteFile:
        """Upload a local file with the resumable protocol and wait until usable."""

        try:
            data = await asyncio.to_thread(path.read_bytes)
        except OSError as exc:
            raise GeminiError(
                httpx.codes.BAD_REQUEST.value, f"Cannot read {path}: {exc}"
            ) from exc
        client = await self._get_http_client()

        start_headers = {
            **self._headers,
            "X-Goog-Upload-Protocol": "resumable",
            "X-Goog-Upload-Command": "start",
            "X-Goog-Upload-Header-Content-Length": str(len(data)),
            "X-Goog-Upload-Header-Content-Type": mime_type,
        }
        try:
            response = await client.post(
                self._upload_url,
                headers=start_headers,
                json={"file": {"display_name": display_name or path.name}},
            )
        except httpx.HTTPError as exc:
            raise GeminiError(_BAD_GATEWAY, str(exc)) from exc
        if response.status_code >= 400:
            raise GeminiError(response.status_code, decode_error_body(response.content))

        session_url = response.headers.get("x-goog-upload-url")
        if not session_url:
            raise GeminiError(_BAD_GATEWAY, "Upload session URL missing from response")

        upload_headers = {
            "x-goog-api-key": self._api_key,
            "X-Goog-Upload-Offset": "0",
            "X-Goog-Upload-Command": "upload, finalize",
        }
        try:
            response = await client.post(session_url, headers=upload_headers, content=data)
        except httpx.HTTPError as exc:
            raise GeminiError(_BAD_GATEWAY, str(exc)) from exc
        if response.status_code >= 400:
            raise GeminiError(response.status_code, decode_error_body(response.content))

        try:
            body = response.json()
        except ValueError as exc:
            raise GeminiError(_BAD_GATEWAY, f"Unexpected upload response: {exc}") from exc
        if not isinstance(body, dict):
            raise GeminiError(_BAD_GATEWAY, f"Unexpected upload response: {body!r}")
        remote = RemoteFile.model_validate(body.get("file") or {})
        logger.info(
            "Uploaded %s (%d bytes) as %s", path.name, len(data), remote.name or "?"
        )
        return await self._wait_until_active(remote)

    async def get_file(self, name: str) -> RemoteFile:
        client = await self._get_http_client()
        try:
            response = await client.get(f"{self._base_url}/{name}", headers=self._headers)
        except httpx.HTTPError as exc:
            raise GeminiError(_BAD_GATEWAY, str(exc)) from exc
        if response.status_code >= 400:
            raise GeminiError(response.status_code, decode_error_body(response.content))
        try:
            return RemoteFile.model_validate(response.json())
        except ValueError as exc:
            raise GeminiError(_BAD_GATEWAY, f"Unexpected file response: {exc}") from exc

    async def _wait_until_active(self, remote: RemoteFile) -> RemoteFile:
        attempts = 0
        while remote.state == "PROCESSING" and remote.name:
            if attempts >= self._file_poll_attempts:
                raise GeminiError(
                    httpx.codes.GATEWAY_TIMEOUT.value,
                    f"File {remote.name} is still processing",
                )
            attempts += 1
            await asyncio.sleep(self._file_poll_interval)
            remote = await self.get_file(remote.name)
        if remote.state == "FAILED":
            raise GeminiError(
                httpx.codes.UNPROCESSABLE_ENTITY.value,
                f"File {remote.name} failed server-side processing",
            )
        return remote

    async def _post_json(self, url: str, payload: dict[str, Any]) -> dict[str, Any]:
        client = await self._get_http_client()
        try:
            response = await client.post(url, headers=self._headers, json=payload)
        except httpx.HTTPError as exc:
            raise GeminiError(_BAD_GATEWAY, str(exc)) from exc

        if response.status_code >= 400:
            raise GeminiError(response.status_code, decode_error_body(response.content))

        try:
            body = response.json()
        except ValueError as exc:  # pragma: no cover - unexpected payload
            raise GeminiError(_BAD_GATEWAY, str(exc)) from exc
        if not isinstance(body, dict):
            raise GeminiError(_BAD_GATEWAY, f"Unexpected response payload: {body!r}")
        return body


def _normalize_model(model: str) -> str:
    return model[len("models/"):] if model.startswith("models/") else model


__all__ = [
    "BackendError",
    "GeminiClient",
    "GeminiError",
    "PooledClientMixin",
    "ResponseStream",
    "ServerSentEvent",
    "decode_error_body",
    "iter_events",
    "parse_event",
]
