"""Code Assist client (OAuth protocol) for the same generation contract."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

import httpx

from .config import Settings
from .gemini import BackendError, PooledClientMixin, ResponseStream, decode_error_body
from .schemas.content import GenerateContentRequest, GenerateContentResponse

logger = logging.getLogger(__name__)

_BAD_GATEWAY = httpx.codes.BAD_GATEWAY.value

_CLIENT_METADATA = {
    "ideType": "IDE_UNSPECIFIED",
    "platform": "PLATFORM_UNSPECIFIED",
    "pluginType": "GEMINI",
}


class CodeAssistError(BackendError):
    """Failure reported by the Code Assist backend."""


def unwrap_response(payload: Any) -> GenerateContentResponse:
    """Code Assist wraps every generation response under a `response` key."""

    if isinstance(payload, Mapping) and isinstance(payload.get("response"), Mapping):
        payload = payload["response"]
    return GenerateContentResponse.model_validate(payload)


class CodeAssistClient(PooledClientMixin):
    """Client for the Code Assist endpoints authenticated by an OAuth token."""

    def __init__(
        self,
        settings: Settings,
        *,
        oauth_token: Optional[str] = None,
        project_id: Optional[str] = None,
        model: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._settings = settings
        if oauth_token is None and settings.code_assist_oauth_token is not None:
            oauth_token = settings.code_assist_oauth_token.get_secret_value()
        self._oauth_token = oauth_token or ""
        self.project_id = project_id or settings.code_assist_project_id or ""
        self.model = model or settings.default_model
        self._http_client = http_client
        self._tier_id: Optional[str] = None

    @property
    def _base_url(self) -> str:
        return str(self._settings.code_assist_base_url).rstrip("/")

    @property
    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._oauth_token}",
            "Content-Type": "application/json",
        }

    def set_project_id(self, project_id: str) -> None:
        self.project_id = project_id

    async def load_code_assist(self) -> str:
        """Resolve the effective project for this account.

        Returns the project reported by the server, falling back to the
        configured project when the server does not name one.
        """

        body = await self._post_json(
            "loadCodeAssist",
            {
                "cloudaicompanionProject": self.project_id or None,
                "metadata": {**_CLIENT_METADATA, "duetProject": self.project_id or None},
            },
        )
        tier = body.get("currentTier")
        if not isinstance(tier, Mapping):
            for candidate in body.get("allowedTiers") or []:
                if isinstance(candidate, Mapping) and candidate.get("isDefault"):
                    tier = candidate
                    break
        if isinstance(tier, Mapping) and isinstance(tier.get("id"), str):
            self._tier_id = tier["id"]

        project = body.get("cloudaicompanionProject")
        if isinstance(project, Mapping):
            project = project.get("id")
        if isinstance(project, str) and project:
            return project
        return self.project_id

    async def onboard_user(self) -> dict[str, Any]:
        """Ask the server to onboard the account onto its tier."""

        return await self._post_json(
            "onboardUser",
            {
                "tierId": self._tier_id or "free-tier",
                "cloudaicompanionProject": self.project_id or None,
                "metadata": {**_CLIENT_METADATA, "duetProject": self.project_id or None},
            },
        )

    def _wrap(self, request: GenerateContentRequest) -> dict[str, Any]:
        return {
            "model": self.model,
            "project": self.project_id,
            "request": request.to_payload(),
        }

    async def generate_content(
        self, request: GenerateContentRequest
    ) -> GenerateContentResponse:
        body = await self._post_json("generateContent", self._wrap(request))
        return unwrap_response(body)

    async def stream_generate_content(
        self, request: GenerateContentRequest
    ) -> ResponseStream:
        client = await self._get_http_client()
        http_request = client.build_request(
            "POST",
            f"{self._base_url}:streamGenerateContent",
            params={"alt": "sse"},
            headers={**self._headers, "Accept": "text/event-stream"},
            json=self._wrap(request),
        )
        try:
            response = await client.send(http_request, stream=True)
        except httpx.HTTPError as exc:
            raise CodeAssistError(_BAD_GATEWAY, str(exc)) from exc

        if response.status_code >= 400:
            try:
                body = await response.aread()
            finally:
                await response.aclose()
            raise CodeAssistError(response.status_code, decode_error_body(body))

        return ResponseStream(response, unwrap_response, CodeAssistError)

    async def _post_json(self, method: str, payload: dict[str, Any]) -> dict[str, Any]:
        client = await self._get_http_client()
        payload = {key: value for key, value in payload.items() if value is not None}
        try:
            response = await client.post(
                f"{self._base_url}:{method}", headers=self._headers, json=payload
            )
        except httpx.HTTPError as exc:
            raise CodeAssistError(_BAD_GATEWAY, str(exc)) from exc

        if response.status_code >= 400:
            raise CodeAssistError(
                response.status_code, decode_error_body(response.content)
            )
        try:
            body = response.json()
        except ValueError as exc:  # pragma: no cover - unexpected payload
            raise CodeAssistError(_BAD_GATEWAY, str(exc)) from exc
        return body if isinstance(body, dict) else {}


__all__ = ["CodeAssistClient", "CodeAssistError", "unwrap_response"]
