"""Tests for the Code Assist (OAuth) client."""

import json

import httpx
import pytest

from chatdesk.code_assist import CodeAssistClient, CodeAssistError, unwrap_response
from chatdesk.config import Settings
from chatdesk.schemas.content import Content, GenerateContentRequest, Part


def make_client(settings: Settings, handler) -> CodeAssistClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return CodeAssistClient(
        settings,
        oauth_token="oauth-token",
        project_id="configured",
        model="gemini-test",
        http_client=http_client,
    )


def test_unwrap_response_accepts_wrapped_and_bare_payloads() -> None:
    inner = {"candidates": [{"content": {"parts": [{"text": "x"}]}}]}

    assert unwrap_response({"response": inner}).first_parts()[0].text == "x"
    assert unwrap_response(inner).first_parts()[0].text == "x"


@pytest.mark.asyncio
async def test_load_code_assist_returns_server_project(settings: Settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path.endswith(":loadCodeAssist")
        assert request.headers["Authorization"] == "Bearer oauth-token"
        return httpx.Response(
            200,
            json={
                "cloudaicompanionProject": {"id": "server-project"},
                "currentTier": {"id": "standard-tier"},
            },
        )

    client = make_client(settings, handler)

    assert await client.load_code_assist() == "server-project"


@pytest.mark.asyncio
async def test_load_code_assist_falls_back_to_configured_project(settings: Settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"allowedTiers": [{"id": "free-tier", "isDefault": True}]})

    client = make_client(settings, handler)

    assert await client.load_code_assist() == "configured"


@pytest.mark.asyncio
async def test_generate_content_wraps_request_and_unwraps_response(settings: Settings) -> None:
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={"response": {"candidates": [{"content": {"parts": [{"text": "ok"}]}}]}},
        )

    client = make_client(settings, handler)
    client.set_project_id("effective")
    request = GenerateContentRequest(contents=[Content(role="user", parts=[Part.from_text("hi")])])

    response = await client.generate_content(request)

    assert seen["path"].endswith(":generateContent")
    assert seen["body"]["model"] == "gemini-test"
    assert seen["body"]["project"] == "effective"
    assert seen["body"]["request"]["contents"][0]["role"] == "user"
    assert response.first_parts()[0].text == "ok"


@pytest.mark.asyncio
async def test_errors_raise_code_assist_error(settings: Settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, text="unauthenticated")

    client = make_client(settings, handler)

    with pytest.raises(CodeAssistError) as excinfo:
        await client.onboard_user()
    assert excinfo.value.status_code == 401
    assert "unauthenticated" in str(excinfo.value)
