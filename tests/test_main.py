"""Tests for the terminal shell commands."""

import io
from typing import Iterator
from unittest.mock import AsyncMock, MagicMock

import pytest
from rich.console import Console

from chatdesk import main
from chatdesk.gemini import GeminiError
from chatdesk.services.runtime import BackgroundRuntime


@pytest.fixture
def runtime() -> Iterator[BackgroundRuntime]:
    rt = BackgroundRuntime()
    yield rt
    rt.shutdown()


def make_shell(
    monkeypatch: pytest.MonkeyPatch, runtime, session
) -> tuple[main.ChatShell, io.StringIO]:
    monkeypatch.setattr(main, "create_session", lambda **kwargs: session)
    output = io.StringIO()
    shell = main.ChatShell(runtime, console=Console(file=output, width=120))
    return shell, output


def test_tokens_command_reports_backend_errors(
    monkeypatch: pytest.MonkeyPatch, runtime
) -> None:
    session = MagicMock()
    session.files = []
    session.count_tokens = AsyncMock(side_effect=GeminiError(403, "denied"))
    shell, output = make_shell(monkeypatch, runtime, session)

    assert shell.handle_command("/tokens hi") is True

    assert "denied" in output.getvalue()
    assert shell.running is True


def test_tokens_command_prints_count(monkeypatch: pytest.MonkeyPatch, runtime) -> None:
    session = MagicMock()
    session.files = []
    session.count_tokens = AsyncMock(return_value=42)
    shell, output = make_shell(monkeypatch, runtime, session)

    shell.handle_command("/tokens draft")

    assert "42 tokens" in output.getvalue()
    session.count_tokens.assert_awaited_once_with("draft", [])
