"""Application wiring: logging setup and backend client selection."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .chat import ChatSession
from .code_assist import CodeAssistClient
from .completion import AlertSink, ApiKeySelection, ClientSelection, CodeAssistSelection
from .config import PROJECT_ROOT, AuthMethod, Settings, get_settings
from .gemini import GeminiClient
from .logging_handlers import DateStampedFileHandler, cleanup_old_logs
from .logging_settings import parse_logging_settings
from .services.runtime import BackgroundRuntime

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _resolve_under(base: Path, path: Path) -> Path:
    return path if path.is_absolute() else (base / path).resolve()


def configure_logging(settings: Optional[Settings] = None) -> None:
    """Install console and file handlers according to ``logging_settings.conf``."""

    # Load .env first so LOG_* overrides are visible to Settings
    load_dotenv()
    settings = settings or get_settings()

    log_settings = parse_logging_settings(
        _resolve_under(PROJECT_ROOT, settings.log_settings_path)
    )
    formatter = logging.Formatter(_LOG_FORMAT, datefmt=_DATE_FORMAT)
    handlers: list[logging.Handler] = []

    if log_settings.terminal_level is not None:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(log_settings.terminal_level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    log_dir = _resolve_under(PROJECT_ROOT, settings.log_dir)
    if log_settings.file_level is not None:
        file_handler = DateStampedFileHandler(log_dir)
        file_handler.setLevel(log_settings.file_level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        handlers.append(logging.NullHandler())

    logging.basicConfig(
        level=log_settings.root_level,
        handlers=handlers,
        force=True,  # Override any existing configuration
    )

    http_level = log_settings.http_level
    for name in ("httpx", "httpcore"):
        if http_level is None:
            logging.getLogger(name).setLevel(logging.CRITICAL + 1)
        else:
            logging.getLogger(name).setLevel(http_level)

    cleanup_old_logs(
        [log_dir], log_settings.retention_hours, logging.getLogger("chatdesk.logs")
    )


def build_client_selection(settings: Settings, model: str) -> ClientSelection:
    """Create the backend client for the configured auth method."""

    if settings.auth_method is AuthMethod.CODE_ASSIST:
        return CodeAssistSelection(CodeAssistClient(settings, model=model))
    return ApiKeySelection(GeminiClient(settings, model=model))


def create_session(
    settings: Optional[Settings] = None,
    runtime: Optional[BackgroundRuntime] = None,
    *,
    alert: Optional[AlertSink] = None,
    model: Optional[str] = None,
) -> ChatSession:
    settings = settings or get_settings()
    return ChatSession(
        settings,
        runtime or BackgroundRuntime(),
        build_client_selection,
        alert=alert,
        model=model,
    )


__all__ = ["build_client_selection", "configure_logging", "create_session"]
