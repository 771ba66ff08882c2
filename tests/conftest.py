import pathlib
import sys

import pytest
from pydantic import SecretStr

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from chatdesk.config import Settings  # noqa: E402
from chatdesk.schemas.content import GenerateContentResponse  # noqa: E402


@pytest.fixture
def settings(tmp_path: pathlib.Path) -> Settings:
    return Settings(
        gemini_api_key=SecretStr("test-key"),
        gemini_base_url="https://example.com/v1beta",
        gemini_upload_url="https://example.com/upload/v1beta/files",
        code_assist_base_url="https://assist.example.com/v1internal",
        log_dir=tmp_path / "logs",
        cancel_poll_interval=0.01,
    )


def make_response(*parts: dict, usage: dict | None = None) -> GenerateContentResponse:
    payload: dict = {"candidates": [{"content": {"role": "model", "parts": list(parts)}}]}
    if usage is not None:
        payload["usageMetadata"] = usage
    return GenerateContentResponse.model_validate(payload)
