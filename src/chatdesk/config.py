"""Application configuration using environment variables."""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, AnyHttpUrl, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve the project root once so that `.env` is discovered regardless of CWD
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


class AuthMethod(str, Enum):
    """Which backend protocol a completion is sent through."""

    API_KEY = "api_key"
    CODE_ASSIST = "code_assist"


class Settings(BaseSettings):
    """Load configuration from environment variables and `.env`."""

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    auth_method: AuthMethod = Field(
        default=AuthMethod.API_KEY,
        validation_alias=AliasChoices("AUTH_METHOD", "auth_method"),
    )

    # API key protocol
    gemini_api_key: Optional[SecretStr] = Field(
        default=None,
        validation_alias=AliasChoices(
            "GEMINI_API_KEY", "GOOGLE_API_KEY", "gemini_api_key"
        ),
    )
    gemini_base_url: AnyHttpUrl = Field(
        default_factory=lambda: AnyHttpUrl(
            "https://generativelanguage.googleapis.com/v1beta"
        ),
        validation_alias=AliasChoices("GEMINI_BASE_URL", "gemini_base_url"),
    )
    gemini_upload_url: AnyHttpUrl = Field(
        default_factory=lambda: AnyHttpUrl(
            "https://generativelanguage.googleapis.com/upload/v1beta/files"
        ),
        validation_alias=AliasChoices("GEMINI_UPLOAD_URL", "gemini_upload_url"),
    )
    default_model: str = Field(
        default="gemini-2.5-flash",
        validation_alias=AliasChoices("GEMINI_MODEL", "default_model"),
    )

    # OAuth (Code Assist) protocol
    code_assist_base_url: AnyHttpUrl = Field(
        default_factory=lambda: AnyHttpUrl(
            "https://cloudcode-pa.googleapis.com/v1internal"
        ),
        validation_alias=AliasChoices("CODE_ASSIST_BASE_URL", "code_assist_base_url"),
    )
    code_assist_oauth_token: Optional[SecretStr] = Field(
        default=None,
        validation_alias=AliasChoices(
            "CODE_ASSIST_OAUTH_TOKEN", "code_assist_oauth_token"
        ),
    )
    code_assist_project_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices(
            "CODE_ASSIST_PROJECT_ID",
            "GOOGLE_CLOUD_PROJECT",
            "code_assist_project_id",
        ),
    )

    system_prompt: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("SYSTEM_PROMPT", "system_prompt"),
    )
    use_streaming: bool = Field(
        default=True,
        validation_alias=AliasChoices("USE_STREAMING", "use_streaming"),
    )
    public_file_upload: bool = Field(
        default=True,
        validation_alias=AliasChoices("PUBLIC_FILE_UPLOAD", "public_file_upload"),
    )
    include_thoughts_in_history: bool = Field(
        default=False,
        validation_alias=AliasChoices(
            "INCLUDE_THOUGHTS_IN_HISTORY", "include_thoughts_in_history"
        ),
    )
    http_proxy_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("HTTP_PROXY_URL", "http_proxy_url"),
    )
    request_timeout: float = Field(
        default=300.0,
        validation_alias=AliasChoices("REQUEST_TIMEOUT", "request_timeout"),
        ge=1,
    )
    cancel_poll_interval: float = Field(
        default=0.1,
        gt=0,
        validation_alias=AliasChoices("CANCEL_POLL_INTERVAL", "cancel_poll_interval"),
    )
    inline_max_bytes: int = Field(
        default=4 * 1024 * 1024,
        ge=1,
        validation_alias=AliasChoices("INLINE_MAX_BYTES", "inline_max_bytes"),
    )

    log_settings_path: Path = Field(
        default_factory=lambda: Path("logging_settings.conf"),
        validation_alias=AliasChoices("LOG_SETTINGS_PATH", "log_settings_path"),
    )
    log_dir: Path = Field(
        default_factory=lambda: Path("logs/app"),
        validation_alias=AliasChoices("LOG_DIR", "log_dir"),
    )

    def missing_credentials(self) -> Optional[str]:
        """Describe what is missing for the selected auth method, if anything."""

        if self.auth_method is AuthMethod.API_KEY:
            if (
                self.gemini_api_key is None
                or not self.gemini_api_key.get_secret_value()
            ):
                return "API key not set."
            return None
        if (
            self.code_assist_oauth_token is None
            or not self.code_assist_oauth_token.get_secret_value()
            or not self.code_assist_project_id
        ):
            return "OAuth token or Project ID not set. Please login in settings."
        return None


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached `Settings` instance."""

    return Settings()  # pyright: ignore[reportCallIssue]


__all__ = ["AuthMethod", "Settings", "get_settings"]
