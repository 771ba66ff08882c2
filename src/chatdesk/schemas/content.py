"""Pydantic models for the generative-language wire format."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Base model using the camelCase field names of the REST API."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Blob(WireModel):
    """Inline bytes, base64 encoded."""

    mime_type: str
    data: str


class FileData(WireModel):
    """Reference to a previously uploaded file."""

    mime_type: str = ""
    file_uri: str


class Part(WireModel):
    """A single fragment of a content block."""

    text: Optional[str] = None
    thought: Optional[bool] = None
    thought_signature: Optional[str] = None
    inline_data: Optional[Blob] = None
    file_data: Optional[FileData] = None

    @classmethod
    def from_text(cls, text: str) -> "Part":
        return cls(text=text)

    @property
    def is_text(self) -> bool:
        return self.text is not None

    @property
    def is_thought(self) -> bool:
        return bool(self.thought)


class Content(WireModel):
    """Role-grouped payload unit sent to the backend."""

    role: Literal["user", "model"]
    parts: List[Part] = Field(default_factory=list)


class ThinkingConfig(WireModel):
    include_thoughts: Optional[bool] = None
    thinking_budget: Optional[int] = None


class GenerationConfig(WireModel):
    """Sampling and reasoning parameters for a request."""

    temperature: Optional[float] = None
    top_p: Optional[float] = None
    top_k: Optional[int] = None
    max_output_tokens: Optional[int] = None
    stop_sequences: Optional[List[str]] = None
    thinking_config: Optional[ThinkingConfig] = None

    @classmethod
    def from_options(
        cls,
        *,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
        top_k: Optional[int] = None,
        max_output_tokens: Optional[int] = None,
        stop: Optional[List[str]] = None,
        include_thoughts: bool = False,
        thinking_budget: Optional[int] = None,
    ) -> "GenerationConfig":
        """Build a config from the user-facing model options."""

        thinking: Optional[ThinkingConfig] = None
        if include_thoughts or thinking_budget is not None:
            thinking = ThinkingConfig(
                include_thoughts=True if include_thoughts else None,
                thinking_budget=thinking_budget,
            )
        return cls(
            temperature=temperature,
            top_p=top_p,
            top_k=top_k,
            max_output_tokens=max_output_tokens,
            stop_sequences=stop,
            thinking_config=thinking,
        )


class SafetySetting(WireModel):
    category: str
    threshold: str


SAFETY_SETTINGS: tuple[SafetySetting, ...] = tuple(
    SafetySetting(category=category, threshold="BLOCK_NONE")
    for category in (
        "HARM_CATEGORY_HARASSMENT",
        "HARM_CATEGORY_HATE_SPEECH",
        "HARM_CATEGORY_SEXUALLY_EXPLICIT",
        "HARM_CATEGORY_DANGEROUS_CONTENT",
    )
)


class GenerateContentRequest(WireModel):
    """Request body shared by both backend protocols."""

    contents: List[Content]
    generation_config: Optional[GenerationConfig] = None
    safety_settings: Optional[List[SafetySetting]] = None
    system_instruction: Optional[Content] = None


class UsageMetadata(WireModel):
    prompt_token_count: Optional[int] = None
    candidates_token_count: Optional[int] = None
    thoughts_token_count: Optional[int] = None
    total_token_count: Optional[int] = None

    def summary(self) -> str:
        return (
            f"In: {self.prompt_token_count or 0} / "
            f"Out: {self.candidates_token_count or 0} / "
            f"Total: {self.total_token_count or 0}"
        )


class CandidateContent(WireModel):
    role: Optional[str] = None
    parts: Optional[List[Part]] = None


class Candidate(WireModel):
    content: CandidateContent = Field(default_factory=CandidateContent)
    finish_reason: Optional[str] = None


class GenerateContentResponse(WireModel):
    """A complete response or a single streamed chunk."""

    candidates: List[Candidate] = Field(default_factory=list)
    usage_metadata: Optional[UsageMetadata] = None
    model_version: Optional[str] = None

    def first_parts(self) -> List[Part]:
        if not self.candidates:
            return []
        return list(self.candidates[0].content.parts or [])


class RemoteFile(WireModel):
    """Metadata of a file held by the backend's file store."""

    name: Optional[str] = None
    display_name: Optional[str] = None
    uri: Optional[str] = None
    mime_type: Optional[str] = None
    size_bytes: Optional[int] = None
    state: Optional[str] = None
    expiration_time: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expiration_time is None:
            return False
        current = now or datetime.now(timezone.utc)
        expires = self.expiration_time
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        return expires < current


__all__ = [
    "Blob",
    "Candidate",
    "CandidateContent",
    "Content",
    "FileData",
    "GenerateContentRequest",
    "GenerateContentResponse",
    "GenerationConfig",
    "Part",
    "RemoteFile",
    "SAFETY_SETTINGS",
    "SafetySetting",
    "ThinkingConfig",
    "UsageMetadata",
    "WireModel",
]
