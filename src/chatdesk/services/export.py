"""Write the conversation log to disk and read it back."""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import List, Sequence

from pydantic import TypeAdapter

from ..schemas.conversation import Turn

logger = logging.getLogger(__name__)

_TURN_LIST = TypeAdapter(List[Turn])


class ExportFormat(str, Enum):
    PLAINTEXT = "plaintext"
    JSON = "json"

    @property
    def extensions(self) -> tuple[str, ...]:
        return ("txt",) if self is ExportFormat.PLAINTEXT else ("json",)

    @classmethod
    def from_path(cls, path: Path) -> "ExportFormat":
        suffix = path.suffix.lower().lstrip(".")
        for fmt in cls:
            if suffix in fmt.extensions:
                return fmt
        return cls.PLAINTEXT


def format_plaintext_line(turn: Turn) -> str:
    return f"{turn.time.isoformat()} - {turn.role.value} ({turn.model}): {turn.content}"


def export_turns(turns: Sequence[Turn], fmt: ExportFormat, path: Path) -> str:
    """Write *turns* to *path* and return a short confirmation for the user."""

    logger.info(
        "exporting %d messages to %s (format: %s)...", len(turns), path, fmt.value
    )
    path.parent.mkdir(parents=True, exist_ok=True)

    if fmt is ExportFormat.PLAINTEXT:
        with path.open("w", encoding="utf-8") as handle:
            for turn in turns:
                handle.write(format_plaintext_line(turn))
                handle.write("\n")
    else:
        path.write_bytes(_TURN_LIST.dump_json(list(turns), indent=2))

    logger.info("export complete")
    return f"Exported {len(turns)} messages to {path.name}"


def load_turns(path: Path) -> List[Turn]:
    """Read a JSON export back into turns."""

    return _TURN_LIST.validate_json(path.read_bytes())


__all__ = ["ExportFormat", "export_turns", "format_plaintext_line", "load_turns"]
