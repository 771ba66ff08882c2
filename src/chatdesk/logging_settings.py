"""Parse ``logging_settings.conf``.

The file holds ``key = value`` lines. ``terminal``, ``file`` and ``http``
take one of ``debug``, ``info``, ``warning`` or ``off``, and
``retention_hours`` is a whole number of hours (0 keeps logs forever).
Unknown keys and unreadable values fall back to the defaults.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator

LEVELS: dict[str, int | None] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "off": None,
}

DEFAULT_RETENTION_HOURS = 48


@dataclass(frozen=True)
class LoggingSettings:
    terminal_level: int | None = logging.INFO
    file_level: int | None = logging.INFO
    http_level: int | None = logging.WARNING
    retention_hours: int = field(default=DEFAULT_RETENTION_HOURS)

    @property
    def root_level(self) -> int:
        """Lowest level any enabled handler wants to see."""

        enabled = [
            level for level in (self.terminal_level, self.file_level) if level is not None
        ]
        return min(enabled) if enabled else logging.WARNING


_LEVEL_FIELDS = {
    "terminal": "terminal_level",
    "file": "file_level",
    "http": "http_level",
}


def _pairs(path: Path) -> Iterator[tuple[str, str]]:
    for raw in path.read_text(encoding="utf-8").splitlines():
        line = raw.split("#", 1)[0].strip()
        key, sep, value = line.partition("=")
        if sep:
            yield key.strip().lower(), value.strip().lower()


def parse_logging_settings(path: Path) -> LoggingSettings:
    if not path.exists():
        return LoggingSettings()

    overrides: dict[str, int | None] = {}
    for key, value in _pairs(path):
        if key == "retention_hours":
            if value.isdigit():
                overrides["retention_hours"] = int(value)
        elif key in _LEVEL_FIELDS and value in LEVELS:
            overrides[_LEVEL_FIELDS[key]] = LEVELS[value]
    return LoggingSettings(**overrides)  # type: ignore[arg-type]


__all__ = ["LEVELS", "LoggingSettings", "parse_logging_settings"]
