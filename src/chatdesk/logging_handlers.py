"""Log file handler and retention cleanup."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Iterator, Optional


class DateStampedFileHandler(logging.FileHandler):
    """One log file per run, grouped in a folder per local date.

    ``directory/2025-06-01/chatdesk_2025-06-01_12-30-00.log``
    """

    def __init__(
        self,
        directory: str | Path = "logs/app",
        *,
        prefix: str = "chatdesk",
        encoding: str | None = "utf-8",
        mode: str = "a",
        delay: bool = False,
        errors: Optional[str] = None,
        current_time: datetime | None = None,
    ) -> None:
        started = (current_time or datetime.now(timezone.utc)).astimezone()
        day = Path(directory).resolve() / f"{started:%Y-%m-%d}"
        day.mkdir(parents=True, exist_ok=True)

        self.log_path = day / f"{prefix}_{started:%Y-%m-%d_%H-%M-%S}.log"
        super().__init__(
            self.log_path, mode=mode, encoding=encoding, delay=delay, errors=errors
        )


def _stale_logs(root: Path, cutoff: float) -> Iterator[Path]:
    for path in root.rglob("*.log"):
        try:
            if path.stat().st_mtime < cutoff:
                yield path
        except FileNotFoundError:
            continue


def _remove_empty_dirs(root: Path, logger: Optional[logging.Logger]) -> None:
    for child in root.iterdir():
        if not child.is_dir() or any(child.iterdir()):
            continue
        try:
            child.rmdir()
        except OSError as exc:
            if logger:
                logger.debug("Could not remove %s: %s", child, exc)


def cleanup_old_logs(
    log_directories: Iterable[str | Path],
    retention_hours: int,
    logger: logging.Logger | None = None,
) -> tuple[int, int]:
    """Delete ``*.log`` files older than *retention_hours*.

    A retention of zero or less disables cleanup. Returns
    ``(files_deleted, errors)``.
    """

    if retention_hours <= 0:
        return (0, 0)

    cutoff = time.time() - retention_hours * 3600
    deleted = errors = 0

    for directory in log_directories:
        root = Path(directory).resolve()
        if not root.is_dir():
            continue
        for log_file in list(_stale_logs(root, cutoff)):
            try:
                log_file.unlink()
            except OSError as exc:
                errors += 1
                if logger:
                    logger.warning("Failed to delete %s: %s", log_file, exc)
            else:
                deleted += 1
                if logger:
                    logger.debug("Deleted old log file: %s", log_file)
        _remove_empty_dirs(root, logger)

    if logger and deleted:
        logger.info("Removed %d old log file(s), %d error(s)", deleted, errors)
    return (deleted, errors)


__all__ = ["DateStampedFileHandler", "cleanup_old_logs"]
