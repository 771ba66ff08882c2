"""Service layer helpers."""

from .export import ExportFormat, export_turns, load_turns
from .runtime import BackgroundRuntime

__all__ = ["BackgroundRuntime", "ExportFormat", "export_turns", "load_turns"]
