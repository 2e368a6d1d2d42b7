# smart_intake/domain/errors.py
from __future__ import annotations

from typing import Optional


class IntakeError(Exception):
    """Base exception for intake pipeline errors."""

    def __init__(self, message: str, original_error: Optional[BaseException] = None):
        super().__init__(message)
        self.original_error = original_error


class FileParseFailure(IntakeError):
    """A single uploaded file could not be parsed or analyzed."""

    def __init__(self, filename: str, message: str, original_error: Optional[BaseException] = None):
        super().__init__(message, original_error)
        self.filename = filename


class ToolExecutionFailure(IntakeError):
    """A financial tool raised while running."""

    def __init__(self, tool_name: str, message: str, original_error: Optional[BaseException] = None):
        super().__init__(message, original_error)
        self.tool_name = tool_name


class CollaboratorUnavailable(IntakeError):
    """An optional collaborator (LLM, CMS lookup, analyzer) could not be reached."""
    pass


class PhaseFailure(IntakeError):
    """A phase hit an unexpected error; fatal for the pipeline run."""

    def __init__(self, phase: str, message: str, original_error: Optional[BaseException] = None):
        super().__init__(message, original_error)
        self.phase = phase


class PersistenceFailure(IntakeError):
    """Snapshot or deal-record persistence failed."""
    pass
