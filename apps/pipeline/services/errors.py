"""Pipeline error types."""

from __future__ import annotations

from typing import Optional


class PipelineError(RuntimeError):
    """Base class for failures scoped to a single project."""


class ConfigurationError(RuntimeError):
    """Raised at startup when settings make the whole run impossible."""


class TransportError(PipelineError):
    """Download or upload against remote storage failed."""

    def __init__(self, message: str, *, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ExtractionError(PipelineError):
    """Frame extraction failed or produced no image."""

    def __init__(self, message: str, *, stderr: str = "", returncode: Optional[int] = None):
        super().__init__(message)
        self.stderr = stderr
        self.returncode = returncode


class PersistenceError(PipelineError):
    """Database write failed."""


class ProjectNotFoundError(PipelineError):
    """Requested project does not exist."""
