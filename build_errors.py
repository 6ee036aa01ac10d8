"""Error taxonomy shared by every stage of the lnav build pipeline.

Each stage either succeeds, is skipped, or raises exactly one of the
:class:`PipelineError` subclasses below.  The orchestrator records the
``kind`` and the ``diagnostic`` tail of the failing tool and aborts the run.
"""

from __future__ import annotations


class PipelineError(RuntimeError):
    """Base class for classified pipeline failures."""

    kind = "PipelineError"

    def __init__(self, message: str, *, diagnostic: str = "") -> None:
        super().__init__(message)
        self.diagnostic = diagnostic


class ValidationError(PipelineError):
    """Raised for unknown options or option values that fail validation."""

    kind = "ValidationError"

    def __init__(self, message: str, *, token: str | None = None) -> None:
        super().__init__(message)
        self.token = token


class HostEnvironmentError(PipelineError):
    """Raised when the host itself cannot be inspected (permissions, I/O)."""

    kind = "EnvironmentError"


class DependencyInstallError(PipelineError):
    kind = "DependencyInstallError"


class SourceSyncError(PipelineError):
    kind = "SourceSyncError"


class ConfigureError(PipelineError):
    kind = "ConfigureError"


class BuildError(PipelineError):
    kind = "BuildError"


class VerificationError(PipelineError):
    """Raised when the artefact is missing or fails its smoke test."""

    kind = "VerificationError"
