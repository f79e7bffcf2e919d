"""
Error taxonomy for the production pipeline.

Every failure that ends a run is one of these types.  Per-segment visual
synthesis failures are recovered inside the synthesis coordinator and never
surface here; everything else propagates to ProductionPipeline, which records
the error, moves the run to FAILED and tears down the workspace.

AlreadyRunningError is not a genuine failure: it is the exception form of the
idempotent "a run is already in flight" rejection.
"""
from __future__ import annotations

from pathlib import Path
from typing import Optional


class AutomationError(Exception):
    """Base class for every error raised by the automation core."""


class ConfigError(AutomationError):
    """Configuration file or environment override is invalid."""


class EmptyScriptError(AutomationError):
    """Narration text contains no sentence-like units."""


class HuntingError(AutomationError):
    """Trend source returned nothing usable to script from."""


class ScriptingError(AutomationError):
    """Text generator failed or returned malformed structured output."""


class VoiceSynthesisError(AutomationError):
    """Narration audio could not be synthesized; fatal for the run."""


class NoVisualAssetsError(AutomationError):
    """Every segment's visual synthesis failed; fatal for the run."""


class AssemblyError(AutomationError):
    """Encoder stage failed.  ``diagnostic`` carries the encoder output tail."""

    def __init__(self, message: str, diagnostic: str = "") -> None:
        super().__init__(message)
        self.diagnostic = diagnostic

    def __str__(self) -> str:
        base = super().__str__()
        if self.diagnostic:
            return f"{base}\n{self.diagnostic}"
        return base


class PublishError(AutomationError):
    """Publishing failed after the media file was produced."""

    def __init__(self, message: str, media_path: Optional[Path] = None) -> None:
        super().__init__(message)
        self.media_path = media_path


class AlreadyRunningError(AutomationError):
    """A run is already in flight; the start request was rejected as a no-op."""
