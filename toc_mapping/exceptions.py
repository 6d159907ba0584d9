"""Error taxonomy of the TOC mapping pipeline.

Errors abort the stage that raised them and carry the stage name so that the
caller can tell which part of the run needs attention. Recoverable data
problems are reported with ``InsufficientDataWarning`` instead.
"""


class TocMappingError(Exception):
    """Base class for all pipeline errors."""

    def __init__(self, message: str, stage: str | None = None) -> None:
        self.stage = stage
        prefix = f"[{stage}] " if stage else ""
        super().__init__(f"{prefix}{message}")


class InputError(TocMappingError):
    """Malformed or insufficient input data."""


class FitError(TocMappingError):
    """An iterative numerical search failed to converge or exhausted its bound."""


class ConfigurationError(TocMappingError):
    """Caller supplied settings are internally inconsistent."""


class InsufficientDataWarning(UserWarning):
    """Too little data for a reliable estimate; the affected unit is skipped."""


__all__ = [
    "TocMappingError",
    "InputError",
    "FitError",
    "ConfigurationError",
    "InsufficientDataWarning",
]
