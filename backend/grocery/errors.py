"""Error taxonomy for the grocery pipeline.

SchemaViolation and ExtractionFailure are recovered where they are raised
(retry or heuristic fallback). RetryExhausted and a fatal ReferenceDataMissing
reach the coordinator, which records them and returns a partial result.
"""

from __future__ import annotations

from pathlib import Path


class GroceryPipelineError(Exception):
    """Base class for every failure the pipeline knows how to report."""


class SchemaViolation(GroceryPipelineError):
    """Model output did not match the requested schema."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class ExtractionFailure(GroceryPipelineError):
    """The heuristic extractor found no usable items in free text."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class ReferenceDataMissing(GroceryPipelineError):
    """A reference file the stage cannot run without was not found."""

    def __init__(self, filename: str, searched: list[Path] | None = None) -> None:
        self.filename = filename
        self.searched = searched or []
        where = ", ".join(str(p) for p in self.searched) or "no locations"
        super().__init__(f"{filename} not found. Searched: {where}")


class RetryExhausted(GroceryPipelineError):
    """Every attempt returned output that failed validation.

    Carries the last raw response so callers can degrade from it (heuristic
    extraction) or surface it in diagnostics.
    """

    def __init__(self, schema_name: str, attempts: int, last_raw: str, last_reason: str) -> None:
        self.schema_name = schema_name
        self.attempts = attempts
        self.last_raw = last_raw
        self.last_reason = last_reason
        super().__init__(
            f"{schema_name}: no valid response after {attempts} attempt(s) ({last_reason})"
        )
