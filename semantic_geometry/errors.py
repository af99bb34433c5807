"""
Exception hierarchy for the ingestion pipeline.

Recoverable conditions (missing optional UCD file, malformed data line,
malformed decomposition token) are skipped and logged, never raised.
Everything defined here is fatal for the run that raised it.
"""


class SemanticGeometryError(Exception):
    """Base class for all pipeline errors."""


class InvariantViolation(SemanticGeometryError):
    """Internal invariant broken: coverage gap, duplicate rank, non-unit position."""


class StoreWriteError(SemanticGeometryError):
    """Write phase failure: store unavailable, constraint or foreign key violation."""


class PipelineStateError(SemanticGeometryError):
    """Illegal stage transition (the pipeline only moves forward)."""
