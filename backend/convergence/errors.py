"""
Convergence error taxonomy.

Only a failed store connection aborts a run; everything below is handled
at the per-record boundary by the orchestrator.
"""


class ConvergenceError(Exception):
    """Base class for engine errors."""


class ExternalServiceError(ConvergenceError):
    """Geocoding or enrichment lookup failed or timed out."""

    def __init__(self, service: str, message: str, status_code: int = None):
        super().__init__(f"{service}: {message}")
        self.service = service
        self.status_code = status_code

    @property
    def is_throttled(self) -> bool:
        return self.status_code in (403, 429)


class ValidationError(ConvergenceError):
    """Record cannot be processed (e.g. a venue with neither name nor address)."""


class ConflictError(ConvergenceError):
    """Unique-key race on upsert; resolved by re-reading the winning row."""


class ProcessingError(ConvergenceError):
    """Any other per-record failure, kept on the record's processing_errors."""

    def __init__(self, message: str, stage: str = "process"):
        super().__init__(message)
        self.stage = stage
