"""Exception hierarchy for the PD pipeline.

Every error carries a machine-readable ``code`` and one of the error
categories; ``run_pipeline`` converts them into a tagged result at the
stage boundary.
"""
from __future__ import annotations

from pd_engine.models.result import ErrorCategory


class PipelineError(Exception):
    category: ErrorCategory = ErrorCategory.configuration

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


class ConfigurationError(PipelineError):
    category = ErrorCategory.configuration


class RecordError(PipelineError):
    category = ErrorCategory.record


class SegmentSkipped(PipelineError):
    category = ErrorCategory.segment


class BatchPersistenceError(PipelineError):
    """A concurrent batch write or paged read failed; raised ``from`` the original error."""
    category = ErrorCategory.persistence

    def __init__(self, code: str, message: str, batch_number: int, total_batches: int):
        super().__init__(code, message)
        self.batch_number = batch_number
        self.total_batches = total_batches


class PipelineCancelled(PipelineError):
    category = ErrorCategory.cancelled

    def __init__(self, message: str = "Pipeline run was cancelled"):
        super().__init__("PDCalculation.Cancelled", message)
