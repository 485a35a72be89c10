from enum import Enum
from typing import Optional

from pydantic import BaseModel

from pd_engine.models.extrapolation import PdExtrapolationResult
from pd_engine.models.loan import RecordIssue
from pd_engine.models.matrix import PeriodMigrationMatrix
from pd_engine.models.summary import PDSummaryResult


class ErrorCategory(str, Enum):
    configuration = "configuration"
    record = "record"
    segment = "segment"
    persistence = "persistence"
    cancelled = "cancelled"


class PipelineStage(str, Enum):
    ingestion = "Ingestion"
    migration = "MigrationMatrix"
    summary = "PDSummary"
    extrapolation = "PDExtrapolation"


class PipelineErrorInfo(BaseModel):
    category: ErrorCategory
    code: str
    message: str


class SegmentNote(BaseModel):
    """A segment left out of Stage 2 output, and why."""
    product_category: str
    segment: str
    period: Optional[str] = None
    code: str
    message: str


class StageResult(BaseModel):
    stage: PipelineStage
    success: bool = True
    error: Optional[PipelineErrorInfo] = None
    elapsed_seconds: float = 0.0


class PipelineResult(BaseModel):
    """Tagged outcome of a run: either fully populated or an explicit error."""
    success: bool = True
    error: Optional[PipelineErrorInfo] = None
    stages: list[StageResult] = []
    record_issues: list[RecordIssue] = []
    segment_notes: list[SegmentNote] = []
    records_ingested: int = 0
    migration_matrices: list[PeriodMigrationMatrix] = []
    pd_summary: Optional[PDSummaryResult] = None
    extrapolation: Optional[PdExtrapolationResult] = None
