"""PD calculation stages: classification, migration matrices, summary, extrapolation."""
from pd_engine.calculations.bucket_classifier import classify_days_past_due, validate_buckets, worst_bucket
from pd_engine.calculations.final_bucket import apply_final_buckets, resolve_final_buckets
from pd_engine.calculations.migration import build_migration_matrices
from pd_engine.calculations.summary import build_pd_summary, interpolate_pd
from pd_engine.calculations.extrapolation import build_extrapolation, validate_efa_schedule

__all__ = [
    "classify_days_past_due",
    "validate_buckets",
    "worst_bucket",
    "apply_final_buckets",
    "resolve_final_buckets",
    "build_migration_matrices",
    "build_pd_summary",
    "interpolate_pd",
    "build_extrapolation",
    "validate_efa_schedule",
]
