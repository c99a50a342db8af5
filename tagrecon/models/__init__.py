"""Domain models for the tag list reconciliation engine."""

from .commit_models import CommitResult, CommitTarget, Resolved, SideStats, Unresolved
from .config_models import (
    ColumnExclusion,
    DocumentSelection,
    IdentityExclusion,
    MappingEntry,
    MergePolicy,
    ReconcileConfig,
)
from .error_record import ExceptionRecord
from .processing_result import ColumnSummary, ComparisonSummary
from .unified_row import AnnotationMap, ColumnFacets, ExistsStatus, UnifiedRow

__all__ = [
    # Configuration models
    "ColumnExclusion",
    "DocumentSelection",
    "IdentityExclusion",
    "MappingEntry",
    "MergePolicy",
    "ReconcileConfig",
    # Result models
    "AnnotationMap",
    "ColumnFacets",
    "ExistsStatus",
    "UnifiedRow",
    "ColumnSummary",
    "ComparisonSummary",
    # Commit models
    "CommitResult",
    "CommitTarget",
    "ExceptionRecord",
    "Resolved",
    "SideStats",
    "Unresolved",
]
