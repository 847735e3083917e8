"""
Analysis pipeline configuration: single source of truth for stage ordering,
rendering, concurrency, tie-break priorities and display ordering.

Import from here in all stages and services rather than hardcoding values.
"""
from __future__ import annotations

from app.models.pipeline_models import (
    Confidence,
    FindingCategory,
    FindingStatus,
)

# ── Stage execution order ──────────────────────────────────────────────────────
# Actual wiring is in analysis_graph.build_analysis_graph().
STAGE_ORDER: list[str] = [
    "NormaliseNode",
    "ClassifyNode",
    "MatrixNode",
    "CrossValidateNode",
    "RecommendNode",
]

# Human-readable stage names used in FAILED current_stage text
STAGE_LABELS: dict[str, str] = {
    "NormaliseNode":     "document normalisation",
    "ClassifyNode":      "page classification",
    "MatrixNode":        "matrix analysis",
    "CrossValidateNode": "cross-validation",
    "RecommendNode":     "recommendations",
}


# ── Document normalisation ─────────────────────────────────────────────────────

TARGET_DPI: int = 300
PDF_BASE_DPI: int = 72          # PDF user-space unit
PDF_RENDER_SCALE: float = TARGET_DPI / PDF_BASE_DPI

# Key format: zero-padded page index keeps lexicographic order == page order
PAGE_KEY_FORMAT: str = "analyses/{analysis_id}/pages/page-{page_number:04d}.png"
PAGE_CONTENT_TYPE: str = "image/png"


# ── Matrix analysis ────────────────────────────────────────────────────────────

# Max concurrent vision calls per batch; batches run sequentially
MATRIX_BATCH_SIZE: int = 10

MANUAL_REVIEW_RECOMMENDATION: str = "Manual review required due to analysis error"


# ── Cross-validation ───────────────────────────────────────────────────────────

CONFIDENCE_PRIORITY: dict[Confidence, int] = {
    Confidence.HIGH:   3,
    Confidence.MEDIUM: 2,
    Confidence.LOW:    1,
}

# Same confidence: the more severe status wins
STATUS_SEVERITY: dict[FindingStatus, int] = {
    FindingStatus.CRITICAL:     4,
    FindingStatus.WARNING:      3,
    FindingStatus.COMPLIANT:    2,
    FindingStatus.NOT_ASSESSED: 1,
}

PASS_SCORE_THRESHOLD: float = 90.0
FAIL_SCORE_THRESHOLD: float = 70.0

CONFLICT_RESOLUTION_NOTE: str = (
    "Kept result with highest confidence (and most severe status for ties)"
)


# ── Recommendations / display order ────────────────────────────────────────────

STATUS_DISPLAY_ORDER: dict[FindingStatus, int] = {
    FindingStatus.CRITICAL:     1,
    FindingStatus.WARNING:      2,
    FindingStatus.NOT_ASSESSED: 3,
    FindingStatus.COMPLIANT:    4,
}

CATEGORY_DISPLAY_ORDER: dict[FindingCategory, int] = {
    FindingCategory.STRUCTURAL:       1,
    FindingCategory.FIRE_SAFETY:      2,
    FindingCategory.EGRESS:           3,
    FindingCategory.ACCESSIBILITY:    4,
    FindingCategory.ENERGY:           5,
    FindingCategory.GENERAL_BUILDING: 6,
    FindingCategory.SITE:             7,
    FindingCategory.PLUMBING:         8,
    FindingCategory.ELECTRICAL:       9,
    FindingCategory.MECHANICAL:       10,
}


# ── Worker ─────────────────────────────────────────────────────────────────────

ANALYSIS_TASK_NAME: str = "tasks.run_analysis"
ANALYSIS_SOFT_TIME_LIMIT_S: int = 600   # 10 minutes
ANALYSIS_HARD_TIME_LIMIT_S: int = 660
