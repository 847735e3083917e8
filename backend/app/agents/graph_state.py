"""
LangGraph State definition for the compliance analysis pipeline.

All graph nodes read and write this TypedDict. It lives only for the duration
of one run; the durable record of progress is the analyses row, written
through AnalysisRunState.
"""
from typing import TypedDict, Optional, List, Any


class AnalysisGraphState(TypedDict, total=False):
    # ── Core identity ─────────────────────────────────────────────────────────
    analysis_id: str

    # ── Submission (loaded from the run record) ───────────────────────────────
    document_url: str
    document_type: str
    page_count: int
    selected_codes: List[str]

    # ── Workflow control ──────────────────────────────────────────────────────
    current_node: str
    last_completed_node: str

    # ── Stage outputs (accumulated as nodes complete) ─────────────────────────
    pages: List[Any]                       # NormalisedPage, from NormaliseNode
    classified_pages: List[Any]            # ClassifiedPage, from ClassifyNode
    matrix: Optional[Any]                  # MatrixAnalysisResult, from MatrixNode
    validation: Optional[Any]              # CrossValidationResult, from CrossValidateNode
    recommendations: Optional[Any]         # RecommendationsResult, from RecommendNode

    # ── Error tracking ────────────────────────────────────────────────────────
    error: Optional[str]
    error_node: Optional[str]              # Which node raised the error
