"""
Pipeline data model: enums and the typed records passed between stages.

Stage outputs are plain dataclasses so every algorithm can be exercised
without a database. The ``parse_*`` helpers coerce loose model output into
the closed enums; they never raise.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


# ── Enums ─────────────────────────────────────────────────────────────────────

class DocumentType(str, Enum):
    PDF = "PDF"
    PNG = "PNG"
    JPG = "JPG"
    TIFF = "TIFF"
    DXF = "DXF"
    IFC = "IFC"


class AnalysisStatus(str, Enum):
    PENDING = "PENDING"
    CLASSIFYING = "CLASSIFYING"
    ANALYSING = "ANALYSING"
    VALIDATING = "VALIDATING"
    GENERATING = "GENERATING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


TERMINAL_STATUSES = (AnalysisStatus.COMPLETED, AnalysisStatus.FAILED)


class OverallStatus(str, Enum):
    PASS = "PASS"
    CONDITIONAL = "CONDITIONAL"
    FAIL = "FAIL"


class PageType(str, Enum):
    FLOOR_PLAN = "floor_plan"
    ELEVATION = "elevation"
    SECTION = "section"
    SITE_PLAN = "site_plan"
    DETAIL = "detail"
    SCHEDULE = "schedule"
    TITLE_BLOCK = "title_block"
    OTHER = "other"


class FindingStatus(str, Enum):
    COMPLIANT = "COMPLIANT"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"
    NOT_ASSESSED = "NOT_ASSESSED"


NON_COMPLIANT_STATUSES = (FindingStatus.CRITICAL, FindingStatus.WARNING)


class Confidence(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class FindingCategory(str, Enum):
    STRUCTURAL = "STRUCTURAL"
    FIRE_SAFETY = "FIRE_SAFETY"
    EGRESS = "EGRESS"
    ACCESSIBILITY = "ACCESSIBILITY"
    ENERGY = "ENERGY"
    GENERAL_BUILDING = "GENERAL_BUILDING"
    SITE = "SITE"
    PLUMBING = "PLUMBING"
    ELECTRICAL = "ELECTRICAL"
    MECHANICAL = "MECHANICAL"


class CheckType(str, Enum):
    MEASUREMENT_THRESHOLD = "MEASUREMENT_THRESHOLD"
    PRESENCE_CHECK = "PRESENCE_CHECK"
    RATIO_CHECK = "RATIO_CHECK"
    BOOLEAN_CHECK = "BOOLEAN_CHECK"


class RequirementStatus(str, Enum):
    DRAFT = "DRAFT"
    VERIFIED = "VERIFIED"
    PUBLISHED = "PUBLISHED"
    DEPRECATED = "DEPRECATED"


class RecommendationPriority(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


# Wildcard entry in CodeRequirement.applies_to_drawing_types
ALL_DRAWING_TYPES = "all"


# ── Enum coercion ─────────────────────────────────────────────────────────────

def _normalise_token(raw: Any) -> str:
    if raw is None:
        return ""
    if isinstance(raw, Enum):
        raw = raw.value
    return str(raw).strip()


def parse_page_type(raw: Any) -> PageType:
    """Unknown or missing page types collapse to ``other``."""
    token = _normalise_token(raw).lower()
    try:
        return PageType(token)
    except ValueError:
        return PageType.OTHER


def parse_status(raw: Any) -> FindingStatus:
    token = _normalise_token(raw).upper()
    try:
        return FindingStatus(token)
    except ValueError:
        return FindingStatus.NOT_ASSESSED


def parse_confidence(raw: Any) -> Confidence:
    token = _normalise_token(raw).upper()
    try:
        return Confidence(token)
    except ValueError:
        return Confidence.LOW


def parse_priority(raw: Any) -> RecommendationPriority:
    token = _normalise_token(raw).upper()
    try:
        return RecommendationPriority(token)
    except ValueError:
        return RecommendationPriority.MEDIUM


def as_json_list(raw: Any) -> list:
    """JSON array column as a list. Null is empty; a bare scalar such as ``"all"`` is one entry."""
    if raw is None:
        return []
    if isinstance(raw, (list, tuple)):
        return list(raw)
    return [raw]


def parse_document_type(raw: Any) -> DocumentType:
    """Strict: raises ValueError for anything outside the stored document types."""
    token = _normalise_token(raw).upper()
    if token == "JPEG":
        token = "JPG"
    elif token == "TIF":
        token = "TIFF"
    return DocumentType(token)


# ── Stage records ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class NormalisedPage:
    page_number: int            # 1-based, contiguous
    image_key: str              # object-storage key of the PNG
    width: int
    height: int


@dataclass(frozen=True)
class ClassifiedPage:
    page_number: int
    image_key: str
    width: int
    height: int
    page_type: PageType
    description: str
    scale_detected: Optional[str] = None

    @classmethod
    def from_page(
        cls,
        page: NormalisedPage,
        page_type: PageType,
        description: str,
        scale_detected: Optional[str] = None,
    ) -> "ClassifiedPage":
        return cls(
            page_number=page.page_number,
            image_key=page.image_key,
            width=page.width,
            height=page.height,
            page_type=page_type,
            description=description,
            scale_detected=scale_detected,
        )


@dataclass
class CodeRequirement:
    id: str
    code_ref: str
    title: str
    category: FindingCategory
    full_text: str
    check_type: CheckType
    thresholds: Any = field(default_factory=dict)      # raw JSON: object, array or scalar
    applies_to_drawing_types: list = field(default_factory=list)
    applies_to_building_types: list = field(default_factory=list)
    applies_to_spaces: list = field(default_factory=list)
    exceptions: list = field(default_factory=list)
    extraction_guidance: str = ""
    evaluation_guidance: str = ""
    code_id: str = ""           # parent building code identifier, e.g. "IRC-2021"
    code_name: str = ""
    source_page: Optional[int] = None
    status: RequirementStatus = RequirementStatus.PUBLISHED

    def applies_to_page_type(self, page_type: PageType) -> bool:
        types = [str(t).strip().lower() for t in as_json_list(self.applies_to_drawing_types)]
        if ALL_DRAWING_TYPES in types:
            return True
        return page_type.value in types


@dataclass(frozen=True)
class MatrixPair:
    requirement: CodeRequirement
    page: ClassifiedPage


@dataclass
class AnalysisResult:
    requirement_id: str
    code_ref: str
    code_id: str
    category: FindingCategory
    page_number: int
    status: FindingStatus
    confidence: Confidence
    description: str
    required_value: str
    proposed_value: Optional[str]
    location: Optional[str]
    analysis_notes: str
    recommendation: Optional[str]
    raw_extraction: dict = field(default_factory=dict)


@dataclass
class MatrixAnalysisResult:
    results: list
    total_checks: int
    total_pairs: int


@dataclass
class ConflictInfo:
    requirement_id: str
    code_ref: str
    conflicting_pages: list
    conflicting_statuses: list
    resolution: str


@dataclass
class StatusCounts:
    critical: int = 0
    warning: int = 0
    compliant: int = 0
    not_assessed: int = 0
    total: int = 0

    @property
    def assessed(self) -> int:
        return self.compliant + self.warning + self.critical


@dataclass
class CrossValidationResult:
    validated_results: list
    conflicts: list
    status_counts: StatusCounts
    compliance_score: float
    overall_status: OverallStatus


@dataclass(frozen=True)
class FindingRecord:
    """Immutable row written once per requirement at the end of a run."""
    code_reference: str
    category: FindingCategory
    status: FindingStatus
    confidence: Confidence
    description: str
    required_value: str
    proposed_value: Optional[str]
    page_number: Optional[int]
    location: Optional[str]
    analysis_notes: str
    recommendation: Optional[str]
    raw_extraction: dict
    sort_order: int

    @classmethod
    def from_result(cls, result: AnalysisResult, sort_order: int) -> "FindingRecord":
        return cls(
            code_reference=result.code_ref,
            category=result.category,
            status=result.status,
            confidence=result.confidence,
            description=result.description,
            required_value=result.required_value,
            proposed_value=result.proposed_value,
            page_number=result.page_number,
            location=result.location,
            analysis_notes=result.analysis_notes,
            recommendation=result.recommendation,
            raw_extraction=result.raw_extraction,
            sort_order=sort_order,
        )


@dataclass
class RecommendationsResult:
    total_findings: int
    recommendations_generated: int
    summary: Optional[str] = None
    findings: list = field(default_factory=list)


@dataclass
class RunContext:
    """Submission fields the pipeline reads from the run record before stage 1."""
    analysis_id: str
    document_url: str
    document_type: str
    page_count: int
    selected_codes: list
    status: AnalysisStatus = AnalysisStatus.PENDING
