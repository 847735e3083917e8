"""
Structured response schemas for the vision-model calls in the analysis pipeline.

These Pydantic models define the output contract for every model call and
are used to validate the JSON the model returns:

    output = RequirementCheckTool.Output.model_validate(parse_json_from_response(text))

Validation is deliberately permissive for enum fields: out-of-domain values
are coerced by the ``parse_*`` helpers instead of failing the whole response.
"""

from __future__ import annotations

from typing import Any, List, Optional
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from app.models.pipeline_models import (
    Confidence,
    FindingStatus,
    PageType,
    RecommendationPriority,
    parse_confidence,
    parse_page_type,
    parse_priority,
    parse_status,
)


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip() or None
    return str(value)


# ── Tool 1: Classify Page ─────────────────────────────────────────────────────

class ClassifyPageTool(BaseModel):
    """
    Classify an architectural drawing page into one of eight drawing types,
    describe it, and report the drawing scale if visible.
    """

    class Output(BaseModel):
        model_config = ConfigDict(extra="ignore")

        page_type: PageType = Field(
            PageType.OTHER, description="Drawing type of the page"
        )
        description: str = Field(
            "No description available", description="1-2 sentence description of the page"
        )
        scale_detected: Optional[str] = Field(
            None, description="Scale annotation if visible, e.g. '1:100'"
        )

        @field_validator("page_type", mode="before")
        @classmethod
        def _coerce_page_type(cls, v):
            return parse_page_type(v)

        @field_validator("description", mode="before")
        @classmethod
        def _default_description(cls, v):
            return _optional_text(v) or "No description available"

        @field_validator("scale_detected", mode="before")
        @classmethod
        def _scale_text(cls, v):
            return _optional_text(v)


# ── Tool 2: Requirement Check ─────────────────────────────────────────────────

class Measurement(BaseModel):
    """A single measurement the model read off the drawing."""
    model_config = ConfigDict(extra="ignore")

    name: str = ""
    value: Optional[str] = None
    unit: str = ""
    location: Optional[str] = None

    @field_validator("name", "unit", mode="before")
    @classmethod
    def _text(cls, v):
        return _optional_text(v) or ""

    @field_validator("value", "location", mode="before")
    @classmethod
    def _optional(cls, v):
        return _optional_text(v)


class RequirementCheckTool(BaseModel):
    """
    Evaluate one code requirement against one drawing page: extract the
    relevant measurements and decide compliance.
    """

    class Output(BaseModel):
        model_config = ConfigDict(extra="ignore")

        measurements_found: List[Measurement] = Field(default_factory=list)
        status: FindingStatus = FindingStatus.NOT_ASSESSED
        confidence: Confidence = Confidence.LOW
        reasoning: Optional[str] = None
        required_value: Optional[str] = None
        proposed_value: Optional[str] = None
        recommendation: Optional[str] = None

        @field_validator("measurements_found", mode="before")
        @classmethod
        def _measurements(cls, v):
            if not isinstance(v, list):
                return []
            return [m for m in v if isinstance(m, dict)]

        @field_validator("status", mode="before")
        @classmethod
        def _coerce_status(cls, v):
            return parse_status(v)

        @field_validator("confidence", mode="before")
        @classmethod
        def _coerce_confidence(cls, v):
            return parse_confidence(v)

        @field_validator("reasoning", "required_value", "proposed_value", "recommendation", mode="before")
        @classmethod
        def _text(cls, v):
            return _optional_text(v)

        @property
        def first_location(self) -> Optional[str]:
            if self.measurements_found:
                return self.measurements_found[0].location
            return None


# ── Tool 3: Coordinated Recommendations ───────────────────────────────────────

class CoordinatedRecommendation(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    code_ref: str = Field(..., alias="codeRef")
    recommendation: str
    priority: RecommendationPriority = RecommendationPriority.MEDIUM
    related_findings: List[str] = Field(default_factory=list, alias="relatedFindings")

    @field_validator("code_ref", "recommendation")
    @classmethod
    def _non_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("priority", mode="before")
    @classmethod
    def _coerce_priority(cls, v):
        return parse_priority(v)

    @field_validator("related_findings", mode="before")
    @classmethod
    def _related(cls, v):
        if not isinstance(v, list):
            return []
        return [str(ref).strip() for ref in v if ref is not None and str(ref).strip()]


class RecommendationsTool(BaseModel):
    """
    Review all non-compliant findings together and return one prioritised,
    cross-referenced recommendation per code reference.
    """

    class Output(BaseModel):
        model_config = ConfigDict(extra="ignore")

        recommendations: List[CoordinatedRecommendation] = Field(default_factory=list)
        summary: str = ""
        skipped: int = 0            # items dropped because they failed validation

        @model_validator(mode="before")
        @classmethod
        def _valid_items_only(cls, data):
            if not isinstance(data, dict):
                return data
            items = data.get("recommendations")
            if not isinstance(items, list):
                items = []
            kept, skipped = [], 0
            for item in items:
                try:
                    kept.append(CoordinatedRecommendation.model_validate(item))
                except ValidationError:
                    skipped += 1
            return {**data, "recommendations": kept, "skipped": skipped}

        @field_validator("summary", mode="before")
        @classmethod
        def _summary(cls, v):
            return _optional_text(v) or ""
