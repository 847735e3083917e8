"""ORM Models for the compliance analysis pipeline: SQLAlchemy 2.0"""
import uuid
from datetime import datetime
from typing import Optional
from sqlalchemy import (
    String, Text, Integer, Float, DateTime,
    ForeignKey, Index
)
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func
from app.db import Base


def gen_uuid():
    return str(uuid.uuid4())


# ── BUILDING CODES (knowledge base, read-only to the pipeline) ────────────────
class BuildingCode(Base):
    __tablename__ = "building_codes"
    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=gen_uuid)
    region: Mapped[str] = mapped_column(String(10), nullable=False)            # AU | UK | US
    code_id: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)  # e.g. IRC-2021
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    version: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="DRAFT")         # DRAFT | ACTIVE | DEPRECATED
    source_document_url: Mapped[Optional[str]] = mapped_column(Text)
    published_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    requirements: Mapped[list["CodeRequirement"]] = relationship(
        "CodeRequirement", back_populates="building_code"
    )


class CodeRequirement(Base):
    __tablename__ = "code_requirements"
    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=gen_uuid)
    building_code_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), ForeignKey("building_codes.id", ondelete="CASCADE"), nullable=False
    )
    code_ref: Mapped[str] = mapped_column(String(100), nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(30), nullable=False)       # FindingCategory
    full_text: Mapped[str] = mapped_column(Text, nullable=False)
    check_type: Mapped[str] = mapped_column(String(30), nullable=False)     # CheckType
    thresholds: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    applies_to_drawing_types: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    applies_to_building_types: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    applies_to_spaces: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    exceptions: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    extraction_guidance: Mapped[str] = mapped_column(Text, nullable=False, default="")
    evaluation_guidance: Mapped[str] = mapped_column(Text, nullable=False, default="")
    source_page: Mapped[Optional[int]] = mapped_column(Integer)
    status: Mapped[str] = mapped_column(String(20), default="DRAFT")        # DRAFT | VERIFIED | PUBLISHED | DEPRECATED
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
    building_code: Mapped["BuildingCode"] = relationship("BuildingCode", back_populates="requirements")

    __table_args__ = (
        Index("code_requirements_code_status_idx", "building_code_id", "status"),
    )


# ── ANALYSES (one row per run) ────────────────────────────────────────────────
class Analysis(Base):
    __tablename__ = "analyses"
    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=gen_uuid)
    project_id: Mapped[Optional[str]] = mapped_column(UUID(as_uuid=False))
    report_ref: Mapped[Optional[str]] = mapped_column(String(50), unique=True)
    document_name: Mapped[str] = mapped_column(Text, nullable=False)
    document_url: Mapped[str] = mapped_column(Text, nullable=False)
    document_size: Mapped[int] = mapped_column(Integer, default=0)
    document_type: Mapped[str] = mapped_column(String(10), nullable=False)  # PDF | PNG | JPG | TIFF | DXF | IFC
    page_count: Mapped[int] = mapped_column(Integer, default=1)
    region: Mapped[Optional[str]] = mapped_column(String(10))
    selected_codes: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    # Pipeline-owned fields
    status: Mapped[str] = mapped_column(String(20), default="PENDING")
    current_stage: Mapped[Optional[str]] = mapped_column(Text)
    compliance_score: Mapped[Optional[float]] = mapped_column(Float)
    overall_status: Mapped[Optional[str]] = mapped_column(String(20))       # PASS | CONDITIONAL | FAIL
    critical_count: Mapped[int] = mapped_column(Integer, default=0)
    warning_count: Mapped[int] = mapped_column(Integer, default=0)
    compliant_count: Mapped[int] = mapped_column(Integer, default=0)
    not_assessed_count: Mapped[int] = mapped_column(Integer, default=0)
    total_checks: Mapped[int] = mapped_column(Integer, default=0)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    findings: Mapped[list["Finding"]] = relationship("Finding", back_populates="analysis")


# ── FINDINGS (immutable, written once at the end of a run) ────────────────────
class Finding(Base):
    __tablename__ = "findings"
    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=gen_uuid)
    analysis_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), ForeignKey("analyses.id", ondelete="CASCADE"), nullable=False
    )
    code_reference: Mapped[str] = mapped_column(String(100), nullable=False)
    category: Mapped[str] = mapped_column(String(30), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    confidence: Mapped[str] = mapped_column(String(10), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    required_value: Mapped[str] = mapped_column(Text, nullable=False)
    proposed_value: Mapped[Optional[str]] = mapped_column(Text)
    page_number: Mapped[Optional[int]] = mapped_column(Integer)
    location: Mapped[Optional[str]] = mapped_column(Text)
    analysis_notes: Mapped[str] = mapped_column(Text, nullable=False)
    recommendation: Mapped[Optional[str]] = mapped_column(Text)
    raw_extraction: Mapped[Optional[dict]] = mapped_column(JSONB)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False)
    analysis: Mapped["Analysis"] = relationship("Analysis", back_populates="findings")

    __table_args__ = (
        Index("findings_analysis_id_sort_order_idx", "analysis_id", "sort_order"),
    )
