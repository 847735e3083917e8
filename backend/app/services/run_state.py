"""
Analysis run state: the only cross-stage mutable record of a run.

Stages never touch the database directly; they receive an AnalysisRunState
and call its narrow update interface:

    set_stage(text)              progress text shown to the user
    set_status(status, text)     lifecycle transition + progress text
    set_total_checks(n)          monotonic matrix progress counter
    finalize(score, status, counts)  aggregate fields, written once
    complete(findings)           batch-insert findings + COMPLETED, one transaction
    fail(stage, message)         FAILED + failure locator text

Every write is a targeted UPDATE guarded by ``status NOT IN (COMPLETED, FAILED)``
so a terminal run can never be mutated again.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, update

from app.models.pipeline_models import (
    AnalysisStatus,
    FindingRecord,
    OverallStatus,
    RunContext,
    StatusCounts,
    TERMINAL_STATUSES,
)
from app.models.progress_models import RunProgressPayload

logger = logging.getLogger("compliance-run-state")

_TERMINAL_VALUES = [s.value for s in TERMINAL_STATUSES]


class RunStateError(RuntimeError):
    """The run does not exist or is already terminal."""


def _now() -> datetime:
    return datetime.now(timezone.utc)


class AnalysisRunState:
    """Handle on one analysis row, backed by an async SQLAlchemy session factory."""

    def __init__(self, analysis_id: str, session_factory=None):
        self.analysis_id = analysis_id
        if session_factory is None:
            from app.db import AsyncSessionLocal
            session_factory = AsyncSessionLocal
        self._session_factory = session_factory
        self._total_checks = 0
        self._finalized = False

    # ── Reads ────────────────────────────────────────────────────────────────

    async def load(self) -> RunContext:
        from app.models.orm_models import Analysis
        async with self._session_factory() as session:
            result = await session.execute(select(Analysis).where(Analysis.id == self.analysis_id))
            row = result.scalar_one_or_none()
        if row is None:
            raise RunStateError(f"Analysis {self.analysis_id} not found")
        return RunContext(
            analysis_id=self.analysis_id,
            document_url=row.document_url,
            document_type=row.document_type,
            page_count=row.page_count or 1,
            selected_codes=list(row.selected_codes or []),
            status=AnalysisStatus(row.status),
        )

    # ── Writes ───────────────────────────────────────────────────────────────

    async def _update(self, session, **values) -> None:
        from app.models.orm_models import Analysis
        result = await session.execute(
            update(Analysis)
            .where(Analysis.id == self.analysis_id)
            .where(Analysis.status.notin_(_TERMINAL_VALUES))
            .values(**values)
        )
        if result.rowcount == 0:
            raise RunStateError(
                f"Analysis {self.analysis_id} not found or already terminal"
            )

    async def _write(self, **values) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                await self._update(session, **values)

    async def mark_started(self) -> None:
        """Start (or restart after redelivery) with progress and aggregates cleared."""
        await self._write(
            status=AnalysisStatus.CLASSIFYING.value,
            started_at=_now(),
            current_stage="Initializing analysis pipeline",
            total_checks=0,
            compliance_score=None,
            overall_status=None,
            critical_count=0,
            warning_count=0,
            compliant_count=0,
            not_assessed_count=0,
        )
        logger.info(f"[{self.analysis_id}] Run started")

    async def set_stage(self, text: str) -> None:
        await self._write(current_stage=text)

    async def set_status(self, status: AnalysisStatus, text: str) -> None:
        if status in TERMINAL_STATUSES:
            raise RunStateError(f"Use complete()/fail() for terminal status {status.value}")
        await self._write(status=status.value, current_stage=text)

    async def set_total_checks(self, n: int) -> None:
        if n < self._total_checks:
            raise RunStateError(
                f"total_checks must not decrease ({self._total_checks} -> {n})"
            )
        await self._write(total_checks=n)
        self._total_checks = n

    async def finalize(
        self,
        score: float,
        overall_status: OverallStatus,
        counts: StatusCounts,
    ) -> None:
        if self._finalized:
            raise RunStateError(f"Analysis {self.analysis_id} aggregates already written")
        await self._write(
            compliance_score=score,
            overall_status=overall_status.value,
            critical_count=counts.critical,
            warning_count=counts.warning,
            compliant_count=counts.compliant,
            not_assessed_count=counts.not_assessed,
        )
        self._finalized = True

    async def complete(self, findings: list) -> None:
        """Persist every finding and mark the run COMPLETED. Not retryable."""
        async with self._session_factory() as session:
            async with session.begin():
                session.add_all([self._finding_row(f) for f in findings])
                await self._update(
                    session,
                    status=AnalysisStatus.COMPLETED.value,
                    current_stage="Analysis complete",
                    completed_at=_now(),
                )
        logger.info(f"[{self.analysis_id}] Saved {len(findings)} findings; run COMPLETED")

    async def fail(self, stage: str, message: str) -> None:
        await self._write(
            status=AnalysisStatus.FAILED.value,
            current_stage=f"Failed at {stage}: {message}",
        )
        logger.error(f"[{self.analysis_id}] Run FAILED at {stage}: {message}")

    def _finding_row(self, record: FindingRecord):
        from app.models.orm_models import Finding
        return Finding(
            analysis_id=self.analysis_id,
            code_reference=record.code_reference,
            category=record.category.value,
            status=record.status.value,
            confidence=record.confidence.value,
            description=record.description,
            required_value=record.required_value,
            proposed_value=record.proposed_value,
            page_number=record.page_number,
            location=record.location,
            analysis_notes=record.analysis_notes,
            recommendation=record.recommendation,
            raw_extraction=record.raw_extraction,
            sort_order=record.sort_order,
        )


async def get_run_status(analysis_id: str, session_factory=None) -> Optional[RunProgressPayload]:
    """Snapshot of the polled observables; None when the run does not exist."""
    from app.models.orm_models import Analysis
    if session_factory is None:
        from app.db import AsyncSessionLocal
        session_factory = AsyncSessionLocal
    async with session_factory() as session:
        result = await session.execute(select(Analysis).where(Analysis.id == analysis_id))
        row = result.scalar_one_or_none()
    if row is None:
        return None
    return RunProgressPayload(
        analysis_id=analysis_id,
        status=row.status,
        current_stage=row.current_stage,
        total_checks=row.total_checks or 0,
        compliance_score=row.compliance_score,
        overall_status=row.overall_status,
        started_at=row.started_at,
        completed_at=row.completed_at,
    )
