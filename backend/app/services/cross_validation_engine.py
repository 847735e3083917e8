"""
Stage 4: Cross-Validation

Collapses the per-page results of stage 3 into one canonical result per
requirement and derives the run-level verdict.

Tie-break for duplicates (total order, so the reduction is order-independent):
    1. higher confidence      HIGH > MEDIUM > LOW
    2. more severe status     CRITICAL > WARNING > COMPLIANT > NOT_ASSESSED
    3. lower page number

Score = compliant / (compliant + warning + critical) * 100, one decimal,
NOT_ASSESSED excluded; 0 when nothing was assessed.
"""
from __future__ import annotations

import math
import logging
from functools import reduce
from typing import Optional

from app.agents.config import (
    CONFIDENCE_PRIORITY,
    CONFLICT_RESOLUTION_NOTE,
    FAIL_SCORE_THRESHOLD,
    PASS_SCORE_THRESHOLD,
    STATUS_SEVERITY,
)
from app.models.pipeline_models import (
    AnalysisResult,
    AnalysisStatus,
    ConflictInfo,
    CrossValidationResult,
    FindingStatus,
    OverallStatus,
    StatusCounts,
)

logger = logging.getLogger("compliance-cross-validation")


def group_by_requirement(results: list) -> dict:
    """Partition results by requirement_id, keeping first-seen order."""
    groups: dict = {}
    for result in results:
        groups.setdefault(result.requirement_id, []).append(result)
    return groups


def detect_conflict(results: list) -> Optional[ConflictInfo]:
    """Conflict = two or more distinct statuses among assessed results."""
    assessed = [r for r in results if r.status != FindingStatus.NOT_ASSESSED]
    if len(assessed) < 2:
        return None
    if len({r.status for r in assessed}) < 2:
        return None
    return ConflictInfo(
        requirement_id=assessed[0].requirement_id,
        code_ref=assessed[0].code_ref,
        conflicting_pages=[r.page_number for r in assessed],
        conflicting_statuses=[r.status for r in assessed],
        resolution=CONFLICT_RESOLUTION_NOTE,
    )


def result_rank(result: AnalysisResult) -> tuple:
    """Sort key where larger means preferred; page number is negated so earlier wins."""
    return (
        CONFIDENCE_PRIORITY.get(result.confidence, 0),
        STATUS_SEVERITY.get(result.status, 0),
        -result.page_number,
    )


def _better_of(a: AnalysisResult, b: AnalysisResult) -> AnalysisResult:
    return b if result_rank(b) > result_rank(a) else a


def select_best_result(results: list) -> AnalysisResult:
    if not results:
        raise ValueError("cannot select from an empty result group")
    return reduce(_better_of, results)


def deduplicate_results(groups: dict) -> tuple:
    """Return (deduplicated, conflicts) with one result per requirement."""
    deduplicated = []
    conflicts = []
    for group in groups.values():
        conflict = detect_conflict(group)
        if conflict:
            conflicts.append(conflict)
        deduplicated.append(select_best_result(group))
    return deduplicated, conflicts


def calculate_status_counts(results: list) -> StatusCounts:
    counts = StatusCounts(total=len(results))
    for result in results:
        if result.status == FindingStatus.COMPLIANT:
            counts.compliant += 1
        elif result.status == FindingStatus.WARNING:
            counts.warning += 1
        elif result.status == FindingStatus.CRITICAL:
            counts.critical += 1
        else:
            counts.not_assessed += 1
    return counts


def calculate_compliance_score(counts: StatusCounts) -> float:
    assessed = counts.assessed
    if assessed == 0:
        return 0.0
    score = counts.compliant / assessed * 100
    # Half-up to one decimal; round() would bank to even
    return math.floor(score * 10 + 0.5) / 10


def determine_overall_status(score: float, counts: StatusCounts) -> OverallStatus:
    if score < FAIL_SCORE_THRESHOLD:
        return OverallStatus.FAIL
    if score >= PASS_SCORE_THRESHOLD and counts.critical == 0:
        return OverallStatus.PASS
    return OverallStatus.CONDITIONAL


def cross_validate(results: list) -> CrossValidationResult:
    """Pure cross-validation over a stage-3 result list."""
    groups = group_by_requirement(results)
    deduplicated, conflicts = deduplicate_results(groups)
    counts = calculate_status_counts(deduplicated)
    score = calculate_compliance_score(counts)
    return CrossValidationResult(
        validated_results=deduplicated,
        conflicts=conflicts,
        status_counts=counts,
        compliance_score=score,
        overall_status=determine_overall_status(score, counts),
    )


class CrossValidationEngine:
    async def run(self, run, results: list) -> CrossValidationResult:
        analysis_id = run.analysis_id
        logger.info(f"[{analysis_id}] Cross-validating {len(results)} raw results")

        await run.set_status(AnalysisStatus.VALIDATING, "Grouping results by requirement")
        groups = group_by_requirement(results)
        logger.info(f"[{analysis_id}] Found {len(groups)} unique requirements")

        await run.set_stage("Performing cross-page validation")
        deduplicated, conflicts = deduplicate_results(groups)
        logger.info(f"[{analysis_id}] Deduplicated to {len(deduplicated)} results")
        for conflict in conflicts:
            pages = ", ".join(
                f"p{page}={status.value}"
                for page, status in zip(conflict.conflicting_pages, conflict.conflicting_statuses)
            )
            logger.info(f"[{analysis_id}] Conflict on {conflict.code_ref}: {pages}")

        await run.set_stage("Calculating compliance metrics")
        counts = calculate_status_counts(deduplicated)
        score = calculate_compliance_score(counts)
        overall = determine_overall_status(score, counts)

        await run.finalize(score, overall, counts)
        logger.info(
            f"[{analysis_id}] Score {score}% -> {overall.value} "
            f"(compliant={counts.compliant}, warning={counts.warning}, "
            f"critical={counts.critical}, not_assessed={counts.not_assessed})"
        )
        return CrossValidationResult(
            validated_results=deduplicated,
            conflicts=conflicts,
            status_counts=counts,
            compliance_score=score,
            overall_status=overall,
        )
