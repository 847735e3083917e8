"""
test_cross_validation_engine.py — Stage 4 cross-validation.

Tests cover:
  - conflict detection: NOT_ASSESSED ignored, ≥2 distinct assessed statuses required
  - best-of-group selection: confidence, then severity, then lowest page number
  - determinism of the selection over every input permutation
  - compliance score (half-up, one decimal, zero denominator) and overall status
  - CrossValidationEngine.run: progress text, single finalize write

All tests are pure unit tests; no database or external services required.
"""

import asyncio
import itertools

import pytest

from app.models.pipeline_models import (
    AnalysisStatus,
    Confidence,
    FindingStatus,
    OverallStatus,
    StatusCounts,
)
from app.services.cross_validation_engine import (
    CrossValidationEngine,
    calculate_compliance_score,
    calculate_status_counts,
    cross_validate,
    detect_conflict,
    determine_overall_status,
    group_by_requirement,
    select_best_result,
)
from conftest import InMemoryRunState, make_result

C, W, K, N = (FindingStatus.COMPLIANT, FindingStatus.WARNING,
              FindingStatus.CRITICAL, FindingStatus.NOT_ASSESSED)
HIGH, MED, LOW = Confidence.HIGH, Confidence.MEDIUM, Confidence.LOW


def _counts(compliant=0, warning=0, critical=0, not_assessed=0):
    return StatusCounts(
        compliant=compliant, warning=warning, critical=critical, not_assessed=not_assessed,
        total=compliant + warning + critical + not_assessed,
    )


class TestConflicts:

    def test_distinct_assessed_statuses_conflict(self):
        group = [make_result(status=C, page_number=1), make_result(status=K, page_number=3)]
        conflict = detect_conflict(group)
        assert conflict is not None
        assert conflict.conflicting_pages == [1, 3]
        assert conflict.conflicting_statuses == [C, K]
        assert conflict.resolution.startswith("Kept result with highest confidence")

    def test_not_assessed_is_ignored(self):
        group = [make_result(status=C, page_number=1), make_result(status=N, page_number=2)]
        assert detect_conflict(group) is None

    def test_agreeing_statuses_do_not_conflict(self):
        group = [make_result(status=W, page_number=i) for i in range(1, 4)]
        assert detect_conflict(group) is None

    def test_single_result_never_conflicts(self):
        assert detect_conflict([make_result(status=K)]) is None


class TestSelection:

    def test_confidence_wins_first(self):
        group = [make_result(status=K, confidence=LOW, page_number=1),
                 make_result(status=C, confidence=HIGH, page_number=2)]
        assert select_best_result(group).page_number == 2

    def test_severity_breaks_confidence_tie(self):
        group = [make_result(status=C, confidence=MED, page_number=1),
                 make_result(status=W, confidence=MED, page_number=2),
                 make_result(status=N, confidence=MED, page_number=3)]
        assert select_best_result(group).status is W

    def test_lowest_page_breaks_full_tie(self):
        group = [make_result(status=C, confidence=HIGH, page_number=p) for p in (7, 2, 5)]
        assert select_best_result(group).page_number == 2

    def test_empty_group_rejected(self):
        with pytest.raises(ValueError):
            select_best_result([])

    def test_selection_is_order_independent(self):
        group = [
            make_result(status=C, confidence=HIGH, page_number=4),
            make_result(status=K, confidence=HIGH, page_number=6),
            make_result(status=K, confidence=HIGH, page_number=3),
            make_result(status=W, confidence=MED, page_number=1),
            make_result(status=N, confidence=LOW, page_number=2),
        ]
        winners = {
            (r.status, r.confidence, r.page_number)
            for r in (select_best_result(list(p)) for p in itertools.permutations(group))
        }
        assert winners == {(K, HIGH, 3)}

    def test_one_result_per_requirement(self):
        results = [make_result("a", page_number=1), make_result("b", page_number=1),
                   make_result("a", page_number=2), make_result("c", page_number=5)]
        groups = group_by_requirement(results)
        assert list(groups) == ["a", "b", "c"]
        assert len(cross_validate(results).validated_results) == 3


class TestScore:

    def test_mixed_counts(self):
        counts = _counts(compliant=8, warning=1, critical=1, not_assessed=5)
        score = calculate_compliance_score(counts)
        assert score == 80.0
        assert determine_overall_status(score, counts) is OverallStatus.CONDITIONAL

    def test_all_compliant(self):
        counts = _counts(compliant=10)
        score = calculate_compliance_score(counts)
        assert score == 100.0
        assert determine_overall_status(score, counts) is OverallStatus.PASS

    def test_nothing_assessed(self):
        counts = _counts(not_assessed=4)
        score = calculate_compliance_score(counts)
        assert score == 0
        assert determine_overall_status(score, counts) is OverallStatus.FAIL

    def test_rounds_to_one_decimal(self):
        assert calculate_compliance_score(_counts(compliant=2, warning=1)) == 66.7
        assert calculate_compliance_score(_counts(compliant=1, critical=2)) == 33.3

    def test_high_score_with_critical_is_conditional(self):
        counts = _counts(compliant=19, critical=1)
        score = calculate_compliance_score(counts)
        assert score == 95.0
        assert determine_overall_status(score, counts) is OverallStatus.CONDITIONAL

    def test_boundaries(self):
        assert determine_overall_status(69.9, _counts()) is OverallStatus.FAIL
        assert determine_overall_status(70.0, _counts()) is OverallStatus.CONDITIONAL
        assert determine_overall_status(90.0, _counts()) is OverallStatus.PASS

    def test_status_counts(self):
        results = [make_result(status=s) for s in (C, C, W, K, N, N)]
        counts = calculate_status_counts(results)
        assert (counts.compliant, counts.warning, counts.critical, counts.not_assessed) == (2, 1, 1, 2)
        assert counts.total == 6


class TestEngine:

    def test_run_writes_aggregates_once(self):
        results = [
            make_result("a", status=C, page_number=1),
            make_result("a", status=K, confidence=LOW, page_number=2),
            make_result("b", status=W, page_number=1),
        ]
        run = InMemoryRunState()
        out = asyncio.run(CrossValidationEngine().run(run, results))

        assert run.status is AnalysisStatus.VALIDATING
        assert run.stages == [
            "Grouping results by requirement",
            "Performing cross-page validation",
            "Calculating compliance metrics",
        ]
        score, overall, counts = run.aggregates
        assert score == out.compliance_score == 50.0
        assert overall is out.overall_status is OverallStatus.FAIL
        assert counts.compliant == 1 and counts.warning == 1
        assert len(out.conflicts) == 1
        assert out.conflicts[0].requirement_id == "a"

    def test_empty_input(self):
        run = InMemoryRunState()
        out = asyncio.run(CrossValidationEngine().run(run, []))
        assert out.validated_results == []
        assert out.compliance_score == 0
        assert out.overall_status is OverallStatus.FAIL
