"""
test_pipeline_models.py — Enum coercion and record helpers.

Tests cover:
  - parse_page_type / parse_status / parse_confidence / parse_priority:
    case-insensitivity, whitespace, out-of-domain and missing values
  - parse_document_type: aliases and strict rejection
  - CodeRequirement.applies_to_page_type: explicit types and the "all" wildcard
  - as_json_list: null, bare scalars and arrays from JSON columns
  - StatusCounts.assessed, FindingRecord.from_result

All tests are pure unit tests; no database or external services required.
"""

import pytest

from app.models.pipeline_models import (
    Confidence,
    DocumentType,
    FindingRecord,
    FindingStatus,
    PageType,
    RecommendationPriority,
    StatusCounts,
    parse_confidence,
    parse_document_type,
    parse_page_type,
    parse_priority,
    parse_status,
    as_json_list,
)
from conftest import make_requirement, make_result


class TestPageTypeCoercion:

    @pytest.mark.parametrize("raw,expected", [
        ("floor_plan", PageType.FLOOR_PLAN),
        ("ELEVATION", PageType.ELEVATION),
        ("  section ", PageType.SECTION),
        ("title_block", PageType.TITLE_BLOCK),
    ])
    def test_known_values(self, raw, expected):
        assert parse_page_type(raw) is expected

    @pytest.mark.parametrize("raw", ["roof plan", "", None, 42, {"x": 1}])
    def test_unknown_values_become_other(self, raw):
        assert parse_page_type(raw) is PageType.OTHER

    def test_enum_input_passes_through(self):
        assert parse_page_type(PageType.DETAIL) is PageType.DETAIL


class TestStatusAndConfidenceCoercion:

    def test_status_case_insensitive(self):
        assert parse_status("critical") is FindingStatus.CRITICAL
        assert parse_status(" Warning ") is FindingStatus.WARNING

    @pytest.mark.parametrize("raw", ["FAIL", "non-compliant", None, ""])
    def test_out_of_domain_status_is_not_assessed(self, raw):
        assert parse_status(raw) is FindingStatus.NOT_ASSESSED

    def test_confidence_defaults_to_low(self):
        assert parse_confidence("high") is Confidence.HIGH
        assert parse_confidence("very sure") is Confidence.LOW
        assert parse_confidence(None) is Confidence.LOW

    def test_priority_defaults_to_medium(self):
        assert parse_priority("low") is RecommendationPriority.LOW
        assert parse_priority("urgent") is RecommendationPriority.MEDIUM


class TestDocumentType:

    def test_aliases(self):
        assert parse_document_type("jpeg") is DocumentType.JPG
        assert parse_document_type("tif") is DocumentType.TIFF
        assert parse_document_type("pdf") is DocumentType.PDF

    def test_unknown_raises(self):
        with pytest.raises(ValueError):
            parse_document_type("DOCX")


class TestRequirementApplicability:

    def test_explicit_types(self):
        req = make_requirement(drawing_types=["floor_plan", "section"])
        assert req.applies_to_page_type(PageType.FLOOR_PLAN)
        assert req.applies_to_page_type(PageType.SECTION)
        assert not req.applies_to_page_type(PageType.ELEVATION)

    def test_wildcard_matches_every_type(self):
        req = make_requirement(drawing_types=["ALL"])
        assert all(req.applies_to_page_type(t) for t in PageType)

    def test_empty_matches_nothing(self):
        req = make_requirement(drawing_types=[])
        assert not any(req.applies_to_page_type(t) for t in PageType)

    def test_bare_string_wildcard(self):
        req = make_requirement(applies_to_drawing_types="all")
        assert all(req.applies_to_page_type(t) for t in PageType)

    def test_bare_string_single_type(self):
        req = make_requirement(applies_to_drawing_types="floor_plan")
        assert req.applies_to_page_type(PageType.FLOOR_PLAN)
        assert not req.applies_to_page_type(PageType.ELEVATION)

    def test_null_matches_nothing(self):
        req = make_requirement(applies_to_drawing_types=None)
        assert not any(req.applies_to_page_type(t) for t in PageType)


class TestJsonList:

    @pytest.mark.parametrize("raw,expected", [
        (None, []),
        ("all", ["all"]),
        (["a", "b"], ["a", "b"]),
        (("a",), ["a"]),
        (3, [3]),
    ])
    def test_shapes(self, raw, expected):
        assert as_json_list(raw) == expected


class TestRecords:

    def test_assessed_excludes_not_assessed(self):
        counts = StatusCounts(critical=1, warning=2, compliant=3, not_assessed=4, total=10)
        assert counts.assessed == 6

    def test_finding_record_copies_result(self):
        result = make_result(status=FindingStatus.WARNING, recommendation="Widen door",
                             location="Grid A")
        record = FindingRecord.from_result(result, sort_order=3)
        assert record.code_reference == "R302.1"
        assert record.status is FindingStatus.WARNING
        assert record.recommendation == "Widen door"
        assert record.location == "Grid A"
        assert record.sort_order == 3
