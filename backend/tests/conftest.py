"""
conftest.py — Shared pytest fixtures for the compliance analysis test suite.

No database, bucket or model fixtures touch the network.  Stages are exercised
against in-memory fakes that honour the same narrow interfaces as the real
collaborators:

    FakeStorage         fetch(key) / store(key, data, content_type)
    ScriptedModel       generate(prompt, image=None), scripted per prompt
    InMemoryRunState    the AnalysisRunState update interface, with a history
    StaticRequirements  fetch_published(code_ids)

Import-path bootstrapping:
    The ``backend/`` directory is inserted into sys.path so that all
    ``app.*`` imports resolve correctly regardless of where pytest is invoked.
"""

import sys
import os
import json
import asyncio
import pytest

# ---------------------------------------------------------------------------
# Ensure ``backend/`` is on the import path before any app imports occur.
# ---------------------------------------------------------------------------
_BACKEND_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _BACKEND_DIR not in sys.path:
    sys.path.insert(0, _BACKEND_DIR)

from app.models.pipeline_models import (  # noqa: E402
    AnalysisResult,
    AnalysisStatus,
    CheckType,
    ClassifiedPage,
    CodeRequirement,
    Confidence,
    FindingCategory,
    FindingStatus,
    PageType,
    RunContext,
    TERMINAL_STATUSES,
)
from app.services.run_state import RunStateError  # noqa: E402


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeStorage:
    """Dict-backed object storage."""

    def __init__(self, objects=None):
        self.objects = dict(objects or {})
        self.content_types = {}
        self.fetched = []

    async def fetch(self, key):
        self.fetched.append(key)
        if key not in self.objects:
            raise KeyError(f"no object at {key}")
        return self.objects[key]

    async def store(self, key, data, content_type):
        self.objects[key] = data
        self.content_types[key] = content_type


class ScriptedModel:
    """
    Vision model stand-in.

    ``responder(prompt, image)`` returns the response text or raises; a dict
    return value is JSON-encoded.  Tracks the peak number of concurrent calls.
    """

    def __init__(self, responder, delay=0.0):
        self.responder = responder
        self.delay = delay
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def generate(self, prompt, image=None):
        self.calls.append((prompt, image))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            response = self.responder(prompt, image)
        finally:
            self.in_flight -= 1
        if isinstance(response, (dict, list)):
            return json.dumps(response)
        return response


class InMemoryRunState:
    """AnalysisRunState with the same guards, recording every write."""

    def __init__(self, analysis_id="run-1", context=None):
        self.analysis_id = analysis_id
        self.context = context
        self.status = AnalysisStatus.PENDING
        self.current_stage = None
        self.total_checks = 0
        self.total_checks_history = []
        self.stages = []
        self.statuses = []
        self.aggregates = None
        self.findings = None
        self.failure = None

    def _guard(self):
        if self.status in TERMINAL_STATUSES:
            raise RunStateError(f"Analysis {self.analysis_id} already terminal")

    def _stage(self, text):
        self.current_stage = text
        self.stages.append(text)

    async def load(self):
        if self.context is None:
            raise RunStateError(f"Analysis {self.analysis_id} not found")
        return self.context

    async def mark_started(self):
        self._guard()
        self.status = AnalysisStatus.CLASSIFYING
        self.statuses.append(self.status)
        self.total_checks = 0
        self.aggregates = None
        self._stage("Initializing analysis pipeline")

    async def set_stage(self, text):
        self._guard()
        self._stage(text)

    async def set_status(self, status, text):
        self._guard()
        if status in TERMINAL_STATUSES:
            raise RunStateError("terminal status via set_status")
        self.status = status
        self.statuses.append(status)
        self._stage(text)

    async def set_total_checks(self, n):
        self._guard()
        if n < self.total_checks:
            raise RunStateError("total_checks must not decrease")
        self.total_checks = n
        self.total_checks_history.append(n)

    async def finalize(self, score, overall_status, counts):
        self._guard()
        if self.aggregates is not None:
            raise RunStateError("aggregates already written")
        self.aggregates = (score, overall_status, counts)

    async def complete(self, findings):
        self._guard()
        self.findings = list(findings)
        self.status = AnalysisStatus.COMPLETED
        self.statuses.append(self.status)
        self._stage("Analysis complete")

    async def fail(self, stage, message):
        self._guard()
        self.status = AnalysisStatus.FAILED
        self.statuses.append(self.status)
        self.failure = (stage, message)
        self._stage(f"Failed at {stage}: {message}")


class StaticRequirements:
    def __init__(self, requirements):
        self.requirements = list(requirements)
        self.requested = []

    async def fetch_published(self, code_ids):
        self.requested.append(list(code_ids))
        return [r for r in self.requirements if r.code_id in code_ids]


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

def make_requirement(
    req_id="req-1",
    code_ref="R302.1",
    category=FindingCategory.FIRE_SAFETY,
    drawing_types=("floor_plan",),
    code_id="IRC-2021",
    **overrides,
):
    fields = dict(
        id=req_id,
        code_ref=code_ref,
        title=f"Title for {code_ref}",
        category=category,
        full_text=f"Full text of {code_ref}",
        check_type=CheckType.MEASUREMENT_THRESHOLD,
        thresholds={"min_mm": 900},
        applies_to_drawing_types=list(drawing_types),
        exceptions=["Existing buildings"],
        extraction_guidance="Measure the clear width",
        evaluation_guidance="Compare to the minimum",
        code_id=code_id,
        code_name="International Residential Code",
    )
    fields.update(overrides)
    return CodeRequirement(**fields)


def make_page(page_number=1, page_type=PageType.FLOOR_PLAN, analysis_id="run-1"):
    return ClassifiedPage(
        page_number=page_number,
        image_key=f"analyses/{analysis_id}/pages/page-{page_number:04d}.png",
        width=100,
        height=100,
        page_type=page_type,
        description=f"Page {page_number}",
    )


def make_result(
    requirement_id="req-1",
    status=FindingStatus.COMPLIANT,
    confidence=Confidence.HIGH,
    page_number=1,
    code_ref="R302.1",
    category=FindingCategory.FIRE_SAFETY,
    recommendation=None,
    **overrides,
):
    fields = dict(
        requirement_id=requirement_id,
        code_ref=code_ref,
        code_id="IRC-2021",
        category=category,
        page_number=page_number,
        status=status,
        confidence=confidence,
        description=f"Full text of {code_ref}",
        required_value="900 mm",
        proposed_value="850 mm",
        location=None,
        analysis_notes="Checked",
        recommendation=recommendation,
        raw_extraction={},
    )
    fields.update(overrides)
    return AnalysisResult(**fields)


def check_response(status="COMPLIANT", confidence="HIGH", recommendation=None, **extra):
    body = {
        "measurements_found": [
            {"name": "Door width", "value": "900", "unit": "mm", "location": "Grid B/3"}
        ],
        "status": status,
        "confidence": confidence,
        "reasoning": "Measured on plan",
        "required_value": "900 mm minimum",
        "proposed_value": "900 mm",
        "recommendation": recommendation,
    }
    body.update(extra)
    return body


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def run_state():
    return InMemoryRunState()


@pytest.fixture
def run_context():
    return RunContext(
        analysis_id="run-1",
        document_url="https://files.example.com/plans-bucket/uploads/user-1/plan.png",
        document_type="PNG",
        page_count=1,
        selected_codes=["IRC-2021"],
    )
