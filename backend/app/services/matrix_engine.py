"""
Stage 3: Matrix Analysis

Builds the requirement × page matrix and evaluates every pair with the vision
model:

  1. Load PUBLISHED requirements for the selected building codes
  2. Pair each requirement with every page whose type it applies to
     (``"all"`` matches every page)
  3. Evaluate pairs in sequential batches of MATRIX_BATCH_SIZE concurrent calls
  4. After each batch, write the cumulative completed-pair count to total_checks

A failed pair becomes a NOT_ASSESSED result with the error as its notes.
Zero requirements or zero pairs is a normal, empty outcome.
"""
from __future__ import annotations

import json
import asyncio
import logging
from collections import Counter

from app.agents.config import MANUAL_REVIEW_RECOMMENDATION, MATRIX_BATCH_SIZE
from app.agents.tool_schemas import RequirementCheckTool
from app.models.pipeline_models import (
    AnalysisResult,
    AnalysisStatus,
    CodeRequirement,
    Confidence,
    FindingStatus,
    MatrixAnalysisResult,
    MatrixPair,
    NON_COMPLIANT_STATUSES,
    as_json_list,
)
from app.services.llm_client import parse_json_from_response

logger = logging.getLogger("compliance-matrix")


def build_matrix(requirements: list, pages: list) -> list:
    """Cross product of requirements and the pages each one applies to."""
    pairs = []
    for requirement in requirements:
        for page in pages:
            if requirement.applies_to_page_type(page.page_type):
                pairs.append(MatrixPair(requirement=requirement, page=page))
    return pairs


def build_requirement_prompt(requirement: CodeRequirement) -> str:
    exceptions = as_json_list(requirement.exceptions)
    thresholds_text = (
        f"\nThresholds: {json.dumps(requirement.thresholds)}" if requirement.thresholds else ""
    )
    exceptions_text = (
        f"\nExceptions to consider: {'; '.join(str(e) for e in exceptions)}"
        if exceptions else ""
    )
    return f"""You are an expert building code compliance analyst. Analyze this architectural drawing to check compliance with the following requirement.

## Code Reference: {requirement.code_ref}
## Code: {requirement.code_id} - {requirement.code_name}
## Title: {requirement.title}
## Category: {requirement.category.value}

## Requirement Text:
{requirement.full_text}
{thresholds_text}
{exceptions_text}

## What to Extract:
{requirement.extraction_guidance}

## How to Evaluate:
{requirement.evaluation_guidance}

## Your Task:
1. Examine the drawing carefully for elements related to this requirement
2. Extract any relevant measurements, dimensions, or features
3. Compare against the requirement thresholds or criteria
4. Determine compliance status

## Response Format (JSON only):
{{
  "measurements_found": [
    {{"name": "measurement name", "value": "measured value", "unit": "unit", "location": "where found on drawing"}}
  ],
  "status": "COMPLIANT" | "WARNING" | "CRITICAL" | "NOT_ASSESSED",
  "confidence": "HIGH" | "MEDIUM" | "LOW",
  "reasoning": "Detailed explanation of your analysis and findings",
  "required_value": "What the code requires (from the requirement text)",
  "proposed_value": "What was found in the drawing, or null if not visible",
  "recommendation": "Specific action to achieve compliance, or null if compliant"
}}

Status definitions:
- COMPLIANT: Meets or exceeds the requirement
- WARNING: Minor deviation or needs verification
- CRITICAL: Does not meet the requirement
- NOT_ASSESSED: Cannot determine from this drawing (not visible, wrong page type, etc.)

Confidence definitions:
- HIGH: Measurements clearly visible and unambiguous
- MEDIUM: Some uncertainty in readings or partial visibility
- LOW: Significant uncertainty, manual verification recommended

Respond ONLY with valid JSON, no additional text."""


def result_from_output(pair: MatrixPair, output, raw: dict) -> AnalysisResult:
    requirement, page = pair.requirement, pair.page
    # Recommendations only carry meaning for non-compliant outcomes
    recommendation = output.recommendation if output.status in NON_COMPLIANT_STATUSES else None
    return AnalysisResult(
        requirement_id=requirement.id,
        code_ref=requirement.code_ref,
        code_id=requirement.code_id,
        category=requirement.category,
        page_number=page.page_number,
        status=output.status,
        confidence=output.confidence,
        description=requirement.full_text,
        required_value=output.required_value or requirement.title,
        proposed_value=output.proposed_value,
        location=output.first_location,
        analysis_notes=output.reasoning or "Analysis completed",
        recommendation=recommendation,
        raw_extraction=raw,
    )


def failed_result(pair: MatrixPair, error: Exception) -> AnalysisResult:
    requirement, page = pair.requirement, pair.page
    return AnalysisResult(
        requirement_id=requirement.id,
        code_ref=requirement.code_ref,
        code_id=requirement.code_id,
        category=requirement.category,
        page_number=page.page_number,
        status=FindingStatus.NOT_ASSESSED,
        confidence=Confidence.LOW,
        description=requirement.full_text,
        required_value=requirement.title,
        proposed_value=None,
        location=None,
        analysis_notes=f"Analysis failed: {str(error) or type(error).__name__}",
        recommendation=MANUAL_REVIEW_RECOMMENDATION,
        raw_extraction={
            "measurements_found": [],
            "status": FindingStatus.NOT_ASSESSED.value,
            "confidence": Confidence.LOW.value,
            "reasoning": "Analysis could not be completed due to an error",
            "required_value": requirement.title,
            "proposed_value": None,
            "recommendation": "Manual review required",
        },
    )


class MatrixAnalysisEngine:
    def __init__(self, storage, llm, requirement_store, batch_size: int = MATRIX_BATCH_SIZE):
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.storage = storage
        self.llm = llm
        self.requirement_store = requirement_store
        self.batch_size = batch_size

    async def analyse_pair(self, pair: MatrixPair) -> AnalysisResult:
        """Evaluate one pair. Never raises; failures become NOT_ASSESSED."""
        try:
            image = await self.storage.fetch(pair.page.image_key)
            response = await self.llm.generate(build_requirement_prompt(pair.requirement), image)
            raw = parse_json_from_response(response)
            output = RequirementCheckTool.Output.model_validate(raw)
            return result_from_output(pair, output, raw)
        except Exception as e:
            logger.error(
                f"Error analysing {pair.requirement.code_ref} on page {pair.page.page_number}: "
                f"{type(e).__name__}: {e}"
            )
            return failed_result(pair, e)

    async def process_batches(self, run, pairs: list) -> list:
        results = []
        processed = 0
        total_batches = (len(pairs) + self.batch_size - 1) // self.batch_size

        for batch_index, start in enumerate(range(0, len(pairs), self.batch_size), start=1):
            batch = pairs[start:start + self.batch_size]
            progress = (
                f"Analysing batch {batch_index} of {total_batches} "
                f"({processed}/{len(pairs)} checks)"
            )
            await run.set_stage(progress)
            logger.info(f"[{run.analysis_id}] {progress}")

            batch_results = await asyncio.gather(*(self.analyse_pair(p) for p in batch))
            results.extend(batch_results)
            processed += len(batch_results)

            # One write per batch, after every call in it has settled
            await run.set_total_checks(processed)

        return results

    async def run(self, run, selected_codes: list, pages: list) -> MatrixAnalysisResult:
        analysis_id = run.analysis_id
        logger.info(
            f"[{analysis_id}] Matrix analysis: codes={list(selected_codes)}, pages={len(pages)}"
        )
        await run.set_status(AnalysisStatus.ANALYSING, "Fetching code requirements")

        requirements = await self.requirement_store.fetch_published(selected_codes)
        if not requirements:
            logger.info(f"[{analysis_id}] No published requirements for selected codes")
            return MatrixAnalysisResult(results=[], total_checks=0, total_pairs=0)

        await run.set_stage("Building analysis matrix")
        pairs = build_matrix(requirements, pages)
        logger.info(
            f"[{analysis_id}] Built matrix: {len(requirements)} requirements x "
            f"{len(pages)} pages -> {len(pairs)} pairs"
        )
        if not pairs:
            logger.info(f"[{analysis_id}] No applicable pairs (no matching page types)")
            return MatrixAnalysisResult(results=[], total_checks=0, total_pairs=0)

        breakdown = Counter(p.requirement.code_ref for p in pairs)
        logger.info(f"[{analysis_id}] Matrix breakdown: {dict(breakdown)}")

        results = await self.process_batches(run, pairs)

        status_counts = Counter(r.status.value for r in results)
        logger.info(f"[{analysis_id}] Completed {len(results)} checks: {dict(status_counts)}")
        return MatrixAnalysisResult(
            results=results,
            total_checks=len(results),
            total_pairs=len(pairs),
        )
