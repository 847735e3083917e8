"""
Stage 5: Recommendations and completion

  1. Send every CRITICAL/WARNING finding to the model in one call for
     coordinated, prioritised recommendations (skipped when there are none)
  2. Merge them back by code reference with a [Priority: X] [Related: ...] tag
  3. Order findings: status, then category, then code reference
  4. Persist findings and mark the run COMPLETED in one transaction

A failed consolidation call keeps the per-pair recommendations; it never
fails the run.
"""
from __future__ import annotations

import logging
from dataclasses import replace

from app.agents.config import CATEGORY_DISPLAY_ORDER, STATUS_DISPLAY_ORDER
from app.agents.tool_schemas import RecommendationsTool
from app.models.pipeline_models import (
    AnalysisStatus,
    FindingRecord,
    NON_COMPLIANT_STATUSES,
    RecommendationsResult,
)
from app.services.llm_client import parse_json_from_response

logger = logging.getLogger("compliance-recommendations")


def non_compliant_findings(results: list) -> list:
    return [r for r in results if r.status in NON_COMPLIANT_STATUSES]


def build_recommendations_prompt(findings: list) -> str:
    findings_summary = "\n\n".join(
        f"{i}. [{f.status.value}] {f.code_ref} - {f.category.value}\n"
        f"   Requirement: {f.required_value}\n"
        f"   Found: {f.proposed_value or 'Not specified'}\n"
        f"   Issue: {f.analysis_notes}\n"
        f"   Current Recommendation: {f.recommendation or 'None'}"
        for i, f in enumerate(findings, start=1)
    )
    return f"""You are an expert building code compliance consultant. Review the following non-compliant findings from a building plan analysis and provide coordinated, actionable recommendations.

## Non-Compliant Findings:
{findings_summary}

## Your Task:
1. Review all findings holistically
2. Identify any related issues that should be addressed together
3. Prioritize recommendations based on safety impact and complexity
4. Provide specific, actionable recommendations for each finding
5. Where possible, suggest combined solutions that address multiple issues

## Response Format (JSON only):
{{
  "recommendations": [
    {{
      "codeRef": "code reference (e.g., R302.1)",
      "recommendation": "Specific, actionable recommendation with measurements/specifications where applicable",
      "priority": "HIGH" | "MEDIUM" | "LOW",
      "relatedFindings": ["array of related codeRefs that could be addressed together, if any"]
    }}
  ],
  "summary": "Brief overall summary of key actions needed"
}}

Priority definitions:
- HIGH: Life safety issues, critical structural requirements, fire safety - must address before approval
- MEDIUM: Code compliance issues that affect habitability or function - should address before approval
- LOW: Minor deviations, best practice improvements - may be addressed after approval with conditions

Respond ONLY with valid JSON, no additional text."""


def format_recommendation(rec) -> str:
    tag = f"[Priority: {rec.priority.value}]"
    if rec.related_findings:
        tag += f" [Related: {', '.join(rec.related_findings)}]"
    return f"{rec.recommendation}\n\n{tag}"


def apply_recommendations(results: list, recommendations: dict) -> list:
    """Replace recommendation text on non-compliant entries that have a coordinated match."""
    applied = []
    for result in results:
        coordinated = recommendations.get(result.code_ref)
        if coordinated and result.status in NON_COMPLIANT_STATUSES:
            result = replace(result, recommendation=coordinated)
        applied.append(result)
    return applied


def _display_key(result) -> tuple:
    return (
        STATUS_DISPLAY_ORDER.get(result.status, len(STATUS_DISPLAY_ORDER) + 1),
        CATEGORY_DISPLAY_ORDER.get(result.category, len(CATEGORY_DISPLAY_ORDER) + 1),
        result.code_ref,
    )


def sort_findings(results: list) -> list:
    """Stable sort: CRITICAL, WARNING, NOT_ASSESSED, COMPLIANT; then category; then code ref."""
    return sorted(results, key=_display_key)


def build_finding_records(results: list) -> list:
    return [
        FindingRecord.from_result(result, sort_order=index)
        for index, result in enumerate(sort_findings(results))
    ]


class RecommendationEngine:
    def __init__(self, llm):
        self.llm = llm

    async def generate_coordinated_recommendations(self, analysis_id: str, findings: list) -> tuple:
        """Return ({code_ref: tagged text}, summary). Empty map when the call fails."""
        if not findings:
            return {}, None
        try:
            raw = await self.llm.generate(build_recommendations_prompt(findings))
            output = RecommendationsTool.Output.model_validate(parse_json_from_response(raw))
        except Exception as e:
            logger.error(
                f"[{analysis_id}] Coordinated recommendations failed, keeping per-finding text: "
                f"{type(e).__name__}: {e}"
            )
            return {}, None

        if output.skipped:
            logger.warning(
                f"[{analysis_id}] Skipped {output.skipped} malformed recommendation item(s)"
            )
        recommendations = {rec.code_ref: format_recommendation(rec) for rec in output.recommendations}
        logger.info(
            f"[{analysis_id}] Generated {len(output.recommendations)} coordinated recommendations"
        )
        if output.summary:
            logger.info(f"[{analysis_id}] Summary: {output.summary}")
        return recommendations, output.summary or None

    async def run(self, run, validation) -> RecommendationsResult:
        analysis_id = run.analysis_id
        results = list(validation.validated_results)
        logger.info(f"[{analysis_id}] Finalising {len(results)} validated results")

        await run.set_status(AnalysisStatus.GENERATING, "Generating recommendations")

        findings = non_compliant_findings(results)
        logger.info(f"[{analysis_id}] Found {len(findings)} non-compliant findings")

        recommendations_generated = 0
        summary = None
        if findings:
            await run.set_stage(f"Generating recommendations for {len(findings)} findings")
            recommendations, summary = await self.generate_coordinated_recommendations(
                analysis_id, findings
            )
            recommendations_generated = len(recommendations)
            results = apply_recommendations(results, recommendations)

        await run.set_stage("Saving findings")
        records = build_finding_records(results)
        await run.complete(records)

        logger.info(
            f"[{analysis_id}] Total findings: {len(records)}, "
            f"recommendations generated: {recommendations_generated}"
        )
        return RecommendationsResult(
            total_findings=len(records),
            recommendations_generated=recommendations_generated,
            summary=summary,
            findings=records,
        )
