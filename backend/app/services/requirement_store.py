"""Read access to PUBLISHED code requirements for the selected building codes."""
import logging

from sqlalchemy import select

from app.models.pipeline_models import (
    CheckType,
    CodeRequirement,
    FindingCategory,
    RequirementStatus,
    as_json_list,
)

logger = logging.getLogger("compliance-requirements")


def requirement_from_row(row, building_code) -> CodeRequirement:
    return CodeRequirement(
        id=str(row.id),
        code_ref=row.code_ref,
        title=row.title,
        category=FindingCategory(row.category),
        full_text=row.full_text,
        check_type=CheckType(row.check_type),
        thresholds=row.thresholds if row.thresholds is not None else {},
        applies_to_drawing_types=as_json_list(row.applies_to_drawing_types),
        applies_to_building_types=as_json_list(row.applies_to_building_types),
        applies_to_spaces=as_json_list(row.applies_to_spaces),
        exceptions=as_json_list(row.exceptions),
        extraction_guidance=row.extraction_guidance or "",
        evaluation_guidance=row.evaluation_guidance or "",
        code_id=building_code.code_id,
        code_name=building_code.name,
        source_page=row.source_page,
        status=RequirementStatus(row.status),
    )


class RequirementStore:
    def __init__(self, session_factory=None):
        if session_factory is None:
            from app.db import AsyncSessionLocal
            session_factory = AsyncSessionLocal
        self._session_factory = session_factory

    async def fetch_published(self, code_ids: list) -> list:
        """All PUBLISHED requirements whose parent code_id is in ``code_ids``."""
        if not code_ids:
            return []
        from app.models.orm_models import BuildingCode, CodeRequirement as CodeRequirementRow
        stmt = (
            select(CodeRequirementRow, BuildingCode)
            .join(BuildingCode, CodeRequirementRow.building_code_id == BuildingCode.id)
            .where(CodeRequirementRow.status == RequirementStatus.PUBLISHED.value)
            .where(BuildingCode.code_id.in_(list(code_ids)))
            .order_by(BuildingCode.code_id, CodeRequirementRow.code_ref)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            rows = result.all()
        requirements = [requirement_from_row(req, code) for req, code in rows]
        logger.info(f"Loaded {len(requirements)} published requirements for codes {list(code_ids)}")
        return requirements
