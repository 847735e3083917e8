"""
Stage 2: Page Classification

Sends each normalised page to the vision model, one page at a time, and
labels it with a drawing type, a short description and the detected scale.
A failed or malformed classification marks that page ``other`` and moves on;
classification never fails the run.
"""
import logging
from collections import Counter

from app.agents.tool_schemas import ClassifyPageTool
from app.models.pipeline_models import ClassifiedPage, PageType
from app.services.llm_client import parse_json_from_response

logger = logging.getLogger("compliance-classification")

CLASSIFICATION_FAILED_DESCRIPTION = "Classification failed - manual review recommended"

CLASSIFICATION_PROMPT = """You are an expert architectural drawing analyst. Analyze this building plan page image and classify it.

Return a JSON object with the following fields:
- page_type: one of "floor_plan", "elevation", "section", "site_plan", "detail", "schedule", "title_block", "other"
- description: a brief 1-2 sentence description of what this page shows
- scale_detected: the scale if visible on the drawing (e.g., "1:100", "1/4" = 1'-0"", "1:50"), or null if not visible

Page type definitions:
- floor_plan: Horizontal cut view showing room layouts, walls, doors, windows from above
- elevation: Vertical view of building exterior or interior walls showing heights
- section: Cut-through view showing internal structure and heights
- site_plan: Bird's eye view showing the building footprint on the property with boundaries, setbacks
- detail: Enlarged view of specific construction details (connections, assemblies)
- schedule: Tables listing doors, windows, finishes, or other specifications
- title_block: Sheet containing project information, revision history, drawing index
- other: Pages that don't fit other categories (notes, legends, cover sheets)

Respond ONLY with a valid JSON object, no additional text.

Example response:
{"page_type": "floor_plan", "description": "Ground floor plan showing living areas, kitchen, and two bedrooms with dimensions marked.", "scale_detected": "1:100"}"""


class PageClassifier:
    def __init__(self, storage, llm):
        self.storage = storage
        self.llm = llm

    async def classify_page(self, page) -> ClassifiedPage:
        image = await self.storage.fetch(page.image_key)
        raw = await self.llm.generate(CLASSIFICATION_PROMPT, image)
        output = ClassifyPageTool.Output.model_validate(parse_json_from_response(raw))
        return ClassifiedPage.from_page(
            page,
            page_type=output.page_type,
            description=output.description,
            scale_detected=output.scale_detected,
        )

    async def classify(self, run, pages: list) -> list:
        analysis_id = run.analysis_id
        total = len(pages)
        logger.info(f"[{analysis_id}] Classifying {total} pages")

        classified = []
        for i, page in enumerate(pages, start=1):
            progress = f"Classifying page {i} of {total}"
            await run.set_stage(progress)
            logger.info(f"[{analysis_id}] {progress}")
            try:
                result = await self.classify_page(page)
            except Exception as e:
                logger.warning(
                    f"[{analysis_id}] Classification failed for page {page.page_number}: "
                    f"{type(e).__name__}: {e}"
                )
                result = ClassifiedPage.from_page(
                    page,
                    page_type=PageType.OTHER,
                    description=CLASSIFICATION_FAILED_DESCRIPTION,
                )
            classified.append(result)

        type_counts = Counter(p.page_type.value for p in classified)
        logger.info(f"[{analysis_id}] Classification summary: {dict(type_counts)}")
        return classified
