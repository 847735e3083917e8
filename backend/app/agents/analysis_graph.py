"""
LangGraph State Graph: Compliance Analysis Pipeline.

Node execution order (strictly sequential, one run per invocation):
  NormaliseNode → ClassifyNode → MatrixNode → CrossValidateNode → RecommendNode
      → END

Any node that raises routes to FailureNode, which marks the run FAILED with
the failing stage in current_stage and ends the graph. Item-level failures
(one page, one pair, the consolidation call) are absorbed inside the stages
and never reach this layer.
"""
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from langgraph.graph import StateGraph, END

from app.agents.config import STAGE_LABELS, STAGE_ORDER
from app.agents.graph_state import AnalysisGraphState
from app.services.cross_validation_engine import CrossValidationEngine
from app.services.document_normaliser import DocumentNormaliser
from app.services.matrix_engine import MatrixAnalysisEngine
from app.services.page_classifier import PageClassifier
from app.services.recommendation_engine import RecommendationEngine

logger = logging.getLogger("compliance-analysis-graph")


class PipelineStageError(RuntimeError):
    """A stage failed and the run was marked FAILED."""

    def __init__(self, analysis_id: str, node: str, message: str):
        self.analysis_id = analysis_id
        self.node = node
        self.stage = STAGE_LABELS.get(node, node)
        super().__init__(f"Analysis {analysis_id} failed at {self.stage}: {message}")


@dataclass
class PipelineDependencies:
    """External collaborators shared by every stage of a run."""
    storage: object
    llm: object
    requirement_store: object
    run_state_factory: Callable

    @classmethod
    def from_env(cls) -> "PipelineDependencies":
        from app.services.llm_client import VisionModelClient
        from app.services.requirement_store import RequirementStore
        from app.services.run_state import AnalysisRunState
        from app.services.storage import ObjectStorage
        return cls(
            storage=ObjectStorage(),
            llm=VisionModelClient(),
            requirement_store=RequirementStore(),
            run_state_factory=AnalysisRunState,
        )


# ── Node factory ───────────────────────────────────────────────────────────────

def make_node(name: str, impl: Callable):
    """
    Factory: wraps a stage implementation with logging and error capture.
    A raised exception is recorded on the state instead of escaping the graph.
    """
    async def node(state: AnalysisGraphState) -> AnalysisGraphState:
        state["current_node"] = name
        analysis_id = state["analysis_id"]
        logger.info(f"[{analysis_id}] Entering {name}")
        started = time.monotonic()

        try:
            state = await impl(state)
        except Exception as e:
            state["error"] = str(e) or type(e).__name__
            state["error_node"] = name
            logger.error(
                f"[{analysis_id}] {name} failed: {type(e).__name__}: {e}",
                exc_info=True,
                extra={"analysis_id": analysis_id, "stage": name},
            )
            return state

        duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            f"[{analysis_id}] {name} done in {duration_ms} ms",
            extra={"analysis_id": analysis_id, "stage": name, "duration_ms": duration_ms},
        )
        state["last_completed_node"] = name
        return state

    node.__name__ = name
    return node


# ── Conditional edge functions ─────────────────────────────────────────────────

def next_or_fail(next_node: str) -> Callable:
    def route(state: AnalysisGraphState) -> str:
        if state.get("error"):
            return "FailureNode"
        return next_node
    return route


# ── Graph construction ─────────────────────────────────────────────────────────

def build_analysis_graph(deps: PipelineDependencies, run_state):
    """Compile the five-stage graph bound to one run's state handle."""
    normaliser = DocumentNormaliser(deps.storage)
    classifier = PageClassifier(deps.storage, deps.llm)
    matrix = MatrixAnalysisEngine(deps.storage, deps.llm, deps.requirement_store)
    cross_validator = CrossValidationEngine()
    recommender = RecommendationEngine(deps.llm)

    async def _normalise_impl(state: AnalysisGraphState) -> AnalysisGraphState:
        state["pages"] = await normaliser.normalise(
            run_state,
            state["document_url"],
            state["document_type"],
            state.get("page_count"),
        )
        return state

    async def _classify_impl(state: AnalysisGraphState) -> AnalysisGraphState:
        state["classified_pages"] = await classifier.classify(run_state, state["pages"])
        return state

    async def _matrix_impl(state: AnalysisGraphState) -> AnalysisGraphState:
        state["matrix"] = await matrix.run(
            run_state, state.get("selected_codes", []), state["classified_pages"]
        )
        return state

    async def _cross_validate_impl(state: AnalysisGraphState) -> AnalysisGraphState:
        state["validation"] = await cross_validator.run(run_state, state["matrix"].results)
        return state

    async def _recommend_impl(state: AnalysisGraphState) -> AnalysisGraphState:
        state["recommendations"] = await recommender.run(run_state, state["validation"])
        return state

    async def _failure_node(state: AnalysisGraphState) -> AnalysisGraphState:
        node = state.get("error_node") or "unknown"
        try:
            await run_state.fail(STAGE_LABELS.get(node, node), state.get("error") or "unknown error")
        except Exception as e:
            logger.error(f"[{state['analysis_id']}] Could not mark run FAILED: {e}")
        return state

    impls = {
        "NormaliseNode":     _normalise_impl,
        "ClassifyNode":      _classify_impl,
        "MatrixNode":        _matrix_impl,
        "CrossValidateNode": _cross_validate_impl,
        "RecommendNode":     _recommend_impl,
    }

    graph = StateGraph(AnalysisGraphState)
    for name in STAGE_ORDER:
        graph.add_node(name, make_node(name, impls[name]))
    graph.add_node("FailureNode", _failure_node)

    graph.set_entry_point(STAGE_ORDER[0])
    for current, following in zip(STAGE_ORDER, STAGE_ORDER[1:] + [END]):
        graph.add_conditional_edges(
            current,
            next_or_fail(following),
            {following: following, "FailureNode": "FailureNode"},
        )
    graph.add_edge("FailureNode", END)

    return graph.compile()


# ── Entry point ────────────────────────────────────────────────────────────────

async def run_analysis_pipeline(
    analysis_id: str,
    deps: Optional[PipelineDependencies] = None,
) -> AnalysisGraphState:
    """
    Execute one full run. Returns the final graph state on COMPLETED;
    raises PipelineStageError after the run has been marked FAILED.
    """
    deps = deps or PipelineDependencies.from_env()
    run_state = deps.run_state_factory(analysis_id)

    context = await run_state.load()
    await run_state.mark_started()
    logger.info(
        f"[{analysis_id}] Starting analysis: {context.document_type}, "
        f"{context.page_count} page(s), codes={context.selected_codes}"
    )

    graph = build_analysis_graph(deps, run_state)
    final_state = await graph.ainvoke({
        "analysis_id": analysis_id,
        "document_url": context.document_url,
        "document_type": context.document_type,
        "page_count": context.page_count,
        "selected_codes": context.selected_codes,
        "error": None,
        "error_node": None,
    })

    if final_state.get("error"):
        raise PipelineStageError(
            analysis_id, final_state.get("error_node") or "unknown", final_state["error"]
        )

    recommendations = final_state.get("recommendations")
    validation = final_state.get("validation")
    logger.info(
        f"[{analysis_id}] Analysis complete: "
        f"score={validation.compliance_score if validation else None}, "
        f"status={validation.overall_status.value if validation else None}, "
        f"findings={recommendations.total_findings if recommendations else 0}"
    )
    return final_state
