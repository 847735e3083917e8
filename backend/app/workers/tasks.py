"""
Celery Tasks: analysis runs execute here, off the submitting process.

A run is never retried automatically: a stage failure marks it FAILED and
the task raises. Re-running is the caller's decision.
"""
import logging
import asyncio

from celery.signals import worker_process_init

from app.agents.config import ANALYSIS_TASK_NAME
from app.workers.celery_app import celery_app

logger = logging.getLogger("compliance-celery")


def _run_async(coro):
    """Run an async coroutine in a sync Celery task context (new event loop)."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


async def _with_engine_disposal(coro):
    # Pooled asyncpg connections are bound to the loop that opened them
    from app.db import engine
    try:
        return await coro
    finally:
        await engine.dispose()


@worker_process_init.connect
def _init_worker_db(**_kwargs):
    from app.db import init_db
    _run_async(_with_engine_disposal(init_db()))


def _summarise(final_state: dict) -> dict:
    validation = final_state.get("validation")
    recommendations = final_state.get("recommendations")
    return {
        "status": "COMPLETED",
        "analysis_id": final_state["analysis_id"],
        "compliance_score": validation.compliance_score if validation else None,
        "overall_status": validation.overall_status.value if validation else None,
        "total_findings": recommendations.total_findings if recommendations else 0,
        "recommendations_generated": (
            recommendations.recommendations_generated if recommendations else 0
        ),
    }


@celery_app.task(bind=True, name=ANALYSIS_TASK_NAME)
def run_analysis(self, analysis_id: str):
    """Run the five-stage compliance pipeline for one analysis."""
    from app.agents.analysis_graph import run_analysis_pipeline

    self.update_state(state="PROGRESS", meta={"analysis_id": analysis_id, "step": "Starting pipeline"})
    logger.info(f"[{analysis_id}] Task {self.request.id} picked up")
    try:
        final_state = _run_async(_with_engine_disposal(run_analysis_pipeline(analysis_id)))
    except Exception as e:
        logger.error(f"[{analysis_id}] Analysis task failed: {e}")
        raise
    return _summarise(final_state)


def enqueue_analysis(analysis_id: str):
    """Submit a run; the task id is derived from the analysis id."""
    return run_analysis.apply_async(args=[analysis_id], task_id=f"analysis-{analysis_id}")
