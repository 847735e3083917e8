"""
Celery Application: Background execution of compliance analysis runs.
One task per run; the pipeline itself is async and driven inside the task.
"""
import os

from celery import Celery
from dotenv import load_dotenv

from app.agents.config import ANALYSIS_HARD_TIME_LIMIT_S, ANALYSIS_SOFT_TIME_LIMIT_S
from app.services.logging_config import setup_logging

# Load .env file in dev (no-op if the file is missing)
load_dotenv()
setup_logging()

BROKER_URL = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0")
RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/1")

celery_app = Celery(
    "compliance",
    broker=BROKER_URL,
    backend=RESULT_BACKEND,
    include=["app.workers.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    worker_hijack_root_logger=False,
    task_soft_time_limit=ANALYSIS_SOFT_TIME_LIMIT_S,
    task_time_limit=ANALYSIS_HARD_TIME_LIMIT_S,
    result_expires=3600,        # Results expire after 1 hour
)
