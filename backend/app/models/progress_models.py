"""
Run progress payload.

Snapshot of the fields a caller polls while a run executes. The polling
transport itself lives outside this package; it serializes this model.
"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel


class RunProgressPayload(BaseModel):
    """Strict contract for every status snapshot read from an analysis run."""
    analysis_id: str
    status: str                         # AnalysisStatus value, e.g. "ANALYSING"
    current_stage: Optional[str] = None  # Human-readable, e.g. "Analysing batch 2 of 5 (10/47 checks)"
    total_checks: int = 0
    compliance_score: Optional[float] = None
    overall_status: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    model_config = {"json_schema_extra": {
        "example": {
            "analysis_id": "0b6f7c1e-3d43-4c55-9a0a-1f2d3c4b5a69",
            "status": "ANALYSING",
            "current_stage": "Analysing batch 2 of 5 (10/47 checks)",
            "total_checks": 10,
            "compliance_score": None,
            "overall_status": None,
        }
    }}

    @property
    def is_terminal(self) -> bool:
        return self.status in ("COMPLETED", "FAILED")
