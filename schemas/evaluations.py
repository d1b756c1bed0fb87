from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


class ManualEvaluation(BaseModel):
    question_id: int
    marks_awarded: float
    feedback: Optional[str] = Field(default=None, max_length=2000)


class ManualEvaluationRequest(ManualEvaluation):
    session_id: int


class BulkManualEvaluationRequest(BaseModel):
    session_id: int
    evaluations: List[ManualEvaluation] = Field(min_length=1)
