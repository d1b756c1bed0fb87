# tutorhub/schemas/grading.py
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel


class EvaluateRequest(BaseModel):
    expr: str


class EvaluateResponse(BaseModel):
    ok: bool
    value: Optional[float] = None
    feedback: Optional[str] = None
