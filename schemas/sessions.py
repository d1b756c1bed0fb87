from __future__ import annotations

from typing import Any, List, Optional

from pydantic import BaseModel, Field


class StartRequest(BaseModel):
    strategy: Optional[str] = None


class SaveAnswerRequest(BaseModel):
    question_id: int
    answer: Any = None
    time_spent: int = Field(default=0, ge=0)


class MarkReviewRequest(BaseModel):
    question_id: int
    marked: bool = True


class PositionRequest(BaseModel):
    index: int = Field(ge=0)


class FinalAnswer(BaseModel):
    question_id: int
    answer: Any = None
    time_spent: int = Field(default=0, ge=0)


class SubmitRequest(BaseModel):
    session_id: int
    answers: List[FinalAnswer] = []
