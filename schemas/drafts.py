from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from schemas.questions import Difficulty, QuestionType


class GenerateRequest(BaseModel):
    course_id: int
    topics: List[str] = []
    difficulties: List[Difficulty] = Field(default=["medium"], min_length=1)
    question_types: List[QuestionType] = Field(default=["mcq-single"], min_length=1)
    count: int = Field(default=5, ge=1, le=20)
    content: str = Field(default="", max_length=20000)
    chapter_name: str = ""
    provider: Optional[str] = None


class DraftOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    course_id: int
    chapter_name: str
    topic: str
    difficulty: str
    type: str
    payload: dict
    source_type: str
    model_used: str
    prompt_version: str
    confidence: float
    validation_flags: list
    status: str
    job_id: Optional[str] = None
    created_by: int
    approved_by: Optional[int] = None
    approved_at: Optional[datetime] = None
    final_question_id: Optional[int] = None
    rejected_by: Optional[int] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    edit_history: list
    created_at: Optional[datetime] = None


class DraftEdit(BaseModel):
    changes: Dict[str, Any]
    note: str = ""


class ApproveRequest(BaseModel):
    edits: Optional[Dict[str, Any]] = None


class RejectRequest(BaseModel):
    reason: str = ""


class BulkApproveRequest(BaseModel):
    draft_ids: List[int] = Field(min_length=1)


class BulkRejectRequest(BaseModel):
    draft_ids: List[int] = Field(min_length=1)
    reason: str = ""
