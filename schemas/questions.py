from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

Difficulty = Literal["easy", "medium", "hard"]
QuestionType = Literal[
    "mcq-single",
    "mcq-multiple",
    "true-false",
    "numerical",
    "short-answer",
    "long-answer",
    "case-based",
]


class OptionIn(BaseModel):
    id: Optional[str] = None
    text: str = Field(min_length=1)
    is_correct: bool = False
    explanation: str = ""


class NumericalAnswer(BaseModel):
    value: float
    tolerance: float = Field(default=0, ge=0)
    unit: str = ""


class QuestionBase(BaseModel):
    chapter_name: str = ""
    topic: str = Field(min_length=1, max_length=200)
    difficulty: Difficulty
    type: QuestionType
    text: str = Field(min_length=1)
    case_study: Optional[str] = None
    options: List[OptionIn] = []
    numerical_answer: Optional[NumericalAnswer] = None
    expected_answer: Optional[str] = None
    correct_answer: str = ""
    keywords: List[str] = []
    explanation: str = ""
    marks: float = Field(default=1, ge=0)
    negative_marks: float = Field(default=0, ge=0)
    recommended_time: Optional[int] = Field(default=None, ge=0)
    tags: List[str] = []

    @model_validator(mode="after")
    def _check_answer_shape(self):
        correct = sum(1 for o in self.options if o.is_correct)
        if self.type in ("mcq-single", "true-false"):
            if len(self.options) < 2:
                raise ValueError(f"{self.type} questions need at least 2 options")
            if correct != 1:
                raise ValueError(f"{self.type} questions need exactly one correct option")
        elif self.type == "mcq-multiple":
            if len(self.options) < 2 or correct < 1:
                raise ValueError("mcq-multiple questions need options with at least one correct")
        elif self.type == "numerical" and self.numerical_answer is None:
            raise ValueError("numerical questions need a numerical_answer")
        elif self.type == "case-based":
            if not (self.case_study or "").strip():
                raise ValueError("case-based questions need a case_study")
            if self.options and correct != 1:
                raise ValueError("case-based options need exactly one correct option")

        # assign stable option ids
        for i, o in enumerate(self.options):
            if not o.id:
                o.id = chr(ord("a") + i)
        ids = [o.id for o in self.options]
        if len(set(ids)) != len(ids):
            raise ValueError("option ids must be unique")
        return self


class QuestionCreate(QuestionBase):
    course_id: int


class QuestionUpdate(BaseModel):
    chapter_name: Optional[str] = None
    topic: Optional[str] = Field(default=None, min_length=1, max_length=200)
    difficulty: Optional[Difficulty] = None
    text: Optional[str] = Field(default=None, min_length=1)
    case_study: Optional[str] = None
    options: Optional[List[OptionIn]] = None
    numerical_answer: Optional[NumericalAnswer] = None
    expected_answer: Optional[str] = None
    correct_answer: Optional[str] = None
    keywords: Optional[List[str]] = None
    explanation: Optional[str] = None
    marks: Optional[float] = Field(default=None, ge=0)
    negative_marks: Optional[float] = Field(default=None, ge=0)
    recommended_time: Optional[int] = Field(default=None, ge=0)
    tags: Optional[List[str]] = None
    is_active: Optional[bool] = None


class QuestionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    course_id: int
    chapter_name: str
    topic: str
    difficulty: str
    type: str
    text: str
    case_study: Optional[str] = None
    options: list
    numerical_answer: Optional[dict] = None
    expected_answer: Optional[str] = None
    correct_answer: str
    keywords: list
    explanation: str
    marks: float
    negative_marks: float
    recommended_time: Optional[int] = None
    tags: list
    is_active: bool
    usage_count: int
    correct_attempts: int
    total_attempts: int
    success_rate: float
    created_at: Optional[datetime] = None


class QuestionImport(BaseModel):
    course_id: int
    questions: List[dict]


class ImportFailure(BaseModel):
    index: int
    errors: List[str]


class ImportResult(BaseModel):
    imported: int
    question_ids: List[int]
    failed: List[ImportFailure]
