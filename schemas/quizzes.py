from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from schemas.questions import Difficulty

QuizStatus = Literal["draft", "published", "scheduled", "archived"]


class QuestionConfig(BaseModel):
    total_questions: int = Field(ge=1, le=100)
    topic_weightage: Dict[str, float] = {}
    type_distribution: Dict[str, float] = {}
    difficulty_distribution: Dict[str, float] = {}


class QuizSettings(BaseModel):
    shuffle_questions: bool = True
    shuffle_options: bool = True
    negative_marking: bool = False
    show_correct_answers: bool = False
    show_explanations: bool = True
    allow_review: bool = True
    allow_resume: bool = True
    autosave_interval: int = Field(default=30, ge=5, le=600)
    selection_strategy: Optional[str] = None


class QuizCreate(BaseModel):
    title: str = Field(min_length=3, max_length=200)
    description: str = ""
    course_id: int
    difficulty: Difficulty
    duration: int = Field(ge=1, le=300)
    total_marks: float = Field(ge=1)
    passing_percentage: float = Field(default=40, ge=0, le=100)
    attempts_allowed: int = Field(default=1, ge=1, le=10)
    question_config: QuestionConfig
    settings: QuizSettings = QuizSettings()
    instructions: List[str] = []
    status: Literal["draft", "scheduled"] = "draft"
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    visible_from: Optional[datetime] = None


class QuizUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=3, max_length=200)
    description: Optional[str] = None
    difficulty: Optional[Difficulty] = None
    duration: Optional[int] = Field(default=None, ge=1, le=300)
    total_marks: Optional[float] = Field(default=None, ge=1)
    passing_percentage: Optional[float] = Field(default=None, ge=0, le=100)
    attempts_allowed: Optional[int] = Field(default=None, ge=1, le=10)
    question_config: Optional[QuestionConfig] = None
    settings: Optional[QuizSettings] = None
    instructions: Optional[List[str]] = None
    status: Optional[QuizStatus] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    visible_from: Optional[datetime] = None


class QuizOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    title: str
    description: str
    course_id: int
    difficulty: str
    created_by: int
    duration: int
    total_marks: float
    passing_percentage: float
    attempts_allowed: int
    question_config: dict
    settings: dict
    instructions: list
    status: str
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    visible_from: Optional[datetime] = None
    algorithm_version: str
    total_attempts: int
    average_score: float
    pass_rate: float
    average_time_spent: float
    published_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class AvailableQuizOut(QuizOut):
    attempts_taken: int
    attempts_remaining: int
    can_attempt: bool
    has_active_session: bool = False


class AttemptSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    student_id: int
    attempt_number: int
    status: str
    started_at: datetime
    submitted_at: Optional[datetime] = None
    time_spent: int
    auto_score: float
    manual_score: float
    total_score: float
    total_marks: float
    percentage: float
    passed: bool
    tab_switch_count: int
