from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Optional

import sqlalchemy as sa
from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import TypeDecorator

from db import Base


def utcnow() -> datetime:
    return datetime.now(UTC)


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetimes on every backend (SQLite drops tzinfo)."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(UTC)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value


DIFFICULTIES = ("easy", "medium", "hard")
QUESTION_TYPES = (
    "mcq-single",
    "mcq-multiple",
    "true-false",
    "numerical",
    "short-answer",
    "long-answer",
    "case-based",
)
ROLES = ("student", "tutor", "admin")
USER_STATUSES = ("active", "inactive", "suspended")

# statuses that consume an attempt
FINISHED_SESSION_STATUSES = ("completed", "submitted", "auto-submitted", "evaluating")


enrollments = sa.Table(
    "enrollments",
    Base.metadata,
    sa.Column("user_id", ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    sa.Column("course_id", ForeignKey("courses.id", ondelete="CASCADE"), primary_key=True),
    sa.Column("enrolled_at", UTCDateTime(), default=utcnow),
)


class User(Base):
    __tablename__ = "users"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(120))
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    password_hash: Mapped[str] = mapped_column(String(255))
    role: Mapped[str] = mapped_column(String(16), default="student")
    status: Mapped[str] = mapped_column(String(16), default="active")
    grade: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)
    last_login: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    enrolled_courses: Mapped[list["Course"]] = relationship(
        secondary=enrollments, back_populates="students"
    )

    def is_enrolled(self, course_id: int) -> bool:
        return any(c.id == course_id for c in self.enrolled_courses)


class RefreshToken(Base):
    __tablename__ = "refresh_tokens"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    jti: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime())
    revoked: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)


class Course(Base):
    __tablename__ = "courses"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(200))
    description: Mapped[str] = mapped_column(Text, default="")
    subject: Mapped[str] = mapped_column(String(100))
    grade: Mapped[int] = mapped_column(Integer)
    chapters: Mapped[list] = mapped_column(JSON, default=list)
    topics: Mapped[list] = mapped_column(JSON, default=list)
    status: Mapped[str] = mapped_column(String(16), default="published")
    created_by: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)

    students: Mapped[list[User]] = relationship(
        secondary=enrollments, back_populates="enrolled_courses"
    )

    def all_topics(self) -> list[str]:
        seen: list[str] = []
        for t in self.topics or []:
            if t and t not in seen:
                seen.append(t)
        for ch in self.chapters or []:
            for t in [ch.get("name")] + list(ch.get("topics") or []):
                if t and t not in seen:
                    seen.append(t)
        return seen

    def learning_objectives(self, topic: str) -> list[str]:
        for ch in self.chapters or []:
            if ch.get("name") == topic or topic in (ch.get("topics") or []):
                return list(ch.get("learning_objectives") or [])
        return []


class Question(Base):
    __tablename__ = "questions"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    course_id: Mapped[int] = mapped_column(ForeignKey("courses.id"), index=True)
    chapter_name: Mapped[str] = mapped_column(String(200), default="")
    topic: Mapped[str] = mapped_column(String(200), index=True)
    difficulty: Mapped[str] = mapped_column(String(8), index=True)
    type: Mapped[str] = mapped_column(String(16))
    text: Mapped[str] = mapped_column(Text)
    case_study: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # [{"id": "a", "text": "...", "is_correct": bool, "explanation": "..."}]
    options: Mapped[list] = mapped_column(JSON, default=list)
    # {"value": float, "tolerance": float, "unit": str}
    numerical_answer: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    expected_answer: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    correct_answer: Mapped[str] = mapped_column(Text, default="")
    keywords: Mapped[list] = mapped_column(JSON, default=list)
    explanation: Mapped[str] = mapped_column(Text, default="")
    marks: Mapped[float] = mapped_column(Float, default=1)
    negative_marks: Mapped[float] = mapped_column(Float, default=0)
    recommended_time: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    tags: Mapped[list] = mapped_column(JSON, default=list)
    created_by: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    usage_count: Mapped[int] = mapped_column(Integer, default=0)
    correct_attempts: Mapped[int] = mapped_column(Integer, default=0)
    total_attempts: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)

    @property
    def success_rate(self) -> float:
        if not self.total_attempts:
            return 0.0
        return self.correct_attempts / self.total_attempts * 100


class Quiz(Base):
    __tablename__ = "quizzes"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(200))
    description: Mapped[str] = mapped_column(Text, default="")
    course_id: Mapped[int] = mapped_column(ForeignKey("courses.id"), index=True)
    difficulty: Mapped[str] = mapped_column(String(8))
    created_by: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    duration: Mapped[int] = mapped_column(Integer)  # minutes
    total_marks: Mapped[float] = mapped_column(Float)
    passing_percentage: Mapped[float] = mapped_column(Float, default=40)
    attempts_allowed: Mapped[int] = mapped_column(Integer, default=1)
    question_config: Mapped[dict] = mapped_column(JSON, default=dict)
    settings: Mapped[dict] = mapped_column(JSON, default=dict)
    instructions: Mapped[list] = mapped_column(JSON, default=list)
    status: Mapped[str] = mapped_column(String(16), default="draft", index=True)
    start_time: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    end_time: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    visible_from: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    algorithm_version: Mapped[str] = mapped_column(String(32), default="v1.0")
    total_attempts: Mapped[int] = mapped_column(Integer, default=0)
    average_score: Mapped[float] = mapped_column(Float, default=0)
    pass_rate: Mapped[float] = mapped_column(Float, default=0)
    average_time_spent: Mapped[float] = mapped_column(Float, default=0)  # minutes
    published_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    archived_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)

    def setting(self, key: str, default: Any = None) -> Any:
        return (self.settings or {}).get(key, default)

    def is_available(self, now: datetime | None = None) -> bool:
        now = now or utcnow()
        if self.status not in ("published", "scheduled"):
            return False
        if self.start_time and now < self.start_time:
            return False
        if self.end_time and now > self.end_time:
            return False
        return True

    def update_stats(self, score: float, time_spent_minutes: float, passed: bool) -> None:
        old = self.total_attempts or 0
        new = old + 1
        self.average_score = ((self.average_score or 0) * old + score) / new
        self.average_time_spent = ((self.average_time_spent or 0) * old + time_spent_minutes) / new
        pass_count = round((self.pass_rate or 0) / 100 * old) + (1 if passed else 0)
        self.pass_rate = pass_count / new * 100
        self.total_attempts = new


class QuizSession(Base):
    __tablename__ = "quiz_sessions"
    __table_args__ = (
        sa.Index("ix_quiz_sessions_quiz_student", "quiz_id", "student_id"),
        sa.Index("ix_quiz_sessions_status_expires", "status", "expires_at"),
    )
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    quiz_id: Mapped[int] = mapped_column(ForeignKey("quizzes.id"), index=True)
    student_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    course_id: Mapped[int] = mapped_column(ForeignKey("courses.id"), index=True)
    attempt_number: Mapped[int] = mapped_column(Integer)
    selected_questions: Mapped[list] = mapped_column(JSON, default=list)
    current_question_index: Mapped[int] = mapped_column(Integer, default=0)
    started_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime())
    submitted_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    duration: Mapped[int] = mapped_column(Integer)  # minutes
    time_spent: Mapped[int] = mapped_column(Integer, default=0)  # seconds
    last_active_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)
    status: Mapped[str] = mapped_column(String(16), default="in-progress")
    auto_score: Mapped[float] = mapped_column(Float, default=0)
    manual_score: Mapped[float] = mapped_column(Float, default=0)
    total_score: Mapped[float] = mapped_column(Float, default=0)
    total_marks: Mapped[float] = mapped_column(Float)
    percentage: Mapped[float] = mapped_column(Float, default=0)
    passed: Mapped[bool] = mapped_column(Boolean, default=False)
    passing_percentage: Mapped[float] = mapped_column(Float)
    pending_manual_evaluation: Mapped[bool] = mapped_column(Boolean, default=False)
    questions_for_manual_evaluation: Mapped[list] = mapped_column(JSON, default=list)
    algorithm_version: Mapped[str] = mapped_column(String(32))
    selection_criteria: Mapped[dict] = mapped_column(JSON, default=dict)
    tab_switch_count: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)

    quiz: Mapped[Quiz] = relationship()
    answers: Mapped[list["SessionAnswer"]] = relationship(
        back_populates="session", cascade="all, delete-orphan", order_by="SessionAnswer.id"
    )

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) > self.expires_at

    def remaining_time(self, now: datetime | None = None) -> int:
        if self.status != "in-progress":
            return 0
        delta = (self.expires_at - (now or utcnow())).total_seconds()
        return max(0, int(delta))

    def snapshot_for(self, question_id: int) -> Optional[dict]:
        return next(
            (q for q in self.selected_questions or [] if q["question_id"] == question_id), None
        )

    def answer_for(self, question_id: int) -> Optional["SessionAnswer"]:
        return next((a for a in self.answers if a.question_id == question_id), None)


class SessionAnswer(Base):
    __tablename__ = "session_answers"
    __table_args__ = (
        sa.UniqueConstraint("session_id", "question_id", name="uq_session_answers_session_id"),
    )
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[int] = mapped_column(
        ForeignKey("quiz_sessions.id", ondelete="CASCADE"), index=True
    )
    question_id: Mapped[int] = mapped_column(ForeignKey("questions.id"))
    answer: Mapped[Any] = mapped_column(JSON, nullable=True)
    is_correct: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    marks_awarded: Mapped[float] = mapped_column(Float, default=0)
    negative_marks_applied: Mapped[float] = mapped_column(Float, default=0)
    time_spent: Mapped[int] = mapped_column(Integer, default=0)
    is_visited: Mapped[bool] = mapped_column(Boolean, default=False)
    is_marked_for_review: Mapped[bool] = mapped_column(Boolean, default=False)
    manual_feedback: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    evaluated_by: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    evaluated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    session: Mapped[QuizSession] = relationship(back_populates="answers")


class EvaluationResult(Base):
    __tablename__ = "evaluation_results"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[int] = mapped_column(ForeignKey("quiz_sessions.id"), unique=True)
    quiz_id: Mapped[int] = mapped_column(ForeignKey("quizzes.id"), index=True)
    student_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    course_id: Mapped[int] = mapped_column(ForeignKey("courses.id"))
    auto_score: Mapped[float] = mapped_column(Float, default=0)
    manual_score: Mapped[float] = mapped_column(Float, default=0)
    final_score: Mapped[float] = mapped_column(Float, default=0)
    total_marks: Mapped[float] = mapped_column(Float)
    percentage: Mapped[float] = mapped_column(Float, default=0)
    pass_fail: Mapped[str] = mapped_column(String(8), default="fail")
    grade: Mapped[str] = mapped_column(String(4), default="F")
    # overall / topics / difficulty / question_types / time / weak_areas /
    # strong_areas / suggestions / comparison
    analysis: Mapped[dict] = mapped_column(JSON, default=dict)
    manual_evaluations: Mapped[list] = mapped_column(JSON, default=list)
    evaluated_by: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    evaluated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)


class AIQuestionDraft(Base):
    __tablename__ = "ai_question_drafts"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    course_id: Mapped[int] = mapped_column(ForeignKey("courses.id"), index=True)
    chapter_name: Mapped[str] = mapped_column(String(200), default="")
    topic: Mapped[str] = mapped_column(String(200))
    difficulty: Mapped[str] = mapped_column(String(8))
    type: Mapped[str] = mapped_column(String(16))
    payload: Mapped[dict] = mapped_column(JSON)
    source_type: Mapped[str] = mapped_column(String(16), default="ai_generated")
    model_used: Mapped[str] = mapped_column(String(64))
    prompt_version: Mapped[str] = mapped_column(String(16), default="1.0.0")
    confidence: Mapped[float] = mapped_column(Float, default=0.5)
    validation_flags: Mapped[list] = mapped_column(JSON, default=list)
    status: Mapped[str] = mapped_column(String(16), default="draft", index=True)
    job_id: Mapped[Optional[str]] = mapped_column(String(64), index=True, nullable=True)
    created_by: Mapped[int] = mapped_column(ForeignKey("users.id"))
    approved_by: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    final_question_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("questions.id"), nullable=True
    )
    rejected_by: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    rejected_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    edit_history: Mapped[list] = mapped_column(JSON, default=list)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)
