from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from db import get_db
from deps.auth import CurrentUser, require_roles
from models import Course, Question, Quiz, QuizSession, User, utcnow
from schemas.quizzes import AttemptSummary, AvailableQuizOut, QuizCreate, QuizOut, QuizUpdate
from schemas.sessions import StartRequest, SubmitRequest
from services import sessions as session_service

logger = logging.getLogger("tutorhub.quizzes")

router = APIRouter(prefix="/quizzes", tags=["quizzes"])

Staff = require_roles("tutor", "admin")


def _active_question_count(db: Session, course_id: int) -> int:
    return (
        db.scalar(
            select(func.count(Question.id)).where(
                Question.course_id == course_id, Question.is_active.is_(True)
            )
        )
        or 0
    )


def _get_quiz(db: Session, quiz_id: int) -> Quiz:
    quiz = db.get(Quiz, quiz_id)
    if quiz is None:
        raise HTTPException(status_code=404, detail="Quiz not found")
    return quiz


def _owned_quiz(db: Session, quiz_id: int, user: User) -> Quiz:
    quiz = _get_quiz(db, quiz_id)
    if user.role != "admin" and quiz.created_by != user.id:
        raise HTTPException(status_code=403, detail="Access denied.")
    return quiz


def _require_question_pool(db: Session, course_id: int, wanted: int) -> None:
    available = _active_question_count(db, course_id)
    if available < wanted:
        raise HTTPException(
            status_code=400,
            detail=f"Not enough questions. Required: {wanted}, Available: {available}",
        )


@router.post("", response_model=QuizOut, status_code=201)
def create_quiz(req: QuizCreate, user: User = Depends(Staff), db: Session = Depends(get_db)):
    course = db.get(Course, req.course_id)
    if course is None:
        raise HTTPException(status_code=404, detail="Course not found")
    if user.role != "admin" and course.created_by != user.id:
        raise HTTPException(status_code=403, detail="Access denied.")
    _require_question_pool(db, course.id, req.question_config.total_questions)
    if req.status == "scheduled" and req.start_time is None:
        raise HTTPException(status_code=400, detail="Scheduled quizzes need a start_time")

    quiz = Quiz(**req.model_dump(), created_by=user.id)
    db.add(quiz)
    db.commit()
    logger.info("Quiz %s created by %s", quiz.id, user.id)
    return quiz


@router.get("")
def list_quizzes(
    user: User = Depends(Staff),
    course_id: Optional[int] = None,
    status: Optional[str] = None,
    difficulty: Optional[str] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    query = select(Quiz)
    if user.role == "tutor":
        query = query.where(Quiz.created_by == user.id)
    if course_id is not None:
        query = query.where(Quiz.course_id == course_id)
    if status:
        query = query.where(Quiz.status == status)
    if difficulty:
        query = query.where(Quiz.difficulty == difficulty)

    total = db.scalar(select(func.count()).select_from(query.subquery())) or 0
    rows = db.scalars(
        query.order_by(Quiz.created_at.desc(), Quiz.id.desc()).offset((page - 1) * limit).limit(limit)
    )
    return {
        "items": [QuizOut.model_validate(q) for q in rows],
        "total": total,
        "page": page,
        "limit": limit,
    }


@router.get("/course/{course_id}/available", response_model=list[AvailableQuizOut])
def available_quizzes(
    course_id: int,
    user: User = Depends(require_roles("student")),
    db: Session = Depends(get_db),
):
    if db.get(Course, course_id) is None:
        raise HTTPException(status_code=404, detail="Course not found")
    if not user.is_enrolled(course_id):
        raise HTTPException(status_code=403, detail="You are not enrolled in this course")

    now = utcnow()
    out = []
    quizzes = db.scalars(
        select(Quiz)
        .where(Quiz.course_id == course_id, Quiz.status.in_(("published", "scheduled")))
        .order_by(Quiz.id)
    )
    for quiz in quizzes:
        if quiz.visible_from and now < quiz.visible_from:
            continue
        taken = session_service.attempts_taken(db, quiz.id, user.id)
        remaining = max(0, quiz.attempts_allowed - taken)
        out.append(
            {
                **QuizOut.model_validate(quiz).model_dump(),
                "attempts_taken": taken,
                "attempts_remaining": remaining,
                "can_attempt": remaining > 0 and quiz.is_available(now),
                "has_active_session": session_service.active_session(db, quiz.id, user.id)
                is not None,
            }
        )
    return out


@router.get("/{quiz_id}", response_model=QuizOut)
def get_quiz(quiz_id: int, user: CurrentUser, db: Session = Depends(get_db)):
    quiz = _get_quiz(db, quiz_id)
    if user.role == "student" and not user.is_enrolled(quiz.course_id):
        raise HTTPException(status_code=403, detail="You are not enrolled in this course")
    return quiz


@router.patch("/{quiz_id}", response_model=QuizOut)
def update_quiz(
    quiz_id: int, req: QuizUpdate, user: User = Depends(Staff), db: Session = Depends(get_db)
):
    quiz = _owned_quiz(db, quiz_id, user)
    changes = req.model_dump(exclude_unset=True)
    if quiz.status == "published" and changes.get("status") != "archived":
        raise HTTPException(
            status_code=400, detail="Cannot update a published quiz. Archive it first."
        )
    if "question_config" in changes:
        _require_question_pool(db, quiz.course_id, changes["question_config"]["total_questions"])
    if changes.get("status") == "published":
        raise HTTPException(status_code=400, detail="Use the publish endpoint to publish a quiz")

    for key, value in changes.items():
        setattr(quiz, key, value)
    if changes.get("status") == "archived":
        quiz.archived_at = utcnow()
    db.commit()
    return quiz


@router.delete("/{quiz_id}")
def delete_quiz(quiz_id: int, user: User = Depends(Staff), db: Session = Depends(get_db)):
    quiz = _owned_quiz(db, quiz_id, user)
    has_attempts = db.scalar(
        select(func.count(QuizSession.id)).where(QuizSession.quiz_id == quiz.id)
    )
    if has_attempts:
        quiz.status = "archived"
        quiz.archived_at = utcnow()
        db.commit()
        return {"ok": True, "archived": True, "deleted": False}
    db.delete(quiz)
    db.commit()
    return {"ok": True, "archived": False, "deleted": True}


@router.post("/{quiz_id}/publish", response_model=QuizOut)
def publish_quiz(quiz_id: int, user: User = Depends(Staff), db: Session = Depends(get_db)):
    quiz = _owned_quiz(db, quiz_id, user)
    if quiz.status == "published":
        raise HTTPException(status_code=400, detail="Quiz is already published")
    _require_question_pool(
        db, quiz.course_id, int((quiz.question_config or {}).get("total_questions") or 0)
    )
    quiz.status = "published"
    quiz.published_at = utcnow()
    quiz.archived_at = None
    db.commit()
    logger.info("Quiz %s published by %s", quiz.id, user.id)
    return quiz


@router.get("/{quiz_id}/attempts", response_model=list[AttemptSummary])
def quiz_attempts(quiz_id: int, user: User = Depends(Staff), db: Session = Depends(get_db)):
    quiz = _owned_quiz(db, quiz_id, user)
    return list(
        db.scalars(
            select(QuizSession)
            .where(QuizSession.quiz_id == quiz.id)
            .order_by(QuizSession.started_at.desc(), QuizSession.id.desc())
        )
    )


# --- Attempt lifecycle ------------------------------------------------------------


@router.post("/{quiz_id}/start")
def start_quiz(
    quiz_id: int,
    response: Response,
    req: Optional[StartRequest] = None,
    user: User = Depends(require_roles("student")),
    db: Session = Depends(get_db),
):
    quiz = _get_quiz(db, quiz_id)
    session, resumed = session_service.start_or_resume(
        db, quiz, user, strategy=req.strategy if req else None
    )
    db.commit()
    response.status_code = 200 if resumed else 201
    return session_service.session_state(session, resumed=resumed)


@router.post("/{quiz_id}/submit")
def submit_quiz(
    quiz_id: int,
    req: SubmitRequest,
    user: User = Depends(require_roles("student")),
    db: Session = Depends(get_db),
):
    quiz = _get_quiz(db, quiz_id)
    session = session_service.find_session(db, req.session_id)
    session_service.submit(db, quiz, session, user, [a.model_dump() for a in req.answers])
    db.commit()
    return session_service.result(db, quiz, user, session_id=session.id)


@router.get("/{quiz_id}/result")
def quiz_result(
    quiz_id: int,
    user: CurrentUser,
    session_id: Optional[int] = None,
    db: Session = Depends(get_db),
):
    quiz = _get_quiz(db, quiz_id)
    if user.role != "student":
        if session_id is None:
            raise HTTPException(status_code=400, detail="session_id is required")
        _owned_quiz(db, quiz_id, user)
    return session_service.result(db, quiz, user, session_id=session_id)
