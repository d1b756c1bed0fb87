from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from db import get_db
from deps.auth import CurrentUser, require_roles
from models import Quiz, User
from schemas.sessions import MarkReviewRequest, PositionRequest, SaveAnswerRequest
from services import sessions as session_service

router = APIRouter(prefix="/sessions", tags=["sessions"])

Student = require_roles("student")


@router.get("/{session_id}")
def get_session(session_id: int, user: CurrentUser, db: Session = Depends(get_db)):
    session = session_service.find_session(db, session_id)
    if user.role == "student" and session.student_id != user.id:
        raise HTTPException(status_code=403, detail="Access denied.")
    if user.role == "tutor":
        quiz = db.get(Quiz, session.quiz_id)
        if quiz is None or quiz.created_by != user.id:
            raise HTTPException(status_code=403, detail="Access denied.")
    return session_service.session_state(session)


@router.post("/{session_id}/answer")
def save_answer(
    session_id: int,
    req: SaveAnswerRequest,
    user: User = Depends(Student),
    db: Session = Depends(get_db),
):
    session = session_service.find_session(db, session_id)
    out = session_service.save_answer(
        db, session, user, req.question_id, req.answer, req.time_spent
    )
    db.commit()
    return out


@router.post("/{session_id}/mark-review")
def mark_review(
    session_id: int,
    req: MarkReviewRequest,
    user: User = Depends(Student),
    db: Session = Depends(get_db),
):
    session = session_service.find_session(db, session_id)
    out = session_service.mark_for_review(db, session, user, req.question_id, req.marked)
    db.commit()
    return out


@router.post("/{session_id}/position")
def set_position(
    session_id: int,
    req: PositionRequest,
    user: User = Depends(Student),
    db: Session = Depends(get_db),
):
    session = session_service.find_session(db, session_id)
    out = session_service.set_position(db, session, user, req.index)
    db.commit()
    return out


@router.post("/{session_id}/focus-lost")
def focus_lost(session_id: int, user: User = Depends(Student), db: Session = Depends(get_db)):
    session = session_service.find_session(db, session_id)
    out = session_service.record_focus_loss(db, session, user)
    db.commit()
    return out
