from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from db import get_db
from deps.auth import require_roles
from errors import ServiceError
from models import Quiz, QuizSession, User
from schemas.evaluations import BulkManualEvaluationRequest, ManualEvaluationRequest
from services import evaluation as evaluation_service
from services import sessions as session_service

logger = logging.getLogger("tutorhub.evaluation")

router = APIRouter(prefix="/evaluations", tags=["evaluations"])

Staff = require_roles("tutor", "admin")


def _session_for_staff(db: Session, session_id: int, user: User) -> QuizSession:
    session = session_service.find_session(db, session_id)
    if user.role != "admin":
        quiz = db.get(Quiz, session.quiz_id)
        if quiz is None or quiz.created_by != user.id:
            raise HTTPException(status_code=403, detail="Access denied.")
    return session


@router.get("/pending")
def pending(
    user: User = Depends(Staff),
    course_id: Optional[int] = None,
    quiz_id: Optional[int] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    rows, total = evaluation_service.pending_sessions(
        db, course_id, quiz_id, page, limit, tutor_id=None if user.role == "admin" else user.id
    )
    items = []
    for s in rows:
        student = db.get(User, s.student_id)
        items.append(
            {
                "session_id": s.id,
                "quiz_id": s.quiz_id,
                "quiz_title": s.quiz.title,
                "student_id": s.student_id,
                "student_name": student.name if student else None,
                "submitted_at": s.submitted_at,
                "auto_score": s.auto_score,
                "pending_questions": len(s.questions_for_manual_evaluation or []),
            }
        )
    return {"items": items, "total": total, "page": page, "limit": limit}


@router.get("/sessions/{session_id}")
def session_for_evaluation(
    session_id: int, user: User = Depends(Staff), db: Session = Depends(get_db)
):
    session = _session_for_staff(db, session_id, user)
    student = db.get(User, session.student_id)
    return {
        "session_id": session.id,
        "quiz_id": session.quiz_id,
        "quiz_title": session.quiz.title,
        "student": {"id": student.id, "name": student.name, "email": student.email}
        if student
        else None,
        "status": session.status,
        "auto_score": session.auto_score,
        "manual_score": session.manual_score,
        "total_marks": session.total_marks,
        "submitted_at": session.submitted_at,
        "questions": evaluation_service.questions_for_evaluation(db, session),
    }


@router.post("/manual")
def submit_manual(
    req: ManualEvaluationRequest, user: User = Depends(Staff), db: Session = Depends(get_db)
):
    session = _session_for_staff(db, req.session_id, user)
    out = evaluation_service.submit_manual(
        db, session, req.question_id, req.marks_awarded, req.feedback, user
    )
    db.commit()
    return out


@router.post("/manual/bulk")
def submit_manual_bulk(
    req: BulkManualEvaluationRequest, user: User = Depends(Staff), db: Session = Depends(get_db)
):
    session = _session_for_staff(db, req.session_id, user)
    results, failed = [], []
    status = None
    for item in req.evaluations:
        try:
            status = evaluation_service.submit_manual(
                db, session, item.question_id, item.marks_awarded, item.feedback, user
            )
        except ServiceError as e:
            failed.append({"question_id": item.question_id, "error": e.detail})
            continue
        results.append({"question_id": item.question_id, "marks_awarded": item.marks_awarded})
    db.commit()
    return {
        "evaluated": results,
        "failed": failed,
        "remaining_questions": len(session.questions_for_manual_evaluation or []),
        "is_complete": bool(status and status["is_complete"]),
        "current_score": (session.auto_score or 0) + (session.manual_score or 0),
    }
