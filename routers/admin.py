from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from db import get_db
from deps.auth import require_operator, require_roles
from models import Course, Quiz, QuizSession, User
from schemas.admin import UserUpdate
from schemas.auth import UserOut
from services import sessions as session_service
from services.drafts import draft_stats

logger = logging.getLogger("tutorhub.admin")

router = APIRouter(prefix="/admin", tags=["admin"])

Admin = require_roles("admin")


def _count_by(db: Session, column) -> dict:
    return {key: n for key, n in db.execute(select(column, func.count()).group_by(column)).all()}


@router.get("/dashboard")
def dashboard(user: User = Depends(Admin), db: Session = Depends(get_db)):
    return {
        "users": {
            "total": db.scalar(select(func.count(User.id))) or 0,
            "by_role": _count_by(db, User.role),
            "by_status": _count_by(db, User.status),
        },
        "courses": {
            "total": db.scalar(select(func.count(Course.id))) or 0,
            "by_status": _count_by(db, Course.status),
        },
        "quizzes": {
            "total": db.scalar(select(func.count(Quiz.id))) or 0,
            "by_status": _count_by(db, Quiz.status),
        },
        "sessions": {
            "total": db.scalar(select(func.count(QuizSession.id))) or 0,
            "by_status": _count_by(db, QuizSession.status),
        },
        "pending_evaluations": db.scalar(
            select(func.count(QuizSession.id)).where(QuizSession.status == "evaluating")
        )
        or 0,
        "ai_drafts": draft_stats(db),
    }


@router.get("/users")
def list_users(
    user: User = Depends(Admin),
    role: Optional[str] = None,
    status: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    query = select(User)
    if role:
        query = query.where(User.role == role)
    if status:
        query = query.where(User.status == status)
    if search:
        like = f"%{search}%"
        query = query.where(or_(User.name.ilike(like), User.email.ilike(like)))

    total = db.scalar(select(func.count()).select_from(query.subquery())) or 0
    rows = db.scalars(query.order_by(User.id).offset((page - 1) * limit).limit(limit))
    return {
        "items": [UserOut.model_validate(u) for u in rows],
        "total": total,
        "page": page,
        "limit": limit,
    }


@router.patch("/users/{user_id}", response_model=UserOut)
def update_user(
    user_id: int, req: UserUpdate, user: User = Depends(Admin), db: Session = Depends(get_db)
):
    target = db.get(User, user_id)
    if target is None:
        raise HTTPException(status_code=404, detail="User not found")
    if target.id == user.id:
        if req.role is not None and req.role != "admin":
            raise HTTPException(status_code=400, detail="You cannot change your own role")
        if req.status is not None and req.status != "active":
            raise HTTPException(status_code=400, detail="You cannot deactivate your own account")

    for key, value in req.model_dump(exclude_unset=True, exclude_none=True).items():
        setattr(target, key, value)
    db.commit()
    logger.info("Admin %s updated user %s", user.id, target.id)
    return target


@router.post("/maintenance", dependencies=[Depends(require_operator)])
def maintenance(db: Session = Depends(get_db)):
    """Close timed-out attempts and apply quiz publish/archive schedules."""
    expired = session_service.expire_stale_sessions(db)
    schedules = session_service.apply_schedules(db)
    db.commit()
    return {"ok": True, "expired_sessions": expired, **schedules}
