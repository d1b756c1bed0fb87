from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ai.providers import provider_status
from db import get_db
from deps.auth import require_roles
from models import User
from schemas.drafts import (
    ApproveRequest,
    BulkApproveRequest,
    BulkRejectRequest,
    DraftEdit,
    DraftOut,
    GenerateRequest,
    RejectRequest,
)
from schemas.questions import QuestionOut
from services import drafts as draft_service

router = APIRouter(prefix="/ai", tags=["ai"])

Staff = require_roles("tutor", "admin")


@router.post("/questions/generate", status_code=201)
def generate(req: GenerateRequest, user: User = Depends(Staff), db: Session = Depends(get_db)):
    summary = draft_service.generate_questions(
        db,
        user,
        req.course_id,
        topics=req.topics,
        difficulties=req.difficulties,
        question_types=req.question_types,
        count=req.count,
        content=req.content,
        chapter_name=req.chapter_name,
        provider_name=req.provider,
    )
    db.commit()
    return summary


@router.get("/questions/drafts")
def list_drafts(
    user: User = Depends(Staff),
    course_id: Optional[int] = None,
    status: Optional[str] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    rows, total = draft_service.list_drafts(db, user, course_id, status, page, limit)
    return {
        "items": [DraftOut.model_validate(d) for d in rows],
        "total": total,
        "page": page,
        "limit": limit,
    }


@router.get("/questions/drafts/{draft_id}", response_model=DraftOut)
def get_draft(draft_id: int, user: User = Depends(Staff), db: Session = Depends(get_db)):
    return draft_service.get_draft(db, draft_id, user)


@router.put("/questions/drafts/{draft_id}", response_model=DraftOut)
def edit_draft(
    draft_id: int, req: DraftEdit, user: User = Depends(Staff), db: Session = Depends(get_db)
):
    draft = draft_service.get_draft(db, draft_id, user)
    draft_service.edit_draft(db, draft, user, req.changes, req.note)
    db.commit()
    return draft


@router.post("/questions/drafts/{draft_id}/approve")
def approve_draft(
    draft_id: int,
    req: Optional[ApproveRequest] = None,
    user: User = Depends(Staff),
    db: Session = Depends(get_db),
):
    draft = draft_service.get_draft(db, draft_id, user)
    question = draft_service.approve_draft(db, draft, user, req.edits if req else None)
    db.commit()
    return {
        "draft": DraftOut.model_validate(draft),
        "question": QuestionOut.model_validate(question),
    }


@router.post("/questions/drafts/{draft_id}/reject", response_model=DraftOut)
def reject_draft(
    draft_id: int, req: RejectRequest, user: User = Depends(Staff), db: Session = Depends(get_db)
):
    draft = draft_service.get_draft(db, draft_id, user)
    draft_service.reject_draft(db, draft, user, req.reason)
    db.commit()
    return draft


@router.post("/questions/bulk-approve")
def bulk_approve(
    req: BulkApproveRequest, user: User = Depends(Staff), db: Session = Depends(get_db)
):
    out = draft_service.bulk_approve(db, user, req.draft_ids)
    db.commit()
    return out


@router.post("/questions/bulk-reject")
def bulk_reject(
    req: BulkRejectRequest, user: User = Depends(Staff), db: Session = Depends(get_db)
):
    out = draft_service.bulk_reject(db, user, req.draft_ids, req.reason)
    db.commit()
    return out


@router.get("/questions/stats")
def draft_stats(
    user: User = Depends(Staff),
    course_id: Optional[int] = None,
    db: Session = Depends(get_db),
):
    return draft_service.draft_stats(db, user, course_id)


@router.get("/providers")
def providers(user: User = Depends(Staff)):
    return {"providers": provider_status()}
