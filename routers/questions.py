from __future__ import annotations

import csv
import io
import json
import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from db import get_db
from deps.auth import require_roles
from models import Course, Question, User
from schemas.questions import (
    ImportResult,
    QuestionBase,
    QuestionCreate,
    QuestionImport,
    QuestionOut,
    QuestionUpdate,
)

logger = logging.getLogger("tutorhub.questions")

router = APIRouter(prefix="/questions", tags=["questions"])

Staff = require_roles("tutor", "admin")

CSV_COLUMNS = [
    "id",
    "chapter_name",
    "topic",
    "difficulty",
    "type",
    "text",
    "case_study",
    "options",
    "numerical_answer",
    "expected_answer",
    "correct_answer",
    "keywords",
    "explanation",
    "marks",
    "negative_marks",
    "recommended_time",
    "tags",
    "is_active",
]


def _course_for_staff(db: Session, course_id: int, user: User) -> Course:
    course = db.get(Course, course_id)
    if course is None:
        raise HTTPException(status_code=404, detail="Course not found")
    if user.role != "admin" and course.created_by != user.id:
        raise HTTPException(status_code=403, detail="Access denied.")
    return course


def _get_question(db: Session, question_id: int, user: User) -> Question:
    q = db.get(Question, question_id)
    if q is None:
        raise HTTPException(status_code=404, detail="Question not found")
    _course_for_staff(db, q.course_id, user)
    return q


def _to_model(data: dict, course_id: int, user: User) -> Question:
    data = dict(data)
    data["course_id"] = course_id
    return Question(**data, created_by=user.id, is_active=True)


@router.post("", response_model=QuestionOut, status_code=201)
def create_question(req: QuestionCreate, user: User = Depends(Staff), db: Session = Depends(get_db)):
    _course_for_staff(db, req.course_id, user)
    q = _to_model(req.model_dump(), req.course_id, user)
    db.add(q)
    db.commit()
    return q


@router.get("")
def list_questions(
    user: User = Depends(Staff),
    course_id: Optional[int] = None,
    topic: Optional[str] = None,
    difficulty: Optional[str] = None,
    type: Optional[str] = None,
    is_active: Optional[bool] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    query = select(Question)
    if user.role != "admin":
        query = query.join(Course, Course.id == Question.course_id).where(
            Course.created_by == user.id
        )
    if course_id is not None:
        query = query.where(Question.course_id == course_id)
    if topic:
        query = query.where(Question.topic == topic)
    if difficulty:
        query = query.where(Question.difficulty == difficulty)
    if type:
        query = query.where(Question.type == type)
    if is_active is not None:
        query = query.where(Question.is_active.is_(is_active))

    total = db.scalar(select(func.count()).select_from(query.subquery())) or 0
    rows = db.scalars(query.order_by(Question.id).offset((page - 1) * limit).limit(limit))
    return {
        "items": [QuestionOut.model_validate(q) for q in rows],
        "total": total,
        "page": page,
        "limit": limit,
    }


@router.get("/export")
def export_questions(
    course_id: int,
    format: Literal["json", "csv"] = "json",
    user: User = Depends(Staff),
    db: Session = Depends(get_db),
):
    _course_for_staff(db, course_id, user)
    rows = list(
        db.scalars(select(Question).where(Question.course_id == course_id).order_by(Question.id))
    )
    if format == "json":
        return {
            "course_id": course_id,
            "count": len(rows),
            "questions": [QuestionOut.model_validate(q).model_dump(mode="json") for q in rows],
        }

    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=CSV_COLUMNS)
    writer.writeheader()
    for q in rows:
        record = {}
        for col in CSV_COLUMNS:
            value = getattr(q, col)
            # nested values are embedded as JSON
            record[col] = json.dumps(value) if isinstance(value, (list, dict)) else value
        writer.writerow(record)
    return Response(
        content=buf.getvalue(),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="questions-{course_id}.csv"'},
    )


@router.post("/import", response_model=ImportResult)
def import_questions(req: QuestionImport, user: User = Depends(Staff), db: Session = Depends(get_db)):
    _course_for_staff(db, req.course_id, user)
    created: list[Question] = []
    failed = []
    for i, raw in enumerate(req.questions):
        try:
            item = QuestionBase.model_validate(raw)
        except ValidationError as e:
            failed.append(
                {
                    "index": i,
                    "errors": [
                        f"{'.'.join(str(p) for p in err['loc']) or 'question'}: {err['msg']}"
                        for err in e.errors()
                    ],
                }
            )
            continue
        q = _to_model(item.model_dump(), req.course_id, user)
        db.add(q)
        created.append(q)
    db.commit()
    logger.info(
        "Imported %d question(s) into course %s (%d rejected)", len(created), req.course_id, len(failed)
    )
    return {"imported": len(created), "question_ids": [q.id for q in created], "failed": failed}


@router.get("/{question_id}", response_model=QuestionOut)
def get_question(question_id: int, user: User = Depends(Staff), db: Session = Depends(get_db)):
    return _get_question(db, question_id, user)


@router.patch("/{question_id}", response_model=QuestionOut)
def update_question(
    question_id: int,
    req: QuestionUpdate,
    user: User = Depends(Staff),
    db: Session = Depends(get_db),
):
    q = _get_question(db, question_id, user)
    changes = req.model_dump(exclude_unset=True)

    # re-check the merged question so an update cannot break its answer shape
    merged = QuestionOut.model_validate(q).model_dump()
    merged.update(changes)
    try:
        checked = QuestionBase.model_validate(merged)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e.errors()[0]["msg"]))

    for key in changes:
        value = getattr(checked, key) if key in QuestionBase.model_fields else changes[key]
        if hasattr(value, "model_dump"):
            value = value.model_dump()
        elif isinstance(value, list):
            value = [v.model_dump() if hasattr(v, "model_dump") else v for v in value]
        setattr(q, key, value)
    db.commit()
    return q


@router.delete("/{question_id}")
def deactivate_question(
    question_id: int, user: User = Depends(Staff), db: Session = Depends(get_db)
):
    q = _get_question(db, question_id, user)
    q.is_active = False
    db.commit()
    return {"ok": True, "id": q.id, "is_active": False}
