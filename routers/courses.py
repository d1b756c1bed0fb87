from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from db import get_db
from deps.auth import CurrentUser, require_roles
from models import Course, User
from schemas.courses import CourseCreate, CourseOut, CourseUpdate

logger = logging.getLogger("tutorhub.courses")

router = APIRouter(prefix="/courses", tags=["courses"])


def _get_course(db: Session, course_id: int) -> Course:
    course = db.get(Course, course_id)
    if course is None:
        raise HTTPException(status_code=404, detail="Course not found")
    return course


@router.post("", response_model=CourseOut, status_code=201)
def create_course(
    req: CourseCreate,
    user: User = Depends(require_roles("tutor", "admin")),
    db: Session = Depends(get_db),
):
    data = req.model_dump()
    course = Course(**data, created_by=user.id)
    db.add(course)
    db.commit()
    logger.info("Course %s created by %s", course.id, user.id)
    return course


@router.get("")
def list_courses(
    user: CurrentUser,
    subject: Optional[str] = None,
    grade: Optional[int] = Query(default=None, ge=1, le=12),
    status: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    query = select(Course)
    if user.role == "student":
        query = query.where(Course.status == "published")
    elif status:
        query = query.where(Course.status == status)
    if subject:
        query = query.where(Course.subject == subject)
    if grade is not None:
        query = query.where(Course.grade == grade)
    if search:
        like = f"%{search}%"
        query = query.where(or_(Course.title.ilike(like), Course.description.ilike(like)))

    total = db.scalar(select(func.count()).select_from(query.subquery())) or 0
    rows = db.scalars(query.order_by(Course.id).offset((page - 1) * limit).limit(limit))
    return {
        "items": [CourseOut.model_validate(c) for c in rows],
        "total": total,
        "page": page,
        "limit": limit,
    }


@router.get("/mine", response_model=list[CourseOut])
def my_courses(user: CurrentUser, db: Session = Depends(get_db)):
    if user.role == "student":
        return user.enrolled_courses
    return list(db.scalars(select(Course).where(Course.created_by == user.id).order_by(Course.id)))


@router.get("/{course_id}")
def get_course(course_id: int, user: CurrentUser, db: Session = Depends(get_db)):
    course = _get_course(db, course_id)
    return {
        **CourseOut.model_validate(course).model_dump(),
        "all_topics": course.all_topics(),
        "is_enrolled": user.is_enrolled(course.id),
        "student_count": len(course.students),
    }


@router.patch("/{course_id}", response_model=CourseOut)
def update_course(
    course_id: int,
    req: CourseUpdate,
    user: User = Depends(require_roles("tutor", "admin")),
    db: Session = Depends(get_db),
):
    course = _get_course(db, course_id)
    if user.role != "admin" and course.created_by != user.id:
        raise HTTPException(status_code=403, detail="Access denied.")
    for key, value in req.model_dump(exclude_unset=True).items():
        setattr(course, key, value)
    db.commit()
    return course


@router.post("/{course_id}/enroll")
def enroll(
    course_id: int,
    user: User = Depends(require_roles("student")),
    db: Session = Depends(get_db),
):
    course = _get_course(db, course_id)
    if course.status != "published":
        raise HTTPException(status_code=400, detail="Course is not open for enrollment")
    if user.is_enrolled(course.id):
        raise HTTPException(status_code=409, detail="Already enrolled")
    user.enrolled_courses.append(course)
    db.commit()
    logger.info("Student %s enrolled in course %s", user.id, course.id)
    return {"ok": True, "course_id": course.id}


@router.delete("/{course_id}/enroll")
def unenroll(
    course_id: int,
    user: User = Depends(require_roles("student")),
    db: Session = Depends(get_db),
):
    course = _get_course(db, course_id)
    if not user.is_enrolled(course.id):
        raise HTTPException(status_code=400, detail="Not enrolled in this course")
    user.enrolled_courses.remove(course)
    db.commit()
    return {"ok": True, "course_id": course.id}
