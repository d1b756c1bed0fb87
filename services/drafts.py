"""
AI question drafts: the generation pipeline and the tutor review workflow.

Generation runs provider -> validate -> content filter -> duplicate check
and persists whatever survives as ``draft`` rows. Nothing reaches the
question bank until a tutor approves it.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ai.providers import ProviderError, resolve_provider
from ai.validation import (
    DuplicateDetector,
    fill_correct_answer,
    filter_question,
    sanitize_question,
    validate_batch,
    validate_question,
)
from errors import Forbidden, InvalidState, NotFound
from models import AIQuestionDraft, Course, Question, User, utcnow

logger = logging.getLogger("tutorhub.drafts")

QUESTION_FIELDS = (
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
)


def _course_for(db: Session, course_id: int, user: User) -> Course:
    course = db.get(Course, course_id)
    if course is None:
        raise NotFound("Course not found")
    if user.role != "admin" and course.created_by != user.id:
        raise Forbidden("You can only manage questions for your own courses")
    return course


# --- Generation -------------------------------------------------------------------


def generate_questions(
    db: Session,
    user: User,
    course_id: int,
    topics: Optional[Sequence[str]] = None,
    difficulties: Sequence[str] = ("medium",),
    question_types: Sequence[str] = ("mcq-single",),
    count: int = 5,
    content: str = "",
    chapter_name: str = "",
    provider_name: Optional[str] = None,
) -> Dict[str, Any]:
    started = time.monotonic()
    course = _course_for(db, course_id, user)

    topic_list = [t for t in (topics or course.all_topics()) if t]
    if not topic_list:
        raise InvalidState("No topics found for this course")

    try:
        provider = resolve_provider(provider_name)
    except ProviderError as e:
        raise InvalidState(str(e))

    job_id = uuid.uuid4().hex
    logger.info(
        "Generation job %s: %d topic(s) x %d difficulty x %d type via %s",
        job_id,
        len(topic_list),
        len(difficulties),
        len(question_types),
        provider.name,
    )

    raw: List[dict] = []
    errors: List[dict] = []
    for topic in topic_list:
        context = {
            "learning_objectives": course.learning_objectives(topic),
            "grade": course.grade,
            "subject": course.subject,
        }
        for difficulty in difficulties:
            for qtype in question_types:
                try:
                    batch = provider.generate(topic, content, difficulty, qtype, count, context)
                except (ProviderError, ValueError) as e:
                    logger.warning(
                        "Generation failed for %s/%s/%s: %s", topic, difficulty, qtype, e
                    )
                    errors.append(
                        {"topic": topic, "difficulty": difficulty, "type": qtype, "error": str(e)}
                    )
                    continue
                for q in batch:
                    q.setdefault("topic", topic)
                    q.setdefault("difficulty", difficulty)
                    q.setdefault("type", qtype)
                raw.extend(batch)

    checked = validate_batch(raw)

    detector = DuplicateDetector(
        (q.id, q.text)
        for q in db.scalars(select(Question).where(Question.course_id == course.id))
    )
    for d in db.scalars(
        select(AIQuestionDraft).where(
            AIQuestionDraft.course_id == course.id, AIQuestionDraft.status == "draft"
        )
    ):
        detector.add(f"draft:{d.id}", d.payload.get("text", ""))

    filtered_out = flagged = duplicates = 0
    created: List[AIQuestionDraft] = []
    for q in checked.valid:
        issues, flags = filter_question(q)
        if issues:
            filtered_out += 1
            continue
        if flags:
            flagged += 1
        if detector.check(q["text"]) is not None:
            duplicates += 1
            continue
        detector.add("batch", q["text"])

        meta = q.pop("_metadata", {}) or {}
        q.pop("_warnings", None)
        draft = AIQuestionDraft(
            course_id=course.id,
            chapter_name=chapter_name,
            topic=q["topic"],
            difficulty=q["difficulty"],
            type=q["type"],
            payload=q,
            source_type="rule_based" if meta.get("provider") == "rule-based" else "ai_generated",
            model_used=meta.get("model") or provider.model,
            prompt_version=meta.get("prompt_version") or "1.0.0",
            confidence=float(meta.get("confidence", 0.5)),
            validation_flags=flags,
            status="draft",
            job_id=job_id,
            created_by=user.id,
            edit_history=[],
        )
        db.add(draft)
        created.append(draft)

    db.flush()
    summary = {
        "job_id": job_id,
        "provider": provider.name,
        "total_generated": len(raw),
        "valid": len(checked.valid),
        "invalid": len(checked.invalid),
        "filtered_out": filtered_out,
        "flagged": flagged,
        "duplicates": duplicates,
        "drafts_created": len(created),
        "draft_ids": [d.id for d in created],
        "errors": errors,
        "duration_ms": int((time.monotonic() - started) * 1000),
    }
    logger.info("Generation job %s created %d draft(s)", job_id, len(created))
    return summary


# --- Review workflow ----------------------------------------------------------------


def get_draft(db: Session, draft_id: int, user: User) -> AIQuestionDraft:
    draft = db.get(AIQuestionDraft, draft_id)
    if draft is None:
        raise NotFound("Draft not found")
    _course_for(db, draft.course_id, user)
    return draft


def list_drafts(
    db: Session,
    user: User,
    course_id: Optional[int] = None,
    status: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
) -> Tuple[List[AIQuestionDraft], int]:
    query = select(AIQuestionDraft)
    if user.role != "admin":
        query = query.join(Course, Course.id == AIQuestionDraft.course_id).where(
            Course.created_by == user.id
        )
    if course_id is not None:
        query = query.where(AIQuestionDraft.course_id == course_id)
    if status:
        query = query.where(AIQuestionDraft.status == status)

    total = db.scalar(select(func.count()).select_from(query.subquery())) or 0
    rows = db.scalars(
        query.order_by(AIQuestionDraft.created_at.desc(), AIQuestionDraft.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return list(rows), total


def _merged_payload(draft: AIQuestionDraft, changes: Optional[dict]) -> dict:
    payload = dict(draft.payload or {})
    changes = {k: v for k, v in (changes or {}).items() if v is not None}
    payload.update(changes)
    # new options or answers make the stored correct_answer stale
    if "correct_answer" not in changes and {"options", "numerical_answer", "expected_answer"} & set(changes):
        payload.pop("correct_answer", None)
    return payload


def _validated(payload: dict) -> dict:
    """Validate a merged payload and return it in the stored shape, with option ids."""
    fill_correct_answer(payload)
    errors, _ = validate_question(payload)
    if errors:
        raise InvalidState("Validation failed: " + "; ".join(errors))
    return sanitize_question(payload)


def edit_draft(
    db: Session, draft: AIQuestionDraft, user: User, changes: dict, note: str = ""
) -> AIQuestionDraft:
    if draft.status == "approved":
        raise InvalidState("Approved drafts cannot be edited")
    payload = _validated(_merged_payload(draft, changes))

    previous = {k: (draft.payload or {}).get(k) for k in changes if changes[k] is not None}
    draft.edit_history = list(draft.edit_history or []) + [
        {
            "edited_by": user.id,
            "edited_at": utcnow().isoformat(),
            "previous": previous,
            "note": note,
        }
    ]
    draft.payload = payload
    draft.topic = payload.get("topic", draft.topic)
    draft.difficulty = payload.get("difficulty", draft.difficulty)
    draft.type = payload.get("type", draft.type)
    draft.status = "draft"
    db.flush()
    return draft


def question_from_payload(draft: AIQuestionDraft, payload: dict, user: User) -> Question:
    q = Question(
        course_id=draft.course_id,
        chapter_name=draft.chapter_name or "",
        topic=payload.get("topic") or draft.topic,
        difficulty=payload.get("difficulty") or draft.difficulty,
        type=payload.get("type") or draft.type,
        created_by=user.id,
        is_active=True,
    )
    for key in QUESTION_FIELDS:
        if payload.get(key) is not None:
            setattr(q, key, payload[key])
    return q


def approve_draft(
    db: Session, draft: AIQuestionDraft, user: User, edits: Optional[dict] = None
) -> Question:
    if draft.status != "draft":
        raise InvalidState(f"Only drafts in 'draft' status can be approved (current: {draft.status})")
    payload = _merged_payload(draft, edits)
    if edits:
        payload = _validated(payload)
        draft.edit_history = list(draft.edit_history or []) + [
            {"edited_by": user.id, "edited_at": utcnow().isoformat(), "note": "edited on approval"}
        ]
        draft.payload = payload

    question = question_from_payload(draft, payload, user)
    db.add(question)
    db.flush()

    draft.status = "approved"
    draft.approved_by = user.id
    draft.approved_at = utcnow()
    draft.final_question_id = question.id
    db.flush()
    logger.info("Draft %s approved as question %s by %s", draft.id, question.id, user.id)
    return question


def reject_draft(db: Session, draft: AIQuestionDraft, user: User, reason: str) -> AIQuestionDraft:
    if not reason or not reason.strip():
        raise InvalidState("Rejection reason is required")
    if draft.status in ("approved", "rejected"):
        raise InvalidState(f"Draft is already {draft.status}")
    draft.status = "rejected"
    draft.rejected_by = user.id
    draft.rejected_at = utcnow()
    draft.rejection_reason = reason.strip()
    db.flush()
    logger.info("Draft %s rejected by %s", draft.id, user.id)
    return draft


def bulk_approve(db: Session, user: User, draft_ids: Sequence[int]) -> Dict[str, list]:
    approved, failed = [], []
    for draft_id in draft_ids:
        try:
            draft = get_draft(db, draft_id, user)
            question = approve_draft(db, draft, user)
        except (InvalidState, NotFound, Forbidden) as e:
            failed.append({"draft_id": draft_id, "error": e.detail})
            continue
        approved.append({"draft_id": draft_id, "question_id": question.id})
    return {"approved": approved, "failed": failed}


def bulk_reject(db: Session, user: User, draft_ids: Sequence[int], reason: str) -> Dict[str, list]:
    if not reason or not reason.strip():
        raise InvalidState("Rejection reason is required")
    rejected, failed = [], []
    for draft_id in draft_ids:
        try:
            reject_draft(db, get_draft(db, draft_id, user), user, reason)
        except (InvalidState, NotFound, Forbidden) as e:
            failed.append({"draft_id": draft_id, "error": e.detail})
            continue
        rejected.append({"draft_id": draft_id})
    return {"rejected": rejected, "failed": failed}


def draft_stats(db: Session, user: Optional[User] = None, course_id: Optional[int] = None) -> dict:
    query = select(AIQuestionDraft)
    if user is not None and user.role != "admin":
        query = query.join(Course, Course.id == AIQuestionDraft.course_id).where(
            Course.created_by == user.id
        )
    if course_id is not None:
        query = query.where(AIQuestionDraft.course_id == course_id)
    drafts = list(db.scalars(query))

    by_status = {s: 0 for s in ("draft", "approved", "rejected", "needs_edit")}
    by_model: Dict[str, int] = {}
    for d in drafts:
        by_status[d.status] = by_status.get(d.status, 0) + 1
        by_model[d.model_used] = by_model.get(d.model_used, 0) + 1

    decided = by_status["approved"] + by_status["rejected"]
    return {
        "total": len(drafts),
        "by_status": by_status,
        "by_model": by_model,
        "average_confidence": (
            sum(d.confidence or 0 for d in drafts) / len(drafts) if drafts else 0.0
        ),
        "approval_rate": by_status["approved"] / decided * 100 if decided else 0.0,
    }
