"""
Quiz-attempt lifecycle.

A session is created (or resumed) when a student starts a quiz, collects
answers while ``in-progress`` and is closed exactly once, either by the
student or by the expiry sweep. Every function here flushes but never
commits; the router owns the transaction. The exceptions are the paths that
close a timed-out session, which must persist before a later error can
reach the client.
"""

from __future__ import annotations

import logging
import random
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from errors import Forbidden, InvalidState, NotFound
from grading import check_answer, describe_correct_answer, is_blank
from models import (
    FINISHED_SESSION_STATUSES,
    EvaluationResult,
    Question,
    Quiz,
    QuizSession,
    SessionAnswer,
    User,
    utcnow,
)
from selection import SelectionCriteria, get_strategy
from services.evaluation import finalize_scores, generate_result

logger = logging.getLogger("tutorhub.sessions")

# expired sessions stay open until submitted, swept or replaced by a new start
OPEN_SESSION_STATUSES = ("in-progress", "expired")


def _own(session: QuizSession, student: User) -> None:
    if session.student_id != student.id:
        raise Forbidden("Access denied")


def _require_in_snapshot(session: QuizSession, question_id: int) -> dict:
    entry = session.snapshot_for(question_id)
    if entry is None:
        raise InvalidState("Question is not part of this quiz session")
    return entry


def _answer_row(session: QuizSession, question_id: int) -> SessionAnswer:
    row = session.answer_for(question_id)
    if row is None:
        row = SessionAnswer(question_id=question_id, answer=None)
        session.answers.append(row)
    return row


def active_session(db: Session, quiz_id: int, student_id: int) -> Optional[QuizSession]:
    return db.scalar(
        select(QuizSession)
        .where(
            QuizSession.quiz_id == quiz_id,
            QuizSession.student_id == student_id,
            QuizSession.status.in_(OPEN_SESSION_STATUSES),
        )
        .order_by(QuizSession.id.desc())
    )


def attempts_taken(db: Session, quiz_id: int, student_id: int) -> int:
    return (
        db.scalar(
            select(func.count(QuizSession.id)).where(
                QuizSession.quiz_id == quiz_id,
                QuizSession.student_id == student_id,
                QuizSession.status.in_(FINISHED_SESSION_STATUSES + ("expired",)),
            )
        )
        or 0
    )


def _served_question_ids(db: Session, quiz_id: int, student_id: int) -> List[int]:
    rows = db.scalars(
        select(QuizSession.selected_questions).where(
            QuizSession.quiz_id == quiz_id, QuizSession.student_id == student_id
        )
    )
    seen: List[int] = []
    for selected in rows:
        for entry in selected or []:
            if entry["question_id"] not in seen:
                seen.append(entry["question_id"])
    return seen


def session_state(session: QuizSession, now: Optional[datetime] = None, resumed: bool = False) -> dict:
    """Everything a client needs to render (or restore) an attempt."""
    questions = sorted(session.selected_questions or [], key=lambda q: q["display_order"])
    answers: Dict[int, Any] = {}
    marked: List[int] = []
    visited: List[int] = []
    for a in session.answers:
        if a.answer is not None:
            answers[a.question_id] = a.answer
        if a.is_marked_for_review:
            marked.append(a.question_id)
        if a.is_visited:
            visited.append(a.question_id)
    quiz = session.quiz
    return {
        "session_id": session.id,
        "quiz_id": session.quiz_id,
        "attempt_number": session.attempt_number,
        "status": session.status,
        "resumed": resumed,
        "questions": [
            {"question_id": q["question_id"], "display_order": q["display_order"], **q["snapshot"]}
            for q in questions
        ],
        "answers": answers,
        "marked_for_review": marked,
        "visited": visited,
        "current_question_index": session.current_question_index,
        "started_at": session.started_at,
        "expires_at": session.expires_at,
        "duration": session.duration,
        "remaining_time": session.remaining_time(now),
        "total_marks": session.total_marks,
        "autosave_interval": int(quiz.setting("autosave_interval", 30)) if quiz else 30,
        "tab_switch_count": session.tab_switch_count,
    }


# --- Start / resume ---------------------------------------------------------------


def start_or_resume(
    db: Session,
    quiz: Quiz,
    student: User,
    strategy: Optional[str] = None,
    rng: Optional[random.Random] = None,
    now: Optional[datetime] = None,
) -> Tuple[QuizSession, bool]:
    """
    Return ``(session, resumed)``. An in-progress session that has run out
    of time is closed first, so the student never resumes a dead attempt.
    """
    now = now or utcnow()
    if not quiz.is_available(now):
        raise InvalidState("Quiz is not available")
    if not student.is_enrolled(quiz.course_id):
        raise Forbidden("You are not enrolled in this course")

    current = active_session(db, quiz.id, student.id)
    if current is not None:
        if current.status == "in-progress" and not current.is_expired(now):
            current.last_active_at = now
            logger.info("Resumed session %s for student %s", current.id, student.id)
            return current, True
        close_session(db, current, now=now)
        db.commit()

    taken = attempts_taken(db, quiz.id, student.id)
    if taken >= quiz.attempts_allowed:
        raise InvalidState("Maximum attempts reached for this quiz")

    criteria = SelectionCriteria.for_quiz(
        quiz,
        exclude_ids=_served_question_ids(db, quiz.id, student.id),
        student_id=student.id,
    )
    picker = get_strategy(strategy or quiz.setting("selection_strategy"), rng=rng)
    selected = picker.select(db, criteria)
    if not selected:
        raise InvalidState("No questions available for this quiz configuration")

    for entry in selected:
        q = db.get(Question, entry["question_id"])
        if q is not None:
            q.usage_count = (q.usage_count or 0) + 1

    session = QuizSession(
        quiz_id=quiz.id,
        student_id=student.id,
        course_id=quiz.course_id,
        attempt_number=taken + 1,
        selected_questions=selected,
        current_question_index=0,
        started_at=now,
        expires_at=now + timedelta(minutes=quiz.duration),
        duration=quiz.duration,
        last_active_at=now,
        status="in-progress",
        total_marks=quiz.total_marks,
        passing_percentage=quiz.passing_percentage,
        algorithm_version=picker.version,
        selection_criteria={
            "difficulty": criteria.difficulty,
            "total_questions": criteria.total_questions,
            "topic_weightage": criteria.topic_weightage,
            "excluded_questions": len(criteria.exclude_ids),
        },
        answers=[SessionAnswer(question_id=e["question_id"], answer=None) for e in selected],
    )
    session.quiz = quiz
    db.add(session)
    db.flush()
    logger.info(
        "Started session %s (attempt %s) for quiz %s, student %s",
        session.id,
        session.attempt_number,
        quiz.id,
        student.id,
    )
    return session, False


# --- In-progress operations ---------------------------------------------------------


def _require_active(db: Session, session: QuizSession, now: datetime) -> None:
    if session.status != "in-progress":
        raise InvalidState("Quiz session is not active")
    if session.is_expired(now):
        session.status = "expired"
        db.commit()
        logger.info("Session %s expired while in use", session.id)
        raise InvalidState("Quiz session has expired")


def save_answer(
    db: Session,
    session: QuizSession,
    student: User,
    question_id: int,
    answer: Any,
    time_spent: int = 0,
    now: Optional[datetime] = None,
) -> dict:
    now = now or utcnow()
    _own(session, student)
    _require_active(db, session, now)
    _require_in_snapshot(session, question_id)

    row = _answer_row(session, question_id)
    row.answer = answer
    row.time_spent = (row.time_spent or 0) + max(0, int(time_spent or 0))
    row.is_visited = True
    session.last_active_at = now
    db.flush()
    return {"saved": True, "remaining_time": session.remaining_time(now)}


def mark_for_review(
    db: Session,
    session: QuizSession,
    student: User,
    question_id: int,
    marked: bool,
    now: Optional[datetime] = None,
) -> dict:
    now = now or utcnow()
    _own(session, student)
    _require_active(db, session, now)
    _require_in_snapshot(session, question_id)

    row = _answer_row(session, question_id)
    row.is_marked_for_review = bool(marked)
    session.last_active_at = now
    db.flush()
    return {"question_id": question_id, "is_marked_for_review": row.is_marked_for_review}


def set_position(
    db: Session, session: QuizSession, student: User, index: int, now: Optional[datetime] = None
) -> dict:
    now = now or utcnow()
    _own(session, student)
    _require_active(db, session, now)

    ordered = sorted(session.selected_questions or [], key=lambda q: q["display_order"])
    session.current_question_index = min(max(0, int(index)), max(0, len(ordered) - 1))
    if ordered:
        entry = ordered[session.current_question_index]
        _answer_row(session, entry["question_id"]).is_visited = True
    session.last_active_at = now
    db.flush()
    return {
        "current_question_index": session.current_question_index,
        "remaining_time": session.remaining_time(now),
    }


def record_focus_loss(db: Session, session: QuizSession, student: User) -> dict:
    _own(session, student)
    if session.status != "in-progress":
        raise InvalidState("Quiz session is not active")
    session.tab_switch_count = (session.tab_switch_count or 0) + 1
    db.flush()
    return {"tab_switch_count": session.tab_switch_count}


# --- Submission -----------------------------------------------------------------------


def calculate_auto_score(db: Session, session: QuizSession, negative_marking: bool) -> None:
    """
    Grade every auto-gradable answer in place. Answers that need a tutor
    are collected in ``questions_for_manual_evaluation``.
    """
    score = 0.0
    pending: List[int] = []
    for row in session.answers:
        entry = session.snapshot_for(row.question_id)
        snap = entry["snapshot"] if entry else {}
        q = db.get(Question, row.question_id)
        row.negative_marks_applied = 0
        if q is None:
            row.is_correct = False
            row.marks_awarded = 0
            continue

        verdict = check_answer(q, row.answer)
        if verdict is None:
            row.is_correct = None
            row.marks_awarded = 0
            pending.append(row.question_id)
            continue

        row.is_correct = verdict
        if verdict:
            row.marks_awarded = float(snap.get("marks", q.marks) or 0)
            score += row.marks_awarded
        else:
            row.marks_awarded = 0
            if negative_marking and not is_blank(row.answer):
                row.negative_marks_applied = float(snap.get("negative_marks", q.negative_marks) or 0)
                score -= row.negative_marks_applied

        if not is_blank(row.answer):
            q.total_attempts = (q.total_attempts or 0) + 1
            if verdict:
                q.correct_attempts = (q.correct_attempts or 0) + 1

    session.auto_score = max(0.0, score)
    session.questions_for_manual_evaluation = pending
    session.pending_manual_evaluation = bool(pending)


def close_session(db: Session, session: QuizSession, now: Optional[datetime] = None) -> QuizSession:
    """Grade and close an in-progress or expired session."""
    now = now or utcnow()
    auto = session.status == "expired" or session.is_expired(now)
    session.status = "auto-submitted" if auto else "submitted"
    session.submitted_at = now
    elapsed = int((now - session.started_at).total_seconds())
    session.time_spent = max(0, min(elapsed, session.duration * 60))

    quiz = session.quiz or db.get(Quiz, session.quiz_id)
    calculate_auto_score(db, session, bool(quiz and quiz.setting("negative_marking", False)))

    if session.pending_manual_evaluation:
        session.status = "evaluating"
        session.manual_score = 0
        session.total_score = session.auto_score
        session.percentage = (
            session.total_score / session.total_marks * 100 if session.total_marks else 0.0
        )
    else:
        finalize_scores(db, session)

    db.flush()
    generate_result(db, session)
    logger.info(
        "Session %s %s with auto score %.2f (status %s)",
        session.id,
        "auto-submitted" if auto else "submitted",
        session.auto_score,
        session.status,
    )
    return session


def submit(
    db: Session,
    quiz: Quiz,
    session: QuizSession,
    student: User,
    answers: Optional[List[dict]] = None,
    now: Optional[datetime] = None,
) -> QuizSession:
    now = now or utcnow()
    _own(session, student)
    if session.quiz_id != quiz.id:
        raise InvalidState("Session does not belong to this quiz")
    if session.status not in ("in-progress", "expired"):
        raise InvalidState("Quiz already submitted")

    # final answers are accepted even after expiry
    for item in answers or []:
        qid = int(item["question_id"])
        _require_in_snapshot(session, qid)
        row = _answer_row(session, qid)
        row.answer = item.get("answer")
        row.time_spent = (row.time_spent or 0) + max(0, int(item.get("time_spent") or 0))
        row.is_visited = True

    return close_session(db, session, now=now)


# --- Results ----------------------------------------------------------------------


def find_session(db: Session, session_id: int) -> QuizSession:
    session = db.get(QuizSession, session_id)
    if session is None:
        raise NotFound("Quiz session not found")
    return session


def result(
    db: Session, quiz: Quiz, viewer: User, session_id: Optional[int] = None
) -> dict:
    if session_id is not None:
        session = find_session(db, session_id)
        if session.quiz_id != quiz.id:
            raise NotFound("Quiz session not found")
        if viewer.role == "student":
            _own(session, viewer)
    else:
        session = db.scalar(
            select(QuizSession)
            .where(
                QuizSession.quiz_id == quiz.id,
                QuizSession.student_id == viewer.id,
                QuizSession.status.in_(FINISHED_SESSION_STATUSES),
            )
            .order_by(QuizSession.submitted_at.desc(), QuizSession.id.desc())
        )
        if session is None:
            raise NotFound("No completed attempt found")
    if session.status not in FINISHED_SESSION_STATUSES:
        raise InvalidState("Quiz session has not been submitted")

    reveal = bool(quiz.setting("show_correct_answers", False)) and session.status == "completed"
    explain = reveal and bool(quiz.setting("show_explanations", True))

    rows = []
    for entry in sorted(session.selected_questions or [], key=lambda q: q["display_order"]):
        qid = entry["question_id"]
        ans = session.answer_for(qid)
        row = {
            "question_id": qid,
            "text": entry["snapshot"].get("text"),
            "type": entry["snapshot"].get("type"),
            "topic": entry["snapshot"].get("topic"),
            "marks": entry["snapshot"].get("marks"),
            "answer": ans.answer if ans else None,
            "is_correct": ans.is_correct if ans else False,
            "marks_awarded": ans.marks_awarded if ans else 0,
            "negative_marks_applied": ans.negative_marks_applied if ans else 0,
            "feedback": ans.manual_feedback if ans else None,
        }
        if reveal:
            q = db.get(Question, qid)
            if q is not None:
                row["correct_answer"] = describe_correct_answer(q)
                if explain:
                    row["explanation"] = q.explanation
        rows.append(row)

    evaluation = db.scalar(
        select(EvaluationResult).where(EvaluationResult.session_id == session.id)
    )
    return {
        "session_id": session.id,
        "quiz_id": quiz.id,
        "attempt_number": session.attempt_number,
        "status": session.status,
        "auto_score": session.auto_score,
        "manual_score": session.manual_score,
        "total_score": session.total_score,
        "total_marks": session.total_marks,
        "percentage": session.percentage,
        "passed": session.passed,
        "pending_manual_evaluation": session.pending_manual_evaluation,
        "time_spent": session.time_spent,
        "submitted_at": session.submitted_at,
        "grade": evaluation.grade if evaluation else None,
        "analysis": evaluation.analysis if evaluation else {},
        "answers": rows,
    }


# --- Maintenance ------------------------------------------------------------------


def expire_stale_sessions(db: Session, now: Optional[datetime] = None) -> int:
    now = now or utcnow()
    stale = list(
        db.scalars(
            select(QuizSession).where(
                QuizSession.status.in_(OPEN_SESSION_STATUSES),
                QuizSession.expires_at < now,
            )
        )
    )
    for session in stale:
        close_session(db, session, now=now)
    if stale:
        logger.info("Auto-submitted %d stale session(s)", len(stale))
    return len(stale)


def apply_schedules(db: Session, now: Optional[datetime] = None) -> Dict[str, int]:
    now = now or utcnow()
    published = archived = 0
    for quiz in db.scalars(
        select(Quiz).where(Quiz.status == "scheduled", Quiz.start_time <= now)
    ):
        quiz.status = "published"
        quiz.published_at = now
        published += 1
        logger.info("Quiz %s published on schedule", quiz.id)
    for quiz in db.scalars(select(Quiz).where(Quiz.status == "published", Quiz.end_time < now)):
        quiz.status = "archived"
        quiz.archived_at = now
        archived += 1
        logger.info("Quiz %s archived after its end time", quiz.id)
    db.flush()
    return {"published": published, "archived": archived}
