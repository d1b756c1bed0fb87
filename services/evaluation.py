from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from errors import InvalidState, NotFound
from models import EvaluationResult, Question, Quiz, QuizSession, User, utcnow

logger = logging.getLogger("tutorhub.evaluation")

GRADE_BANDS: List[Tuple[float, str]] = [
    (95, "A+"),
    (85, "A"),
    (75, "B+"),
    (65, "B"),
    (55, "C+"),
    (45, "C"),
    (35, "D"),
]

WEAK_ACCURACY = 50
STRONG_ACCURACY = 80


def calculate_grade(percentage: float) -> str:
    for floor, grade in GRADE_BANDS:
        if percentage >= floor:
            return grade
    return "F"


def finalize_scores(db: Session, session: QuizSession) -> None:
    """Close out a fully graded session and fold it into the quiz stats."""
    session.pending_manual_evaluation = False
    session.total_score = max(0.0, (session.auto_score or 0) + (session.manual_score or 0))
    session.percentage = (
        session.total_score / session.total_marks * 100 if session.total_marks else 0.0
    )
    session.passed = session.percentage >= session.passing_percentage
    session.status = "completed"

    quiz = db.get(Quiz, session.quiz_id)
    if quiz is not None:
        quiz.update_stats(session.total_score, (session.time_spent or 0) / 60, session.passed)


# --- Analysis ---------------------------------------------------------------------


def _time_rating(utilization: float, accuracy: float) -> str:
    if 80 <= utilization <= 100 and accuracy >= 70:
        return "excellent"
    if 60 <= utilization <= 100 and accuracy >= 50:
        return "good"
    if utilization < 50 or utilization > 100:
        return "poor"
    return "average"


def build_analysis(
    session: QuizSession, quiz: Quiz, previous: List[QuizSession]
) -> Dict[str, Any]:
    """
    Break a graded session down by topic, difficulty, question type and
    time, and derive weak/strong areas, suggestions and the attempt trend.
    """
    snapshots = {q["question_id"]: q["snapshot"] for q in session.selected_questions or []}
    total_questions = len(snapshots)

    topics: Dict[str, Dict[str, Any]] = {}
    difficulty = {lvl: {"total": 0, "correct": 0, "accuracy": 0.0} for lvl in ("easy", "medium", "hard")}
    types: Dict[str, Dict[str, Any]] = {}
    attempted = correct = wrong = 0
    total_time = 0

    for ans in session.answers:
        snap = snapshots.get(ans.question_id)
        if snap is None:
            continue
        topic, level, qtype = snap.get("topic"), snap.get("difficulty"), snap.get("type")

        t = topics.setdefault(
            topic,
            {
                "topic": topic,
                "total_questions": 0,
                "correct": 0,
                "wrong": 0,
                "unattempted": 0,
                "marks_obtained": 0.0,
                "total_marks": 0.0,
                "time_spent": 0,
            },
        )
        t["total_questions"] += 1
        t["total_marks"] += snap.get("marks") or 0
        t["time_spent"] += ans.time_spent or 0
        if level in difficulty:
            difficulty[level]["total"] += 1
        ty = types.setdefault(qtype, {"total": 0, "correct": 0, "accuracy": 0.0})
        ty["total"] += 1

        if ans.answer is not None:
            attempted += 1
            if ans.is_correct is True:
                correct += 1
                t["correct"] += 1
                t["marks_obtained"] += ans.marks_awarded or 0
                ty["correct"] += 1
                if level in difficulty:
                    difficulty[level]["correct"] += 1
            elif ans.is_correct is False:
                wrong += 1
                t["wrong"] += 1
            # None: still pending manual evaluation
        else:
            t["unattempted"] += 1
        total_time += ans.time_spent or 0

    accuracy = correct / attempted * 100 if attempted else 0.0

    topic_rows, weak, strong = [], [], []
    for t in topics.values():
        t["accuracy"] = t["correct"] / t["total_questions"] * 100 if t["total_questions"] else 0.0
        t["average_time_per_question"] = (
            t["time_spent"] / t["total_questions"] if t["total_questions"] else 0.0
        )
        t["is_weak_area"] = t["accuracy"] < WEAK_ACCURACY
        topic_rows.append(t)
        if t["accuracy"] < WEAK_ACCURACY and t["total_questions"] >= 2:
            weak.append(
                {
                    "topic": t["topic"],
                    "accuracy": t["accuracy"],
                    "recommendation": f"Focus on revising {t['topic']}. Practice more questions.",
                }
            )
        elif t["accuracy"] >= STRONG_ACCURACY:
            strong.append({"topic": t["topic"], "accuracy": t["accuracy"]})

    for row in difficulty.values():
        row["accuracy"] = row["correct"] / row["total"] * 100 if row["total"] else 0.0
    for row in types.values():
        row["accuracy"] = row["correct"] / row["total"] * 100 if row["total"] else 0.0

    allowed = (quiz.duration or 0) * 60
    utilization = total_time / allowed * 100 if allowed else 0.0
    rating = _time_rating(utilization, accuracy)

    suggestions: List[Dict[str, Any]] = []
    for w in weak:
        suggestions.append(
            {
                "type": "topic-revision",
                "priority": "high" if w["accuracy"] < 30 else "medium",
                "topic": w["topic"],
                "message": f"Your accuracy in {w['topic']} is {w['accuracy']:.1f}%. "
                "This topic needs more attention.",
                "action_items": [
                    f"Review the fundamentals of {w['topic']}",
                    "Practice more questions on this topic",
                ],
                "recommended_quiz_level": "easy",
            }
        )
    if rating == "poor":
        suggestions.append(
            {
                "type": "time-management",
                "priority": "high",
                "message": "Your time management needs improvement.",
                "action_items": [
                    "Practice with timed quizzes",
                    "Allocate time per question before starting",
                ],
            }
        )
    if difficulty["easy"]["total"] and difficulty["easy"]["accuracy"] < 70:
        suggestions.append(
            {
                "type": "difficulty-adjustment",
                "priority": "high",
                "message": "Focus on mastering easier concepts before moving to harder ones.",
                "action_items": ["Start with easy level quizzes"],
                "recommended_quiz_level": "easy",
            }
        )
    elif difficulty["medium"]["accuracy"] >= 80 and difficulty["hard"]["accuracy"] < 50:
        suggestions.append(
            {
                "type": "difficulty-adjustment",
                "priority": "medium",
                "message": "You're ready to challenge yourself with harder questions.",
                "action_items": ["Attempt more hard level questions"],
                "recommended_quiz_level": "hard",
            }
        )

    trend, score_delta, accuracy_delta = "first-attempt", 0.0, 0.0
    if previous:
        last = previous[0]
        score_delta = (session.total_score or 0) - (last.total_score or 0)
        last_pct = (last.total_score or 0) / last.total_marks * 100 if last.total_marks else 0.0
        accuracy_delta = (session.percentage or 0) - last_pct
        trend = "improving" if score_delta > 0 else "declining" if score_delta < 0 else "stable"

    avg_time = total_time / total_questions if total_questions else 0.0
    return {
        "overall": {
            "total_questions": total_questions,
            "attempted": attempted,
            "correct": correct,
            "wrong": wrong,
            "unattempted": total_questions - attempted,
            "accuracy": accuracy,
            "total_time_spent": total_time,
            "average_time_per_question": avg_time,
        },
        "topics": topic_rows,
        "difficulty": difficulty,
        "question_types": types,
        "time": {
            "total_time_allowed": allowed,
            "total_time_used": total_time,
            "time_utilization": utilization,
            "average_time_per_question": avg_time,
            "time_management_rating": rating,
        },
        "weak_areas": weak,
        "strong_areas": strong,
        "suggestions": suggestions,
        "comparison": {
            "previous_attempts": len(previous),
            "score_improvement": score_delta,
            "accuracy_improvement": accuracy_delta,
            "trend": trend,
        },
    }


def generate_result(db: Session, session: QuizSession) -> EvaluationResult:
    quiz = db.get(Quiz, session.quiz_id)
    if quiz is None:
        raise NotFound("Quiz not found")

    previous = list(
        db.scalars(
            select(QuizSession)
            .where(
                QuizSession.quiz_id == session.quiz_id,
                QuizSession.student_id == session.student_id,
                QuizSession.id != session.id,
                QuizSession.status == "completed",
            )
            .order_by(QuizSession.created_at.desc(), QuizSession.id.desc())
            .limit(5)
        )
    )

    result = db.scalar(select(EvaluationResult).where(EvaluationResult.session_id == session.id))
    if result is None:
        result = EvaluationResult(
            session_id=session.id,
            quiz_id=session.quiz_id,
            student_id=session.student_id,
            course_id=session.course_id,
            total_marks=session.total_marks,
        )
        db.add(result)

    _sync_scores(result, session)
    result.analysis = build_analysis(session, quiz, previous)
    db.flush()
    return result


def _sync_scores(result: EvaluationResult, session: QuizSession) -> None:
    result.auto_score = session.auto_score
    result.manual_score = session.manual_score
    result.final_score = session.total_score
    result.percentage = session.percentage
    result.pass_fail = "pass" if session.passed else "fail"
    result.grade = calculate_grade(session.percentage or 0)


# --- Manual evaluation ------------------------------------------------------------


def pending_sessions(
    db: Session,
    course_id: Optional[int] = None,
    quiz_id: Optional[int] = None,
    page: int = 1,
    limit: int = 20,
    tutor_id: Optional[int] = None,
) -> Tuple[List[QuizSession], int]:
    query = select(QuizSession).where(
        QuizSession.pending_manual_evaluation.is_(True), QuizSession.status == "evaluating"
    )
    if tutor_id is not None:
        query = query.join(Quiz, Quiz.id == QuizSession.quiz_id).where(Quiz.created_by == tutor_id)
    if course_id is not None:
        query = query.where(QuizSession.course_id == course_id)
    if quiz_id is not None:
        query = query.where(QuizSession.quiz_id == quiz_id)

    total = db.scalar(select(func.count()).select_from(query.subquery())) or 0
    rows = db.scalars(
        query.order_by(QuizSession.submitted_at.asc(), QuizSession.id.asc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return list(rows), total


def questions_for_evaluation(db: Session, session: QuizSession) -> List[Dict[str, Any]]:
    out = []
    for qid in session.questions_for_manual_evaluation or []:
        q = db.get(Question, qid)
        snap = (session.snapshot_for(qid) or {}).get("snapshot", {})
        ans = session.answer_for(qid)
        out.append(
            {
                "question_id": qid,
                "question": {
                    "text": q.text if q else None,
                    "type": q.type if q else None,
                    "case_study": q.case_study if q else None,
                    "expected_answer": q.expected_answer if q else None,
                    "keywords": q.keywords if q else [],
                    "marks": snap.get("marks", q.marks if q else 0),
                    "topic": q.topic if q else None,
                },
                "student_answer": ans.answer if ans else None,
                "current_marks": ans.marks_awarded if ans else 0,
                "current_feedback": (ans.manual_feedback if ans else None) or "",
                "is_evaluated": bool(ans and ans.evaluated_by),
            }
        )
    return out


def submit_manual(
    db: Session,
    session: QuizSession,
    question_id: int,
    marks_awarded: float,
    feedback: Optional[str],
    evaluator: User,
) -> Dict[str, Any]:
    """
    Record a tutor's marks for one pending answer. When the last pending
    answer is graded the session is finalized and its result refreshed.
    """
    if session.status != "evaluating":
        raise InvalidState("Session is not awaiting evaluation")
    pending = list(session.questions_for_manual_evaluation or [])
    if question_id not in pending:
        raise NotFound("Answer not found")
    ans = session.answer_for(question_id)
    if ans is None:
        raise NotFound("Answer not found")
    entry = session.snapshot_for(question_id)
    max_marks = float((entry or {}).get("snapshot", {}).get("marks") or 0)
    if marks_awarded < 0:
        raise InvalidState("Marks cannot be negative")
    if marks_awarded > max_marks:
        raise InvalidState(f"Marks cannot exceed {max_marks:g}")

    now = utcnow()
    ans.marks_awarded = marks_awarded
    ans.manual_feedback = feedback
    ans.evaluated_by = evaluator.id
    ans.evaluated_at = now
    ans.is_correct = marks_awarded > 0

    pending.remove(question_id)
    session.questions_for_manual_evaluation = pending
    session.manual_score = sum(a.marks_awarded or 0 for a in session.answers if a.evaluated_by)

    result = db.scalar(select(EvaluationResult).where(EvaluationResult.session_id == session.id))
    if result is not None:
        result.manual_evaluations = list(result.manual_evaluations or []) + [
            {
                "question_id": question_id,
                "evaluator_id": evaluator.id,
                "marks_awarded": marks_awarded,
                "feedback": feedback,
                "evaluated_at": now.isoformat(),
            }
        ]

    complete = not pending
    if complete:
        finalize_scores(db, session)
        result = generate_result(db, session)
        result.evaluated_by = evaluator.id
        result.evaluated_at = now
        logger.info("Session %s fully evaluated by %s", session.id, evaluator.id)

    db.flush()
    return {
        "remaining_questions": len(pending),
        "is_complete": complete,
        "current_score": (session.auto_score or 0) + (session.manual_score or 0),
    }
