"""
Question selection strategies.

A strategy turns a quiz's question configuration into an ordered list of
question snapshots for a new attempt. Snapshots are frozen into the session
so later edits to the bank never change an in-flight attempt, and they never
carry correctness data.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Type

from sqlalchemy import select
from sqlalchemy.orm import Session

from errors import InvalidState
from models import DIFFICULTIES, Question, QuizSession, SessionAnswer

logger = logging.getLogger("tutorhub.selection")


@dataclass
class SelectionCriteria:
    course_id: int
    difficulty: str
    total_questions: int
    topic_weightage: Dict[str, float] = field(default_factory=dict)
    type_distribution: Dict[str, float] = field(default_factory=dict)
    difficulty_distribution: Dict[str, float] = field(default_factory=dict)
    exclude_ids: List[int] = field(default_factory=list)
    shuffle_questions: bool = True
    shuffle_options: bool = True
    student_id: Optional[int] = None

    @classmethod
    def for_quiz(cls, quiz, exclude_ids=None, student_id=None) -> "SelectionCriteria":
        cfg = quiz.question_config or {}
        return cls(
            course_id=quiz.course_id,
            difficulty=quiz.difficulty,
            total_questions=int(cfg.get("total_questions") or 0),
            topic_weightage=dict(cfg.get("topic_weightage") or {}),
            type_distribution=dict(cfg.get("type_distribution") or {}),
            difficulty_distribution=dict(cfg.get("difficulty_distribution") or {}),
            exclude_ids=list(exclude_ids or []),
            shuffle_questions=bool(quiz.setting("shuffle_questions", True)),
            shuffle_options=bool(quiz.setting("shuffle_options", True)),
            student_id=student_id,
        )


def snapshot(q: Question, options: Optional[List[dict]] = None) -> dict:
    opts = q.options if options is None else options
    return {
        "text": q.text,
        "type": q.type,
        "case_study": q.case_study,
        "options": [
            {"id": o.get("id"), "text": o.get("text"), "display_order": i}
            for i, o in enumerate(opts or [])
        ],
        "marks": q.marks,
        "negative_marks": q.negative_marks,
        "topic": q.topic,
        "difficulty": q.difficulty,
    }


class SelectionStrategy:
    version = "v0"

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def select(self, db: Session, criteria: SelectionCriteria) -> List[dict]:
        raise NotImplementedError

    # --- shared helpers ----------------------------------------------------------

    def _load_pool(self, db: Session, criteria: SelectionCriteria) -> List[Question]:
        base = select(Question).where(
            Question.course_id == criteria.course_id, Question.is_active.is_(True)
        )
        pool = list(db.scalars(base.order_by(Question.id)))
        if not pool:
            raise InvalidState("No questions available for this quiz configuration")

        excluded = set(criteria.exclude_ids)
        fresh = [q for q in pool if q.id not in excluded]
        # relax the no-repeat rule rather than serve a short quiz
        if len(fresh) < criteria.total_questions:
            return pool
        return fresh

    def _topic_targets(self, criteria: SelectionCriteria) -> Dict[str, int]:
        weights = {t: float(w) for t, w in criteria.topic_weightage.items() if float(w) > 0}
        total = sum(weights.values())
        if not total:
            return {}
        return {t: round(w / total * criteria.total_questions) for t, w in weights.items()}

    def _shuffle(self, items: list) -> list:
        out = list(items)
        self.rng.shuffle(out)
        return out

    def _finalize(self, selected: List[Question], criteria: SelectionCriteria) -> List[dict]:
        if criteria.type_distribution:
            weights = criteria.type_distribution
            selected = sorted(selected, key=lambda q: -float(weights.get(q.type, 0)))

        ordered = self._shuffle(selected) if criteria.shuffle_questions else list(selected)
        original_pos = {q.id: i for i, q in enumerate(selected)}

        out = []
        for display_order, q in enumerate(ordered):
            options = list(q.options or [])
            if criteria.shuffle_options and options:
                options = self._shuffle(options)
            out.append(
                {
                    "question_id": q.id,
                    "original_order": original_pos[q.id],
                    "display_order": display_order,
                    "snapshot": snapshot(q, options),
                }
            )
        return out


class DefaultSelectionStrategy(SelectionStrategy):
    """
    Random selection with topic weightage, difficulty balancing and
    avoidance of questions served in earlier attempts.
    """

    version = "v1.0"

    def select(self, db: Session, criteria: SelectionCriteria) -> List[dict]:
        pool = self._load_pool(db, criteria)
        n = criteria.total_questions
        selected: List[Question] = []
        used: set[int] = set()

        targets = self._topic_targets(criteria)
        if targets:
            for topic, count in targets.items():
                candidates = [q for q in pool if q.topic == topic and q.id not in used]
                candidates = self._filter_by_difficulty(candidates, criteria)
                for q in self._random_select(candidates, count):
                    if len(selected) >= n:
                        break
                    selected.append(q)
                    used.add(q.id)
        else:
            candidates = self._filter_by_difficulty(pool, criteria)
            for q in self._random_select(candidates, n):
                selected.append(q)
                used.add(q.id)

        remaining = n - len(selected)
        if remaining > 0:
            rest = self._shuffle([q for q in pool if q.id not in used])
            # stable sort keeps the shuffle within each group
            rest.sort(key=lambda q: q.difficulty != criteria.difficulty)
            selected.extend(rest[:remaining])

        if len(selected) < n:
            logger.warning("Only %d of %d questions could be selected", len(selected), n)
        return self._finalize(selected, criteria)

    def _filter_by_difficulty(
        self, questions: List[Question], criteria: SelectionCriteria
    ) -> List[Question]:
        dist = criteria.difficulty_distribution
        if dist and any(float(dist.get(level) or 0) for level in DIFFICULTIES):
            return questions

        primary = [q for q in questions if q.difficulty == criteria.difficulty]
        if primary:
            return primary

        idx = DIFFICULTIES.index(criteria.difficulty) if criteria.difficulty in DIFFICULTIES else 1
        adjacent = {DIFFICULTIES[i] for i in (idx - 1, idx + 1) if 0 <= i < len(DIFFICULTIES)}
        near = [q for q in questions if q.difficulty in adjacent]
        return near or questions

    def _random_select(self, questions: List[Question], count: int) -> List[Question]:
        return self._shuffle(questions)[: max(0, min(count, len(questions)))]


class AdaptiveSelectionStrategy(SelectionStrategy):
    """
    Prefers topics the student is weak in, questions near the target
    difficulty and questions that have been served less often.
    """

    version = "v2.0-adaptive"

    def select(self, db: Session, criteria: SelectionCriteria) -> List[dict]:
        pool = self._load_pool(db, criteria)
        performance = (
            topic_accuracy(db, criteria.student_id, criteria.course_id)
            if criteria.student_id is not None
            else {}
        )
        scored = sorted(
            pool,
            key=lambda q: (-self._score(q, performance, criteria.difficulty), q.id),
        )

        n = criteria.total_questions
        targets = self._topic_targets(criteria)
        selected: List[Question] = []
        if targets:
            counts: Dict[str, int] = {}
            for q in scored:
                if len(selected) >= n:
                    break
                if q.topic not in targets or counts.get(q.topic, 0) < targets[q.topic]:
                    selected.append(q)
                    counts[q.topic] = counts.get(q.topic, 0) + 1
            chosen = {q.id for q in selected}
            selected.extend([q for q in scored if q.id not in chosen][: n - len(selected)])
        else:
            selected = scored[:n]

        return self._finalize(selected, criteria)

    def _score(self, q: Question, performance: Dict[str, float], target: str) -> float:
        score = 50.0

        accuracy = performance.get(q.topic)
        if accuracy is not None:
            # weak topics first
            score += (100 - accuracy) * 0.3
        else:
            score += 15  # unseen topic

        if target in DIFFICULTIES and q.difficulty in DIFFICULTIES:
            gap = abs(DIFFICULTIES.index(target) - DIFFICULTIES.index(q.difficulty))
            score -= gap * 15

        score -= min(q.usage_count or 0, 20)
        return score


def topic_accuracy(db: Session, student_id: int, course_id: int) -> Dict[str, float]:
    """Per-topic accuracy (0-100) across the student's graded answers in a course."""
    rows = db.execute(
        select(Question.topic, SessionAnswer.is_correct)
        .join(SessionAnswer, SessionAnswer.question_id == Question.id)
        .join(QuizSession, QuizSession.id == SessionAnswer.session_id)
        .where(
            QuizSession.student_id == student_id,
            QuizSession.course_id == course_id,
            SessionAnswer.is_correct.is_not(None),
        )
    ).all()
    totals: Dict[str, List[int]] = {}
    for topic, ok in rows:
        bucket = totals.setdefault(topic, [0, 0])
        bucket[0] += 1 if ok else 0
        bucket[1] += 1
    return {t: c / n * 100 for t, (c, n) in totals.items()}


_STRATEGIES: Dict[str, Type[SelectionStrategy]] = {
    "default": DefaultSelectionStrategy,
    "adaptive": AdaptiveSelectionStrategy,
}
DEFAULT_STRATEGY = "default"


def register_strategy(name: str, cls: Type[SelectionStrategy]) -> None:
    _STRATEGIES[name] = cls


def available_strategies() -> List[str]:
    return list(_STRATEGIES)


def get_strategy(
    name: Optional[str] = None, rng: Optional[random.Random] = None
) -> SelectionStrategy:
    key = name or DEFAULT_STRATEGY
    cls = _STRATEGIES.get(key)
    if cls is None:
        raise InvalidState(f"Unknown question selection strategy: {key}")
    return cls(rng=rng)
