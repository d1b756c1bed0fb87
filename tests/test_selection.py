import random

import pytest

from conftest import make_course, make_question, make_quiz
from errors import InvalidState
from models import Quiz
from selection import (
    AdaptiveSelectionStrategy,
    DefaultSelectionStrategy,
    SelectionCriteria,
    available_strategies,
    get_strategy,
)


def _criteria(course_id, n, **kw):
    kw.setdefault("difficulty", "medium")
    return SelectionCriteria(course_id=course_id, total_questions=n, **kw)


def test_snapshots_hide_correctness(db, tutor):
    course = make_course(tutor)
    for _ in range(3):
        make_question(course.id)
    picked = DefaultSelectionStrategy(random.Random(1)).select(db, _criteria(course.id, 3))
    assert len(picked) == 3
    assert [p["display_order"] for p in picked] == [0, 1, 2]
    for p in picked:
        for option in p["snapshot"]["options"]:
            assert set(option) == {"id", "text", "display_order"}


def test_default_prefers_target_difficulty(db, tutor):
    course = make_course(tutor)
    hard = {make_question(course.id, difficulty="hard").id for _ in range(3)}
    for _ in range(3):
        make_question(course.id, difficulty="easy")
    picked = DefaultSelectionStrategy(random.Random(7)).select(
        db, _criteria(course.id, 3, difficulty="hard")
    )
    assert {p["question_id"] for p in picked} == hard


def test_default_honours_topic_weightage(db, tutor):
    course = make_course(tutor)
    for _ in range(4):
        make_question(course.id, topic="Fractions")
        make_question(course.id, topic="Decimals")
    picked = DefaultSelectionStrategy(random.Random(3)).select(
        db, _criteria(course.id, 4, topic_weightage={"Fractions": 75, "Decimals": 25})
    )
    topics = [p["snapshot"]["topic"] for p in picked]
    assert topics.count("Fractions") == 3 and topics.count("Decimals") == 1


def test_excluded_questions_are_avoided_until_the_pool_runs_short(db, tutor):
    course = make_course(tutor)
    ids = [make_question(course.id).id for _ in range(4)]
    picked = DefaultSelectionStrategy(random.Random(5)).select(
        db, _criteria(course.id, 2, exclude_ids=ids[:2])
    )
    assert {p["question_id"] for p in picked} == set(ids[2:])

    # only two fresh questions left for a three-question quiz: repeats allowed
    picked = DefaultSelectionStrategy(random.Random(5)).select(
        db, _criteria(course.id, 3, exclude_ids=ids[:2])
    )
    assert len(picked) == 3


def test_adaptive_serves_unseen_and_less_used_first(db, tutor):
    course = make_course(tutor)
    busy = make_question(course.id, usage_count=20).id
    fresh = [make_question(course.id).id for _ in range(2)]
    picked = AdaptiveSelectionStrategy(random.Random(2)).select(
        db, _criteria(course.id, 2, shuffle_questions=False)
    )
    assert {p["question_id"] for p in picked} == set(fresh)
    assert busy not in {p["question_id"] for p in picked}


def test_empty_pool_raises(db, tutor):
    course = make_course(tutor)
    with pytest.raises(InvalidState):
        DefaultSelectionStrategy().select(db, _criteria(course.id, 1))


def test_criteria_from_quiz_settings(db, tutor):
    course = make_course(tutor)
    quiz = db.get(Quiz, make_quiz(tutor, course.id, total_questions=5).id)
    criteria = SelectionCriteria.for_quiz(quiz, exclude_ids=[1], student_id=9)
    assert criteria.total_questions == 5
    assert criteria.shuffle_questions is False
    assert criteria.exclude_ids == [1] and criteria.student_id == 9


def test_strategy_lookup():
    assert set(available_strategies()) >= {"default", "adaptive"}
    assert isinstance(get_strategy(None), DefaultSelectionStrategy)
    assert isinstance(get_strategy("adaptive"), AdaptiveSelectionStrategy)
    with pytest.raises(InvalidState):
        get_strategy("psychic")
