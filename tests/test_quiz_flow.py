from datetime import timedelta

from conftest import auth, make_course, make_question, make_quiz, make_user
from db import SessionLocal
from models import Question, QuizSession, utcnow


def _setup(tutor, student, n=3, **quiz_kw):
    question_kw = quiz_kw.pop("question", {})
    course = make_course(tutor, students=[student])
    questions = [make_question(course.id, **question_kw) for _ in range(n)]
    quiz = make_quiz(tutor, course.id, total_questions=n, **quiz_kw)
    return course, questions, quiz


def _start(client, quiz, student, expected=201):
    r = client.post(f"/quizzes/{quiz.id}/start", headers=auth(student))
    assert r.status_code == expected, r.text
    return r.json()


def _expire(session_id):
    with SessionLocal() as db:
        s = db.get(QuizSession, session_id)
        s.expires_at = utcnow() - timedelta(seconds=1)
        db.commit()


# --- quiz management ------------------------------------------------------------------


def test_create_quiz_needs_enough_questions(client, tutor):
    course = make_course(tutor)
    make_question(course.id)
    payload = {
        "title": "Unit test",
        "course_id": course.id,
        "difficulty": "medium",
        "duration": 15,
        "total_marks": 5,
        "question_config": {"total_questions": 5},
    }
    r = client.post("/quizzes", json=payload, headers=auth(tutor))
    assert r.status_code == 400 and "Not enough questions" in r.json()["detail"]

    payload["question_config"]["total_questions"] = 1
    r = client.post("/quizzes", json=payload, headers=auth(tutor))
    assert r.status_code == 201
    assert r.json()["status"] == "draft"
    assert r.json()["settings"]["autosave_interval"] == 30


def test_publish_and_edit_rules(client, tutor):
    course = make_course(tutor)
    make_question(course.id)
    quiz = make_quiz(tutor, course.id, total_questions=1, status="draft")

    r = client.patch(f"/quizzes/{quiz.id}", json={"status": "published"}, headers=auth(tutor))
    assert r.status_code == 400

    r = client.post(f"/quizzes/{quiz.id}/publish", headers=auth(tutor))
    assert r.status_code == 200 and r.json()["published_at"]
    assert client.post(f"/quizzes/{quiz.id}/publish", headers=auth(tutor)).status_code == 400

    r = client.patch(f"/quizzes/{quiz.id}", json={"title": "Renamed"}, headers=auth(tutor))
    assert r.status_code == 400
    r = client.patch(f"/quizzes/{quiz.id}", json={"status": "archived"}, headers=auth(tutor))
    assert r.status_code == 200 and r.json()["archived_at"]


def test_tutors_only_see_their_quizzes(client, tutor, admin):
    course = make_course(tutor)
    make_quiz(tutor, course.id)
    make_quiz(make_user("tutor"), course.id)
    assert client.get("/quizzes", headers=auth(tutor)).json()["total"] == 1
    assert client.get("/quizzes", headers=auth(admin)).json()["total"] == 2


def test_delete_archives_quiz_with_attempts(client, tutor, student):
    _, _, quiz = _setup(tutor, student)
    _start(client, quiz, student)
    r = client.delete(f"/quizzes/{quiz.id}", headers=auth(tutor))
    assert r.json() == {"ok": True, "archived": True, "deleted": False}

    course = make_course(tutor)
    fresh = make_quiz(tutor, course.id)
    r = client.delete(f"/quizzes/{fresh.id}", headers=auth(tutor))
    assert r.json()["deleted"] is True


def test_available_quizzes_report_attempts(client, tutor, student):
    course, _, quiz = _setup(tutor, student)
    make_quiz(tutor, course.id, status="draft")
    rows = client.get(f"/quizzes/course/{course.id}/available", headers=auth(student)).json()
    assert [q["id"] for q in rows] == [quiz.id]
    assert rows[0]["attempts_remaining"] == 2 and rows[0]["can_attempt"] is True

    outsider = make_user("student")
    r = client.get(f"/quizzes/course/{course.id}/available", headers=auth(outsider))
    assert r.status_code == 403


# --- start / resume ---------------------------------------------------------------------


def test_start_then_resume_restores_progress(client, tutor, student):
    _, questions, quiz = _setup(tutor, student)
    state = _start(client, quiz, student)
    sid = state["session_id"]
    assert state["attempt_number"] == 1 and state["resumed"] is False
    assert 0 < state["remaining_time"] <= 600
    assert len(state["questions"]) == 3
    assert all("is_correct" not in o for q in state["questions"] for o in q["options"])

    first = state["questions"][0]["question_id"]
    second = state["questions"][1]["question_id"]
    r = client.post(f"/sessions/{sid}/answer", json={"question_id": first, "answer": "b", "time_spent": 12}, headers=auth(student))
    assert r.status_code == 200 and r.json()["saved"] is True
    client.post(f"/sessions/{sid}/mark-review", json={"question_id": second, "marked": True}, headers=auth(student))
    client.post(f"/sessions/{sid}/position", json={"index": 1}, headers=auth(student))

    again = _start(client, quiz, student, expected=200)
    assert again["session_id"] == sid and again["resumed"] is True
    assert again["answers"] == {str(first): "b"}
    assert again["marked_for_review"] == [second]
    assert again["current_question_index"] == 1


def test_start_requires_enrollment_and_published_quiz(client, tutor, student):
    course, _, quiz = _setup(tutor, student)
    outsider = make_user("student")
    assert client.post(f"/quizzes/{quiz.id}/start", headers=auth(outsider)).status_code == 403

    draft = make_quiz(tutor, course.id, status="draft")
    assert client.post(f"/quizzes/{draft.id}/start", headers=auth(student)).status_code == 400

    upcoming = make_quiz(tutor, course.id, start_time=utcnow() + timedelta(days=1))
    assert client.post(f"/quizzes/{upcoming.id}/start", headers=auth(student)).status_code == 400


def test_start_increments_usage(client, tutor, student, db):
    _, questions, quiz = _setup(tutor, student)
    _start(client, quiz, student)
    assert all(db.get(Question, q.id).usage_count == 1 for q in questions)


# --- in-progress operations -----------------------------------------------------------


def test_answer_rules(client, tutor, student):
    course, _, quiz = _setup(tutor, student)
    state = _start(client, quiz, student)
    sid = state["session_id"]

    stranger_q = make_question(course.id)
    r = client.post(f"/sessions/{sid}/answer", json={"question_id": stranger_q.id, "answer": "a"}, headers=auth(student))
    assert r.status_code == 400

    other = make_user("student")
    qid = state["questions"][0]["question_id"]
    r = client.post(f"/sessions/{sid}/answer", json={"question_id": qid, "answer": "a"}, headers=auth(other))
    assert r.status_code == 403


def test_position_is_clamped_and_focus_loss_counted(client, tutor, student):
    _, _, quiz = _setup(tutor, student)
    sid = _start(client, quiz, student)["session_id"]
    r = client.post(f"/sessions/{sid}/position", json={"index": 40}, headers=auth(student))
    assert r.json()["current_question_index"] == 2

    client.post(f"/sessions/{sid}/focus-lost", headers=auth(student))
    r = client.post(f"/sessions/{sid}/focus-lost", headers=auth(student))
    assert r.json()["tab_switch_count"] == 2


def test_mark_for_review_on_unanswered_question(client, tutor, student):
    _, _, quiz = _setup(tutor, student)
    state = _start(client, quiz, student)
    sid, qid = state["session_id"], state["questions"][2]["question_id"]
    r = client.post(f"/sessions/{sid}/mark-review", json={"question_id": qid}, headers=auth(student))
    assert r.json() == {"question_id": qid, "is_marked_for_review": True}

    session = client.get(f"/sessions/{sid}", headers=auth(student)).json()
    assert session["marked_for_review"] == [qid]
    assert str(qid) not in session["answers"]


def test_saving_after_expiry_marks_session_expired(client, tutor, student):
    _, _, quiz = _setup(tutor, student)
    state = _start(client, quiz, student)
    sid, qid = state["session_id"], state["questions"][0]["question_id"]
    _expire(sid)

    r = client.post(f"/sessions/{sid}/answer", json={"question_id": qid, "answer": "b"}, headers=auth(student))
    assert r.status_code == 400 and "expired" in r.json()["detail"]
    assert client.get(f"/sessions/{sid}", headers=auth(student)).json()["status"] == "expired"

    # the final submit is still accepted and graded
    r = client.post(
        f"/quizzes/{quiz.id}/submit",
        json={"session_id": sid, "answers": [{"question_id": qid, "answer": "b"}]},
        headers=auth(student),
    )
    assert r.status_code == 200
    assert r.json()["status"] == "completed" and r.json()["auto_score"] == 1


def test_session_expired_during_use_still_counts_and_gets_closed(client, tutor, student):
    _, _, quiz = _setup(tutor, student, attempts_allowed=1)
    state = _start(client, quiz, student)
    sid, qid = state["session_id"], state["questions"][0]["question_id"]
    _expire(sid)
    r = client.post(f"/sessions/{sid}/answer", json={"question_id": qid, "answer": "b"}, headers=auth(student))
    assert r.status_code == 400

    rows = client.get(f"/quizzes/course/{quiz.course_id}/available", headers=auth(student)).json()
    assert rows[0]["attempts_taken"] == 1 and rows[0]["can_attempt"] is False

    r = client.post("/admin/maintenance", headers={"x-admin-token": "ops-secret"})
    assert r.json()["expired_sessions"] == 1
    assert client.get(f"/sessions/{sid}", headers=auth(student)).json()["status"] == "completed"

    r = client.post(f"/quizzes/{quiz.id}/start", headers=auth(student))
    assert r.status_code == 400 and "Maximum attempts" in r.json()["detail"]


def test_expired_mark_is_closed_by_the_next_start(client, tutor, student):
    _, _, quiz = _setup(tutor, student)
    state = _start(client, quiz, student)
    sid = state["session_id"]
    _expire(sid)
    client.post(f"/sessions/{sid}/position", json={"index": 1}, headers=auth(student))

    second = _start(client, quiz, student)
    assert second["session_id"] != sid and second["attempt_number"] == 2
    assert client.get(f"/sessions/{sid}", headers=auth(student)).json()["status"] == "completed"


# --- submission ----------------------------------------------------------------------


def test_submit_scores_and_reveals_answers(client, tutor, student):
    _, _, quiz = _setup(tutor, student)
    state = _start(client, quiz, student)
    q1, q2, _ = (q["question_id"] for q in state["questions"])
    answers = [{"question_id": q1, "answer": "b", "time_spent": 5}, {"question_id": q2, "answer": "a"}]
    r = client.post(f"/quizzes/{quiz.id}/submit", json={"session_id": state["session_id"], "answers": answers}, headers=auth(student))
    assert r.status_code == 200
    result = r.json()
    assert result["status"] == "completed"
    assert result["auto_score"] == 1 and result["total_score"] == 1
    assert round(result["percentage"], 2) == 33.33
    assert result["passed"] is False
    assert result["grade"] == "F"
    assert [a["is_correct"] for a in result["answers"]] == [True, False, False]
    assert result["answers"][0]["correct_answer"]["options"][0]["id"] == "b"
    assert result["answers"][0]["explanation"] == "One half is five tenths."
    assert result["analysis"]["overall"]["attempted"] == 2

    again = client.post(f"/quizzes/{quiz.id}/submit", json={"session_id": state["session_id"]}, headers=auth(student))
    assert again.status_code == 400


def test_correct_answers_hidden_unless_enabled(client, tutor, student):
    _, _, quiz = _setup(tutor, student, settings={"show_correct_answers": False})
    state = _start(client, quiz, student)
    r = client.post(f"/quizzes/{quiz.id}/submit", json={"session_id": state["session_id"]}, headers=auth(student))
    assert all("correct_answer" not in a for a in r.json()["answers"])


def test_negative_marking_skips_blank_answers_and_floors_at_zero(client, tutor, student):
    _, _, quiz = _setup(
        tutor,
        student,
        settings={"negative_marking": True},
        question={"negative_marks": 0.5},
    )
    state = _start(client, quiz, student)
    q1, q2, q3 = (q["question_id"] for q in state["questions"])
    answers = [{"question_id": q1, "answer": "b"}, {"question_id": q2, "answer": "a"}]
    r = client.post(f"/quizzes/{quiz.id}/submit", json={"session_id": state["session_id"], "answers": answers}, headers=auth(student))
    result = r.json()
    assert result["auto_score"] == 0.5
    assert [a["negative_marks_applied"] for a in result["answers"]] == [0, 0.5, 0]

    state = _start(client, quiz, student)
    wrong = [{"question_id": q["question_id"], "answer": "a"} for q in state["questions"]]
    r = client.post(f"/quizzes/{quiz.id}/submit", json={"session_id": state["session_id"], "answers": wrong}, headers=auth(student))
    assert r.json()["auto_score"] == 0 and r.json()["total_score"] == 0


def test_attempt_limit(client, tutor, student):
    _, _, quiz = _setup(tutor, student, attempts_allowed=1)
    state = _start(client, quiz, student)
    client.post(f"/quizzes/{quiz.id}/submit", json={"session_id": state["session_id"]}, headers=auth(student))
    r = client.post(f"/quizzes/{quiz.id}/start", headers=auth(student))
    assert r.status_code == 400 and "Maximum attempts" in r.json()["detail"]


def test_expired_session_is_closed_when_starting_again(client, tutor, student):
    _, _, quiz = _setup(tutor, student)
    first = _start(client, quiz, student)
    _expire(first["session_id"])

    second = _start(client, quiz, student)
    assert second["session_id"] != first["session_id"]
    assert second["attempt_number"] == 2

    attempts = client.get(f"/quizzes/{quiz.id}/attempts", headers=auth(tutor)).json()
    statuses = {a["id"]: a["status"] for a in attempts}
    assert statuses[first["session_id"]] == "completed"
    assert statuses[second["session_id"]] == "in-progress"


def test_expired_session_at_attempt_limit_is_still_closed(client, tutor, student):
    _, _, quiz = _setup(tutor, student, attempts_allowed=1)
    first = _start(client, quiz, student)
    _expire(first["session_id"])

    r = client.post(f"/quizzes/{quiz.id}/start", headers=auth(student))
    assert r.status_code == 400
    result = client.get(f"/quizzes/{quiz.id}/result", headers=auth(student)).json()
    assert result["session_id"] == first["session_id"] and result["status"] == "completed"


def test_quiz_stats_update_after_completion(client, tutor, student):
    _, _, quiz = _setup(tutor, student)
    state = _start(client, quiz, student)
    answers = [{"question_id": q["question_id"], "answer": "b"} for q in state["questions"]]
    client.post(f"/quizzes/{quiz.id}/submit", json={"session_id": state["session_id"], "answers": answers}, headers=auth(student))
    stats = client.get(f"/quizzes/{quiz.id}", headers=auth(tutor)).json()
    assert stats["total_attempts"] == 1
    assert stats["average_score"] == 3 and stats["pass_rate"] == 100


def test_staff_result_requires_session_id(client, tutor, student):
    _, _, quiz = _setup(tutor, student)
    state = _start(client, quiz, student)
    client.post(f"/quizzes/{quiz.id}/submit", json={"session_id": state["session_id"]}, headers=auth(student))
    assert client.get(f"/quizzes/{quiz.id}/result", headers=auth(tutor)).status_code == 400
    r = client.get(f"/quizzes/{quiz.id}/result", params={"session_id": state["session_id"]}, headers=auth(tutor))
    assert r.status_code == 200 and r.json()["total_score"] == 0


# --- maintenance -------------------------------------------------------------------------


def test_maintenance_sweeps_sessions_and_schedules(client, tutor, student):
    course, _, quiz = _setup(tutor, student)
    sid = _start(client, quiz, student)["session_id"]
    _expire(sid)
    scheduled = make_quiz(tutor, course.id, status="scheduled", start_time=utcnow() - timedelta(minutes=1))
    ended = make_quiz(tutor, course.id, end_time=utcnow() - timedelta(minutes=1))

    assert client.post("/admin/maintenance").status_code == 401
    assert client.post("/admin/maintenance", headers=auth(student)).status_code == 403

    r = client.post("/admin/maintenance", headers={"x-admin-token": "ops-secret"})
    assert r.status_code == 200
    assert r.json() == {"ok": True, "expired_sessions": 1, "published": 1, "archived": 1}

    assert client.get(f"/quizzes/{scheduled.id}", headers=auth(tutor)).json()["status"] == "published"
    assert client.get(f"/quizzes/{ended.id}", headers=auth(tutor)).json()["status"] == "archived"
    assert client.get(f"/sessions/{sid}", headers=auth(student)).json()["status"] == "completed"
