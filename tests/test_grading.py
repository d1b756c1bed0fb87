from grading import check_answer, describe_correct_answer, eval_numeric, is_blank
from models import Question


def _q(**kw) -> Question:
    kw.setdefault("marks", 1)
    return Question(**kw)


MCQ = _q(
    type="mcq-single",
    options=[{"id": "a", "text": "1/2", "is_correct": True}, {"id": "b", "text": "1/3", "is_correct": False}],
)
MULTI = _q(
    type="mcq-multiple",
    options=[
        {"id": "a", "text": "2", "is_correct": True},
        {"id": "b", "text": "3", "is_correct": True},
        {"id": "c", "text": "4", "is_correct": False},
    ],
)


def test_root_ok(client):
    r = client.get("/")
    assert r.status_code == 200 and r.json().get("ok") is True


def test_evaluate_valid(client):
    r = client.post("/evaluate", json={"expr": "3^2 + 4^2"})
    data = r.json()
    assert data["ok"] is True
    assert abs(data["value"] - 25.0) < 1e-9


def test_evaluate_invalid_chars(client):
    data = client.post("/evaluate", json={"expr": "abc"}).json()
    assert data["ok"] is False
    assert "allowed" in data.get("feedback", "").lower()


def test_evaluate_len_limit_and_division_by_zero(client):
    assert client.post("/evaluate", json={"expr": "1" * 101}).json()["ok"] is False
    data = client.post("/evaluate", json={"expr": "1/0"}).json()
    assert data["ok"] is False and "finite" in data["feedback"].lower()


def test_eval_numeric_handles_fractions():
    assert eval_numeric("3/4") == 0.75
    assert eval_numeric("2(3+1)") == 8


def test_blank_answers_are_wrong_not_pending():
    assert is_blank(None) and is_blank("  ") and is_blank([])
    assert check_answer(MCQ, None) is False
    assert check_answer(_q(type="long-answer"), "") is False


def test_option_questions():
    assert check_answer(MCQ, "a") is True
    assert check_answer(MCQ, "b") is False
    assert check_answer(MCQ, ["a", "b"]) is False
    assert check_answer(MULTI, ["b", "a"]) is True
    assert check_answer(MULTI, ["a"]) is False


def test_numerical_with_tolerance():
    q = _q(type="numerical", numerical_answer={"value": 0.75, "tolerance": 0.01})
    assert check_answer(q, "3/4") is True
    assert check_answer(q, 0.755) is True
    assert check_answer(q, "0.8") is False
    assert check_answer(q, "three quarters") is False


def test_text_answers():
    keyworded = _q(type="short-answer", keywords=["denominator"])
    assert check_answer(keyworded, "The Denominators must match") is True
    assert check_answer(keyworded, "add the tops") is False

    exact = _q(type="short-answer", expected_answer="Half")
    assert check_answer(exact, " half ") is True

    assert check_answer(_q(type="short-answer"), "anything") is None
    assert check_answer(_q(type="long-answer"), "an essay") is None


def test_case_based_without_options_needs_a_tutor():
    assert check_answer(_q(type="case-based", case_study="..."), "my reasoning") is None
    with_options = _q(type="case-based", case_study="...", options=MCQ.options)
    assert check_answer(with_options, "a") is True


def test_describe_correct_answer():
    out = describe_correct_answer(MCQ)
    assert [o["id"] for o in out["options"]] == ["a"]
