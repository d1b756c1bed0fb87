import json
from types import SimpleNamespace

import openai
import pytest

from ai.prompts import build_question_prompt
from ai.providers import (
    OpenAIProvider,
    ProviderError,
    RuleBasedProvider,
    _unwrap_questions,
    extract_key_terms,
    register_provider,
    resolve_provider,
)
from ai.validation import (
    DuplicateDetector,
    fill_correct_answer,
    filter_question,
    validate_batch,
    validate_question,
)
from conftest import auth, make_course, make_question, make_user
from grading import check_answer
from models import Question


class FakeCompletions:
    def __init__(self, content=None, error=None):
        self.content = content
        self.error = error
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def fake_openai(content=None, error=None):
    completions = FakeCompletions(content, error)
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    register_provider(OpenAIProvider(api_key="test-key", model="test-model", client=client))
    return completions


def mcq(text, **kw):
    q = {
        "text": text,
        "topic": "Fractions",
        "difficulty": "medium",
        "type": "mcq-single",
        "options": [
            {"text": "Three quarters", "is_correct": True, "explanation": "Six eighths simplifies to 3/4."},
            {"text": "Two thirds", "is_correct": False, "explanation": "That is 4/6."},
            {"text": "One half", "is_correct": False, "explanation": "That is 4/8."},
        ],
        "correct_answer": "Three quarters",
        "explanation": "Divide the top and bottom by two.",
        "tags": ["fractions"],
    }
    q.update(kw)
    return q


def _generate(client, user, course, **body):
    payload = {"course_id": course.id, "topics": ["Fractions"], "count": 3, **body}
    r = client.post("/ai/questions/generate", json=payload, headers=auth(user))
    assert r.status_code == 201, r.text
    return r.json()


# --- generation pipeline --------------------------------------------------------------


def test_rule_based_generation_creates_drafts(client, tutor):
    course = make_course(tutor)
    summary = _generate(client, tutor, course, provider="rule-based")
    assert summary["provider"] == "rule-based"
    assert summary["total_generated"] == 3 and summary["drafts_created"] == 3
    assert summary["invalid"] == 0 and summary["errors"] == []

    drafts = client.get("/ai/questions/drafts", params={"course_id": course.id}, headers=auth(tutor)).json()
    assert drafts["total"] == 3
    first = drafts["items"][0]
    assert first["status"] == "draft" and first["source_type"] == "rule_based"
    assert first["model_used"] == "template-based" and first["confidence"] == 0.5
    assert [o["id"] for o in first["payload"]["options"]] == ["a", "b", "c", "d"]
    assert "_metadata" not in first["payload"]


def test_unconfigured_openai_falls_back_to_rule_based(client, tutor):
    course = make_course(tutor)
    summary = _generate(client, tutor, course, count=1)
    assert summary["provider"] == "rule-based"


def test_unknown_provider_is_rejected(client, tutor):
    course = make_course(tutor)
    payload = {"course_id": course.id, "provider": "crystal-ball"}
    r = client.post("/ai/questions/generate", json=payload, headers=auth(tutor))
    assert r.status_code == 400


def test_openai_generation_validates_and_deduplicates(client, tutor):
    course = make_course(tutor)
    make_question(course.id, text="Which fraction is equal to six eighths?")
    completions = fake_openai(
        json.dumps(
            {
                "questions": [
                    mcq("Which fraction is equal to six eighths?"),
                    mcq("Which fraction is the simplest form of 9/12?"),
                    mcq("Which option is broken here?", options=[{"text": "Only", "is_correct": True}]),
                ]
            }
        )
    )
    summary = _generate(client, tutor, course, provider="openai", count=3, difficulties=["hard"])
    assert summary["provider"] == "openai"
    assert summary["total_generated"] == 3
    assert summary["invalid"] == 1 and summary["duplicates"] == 1
    assert summary["drafts_created"] == 1

    call = completions.calls[0]
    assert call["model"] == "test-model" and call["temperature"] == 0.7
    assert call["response_format"] == {"type": "json_object"}
    assert "TOPIC: Fractions" in call["messages"][1]["content"]

    draft = client.get(f"/ai/questions/drafts/{summary['draft_ids'][0]}", headers=auth(tutor)).json()
    assert draft["source_type"] == "ai_generated" and draft["confidence"] == 0.8
    assert draft["payload"]["text"] == "Which fraction is the simplest form of 9/12?"


def test_provider_errors_are_reported_per_batch(client, tutor):
    course = make_course(tutor)
    fake_openai(error=openai.OpenAIError("rate limited"))
    summary = _generate(client, tutor, course, provider="openai", question_types=["mcq-single", "true-false"])
    assert summary["drafts_created"] == 0
    assert [e["type"] for e in summary["errors"]] == ["mcq-single", "true-false"]
    assert "rate limited" in summary["errors"][0]["error"]


def test_generation_is_owner_only(client, tutor, student):
    course = make_course(tutor)
    payload = {"course_id": course.id, "provider": "rule-based"}
    assert client.post("/ai/questions/generate", json=payload, headers=auth(make_user("tutor"))).status_code == 403
    assert client.post("/ai/questions/generate", json=payload, headers=auth(student)).status_code == 403


# --- review workflow --------------------------------------------------------------------


def test_edit_keeps_history_and_revalidates(client, tutor):
    course = make_course(tutor)
    draft_id = _generate(client, tutor, course, provider="rule-based", count=1)["draft_ids"][0]
    before = client.get(f"/ai/questions/drafts/{draft_id}", headers=auth(tutor)).json()

    body = {"changes": {"text": "Which statement about equivalent fractions is true?"}, "note": "clearer"}
    r = client.put(f"/ai/questions/drafts/{draft_id}", json=body, headers=auth(tutor))
    assert r.status_code == 200
    edited = r.json()
    assert edited["payload"]["text"] == body["changes"]["text"]
    assert edited["edit_history"][0]["previous"] == {"text": before["payload"]["text"]}
    assert edited["edit_history"][0]["note"] == "clearer"

    bad = {"changes": {"difficulty": "impossible"}}
    r = client.put(f"/ai/questions/drafts/{draft_id}", json=bad, headers=auth(tutor))
    assert r.status_code == 400 and "Validation failed" in r.json()["detail"]


def test_approve_creates_question(client, tutor):
    course = make_course(tutor)
    draft_id = _generate(client, tutor, course, provider="rule-based", count=1)["draft_ids"][0]
    r = client.post(f"/ai/questions/drafts/{draft_id}/approve", json={"edits": {"marks": 3}}, headers=auth(tutor))
    assert r.status_code == 200
    body = r.json()
    assert body["draft"]["status"] == "approved"
    assert body["draft"]["final_question_id"] == body["question"]["id"]
    assert body["question"]["marks"] == 3 and body["question"]["is_active"] is True
    assert body["question"]["course_id"] == course.id

    again = client.post(f"/ai/questions/drafts/{draft_id}/approve", headers=auth(tutor))
    assert again.status_code == 400
    edit = client.put(f"/ai/questions/drafts/{draft_id}", json={"changes": {"marks": 1}}, headers=auth(tutor))
    assert edit.status_code == 400


def test_replacement_options_get_ids_and_grade(client, tutor, db):
    course = make_course(tutor)
    draft_id = _generate(client, tutor, course, provider="rule-based", count=1, question_types=["mcq-single"])[
        "draft_ids"
    ][0]
    options = [
        {"text": "Wrong", "is_correct": False, "explanation": "Not this one."},
        {"text": "Right", "is_correct": True, "explanation": "This one."},
    ]
    r = client.put(f"/ai/questions/drafts/{draft_id}", json={"changes": {"options": options}}, headers=auth(tutor))
    assert r.status_code == 200
    payload = r.json()["payload"]
    assert [o["id"] for o in payload["options"]] == ["a", "b"]
    assert payload["correct_answer"] == "Right"

    options[0]["is_correct"], options[1]["is_correct"] = True, False
    r = client.post(
        f"/ai/questions/drafts/{draft_id}/approve",
        json={"edits": {"options": options}},
        headers=auth(tutor),
    )
    assert r.status_code == 200
    question = db.get(Question, r.json()["question"]["id"])
    assert [o["id"] for o in question.options] == ["a", "b"]
    assert question.correct_answer == "Wrong"
    assert check_answer(question, "a") is True
    assert check_answer(question, "b") is False
    assert check_answer(question, "None") is False


def test_reject_requires_reason(client, tutor):
    course = make_course(tutor)
    draft_id = _generate(client, tutor, course, provider="rule-based", count=1)["draft_ids"][0]
    r = client.post(f"/ai/questions/drafts/{draft_id}/reject", json={"reason": "  "}, headers=auth(tutor))
    assert r.status_code == 400

    r = client.post(f"/ai/questions/drafts/{draft_id}/reject", json={"reason": "Too vague"}, headers=auth(tutor))
    assert r.json()["status"] == "rejected" and r.json()["rejection_reason"] == "Too vague"
    assert client.post(f"/ai/questions/drafts/{draft_id}/approve", headers=auth(tutor)).status_code == 400


def test_bulk_actions_and_stats(client, tutor, admin):
    course = make_course(tutor)
    ids = _generate(client, tutor, course, provider="rule-based", count=4)["draft_ids"]

    r = client.post("/ai/questions/bulk-approve", json={"draft_ids": ids[:2] + [9999]}, headers=auth(tutor))
    body = r.json()
    assert [a["draft_id"] for a in body["approved"]] == ids[:2]
    assert body["failed"] == [{"draft_id": 9999, "error": "Draft not found"}]

    r = client.post("/ai/questions/bulk-reject", json={"draft_ids": ids[1:], "reason": "Off syllabus"}, headers=auth(tutor))
    body = r.json()
    assert [x["draft_id"] for x in body["rejected"]] == ids[2:]
    assert [f["draft_id"] for f in body["failed"]] == [ids[1]]

    assert client.post("/ai/questions/bulk-reject", json={"draft_ids": ids}, headers=auth(tutor)).status_code == 400

    stats = client.get("/ai/questions/stats", headers=auth(tutor)).json()
    assert stats["total"] == 4
    assert stats["by_status"]["approved"] == 2 and stats["by_status"]["rejected"] == 2
    assert stats["approval_rate"] == 50
    assert stats["by_model"] == {"template-based": 4}

    assert client.get("/ai/questions/stats", headers=auth(make_user("tutor"))).json()["total"] == 0
    assert client.get("/ai/questions/stats", headers=auth(admin)).json()["total"] == 4


def test_provider_listing(client, tutor):
    providers = {p["name"]: p for p in client.get("/ai/providers", headers=auth(tutor)).json()["providers"]}
    assert providers["openai"]["available"] is False
    assert providers["rule-based"]["available"] is True


# --- providers and checks -----------------------------------------------------------


def test_unwrap_accepts_common_shapes():
    q = {"text": "Which fraction is largest?"}
    assert _unwrap_questions(json.dumps({"questions": [q]})) == [q]
    assert _unwrap_questions(json.dumps([q])) == [q]
    assert _unwrap_questions(json.dumps(q)) == [q]
    assert _unwrap_questions(json.dumps({"items": [q]})) == [q]
    with pytest.raises(ProviderError):
        _unwrap_questions("not json")
    with pytest.raises(ProviderError):
        _unwrap_questions(json.dumps({"a": 1, "b": 2}))


def test_missing_correct_answer_is_filled():
    q = mcq("Which fraction equals 0.75?", correct_answer="")
    fill_correct_answer(q)
    assert q["correct_answer"] == "Three quarters"

    numeric = {"numerical_answer": {"value": 12, "unit": "cm"}}
    fill_correct_answer(numeric)
    assert numeric["correct_answer"] == "12 cm"


def test_rule_based_output_passes_validation():
    provider = RuleBasedProvider()
    for qtype in ("mcq-single", "mcq-multiple", "true-false", "numerical", "short-answer", "long-answer", "case-based"):
        batch = provider.generate("Fractions", "", "easy", qtype, 2)
        checked = validate_batch(batch)
        assert len(checked.valid) == 2, (qtype, checked.invalid)


def test_rule_based_numerical_answers_are_computed():
    q = RuleBasedProvider().generate("Fractions", "", "easy", "numerical", 1)[0]
    assert q["numerical_answer"]["value"] == 12


def test_key_terms_skip_stop_words_and_short_words():
    assert extract_key_terms("The numerator and the denominator of a fraction") == [
        "numerator",
        "denominator",
        "fraction",
    ]


def test_resolve_provider_prefers_named_when_available():
    fake_openai("{}")
    assert resolve_provider("openai").name == "openai"
    assert resolve_provider(None).name == "openai"
    assert resolve_provider("rule-based").name == "rule-based"


def test_prompt_mentions_type_specific_fields():
    _, user = build_question_prompt("Decimals", "", "easy", "numerical", 2, {"grade": 7})
    assert "numerical_answer" in user and "Grade Level: 7" in user
    with pytest.raises(ValueError):
        build_question_prompt("Decimals", "", "extreme", "numerical", 2)


def test_validate_question_type_rules():
    errors, _ = validate_question(mcq("Pick one", options=mcq("x")["options"][:1]))
    assert "MCQ must have at least 2 options" in errors

    two_correct = [dict(o, is_correct=True) for o in mcq("x")["options"]]
    errors, _ = validate_question(mcq("Pick one", options=two_correct))
    assert "MCQ single must have exactly one correct answer" in errors

    errors, _ = validate_question({"text": "Add them", "topic": "Fractions", "difficulty": "easy", "type": "numerical",
                                   "numerical_answer": {"value": "ten"}, "correct_answer": "10"})  # fmt: skip
    assert "Numerical answer value must be a number" in errors

    errors, warnings = validate_question(mcq("Pick one", explanation="", tags=[]))
    assert errors == []
    assert len(warnings) == 2


def test_content_filter():
    issues, _ = filter_question(mcq("Which [fraction] should go here?"))
    assert "Question text contains placeholder content" in issues

    issues, _ = filter_question(mcq("A violent storm splits a cake; what share is left?"))
    assert "Question text contains potentially inappropriate content" in issues

    issues, _ = filter_question(mcq("Is the answer three quarters or not?"))
    assert "Question text reveals the correct answer" in issues

    issues, flags = filter_question(mcq("Do all boys find fractions easier than decimals?"))
    assert issues == [] and flags == ["Question text may contain biased language"]

    issues, _ = filter_question(mcq("Short?"))
    assert any("too short" in i for i in issues)


def test_duplicate_detector():
    detector = DuplicateDetector([(1, "What is 3/4 as a decimal?")])
    assert detector.check("what is 34 as a decimal")["match_type"] == "exact"
    near = detector.check("What's 3/4 as a decimal?")
    assert near["match_type"] == "similar" and near["matched"] == 1
    assert detector.check("Order these fractions from smallest to largest") is None
    with pytest.raises(ValueError):
        DuplicateDetector(threshold=150)
