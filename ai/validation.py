"""
Checks applied to generated questions before they become drafts:
structural validation per question type, a content filter and duplicate
detection against the course bank.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from rapidfuzz import fuzz

from ai.prompts import DEFAULT_MARKS, DEFAULT_RECOMMENDED_TIME
from models import DIFFICULTIES, QUESTION_TYPES

OPTION_TYPES = ("mcq-single", "mcq-multiple", "true-false", "case-based")


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool) and v == v


def _nonempty_str(v: Any) -> bool:
    return isinstance(v, str) and bool(v.strip())


# --- Structural validation ------------------------------------------------------


def _check_single_choice(q: dict, errors: List[str]) -> None:
    options = q.get("options")
    if not isinstance(options, list):
        errors.append("Options must be a list")
        return
    if len(options) < 2:
        errors.append("MCQ must have at least 2 options")
    if len(options) > 6:
        errors.append("MCQ should not have more than 6 options")
    if sum(1 for o in options if isinstance(o, dict) and o.get("is_correct")) != 1:
        errors.append("MCQ single must have exactly one correct answer")
    for i, o in enumerate(options, start=1):
        if not isinstance(o, dict) or not _nonempty_str(o.get("text")):
            errors.append(f"Option {i} must have a text field")
        elif not _nonempty_str(o.get("explanation")):
            errors.append(f"Option {i} should have an explanation")
    if not _nonempty_str(q.get("correct_answer")):
        errors.append("correct_answer is required and must contain the correct answer text")


def _check_multiple_choice(q: dict, errors: List[str]) -> None:
    options = q.get("options")
    if not isinstance(options, list):
        errors.append("Options must be a list")
        return
    if len(options) < 3:
        errors.append("Multiple select MCQ must have at least 3 options")
    if sum(1 for o in options if isinstance(o, dict) and o.get("is_correct")) < 2:
        errors.append("Multiple select MCQ must have at least 2 correct answers")
    for i, o in enumerate(options, start=1):
        if not isinstance(o, dict) or not _nonempty_str(o.get("text")):
            errors.append(f"Option {i} must have a text field")
    if not _nonempty_str(q.get("correct_answer")):
        errors.append("correct_answer is required")


def _check_true_false(q: dict, errors: List[str]) -> None:
    options = q.get("options")
    if not isinstance(options, list):
        errors.append("Options must be a list")
        return
    if len(options) != 2:
        errors.append("True/False must have exactly 2 options")
    texts = {str(o.get("text", "")).strip().lower() for o in options if isinstance(o, dict)}
    if not {"true", "false"} <= texts:
        errors.append('True/False must have "True" and "False" options')
    if sum(1 for o in options if isinstance(o, dict) and o.get("is_correct")) != 1:
        errors.append("True/False must have exactly one correct answer")
    if not _nonempty_str(q.get("correct_answer")):
        errors.append('correct_answer is required (should be "True" or "False")')


def _check_numerical(q: dict, errors: List[str]) -> None:
    na = q.get("numerical_answer")
    if not isinstance(na, dict):
        errors.append("Numerical answer object is required")
        return
    if not _is_number(na.get("value")):
        errors.append("Numerical answer value must be a number")
    if na.get("tolerance") is not None and not _is_number(na.get("tolerance")):
        errors.append("Tolerance must be a number")
    if q.get("correct_answer") in (None, ""):
        errors.append("correct_answer is required")


def _check_text_answer(q: dict, errors: List[str]) -> None:
    expected = q.get("expected_answer")
    if not _nonempty_str(expected):
        errors.append("Expected answer is required and must be a string")
    elif len(expected.strip()) < 10:
        errors.append("Expected answer should be at least 10 characters")
    if not _nonempty_str(q.get("correct_answer")):
        errors.append("correct_answer is required and must contain the model answer")


def _check_case_based(q: dict, errors: List[str]) -> None:
    case = q.get("case_study")
    if not _nonempty_str(case):
        errors.append("Case study text is required")
    elif len(case.strip()) < 50:
        errors.append("Case study should be at least 50 characters")
    if q.get("options"):
        _check_single_choice(q, errors)


_TYPE_CHECKS = {
    "mcq-single": _check_single_choice,
    "mcq-multiple": _check_multiple_choice,
    "true-false": _check_true_false,
    "numerical": _check_numerical,
    "short-answer": _check_text_answer,
    "long-answer": _check_text_answer,
    "case-based": _check_case_based,
}


def validate_question(q: dict) -> Tuple[List[str], List[str]]:
    """Return ``(errors, warnings)``. Only errors make a question invalid."""
    errors: List[str] = []
    warnings: List[str] = []

    if not _nonempty_str(q.get("text")):
        errors.append("Question text is required and must be a non-empty string")
    if not _nonempty_str(q.get("topic")):
        errors.append("Topic is required and must be a string")
    if q.get("difficulty") not in DIFFICULTIES:
        errors.append(f"Invalid difficulty level. Must be one of: {', '.join(DIFFICULTIES)}")
    if q.get("type") not in QUESTION_TYPES:
        errors.append(f"Invalid question type. Must be one of: {', '.join(QUESTION_TYPES)}")
    else:
        _TYPE_CHECKS[q["type"]](q, errors)

    for key in ("marks", "negative_marks"):
        if q.get(key) is not None and (not _is_number(q[key]) or q[key] < 0):
            errors.append(f"{key} must be a non-negative number")

    if not _nonempty_str(q.get("explanation")) or len(q["explanation"].strip()) < 10:
        warnings.append("Explanation is missing or too short")
    if not q.get("tags"):
        warnings.append("Tags are recommended for better organization")
    return errors, warnings


def fill_correct_answer(q: dict) -> None:
    if q.get("correct_answer"):
        return
    if q.get("options"):
        correct = next((o for o in q["options"] if o.get("is_correct") is True), None)
        if correct:
            q["correct_answer"] = correct.get("text")
    elif isinstance(q.get("numerical_answer"), dict):
        na = q["numerical_answer"]
        unit = f" {na['unit']}" if na.get("unit") else ""
        q["correct_answer"] = f"{na.get('value')}{unit}"
    elif q.get("expected_answer"):
        q["correct_answer"] = q["expected_answer"]


def sanitize_question(q: dict) -> dict:
    """Normalize a valid question into the draft payload shape."""
    difficulty = q["difficulty"]
    out: Dict[str, Any] = {
        "text": q["text"].strip(),
        "topic": q["topic"].strip(),
        "difficulty": difficulty,
        "type": q["type"],
        "explanation": (q.get("explanation") or "").strip(),
        "hint": (q.get("hint") or "").strip(),
        "marks": q.get("marks") or DEFAULT_MARKS[difficulty],
        "negative_marks": q.get("negative_marks") or 0,
        "recommended_time": q.get("recommended_time") or DEFAULT_RECOMMENDED_TIME[difficulty],
        "tags": [str(t).strip() for t in q.get("tags") or [] if str(t).strip()],
        "correct_answer": str(q.get("correct_answer") or "").strip(),
    }
    if q.get("options"):
        out["options"] = [
            {
                "id": chr(ord("a") + i),
                "text": str(o.get("text", "")).strip(),
                "is_correct": bool(o.get("is_correct")),
                "explanation": (o.get("explanation") or "").strip(),
            }
            for i, o in enumerate(q["options"])
        ]
    if isinstance(q.get("numerical_answer"), dict):
        na = q["numerical_answer"]
        out["numerical_answer"] = {
            "value": float(na["value"]),
            "tolerance": float(na.get("tolerance") or 0),
            "unit": (na.get("unit") or "").strip(),
        }
    if q.get("expected_answer"):
        out["expected_answer"] = q["expected_answer"].strip()
    if q.get("keywords"):
        out["keywords"] = [str(k).strip() for k in q["keywords"] if str(k).strip()]
    if q.get("case_study"):
        out["case_study"] = q["case_study"].strip()
    return out


@dataclass
class BatchValidation:
    valid: List[dict] = field(default_factory=list)
    invalid: List[dict] = field(default_factory=list)
    warnings: List[dict] = field(default_factory=list)


def validate_batch(questions: Iterable[dict]) -> BatchValidation:
    out = BatchValidation()
    for q in questions:
        errors, warnings = validate_question(q)
        if errors:
            out.invalid.append({"question": q, "errors": errors})
            continue
        clean = sanitize_question(q)
        clean["_metadata"] = q.get("_metadata") or {}
        clean["_warnings"] = warnings
        out.valid.append(clean)
        if warnings:
            out.warnings.append({"question": str(q.get("text", ""))[:50], "warnings": warnings})
    return out


# --- Content filter ---------------------------------------------------------------

INAPPROPRIATE_PATTERNS = [
    re.compile(r"\b(hate|violent|discriminat|racist|sexist)\w*", re.I),
    re.compile(r"\b(kill|murder|assault|abuse)\w*", re.I),
    re.compile(r"\b(drug|alcohol|tobacco)\w*", re.I),
]
BIAS_PATTERNS = [
    re.compile(r"\b(always|never|all|none|every)\s+(men|women|boys|girls)\b", re.I),
    re.compile(r"\b(superior|inferior)\s+(race|gender|religion)\b", re.I),
]
PLACEHOLDER_PATTERNS = [
    re.compile(r"\[.*?\]"),
    re.compile(r"\{.*?\}"),
    re.compile(r"lorem ipsum", re.I),
    re.compile(r"placeholder", re.I),
]
MIN_QUESTION_LENGTH = 15
MAX_QUESTION_LENGTH = 2000
MIN_OPTION_LENGTH = 2


def _scan(text: Optional[str], label: str, issues: List[str], flags: List[str]) -> None:
    if not text:
        return
    if any(p.search(text) for p in INAPPROPRIATE_PATTERNS):
        issues.append(f"{label} contains potentially inappropriate content")
    if any(p.search(text) for p in BIAS_PATTERNS):
        flags.append(f"{label} may contain biased language")
    if any(p.search(text) for p in PLACEHOLDER_PATTERNS):
        issues.append(f"{label} contains placeholder content")


def filter_question(q: dict) -> Tuple[List[str], List[str]]:
    """
    Return ``(issues, flags)``. Issues reject the question outright; flags
    keep it but mark it for closer review.
    """
    issues: List[str] = []
    flags: List[str] = []
    text = q.get("text") or ""

    _scan(text, "Question text", issues, flags)
    options = q.get("options") or []
    for i, o in enumerate(options, start=1):
        _scan(o.get("text"), f"Option {i}", issues, flags)
        _scan(o.get("explanation"), f"Option {i} explanation", issues, flags)
    _scan(q.get("explanation"), "Explanation", issues, flags)
    _scan(q.get("case_study"), "Case study", issues, flags)
    _scan(q.get("expected_answer"), "Expected answer", issues, flags)

    if len(text) < MIN_QUESTION_LENGTH:
        issues.append(f"Question text is too short (minimum {MIN_QUESTION_LENGTH} characters)")
    if len(text) > MAX_QUESTION_LENGTH:
        issues.append(f"Question text is too long (maximum {MAX_QUESTION_LENGTH} characters)")

    if options:
        texts = [str(o.get("text") or "").strip().lower() for o in options]
        if any(not t for t in texts):
            issues.append("Options must not be empty")
        elif any(len(t) < MIN_OPTION_LENGTH for t in texts):
            issues.append(f"Some options are too short (minimum {MIN_OPTION_LENGTH} characters)")
        if len(set(texts)) < len(texts):
            issues.append("Duplicate options detected")
        if q.get("type") != "true-false":
            lowered = text.lower()
            for o in options:
                answer = str(o.get("text") or "").strip().lower()
                if o.get("is_correct") and len(answer) > 3 and answer in lowered:
                    issues.append("Question text reveals the correct answer")
                    break

    if "numerical_answer" in q and not _is_number((q.get("numerical_answer") or {}).get("value")):
        issues.append("Numerical answer value is invalid")

    if q.get("_warnings"):
        flags.append("Low quality: " + "; ".join(q["_warnings"]))
    return issues, flags


# --- Duplicate detection --------------------------------------------------------------

SIMILARITY_THRESHOLD = 85.0


def normalize_text(text: Optional[str]) -> str:
    if not text:
        return ""
    text = re.sub(r"[^\w\s]", "", text.lower())
    return re.sub(r"\s+", " ", text).strip()


def text_hash(text: Optional[str]) -> str:
    return hashlib.md5(normalize_text(text).encode("utf-8")).hexdigest()


class DuplicateDetector:
    """
    Compares question text against a known set. An exact match is the same
    md5 of the normalized text; a near match scores at or above the
    threshold on rapidfuzz's token-sort ratio.
    """

    def __init__(self, existing: Iterable[Tuple[Any, str]] = (), threshold: float = SIMILARITY_THRESHOLD):
        if not 0 <= threshold <= 100:
            raise ValueError("Threshold must be between 0 and 100")
        self.threshold = threshold
        self._known: List[Tuple[Any, str, str]] = []
        for ref, text in existing:
            self.add(ref, text)

    def add(self, ref: Any, text: str) -> None:
        norm = normalize_text(text)
        self._known.append((ref, norm, hashlib.md5(norm.encode("utf-8")).hexdigest()))

    def check(self, text: str) -> Optional[dict]:
        norm = normalize_text(text)
        digest = hashlib.md5(norm.encode("utf-8")).hexdigest()
        for ref, known, known_hash in self._known:
            if digest == known_hash:
                return {"match_type": "exact", "matched": ref, "similarity": 100.0}
            score = fuzz.token_sort_ratio(norm, known)
            if score >= self.threshold:
                return {"match_type": "similar", "matched": ref, "similarity": float(score)}
        return None
