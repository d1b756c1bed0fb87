from __future__ import annotations

import math
import re
from typing import Any, Optional

from sympy import nan, oo, preorder_traversal, zoo
from sympy.core.power import Pow
from sympy.parsing.sympy_parser import (
    convert_xor,
    implicit_multiplication_application,
    parse_expr,
    standard_transformations,
)

from models import Question

# --- Parsing / validation helpers ------------------------------------------------
LEN_LIMIT = 100
INVALID_CHARS_MSG = (
    "Only numeric expressions using digits, spaces, + - * / ^ . and parentheses are allowed."
)
NON_FINITE_MSG = "Expression is not finite (e.g., division by zero)."
TOO_COMPLEX_MSG = "Expression is too complex."
_ALLOWED_RE = re.compile(r"^[0-9+\-*/^().\s]{1,100}$")

TRANSFORMS = standard_transformations + (
    convert_xor,
    implicit_multiplication_application,
)

# Reasonable hard-stops that won't affect normal use
_MAX_OPS = 200
_MAX_INT_DIGITS = 200
_MAX_EXPONENT_ABS = 2000


def validate_expression(s: Any) -> Optional[str]:
    """Return an error message for unacceptable input, else None."""
    if s is None or not isinstance(s, str) or not s.strip():
        return "Answer required."
    if len(s) > LEN_LIMIT:
        return "Answer too long (> 100)."
    if _ALLOWED_RE.fullmatch(s) is None:
        return INVALID_CHARS_MSG
    return None


# --- Finite & Complexity guards ---------------------------------------------------


def _assert_finite_sym(val: Any) -> None:
    finite = getattr(val, "is_finite", None)
    if finite is False:
        raise ValueError(NON_FINITE_MSG)
    if val in (oo, -oo, zoo, nan):
        raise ValueError(NON_FINITE_MSG)


def _assert_expr_complexity(sym: Any) -> None:
    """
    Treat plain scalars as trivial; only inspect SymPy expressions for complexity.
    """
    if isinstance(sym, (int, float)):
        if not math.isfinite(float(sym)):
            raise ValueError(NON_FINITE_MSG)
        return

    if getattr(sym, "is_Number", False):
        return

    try:
        if sym.count_ops() > _MAX_OPS:
            raise ValueError(TOO_COMPLEX_MSG)
    except (AttributeError, TypeError):
        raise ValueError(TOO_COMPLEX_MSG)

    for node in preorder_traversal(sym):
        if getattr(node, "is_Integer", False) and len(str(abs(int(node)))) > _MAX_INT_DIGITS:
            raise ValueError(TOO_COMPLEX_MSG)
        if isinstance(node, Pow) and getattr(node.exp, "is_number", False):
            try:
                e = float(node.exp)
            except (TypeError, ValueError):
                raise ValueError(TOO_COMPLEX_MSG)
            if not math.isfinite(e) or abs(e) > _MAX_EXPONENT_ABS:
                raise ValueError(TOO_COMPLEX_MSG)


def eval_numeric(expr: str) -> float:
    """
    Safely evaluate a numeric expression such as ``3/4`` or ``2^3 + 1``.
    Raises ValueError with a user-facing message on bad input.
    """
    msg = validate_expression(expr)
    if msg:
        raise ValueError(msg)
    try:
        sym = parse_expr(expr, transformations=TRANSFORMS, evaluate=False)
    except Exception:
        # sympy's parser raises assorted errors (SyntaxError, TokenError, ...)
        raise ValueError(INVALID_CHARS_MSG)
    _assert_expr_complexity(sym)
    try:
        sym = sym.doit() if hasattr(sym, "doit") else sym
    except (ZeroDivisionError, TypeError):
        raise ValueError(NON_FINITE_MSG)
    _assert_finite_sym(sym)
    try:
        val = float(sym.evalf()) if hasattr(sym, "evalf") else float(sym)
    except (TypeError, ValueError):
        raise ValueError(NON_FINITE_MSG)
    if not math.isfinite(val):
        raise ValueError(NON_FINITE_MSG)
    return val


def _to_number(answer: Any) -> float:
    if isinstance(answer, bool):
        raise ValueError(INVALID_CHARS_MSG)
    if isinstance(answer, (int, float)):
        if not math.isfinite(float(answer)):
            raise ValueError(NON_FINITE_MSG)
        return float(answer)
    return eval_numeric(str(answer).strip())


# --- Core checking ----------------------------------------------------------------


def is_blank(answer: Any) -> bool:
    if answer is None:
        return True
    if isinstance(answer, str) and not answer.strip():
        return True
    if isinstance(answer, (list, tuple, set)) and len(answer) == 0:
        return True
    return False


def correct_option_ids(q: Question) -> set[str]:
    return {str(o.get("id")) for o in q.options or [] if o.get("is_correct")}


def _check_options(q: Question, answer: Any) -> bool:
    if isinstance(answer, (list, tuple, set)):
        chosen = {str(a) for a in answer}
    else:
        chosen = {str(answer)}
    if q.type != "mcq-multiple" and len(chosen) != 1:
        return False
    return chosen == correct_option_ids(q)


def _check_numerical(q: Question, answer: Any) -> bool:
    spec = q.numerical_answer or {}
    if spec.get("value") is None:
        return False
    try:
        value = _to_number(answer)
    except ValueError:
        return False
    tolerance = float(spec.get("tolerance") or 0)
    return abs(value - float(spec["value"])) <= tolerance + 1e-9


def _check_text(q: Question, answer: Any) -> Optional[bool]:
    text = str(answer).strip().lower()
    keywords = [k.strip().lower() for k in q.keywords or [] if k and k.strip()]
    if keywords:
        words = text.split()
        return any(kw in word for kw in keywords for word in words)
    if q.expected_answer:
        return q.expected_answer.strip().lower() == text
    return None


def check_answer(q: Question, answer: Any) -> Optional[bool]:
    """
    Auto-grade one answer.

    Returns True/False when the answer can be graded automatically and None
    when it has to go to a tutor for manual evaluation. Blank answers are
    always wrong, never pending.
    """
    if is_blank(answer):
        return False

    if q.type in ("mcq-single", "mcq-multiple", "true-false"):
        return _check_options(q, answer)
    if q.type == "case-based":
        return _check_options(q, answer) if q.options else None
    if q.type == "numerical":
        return _check_numerical(q, answer)
    if q.type == "short-answer":
        return _check_text(q, answer)
    if q.type == "long-answer":
        return None
    return False


def describe_correct_answer(q: Question) -> dict:
    return {
        "options": [o for o in q.options or [] if o.get("is_correct")],
        "numerical_answer": q.numerical_answer,
        "expected_answer": q.expected_answer,
        "correct_answer": q.correct_answer,
    }
