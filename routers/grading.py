from __future__ import annotations

from fastapi import APIRouter

from grading import eval_numeric, validate_expression
from schemas.grading import EvaluateRequest, EvaluateResponse

router = APIRouter(tags=["grading"])


@router.post("/evaluate", response_model=EvaluateResponse)
def evaluate(req: EvaluateRequest):
    """Preview how a numerical answer will be read before it is submitted."""
    err = validate_expression(req.expr)
    if err:
        return {"ok": False, "value": None, "feedback": err}
    try:
        return {"ok": True, "value": eval_numeric(req.expr)}
    except ValueError as e:
        return {"ok": False, "value": None, "feedback": str(e)}
