"""
Client-side driver for a timed quiz attempt.

The runner keeps the local view of an attempt (answers, review marks,
position, countdown) and talks to the server through ``QuizService``.
Timing is cooperative: something calls ``tick()`` about once a second
(``run()`` does this on the current thread) and the runner decides when to
autosave and when the clock has run out. The server's ``remaining_time`` is
authoritative; every response that carries it re-syncs the local deadline.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Set

from client.api import ApiError, QuizService

logger = logging.getLogger("tutorhub.client.attempt")


def format_time(seconds: int) -> str:
    seconds = max(0, int(seconds))
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


class AttemptRunner:
    format_time = staticmethod(format_time)

    def __init__(
        self,
        quiz_service: QuizService,
        quiz_id: int,
        clock: Callable[[], float] = time.monotonic,
        autosave_interval: Optional[int] = None,
    ):
        self.quizzes = quiz_service
        self.quiz_id = quiz_id
        self.clock = clock
        self._autosave_override = autosave_interval
        self.autosave_interval = autosave_interval or 30

        self.session_id: Optional[int] = None
        self.questions: List[dict] = []
        self.answers: Dict[int, Any] = {}
        self.marked: Set[int] = set()
        self.visited: Set[int] = set()
        self.index = 0
        self.remaining = 0
        self.resumed = False
        self.save_status = "saved"
        self.error: Optional[Any] = None

        self.submitted = False
        self.auto_submitted = False
        self.result: Optional[dict] = None
        self._auto_triggered = False
        self._retry_submit = False
        self._submitting = False

        self._deadline = 0.0
        self._last_autosave = 0.0
        self._question_started = 0.0

    # --- state ---------------------------------------------------------------------

    @property
    def current_question(self) -> Optional[dict]:
        if not self.questions:
            return None
        return self.questions[self.index]

    def _sync_remaining(self, remaining: Optional[int]) -> None:
        if remaining is None:
            return
        self.remaining = max(0, int(remaining))
        self._deadline = self.clock() + self.remaining

    def _stopwatch(self) -> int:
        """Seconds on the current question since it was opened or last saved."""
        return max(0, int(self.clock() - self._question_started))

    def start(self) -> dict:
        data = self.quizzes.start(self.quiz_id)
        self.session_id = data["session_id"]
        self.resumed = bool(data.get("resumed"))
        self.questions = sorted(data["questions"], key=lambda q: q["display_order"])
        # JSON object keys arrive as strings
        self.answers = {int(k): v for k, v in (data.get("answers") or {}).items()}
        self.marked = set(data.get("marked_for_review") or [])
        self.visited = set(data.get("visited") or [])
        if self.questions:
            self.index = min(max(0, data.get("current_question_index") or 0), len(self.questions) - 1)
            self.visited.add(self.current_question["question_id"])
        if not self._autosave_override:
            self.autosave_interval = int(data.get("autosave_interval") or 30)

        now = self.clock()
        self._sync_remaining(data.get("remaining_time", 0))
        self._last_autosave = now
        self._question_started = now
        self.save_status = "saved"
        logger.info(
            "%s session %s for quiz %s (%ss left)",
            "Resumed" if self.resumed else "Started",
            self.session_id,
            self.quiz_id,
            self.remaining,
        )
        return data

    # --- answering -----------------------------------------------------------------

    def answer(self, question_id: int, value: Any) -> None:
        self.answers[question_id] = value
        self.save_status = "unsaved"

    def toggle_option(self, question_id: int, option_id: str) -> List[str]:
        current = list(self.answers.get(question_id) or [])
        if option_id in current:
            current.remove(option_id)
        else:
            current.append(option_id)
        self.answer(question_id, current)
        return current

    def toggle_review(self) -> bool:
        question = self.current_question
        if question is None:
            return False
        qid = question["question_id"]
        marked = qid not in self.marked
        if marked:
            self.marked.add(qid)
        else:
            self.marked.discard(qid)
        try:
            self.quizzes.mark_review(self.session_id, qid, marked)
        except ApiError as e:
            logger.warning("Failed to mark question %s for review: %s", qid, e.detail)
        return marked

    def autosave(self) -> str:
        question = self.current_question
        if self.session_id is None or question is None or self.submitted:
            return self.save_status
        qid = question["question_id"]
        self.save_status = "saving"
        try:
            if self.answers.get(qid) is not None:
                out = self.quizzes.save_answer(self.session_id, qid, self.answers[qid], self._stopwatch())
                self._question_started = self.clock()
                self._sync_remaining(out.get("remaining_time"))
            self.save_status = "saved"
        except ApiError as e:
            self.save_status = "error"
            self.error = e.detail
            logger.warning("Autosave failed for session %s: %s", self.session_id, e.detail)
        return self.save_status

    # --- navigation ----------------------------------------------------------------

    def go_to(self, index: int) -> bool:
        if not 0 <= index < len(self.questions):
            return False
        self.autosave()
        self._question_started = self.clock()
        self.index = index
        self.visited.add(self.questions[index]["question_id"])
        try:
            self.quizzes.set_position(self.session_id, index)
        except ApiError as e:
            logger.warning("Failed to store position %s: %s", index, e.detail)
        return True

    def next(self) -> bool:
        return self.go_to(self.index + 1)

    def previous(self) -> bool:
        return self.go_to(self.index - 1)

    def question_status(self, index: int) -> str:
        qid = self.questions[index]["question_id"]
        answered = self.answers.get(qid) is not None
        marked = qid in self.marked
        if index == self.index:
            return "current"
        if marked and answered:
            return "marked-answered"
        if marked:
            return "marked"
        if answered:
            return "answered"
        return "not-visited"

    # --- timing --------------------------------------------------------------------

    def tick(self) -> int:
        if self.session_id is None or self.submitted:
            return self.remaining
        now = self.clock()
        self.remaining = max(0, math.ceil(self._deadline - now))
        if self.remaining == 0:
            if not self._auto_triggered:
                self._auto_triggered = True
                logger.info("Time is up for session %s; auto-submitting", self.session_id)
                if self.submit(auto=True) is None and self._retry_submit:
                    # try again on the next tick
                    self._auto_triggered = False
            return 0
        if now - self._last_autosave >= self.autosave_interval:
            self._last_autosave = now
            self.autosave()
        return self.remaining

    def submit(self, auto: bool = False) -> Optional[dict]:
        if self.submitted or self._submitting:
            return self.result
        current = self.current_question
        current_id = current["question_id"] if current else None
        spent = self._stopwatch()
        answers = [
            {
                "question_id": qid,
                "answer": value,
                "time_spent": spent if qid == current_id else 0,
            }
            for qid, value in self.answers.items()
            if value is not None
        ]
        self._submitting = True
        try:
            result = self.quizzes.submit(self.quiz_id, self.session_id, answers)
        except ApiError as e:
            self.error = e.detail
            self.save_status = "error"
            # only transport and 5xx failures are retried
            self._retry_submit = e.status_code is None or e.status_code >= 500
            logger.error("Submitting session %s failed: %s", self.session_id, e.detail)
            return None
        finally:
            self._submitting = False

        self.submitted = True
        self.auto_submitted = auto
        self.remaining = 0
        self.save_status = "saved"
        self.result = result
        return result

    def run(self, stop_event: Optional[threading.Event] = None) -> Optional[dict]:
        """Drive ``tick()`` once a second until submitted, out of time, or stopped."""
        stop_event = stop_event or threading.Event()
        while not self.submitted and not stop_event.is_set():
            self.tick()
            if self.submitted or self._auto_triggered:
                break
            stop_event.wait(1.0)
        return self.result
