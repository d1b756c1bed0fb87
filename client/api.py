"""
Thin synchronous client for the tutoring API.

``ApiClient`` attaches the bearer token from a ``TokenStore`` and, on a 401,
refreshes the access token once and replays the request. The service
classes below it are plain wrappers around the REST surface.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger("tutorhub.client")

REFRESH_PATH = "/auth/refresh"


class ApiError(Exception):
    def __init__(self, status_code: Optional[int], detail: Any):
        super().__init__(f"{status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail


class TokenStore:
    """Access/refresh tokens plus the signed-in user, optionally kept in a JSON file."""

    def __init__(self, path: Optional[str | Path] = None):
        self.path = Path(path) if path else None
        self.token: Optional[str] = None
        self.refresh_token: Optional[str] = None
        self.user: Optional[dict] = None
        if self.path and self.path.exists():
            self._load()

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token)

    def set(self, token=None, refresh_token=None, user=None) -> None:
        if token is not None:
            self.token = token
        if refresh_token is not None:
            self.refresh_token = refresh_token
        if user is not None:
            self.user = user
        self._save()

    def clear(self) -> None:
        self.token = self.refresh_token = None
        self.user = None
        if self.path and self.path.exists():
            self.path.unlink()

    def _load(self) -> None:
        data = json.loads(self.path.read_text(encoding="utf-8"))
        self.token = data.get("token")
        self.refresh_token = data.get("refresh_token")
        self.user = data.get("user")

    def _save(self) -> None:
        if not self.path:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(
            json.dumps(
                {"token": self.token, "refresh_token": self.refresh_token, "user": self.user}
            ),
            encoding="utf-8",
        )


def _detail(resp: httpx.Response) -> Any:
    try:
        body = resp.json()
    except ValueError:
        return resp.text or resp.reason_phrase
    if isinstance(body, dict) and "detail" in body:
        return body["detail"]
    return body


class ApiClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        http_client: Optional[httpx.Client] = None,
        store: Optional[TokenStore] = None,
        timeout: float = 10.0,
    ):
        if http_client is None and base_url is None:
            raise ValueError("base_url or http_client is required")
        self.http = http_client or httpx.Client(base_url=base_url, timeout=timeout)
        self.store = store or TokenStore()

    def close(self) -> None:
        self.http.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def _send(self, method: str, path: str, auth: bool = True, **kwargs) -> httpx.Response:
        headers = dict(kwargs.pop("headers", None) or {})
        if auth and self.store.token:
            headers["Authorization"] = f"Bearer {self.store.token}"
        try:
            return self.http.request(method, path, headers=headers, **kwargs)
        except httpx.TransportError as e:
            logger.error("%s %s failed: %s", method, path, e)
            raise ApiError(None, str(e)) from e

    def refresh(self) -> str:
        """Swap the refresh token for a new access token, or log out."""
        if not self.store.refresh_token:
            self.store.clear()
            raise ApiError(401, "Not authenticated")
        resp = self._send(
            "POST", REFRESH_PATH, auth=False, json={"refresh_token": self.store.refresh_token}
        )
        if not resp.is_success:
            logger.warning("Token refresh failed (%s); clearing session", resp.status_code)
            self.store.clear()
            raise ApiError(resp.status_code, _detail(resp))
        token = resp.json()["token"]
        self.store.set(token=token)
        return token

    def request(self, method: str, path: str, auth: bool = True, **kwargs) -> Any:
        resp = self._send(method, path, auth=auth, **kwargs)
        if (
            resp.status_code == 401
            and auth
            and path != REFRESH_PATH
            and self.store.refresh_token
        ):
            self.refresh()
            resp = self._send(method, path, auth=auth, **kwargs)

        if not resp.is_success:
            raise ApiError(resp.status_code, _detail(resp))
        if not resp.content:
            return None
        if resp.headers.get("content-type", "").startswith("application/json"):
            return resp.json()
        return resp.text

    def get(self, path: str, **kwargs) -> Any:
        return self.request("GET", path, **kwargs)

    def post(self, path: str, **kwargs) -> Any:
        return self.request("POST", path, **kwargs)

    def put(self, path: str, **kwargs) -> Any:
        return self.request("PUT", path, **kwargs)

    def patch(self, path: str, **kwargs) -> Any:
        return self.request("PATCH", path, **kwargs)

    def delete(self, path: str, **kwargs) -> Any:
        return self.request("DELETE", path, **kwargs)


def _params(**kwargs) -> Dict[str, Any]:
    return {k: v for k, v in kwargs.items() if v is not None}


class AuthService:
    def __init__(self, api: ApiClient):
        self.api = api

    def _remember(self, data: dict) -> dict:
        self.api.store.set(token=data["token"], refresh_token=data["refresh_token"], user=data["user"])
        return data["user"]

    def register(self, name: str, email: str, password: str, role: str = "student", grade=None) -> dict:
        data = self.api.post(
            "/auth/register",
            auth=False,
            json=_params(name=name, email=email, password=password, role=role, grade=grade),
        )
        return self._remember(data)

    def login(self, email: str, password: str) -> dict:
        data = self.api.post("/auth/login", auth=False, json={"email": email, "password": password})
        return self._remember(data)

    def logout(self) -> None:
        refresh_token = self.api.store.refresh_token
        try:
            if refresh_token:
                self.api.post("/auth/logout", auth=False, json={"refresh_token": refresh_token})
        finally:
            self.api.store.clear()

    def me(self) -> dict:
        user = self.api.get("/auth/me")
        self.api.store.set(user=user)
        return user


class CourseService:
    def __init__(self, api: ApiClient):
        self.api = api

    def list(self, subject=None, grade=None, search=None, page: int = 1, limit: int = 20) -> dict:
        return self.api.get(
            "/courses",
            params=_params(subject=subject, grade=grade, search=search, page=page, limit=limit),
        )

    def mine(self) -> List[dict]:
        return self.api.get("/courses/mine")

    def get(self, course_id: int) -> dict:
        return self.api.get(f"/courses/{course_id}")

    def create(self, **payload) -> dict:
        return self.api.post("/courses", json=payload)

    def enroll(self, course_id: int) -> dict:
        return self.api.post(f"/courses/{course_id}/enroll")

    def unenroll(self, course_id: int) -> dict:
        return self.api.delete(f"/courses/{course_id}/enroll")


class QuizService:
    def __init__(self, api: ApiClient):
        self.api = api

    def available(self, course_id: int) -> List[dict]:
        return self.api.get(f"/quizzes/course/{course_id}/available")

    def get(self, quiz_id: int) -> dict:
        return self.api.get(f"/quizzes/{quiz_id}")

    def start(self, quiz_id: int, strategy: Optional[str] = None) -> dict:
        return self.api.post(f"/quizzes/{quiz_id}/start", json={"strategy": strategy})

    def session(self, session_id: int) -> dict:
        return self.api.get(f"/sessions/{session_id}")

    def save_answer(self, session_id: int, question_id: int, answer: Any, time_spent: int = 0) -> dict:
        return self.api.post(
            f"/sessions/{session_id}/answer",
            json={"question_id": question_id, "answer": answer, "time_spent": time_spent},
        )

    def mark_review(self, session_id: int, question_id: int, marked: bool) -> dict:
        return self.api.post(
            f"/sessions/{session_id}/mark-review",
            json={"question_id": question_id, "marked": marked},
        )

    def set_position(self, session_id: int, index: int) -> dict:
        return self.api.post(f"/sessions/{session_id}/position", json={"index": index})

    def focus_lost(self, session_id: int) -> dict:
        return self.api.post(f"/sessions/{session_id}/focus-lost")

    def submit(self, quiz_id: int, session_id: int, answers: List[dict]) -> dict:
        return self.api.post(
            f"/quizzes/{quiz_id}/submit", json={"session_id": session_id, "answers": answers}
        )

    def result(self, quiz_id: int, session_id: Optional[int] = None) -> dict:
        return self.api.get(f"/quizzes/{quiz_id}/result", params=_params(session_id=session_id))


class DraftService:
    def __init__(self, api: ApiClient):
        self.api = api

    def generate(self, course_id: int, **options) -> dict:
        return self.api.post("/ai/questions/generate", json={"course_id": course_id, **options})

    def list(self, course_id=None, status=None, page: int = 1, limit: int = 20) -> dict:
        return self.api.get(
            "/ai/questions/drafts",
            params=_params(course_id=course_id, status=status, page=page, limit=limit),
        )

    def get(self, draft_id: int) -> dict:
        return self.api.get(f"/ai/questions/drafts/{draft_id}")

    def edit(self, draft_id: int, changes: dict, note: str = "") -> dict:
        return self.api.put(
            f"/ai/questions/drafts/{draft_id}", json={"changes": changes, "note": note}
        )

    def approve(self, draft_id: int, edits: Optional[dict] = None) -> dict:
        return self.api.post(f"/ai/questions/drafts/{draft_id}/approve", json={"edits": edits})

    def reject(self, draft_id: int, reason: str) -> dict:
        return self.api.post(f"/ai/questions/drafts/{draft_id}/reject", json={"reason": reason})

    def bulk_approve(self, draft_ids: List[int]) -> dict:
        return self.api.post("/ai/questions/bulk-approve", json={"draft_ids": draft_ids})

    def bulk_reject(self, draft_ids: List[int], reason: str) -> dict:
        return self.api.post(
            "/ai/questions/bulk-reject", json={"draft_ids": draft_ids, "reason": reason}
        )

    def stats(self, course_id: Optional[int] = None) -> dict:
        return self.api.get("/ai/questions/stats", params=_params(course_id=course_id))

    def providers(self) -> List[dict]:
        return self.api.get("/ai/providers")["providers"]


class EvaluationService:
    def __init__(self, api: ApiClient):
        self.api = api

    def pending(self, course_id=None, quiz_id=None, page: int = 1, limit: int = 20) -> dict:
        return self.api.get(
            "/evaluations/pending",
            params=_params(course_id=course_id, quiz_id=quiz_id, page=page, limit=limit),
        )

    def session(self, session_id: int) -> dict:
        return self.api.get(f"/evaluations/sessions/{session_id}")

    def evaluate(self, session_id: int, question_id: int, marks_awarded: float, feedback=None) -> dict:
        return self.api.post(
            "/evaluations/manual",
            json=_params(
                session_id=session_id,
                question_id=question_id,
                marks_awarded=marks_awarded,
                feedback=feedback,
            ),
        )

    def evaluate_bulk(self, session_id: int, evaluations: List[dict]) -> dict:
        return self.api.post(
            "/evaluations/manual/bulk", json={"session_id": session_id, "evaluations": evaluations}
        )
