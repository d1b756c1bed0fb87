import pytest
from fastapi.testclient import TestClient

from client.api import ApiClient, ApiError, AuthService, CourseService, DraftService, TokenStore, _params
from conftest import PASSWORD, make_course, make_user
from main import app


@pytest.fixture
def api():
    with ApiClient(http_client=TestClient(app)) as api:
        yield api


def test_login_stores_tokens_and_user(api, student):
    user = AuthService(api).login(student.email, PASSWORD)
    assert user["id"] == student.id
    assert api.store.is_authenticated and api.store.refresh_token
    assert AuthService(api).me()["email"] == student.email


def test_bad_credentials_raise_api_error(api, student):
    with pytest.raises(ApiError) as err:
        AuthService(api).login(student.email, "wrong-password")
    assert err.value.status_code == 401
    assert err.value.detail == "Invalid email or password."
    assert not api.store.is_authenticated


def test_rejected_access_token_is_refreshed_once(api, student):
    AuthService(api).login(student.email, PASSWORD)
    refresh_token = api.store.refresh_token
    api.store.set(token="not-a-jwt")

    assert AuthService(api).me()["id"] == student.id
    assert api.store.token != "not-a-jwt"
    assert api.store.refresh_token == refresh_token


def test_failed_refresh_logs_out(api, student):
    AuthService(api).login(student.email, PASSWORD)
    api.store.set(token="not-a-jwt", refresh_token="also-not-a-jwt")
    with pytest.raises(ApiError) as err:
        AuthService(api).me()
    assert err.value.status_code == 401
    assert api.store.token is None and api.store.refresh_token is None


def test_unauthenticated_request_is_not_retried(api):
    with pytest.raises(ApiError) as err:
        api.get("/auth/me")
    assert err.value.status_code == 401


def test_logout_revokes_and_clears(api, student):
    auth = AuthService(api)
    auth.login(student.email, PASSWORD)
    refresh_token = api.store.refresh_token
    auth.logout()
    assert not api.store.is_authenticated
    with pytest.raises(ApiError):
        api.post("/auth/refresh", auth=False, json={"refresh_token": refresh_token})


def test_token_store_persists_to_disk(tmp_path, student):
    path = tmp_path / "session.json"
    with ApiClient(http_client=TestClient(app), store=TokenStore(path)) as api:
        AuthService(api).login(student.email, PASSWORD)

    restored = TokenStore(path)
    assert restored.is_authenticated and restored.user["id"] == student.id

    restored.clear()
    assert not path.exists()


def test_course_and_draft_services(api, tutor):
    AuthService(api).login(tutor.email, PASSWORD)
    course = make_course(tutor)
    assert CourseService(api).get(course.id)["id"] == course.id
    with pytest.raises(ApiError) as err:
        CourseService(api).get(9999)
    assert err.value.status_code == 404

    drafts = DraftService(api)
    summary = drafts.generate(course.id, topics=["Fractions"], count=1, provider="rule-based")
    draft_id = summary["draft_ids"][0]
    assert drafts.approve(draft_id)["draft"]["status"] == "approved"
    assert {p["name"] for p in drafts.providers()} == {"openai", "rule-based"}


def test_enrollment_round_trip(api, tutor):
    student = make_user("student")
    course = make_course(tutor)
    AuthService(api).login(student.email, PASSWORD)
    courses = CourseService(api)
    courses.enroll(course.id)
    assert [c["id"] for c in courses.mine()] == [course.id]
    courses.unenroll(course.id)
    assert courses.mine() == []


def test_params_drop_none():
    assert _params(a=1, b=None, c=0) == {"a": 1, "c": 0}


def test_client_needs_a_target():
    with pytest.raises(ValueError):
        ApiClient()
