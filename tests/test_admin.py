from conftest import auth, make_course, make_question, make_quiz, make_user


def test_dashboard_counts(client, admin, tutor, student):
    course = make_course(tutor, students=[student])
    make_question(course.id)
    make_quiz(tutor, course.id, total_questions=1)
    make_quiz(tutor, course.id, status="draft")

    r = client.get("/admin/dashboard", headers=auth(admin))
    assert r.status_code == 200
    d = r.json()
    assert d["users"]["total"] == 3
    assert d["users"]["by_role"] == {"admin": 1, "tutor": 1, "student": 1}
    assert d["courses"]["total"] == 1
    assert d["quizzes"]["by_status"] == {"published": 1, "draft": 1}
    assert d["sessions"]["total"] == 0 and d["pending_evaluations"] == 0
    assert d["ai_drafts"]["total"] == 0


def test_admin_routes_need_the_admin_role(client, tutor):
    assert client.get("/admin/dashboard", headers=auth(tutor)).status_code == 403
    assert client.get("/admin/users").status_code == 401


def test_list_users_filters(client, admin, tutor, student):
    make_user("student", email="zara@example.com")
    r = client.get("/admin/users", params={"role": "student"}, headers=auth(admin))
    assert r.json()["total"] == 2
    r = client.get("/admin/users", params={"search": "zara"}, headers=auth(admin))
    assert [u["email"] for u in r.json()["items"]] == ["zara@example.com"]
    assert all("password_hash" not in u for u in r.json()["items"])


def test_update_user_role_and_status(client, admin, student):
    r = client.patch(f"/admin/users/{student.id}", json={"role": "tutor"}, headers=auth(admin))
    assert r.status_code == 200 and r.json()["role"] == "tutor"

    r = client.patch(f"/admin/users/{student.id}", json={"status": "suspended"}, headers=auth(admin))
    assert r.json()["status"] == "suspended"
    # suspended users are locked out
    assert client.get("/auth/me", headers=auth(student)).status_code == 403

    assert client.patch("/admin/users/999", json={"role": "tutor"}, headers=auth(admin)).status_code == 404
    assert client.patch(f"/admin/users/{student.id}", json={"role": "owner"}, headers=auth(admin)).status_code == 422


def test_admin_cannot_demote_or_deactivate_self(client, admin):
    r = client.patch(f"/admin/users/{admin.id}", json={"role": "student"}, headers=auth(admin))
    assert r.status_code == 400
    r = client.patch(f"/admin/users/{admin.id}", json={"status": "inactive"}, headers=auth(admin))
    assert r.status_code == 400


def test_maintenance_guard(client, admin):
    assert client.post("/admin/maintenance").status_code == 401
    assert client.post("/admin/maintenance", headers={"x-admin-token": "wrong"}).status_code == 401
    r = client.post("/admin/maintenance", headers=auth(admin))
    assert r.json() == {"ok": True, "expired_sessions": 0, "published": 0, "archived": 0}
