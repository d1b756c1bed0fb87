from conftest import auth, make_course, make_user

COURSE = {
    "title": "Algebra Basics",
    "description": "Expressions and equations",
    "subject": "Mathematics",
    "grade": 8,
    "chapters": [{"name": "Equations", "topics": ["Linear equations", "Inequalities"]}],
    "topics": ["Expressions"],
}


def test_tutor_creates_and_updates_course(client, tutor):
    r = client.post("/courses", json=COURSE, headers=auth(tutor))
    assert r.status_code == 201
    course = r.json()
    assert course["created_by"] == tutor.id

    r = client.patch(f"/courses/{course['id']}", json={"grade": 9}, headers=auth(tutor))
    assert r.status_code == 200 and r.json()["grade"] == 9

    other = make_user("tutor")
    r = client.patch(f"/courses/{course['id']}", json={"grade": 10}, headers=auth(other))
    assert r.status_code == 403


def test_students_cannot_create_courses(client, student):
    assert client.post("/courses", json=COURSE, headers=auth(student)).status_code == 403


def test_course_detail_lists_all_topics(client, tutor, student):
    r = client.post("/courses", json=COURSE, headers=auth(tutor))
    detail = client.get(f"/courses/{r.json()['id']}", headers=auth(student)).json()
    assert detail["all_topics"] == ["Expressions", "Equations", "Linear equations", "Inequalities"]
    assert detail["is_enrolled"] is False
    assert detail["student_count"] == 0


def test_enroll_and_unenroll(client, tutor, student):
    course = make_course(tutor)
    r = client.post(f"/courses/{course.id}/enroll", headers=auth(student))
    assert r.status_code == 200
    assert client.post(f"/courses/{course.id}/enroll", headers=auth(student)).status_code == 409

    mine = client.get("/courses/mine", headers=auth(student)).json()
    assert [c["id"] for c in mine] == [course.id]

    assert client.delete(f"/courses/{course.id}/enroll", headers=auth(student)).status_code == 200
    assert client.get("/courses/mine", headers=auth(student)).json() == []


def test_list_courses_filters_and_paginates(client, tutor, student):
    for _ in range(3):
        make_course(tutor)
    r = client.get("/courses", params={"limit": 2}, headers=auth(student))
    body = r.json()
    assert body["total"] == 3 and len(body["items"]) == 2

    r = client.get("/courses", params={"search": "rational"}, headers=auth(student))
    assert r.json()["total"] == 3
    r = client.get("/courses", params={"grade": 12}, headers=auth(student))
    assert r.json()["total"] == 0


def test_missing_course_is_404(client, student):
    assert client.get("/courses/999", headers=auth(student)).status_code == 404
