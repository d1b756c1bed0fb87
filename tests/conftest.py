import os
import tempfile
import uuid

# configure before the app (and its engine) is imported
_TMP = tempfile.mkdtemp(prefix="tutorhub-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP, 'test.db')}"
os.environ["JWT_SECRET"] = "test-secret-for-the-suite-only-0123456789"
os.environ["ADMIN_TOKEN"] = "ops-secret"
os.environ.pop("OPENAI_API_KEY", None)

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from ai.providers import reset_providers  # noqa: E402
from db import Base, SessionLocal, engine  # noqa: E402
from deps.auth import create_access_token, hash_password  # noqa: E402
from main import app  # noqa: E402
from models import Course, Question, Quiz, User, enrollments  # noqa: E402

PASSWORD = "secret123"

_client = TestClient(app)


@pytest.fixture(autouse=True)
def fresh_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    reset_providers()
    yield


@pytest.fixture
def client():
    return _client


@pytest.fixture
def db():
    with SessionLocal() as session:
        yield session


def make_user(role: str = "student", email: str | None = None, status: str = "active") -> User:
    with SessionLocal() as db:
        user = User(
            name=f"{role.title()} User",
            email=email or f"{role}-{uuid.uuid4().hex[:8]}@example.com",
            password_hash=hash_password(PASSWORD),
            role=role,
            status=status,
        )
        db.add(user)
        db.commit()
        return user


def auth(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user)}"}


@pytest.fixture
def admin():
    return make_user("admin")


@pytest.fixture
def tutor():
    return make_user("tutor")


@pytest.fixture
def student():
    return make_user("student")


def make_course(owner: User, topics=("Fractions", "Decimals"), students=()) -> Course:
    with SessionLocal() as db:
        course = Course(
            title="Number Sense",
            description="Working with rational numbers",
            subject="Mathematics",
            grade=7,
            chapters=[
                {
                    "name": "Rational numbers",
                    "topics": list(topics),
                    "learning_objectives": ["Compare and order rational numbers"],
                }
            ],
            topics=list(topics),
            status="published",
            created_by=owner.id,
        )
        db.add(course)
        db.flush()
        for s in students:
            db.execute(enrollments.insert().values(user_id=s.id, course_id=course.id))
        db.commit()
        return course


def make_question(course_id: int, topic: str = "Fractions", **overrides) -> Question:
    data = dict(
        course_id=course_id,
        topic=topic,
        difficulty="medium",
        type="mcq-single",
        text=f"Which value is equal to one half? ({uuid.uuid4().hex[:6]})",
        options=[
            {"id": "a", "text": "0.25", "is_correct": False, "explanation": ""},
            {"id": "b", "text": "0.5", "is_correct": True, "explanation": ""},
            {"id": "c", "text": "0.75", "is_correct": False, "explanation": ""},
        ],
        correct_answer="0.5",
        explanation="One half is five tenths.",
        marks=1,
        negative_marks=0,
        is_active=True,
    )
    data.update(overrides)
    with SessionLocal() as db:
        q = Question(**data)
        db.add(q)
        db.commit()
        return q


def make_quiz(owner: User, course_id: int, total_questions: int = 3, **overrides) -> Quiz:
    settings = {
        "shuffle_questions": False,
        "shuffle_options": False,
        "negative_marking": False,
        "show_correct_answers": True,
        "show_explanations": True,
        "autosave_interval": 30,
    }
    settings.update(overrides.pop("settings", {}))
    data = dict(
        title="Fractions check",
        description="",
        course_id=course_id,
        difficulty="medium",
        created_by=owner.id,
        duration=10,
        total_marks=float(total_questions),
        passing_percentage=50,
        attempts_allowed=2,
        question_config={"total_questions": total_questions},
        settings=settings,
        instructions=[],
        status="published",
    )
    data.update(overrides)
    with SessionLocal() as db:
        quiz = Quiz(**data)
        db.add(quiz)
        db.commit()
        return quiz
