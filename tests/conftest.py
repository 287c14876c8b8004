import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("JWT_REFRESH_SECRET_KEY", "test-refresh-secret-key")

from datetime import date, datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from db import init_db  # noqa: F401  registers every model on Base.metadata
from auth.dependencies import get_db
from auth.security import create_access_token, hash_password
from db.database import Base
from db.models.batches import Batch
from db.models.exams import Exam
from db.models.payments import Payment
from db.models.questions import Question
from db.models.users import User
from main import app


class FakeClock:
    def __init__(self, now=None):
        self.now = now or datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def clock():
    return FakeClock()


def make_exam(db, correct_options, exam_name="Weekly Test 1", duration_minutes=180, conducted=None, is_active=True):
    exam = Exam(
        exam_name=exam_name,
        duration_minutes=duration_minutes,
        total_questions=len(correct_options),
        is_active=is_active,
        conducted_date=conducted or date(2026, 3, 1),
    )
    db.add(exam)
    db.flush()

    subjects = ["maths", "physics", "chemistry"]
    questions = []
    for number, correct in enumerate(correct_options, start=1):
        question = Question(
            exam_id=exam.id,
            question_number=number,
            subject=subjects[(number - 1) % 3],
            question_text=f"Question {number}?",
            option_a=f"{number}-a",
            option_b=f"{number}-b",
            option_c=f"{number}-c",
            option_d=f"{number}-d",
            correct_option=correct,
        )
        db.add(question)
        questions.append(question)

    db.commit()
    for question in questions:
        db.refresh(question)
    db.refresh(exam)
    return exam, questions


def make_user(db, email="student@example.com", password="secret123", role="student", **fields):
    user = User(
        email=email,
        student_name=fields.pop("student_name", "Asha"),
        phone=fields.pop("phone", "9000000000"),
        password_hash=hash_password(password) if password else None,
        role=role,
        account_status=fields.pop("account_status", "active"),
        **fields,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_batch(db, batch_name="rankers", cost=4999, duration_months=12):
    batch = Batch(batch_name=batch_name, cost=cost, duration_months=duration_months, is_active=True)
    db.add(batch)
    db.commit()
    db.refresh(batch)
    return batch


def make_payment(db, batch, email="new@example.com", status="success"):
    payment = Payment(
        student_name="Ravi",
        email=email,
        phone="9111111111",
        batch_id=batch.id,
        amount_paid=batch.cost,
        payment_status=status,
        access_granted=False,
    )
    db.add(payment)
    db.commit()
    db.refresh(payment)
    return payment


def auth_headers(user):
    token = create_access_token({"sub": str(user.id), "role": user.role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def student(db):
    return make_user(db)


@pytest.fixture
def admin(db):
    return make_user(db, email="admin@example.com", role="admin")
