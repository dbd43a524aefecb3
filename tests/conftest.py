"""Root conftest: in-memory backends, captured email and user/course factories."""

import os
import re

# before any edemy import: settings are read at import time
os.environ.setdefault("JWT_SECRET", "test-secret-not-for-production")
os.environ["AUTH_RATE_LIMIT"] = "1000"
os.environ["SMTP_HOST"] = ""
os.environ["NEO4J_URI"] = ""
os.environ["STRIPE_SECRET_KEY"] = ""
os.environ["PAYPAL_CLIENT_ID"] = ""
os.environ["COUPON_CODES"] = "WELCOME10:10,FREEBIE:100"

import fakeredis
import mongomock
import pytest
from fastapi.testclient import TestClient

from edemy.config import database
from edemy.repositories.user_repository import UserRepository, new_user_document
from edemy.services import email_service
from edemy.services.auth_service import AuthService
from edemy.services.course_service import CourseService
from edemy.utils.security import hash_password

from main import app

PASSWORD = "Secret123!"


@pytest.fixture(autouse=True)
def backends():
    """Fresh mongomock + fakeredis for every test; Neo4j disabled."""
    database.use_clients(mongomock.MongoClient(), fakeredis.FakeRedis(decode_responses=True), None)
    database.ensure_indexes()
    yield


@pytest.fixture(autouse=True)
def outbox(monkeypatch):
    """Every email the app would send, as dicts {to, subject, body}."""
    sent = []

    def fake_send(to, subject, body, html=None):
        sent.append({"to": to, "subject": subject, "body": body})

    monkeypatch.setattr(email_service, "send_email", fake_send)
    return sent


def last_otp(outbox, to):
    for mail in reversed(outbox):
        if mail["to"] == to:
            match = re.search(r"\b(\d{6})\b", mail["body"])
            if match:
                return match.group(1)
    raise AssertionError(f"no OTP mailed to {to}")


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def make_user():
    """Factory: verified user in Mongo plus a live session. Returns (user, headers)."""

    def _make(username="alice", role="student", **overrides):
        doc = new_user_document(username, f"{username}@example.com", hash_password(PASSWORD))
        doc["verification"]["isEmailVerified"] = True
        doc["role"] = role
        doc.update(overrides)
        user = UserRepository().create(doc)
        token = AuthService().issue_session(user)["token"]
        return user, {"Authorization": f"Bearer {token}"}

    return _make


@pytest.fixture
def student(make_user):
    return make_user("student1")


@pytest.fixture
def instructor(make_user):
    return make_user("teacher1", role="instructor")


@pytest.fixture
def admin(make_user):
    return make_user("admin1", role="admin")


def course_payload(**overrides):
    data = {
        "title": "Python for Data Science",
        "description": "Learn pandas, numpy and plotting from scratch",
        "category": "Data Science",
        "level": "Beginner",
        "price": 50.0,
        "status": "published",
        "sections": [
            {
                "title": "Basics",
                "lectures": [
                    {"title": "Intro", "duration": 300, "isPreview": True, "videoUrl": "https://cdn/intro.mp4"},
                    {"title": "Setup", "duration": 600, "videoUrl": "https://cdn/setup.mp4"},
                ],
            },
        ],
    }
    data.update(overrides)
    return data


@pytest.fixture
def make_course(instructor):
    """Factory: course owned by `instructor` (published, 2 lectures by default)."""

    def _make(owner=None, **overrides):
        user = owner or instructor[0]
        return CourseService().create(user, course_payload(**overrides))

    return _make
