import pathlib
import sys
from datetime import datetime, timedelta, timezone

import jwt
import pytest
from fastapi.testclient import TestClient

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from achievement_tracker.content_store import InMemoryContentStore
from achievement_tracker.directory import InMemoryDirectory
from achievement_tracker.lifecycle import AchievementLifecycle
from achievement_tracker.main import create_app
from achievement_tracker.models import Actor
from achievement_tracker.repositories import InMemoryReferencesRepository
from achievement_tracker.scope import ScopeResolver

JWT_SECRET = "jwt_test_secret_for_achievement_tracker"

ADMIN = Actor(subject="u_admin")
STUDENT = Actor(subject="u_student")
OTHER_STUDENT = Actor(subject="u_student_other")
ADVISOR_A = Actor(subject="u_advisor_a")
ADVISOR_B = Actor(subject="u_advisor_b")
STAFF = Actor(subject="u_staff")
GUEST = Actor(subject="u_guest")


def issue_token(*, subject: str, secret: str = JWT_SECRET, ttl_minutes: int = 30, **extra) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": subject,
        "exp": int((now + timedelta(minutes=ttl_minutes)).timestamp()),
        "iat": int(now.timestamp()),
        "iss": "test-issuer",
        "aud": "test-audience",
    }
    payload.update(extra)
    return jwt.encode(payload, secret, algorithm="HS256")


def academic_payload(**overrides) -> dict:
    payload = {
        "category": "academic",
        "title": "Dean's list",
        "description": "Semester GPA award",
        "details": {"score": 3.9},
        "tags": ["gpa"],
    }
    payload.update(overrides)
    return payload


class AuthenticatedClient:
    def __init__(self, client: TestClient, *, jwt_secret: str):
        self._client = client
        self._jwt_secret = jwt_secret

    def request(self, method: str, url: str, *, actor: Actor | None = None, **kwargs):
        headers = dict(kwargs.pop("headers", {}) or {})
        if url.startswith("/api/v1/") and "Authorization" not in headers and actor is not None:
            token = issue_token(subject=actor.subject, secret=self._jwt_secret)
            headers["Authorization"] = f"Bearer {token}"
        return self._client.request(method, url, headers=headers, **kwargs)

    def __getattr__(self, name: str):
        return getattr(self._client, name)

    def get(self, url: str, **kwargs):
        return self.request("GET", url, **kwargs)

    def post(self, url: str, **kwargs):
        return self.request("POST", url, **kwargs)

    def put(self, url: str, **kwargs):
        return self.request("PUT", url, **kwargs)

    def delete(self, url: str, **kwargs):
        return self.request("DELETE", url, **kwargs)


@pytest.fixture(autouse=True)
def reset_env(monkeypatch: pytest.MonkeyPatch):
    for name in (
        "AT_REFERENCE_BACKEND",
        "AT_CONTENT_BACKEND",
        "AT_DIRECTORY_BACKEND",
        "AT_REQUIRE_TRUESTACK",
        "POSTGRES_DSN",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("JWT_SHARED_SECRET", JWT_SECRET)
    monkeypatch.setenv("JWT_ISSUER", "test-issuer")
    monkeypatch.setenv("JWT_AUDIENCE", "test-audience")
    monkeypatch.setenv("JWT_REQUIRED_CLAIMS", "sub,exp")
    yield


@pytest.fixture
def directory() -> InMemoryDirectory:
    d = InMemoryDirectory()
    d.add_user(user_id=ADMIN.subject, role="admin")
    d.add_user(user_id=STUDENT.subject, role="student")
    d.add_user(user_id=OTHER_STUDENT.subject, role="Mahasiswa")
    d.add_user(user_id=ADVISOR_A.subject, role="advisor")
    d.add_user(user_id=ADVISOR_B.subject, role="Dosen Wali")
    d.add_user(user_id=STAFF.subject, role="staff")
    d.add_user(user_id=GUEST.subject, role="guest")
    d.add_reviewer(reviewer_id="lect_a", user_id=ADVISOR_A.subject)
    d.add_reviewer(reviewer_id="lect_b", user_id=ADVISOR_B.subject)
    d.add_student(student_id="stu_1", user_id=STUDENT.subject, advisor_id="lect_b")
    d.add_student(student_id="stu_2", user_id=OTHER_STUDENT.subject, advisor_id="lect_a")
    return d


@pytest.fixture
def content_store() -> InMemoryContentStore:
    return InMemoryContentStore()


@pytest.fixture
def references(directory: InMemoryDirectory) -> InMemoryReferencesRepository:
    return InMemoryReferencesRepository(student_directory=directory)


@pytest.fixture
def lifecycle(directory, content_store, references) -> AchievementLifecycle:
    return AchievementLifecycle(
        content_store=content_store,
        references=references,
        identity=directory,
        students=directory,
        scopes=ScopeResolver(identity=directory, reviewers=directory),
    )


@pytest.fixture
def client(lifecycle: AchievementLifecycle) -> AuthenticatedClient:
    app = create_app(lifecycle=lifecycle)
    return AuthenticatedClient(TestClient(app), jwt_secret=JWT_SECRET)
