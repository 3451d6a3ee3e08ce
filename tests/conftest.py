"""
Pytest fixtures for operations hub tests.

Provides:
- Isolated database session (tables created and dropped per test)
- Users, client profile and task board fixtures
- Fake call provider and AI provider
"""

import os
import uuid
from datetime import datetime, timezone
from typing import AsyncGenerator, Generator

from cryptography.fernet import Fernet

# Configure settings before the package is imported.
os.environ["DATABASE_URL"] = os.environ.get("TEST_DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ["DATA_ENCRYPTION_KEY"] = Fernet.generate_key().decode()
os.environ["INTERNAL_SECRET"] = "test-internal-secret"
os.environ["OPENAI_API_KEY"] = ""
os.environ["MAILGUN_API_KEY"] = ""
os.environ["CTM_CONVERSION_WEBHOOK_URL"] = ""
os.environ["OPSHUB_DISABLE_SCHEDULER"] = "1"
os.environ["RATE_LIMIT_INTERNAL"] = "5"

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session

from opshub.db.base import Base
from opshub.db.enums import Role
from opshub.db.models import ClientProfile, TaskBoard, TaskGroup, TaskItem, User
from opshub.db.session import SessionLocal, engine
from opshub.services import task_events
from opshub.services.ai_provider import AIProvider, ChatResponse
from opshub.services.call_records import parse_call_timestamp
from opshub.services.ctm_client import CallProviderError, FetchResult


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """
    Creates a database session on freshly created tables.

    App code commits freely; the schema is dropped after each test.
    """
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def _bind_task_events(monkeypatch):
    monkeypatch.setattr(task_events, "session_factory", SessionLocal)


@pytest.fixture
def make_user(db: Session):
    """Factory for users; each call commits one row."""

    def _make(role: Role = Role.TEAM, email: str | None = None, **fields) -> User:
        user = User(
            email=email or f"user-{uuid.uuid4().hex[:8]}@example.com",
            role=role.value,
            **fields,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def admin_user(make_user) -> User:
    return make_user(Role.ADMIN, email="admin@example.com", first_name="Ada")


@pytest.fixture
def client_user(make_user) -> User:
    return make_user(Role.CLIENT, email="owner@roofing.example")


@pytest.fixture
def client_profile(db: Session, client_user: User) -> ClientProfile:
    profile = ClientProfile(
        user_id=client_user.id,
        business_name="Acme Roofing",
        ctm_account_id="12345",
        ctm_api_key="key-abc",
        ctm_api_secret="secret-xyz",
    )
    db.add(profile)
    db.commit()
    db.refresh(profile)
    return profile


@pytest.fixture
def task_board(db: Session) -> TaskBoard:
    board = TaskBoard(name="Operations")
    db.add(board)
    db.commit()
    db.refresh(board)
    return board


@pytest.fixture
def task_group(db: Session, task_board: TaskBoard) -> TaskGroup:
    group = TaskGroup(board_id=task_board.id, name="This week")
    db.add(group)
    db.commit()
    db.refresh(group)
    return group


@pytest.fixture
def task_item(db: Session, task_group: TaskGroup) -> TaskItem:
    item = TaskItem(group_id=task_group.id, name="Call back Jane", status="To Do")
    db.add(item)
    db.commit()
    db.refresh(item)
    return item


@pytest.fixture
async def worker_client() -> AsyncGenerator[AsyncClient, None]:
    """Unauthenticated client for the worker HTTP service."""
    from opshub.worker_service import app

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


# =============================================================================
# Fakes
# =============================================================================


class FakeCTMClient:
    """
    In-memory call provider.

    Posted sales are written back onto the stored records, so later fetches
    see them as provider ratings.
    """

    def __init__(self, calls: list[dict] | None = None, *, fail_fetch: bool = False, fail_post: bool = False):
        self.calls = list(calls or [])
        self.fail_fetch = fail_fetch
        self.fail_post = fail_post
        self.fetch_windows: list[tuple] = []
        self.posted: list[dict] = []

    def factory(self, credentials):
        return self

    async def fetch_calls(self, *, start_date, end_date, per_page=100, max_pages=0) -> FetchResult:
        self.fetch_windows.append((start_date, end_date))
        if self.fail_fetch:
            raise CallProviderError("CTM API Error (503): unavailable", status=503)
        result = FetchResult(start_date=start_date, end_date=end_date, pages_processed=1)
        for raw in self.calls:
            started_at, _ = parse_call_timestamp(raw)
            if started_at and (result.latest_timestamp is None or started_at > result.latest_timestamp):
                result.latest_timestamp = started_at
        result.calls = [dict(raw) for raw in self.calls]
        return result

    async def post_sale(self, call_id, *, score=5, conversion=1, value=0, sale_date=None) -> dict:
        self.posted.append({"call_id": call_id, "score": score, "conversion": conversion, "value": value})
        if self.fail_post:
            raise CallProviderError("CTM API Error (500): boom", status=500)
        for raw in self.calls:
            if str(raw.get("id")) == str(call_id):
                raw["sale"] = {"score": score}
        return {"ok": True}

    def set_score(self, call_id: str, score: int) -> None:
        for raw in self.calls:
            if str(raw.get("id")) == str(call_id):
                raw["sale"] = {"score": score}


class FakeAIProvider(AIProvider):
    """Answers with the category whose keyword appears in the prompt."""

    def __init__(self, categories: dict[str, str] | None = None, *, fail: bool = False):
        self.categories = categories or {}
        self.fail = fail
        self.prompts: list[str] = []

    async def chat(self, messages, model=None, temperature=0.7, max_tokens=800) -> ChatResponse:
        prompt = messages[-1].content
        self.prompts.append(prompt)
        if self.fail:
            raise RuntimeError("provider down")
        category = next(
            (value for keyword, value in self.categories.items() if keyword in prompt),
            "neutral",
        )
        content = f'{{"category":"{category}","summary":"Caller discussed {category} topics."}}'
        return ChatResponse(
            content=content,
            prompt_tokens=10,
            completion_tokens=10,
            total_tokens=20,
            model=model or "fake",
        )


def make_call(call_id: str, started_at: datetime, **fields) -> dict:
    """Provider call record with sensible defaults."""
    raw = {
        "id": call_id,
        "unix_time": int(started_at.replace(tzinfo=started_at.tzinfo or timezone.utc).timestamp()),
        "direction": "inbound",
        "duration": 95,
        "status": "answered",
        "caller": {"name": f"Caller {call_id}", "number": f"+1555{sum(map(ord, call_id)) % 10_000_000:07d}"},
        "tracking_number": "+15559990000",
        "tracking_number_name": "Google Ads",
    }
    raw.update(fields)
    return raw


@pytest.fixture
def fake_ctm() -> FakeCTMClient:
    return FakeCTMClient()


@pytest.fixture
def fake_ai() -> FakeAIProvider:
    return FakeAIProvider()


@pytest.fixture
def call_factory():
    return make_call
