"""
SmartNotes Backend — Test Configuration (conftest.py)
=======================================================

What:  Shared pytest fixtures for the entire test suite.
How:   Environment variables are set before anything from `smartnotes` is imported,
       so the settings singleton, the engine and FileService pick up test values.

Fixture Hierarchy:
    Function-scoped (created fresh for each test):
    ├── mock_db_session: AsyncMock session for pure unit tests
    ├── db_engine / db_session: in-memory SQLite built from the ORM metadata
    ├── make_user: creates an identity + profile row
    ├── make_note: inserts a note owned by a given user
    ├── mock_llm: LLMService double with AsyncMock methods
    ├── temp_storage: temporary directory for file operations
    ├── sample_audio_bytes / sample_image_bytes
    ├── test_client: HTTPX AsyncClient wired to the app and the test database
    └── live_client: synchronous TestClient for WebSocket tests
"""

import os
import tempfile

# Override settings for testing BEFORE any smartnotes imports
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["GEMINI_API_KEY"] = "test-key-not-real"
os.environ["STORAGE_ROOT"] = tempfile.mkdtemp(prefix="smartnotes_test_")
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["AUTH_HASH_ITERATIONS"] = "1000"

import uuid
from typing import Optional
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import smartnotes.models  # noqa: F401
from smartnotes.database import Base, utcnow
from smartnotes.models.note import Note
from smartnotes.models.user import AuthUser, User
from smartnotes.services.auth_service import hash_password


# ══════════════════════════════════════════════════════════════════════════
# Database Fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def mock_db_session():
    """
    A MagicMock that simulates AsyncSession behavior.

    Usage:
        mock_db_session.execute.side_effect = SQLAlchemyError("boom")
    """
    session = AsyncMock()
    session.execute = AsyncMock()
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.close = AsyncMock()
    session.get = AsyncMock()
    session.add = MagicMock()
    return session


@pytest_asyncio.fixture
async def db_engine():
    """
    In-memory SQLite with every table created from Base.metadata.

    StaticPool keeps the single in-memory connection alive for the whole test.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine):
    factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        yield session


@pytest.fixture
def make_user(db_session):
    """Factory: `await make_user("ada@example.com", "Ada")` → User with a credential row."""

    async def _make(email: Optional[str] = None, name: str = "Test User", password: str = "password123"):
        email = email or f"user-{uuid.uuid4().hex[:8]}@example.com"
        identity = AuthUser(email=email, password_hash=hash_password(password, iterations=1000), full_name=name)
        db_session.add(identity)
        await db_session.flush()
        now = utcnow()
        user = User(id=identity.id, name=name, email=email, created_at=now, updated_at=now)
        db_session.add(user)
        await db_session.flush()
        return user

    return _make


@pytest.fixture
def make_note(db_session):
    """Factory: `await make_note(user, title="Groceries", tags=["home"])` → Note."""

    async def _make(owner: User, title: str = "Test note", content: str = "", **fields):
        now = utcnow()
        values = {"created_at": now, "updated_at": now, "tags": [], "keywords": []}
        values.update(fields)
        note = Note(user_id=owner.id, title=title, content=content, **values)
        db_session.add(note)
        await db_session.flush()
        return note

    return _make


# ══════════════════════════════════════════════════════════════════════════
# Service Doubles
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def mock_llm():
    """
    Stand-in for GeminiService. Every method is an AsyncMock with a plausible
    return value; tests override return_value / side_effect as needed.
    """
    llm = MagicMock()
    llm.transcribe_audio = AsyncMock(return_value=("Hello from the recording", 0.93))
    llm.summarize = AsyncMock(return_value="A short summary.")
    llm.extract_keywords = AsyncMock(return_value=["meeting", "budget"])
    llm.extract_action_items = AsyncMock(return_value=["Send the report"])
    llm.suggest_queries = AsyncMock(return_value=["meeting notes", "meeting agenda"])
    llm.embed = AsyncMock(return_value=[[1.0, 0.0]])
    llm.health_check = AsyncMock(return_value=True)
    return llm


# ══════════════════════════════════════════════════════════════════════════
# Files
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def temp_storage(tmp_path):
    storage_dir = tmp_path / "storage"
    storage_dir.mkdir()
    return str(storage_dir)


@pytest.fixture
def sample_audio_bytes():
    """An ID3 header followed by padding: enough for extension/size checks."""
    return b"ID3\x03\x00\x00\x00\x00\x00\x0f" + b"\x00" * 256


@pytest.fixture
def sample_image_bytes():
    """Minimal JPEG: Start of Image (FFD8) + JFIF marker + End of Image (FFD9)."""
    return (
        b'\xff\xd8\xff\xe0\x00\x10JFIF\x00\x01\x01\x00\x00\x01\x00\x01\x00\x00'
        b'\xff\xd9'
    )


# ══════════════════════════════════════════════════════════════════════════
# API Client
# ══════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def test_client(db_engine):
    """
    HTTPX AsyncClient talking to the FastAPI app through ASGITransport.

    get_db_session is overridden so every request commits into the test engine.

    Usage:
        async def test_health(test_client):
            response = await test_client.get("/health")
    """
    from smartnotes.database import get_db_session
    from smartnotes.main import app

    factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

    async def override_db_session():
        async with factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db_session] = override_db_session
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def signup(test_client):
    """Factory: `headers = await signup("ada@example.com")` → Authorization headers."""

    async def _signup(email: Optional[str] = None, password: str = "password123", full_name: str = "Test User"):
        email = email or f"user-{uuid.uuid4().hex[:8]}@example.com"
        response = await test_client.post(
            "/api/auth/signup",
            json={"email": email, "password": password, "full_name": full_name},
        )
        assert response.status_code == 201, response.text
        return {"Authorization": f"Bearer {response.json()['access_token']}"}

    return _signup


@pytest.fixture
def live_client():
    """
    Synchronous TestClient for tests that hold a WebSocket open.

    HTTP calls and sockets run on the client's single portal loop, so the
    realtime hub's queues are only ever touched from that loop. The database
    is a dedicated in-memory SQLite created on the same loop; the live route's
    own session factory is pointed at it as well.

    Usage:
        def test_stream(live_client):
            with live_client.websocket_connect(url) as ws: ...
    """
    from smartnotes.database import get_db_session
    from smartnotes.main import app

    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def create_schema():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def override_db_session():
        async with factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db_session] = override_db_session
    with patch("smartnotes.routes.collaboration.async_session_factory", factory), TestClient(app) as client:
        client.portal.call(create_schema)
        yield client
        client.portal.call(engine.dispose)
    app.dependency_overrides.clear()
