from collections.abc import AsyncGenerator
from datetime import date
from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from src.core.database.base import Base
from src.core.database import get_db, get_session_factory
from src.core.documents import DocumentNumberGenerator, DocumentPrefix
from src.main import app
from src.modules.students.models import StudentBillingProfile, StudentStatus

# In-memory SQLite; StaticPool keeps one connection so every session sees the same database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

test_engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=StaticPool)
test_async_session = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


@pytest.fixture(autouse=True)
async def setup_database():
    """Create tables before each test and drop after."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get test database session."""
    async with test_async_session() as session:
        yield session


@pytest.fixture
def session_factory() -> async_sessionmaker[AsyncSession]:
    """Factory for batch jobs that open one session per student."""
    return test_async_session


@pytest.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Get test HTTP client with overridden database dependencies."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: test_async_session

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def make_profile(db_session: AsyncSession):
    """Insert a billing profile directly, without the enrollment invoice."""

    async def _make(
        student_id: str,
        student_name: str | None = None,
        base_monthly_fee: Decimal | None = Decimal("15000.00"),
        configuration_date: date | None = None,
        status: StudentStatus = StudentStatus.ACTIVE,
        room_number: str | None = "101",
        bed_number: str | None = "A",
    ) -> StudentBillingProfile:
        profile = StudentBillingProfile(
            student_id=student_id,
            student_name=student_name or f"Student {student_id}",
            room_number=room_number,
            bed_number=bed_number,
            base_monthly_fee=base_monthly_fee,
            laundry_fee=Decimal("0.00"),
            food_fee=Decimal("0.00"),
            configuration_date=configuration_date,
            status=status.value,
            is_checked_out=status == StudentStatus.INACTIVE,
        )
        db_session.add(profile)
        await db_session.commit()
        return profile

    return _make


@pytest.fixture
def numbering_calls(monkeypatch: pytest.MonkeyPatch) -> list[DocumentPrefix]:
    """Prefixes handed to DocumentNumberGenerator.next_number, in call order."""
    calls: list[DocumentPrefix] = []
    next_number = DocumentNumberGenerator.next_number

    async def recording(self, prefix, on_date=None):
        calls.append(DocumentPrefix(str(prefix)))
        return await next_number(self, prefix, on_date=on_date)

    monkeypatch.setattr(DocumentNumberGenerator, "next_number", recording)
    return calls
