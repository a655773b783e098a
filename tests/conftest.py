from collections.abc import AsyncGenerator
from datetime import date

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from fee_ledger.core.database.base import Base
from fee_ledger.core.database import get_db
from fee_ledger.main import app
from fee_ledger.modules.academics.models import AcademicYear, SchoolClass
from fee_ledger.modules.accounting.models import Account, AccountSubtype, AccountType
from fee_ledger.modules.students.models import Student, StudentAcademicRecord

# In-memory SQLite for speed
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

TEST_SCHOOL_ID = 1


def _enable_savepoints(engine: AsyncEngine) -> None:
    """Let SQLAlchemy emit BEGIN itself so SAVEPOINT works with pysqlite/aiosqlite."""

    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")


@pytest.fixture
async def test_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Fresh database per test, tables created up front."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    _enable_savepoints(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def db_session(test_engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """Get test database session."""
    test_async_session = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with test_async_session() as session:
        yield session


@pytest.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Get test HTTP client scoped to the test school."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"X-School-ID": str(TEST_SCHOOL_ID)},
    ) as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
async def chart_of_accounts(db_session: AsyncSession) -> dict:
    """Cash, Fees Receivable and Fee Income accounts for the test school."""
    accounts = {
        "cash": Account(
            school_id=TEST_SCHOOL_ID,
            code="1000",
            name="Cash",
            account_type=AccountType.ASSET.value,
            subtype=AccountSubtype.CASH.value,
        ),
        "receivable": Account(
            school_id=TEST_SCHOOL_ID,
            code="1200",
            name="Fees Receivable",
            account_type=AccountType.ASSET.value,
            subtype=AccountSubtype.RECEIVABLE.value,
        ),
        "income": Account(
            school_id=TEST_SCHOOL_ID,
            code="4000",
            name="Fee Income",
            account_type=AccountType.INCOME.value,
            subtype=AccountSubtype.OPERATING_INCOME.value,
        ),
    }
    db_session.add_all(accounts.values())
    await db_session.commit()
    return accounts


@pytest.fixture
async def school_data(db_session: AsyncSession) -> dict:
    """Academic year, one class and one enrolled student."""
    academic_year = AcademicYear(
        school_id=TEST_SCHOOL_ID,
        name="2026-27",
        start_date=date(2026, 4, 1),
        end_date=date(2027, 3, 31),
        is_current=True,
    )
    school_class = SchoolClass(school_id=TEST_SCHOOL_ID, name="Grade 5")
    db_session.add_all([academic_year, school_class])
    await db_session.flush()

    student = Student(school_id=TEST_SCHOOL_ID, first_name="Asha", last_name="Rao")
    db_session.add(student)
    await db_session.flush()

    record = StudentAcademicRecord(
        school_id=TEST_SCHOOL_ID,
        student_id=student.id,
        academic_year_id=academic_year.id,
        class_id=school_class.id,
    )
    db_session.add(record)
    await db_session.commit()

    return {
        "academic_year": academic_year,
        "school_class": school_class,
        "student": student,
        "record": record,
    }
