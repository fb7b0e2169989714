"""Shared test fixtures — in-memory database seeded with a small training catalogue."""

import os
from datetime import datetime
from types import SimpleNamespace

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Force test config BEFORE any app imports
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret-key-for-exports"
os.environ["EXPORT_PROCESSOR_ENABLED"] = "false"
os.environ["EXPORT_CLEANUP_INTERVAL"] = "0"

from traininghub.config import TrainingHubConfig
from traininghub.models import Application, Base, Course, User, UserProfile
from traininghub.utils.security import create_access_token

TEST_SECRET_KEY = os.environ["SECRET_KEY"]

SEED = SimpleNamespace(
    super_admin_id="00000000-0000-0000-0000-000000000001",
    admin_id="00000000-0000-0000-0000-000000000002",
    alice_id="00000000-0000-0000-0000-000000000003",
    bob_id="00000000-0000-0000-0000-000000000004",
    python_course_id="10000000-0000-0000-0000-000000000001",
    leadership_course_id="10000000-0000-0000-0000-000000000002",
    legacy_course_id="10000000-0000-0000-0000-000000000003",
    # Applications; created_at dates noted per id
    app_alice_python="20000000-0000-0000-0000-000000000001",  # 2024-02-10, approved
    app_bob_leadership="20000000-0000-0000-0000-000000000002",  # 2024-03-05, submitted
    app_alice_leadership="20000000-0000-0000-0000-000000000003",  # 2024-05-01, rejected
    app_bob_legacy="20000000-0000-0000-0000-000000000004",  # 2024-01-20, inactive course
    app_alice_deleted="20000000-0000-0000-0000-000000000005",  # 2024-02-15, soft-deleted
)


async def seed_training_data(factory) -> None:
    """Insert users, profiles, courses and applications used across tests."""
    async with factory() as session:
        people = [
            (SEED.super_admin_id, "root@example.com", "Sara Root", "EMP-001", "IT", "HQ", "super_admin", None, 15),
            (SEED.admin_id, "admin@example.com", "Adam Admin", "EMP-002", "HR", "HQ", "admin", None, 10),
            (SEED.alice_id, "alice@example.com", "Alice Applicant", "EMP-100", "Engineering", "Operations", "applicant", "Mona Manager", 4),
            (SEED.bob_id, "bob@example.com", "Bob Builder", "EMP-200", "Finance", "Treasury", "applicant", "Fred Finance", 8),
        ]
        for user_id, email, name, emp_id, dept, sub_org, role, manager, years in people:
            session.add(User(id=user_id, email=email, created_at=datetime(2023, 6, 1)))
            session.add(
                UserProfile(
                    id=user_id,
                    full_name=name,
                    employee_id=emp_id,
                    department=dept,
                    sub_organization=sub_org,
                    job_title="Engineer" if dept == "Engineering" else "Analyst",
                    experience_years=years,
                    manager_name=manager,
                    manager_email=f"{manager.split()[0].lower()}@example.com" if manager else None,
                    role=role,
                    created_at=datetime(2023, 6, 1),
                )
            )

        session.add_all([
            Course(
                id=SEED.python_course_id, title="Python Fundamentals", category="Technology",
                duration="5 days", format="online", level="beginner", price=100.0,
                is_active=True, is_tamkeen_support=True, created_at=datetime(2023, 9, 1),
            ),
            Course(
                id=SEED.leadership_course_id, title="Leadership Essentials", category="Management",
                duration="3 days", format="classroom", level="advanced", price=400.0,
                is_active=True, is_tamkeen_support=False, created_at=datetime(2023, 9, 1),
            ),
            Course(
                id=SEED.legacy_course_id, title="Legacy Systems", category="Technology",
                duration="2 days", format="classroom", level="intermediate", price=50.0,
                is_active=False, is_tamkeen_support=False, created_at=datetime(2022, 1, 1),
            ),
        ])

        session.add_all([
            Application(
                id=SEED.app_alice_python, applicant_id=SEED.alice_id, course_id=SEED.python_course_id,
                status="approved", priority="high", submitted_at=datetime(2024, 2, 10, 9, 0),
                reviewed_at=datetime(2024, 2, 12, 14, 0), reviewed_by=SEED.admin_id,
                notes="Needed for the data platform migration", created_at=datetime(2024, 2, 10, 9, 0),
            ),
            Application(
                id=SEED.app_bob_leadership, applicant_id=SEED.bob_id, course_id=SEED.leadership_course_id,
                status="submitted", priority="medium", submitted_at=datetime(2024, 3, 5, 11, 30),
                created_at=datetime(2024, 3, 5, 11, 30),
            ),
            Application(
                id=SEED.app_alice_leadership, applicant_id=SEED.alice_id, course_id=SEED.leadership_course_id,
                status="rejected", priority="low", submitted_at=datetime(2024, 5, 1, 8, 0),
                reviewed_at=datetime(2024, 5, 3, 8, 0), reviewed_by=SEED.super_admin_id,
                created_at=datetime(2024, 5, 1, 8, 0),
            ),
            Application(
                id=SEED.app_bob_legacy, applicant_id=SEED.bob_id, course_id=SEED.legacy_course_id,
                status="submitted", priority="medium", submitted_at=datetime(2024, 1, 20, 16, 0),
                created_at=datetime(2024, 1, 20, 16, 0),
            ),
            Application(
                id=SEED.app_alice_deleted, applicant_id=SEED.alice_id, course_id=SEED.python_course_id,
                status="cancelled", priority="low", submitted_at=datetime(2024, 2, 15, 10, 0),
                created_at=datetime(2024, 2, 15, 10, 0), deleted_at=datetime(2024, 2, 20, 10, 0),
            ),
        ])
        await session.commit()


@pytest.fixture
def seed():
    """Ids of the seeded records."""
    return SEED


@pytest_asyncio.fixture
async def db_engine():
    """Fresh in-memory database per test (shared connection via StaticPool)."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine):
    return async_sessionmaker(db_engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def seeded_factory(session_factory):
    """Session factory over a database holding the seed catalogue."""
    await seed_training_data(session_factory)
    return session_factory


@pytest_asyncio.fixture
async def file_session_factory(tmp_path):
    """Seeded SQLite file database; each session gets its own connection.

    Used where several sessions run concurrently (processor job tasks).
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'traininghub-test.db'}",
        echo=False,
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, expire_on_commit=False)
    await seed_training_data(factory)
    yield factory
    await engine.dispose()


@pytest.fixture
def export_config(tmp_path):
    """Config with fast timings and a temporary export directory."""
    return TrainingHubConfig(
        export_dir=str(tmp_path / "exports"),
        export_poll_interval=0.05,
        export_connect_timeout=1.0,
        export_retry_backoff_base=0.01,
        export_drain_check_interval=0.01,
        export_collection_timeout=5.0,
    )


@pytest.fixture
def auth_headers():
    """Build bearer headers for a user id and role."""
    def _headers(user_id: str, role: str) -> dict:
        token = create_access_token({"sub": user_id, "role": role}, TEST_SECRET_KEY)
        return {"Authorization": f"Bearer {token}"}
    return _headers
