"""Pytest fixtures for Tally tests."""

from __future__ import annotations

from datetime import date
from typing import Any, AsyncGenerator, Awaitable, Callable
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from tally.database import make_session_factory
from tally.models import Base, Client, Firm, PayRun, User
from tally.reconciliation.types import SourceType
from tally.services.artifact_store import LocalArtifactStore
from tally.services.import_service import ImportService
from tally.services.pay_run_service import PayRunService
from tally.services.permissions import ActorContext
from tally.services.reconciliation_service import ReconciliationService
from tally.services.review_service import ReviewService
from tally.services.state_machine import Role
from tests.sample_data import bank_rows, gl_rows, register_rows

# Use in-memory SQLite for tests (with async support)
TEST_DATABASE_URL = "sqlite+aiosqlite://"


# ============================================================================
# Database
# ============================================================================


@pytest.fixture
async def engine():
    """Create a fresh in-memory database per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
async def session(engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    session_factory = make_session_factory(engine)

    async with session_factory() as session:
        yield session
        await session.rollback()


# ============================================================================
# Firm, users and clients
# ============================================================================


@pytest.fixture
async def test_firm(session: AsyncSession) -> Firm:
    """Create a UK firm with default settings."""
    firm = Firm(firm_id=uuid4(), name="Ledger & Co", region="UK", defaults={})
    session.add(firm)
    await session.flush()
    return firm


async def _user(session: AsyncSession, firm: Firm, role: Role, email: str) -> User:
    user = User(user_id=uuid4(), firm_id=firm.firm_id, email=email, role=role.value)
    session.add(user)
    await session.flush()
    return user


@pytest.fixture
async def admin_user(session: AsyncSession, test_firm: Firm) -> User:
    return await _user(session, test_firm, Role.ADMIN, "admin@ledger.test")


@pytest.fixture
async def preparer_user(session: AsyncSession, test_firm: Firm) -> User:
    return await _user(session, test_firm, Role.PREPARER, "preparer@ledger.test")


@pytest.fixture
async def reviewer_user(session: AsyncSession, test_firm: Firm) -> User:
    return await _user(session, test_firm, Role.REVIEWER, "reviewer@ledger.test")


def _actor(user: User) -> ActorContext:
    return ActorContext(firm_id=user.firm_id, user_id=user.user_id, role=Role(user.role))


@pytest.fixture
def admin(admin_user: User) -> ActorContext:
    return _actor(admin_user)


@pytest.fixture
def preparer(preparer_user: User) -> ActorContext:
    return _actor(preparer_user)


@pytest.fixture
def reviewer(reviewer_user: User) -> ActorContext:
    return _actor(reviewer_user)


@pytest.fixture
async def test_client(session: AsyncSession, test_firm: Firm) -> Client:
    """Create a client of the test firm."""
    client = Client(client_id=uuid4(), firm_id=test_firm.firm_id, name="Acme Widgets Ltd", settings={})
    session.add(client)
    await session.flush()
    return client


# ============================================================================
# Pay runs
# ============================================================================


@pytest.fixture
async def test_pay_run(session: AsyncSession, preparer: ActorContext, test_client: Client) -> PayRun:
    """Create a DRAFT pay run for March."""
    return await PayRunService(session).create_pay_run(
        preparer, test_client.client_id, date(2026, 3, 1), date(2026, 3, 31)
    )


ImportSources = Callable[..., Awaitable[dict[SourceType, Any]]]


@pytest.fixture
def import_sources(session: AsyncSession, preparer: ActorContext) -> ImportSources:
    """Register and map imports for a pay run.

    Pass ``rows`` as ``{SourceType: rows}``; by default the matching register,
    bank and journal are imported.
    """

    async def _import(pay_run: PayRun, rows: dict[SourceType, list[dict[str, Any]]] | None = None):
        service = ImportService(session)
        if rows is None:
            rows = {
                SourceType.REGISTER: register_rows(),
                SourceType.BANK: bank_rows(),
                SourceType.GL: gl_rows(),
            }
        records = {}
        for source_type, source_rows in rows.items():
            record = await service.register_import(
                preparer,
                pay_run.pay_run_id,
                source_type,
                file_hash_sha256=f"{source_type.value.lower():0<64}"[:64],
                original_filename=f"{source_type.value.lower()}.csv",
            )
            records[source_type] = await service.apply_mapping(
                preparer, record.import_id, uuid4(), source_rows
            )
        return records

    return _import


@pytest.fixture
async def reconciled_pay_run(
    session: AsyncSession,
    preparer: ActorContext,
    test_pay_run: PayRun,
    import_sources: ImportSources,
) -> PayRun:
    """A pay run reconciled against matching sources (no exceptions)."""
    await import_sources(test_pay_run)
    await ReconciliationService(session).run_reconciliation(preparer, test_pay_run.pay_run_id)
    return test_pay_run


@pytest.fixture
def artifact_store(tmp_path) -> LocalArtifactStore:
    return LocalArtifactStore(
        root=tmp_path / "artifacts",
        base_url="https://files.tally.test/artifacts",
        secret="test-secret",
        ttl_seconds=600,
    )


@pytest.fixture
async def approved_pay_run(
    session: AsyncSession,
    admin: ActorContext,
    reviewer: ActorContext,
    reconciled_pay_run: PayRun,
) -> PayRun:
    """A reconciled pay run submitted by the admin and approved by the reviewer."""
    reviews = ReviewService(session)
    await reviews.submit_pay_run_for_review(admin, reconciled_pay_run.pay_run_id)
    await reviews.approve_pay_run(reviewer, reconciled_pay_run.pay_run_id, "Looks right")
    return reconciled_pay_run
