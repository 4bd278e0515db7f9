"""
Pytest fixtures for the royalty engine test suite.

Provides:
- An in-memory SQLite database per test (all tables, immutability listeners)
- Deterministic clock and engine settings
- Kernel services wired to the test session
- A catalog builder for creators, assets, ownerships, licenses and usage
- JSON log capture

Environment Variables:
- ROYALTY_TEST_DATABASE_URL: run against another database (e.g. PostgreSQL)
  instead of in-memory SQLite.  The schema is dropped and recreated per test.
"""

import json
import logging
import os
from dataclasses import dataclass
from datetime import date, datetime, timezone
from io import StringIO
from uuid import UUID, uuid4

import pytest
from sqlalchemy.orm import Session, sessionmaker

from royalty_kernel.db.engine import build_engine, create_tables, drop_tables
from royalty_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from royalty_kernel.domain.access import StaticRoleResolver
from royalty_kernel.domain.clock import DeterministicClock
from royalty_kernel.domain.settings import EngineSettings
from royalty_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from royalty_kernel.models.catalog import (
    Creator,
    IPAsset,
    IPOwnership,
    License,
    LicenseRevenueEvent,
    LicenseStatus,
    LicenseType,
)
from royalty_kernel.services.auditor_service import AuditorService
from royalty_kernel.services.calculation_service import CalculationService
from royalty_kernel.services.rollback_service import RollbackService
from royalty_kernel.services.run_lifecycle_service import RunLifecycleService
from royalty_kernel.services.statement_service import StatementService
from royalty_kernel.services.validation_reporter import ValidationReporter

# Actors used across the suite
ADMIN_ID = UUID("00000000-0000-4000-8000-00000000a001")
REVIEWER_ID = UUID("00000000-0000-4000-8000-00000000b001")

JAN_1 = date(2026, 1, 1)
FEB_1 = date(2026, 2, 1)
MAR_1 = date(2026, 3, 1)
APR_1 = date(2026, 4, 1)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture royalty_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, lifecycle):
            lifecycle.open_run(...)
            logs = captured_logs()
            assert any(r["message"] == "run_opened" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("royalty_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _immutability_listeners():
    """ORM immutability listeners stay registered for the whole suite."""
    register_immutability_listeners()
    yield
    unregister_immutability_listeners()


@pytest.fixture
def db_engine():
    """Fresh database per test."""
    url = os.environ.get("ROYALTY_TEST_DATABASE_URL", "sqlite://")
    eng = build_engine(url)
    if url != "sqlite://":
        drop_tables(eng)
    create_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(db_engine) -> sessionmaker[Session]:
    return sessionmaker(bind=db_engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory):
    """
    Session for kernel-level tests.  Services only flush; nothing commits.

    Do not combine with RoyaltyEngine in one test: on in-memory SQLite every
    session shares a single connection.
    """
    sess = session_factory()
    yield sess
    sess.rollback()
    sess.close()


# =============================================================================
# Clock, settings, actors
# =============================================================================


@pytest.fixture
def clock() -> DeterministicClock:
    return DeterministicClock(datetime(2026, 3, 2, 9, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def settings() -> EngineSettings:
    return EngineSettings()


@pytest.fixture
def role_resolver() -> StaticRoleResolver:
    return StaticRoleResolver(frozenset({ADMIN_ID}))


# =============================================================================
# Kernel services
# =============================================================================


@pytest.fixture
def auditor(session, clock) -> AuditorService:
    return AuditorService(session, clock)


@pytest.fixture
def lifecycle(session, auditor, clock) -> RunLifecycleService:
    return RunLifecycleService(session, auditor, clock)


@pytest.fixture
def calculation(session, lifecycle, clock, settings) -> CalculationService:
    return CalculationService(session, lifecycle, clock, settings)


@pytest.fixture
def reporter(session, settings) -> ValidationReporter:
    return ValidationReporter(session, settings)


@pytest.fixture
def rollback_service(session, auditor, lifecycle, clock, settings, role_resolver) -> RollbackService:
    return RollbackService(session, auditor, lifecycle, clock, settings, role_resolver)


@pytest.fixture
def statement_service(session, auditor, clock, role_resolver, settings) -> StatementService:
    return StatementService(session, auditor, clock, role_resolver, settings)


# =============================================================================
# Catalog builder
# =============================================================================


class CatalogBuilder:
    """Writes read-only catalog rows the way the upstream catalog would."""

    def __init__(self, session: Session):
        self.session = session

    def _add(self, obj):
        self.session.add(obj)
        self.session.flush()
        return obj

    def creator(
        self,
        name: str = "Creator",
        minimum_payout_cents: int | None = None,
        opening_carryover_cents: int = 0,
        creator_id: UUID | None = None,
    ) -> UUID:
        return self._add(
            Creator(
                id=creator_id or uuid4(),
                name=name,
                minimum_payout_cents=minimum_payout_cents,
                opening_carryover_cents=opening_carryover_cents,
            )
        ).id

    def asset(self, title: str = "Asset") -> UUID:
        return self._add(IPAsset(title=title)).id

    def ownership(
        self,
        asset_id: UUID,
        creator_id: UUID,
        share_bps: int,
        start_date: date = date(2020, 1, 1),
        end_date: date | None = None,
    ) -> UUID:
        return self._add(
            IPOwnership(
                asset_id=asset_id,
                creator_id=creator_id,
                share_bps=share_bps,
                start_date=start_date,
                end_date=end_date,
            )
        ).id

    def license(
        self,
        asset_id: UUID,
        start_date: date,
        end_date: date,
        fee_cents: int = 0,
        rev_share_bps: int = 0,
        status: LicenseStatus = LicenseStatus.ACTIVE,
        license_type: LicenseType = LicenseType.FLAT_FEE,
        deleted_at: datetime | None = None,
    ) -> UUID:
        return self._add(
            License(
                asset_id=asset_id,
                licensee="Licensee",
                status=status,
                license_type=license_type,
                start_date=start_date,
                end_date=end_date,
                fee_cents=fee_cents,
                rev_share_bps=rev_share_bps,
                deleted_at=deleted_at,
            )
        ).id

    def revenue_event(self, license_id: UUID, occurred_on: date, amount_cents: int) -> UUID:
        return self._add(
            LicenseRevenueEvent(
                license_id=license_id,
                occurred_on=occurred_on,
                amount_cents=amount_cents,
            )
        ).id


@pytest.fixture
def catalog(session) -> CatalogBuilder:
    return CatalogBuilder(session)


@dataclass(frozen=True)
class TwoCreatorCatalog:
    """One asset owned 60/40 by creators A and B, licensed for January."""

    creator_a: UUID
    creator_b: UUID
    asset_id: UUID
    license_id: UUID


# Fixed identities so "A" sorts before "B" wherever ordering matters.
CREATOR_A_ID = UUID("00000000-0000-4000-8000-0000000000aa")
CREATOR_B_ID = UUID("00000000-0000-4000-8000-0000000000bb")


def seed_two_creator_catalog(
    builder: CatalogBuilder,
    license_start: date = JAN_1,
    license_end: date = FEB_1,
    fee_cents: int = 10_000,
    minimum_payout_cents: int | None = None,
) -> TwoCreatorCatalog:
    creator_a = builder.creator("Creator A", minimum_payout_cents, creator_id=CREATOR_A_ID)
    creator_b = builder.creator("Creator B", minimum_payout_cents, creator_id=CREATOR_B_ID)
    asset_id = builder.asset("Song")
    builder.ownership(asset_id, creator_a, 6_000)
    builder.ownership(asset_id, creator_b, 4_000)
    license_id = builder.license(asset_id, license_start, license_end, fee_cents=fee_cents)
    return TwoCreatorCatalog(creator_a, creator_b, asset_id, license_id)


@pytest.fixture
def two_creator_catalog(catalog) -> TwoCreatorCatalog:
    return seed_two_creator_catalog(catalog)


@pytest.fixture
def calculated_run(lifecycle, calculation, two_creator_catalog):
    """A January run calculated over the two-creator catalog."""
    run = lifecycle.open_run(JAN_1, FEB_1, ADMIN_ID)
    return calculation.calculate(run.id, ADMIN_ID)


@pytest.fixture
def locked_run(lifecycle, reporter, calculated_run):
    report = reporter.build_report(calculated_run.run_id)
    lifecycle.approve_lock(calculated_run.run_id, REVIEWER_ID, report)
    return calculated_run
