from __future__ import annotations

import uuid
from collections.abc import Generator
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from bdcrm.core.database import Base
from bdcrm.models.audit import AuditLog
from bdcrm.workpackages.backfill import backfill_work_packages
from bdcrm.workpackages.models import WorkPackage, WorkPackageItem, WorkPackagePhase


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


def _imported_package(session: Session, title: str, effective_start_date: date | None) -> WorkPackage:
    work_package = WorkPackage(title=title, effective_start_date=effective_start_date)
    session.add(work_package)
    session.flush()
    for position, hours in ((1, Decimal("12")), (2, Decimal("20"))):
        phase = WorkPackagePhase(work_package_id=work_package.id, name=f"Phase {position}", position=position)
        session.add(phase)
        session.flush()
        session.add(WorkPackageItem(phase_id=phase.id, deliverable_label="Deliverable", quantity=1, estimated_hours_each=hours))
    session.commit()
    return work_package


def _phases(session: Session, work_package_id: uuid.UUID) -> list[WorkPackagePhase]:
    session.expire_all()
    return list(
        session.scalars(
            select(WorkPackagePhase)
            .where(WorkPackagePhase.work_package_id == work_package_id)
            .order_by(WorkPackagePhase.position)
        )
    )


def test_backfill_recomputes_and_schedules(db_session: Session) -> None:
    scheduled = _imported_package(db_session, "Scheduled", date(2025, 4, 1))
    unscheduled = _imported_package(db_session, "Unscheduled", None)

    summary = backfill_work_packages(db_session)

    assert summary.processed == 2
    assert summary.unscheduled == 1
    assert summary.failed == []

    phases = _phases(db_session, scheduled.id)
    assert [phase.phase_total_duration for phase in phases] == [2, 3]
    assert [(phase.estimated_start_date, phase.estimated_end_date) for phase in phases] == [
        (date(2025, 4, 1), date(2025, 4, 3)),
        (date(2025, 4, 4), date(2025, 4, 7)),
    ]

    pending = _phases(db_session, unscheduled.id)
    assert [phase.phase_total_duration for phase in pending] == [2, 3]
    assert all(phase.estimated_start_date is None for phase in pending)


def test_backfill_is_repeatable(db_session: Session) -> None:
    work_package = _imported_package(db_session, "Repeat", date(2025, 4, 1))

    backfill_work_packages(db_session)
    first_version = db_session.get(WorkPackage, work_package.id).timeline_version
    audit_count = len(list(db_session.scalars(select(AuditLog))))

    summary = backfill_work_packages(db_session)

    assert summary.processed == 1
    assert db_session.get(WorkPackage, work_package.id).timeline_version == first_version
    assert len(list(db_session.scalars(select(AuditLog)))) == audit_count
