from __future__ import annotations

import uuid
from collections.abc import Generator
from decimal import Decimal

import pytest
from fastapi import HTTPException
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from bdcrm.core.database import Base
from bdcrm.models.audit import AuditLog
from bdcrm.workpackages.durations import DurationService, duration_from_hours, sum_item_hours
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


def _seed(session: Session) -> tuple[WorkPackage, WorkPackagePhase, WorkPackagePhase]:
    work_package = WorkPackage(title="Website rebuild")
    session.add(work_package)
    session.flush()

    discovery = WorkPackagePhase(work_package_id=work_package.id, name="Discovery", position=1)
    build = WorkPackagePhase(work_package_id=work_package.id, name="Build", position=2)
    session.add_all([discovery, build])
    session.flush()

    session.add_all(
        [
            WorkPackageItem(phase_id=discovery.id, deliverable_label="Workshop", quantity=2, estimated_hours_each=Decimal("6")),
            WorkPackageItem(phase_id=discovery.id, deliverable_label="Report", quantity=1, estimated_hours_each=Decimal("5")),
            WorkPackageItem(phase_id=build.id, deliverable_label="Page", quantity=3, estimated_hours_each=Decimal("8")),
        ]
    )
    session.commit()
    return work_package, discovery, build


@pytest.mark.parametrize(
    ("hours", "days"),
    [
        (0, 0),
        (-4, 0),
        (None, 0),
        (1, 1),
        (8, 1),
        (8.5, 2),
        (Decimal("16"), 2),
        (Decimal("16.01"), 3),
        (40, 5),
    ],
)
def test_duration_from_hours(hours: object, days: int) -> None:
    assert duration_from_hours(hours) == days


def test_sum_item_hours_multiplies_quantity() -> None:
    items = [
        WorkPackageItem(deliverable_label="a", quantity=3, estimated_hours_each=Decimal("2.5")),
        WorkPackageItem(deliverable_label="b", quantity=0, estimated_hours_each=Decimal("10")),
    ]
    assert sum_item_hours(items) == Decimal("7.5")


def test_recompute_phase_sums_items(db_session: Session) -> None:
    _, discovery, _ = _seed(db_session)
    service = DurationService()

    phase = service.recompute_phase(db_session, discovery.id)

    assert phase.total_estimated_hours == Decimal("17")
    assert phase.phase_total_duration == 3
    assert phase.estimated_start_date is None
    assert phase.estimated_end_date is None


def test_recompute_phase_with_override(db_session: Session) -> None:
    _, discovery, _ = _seed(db_session)
    service = DurationService()

    phase = service.recompute_phase(db_session, discovery.id, hours_override=Decimal("30"), actor_user_id="planner")

    assert phase.total_estimated_hours == Decimal("30")
    assert phase.phase_total_duration == 4

    entry = db_session.scalar(select(AuditLog).where(AuditLog.action == "phase.duration_recomputed"))
    assert entry is not None
    assert entry.actor_id == "planner"
    assert entry.entity_id == str(discovery.id)


def test_recompute_phase_rejects_negative_override(db_session: Session) -> None:
    _, discovery, _ = _seed(db_session)

    with pytest.raises(HTTPException) as exc_info:
        DurationService().recompute_phase(db_session, discovery.id, hours_override=Decimal("-1"))

    assert exc_info.value.status_code == 422


def test_recompute_phase_not_found(db_session: Session) -> None:
    with pytest.raises(HTTPException) as exc_info:
        DurationService().recompute_phase(db_session, uuid.uuid4())

    assert exc_info.value.status_code == 404


def test_recompute_all_is_idempotent(db_session: Session) -> None:
    work_package, _, _ = _seed(db_session)
    service = DurationService()

    first = service.recompute_all(db_session, work_package.id)
    version_after_first = db_session.get(WorkPackage, work_package.id).timeline_version
    second = service.recompute_all(db_session, work_package.id)

    assert [phase.position for phase in first] == [1, 2]
    assert [(phase.total_estimated_hours, phase.phase_total_duration) for phase in first] == [
        (Decimal("17"), 3),
        (Decimal("24"), 3),
    ]
    assert [(phase.total_estimated_hours, phase.phase_total_duration) for phase in second] == [
        (phase.total_estimated_hours, phase.phase_total_duration) for phase in first
    ]
    assert version_after_first == 2
    assert db_session.get(WorkPackage, work_package.id).timeline_version == 2


def test_recompute_all_not_found(db_session: Session) -> None:
    with pytest.raises(HTTPException) as exc_info:
        DurationService().recompute_all(db_session, uuid.uuid4())

    assert exc_info.value.status_code == 404
