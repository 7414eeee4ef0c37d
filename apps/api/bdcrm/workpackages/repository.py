from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from bdcrm.metrics import observe_timeline_conflict
from bdcrm.workpackages.models import WorkPackage, WorkPackageItem, WorkPackagePhase


logger = logging.getLogger("bdcrm.workpackages")


_WRITABLE_PHASE_FIELDS = frozenset(
    {
        "status",
        "total_estimated_hours",
        "phase_total_duration",
        "estimated_start_date",
        "estimated_end_date",
        "start_date_locked",
        "actual_start_date",
        "actual_end_date",
    }
)


@dataclass(slots=True)
class PhaseUpdate:
    phase: WorkPackagePhase
    fields: dict[str, Any]


class WorkPackageRepository:
    def get_work_package(self, session: Session, work_package_id: uuid.UUID) -> WorkPackage | None:
        return session.get(WorkPackage, work_package_id)

    def lock_work_package(self, session: Session, work_package_id: uuid.UUID) -> WorkPackage | None:
        """Load the work package row for an exclusive timeline edit."""
        return session.scalar(
            select(WorkPackage)
            .where(WorkPackage.id == work_package_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )

    def get_phase(self, session: Session, phase_id: uuid.UUID) -> WorkPackagePhase | None:
        return session.get(WorkPackagePhase, phase_id)

    def list_phases_by_work_package(self, session: Session, work_package_id: uuid.UUID) -> list[WorkPackagePhase]:
        rows = session.scalars(
            select(WorkPackagePhase)
            .where(WorkPackagePhase.work_package_id == work_package_id)
            .order_by(WorkPackagePhase.position.asc())
            .execution_options(populate_existing=True)
        ).all()
        return list(rows)

    def list_items_by_phase(self, session: Session, phase_id: uuid.UUID) -> list[WorkPackageItem]:
        rows = session.scalars(
            select(WorkPackageItem)
            .where(WorkPackageItem.phase_id == phase_id)
            .order_by(WorkPackageItem.created_at.asc())
        ).all()
        return list(rows)

    def update_phase(self, session: Session, phase: WorkPackagePhase, fields: dict[str, Any]) -> WorkPackagePhase:
        unknown = set(fields) - _WRITABLE_PHASE_FIELDS
        if unknown:
            raise ValueError(f"phase fields are not writable: {', '.join(sorted(unknown))}")
        for key, value in fields.items():
            setattr(phase, key, value)
        session.flush()
        return phase

    def batch_update_phases(self, session: Session, updates: Sequence[PhaseUpdate]) -> list[WorkPackagePhase]:
        """Stage every update and flush once; nothing is committed here.

        The caller owns the transaction, so either all rows reach the
        database on commit or none do.
        """
        for item in updates:
            unknown = set(item.fields) - _WRITABLE_PHASE_FIELDS
            if unknown:
                raise ValueError(f"phase fields are not writable: {', '.join(sorted(unknown))}")
            for key, value in item.fields.items():
                setattr(item.phase, key, value)
        session.flush()
        return [item.phase for item in updates]

    def bump_timeline_version(self, session: Session, work_package: WorkPackage) -> int:
        work_package_id = work_package.id
        expected = work_package.timeline_version
        result = session.execute(
            update(WorkPackage)
            .where(WorkPackage.id == work_package_id, WorkPackage.timeline_version == expected)
            .values(timeline_version=WorkPackage.timeline_version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            session.rollback()
            observe_timeline_conflict()
            logger.warning("timeline.conflict", extra={"work_package_id": str(work_package_id)})
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="timeline version conflict")
        session.expire(work_package, ["timeline_version"])
        return expected + 1
