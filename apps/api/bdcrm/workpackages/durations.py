from __future__ import annotations

import logging
import math
import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from bdcrm import audit
from bdcrm.metrics import observe_duration_recompute
from bdcrm.otel import get_tracer
from bdcrm.workpackages.models import WorkPackageItem, WorkPackagePhase
from bdcrm.workpackages.repository import PhaseUpdate, WorkPackageRepository
from bdcrm.workpackages.schemas import PhaseRead


HOURS_PER_DAY = 8

logger = logging.getLogger("bdcrm.workpackages")
tracer = get_tracer("bdcrm.workpackages.durations")


def duration_from_hours(hours: int | float | Decimal | None) -> int:
    """Whole duration-days for an effort estimate; eight effort-hours make one day."""
    if hours is None or hours <= 0:
        return 0
    return math.ceil(Decimal(str(hours)) / HOURS_PER_DAY)


def sum_item_hours(items: Iterable[WorkPackageItem]) -> Decimal:
    total = Decimal("0")
    for item in items:
        total += Decimal(item.quantity or 0) * Decimal(item.estimated_hours_each or 0)
    return total


@dataclass(slots=True)
class DurationService:
    repository: WorkPackageRepository = WorkPackageRepository()

    def _recomputed_fields(self, session: Session, phase: WorkPackagePhase, hours: Decimal | None) -> dict[str, object]:
        if hours is None:
            hours = sum_item_hours(self.repository.list_items_by_phase(session, phase.id))
        else:
            hours = Decimal(str(hours))
            if hours < 0:
                raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="hours cannot be negative")
        return {
            "total_estimated_hours": hours,
            "phase_total_duration": duration_from_hours(hours),
        }

    def recompute_phase(
        self,
        session: Session,
        phase_id: uuid.UUID,
        hours_override: Decimal | None = None,
        *,
        actor_user_id: str = "system",
    ) -> PhaseRead:
        phase = self.repository.get_phase(session, phase_id)
        if phase is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="phase not found")

        fields = self._recomputed_fields(session, phase, hours_override)
        before = PhaseRead.model_validate(phase).model_dump(mode="json")
        self.repository.update_phase(session, phase, fields)
        audit.record(
            session,
            actor_user_id=actor_user_id,
            work_package_id=phase.work_package_id,
            entity_type="workpackage.phase",
            entity_id=str(phase.id),
            action="phase.duration_recomputed",
            before={key: before[key] for key in ("total_estimated_hours", "phase_total_duration")},
            after={key: str(value) for key, value in fields.items()},
        )
        session.commit()
        session.refresh(phase)

        observe_duration_recompute("phase")
        logger.info(
            "phase.duration_recomputed",
            extra={"phase_id": str(phase.id), "work_package_id": str(phase.work_package_id)},
        )
        return PhaseRead.model_validate(phase)

    def recompute_all(
        self,
        session: Session,
        work_package_id: uuid.UUID,
        *,
        actor_user_id: str = "system",
        commit: bool = True,
    ) -> list[PhaseRead]:
        with tracer.start_as_current_span("workpackage.durations.recompute_all") as span:
            span.set_attribute("work_package_id", str(work_package_id))
            work_package = self.repository.lock_work_package(session, work_package_id)
            if work_package is None:
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="work package not found")

            phases = self.repository.list_phases_by_work_package(session, work_package_id)
            updates: list[PhaseUpdate] = []
            for phase in phases:
                fields = self._recomputed_fields(session, phase, None)
                changed = {key: value for key, value in fields.items() if getattr(phase, key) != value}
                if changed:
                    updates.append(PhaseUpdate(phase=phase, fields=changed))

            if updates:
                self.repository.batch_update_phases(session, updates)
                self.repository.bump_timeline_version(session, work_package)
                audit.record(
                    session,
                    actor_user_id=actor_user_id,
                    work_package_id=work_package_id,
                    entity_type="workpackage",
                    entity_id=str(work_package_id),
                    action="durations.recomputed",
                    before=None,
                    after={str(item.phase.id): {key: str(value) for key, value in item.fields.items()} for item in updates},
                )
            if commit:
                session.commit()
                for phase in phases:
                    session.refresh(phase)

            span.set_attribute("changed_phase_count", len(updates))
            observe_duration_recompute("work_package", len(phases))
            logger.info(
                "durations.recomputed",
                extra={"work_package_id": str(work_package_id), "phase_count": len(phases), "shifted_count": len(updates)},
            )
            return [PhaseRead.model_validate(phase) for phase in phases]


duration_service = DurationService()
