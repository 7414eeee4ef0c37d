from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from bdcrm import audit, events
from bdcrm.core.config import get_settings
from bdcrm.metrics import observe_phase_status_transition, observe_timeline_cascade
from bdcrm.otel import get_tracer
from bdcrm.workpackages.durations import duration_service
from bdcrm.workpackages.models import PhaseStatus, WorkPackage, WorkPackageItem, WorkPackagePhase, utcnow
from bdcrm.workpackages.ordering import DuplicatePositionError, OrderedPhases
from bdcrm.workpackages.repository import PhaseUpdate, WorkPackageRepository
from bdcrm.workpackages.schemas import (
    PhaseDatePatch,
    PhaseRead,
    PhaseTimelineRead,
    TimelineRead,
    WorkPackageCreate,
    WorkPackageRead,
)
from bdcrm.workpackages.timeline import (
    EstimatedDatePatch,
    PhaseSlot,
    TimelineValidationError,
    build_timeline,
    cascade_after,
    days_between,
    default_start_for,
    expected_end_date,
    resolve_date_patch,
    timeline_status,
)


logger = logging.getLogger("bdcrm.workpackages")
tracer = get_tracer("bdcrm.workpackages.timeline")


@dataclass(slots=True)
class Actor:
    user_id: str
    roles: set[str] = field(default_factory=set)
    correlation_id: str | None = None


SYSTEM_ACTOR = Actor(user_id="system")


def _phase_snapshot(phase: WorkPackagePhase) -> dict[str, Any]:
    return PhaseRead.model_validate(phase).model_dump(
        mode="json",
        include={
            "status",
            "phase_total_duration",
            "estimated_start_date",
            "estimated_end_date",
            "start_date_locked",
            "actual_start_date",
            "actual_end_date",
        },
    )


def _publish_cascade(actor: Actor, work_package_id: uuid.UUID, trigger: str, moved: list[PhaseSlot]) -> None:
    if not moved:
        return
    events.publish(
        events.build_envelope(
            "workpackage.timeline.cascaded",
            actor_user_id=actor.user_id,
            payload={
                "work_package_id": str(work_package_id),
                "trigger": trigger,
                "shifted_phase_ids": [str(slot.id) for slot in moved],
            },
        )
    )


@dataclass(slots=True)
class _TimelineDraft:
    work_package: WorkPackage
    rows: dict[uuid.UUID, WorkPackagePhase]
    slots: OrderedPhases[PhaseSlot]

    def updates(self, extra: dict[uuid.UUID, dict[str, Any]] | None = None) -> list[PhaseUpdate]:
        extra = extra or {}
        updates: list[PhaseUpdate] = []
        for slot in self.slots:
            row = self.rows[slot.id]
            changes = {**slot.changes_from(row), **extra.get(slot.id, {})}
            if changes:
                updates.append(PhaseUpdate(phase=row, fields=changes))
        return updates


@dataclass(slots=True)
class TimelineService:
    repository: WorkPackageRepository = WorkPackageRepository()

    def _load_draft(self, session: Session, work_package_id: uuid.UUID) -> _TimelineDraft:
        work_package = self.repository.lock_work_package(session, work_package_id)
        if work_package is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="work package not found")

        rows = self.repository.list_phases_by_work_package(session, work_package_id)
        try:
            slots = OrderedPhases(PhaseSlot.from_phase(row) for row in rows)
        except DuplicatePositionError as exc:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
        return _TimelineDraft(work_package=work_package, rows={row.id: row for row in rows}, slots=slots)

    def _write_draft(
        self,
        session: Session,
        actor: Actor,
        draft: _TimelineDraft,
        *,
        action: str,
        extra: dict[uuid.UUID, dict[str, Any]] | None = None,
    ) -> list[PhaseUpdate]:
        updates = draft.updates(extra)
        if not updates:
            return updates

        before = {item.phase.id: _phase_snapshot(item.phase) for item in updates}
        self.repository.batch_update_phases(session, updates)
        self.repository.bump_timeline_version(session, draft.work_package)
        for item in updates:
            audit.record(
                session,
                actor_user_id=actor.user_id,
                work_package_id=draft.work_package.id,
                entity_type="workpackage.phase",
                entity_id=str(item.phase.id),
                action=action,
                before=before[item.phase.id],
                after=_phase_snapshot(item.phase),
                correlation_id=actor.correlation_id,
            )
        return updates

    def apply_status(
        self,
        session: Session,
        actor: Actor,
        phase_id: uuid.UUID,
        new_status: PhaseStatus | str,
    ) -> PhaseRead:
        try:
            target = PhaseStatus(new_status)
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=f"invalid phase status: {new_status}",
            )

        phase = self.repository.get_phase(session, phase_id)
        if phase is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="phase not found")

        previous_status = phase.status
        fields: dict[str, Any] = {"status": target.value}
        now = utcnow()
        if target is PhaseStatus.IN_PROGRESS and phase.actual_start_date is None:
            fields["actual_start_date"] = now
        if target is PhaseStatus.COMPLETED and phase.actual_end_date is None:
            fields["actual_end_date"] = now

        before = _phase_snapshot(phase)
        self.repository.update_phase(session, phase, fields)
        audit.record(
            session,
            actor_user_id=actor.user_id,
            work_package_id=phase.work_package_id,
            entity_type="workpackage.phase",
            entity_id=str(phase.id),
            action="phase.status_changed",
            before=before,
            after=_phase_snapshot(phase),
            correlation_id=actor.correlation_id,
        )
        session.commit()
        session.refresh(phase)

        observe_phase_status_transition(target.value)
        logger.info(
            "phase.status_applied",
            extra={"phase_id": str(phase.id), "work_package_id": str(phase.work_package_id), "status": target.value},
        )
        events.publish(
            events.build_envelope(
                "workpackage.phase.status_changed",
                actor_user_id=actor.user_id,
                payload={
                    "work_package_id": str(phase.work_package_id),
                    "phase_id": str(phase.id),
                    "from_status": previous_status,
                    "to_status": target.value,
                },
            )
        )
        return PhaseRead.model_validate(phase)

    def apply_date_edit(
        self,
        session: Session,
        actor: Actor,
        phase_id: uuid.UUID,
        patch: PhaseDatePatch,
    ) -> PhaseRead:
        estimated_sent = patch.estimated_fields_sent()
        cleared = sorted(name for name in estimated_sent if getattr(patch, name) is None)
        if cleared:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=f"cannot clear estimated fields: {', '.join(cleared)}",
            )

        phase = self.repository.get_phase(session, phase_id)
        if phase is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="phase not found")

        actual_fields = {name: getattr(patch, name) for name in patch.actual_fields_sent()}
        if not estimated_sent:
            return self._write_actual_dates(session, actor, phase, actual_fields)

        with tracer.start_as_current_span("workpackage.timeline.date_edit") as span:
            span.set_attribute("phase_id", str(phase.id))
            span.set_attribute("work_package_id", str(phase.work_package_id))

            draft = self._load_draft(session, phase.work_package_id)
            slot = draft.slots.get(phase.id)
            anchor = draft.work_package.effective_start_date
            old_end = slot.estimated_end_date

            try:
                resolve_date_patch(
                    slot,
                    EstimatedDatePatch(
                        estimated_start_date=patch.estimated_start_date,
                        estimated_end_date=patch.estimated_end_date,
                        phase_total_duration=patch.phase_total_duration,
                    ),
                    default_start=default_start_for(draft.slots, phase.id, anchor),
                )
            except TimelineValidationError as exc:
                session.rollback()
                raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))

            if "estimated_start_date" in estimated_sent and draft.slots.is_first(phase.id):
                slot.start_date_locked = anchor is not None and slot.estimated_start_date != anchor

            moved: list[PhaseSlot] = []
            if slot.estimated_end_date != old_end:
                moved = cascade_after(draft.slots, phase.id)

            delta_days = (
                days_between(old_end, slot.estimated_end_date)
                if old_end is not None and slot.estimated_end_date is not None
                else None
            )
            span.set_attribute("shifted_count", len(moved))

            self._write_draft(session, actor, draft, action="phase.dates_changed", extra={phase.id: actual_fields})
            session.commit()
            session.refresh(phase)

        if moved:
            observe_timeline_cascade("date_edit", len(moved))
            logger.info(
                "timeline.cascaded",
                extra={
                    "work_package_id": str(phase.work_package_id),
                    "phase_id": str(phase.id),
                    "trigger": "date_edit",
                    "delta_days": delta_days,
                    "shifted_count": len(moved),
                },
            )
        _publish_cascade(actor, phase.work_package_id, "date_edit", moved)
        events.publish(
            events.build_envelope(
                "workpackage.phase.dates_changed",
                actor_user_id=actor.user_id,
                payload={
                    "work_package_id": str(phase.work_package_id),
                    "phase_id": str(phase.id),
                    "delta_days": delta_days,
                    "shifted_phase_ids": [str(item.id) for item in moved],
                },
            )
        )
        return PhaseRead.model_validate(phase)

    def _write_actual_dates(
        self,
        session: Session,
        actor: Actor,
        phase: WorkPackagePhase,
        fields: dict[str, Any],
    ) -> PhaseRead:
        if fields:
            before = _phase_snapshot(phase)
            self.repository.update_phase(session, phase, fields)
            audit.record(
                session,
                actor_user_id=actor.user_id,
                work_package_id=phase.work_package_id,
                entity_type="workpackage.phase",
                entity_id=str(phase.id),
                action="phase.actual_dates_changed",
                before=before,
                after=_phase_snapshot(phase),
                correlation_id=actor.correlation_id,
            )
            session.commit()
            session.refresh(phase)
        return PhaseRead.model_validate(phase)

    def set_effective_start_date(
        self,
        session: Session,
        actor: Actor,
        work_package_id: uuid.UUID,
        effective_start_date: date | None,
    ) -> WorkPackageRead:
        draft = self._load_draft(session, work_package_id)
        work_package = draft.work_package
        previous = work_package.effective_start_date

        moved: list[PhaseSlot] = []
        if effective_start_date != previous:
            work_package.effective_start_date = effective_start_date
            moved = build_timeline(draft.slots, effective_start_date)
            updates = self._write_draft(session, actor, draft, action="timeline.anchor_moved")
            if not updates:
                self.repository.bump_timeline_version(session, work_package)
            audit.record(
                session,
                actor_user_id=actor.user_id,
                work_package_id=work_package.id,
                entity_type="workpackage",
                entity_id=str(work_package.id),
                action="workpackage.effective_start_date_changed",
                before={"effective_start_date": previous.isoformat() if previous else None},
                after={"effective_start_date": effective_start_date.isoformat() if effective_start_date else None},
                correlation_id=actor.correlation_id,
            )
            session.commit()

            if moved:
                observe_timeline_cascade("effective_start_date", len(moved))
            logger.info(
                "timeline.cascaded",
                extra={
                    "work_package_id": str(work_package_id),
                    "trigger": "effective_start_date",
                    "delta_days": days_between(previous, effective_start_date)
                    if previous is not None and effective_start_date is not None
                    else None,
                    "shifted_count": len(moved),
                },
            )
            _publish_cascade(actor, work_package_id, "effective_start_date", moved)
            events.publish(
                events.build_envelope(
                    "workpackage.effective_start_date_changed",
                    actor_user_id=actor.user_id,
                    payload={
                        "work_package_id": str(work_package_id),
                        "effective_start_date": effective_start_date.isoformat() if effective_start_date else None,
                        "shifted_phase_ids": [str(item.id) for item in moved],
                    },
                )
            )
        else:
            session.rollback()

        return work_package_service.get_work_package(session, work_package_id)

    def rebuild_timeline(
        self,
        session: Session,
        actor: Actor,
        work_package_id: uuid.UUID,
        *,
        commit: bool = True,
    ) -> list[PhaseRead]:
        with tracer.start_as_current_span("workpackage.timeline.rebuild") as span:
            span.set_attribute("work_package_id", str(work_package_id))
            draft = self._load_draft(session, work_package_id)
            anchor = draft.work_package.effective_start_date
            if anchor is None:
                logger.info("timeline.unschedulable", extra={"work_package_id": str(work_package_id)})
                moved: list[PhaseSlot] = []
            else:
                moved = build_timeline(draft.slots, anchor)
                self._write_draft(session, actor, draft, action="timeline.rebuilt")
            span.set_attribute("shifted_count", len(moved))

            if commit:
                session.commit()
            rows = self.repository.list_phases_by_work_package(session, work_package_id)

        if moved:
            observe_timeline_cascade("rebuild", len(moved))
            _publish_cascade(actor, work_package_id, "rebuild", moved)
        logger.info(
            "timeline.rebuilt",
            extra={"work_package_id": str(work_package_id), "shifted_count": len(moved), "phase_count": len(rows)},
        )
        return [PhaseRead.model_validate(row) for row in rows]

    def get_timeline(self, session: Session, work_package_id: uuid.UUID, today: date | None = None) -> TimelineRead:
        work_package = self.repository.get_work_package(session, work_package_id)
        if work_package is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="work package not found")

        as_of = today or date.today()
        due_soon_days = get_settings().timeline_due_soon_days
        rows = self.repository.list_phases_by_work_package(session, work_package_id)

        phases: list[PhaseTimelineRead] = []
        current_phase_id: uuid.UUID | None = None
        for row in rows:
            expected_end = expected_end_date(row.actual_end_date, row.estimated_end_date)
            if current_phase_id is None and row.status != PhaseStatus.COMPLETED:
                current_phase_id = row.id
            phases.append(
                PhaseTimelineRead(
                    phase_id=row.id,
                    name=row.name,
                    position=row.position,
                    status=PhaseStatus(row.status),
                    phase_total_duration=row.phase_total_duration,
                    estimated_start_date=row.estimated_start_date,
                    estimated_end_date=row.estimated_end_date,
                    actual_start_date=row.actual_start_date,
                    actual_end_date=row.actual_end_date,
                    expected_end_date=expected_end,
                    timeline_status=timeline_status(
                        row.status,
                        expected_end,
                        today=as_of,
                        due_soon_days=due_soon_days,
                    ),
                )
            )

        starts = [row.estimated_start_date for row in rows if row.estimated_start_date is not None]
        ends = [row.estimated_end_date for row in rows if row.estimated_end_date is not None]
        estimated_start = min(starts) if starts else None
        estimated_end = max(ends) if ends else None
        return TimelineRead(
            work_package_id=work_package.id,
            effective_start_date=work_package.effective_start_date,
            estimated_start_date=estimated_start,
            estimated_end_date=estimated_end,
            total_duration_days=days_between(estimated_start, estimated_end)
            if estimated_start is not None and estimated_end is not None
            else None,
            current_phase_id=current_phase_id,
            as_of=as_of,
            phases=phases,
        )


@dataclass(slots=True)
class WorkPackageService:
    def hydrate_work_package(self, session: Session, actor: Actor, payload: WorkPackageCreate) -> WorkPackageRead:
        work_package = WorkPackage(
            title=payload.title,
            description=payload.description,
            owner_company_id=payload.owner_company_id,
            client_contact_id=payload.client_contact_id,
            effective_start_date=payload.effective_start_date,
        )
        session.add(work_package)
        session.flush()

        for phase_payload in payload.phases:
            phase = WorkPackagePhase(
                work_package_id=work_package.id,
                name=phase_payload.name,
                description=phase_payload.description,
                position=phase_payload.position,
            )
            session.add(phase)
            session.flush()
            for item_payload in phase_payload.items:
                session.add(WorkPackageItem(phase_id=phase.id, **item_payload.model_dump(mode="python")))

        try:
            session.flush()
            duration_service.recompute_all(session, work_package.id, actor_user_id=actor.user_id, commit=False)
            timeline_service.rebuild_timeline(session, actor, work_package.id, commit=False)
            audit.record(
                session,
                actor_user_id=actor.user_id,
                work_package_id=work_package.id,
                entity_type="workpackage",
                entity_id=str(work_package.id),
                action="workpackage.hydrated",
                before=None,
                after={"title": payload.title, "phase_count": len(payload.phases)},
                correlation_id=actor.correlation_id,
            )
            session.commit()
        except IntegrityError:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="work package could not be created")

        events.publish(
            events.build_envelope(
                "workpackage.hydrated",
                actor_user_id=actor.user_id,
                payload={"work_package_id": str(work_package.id), "phase_count": len(payload.phases)},
            )
        )
        return self.get_work_package(session, work_package.id)

    def get_work_package(self, session: Session, work_package_id: uuid.UUID) -> WorkPackageRead:
        work_package = session.scalar(
            select(WorkPackage)
            .where(WorkPackage.id == work_package_id)
            .options(selectinload(WorkPackage.phases))
            .execution_options(populate_existing=True)
        )
        if work_package is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="work package not found")
        return WorkPackageRead.model_validate(work_package)


timeline_service = TimelineService()
work_package_service = WorkPackageService()
