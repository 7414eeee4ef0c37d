from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from bdcrm.workpackages.models import PhaseStatus
from bdcrm.workpackages.timeline import TimelineStatus


class PhaseStatusUpdate(BaseModel):
    status: PhaseStatus


class PhaseDatePatch(BaseModel):
    """Partial edit of a phase's dates; only fields that are sent are applied."""

    estimated_start_date: date | None = None
    estimated_end_date: date | None = None
    phase_total_duration: int | None = None
    actual_start_date: datetime | None = None
    actual_end_date: datetime | None = None

    def estimated_fields_sent(self) -> set[str]:
        return self.model_fields_set & {"estimated_start_date", "estimated_end_date", "phase_total_duration"}

    def actual_fields_sent(self) -> set[str]:
        return self.model_fields_set & {"actual_start_date", "actual_end_date"}


class EffectiveStartDateUpdate(BaseModel):
    effective_start_date: date | None


class RecomputeDurationRequest(BaseModel):
    hours_override: Decimal | None = Field(default=None, ge=Decimal("0"))


class WorkPackageItemCreate(BaseModel):
    deliverable_label: str = Field(min_length=1)
    deliverable_type: str | None = None
    quantity: int = Field(default=1, ge=0)
    estimated_hours_each: Decimal = Field(default=Decimal("0"), ge=Decimal("0"))


class WorkPackagePhaseCreate(BaseModel):
    name: str = Field(min_length=1)
    description: str | None = None
    position: int = Field(ge=1)
    items: list[WorkPackageItemCreate] = Field(default_factory=list)


class WorkPackageCreate(BaseModel):
    title: str = Field(min_length=1)
    description: str | None = None
    owner_company_id: str | None = None
    client_contact_id: str | None = None
    effective_start_date: date | None = None
    phases: list[WorkPackagePhaseCreate] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_positions(self) -> WorkPackageCreate:
        positions = [phase.position for phase in self.phases]
        if len(positions) != len(set(positions)):
            raise ValueError("phase positions must be unique")
        return self


class WorkPackageItemRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    phase_id: UUID
    deliverable_label: str
    deliverable_type: str | None
    quantity: int
    estimated_hours_each: Decimal


class PhaseRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    work_package_id: UUID
    name: str
    description: str | None
    position: int
    status: PhaseStatus
    total_estimated_hours: Decimal
    phase_total_duration: int | None
    estimated_start_date: date | None
    estimated_end_date: date | None
    start_date_locked: bool
    actual_start_date: datetime | None
    actual_end_date: datetime | None
    updated_at: datetime


class WorkPackageRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    title: str
    description: str | None
    owner_company_id: str | None
    client_contact_id: str | None
    effective_start_date: date | None
    timeline_version: int
    created_at: datetime
    updated_at: datetime
    phases: list[PhaseRead] = Field(default_factory=list)


class PhaseTimelineRead(BaseModel):
    phase_id: UUID
    name: str
    position: int
    status: PhaseStatus
    phase_total_duration: int | None
    estimated_start_date: date | None
    estimated_end_date: date | None
    actual_start_date: datetime | None
    actual_end_date: datetime | None
    expected_end_date: date | None
    timeline_status: TimelineStatus


class TimelineRead(BaseModel):
    work_package_id: UUID
    effective_start_date: date | None
    estimated_start_date: date | None
    estimated_end_date: date | None
    total_duration_days: int | None
    current_phase_id: UUID | None
    as_of: date
    phases: list[PhaseTimelineRead]
