from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import StrEnum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bdcrm.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PhaseStatus(StrEnum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class WorkPackage(Base):
    __tablename__ = "work_package"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    owner_company_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    client_contact_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    effective_start_date: Mapped[date | None] = mapped_column(Date(), nullable=True)
    timeline_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    phases: Mapped[list[WorkPackagePhase]] = relationship(
        "WorkPackagePhase",
        back_populates="work_package",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="WorkPackagePhase.position",
    )


class WorkPackagePhase(Base):
    __tablename__ = "work_package_phase"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    work_package_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("work_package.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=PhaseStatus.NOT_STARTED.value,
        server_default=PhaseStatus.NOT_STARTED.value,
    )
    total_estimated_hours: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0"),
        server_default="0",
    )
    phase_total_duration: Mapped[int | None] = mapped_column(Integer, nullable=True)
    estimated_start_date: Mapped[date | None] = mapped_column(Date(), nullable=True)
    estimated_end_date: Mapped[date | None] = mapped_column(Date(), nullable=True)
    start_date_locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    actual_start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    actual_end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    work_package: Mapped[WorkPackage] = relationship("WorkPackage", back_populates="phases")
    items: Mapped[list[WorkPackageItem]] = relationship(
        "WorkPackageItem",
        back_populates="phase",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        UniqueConstraint("work_package_id", "position", name="uq_work_package_phase_position"),
        CheckConstraint("phase_total_duration IS NULL OR phase_total_duration >= 0", name="ck_work_package_phase_duration"),
        CheckConstraint(
            "status IN ('not_started', 'in_progress', 'completed')",
            name="ck_work_package_phase_status",
        ),
        Index("ix_work_package_phase_order", "work_package_id", "position"),
    )


class WorkPackageItem(Base):
    __tablename__ = "work_package_item"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    phase_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("work_package_phase.id", ondelete="CASCADE"),
        nullable=False,
    )
    deliverable_label: Mapped[str] = mapped_column(String(255), nullable=False)
    deliverable_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    estimated_hours_each: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0"),
        server_default="0",
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    phase: Mapped[WorkPackagePhase] = relationship("WorkPackagePhase", back_populates="items")

    __table_args__ = (Index("ix_work_package_item_phase", "phase_id"),)
