from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from bdcrm.context import get_correlation_id
from bdcrm.core.auth import AuthUser, get_current_user as get_auth_user
from bdcrm.core.database import get_db
from bdcrm.workpackages.durations import duration_service
from bdcrm.workpackages.schemas import (
    EffectiveStartDateUpdate,
    PhaseDatePatch,
    PhaseRead,
    PhaseStatusUpdate,
    RecomputeDurationRequest,
    TimelineRead,
    WorkPackageCreate,
    WorkPackageRead,
)
from bdcrm.workpackages.service import Actor, timeline_service, work_package_service


router = APIRouter(prefix="/api/workpackages", tags=["workpackages"])

WRITE_ROLE = "workpackages.write"


@dataclass
class ErrorEnvelope:
    code: str
    message: str
    details: Any
    correlation_id: str | None


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> JSONResponse:
    correlation_id = get_correlation_id() or request.headers.get("x-correlation-id")
    payload = ErrorEnvelope(
        code=code,
        message=message,
        details=details,
        correlation_id=correlation_id,
    )
    return JSONResponse(status_code=status_code, content=payload.__dict__)


def _failed(request: Request, exc: HTTPException, code: str) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=code,
        message=str(exc.detail),
        details=exc.detail,
    )


def get_current_actor(auth_user: AuthUser = Depends(get_auth_user)) -> Actor:
    return Actor(user_id=auth_user.sub, roles=set(auth_user.roles), correlation_id=get_correlation_id())


def require_write(actor: Actor) -> None:
    if WRITE_ROLE not in actor.roles:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Missing permission: {WRITE_ROLE}")


@router.post("", response_model=WorkPackageRead, status_code=status.HTTP_201_CREATED)
def create_work_package(
    request: Request,
    payload: WorkPackageCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> WorkPackageRead | JSONResponse:
    try:
        require_write(actor)
        return work_package_service.hydrate_work_package(db, actor, payload)
    except HTTPException as exc:
        return _failed(request, exc, "workpackage_create_failed")


@router.get("/{work_package_id}", response_model=WorkPackageRead)
def get_work_package(
    request: Request,
    work_package_id: uuid.UUID,
    db: Session = Depends(get_db),
) -> WorkPackageRead | JSONResponse:
    try:
        return work_package_service.get_work_package(db, work_package_id)
    except HTTPException as exc:
        return _failed(request, exc, "workpackage_read_failed")


@router.get("/{work_package_id}/timeline", response_model=TimelineRead)
def get_timeline(
    request: Request,
    work_package_id: uuid.UUID,
    today: date | None = Query(default=None),
    db: Session = Depends(get_db),
) -> TimelineRead | JSONResponse:
    try:
        return timeline_service.get_timeline(db, work_package_id, today=today)
    except HTTPException as exc:
        return _failed(request, exc, "workpackage_timeline_read_failed")


@router.put("/{work_package_id}/effective-start-date", response_model=WorkPackageRead)
def set_effective_start_date(
    request: Request,
    work_package_id: uuid.UUID,
    payload: EffectiveStartDateUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> WorkPackageRead | JSONResponse:
    try:
        require_write(actor)
        return timeline_service.set_effective_start_date(db, actor, work_package_id, payload.effective_start_date)
    except HTTPException as exc:
        return _failed(request, exc, "workpackage_effective_start_date_failed")


@router.post("/{work_package_id}/timeline/rebuild", response_model=list[PhaseRead])
def rebuild_timeline(
    request: Request,
    work_package_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> list[PhaseRead] | JSONResponse:
    try:
        require_write(actor)
        return timeline_service.rebuild_timeline(db, actor, work_package_id)
    except HTTPException as exc:
        return _failed(request, exc, "workpackage_timeline_rebuild_failed")


@router.post("/{work_package_id}/phases/recompute-durations", response_model=list[PhaseRead])
def recompute_all_durations(
    request: Request,
    work_package_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> list[PhaseRead] | JSONResponse:
    try:
        require_write(actor)
        return duration_service.recompute_all(db, work_package_id, actor_user_id=actor.user_id)
    except HTTPException as exc:
        return _failed(request, exc, "workpackage_durations_recompute_failed")


@router.post("/phases/{phase_id}/recompute-duration", response_model=PhaseRead)
def recompute_phase_duration(
    request: Request,
    phase_id: uuid.UUID,
    payload: RecomputeDurationRequest | None = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> PhaseRead | JSONResponse:
    try:
        require_write(actor)
        hours_override = payload.hours_override if payload is not None else None
        return duration_service.recompute_phase(db, phase_id, hours_override, actor_user_id=actor.user_id)
    except HTTPException as exc:
        return _failed(request, exc, "workpackage_phase_duration_failed")


@router.put("/phases/{phase_id}/status", response_model=PhaseRead)
def update_phase_status(
    request: Request,
    phase_id: uuid.UUID,
    payload: PhaseStatusUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> PhaseRead | JSONResponse:
    try:
        require_write(actor)
        return timeline_service.apply_status(db, actor, phase_id, payload.status)
    except HTTPException as exc:
        return _failed(request, exc, "workpackage_phase_status_failed")


@router.patch("/phases/{phase_id}/dates", response_model=PhaseRead)
def update_phase_dates(
    request: Request,
    phase_id: uuid.UUID,
    payload: PhaseDatePatch,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> PhaseRead | JSONResponse:
    try:
        require_write(actor)
        return timeline_service.apply_date_edit(db, actor, phase_id, payload)
    except HTTPException as exc:
        return _failed(request, exc, "workpackage_phase_dates_failed")
