from bdcrm.workpackages.api import router
from bdcrm.workpackages.durations import DurationService, duration_service
from bdcrm.workpackages.models import PhaseStatus, WorkPackage, WorkPackageItem, WorkPackagePhase
from bdcrm.workpackages.schemas import (
    EffectiveStartDateUpdate,
    PhaseDatePatch,
    PhaseRead,
    PhaseStatusUpdate,
    PhaseTimelineRead,
    RecomputeDurationRequest,
    TimelineRead,
    WorkPackageCreate,
    WorkPackageRead,
)
from bdcrm.workpackages.service import Actor, TimelineService, WorkPackageService, timeline_service, work_package_service

__all__ = [
    "router",
    "PhaseStatus",
    "WorkPackage",
    "WorkPackagePhase",
    "WorkPackageItem",
    "EffectiveStartDateUpdate",
    "PhaseDatePatch",
    "PhaseRead",
    "PhaseStatusUpdate",
    "PhaseTimelineRead",
    "RecomputeDurationRequest",
    "TimelineRead",
    "WorkPackageCreate",
    "WorkPackageRead",
    "Actor",
    "DurationService",
    "TimelineService",
    "WorkPackageService",
    "duration_service",
    "timeline_service",
    "work_package_service",
]
