"""Recompute every phase duration and rebuild every timeline.

Run as ``python -m bdcrm.workpackages.backfill`` after bulk imports or after
items were edited outside the API.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field

from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session

from bdcrm.workpackages.durations import duration_service
from bdcrm.workpackages.models import WorkPackage
from bdcrm.workpackages.service import SYSTEM_ACTOR, Actor, timeline_service


logger = logging.getLogger("bdcrm.workpackages")


@dataclass(slots=True)
class BackfillSummary:
    processed: int = 0
    unscheduled: int = 0
    failed: list[uuid.UUID] = field(default_factory=list)


def backfill_work_packages(session: Session, actor: Actor = SYSTEM_ACTOR) -> BackfillSummary:
    summary = BackfillSummary()
    work_package_ids = list(session.scalars(select(WorkPackage.id).order_by(WorkPackage.created_at.asc())))
    session.rollback()

    for work_package_id in work_package_ids:
        try:
            phases = duration_service.recompute_all(session, work_package_id, actor_user_id=actor.user_id, commit=False)
            timeline_service.rebuild_timeline(session, actor, work_package_id, commit=False)
            anchor = session.scalar(select(WorkPackage.effective_start_date).where(WorkPackage.id == work_package_id))
            session.commit()
        except HTTPException as exc:
            session.rollback()
            summary.failed.append(work_package_id)
            logger.warning(
                "backfill.work_package",
                extra={"work_package_id": str(work_package_id), "status_code": exc.status_code, "error": str(exc.detail)},
            )
            continue

        summary.processed += 1
        if anchor is None:
            summary.unscheduled += 1
        logger.info(
            "backfill.work_package",
            extra={"work_package_id": str(work_package_id), "phase_count": len(phases)},
        )
    return summary


def main() -> None:
    from bdcrm.core.database import SessionLocal
    from bdcrm.logging import configure_logging

    configure_logging()
    session = SessionLocal()
    try:
        summary = backfill_work_packages(session)
    finally:
        session.close()
    logger.info(
        "backfill.completed",
        extra={"processed": summary.processed, "unscheduled": summary.unscheduled, "failed": len(summary.failed)},
    )


if __name__ == "__main__":
    main()
