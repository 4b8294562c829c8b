"""
Internal endpoints for scheduled/cron operations.

Protected by X-Internal-Secret header.
Call from external cron when the polling worker is not deployed.
"""
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.deps import get_db, verify_internal_secret
from app.schemas.follow_up import DispatchRunResponse
from app.services.follow_up_dispatcher import build_dispatcher


router = APIRouter(prefix="/internal/scheduled", tags=["internal"])


@router.post(
    "/follow-ups/process",
    response_model=DispatchRunResponse,
    dependencies=[Depends(verify_internal_secret)],
)
async def process_follow_ups(db: Session = Depends(get_db)):
    """Run one dispatcher cycle over due follow-up executions."""
    report = await build_dispatcher(db).run_cycle()
    return DispatchRunResponse(
        claimed=report.claimed,
        sent=report.sent,
        failed=report.failed,
        reclaimed=report.reclaimed,
        lost=report.lost,
        timestamp=datetime.now(timezone.utc),
    )
