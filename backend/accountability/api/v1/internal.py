"""Internal trigger for deployments that run the check-in tick from an external cron instead of APScheduler."""

import secrets

from fastapi import APIRouter, HTTPException, Request

from accountability.config import settings
from accountability.services.jobs import run_check_in_cycle

router = APIRouter(prefix="/internal", tags=["internal"])


@router.post("/check-ins/run", summary="Run one check-in tick", include_in_schema=False)
async def run_check_ins(request: Request) -> dict:
    """Scan for due check-ins and detect misses. Idempotent; safe to call on overlapping schedules."""
    expected = settings.cron_secret
    provided = request.headers.get("X-Cron-Secret") or ""
    if not expected:
        raise HTTPException(status_code=404, detail="Not found")
    if not secrets.compare_digest(provided, expected):
        raise HTTPException(status_code=403, detail="Forbidden")
    return await run_check_in_cycle()
