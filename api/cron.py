"""
Cron API

Called by the scheduler with "Authorization: Bearer <CRON_SECRET>".

Endpoints:
- GET /api/cron/check-rank - Check monitored articles and queue notifications
- GET /api/cron/send-notifications - Deliver queued notifications in each user's window
"""

import logging
import time

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from rerank.auth.dependencies import verify_cron_secret
from rerank.database.session import get_db
from rerank.notifications import check_rank, send_notifications

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/api/cron",
    tags=["Cron"],
    dependencies=[Depends(verify_cron_secret)],
)


@router.get("/check-rank")
async def check_rank_job(db: Session = Depends(get_db)):
    started = time.time()
    logger.info("[Cron] check-rank started")
    summary = await check_rank(db)
    duration = round(time.time() - started, 2)
    logger.info(f"[Cron] check-rank finished in {duration}s: {summary}")
    return {"success": True, "duration_seconds": duration, **summary}


@router.get("/send-notifications")
async def send_notifications_job(db: Session = Depends(get_db)):
    started = time.time()
    logger.info("[Cron] send-notifications started")
    summary = await send_notifications(db)
    duration = round(time.time() - started, 2)
    logger.info(f"[Cron] send-notifications finished in {duration}s: {summary}")
    return {"success": True, "duration_seconds": duration, **summary}
