from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, generate_latest
from sqlalchemy import func, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from cisa.api.deps import db_session
from cisa.core.constants import SubmissionStatus
from cisa.core.exceptions import store_errors
from cisa.models.domain import Submission

router = APIRouter(tags=["health"])
REQUEST_COUNTER = Counter("cisa_api_requests_total", "Total API requests", ["path"])
QUEUE_GAUGE = Gauge("cisa_submissions", "Submissions currently stored, by status", ["status"])


@router.get("/health/live")
async def health_live():
    REQUEST_COUNTER.labels(path="/health/live").inc()
    return {"status": "ok"}


@router.get("/health/ready")
async def health_ready(db: AsyncSession = Depends(db_session)):
    REQUEST_COUNTER.labels(path="/health/ready").inc()
    with store_errors("readiness probe"):
        await db.execute(text("SELECT 1"))
    return {"status": "ready"}


@router.get("/metrics", response_class=PlainTextResponse)
async def metrics(db: AsyncSession = Depends(db_session)):
    with store_errors("queue metrics"):
        res = await db.execute(select(Submission.status, func.count(Submission.id)).group_by(Submission.status))
    counts = dict(res.all())
    for status in SubmissionStatus:
        QUEUE_GAUGE.labels(status=status.value).set(counts.get(status, 0))
    return PlainTextResponse(generate_latest().decode("utf-8"), media_type=CONTENT_TYPE_LATEST)
