from datetime import UTC, datetime

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from cisa.core.constants import OutboxStatus
from cisa.models.domain import OutboxEvent


async def push_event(db: AsyncSession, event_type: str, payload: dict) -> OutboxEvent:
    """Queue an event inside the caller's transaction; it is only visible once they commit."""
    row = OutboxEvent(event_type=event_type, payload_json=payload, status=OutboxStatus.PENDING)
    db.add(row)
    await db.flush()
    return row


def _deliverable(max_retries: int, now: datetime):
    return or_(
        OutboxEvent.status == OutboxStatus.PENDING,
        and_(OutboxEvent.status == OutboxStatus.FAILED, OutboxEvent.retry_count < max_retries),
        and_(OutboxEvent.status == OutboxStatus.SENDING, OutboxEvent.lease_expires_at < now),
    )


async def pending_events(
    db: AsyncSession, event_type: str, max_retries: int, now: datetime, limit: int = 50
) -> list[OutboxEvent]:
    """New events, failed ones still under the retry cap, and sends abandoned past their lease."""
    res = await db.execute(
        select(OutboxEvent)
        .where(OutboxEvent.event_type == event_type, _deliverable(max_retries, now))
        .order_by(OutboxEvent.id.asc())
        .limit(limit)
    )
    return list(res.scalars().all())


async def claim_event(
    db: AsyncSession, row: OutboxEvent, token: str, expires_at: datetime, max_retries: int, now: datetime
) -> bool:
    """Take the event for sending. Only one dispatcher can win a given event."""
    seen_token = (
        OutboxEvent.lease_token.is_(None) if row.lease_token is None else OutboxEvent.lease_token == row.lease_token
    )
    res = await db.execute(
        update(OutboxEvent)
        .where(OutboxEvent.id == row.id, seen_token, _deliverable(max_retries, now))
        .values(status=OutboxStatus.SENDING, lease_token=token, lease_expires_at=expires_at)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        return False
    set_committed_value(row, "status", OutboxStatus.SENDING)
    set_committed_value(row, "lease_token", token)
    set_committed_value(row, "lease_expires_at", expires_at)
    return True


def mark_processed(row: OutboxEvent, error: str | None = None) -> None:
    row.processed_at = datetime.now(UTC)
    row.lease_token = None
    row.lease_expires_at = None
    if error is None:
        row.status = OutboxStatus.SENT
        row.last_error = None
        return
    row.status = OutboxStatus.FAILED
    row.retry_count += 1
    row.last_error = error[:2000]
