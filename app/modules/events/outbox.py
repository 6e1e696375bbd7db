"""
Transactional outbox for booking and availability events.

Rows are written in the same transaction as the booking or rule change they
describe, then relayed to the event bus by a background task.
"""
import uuid
import asyncio
import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import TIMESTAMP, text, String, Integer, Text, JSON, select, and_
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.base import Base, TimestampedTenantMixin
from app.platform.ports.event_bus import EventBusPort

log = logging.getLogger("event.outbox")

TOPIC = "booking.events"
MAX_ATTEMPTS = 10

class EventOutbox(Base, TimestampedTenantMixin):
    event_type: Mapped[str] = mapped_column(String(64))  # booking.reserved, availability.rule_created, ...
    subject_type: Mapped[str] = mapped_column(String(32))  # booking | availability_rule
    subject_id: Mapped[str] = mapped_column(String(64))
    payload: Mapped[dict] = mapped_column(JSON)
    occurred_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), server_default=text("CURRENT_TIMESTAMP"))

    status: Mapped[str] = mapped_column(String(16), default="pending")  # pending | processing | sent | dead
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    next_attempt_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), server_default=text("CURRENT_TIMESTAMP"))
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

def retry_delay(attempts: int) -> timedelta:
    """Exponential backoff after the n-th failed publish: 2, 4, 8 ... capped at 60s."""
    return timedelta(seconds=min(60, 2 ** min(max(attempts, 1), 6)))

def event_message(ev: EventOutbox) -> dict:
    return {
        "org_id": str(ev.org_id),
        "event_type": ev.event_type,
        "subject": {"type": ev.subject_type, "id": ev.subject_id},
        "payload": ev.payload,
        "occurred_at": ev.occurred_at.isoformat(),
        "outbox_id": str(ev.id),
    }

class OutboxRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def enqueue(self, org_id: uuid.UUID, *, event_type: str, subject_type: str, subject_id, payload: dict) -> EventOutbox:
        # flushed, not committed: the caller's transaction decides
        now = datetime.now(timezone.utc)
        row = EventOutbox(
            org_id=org_id, event_type=event_type, subject_type=subject_type, subject_id=str(subject_id),
            payload=payload, occurred_at=now, status="pending", attempts=0, next_attempt_at=now,
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def claim_due(self, limit: int) -> list[EventOutbox]:
        """Lock due rows with SKIP LOCKED so several relays can share the table."""
        q = (
            select(EventOutbox)
            .where(and_(
                EventOutbox.deleted_at.is_(None),
                EventOutbox.status == "pending",
                EventOutbox.next_attempt_at <= datetime.now(timezone.utc),
            ))
            .order_by(EventOutbox.occurred_at.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        rows = list((await self.session.execute(q)).scalars().all())
        for row in rows:
            row.status = "processing"
        await self.session.flush()
        return rows

    def mark_sent(self, row: EventOutbox):
        row.status = "sent"
        row.last_error = None

    def mark_failed(self, row: EventOutbox, error: str):
        row.attempts = (row.attempts or 0) + 1
        row.last_error = error[:2000]
        if row.attempts >= MAX_ATTEMPTS:
            row.status = "dead"
            log.error(f"Outbox event {row.id} ({row.event_type}) dead after {row.attempts} attempts")
            return
        row.status = "pending"
        row.next_attempt_at = datetime.now(timezone.utc) + retry_delay(row.attempts)

class OutboxRelay:
    """Drains the outbox into the event bus until cancelled."""

    def __init__(self, bus: EventBusPort, sessions: async_sessionmaker, *, batch_size: int = 50, poll_interval_seconds: float = 1.0):
        self.bus = bus
        self.sessions = sessions
        self.batch_size = batch_size
        self.poll_interval_seconds = poll_interval_seconds

    async def relay_once(self) -> int:
        """Publish one batch. Returns the number of rows claimed."""
        async with self.sessions() as session:
            repo = OutboxRepository(session)
            batch = await repo.claim_due(self.batch_size)
            for row in batch:
                try:
                    await self.bus.publish(topic=TOPIC, key=row.subject_id or "-", value=event_message(row))
                    repo.mark_sent(row)
                except Exception as ex:
                    log.warning(f"Publishing outbox event {row.id} failed: {ex}")
                    repo.mark_failed(row, error=str(ex))
            await session.commit()
            return len(batch)

    async def run(self):
        log.info(f"Outbox relay started with bus={self.bus.__class__.__name__}")
        try:
            while True:
                try:
                    claimed = await self.relay_once()
                except Exception:
                    log.exception("Outbox relay iteration failed")
                    claimed = 0
                # a full batch means there is likely more waiting
                if claimed < self.batch_size:
                    await asyncio.sleep(self.poll_interval_seconds)
        except asyncio.CancelledError:
            log.info("Outbox relay cancelled; shutting down")
            raise
