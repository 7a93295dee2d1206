"""Webhook idempotency ledger.

Each provider event id is absent, reserved (processed=False) or processed.
reserve() is the only gate: it succeeds for exactly one caller per event
until the reservation is released.

Two backends share the WebhookLedger protocol:
- SqlWebhookLedger: the webhook_events primary key arbitrates concurrent
  reservations, including across instances.
- FileWebhookLedger: a JSON snapshot rewritten via temp file + rename, with
  every operation serialized through one KeyedMutex key.
"""

import asyncio
import json
import os
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from checkout_service.core.locking import KeyedMutex
from checkout_service.db.models.webhook_event import WebhookEvent

logger = structlog.get_logger(__name__)

LEDGER_LOCK_KEY = "webhook-ledger"


@dataclass(frozen=True)
class WebhookRecord:
    event_id: str
    processed: bool
    created_at: datetime
    processed_at: datetime | None = None


class WebhookLedger(Protocol):
    async def reserve(self, event_id: str) -> bool:
        """Return True iff this call moved event_id from absent to reserved."""
        ...

    async def mark_processed(self, event_id: str) -> None:
        """Finalize a reservation (creates a processed record if none exists)."""
        ...

    async def release(self, event_id: str) -> None:
        """Drop the record so a later reserve() succeeds again."""
        ...

    async def get(self, event_id: str) -> WebhookRecord | None: ...


class SqlWebhookLedger:
    """Ledger backed by the webhook_events table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def reserve(self, event_id: str) -> bool:
        if not event_id:
            return False

        async with self._session_factory() as session:
            try:
                session.add(WebhookEvent(event_id=event_id, processed=False))
                await session.commit()
                return True
            except IntegrityError:
                await session.rollback()
                return False

    async def mark_processed(self, event_id: str) -> None:
        if not event_id:
            return

        now = datetime.now(UTC)
        async with self._session_factory() as session:
            result = await session.execute(
                update(WebhookEvent)
                .where(WebhookEvent.event_id == event_id)
                .values(processed=True, processed_at=now)
            )
            if result.rowcount:
                await session.commit()
                return

            try:
                session.add(WebhookEvent(event_id=event_id, processed=True, created_at=now, processed_at=now))
                await session.commit()
            except IntegrityError:
                # Reserved concurrently between the update and the insert
                await session.rollback()
                await session.execute(
                    update(WebhookEvent)
                    .where(WebhookEvent.event_id == event_id)
                    .values(processed=True, processed_at=now)
                )
                await session.commit()

    async def release(self, event_id: str) -> None:
        if not event_id:
            return

        async with self._session_factory() as session:
            await session.execute(delete(WebhookEvent).where(WebhookEvent.event_id == event_id))
            await session.commit()

    async def get(self, event_id: str) -> WebhookRecord | None:
        async with self._session_factory() as session:
            result = await session.execute(select(WebhookEvent).where(WebhookEvent.event_id == event_id))
            row = result.scalar_one_or_none()
            if row is None:
                return None
            return WebhookRecord(
                event_id=row.event_id,
                processed=row.processed,
                created_at=row.created_at,
                processed_at=row.processed_at,
            )


class FileWebhookLedger:
    """Ledger persisted as one JSON document, for single-instance deployments.

    File layout: {"<event id>": {"eventId", "processed", "createdAt", "processedAt"?}}.
    A missing file is an empty ledger. Each write goes to "<path>.tmp" and is
    renamed over the original, so an interrupted write leaves the previous
    snapshot intact.
    """

    def __init__(self, path: Path, mutex: KeyedMutex | None = None):
        self.path = Path(path)
        self._tmp_path = self.path.with_name(self.path.name + ".tmp")
        self._mutex = mutex or KeyedMutex()

    async def reserve(self, event_id: str) -> bool:
        if not event_id:
            return False

        async with self._mutex.lock(LEDGER_LOCK_KEY):
            data = await asyncio.to_thread(self._read)
            if event_id in data:
                return False
            data[event_id] = {
                "eventId": event_id,
                "processed": False,
                "createdAt": _now_iso(),
            }
            await asyncio.to_thread(self._write, data)
            return True

    async def mark_processed(self, event_id: str) -> None:
        if not event_id:
            return

        async with self._mutex.lock(LEDGER_LOCK_KEY):
            data = await asyncio.to_thread(self._read)
            now = _now_iso()
            record = data.setdefault(event_id, {"eventId": event_id, "createdAt": now})
            record["processed"] = True
            record["processedAt"] = now
            await asyncio.to_thread(self._write, data)

    async def release(self, event_id: str) -> None:
        if not event_id:
            return

        async with self._mutex.lock(LEDGER_LOCK_KEY):
            data = await asyncio.to_thread(self._read)
            if data.pop(event_id, None) is not None:
                await asyncio.to_thread(self._write, data)

    async def get(self, event_id: str) -> WebhookRecord | None:
        async with self._mutex.lock(LEDGER_LOCK_KEY):
            data = await asyncio.to_thread(self._read)

        record = data.get(event_id)
        if record is None:
            return None
        processed_at = record.get("processedAt")
        return WebhookRecord(
            event_id=record["eventId"],
            processed=bool(record.get("processed")),
            created_at=datetime.fromisoformat(record["createdAt"]),
            processed_at=datetime.fromisoformat(processed_at) if processed_at else None,
        )

    def _read(self) -> dict[str, dict]:
        try:
            content = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            logger.error("webhook_ledger_unreadable", path=str(self.path), error=str(e))
            return {}

        if not isinstance(data, dict):
            logger.error("webhook_ledger_unreadable", path=str(self.path), error="top-level value is not an object")
            return {}
        return data

    def _write(self, data: dict[str, dict]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._tmp_path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        os.replace(self._tmp_path, self.path)


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()
