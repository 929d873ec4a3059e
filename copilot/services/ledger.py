"""Chunk ledger: append-only record of chunk-arrival notifications."""

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import exists, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from copilot.models.chunk_notification import ChunkNotificationRow
from copilot.services.locks import KeyedLock

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ChunkNotification:
    """A client's report that chunk ``chunk_index`` of a session was uploaded."""

    session_id: str
    chunk_index: int
    is_last: bool = False
    storage_path: str | None = None
    public_url: str | None = None
    mime_type: str | None = None
    total_chunks_client: int | None = None
    template_id: str | None = None
    model: str | None = None
    received_at: datetime = field(default_factory=utcnow, compare=False)


class ChunkLedger(ABC):
    """Arrival notifications, one entry per (session id, chunk index)."""

    @abstractmethod
    def record(self, notification: ChunkNotification) -> bool:
        """Append a notification. Returns False when the index was already recorded."""

    @abstractmethod
    def chunks_for(self, session_id: str) -> list[ChunkNotification]:
        """Notifications for a session ordered by chunk index ascending."""

    def has_terminal(self, session_id: str) -> bool:
        return any(n.is_last for n in self.chunks_for(session_id))


class InMemoryChunkLedger(ChunkLedger):
    def __init__(self) -> None:
        self._locks = KeyedLock()
        self._entries: dict[str, dict[int, ChunkNotification]] = {}

    def record(self, notification: ChunkNotification) -> bool:
        with self._locks.hold(notification.session_id):
            entries = self._entries.setdefault(notification.session_id, {})
            if notification.chunk_index in entries:
                logger.debug(
                    "Duplicate notification for chunk %d of %s", notification.chunk_index, notification.session_id
                )
                return False
            entries[notification.chunk_index] = notification
            return True

    def chunks_for(self, session_id: str) -> list[ChunkNotification]:
        with self._locks.hold(session_id):
            entries = dict(self._entries.get(session_id, {}))
        return [entries[index] for index in sorted(entries)]


class SqlChunkLedger(ChunkLedger):
    """Ledger rows in the ``chunk_notification`` table; the unique constraint arbitrates concurrent writers."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def record(self, notification: ChunkNotification) -> bool:
        db = self._session_factory()
        try:
            duplicate = db.scalar(
                select(
                    exists().where(
                        ChunkNotificationRow.session_id == notification.session_id,
                        ChunkNotificationRow.chunk_index == notification.chunk_index,
                    )
                )
            )
            if duplicate:
                return False
            db.add(
                ChunkNotificationRow(
                    session_id=notification.session_id,
                    chunk_index=notification.chunk_index,
                    is_last=notification.is_last,
                    storage_path=notification.storage_path,
                    public_url=notification.public_url,
                    mime_type=notification.mime_type,
                    total_chunks_client=notification.total_chunks_client,
                    template_id=notification.template_id,
                    model=notification.model,
                    received_at=notification.received_at,
                )
            )
            db.commit()
            return True
        except IntegrityError:
            db.rollback()
            return False
        finally:
            db.close()

    def chunks_for(self, session_id: str) -> list[ChunkNotification]:
        db = self._session_factory()
        try:
            rows = db.scalars(
                select(ChunkNotificationRow)
                .where(ChunkNotificationRow.session_id == session_id)
                .order_by(ChunkNotificationRow.chunk_index)
            ).all()
            return [self._to_notification(row) for row in rows]
        finally:
            db.close()

    def has_terminal(self, session_id: str) -> bool:
        db = self._session_factory()
        try:
            return bool(
                db.scalar(
                    select(
                        exists().where(
                            ChunkNotificationRow.session_id == session_id,
                            ChunkNotificationRow.is_last.is_(True),
                        )
                    )
                )
            )
        finally:
            db.close()

    @staticmethod
    def _to_notification(row: ChunkNotificationRow) -> ChunkNotification:
        received_at = row.received_at
        if received_at is not None and received_at.tzinfo is None:
            received_at = received_at.replace(tzinfo=timezone.utc)
        return ChunkNotification(
            session_id=row.session_id,
            chunk_index=row.chunk_index,
            is_last=row.is_last,
            storage_path=row.storage_path,
            public_url=row.public_url,
            mime_type=row.mime_type,
            total_chunks_client=row.total_chunks_client,
            template_id=row.template_id,
            model=row.model,
            received_at=received_at,
        )
