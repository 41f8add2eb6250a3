import logging
from datetime import datetime
from typing import List, Optional
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import CorruptHistoryError, StoreUnavailableError
from app.models.transition_record import TransitionRecord
from app.models.workflow_item import WorkflowItem, WorkflowStatus
from app.services.item_store import utcnow

logger = logging.getLogger(__name__)


def verify_chain(item: WorkflowItem, records: List[TransitionRecord]) -> WorkflowStatus:
    """Walk ``records`` from the item's initial status and return the chain tail.

    Raises CorruptHistoryError at the first record whose ``from_status`` does
    not continue the chain.
    """
    expected = item.initial_status
    for record in records:
        if record.from_status != expected:
            raise CorruptHistoryError(
                item.id,
                f"History of item {item.id} is broken at record {record.id}: "
                f"expected from_status {expected.value}, found {record.from_status.value}",
                record_id=record.id,
            )
        expected = record.to_status
    return expected


class AuditLog:
    """Append-only writer and reader for transition records."""

    def __init__(self, db: Session, dedupe_window_seconds: Optional[int] = None):
        self.db = db
        self.dedupe_window_seconds = max(1, dedupe_window_seconds or settings.AUDIT_DEDUPE_WINDOW_SECONDS)

    def _bucket(self, at: datetime) -> int:
        return int(at.timestamp()) // self.dedupe_window_seconds

    def records_for(self, item_id: str) -> List[TransitionRecord]:
        try:
            return (
                self.db.query(TransitionRecord)
                .filter(TransitionRecord.item_id == item_id)
                .order_by(TransitionRecord.id.asc())
                .all()
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreUnavailableError(f"Could not read history of item {item_id}: {e}", item_id=item_id) from e

    def append(
        self,
        item_id: str,
        actor_id: str,
        from_status: WorkflowStatus,
        to_status: WorkflowStatus,
        action: str,
        reason: Optional[str] = None,
        commit: bool = True,
    ) -> TransitionRecord:
        """Append one record, or return the existing one if this exact step was already written.

        A step is identified by item, statuses, actor, time bucket and the
        record it follows, so a retried append collapses while a later
        legitimate repeat of the same transition does not.

        With ``commit=False`` the record is only flushed into the session's
        open transaction and the caller commits it with the status change.
        """
        occurred_at = utcnow()
        bucket = self._bucket(occurred_at)
        try:
            last_ids = [
                row[0]
                for row in self.db.query(TransitionRecord.id)
                .filter(TransitionRecord.item_id == item_id)
                .order_by(TransitionRecord.id.desc())
                .limit(2)
                .all()
            ]
            tail_id = last_ids[0] if last_ids else None
            key = TransitionRecord.generate_idempotency_key(
                item_id, from_status, to_status, actor_id, bucket, tail_id,
            )
            candidates = [key]
            if tail_id is not None:
                # a retry of the tail itself was keyed against the record before it
                previous_id = last_ids[1] if len(last_ids) > 1 else None
                candidates.append(TransitionRecord.generate_idempotency_key(
                    item_id, from_status, to_status, actor_id, bucket, previous_id,
                ))
            for candidate in candidates:
                existing = self._find_by_key(candidate)
                if existing is not None:
                    logger.info("audit record for item %s already written (record %s)", item_id, existing.id)
                    return existing

            record = TransitionRecord(
                item_id=item_id,
                actor_id=actor_id,
                from_status=from_status,
                to_status=to_status,
                action=getattr(action, "value", action),
                reason=reason,
                occurred_at=occurred_at,
                idempotency_key=key,
            )
            self.db.add(record)
            if not commit:
                self.db.flush()
                return record
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            # a concurrent retry inserted the same step first; inside a caller's
            # transaction the rollback has already discarded the caller's work
            existing = self._find_by_key(key) if commit else None
            if existing is None:
                raise StoreUnavailableError(f"Could not append audit record for item {item_id}: {e}", item_id=item_id) from e
            return existing
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreUnavailableError(f"Could not append audit record for item {item_id}: {e}", item_id=item_id) from e

        self.db.refresh(record)
        return record

    def _find_by_key(self, key: str) -> Optional[TransitionRecord]:
        return (
            self.db.query(TransitionRecord)
            .filter(TransitionRecord.idempotency_key == key)
            .first()
        )
