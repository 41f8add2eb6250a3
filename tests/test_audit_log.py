from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from app.core.errors import CorruptHistoryError
from app.models.workflow_item import WorkflowStatus
from app.services.audit_log import AuditLog, verify_chain

from tests.conftest import ADMIN, OWNER

FIXED_NOW = datetime(2024, 3, 1, 9, 30, 1, tzinfo=timezone.utc)


class TestAppend:

    def test_retry_in_same_window_returns_existing_record(self, db, story):
        audit = AuditLog(db, dedupe_window_seconds=5)
        with patch("app.services.audit_log.utcnow", return_value=FIXED_NOW):
            first = audit.append(story.id, OWNER, WorkflowStatus.DRAFT, WorkflowStatus.PENDING, "submit")
            second = audit.append(story.id, OWNER, WorkflowStatus.DRAFT, WorkflowStatus.PENDING, "submit")

        assert first.id == second.id
        assert len(audit.records_for(story.id)) == 1

    def test_retry_in_later_window_is_a_new_record(self, db, story):
        audit = AuditLog(db, dedupe_window_seconds=5)
        with patch("app.services.audit_log.utcnow", return_value=FIXED_NOW):
            first = audit.append(story.id, ADMIN, WorkflowStatus.DRAFT, WorkflowStatus.PENDING, "submit")
        with patch("app.services.audit_log.utcnow", return_value=FIXED_NOW + timedelta(seconds=10)):
            second = audit.append(story.id, ADMIN, WorkflowStatus.DRAFT, WorkflowStatus.PENDING, "submit")

        assert first.id != second.id

    def test_different_actor_is_not_deduped(self, db, story):
        audit = AuditLog(db)
        with patch("app.services.audit_log.utcnow", return_value=FIXED_NOW):
            a = audit.append(story.id, OWNER, WorkflowStatus.DRAFT, WorkflowStatus.PENDING, "submit")
            b = audit.append(story.id, ADMIN, WorkflowStatus.PENDING, WorkflowStatus.APPROVED, "approve")

        assert a.id < b.id
        assert [r.id for r in audit.records_for(story.id)] == [a.id, b.id]

    def test_record_fields(self, db, story):
        record = AuditLog(db).append(
            story.id, ADMIN, WorkflowStatus.DRAFT, WorkflowStatus.PENDING, "submit", reason="on behalf of owner",
        )
        assert record.item_id == story.id
        assert record.actor_id == ADMIN
        assert record.action == "submit"
        assert record.reason == "on behalf of owner"
        assert record.occurred_at is not None
        assert len(record.idempotency_key) == 64


class TestVerifyChain:

    def test_empty_history_ends_at_initial_status(self, db, story):
        assert verify_chain(story, []) == WorkflowStatus.DRAFT

    def test_unbroken_chain(self, db, story):
        audit = AuditLog(db)
        audit.append(story.id, OWNER, WorkflowStatus.DRAFT, WorkflowStatus.PENDING, "submit")
        audit.append(story.id, ADMIN, WorkflowStatus.PENDING, WorkflowStatus.REJECTED, "reject", reason="vague")
        assert verify_chain(story, audit.records_for(story.id)) == WorkflowStatus.REJECTED

    def test_gap_is_reported_with_record_id(self, db, story):
        audit = AuditLog(db)
        audit.append(story.id, OWNER, WorkflowStatus.DRAFT, WorkflowStatus.PENDING, "submit")
        broken = audit.append(story.id, OWNER, WorkflowStatus.REJECTED, WorkflowStatus.PENDING, "resubmit")

        with pytest.raises(CorruptHistoryError) as exc_info:
            verify_chain(story, audit.records_for(story.id))
        assert exc_info.value.record_id == broken.id
        assert exc_info.value.to_detail()["recordId"] == broken.id
