"""
Unit tests for the audit trail.

Tests:
- Client IP / user agent resolution from request context
- Record construction and change serialization
- Best-effort writes (store failures never propagate)
- Session-bound loggers and query helpers
- Hash chain validation and tamper detection
"""

import json
import logging

import pytest

from storeguard.audit import (
    GENESIS_PREV_HASH,
    AuditAction,
    AuditLogger,
    AuditStatus,
    HashChainedAuditStore,
    InMemoryAuditStore,
    create_audit_logger,
    get_client_ip,
    get_user_agent,
    request_context,
    serialize_changes,
)
from storeguard.exceptions import AuditIntegrityError


OWNER = {
    'user_id': 'u1',
    'user_email': 'owner@example.com',
    'user_role': 'OWNER',
}


class FailingStore:
    def append(self, record):
        raise RuntimeError("disk full")


class TestRequestContext:
    """Tests for IP and user agent resolution."""

    def test_defaults_outside_request(self):
        assert get_client_ip() == "unknown"
        assert get_user_agent() == "unknown"

    def test_forwarded_for_first_entry(self):
        headers = {'X-Forwarded-For': '203.0.113.9, 10.0.0.1', 'X-Real-IP': '10.0.0.2'}
        with request_context(headers):
            assert get_client_ip() == "203.0.113.9"

    def test_real_ip_then_cloudflare(self):
        assert get_client_ip({'x-real-ip': '10.0.0.2', 'cf-connecting-ip': '10.0.0.3'}) == "10.0.0.2"
        assert get_client_ip({'CF-Connecting-IP': '10.0.0.3'}) == "10.0.0.3"

    def test_empty_forwarded_for_falls_through(self):
        assert get_client_ip({'x-forwarded-for': ' ', 'x-real-ip': '10.0.0.2'}) == "10.0.0.2"

    def test_user_agent(self):
        with request_context({'User-Agent': 'POS-Terminal/2.1'}):
            assert get_user_agent() == "POS-Terminal/2.1"
        assert get_user_agent() == "unknown"


class TestSerializeChanges:
    """Tests for the changes blob."""

    def test_all_empty_is_none(self):
        assert serialize_changes() is None

    def test_blob_shape(self):
        blob = json.loads(serialize_changes(old_value={'price': '9.99'}, new_value={'price': '11.99'}))
        assert blob == {
            'details': None,
            'old_value': {'price': '9.99'},
            'new_value': {'price': '11.99'},
        }

    def test_non_json_values_stringified(self):
        from decimal import Decimal

        blob = json.loads(serialize_changes(details={'amount': Decimal('4.50')}))
        assert blob['details'] == {'amount': '4.50'}


class TestAuditLogger:
    """Tests for writing records."""

    def test_record_fields(self, audit_logger, audit_store):
        with request_context({'x-forwarded-for': '203.0.113.9', 'user-agent': 'POS-Terminal/2.1'}):
            record = audit_logger.log_success(
                **OWNER, action=AuditAction.UPDATE, entity_type="Product",
                entity_id="p1", old_value={'price': '9.99'}, new_value={'price': '11.99'},
            )

        assert record is audit_store.records[0]
        assert record.action == AuditAction.UPDATE
        assert record.status == AuditStatus.SUCCESS
        assert record.ip_address == "203.0.113.9"
        assert record.user_agent == "POS-Terminal/2.1"
        assert json.loads(record.changes)['new_value'] == {'price': '11.99'}
        assert record.error_message is None

    def test_failure_and_blocked(self, audit_logger):
        failed = audit_logger.log_failure(
            "Insufficient stock", **OWNER, action=AuditAction.UPDATE, entity_type="Inventory",
        )
        blocked = audit_logger.log_blocked(
            "Rate limit exceeded", **OWNER, action=AuditAction.EXPORT, entity_type="Report",
        )
        assert failed.status == AuditStatus.FAILURE
        assert failed.error_message == "Insufficient stock"
        assert blocked.status == AuditStatus.BLOCKED

    def test_action_given_as_string(self, audit_logger):
        record = audit_logger.log_success(**OWNER, action="bulk_delete", entity_type="Product")
        assert record.action is AuditAction.BULK_DELETE

    def test_store_failure_never_raises(self, caplog):
        audit = AuditLogger(FailingStore())
        with caplog.at_level(logging.ERROR, logger="storeguard.audit"):
            result = audit.log_success(**OWNER, action=AuditAction.DELETE, entity_type="Product")
        assert result is None
        assert "Failed to write audit record" in caplog.text

    def test_unknown_action_never_raises(self, audit_logger, audit_store):
        assert audit_logger.log_success(**OWNER, action="teleport", entity_type="Product") is None
        assert len(audit_store) == 0


class TestSessionLogger:
    """Tests for create_audit_logger and bound loggers."""

    SESSION = {'user': {'id': 'u1', 'email': 'owner@example.com', 'role': 'OWNER'}}

    def test_bound_identity(self, audit_logger):
        bound = create_audit_logger(self.SESSION, audit_logger)
        record = bound.success(AuditAction.DELETE, "Product", "p9", details={'reason': 'discontinued'})

        assert (record.user_id, record.user_email, record.user_role) == ('u1', 'owner@example.com', 'OWNER')
        assert record.entity_id == "p9"

    def test_bound_outcomes(self, audit_logger):
        bound = create_audit_logger(self.SESSION, audit_logger)
        assert bound.failure(AuditAction.IMPORT, "Product", error_message="Bad CSV").status == AuditStatus.FAILURE
        assert bound.blocked(AuditAction.EXPORT, "Customer").status == AuditStatus.BLOCKED

    @pytest.mark.parametrize("session", [None, {}, {'user': None}])
    def test_requires_authenticated_session(self, audit_logger, session):
        with pytest.raises(ValueError):
            create_audit_logger(session, audit_logger)


class TestQueries:
    """Tests for the in-memory query helpers."""

    def _populate(self, audit_logger):
        audit_logger.log_success(**OWNER, action=AuditAction.LOGIN, entity_type="User")
        audit_logger.log_success(
            user_id='u2', user_email='manager@example.com', user_role='MANAGER',
            action=AuditAction.LOGIN, entity_type="User",
        )
        audit_logger.log_success(**OWNER, action=AuditAction.EXPORT, entity_type="Report", entity_id="r1")
        audit_logger.log_success(**OWNER, action=AuditAction.LOGOUT, entity_type="User")

    def test_user_records_newest_first(self):
        store = InMemoryAuditStore()
        self._populate(AuditLogger(store))

        actions = [r.action for r in store.get_user_records('u1')]
        assert actions == [AuditAction.LOGOUT, AuditAction.EXPORT, AuditAction.LOGIN]
        assert len(store.get_user_records('u1', limit=1)) == 1

    def test_records_by_action(self, audit_logger, audit_store):
        self._populate(audit_logger)
        logins = audit_store.get_records_by_action(AuditAction.LOGIN)
        assert [r.user_id for r in logins] == ['u2', 'u1']

    def test_recent(self, audit_logger, audit_store):
        self._populate(audit_logger)
        assert audit_store.get_recent(2)[0].action == AuditAction.LOGOUT
        assert len(audit_store.get_recent()) == 4


class TestHashChain:
    """Tests for tamper evidence."""

    def _populate(self, audit_logger, count=4):
        for i in range(count):
            audit_logger.log_success(**OWNER, action=AuditAction.UPDATE, entity_type="Product", entity_id=f"p{i}")

    def test_empty_chain_valid(self, audit_store):
        assert audit_store.verify_integrity()
        assert audit_store.head_hash == GENESIS_PREV_HASH

    def test_links(self, audit_logger, audit_store):
        self._populate(audit_logger)
        records = audit_store.records

        assert records[0].prev_hash == GENESIS_PREV_HASH
        for prev, current in zip(records, records[1:]):
            assert current.prev_hash == prev.hash
        assert audit_store.head_hash == records[-1].hash
        assert audit_store.validate_chain()

    def test_edited_record_detected(self, audit_logger, audit_store):
        self._populate(audit_logger)
        audit_store.records[1].entity_id = "p-forged"

        with pytest.raises(AuditIntegrityError, match="Record hash mismatch at record 1"):
            audit_store.validate_chain()

    def test_edited_status_detected(self, audit_logger, audit_store):
        self._populate(audit_logger)
        audit_store.records[2].status = AuditStatus.FAILURE
        assert not audit_store.verify_integrity()

    def test_deleted_record_detected(self, audit_logger, audit_store):
        self._populate(audit_logger)
        del audit_store._records[1]

        with pytest.raises(AuditIntegrityError, match="Previous hash mismatch at record 1"):
            audit_store.validate_chain()

    def test_reordered_records_detected(self, audit_logger, audit_store):
        self._populate(audit_logger)
        records = audit_store._records
        records[1], records[2] = records[2], records[1]
        assert not audit_store.verify_integrity()

    def test_failure_logged(self, audit_logger, audit_store, caplog):
        self._populate(audit_logger)
        audit_store.records[0].user_email = "someone-else@example.com"

        with caplog.at_level(logging.ERROR, logger="storeguard.audit"):
            assert not audit_store.verify_integrity()
        assert "integrity check failed" in caplog.text

    def test_records_copy_is_detached(self, audit_logger, audit_store):
        self._populate(audit_logger)
        audit_store.records.clear()
        assert len(audit_store) == 4
        assert audit_store.verify_integrity()
