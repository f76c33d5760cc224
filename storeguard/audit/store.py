"""
Audit Record Stores

Append-only storage for audit records.

InMemoryAuditStore keeps records in insertion order. HashChainedAuditStore
additionally links every record to its predecessor:

    hash = SHA-256(prev_hash || canonical JSON of the record)

so editing, deleting or reordering any stored record breaks the chain from
that point on and validate_chain() reports it.
"""

import hashlib
import json
import logging
import secrets
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol

from ..exceptions import AuditIntegrityError

logger = logging.getLogger(__name__)


GENESIS_PREV_HASH = "0" * 64


class AuditAction(str, Enum):
    """Audited action taxonomy. Extend by adding members."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    LOGIN = "login"
    LOGOUT = "logout"
    LOGIN_FAILED = "login_failed"
    PASSWORD_CHANGE = "password_change"
    PERMISSION_CHANGE = "permission_change"
    EXPORT = "export"
    IMPORT = "import"
    BULK_DELETE = "bulk_delete"
    CONFIG_CHANGE = "config_change"


class AuditStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    BLOCKED = "BLOCKED"


@dataclass
class AuditRecord:
    """One audited action. ``changes`` is a JSON string or None."""
    user_id: str
    user_email: str
    user_role: str
    action: AuditAction
    entity_type: str
    entity_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    changes: Optional[str] = None
    status: AuditStatus = AuditStatus.SUCCESS
    error_message: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    id: str = field(default_factory=lambda: secrets.token_hex(12))

    # Set by HashChainedAuditStore
    prev_hash: Optional[str] = None
    hash: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Record content, without the chain fields."""
        return {
            'id': self.id,
            'user_id': self.user_id,
            'user_email': self.user_email,
            'user_role': self.user_role,
            'action': AuditAction(self.action).value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'ip_address': self.ip_address,
            'user_agent': self.user_agent,
            'changes': self.changes,
            'status': AuditStatus(self.status).value,
            'error_message': self.error_message,
            'timestamp': self.timestamp.isoformat(),
        }


def compute_record_hash(record: AuditRecord, prev_hash: str) -> str:
    canonical = json.dumps(record.to_dict(), sort_keys=True, separators=(',', ':'))
    return hashlib.sha256((prev_hash + canonical).encode('utf-8')).hexdigest()


class AuditStore(Protocol):
    """Port for audit sinks."""

    def append(self, record: AuditRecord) -> AuditRecord:
        ...


class InMemoryAuditStore:
    """Thread-safe append-only list of audit records."""

    def __init__(self):
        self._records: List[AuditRecord] = []
        self._lock = threading.Lock()

    def append(self, record: AuditRecord) -> AuditRecord:
        with self._lock:
            self._records.append(record)
        return record

    @property
    def records(self) -> List[AuditRecord]:
        with self._lock:
            return list(self._records)

    def get_user_records(self, user_id: str, limit: Optional[int] = None) -> List[AuditRecord]:
        """Newest first."""
        matches = [r for r in reversed(self.records) if r.user_id == user_id]
        return matches[:limit] if limit is not None else matches

    def get_records_by_action(self, action: AuditAction,
                              limit: Optional[int] = None) -> List[AuditRecord]:
        """Newest first."""
        matches = [r for r in reversed(self.records) if r.action == action]
        return matches[:limit] if limit is not None else matches

    def get_recent(self, limit: int = 50) -> List[AuditRecord]:
        return list(reversed(self.records))[:limit]

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


class HashChainedAuditStore(InMemoryAuditStore):
    """
    Tamper-evident audit store.

    Example:
        >>> store = HashChainedAuditStore()
        >>> AuditLogger(store).log_success(...)
        >>> store.verify_integrity()
        True
    """

    def append(self, record: AuditRecord) -> AuditRecord:
        with self._lock:
            prev_hash = self._records[-1].hash if self._records else GENESIS_PREV_HASH
            record.prev_hash = prev_hash
            record.hash = compute_record_hash(record, prev_hash)
            self._records.append(record)
        return record

    @property
    def head_hash(self) -> str:
        """Hash of the newest record (the genesis value when empty)."""
        with self._lock:
            return self._records[-1].hash if self._records else GENESIS_PREV_HASH

    def validate_chain(self) -> bool:
        """
        Recompute every link.

        Raises:
            AuditIntegrityError: At the first record that does not match
        """
        expected_prev = GENESIS_PREV_HASH
        for index, record in enumerate(self.records):
            if record.prev_hash != expected_prev:
                raise AuditIntegrityError(f"Previous hash mismatch at record {index}")
            if compute_record_hash(record, record.prev_hash) != record.hash:
                raise AuditIntegrityError(f"Record hash mismatch at record {index}")
            expected_prev = record.hash
        return True

    def verify_integrity(self) -> bool:
        try:
            return self.validate_chain()
        except AuditIntegrityError as e:
            logger.error("Audit log integrity check failed: %s", e)
            return False
