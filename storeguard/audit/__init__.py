# Audit Module
"""
Security audit trail:
- Fixed action taxonomy and outcome status
- Best-effort logger that never raises into the audited operation
- Request-scoped client IP / user agent resolution
- Hash-chained, tamper-evident record store
"""

from .context import (
    request_context,
    get_request_headers,
    get_client_ip,
    get_user_agent,
)
from .store import (
    AuditAction,
    AuditStatus,
    AuditRecord,
    AuditStore,
    InMemoryAuditStore,
    HashChainedAuditStore,
    compute_record_hash,
    GENESIS_PREV_HASH,
)
from .logger import (
    AuditLogger,
    BoundAuditLogger,
    create_audit_logger,
    serialize_changes,
)

__all__ = [
    'request_context',
    'get_request_headers',
    'get_client_ip',
    'get_user_agent',
    'AuditAction',
    'AuditStatus',
    'AuditRecord',
    'AuditStore',
    'InMemoryAuditStore',
    'HashChainedAuditStore',
    'compute_record_hash',
    'GENESIS_PREV_HASH',
    'AuditLogger',
    'BoundAuditLogger',
    'create_audit_logger',
    'serialize_changes',
]
