"""
Audit Logger

Records who did what to which entity, with what outcome and from where.

Auditing is best-effort: a failure to build or store a record is logged to
the operational log and never raised, so the business operation being
audited always completes.
"""

import json
import logging
from typing import Any, Mapping, Optional

from .context import get_client_ip, get_user_agent
from .store import AuditAction, AuditRecord, AuditStatus, AuditStore

logger = logging.getLogger(__name__)


def serialize_changes(details: Any = None, old_value: Any = None,
                      new_value: Any = None) -> Optional[str]:
    """JSON blob of {details, old_value, new_value}; None when all are empty."""
    if details is None and old_value is None and new_value is None:
        return None
    return json.dumps(
        {'details': details, 'old_value': old_value, 'new_value': new_value},
        default=str,
    )


class AuditLogger:
    """
    Writes audit records to an injected store.

    Example:
        >>> audit = AuditLogger(HashChainedAuditStore())
        >>> audit.log_success(
        ...     user_id="u1", user_email="owner@example.com", user_role="OWNER",
        ...     action=AuditAction.UPDATE, entity_type="Product", entity_id="p1",
        ...     old_value={"price": "9.99"}, new_value={"price": "11.99"},
        ... )
    """

    def __init__(self, store: AuditStore):
        self._store = store

    @property
    def store(self) -> AuditStore:
        return self._store

    def log_audit(self, *, user_id: str, user_email: str, user_role: str,
                  action: AuditAction, entity_type: str,
                  entity_id: Optional[str] = None,
                  details: Any = None,
                  old_value: Any = None,
                  new_value: Any = None,
                  status: AuditStatus = AuditStatus.SUCCESS,
                  error_message: Optional[str] = None) -> Optional[AuditRecord]:
        """
        Append one record. IP and user agent come from the current request
        context.

        Returns:
            The stored record, or None if it could not be written
        """
        try:
            record = AuditRecord(
                user_id=user_id,
                user_email=user_email,
                user_role=user_role,
                action=AuditAction(action),
                entity_type=entity_type,
                entity_id=entity_id,
                ip_address=get_client_ip(),
                user_agent=get_user_agent(),
                changes=serialize_changes(details, old_value, new_value),
                status=AuditStatus(status),
                error_message=error_message,
            )
            return self._store.append(record)
        except Exception:
            logger.error(
                "Failed to write audit record (action=%s entity=%s user=%s)",
                action, entity_type, user_id, exc_info=True,
            )
            return None

    def log_success(self, **kwargs) -> Optional[AuditRecord]:
        return self.log_audit(status=AuditStatus.SUCCESS, **kwargs)

    def log_failure(self, error_message: Optional[str] = None, **kwargs) -> Optional[AuditRecord]:
        return self.log_audit(status=AuditStatus.FAILURE, error_message=error_message, **kwargs)

    def log_blocked(self, error_message: Optional[str] = None, **kwargs) -> Optional[AuditRecord]:
        return self.log_audit(status=AuditStatus.BLOCKED, error_message=error_message, **kwargs)

    def bind(self, user_id: str, user_email: str, user_role: str) -> 'BoundAuditLogger':
        return BoundAuditLogger(self, user_id, user_email, user_role)


class BoundAuditLogger:
    """AuditLogger with the acting user fixed."""

    def __init__(self, audit_logger: AuditLogger, user_id: str,
                 user_email: str, user_role: str):
        self._audit = audit_logger
        self.user_id = user_id
        self.user_email = user_email
        self.user_role = user_role

    def _identity(self) -> dict:
        return {
            'user_id': self.user_id,
            'user_email': self.user_email,
            'user_role': self.user_role,
        }

    def log(self, action: AuditAction, entity_type: str,
            entity_id: Optional[str] = None, **kwargs) -> Optional[AuditRecord]:
        return self._audit.log_audit(
            action=action, entity_type=entity_type, entity_id=entity_id,
            **self._identity(), **kwargs,
        )

    def success(self, action: AuditAction, entity_type: str,
                entity_id: Optional[str] = None, **kwargs) -> Optional[AuditRecord]:
        return self.log(action, entity_type, entity_id, status=AuditStatus.SUCCESS, **kwargs)

    def failure(self, action: AuditAction, entity_type: str,
                entity_id: Optional[str] = None, **kwargs) -> Optional[AuditRecord]:
        return self.log(action, entity_type, entity_id, status=AuditStatus.FAILURE, **kwargs)

    def blocked(self, action: AuditAction, entity_type: str,
                entity_id: Optional[str] = None, **kwargs) -> Optional[AuditRecord]:
        return self.log(action, entity_type, entity_id, status=AuditStatus.BLOCKED, **kwargs)


def create_audit_logger(session: Mapping[str, Any], audit_logger: AuditLogger) -> BoundAuditLogger:
    """
    Bind the session's user to an audit logger.

    Args:
        session: Mapping with a "user" entry holding id, email and role

    Raises:
        ValueError: If the session has no user
    """
    user = session.get('user') if session else None
    if not user:
        raise ValueError("Session has no authenticated user")
    return audit_logger.bind(
        user_id=str(user['id']),
        user_email=str(user.get('email', '')),
        user_role=str(user.get('role', '')),
    )
