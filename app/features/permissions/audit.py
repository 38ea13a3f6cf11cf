"""
Audit trail for access-control mutations.
"""
from typing import Any, Dict, Optional
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.permissions.models import AuditLog
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


def record_audit(
    db: AsyncSession,
    actor: Optional[User],
    action: str,
    resource_type: str,
    resource_id: Optional[int] = None,
    tenant_id: Optional[int] = None,
    details: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    """
    Add an audit log entry to the caller's transaction.

    The entry is committed (or rolled back) together with the change it
    describes.
    """
    audit_log = AuditLog(
        user_id=actor.id if actor else None,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        tenant_id=tenant_id,
        details=details,
    )
    db.add(audit_log)

    log.info(
        f"Audit: user={audit_log.user_id} action={action} resource={resource_type}:{resource_id} tenant={tenant_id}"
    )
    return audit_log
