"""
Audit logging service for tracking critical actions.
"""
from quotation_tool.models.audit_log import AuditLog, AuditAction
from flask import has_request_context, request
from datetime import datetime
import json
import logging

logger = logging.getLogger(__name__)


def log_action(
    session,
    action: AuditAction,
    company_id: int,
    user_id: int = None,
    resource_type: str = None,
    resource_id: int = None,
    details: dict = None
):
    """
    Add an audit entry to the session.

    Args:
        session: Database session
        action: AuditAction enum value
        company_id: Company the action belongs to
        user_id: Acting user (None for CLI/system actions)
        resource_type: Type of resource affected (e.g., 'quotation', 'client')
        resource_id: ID of the affected resource
        details: Dict with additional details (will be JSON encoded)

    The caller commits; the entry is part of the caller's transaction.
    """
    details_json = None
    if details:
        details_json = json.dumps(details, default=str)

    ip_address = None
    user_agent = None
    if has_request_context():
        ip_address = request.remote_addr
        user_agent = request.headers.get('User-Agent', '')[:255]

    audit_entry = AuditLog(
        company_id=company_id,
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        details=details_json,
        ip_address=ip_address,
        user_agent=user_agent,
        created_at=datetime.now()
    )
    session.add(audit_entry)

    logger.info(f"Audit log created: {action.value} by user {user_id} on {resource_type} {resource_id}")
    return audit_entry


def get_audit_logs(
    session,
    company_id: int,
    limit: int = 100,
    offset: int = 0,
    action_filter: AuditAction = None,
    resource_type_filter: str = None,
    resource_id_filter: int = None
):
    """
    Retrieve audit logs for a company with optional filters, newest first.
    """
    query = session.query(AuditLog).filter(
        AuditLog.company_id == company_id
    )

    if action_filter:
        query = query.filter(AuditLog.action == action_filter)

    if resource_type_filter:
        query = query.filter(AuditLog.resource_type == resource_type_filter)

    if resource_id_filter:
        query = query.filter(AuditLog.resource_id == resource_id_filter)

    query = query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
    query = query.limit(limit).offset(offset)

    return query.all()
