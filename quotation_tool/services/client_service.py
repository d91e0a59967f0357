"""Client service (tenant-scoped)."""
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import or_

from quotation_tool.exceptions import BusinessLogicError, NotFoundError
from quotation_tool.models import Client, AuditAction
from quotation_tool.services.audit_service import log_action
from quotation_tool.utils.formatters import is_valid_email

logger = logging.getLogger(__name__)


def create_client(session, company_id: int, data: dict, user_id: Optional[int] = None) -> Client:
    """
    Create a client for a company.

    Raises:
        BusinessLogicError: if the name is missing or the e-mail is malformed
    """
    name = (data.get('name') or '').strip()
    if not name:
        raise BusinessLogicError('Client name is required', payload={'field': 'name'})

    email = (data.get('email') or '').strip() or None
    if email and not is_valid_email(email):
        raise BusinessLogicError(f'Invalid e-mail address: {email}', payload={'field': 'email'})

    now = datetime.now()
    client = Client(
        company_id=company_id,
        name=name,
        email=email,
        phone=(data.get('phone') or '').strip() or None,
        tax_id=(data.get('tax_id') or '').strip() or None,
        address=data.get('address') or None,
        notes=data.get('notes') or None,
        active=True,
        created_at=now,
        updated_at=now,
    )

    try:
        session.add(client)
        session.flush()
        log_action(
            session,
            AuditAction.CLIENT_CREATED,
            company_id=company_id,
            user_id=user_id,
            resource_type='client',
            resource_id=client.id,
            details={'name': name},
        )
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info(f"[CLIENT] Client {client.id} created for company {company_id}")
    return client


def get_client(session, company_id: int, client_id: int) -> Client:
    client = session.query(Client).filter(
        Client.id == client_id,
        Client.company_id == company_id,
    ).first()
    if not client:
        raise NotFoundError(f'Client {client_id} not found')
    return client


def list_clients(session, company_id: int, search: Optional[str] = None, include_inactive: bool = False) -> List[Client]:
    query = session.query(Client).filter(Client.company_id == company_id)
    if not include_inactive:
        query = query.filter(Client.active.is_(True))
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(Client.name.ilike(pattern), Client.email.ilike(pattern)))
    return query.order_by(Client.name).all()
