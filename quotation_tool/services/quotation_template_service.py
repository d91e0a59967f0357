"""
Quotation template service (tenant-scoped).

Templates keep a reusable set of line items and header texts. They start as
drafts, must be activated before they can be used, and can be archived,
duplicated or branched into named versions. Using a template creates a
regular draft quotation through the quotation service.
"""
import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import or_

from quotation_tool.exceptions import BusinessLogicError, NotFoundError, UnauthorizedError
from quotation_tool.models import AuditAction, Quotation, QuotationTemplate, TemplateStatus, TemplateVisibility, UserRole
from quotation_tool.services.audit_service import log_action
from quotation_tool.services.company_service import get_pricing_policy
from quotation_tool.services.quotation_service import create_quotation, price_line_items

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    'name', 'description', 'category', 'tags', 'visibility', 'version', 'is_default',
    'default_items', 'title', 'notes', 'terms', 'valid_days',
)
MAX_VALID_DAYS = 365


# ---------------------------------------------------------------------------
# Input parsing
# ---------------------------------------------------------------------------

def _text(data: Dict[str, Any], field: str, max_length: Optional[int] = None) -> Optional[str]:
    value = data.get(field)
    if value is None:
        return None
    if not isinstance(value, str):
        raise BusinessLogicError(f'{field} must be a string', payload={'field': field})
    value = value.strip()
    if max_length and len(value) > max_length:
        raise BusinessLogicError(f'{field} accepts at most {max_length} characters', payload={'field': field})
    return value or None


def _tags(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        value = value.split(',')
    if not isinstance(value, (list, tuple)) or not all(isinstance(tag, str) for tag in value):
        raise BusinessLogicError('tags must be a list of strings', payload={'field': 'tags'})
    tags = ','.join(tag.strip().lower() for tag in value if tag.strip())
    if len(tags) > 255:
        raise BusinessLogicError('tags are too long', payload={'field': 'tags'})
    return tags or None


def _valid_days(value) -> Optional[int]:
    if value is None or value == '':
        return None
    if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= MAX_VALID_DAYS:
        raise BusinessLogicError(
            f'valid_days must be an integer between 1 and {MAX_VALID_DAYS}',
            payload={'field': 'valid_days'},
        )
    return value


def _default_items(session, company_id: int, items_data) -> List[Dict[str, Any]]:
    """Check the items the same way a quotation would, then store them as JSON."""
    parsed, _ = price_line_items(items_data, get_pricing_policy(session, company_id))
    return [
        {key: str(value) if isinstance(value, Decimal) else value for key, value in item.items()}
        for item in parsed
    ]


def _parse_fields(session, company_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
    fields = {}
    if 'name' in data:
        name = _text(data, 'name', 255)
        if not name:
            raise BusinessLogicError('Template name is required', payload={'field': 'name'})
        fields['name'] = name
    for field, max_length in (('description', None), ('category', 100), ('version', 20),
                              ('title', 255), ('notes', None), ('terms', None)):
        if field in data:
            fields[field] = _text(data, field, max_length)
    if 'tags' in data:
        fields['tags'] = _tags(data['tags'])
    if 'visibility' in data:
        if data['visibility'] not in TemplateVisibility.ALL:
            raise BusinessLogicError(
                f"visibility must be one of: {', '.join(TemplateVisibility.ALL)}",
                payload={'field': 'visibility'},
            )
        fields['visibility'] = data['visibility']
    if 'is_default' in data:
        if not isinstance(data['is_default'], bool):
            raise BusinessLogicError('is_default must be true or false', payload={'field': 'is_default'})
        fields['is_default'] = data['is_default']
    if 'valid_days' in data:
        fields['valid_days'] = _valid_days(data['valid_days'])
    if 'default_items' in data:
        fields['default_items'] = _default_items(session, company_id, data['default_items'])
    return fields


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

def _visible_query(session, company_id: int, user_id: Optional[int]):
    """Company templates plus the caller's private ones."""
    query = session.query(QuotationTemplate).filter(QuotationTemplate.company_id == company_id)
    visible = QuotationTemplate.visibility == TemplateVisibility.COMPANY
    if user_id is not None:
        visible = or_(visible, QuotationTemplate.created_by_id == user_id)
    return query.filter(visible)


def get_template(session, company_id: int, template_id: int, user_id: Optional[int] = None) -> QuotationTemplate:
    template = _visible_query(session, company_id, user_id).filter(QuotationTemplate.id == template_id).first()
    if not template:
        raise NotFoundError(f'Template {template_id} not found')
    return template


def list_templates(
    session,
    company_id: int,
    user_id: Optional[int] = None,
    status: Optional[str] = None,
    category: Optional[str] = None,
    visibility: Optional[str] = None,
    tag: Optional[str] = None,
    search: Optional[str] = None,
    is_default: Optional[bool] = None,
    limit: int = 50,
    offset: int = 0,
) -> List[QuotationTemplate]:
    """List visible templates, newest first."""
    if status and status not in TemplateStatus.ALL:
        raise BusinessLogicError(f'Unknown template status: {status}', payload={'field': 'status'})

    query = _visible_query(session, company_id, user_id)
    if status:
        query = query.filter(QuotationTemplate.status == status)
    if category:
        query = query.filter(QuotationTemplate.category == category)
    if visibility:
        query = query.filter(QuotationTemplate.visibility == visibility)
    if tag:
        query = query.filter(QuotationTemplate.tags.ilike(f"%{tag.strip().lower()}%"))
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(QuotationTemplate.name.ilike(pattern), QuotationTemplate.description.ilike(pattern)))
    if is_default is not None:
        query = query.filter(QuotationTemplate.is_default.is_(is_default))

    return query.order_by(
        QuotationTemplate.created_at.desc(), QuotationTemplate.id.desc()
    ).limit(limit).offset(offset).all()


def list_categories(session, company_id: int, user_id: Optional[int] = None) -> List[str]:
    rows = _visible_query(session, company_id, user_id).filter(
        QuotationTemplate.category.isnot(None)
    ).with_entities(QuotationTemplate.category).distinct().all()
    return sorted(row[0] for row in rows)


def list_popular_templates(session, company_id: int, user_id: Optional[int] = None, limit: int = 10) -> List[QuotationTemplate]:
    """Active templates ordered by how often they were used."""
    return _visible_query(session, company_id, user_id).filter(
        QuotationTemplate.status == TemplateStatus.ACTIVE
    ).order_by(
        QuotationTemplate.usage_count.desc(), QuotationTemplate.name
    ).limit(limit).all()


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def _check_can_manage(template: QuotationTemplate, user_id: Optional[int], user_role: Optional[str]) -> None:
    """The creator, owners and admins may change a template; CLI calls pass no user."""
    if user_id is None or template.created_by_id == user_id:
        return
    if user_role in (UserRole.OWNER, UserRole.ADMIN):
        return
    raise UnauthorizedError('Only the creator or an administrator can change this template')


def _clear_other_defaults(session, template: QuotationTemplate) -> None:
    session.query(QuotationTemplate).filter(
        QuotationTemplate.company_id == template.company_id,
        QuotationTemplate.id != template.id,
        QuotationTemplate.is_default.is_(True),
    ).update({QuotationTemplate.is_default: False}, synchronize_session=False)


def _save(session, template: QuotationTemplate, action: AuditAction, user_id: Optional[int], details: dict) -> QuotationTemplate:
    try:
        session.add(template)
        session.flush()
        if template.is_default:
            _clear_other_defaults(session, template)
        log_action(
            session,
            action,
            company_id=template.company_id,
            user_id=user_id,
            resource_type='quotation_template',
            resource_id=template.id,
            details=details,
        )
        session.commit()
    except Exception:
        session.rollback()
        raise
    return template


def create_template(session, company_id: int, data: Dict[str, Any], user_id: Optional[int] = None) -> QuotationTemplate:
    """
    Create a draft template.

    Raises:
        BusinessLogicError: if the name is missing or a field is malformed
        InvalidLineItem: if a default item would not price
    """
    if 'name' not in data:
        raise BusinessLogicError('Template name is required', payload={'field': 'name'})
    unknown = set(data) - set(EDITABLE_FIELDS) - {'parent_template_id'}
    if unknown:
        raise BusinessLogicError(f"Unknown fields: {', '.join(sorted(unknown))}")

    fields = _parse_fields(session, company_id, data)
    parent_id = data.get('parent_template_id')
    if parent_id is not None:
        parent_id = get_template(session, company_id, parent_id, user_id).id

    now = datetime.now()
    template = QuotationTemplate(
        company_id=company_id,
        created_by_id=user_id,
        parent_template_id=parent_id,
        status=TemplateStatus.DRAFT,
        visibility=TemplateVisibility.COMPANY,
        is_default=False,
        default_items=[],
        usage_count=0,
        created_at=now,
        updated_at=now,
    )
    for field, value in fields.items():
        setattr(template, field, value)

    _save(session, template, AuditAction.TEMPLATE_CREATED, user_id, {'name': template.name})
    logger.info(f"[TEMPLATE] Template {template.id} '{template.name}' created for company {company_id}")
    return template


def update_template(
    session,
    company_id: int,
    template_id: int,
    data: Dict[str, Any],
    user_id: Optional[int] = None,
    user_role: Optional[str] = None,
) -> QuotationTemplate:
    template = get_template(session, company_id, template_id, user_id)
    _check_can_manage(template, user_id, user_role)

    unknown = set(data) - set(EDITABLE_FIELDS)
    if unknown:
        raise BusinessLogicError(f"Unknown fields: {', '.join(sorted(unknown))}")

    fields = _parse_fields(session, company_id, data)
    for field, value in fields.items():
        setattr(template, field, value)
    template.updated_at = datetime.now()

    _save(session, template, AuditAction.TEMPLATE_UPDATED, user_id, {'fields': sorted(fields)})
    logger.info(f"[TEMPLATE] Template {template.id} updated: {', '.join(sorted(fields)) or 'no changes'}")
    return template


def _set_status(session, company_id, template_id, status, user_id, user_role) -> QuotationTemplate:
    template = get_template(session, company_id, template_id, user_id)
    _check_can_manage(template, user_id, user_role)
    previous = template.status
    template.status = status
    if status == TemplateStatus.ARCHIVED:
        template.is_default = False
    template.updated_at = datetime.now()

    _save(session, template, AuditAction.TEMPLATE_STATUS_CHANGED, user_id, {'from': previous, 'to': status})
    logger.info(f"[TEMPLATE] Template {template.id}: {previous} -> {status}")
    return template


def activate_template(session, company_id: int, template_id: int, user_id: Optional[int] = None,
                      user_role: Optional[str] = None) -> QuotationTemplate:
    return _set_status(session, company_id, template_id, TemplateStatus.ACTIVE, user_id, user_role)


def archive_template(session, company_id: int, template_id: int, user_id: Optional[int] = None,
                     user_role: Optional[str] = None) -> QuotationTemplate:
    return _set_status(session, company_id, template_id, TemplateStatus.ARCHIVED, user_id, user_role)


def _copy(source: QuotationTemplate, **overrides) -> QuotationTemplate:
    now = datetime.now()
    values = dict(
        company_id=source.company_id,
        name=source.name,
        description=source.description,
        category=source.category,
        tags=source.tags,
        visibility=source.visibility,
        version=source.version,
        default_items=list(source.default_items or []),
        title=source.title,
        notes=source.notes,
        terms=source.terms,
        valid_days=source.valid_days,
        status=TemplateStatus.DRAFT,
        is_default=False,
        usage_count=0,
        created_at=now,
        updated_at=now,
    )
    values.update(overrides)
    return QuotationTemplate(**values)


def duplicate_template(session, company_id: int, template_id: int, user_id: Optional[int] = None) -> QuotationTemplate:
    """Private draft copy owned by the caller."""
    source = get_template(session, company_id, template_id, user_id)
    copy = _copy(
        source,
        name=f"{source.name} (Copy)"[:255],
        visibility=TemplateVisibility.PRIVATE if user_id is not None else TemplateVisibility.COMPANY,
        version=None,
        created_by_id=user_id,
    )
    _save(session, copy, AuditAction.TEMPLATE_CREATED, user_id, {'name': copy.name, 'duplicated_from': source.id})
    logger.info(f"[TEMPLATE] Template {source.id} duplicated as {copy.id}")
    return copy


def create_template_version(session, company_id: int, template_id: int, version: str,
                            user_id: Optional[int] = None) -> QuotationTemplate:
    """
    Draft child of a template carrying a version label.

    Raises:
        BusinessLogicError: if the label is empty or already used for this template (409)
    """
    version = (version or '').strip() if isinstance(version, str) else ''
    if not version or len(version) > 20:
        raise BusinessLogicError('version must be a label of 1 to 20 characters', payload={'field': 'version'})

    source = get_template(session, company_id, template_id, user_id)
    exists = session.query(QuotationTemplate.id).filter(
        QuotationTemplate.parent_template_id == source.id,
        QuotationTemplate.version == version,
    ).first()
    if exists:
        raise BusinessLogicError(
            f'Version {version} already exists for template {source.id}',
            status_code=409,
            payload={'field': 'version'},
        )

    child = _copy(source, version=version, parent_template_id=source.id, created_by_id=user_id)
    _save(session, child, AuditAction.TEMPLATE_CREATED, user_id, {'name': child.name, 'version': version})
    logger.info(f"[TEMPLATE] Version {version} of template {source.id} created as {child.id}")
    return child


def delete_template(session, company_id: int, template_id: int, user_id: Optional[int] = None,
                    user_role: Optional[str] = None) -> None:
    """
    Delete a template that was never used.

    Versions branched from it are kept and lose their parent link.
    """
    template = get_template(session, company_id, template_id, user_id)
    _check_can_manage(template, user_id, user_role)
    if template.usage_count > 0:
        raise BusinessLogicError('A template that has been used cannot be deleted; archive it instead', status_code=409)

    try:
        session.query(QuotationTemplate).filter(
            QuotationTemplate.parent_template_id == template.id
        ).update({QuotationTemplate.parent_template_id: None}, synchronize_session=False)
        log_action(
            session,
            AuditAction.TEMPLATE_DELETED,
            company_id=company_id,
            user_id=user_id,
            resource_type='quotation_template',
            resource_id=template.id,
            details={'name': template.name},
        )
        session.delete(template)
        session.commit()
    except Exception:
        session.rollback()
        raise
    logger.info(f"[TEMPLATE] Template {template_id} deleted from company {company_id}")


def use_template(
    session,
    company_id: int,
    template_id: int,
    user_id: Optional[int] = None,
    client_id: Optional[int] = None,
    valid_until=None,
    title: Optional[str] = None,
) -> Quotation:
    """
    Start a draft quotation from an active template.

    The validity date defaults to today plus the template's `valid_days`,
    or to the company default when the template has none.

    Raises:
        BusinessLogicError: if the template is not active (409)
    """
    template = get_template(session, company_id, template_id, user_id)
    if template.status != TemplateStatus.ACTIVE:
        raise BusinessLogicError(
            f'Template {template.id} is {template.status}; only active templates can be used',
            status_code=409,
            payload={'status': template.status},
        )

    if valid_until is None and template.valid_days:
        valid_until = date.today() + timedelta(days=template.valid_days)

    quotation = create_quotation(
        session,
        company_id,
        items=list(template.default_items or []),
        client_id=client_id,
        valid_until=valid_until,
        title=title or template.title or template.name,
        notes=template.notes,
        terms=template.terms,
        user_id=user_id,
        template_id=template.id,
    )

    try:
        template.usage_count = QuotationTemplate.usage_count + 1
        template.last_used_at = datetime.now()
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info(f"[TEMPLATE] Template {template.id} used for quotation {quotation.number}")
    return quotation
