"""
Company (tenant) service: creation through an explicit record factory,
settings management and the per-company pricing policy.
"""
import logging
import re
from datetime import datetime
from decimal import Decimal
from typing import Optional, Tuple

from flask import current_app, has_app_context
from sqlalchemy.exc import IntegrityError

from quotation_tool.engine.money import PricingPolicy
from quotation_tool.exceptions import BusinessLogicError, NotFoundError
from quotation_tool.models import (
    Company, CompanySettings, CompanyBranding, AppUser, UserRole, NotificationPreferences, AuditAction,
)
from quotation_tool.services.audit_service import log_action
from quotation_tool.services.notification_preferences_service import build_default_preferences
from quotation_tool.services.template_service import validate_overrides
from quotation_tool.utils.formatters import generate_slug, is_valid_email, parse_decimal

logger = logging.getLogger(__name__)

CURRENCY_PATTERN = re.compile(r'^[A-Z]{3}$')
PREFIX_PATTERN = re.compile(r'^[A-Za-z0-9]{1,10}$')
MAX_MINOR_UNITS = 2  # monetary columns are NUMERIC(14, 2)

CompanyRecords = Tuple[Company, CompanySettings, CompanyBranding, AppUser, NotificationPreferences]


def _config(key, default):
    if has_app_context():
        return current_app.config.get(key, default)
    return default


def build_company_records(
    name: str,
    owner_email: str,
    owner_name: Optional[str] = None,
    slug: Optional[str] = None,
    email: Optional[str] = None,
    phone: Optional[str] = None,
    address: Optional[str] = None,
    currency: Optional[str] = None,
) -> CompanyRecords:
    """
    Construct every record a new company needs, linked but not persisted.

    Returns:
        (company, settings, branding, owner, owner_preferences)
    """
    name = (name or '').strip()
    owner_email = (owner_email or '').strip().lower()
    if not name:
        raise BusinessLogicError('Company name is required', payload={'field': 'name'})
    if not is_valid_email(owner_email):
        raise BusinessLogicError('A valid owner e-mail is required', payload={'field': 'owner_email'})

    currency = (currency or _config('DEFAULT_CURRENCY', 'USD')).upper()
    if not CURRENCY_PATTERN.match(currency):
        raise BusinessLogicError(f'Invalid currency code: {currency}', payload={'field': 'currency'})

    now = datetime.now()
    company = Company(
        name=name,
        slug=slug or generate_slug(name),
        email=email,
        phone=phone,
        address=address,
        status='active',
        created_at=now,
        updated_at=now,
    )
    settings = CompanySettings(
        company=company,
        currency=currency,
        minor_units=min(_config('CURRENCY_MINOR_UNITS', 2), MAX_MINOR_UNITS),
        default_tax_rate=Decimal('0'),
        default_discount_percent=Decimal('0'),
        quote_valid_days=_config('QUOTE_VALID_DAYS', 30),
        quote_number_prefix=_config('QUOTE_NUMBER_PREFIX', 'QT'),
        notification_templates={},
        updated_at=now,
    )
    branding = CompanyBranding(
        company=company,
        company_name=name,
        contact_email=email or owner_email,
        contact_phone=phone,
        address=address,
    )
    owner = AppUser(
        company=company,
        email=owner_email,
        full_name=(owner_name or '').strip() or None,
        role=UserRole.OWNER,
        active=True,
        created_at=now,
    )
    preferences = build_default_preferences(owner)
    return company, settings, branding, owner, preferences


def _unique_slug(session, base_slug: str) -> str:
    slug = base_slug or 'company'
    counter = 1
    while session.query(Company).filter_by(slug=slug).first():
        slug = f"{base_slug}-{counter}"
        counter += 1
    return slug


def create_company(session, name: str, owner_email: str, **kwargs) -> CompanyRecords:
    """
    Create a company with its settings, branding, owner and owner preferences
    in a single transaction.

    Raises:
        BusinessLogicError: if the name or owner e-mail is already taken
    """
    records = build_company_records(name, owner_email, **kwargs)
    company, settings, branding, owner, preferences = records

    if session.query(Company).filter(Company.name == company.name).first():
        raise BusinessLogicError(f'A company named "{company.name}" already exists', payload={'field': 'name'})
    if session.query(AppUser).filter(AppUser.email == owner.email).first():
        raise BusinessLogicError(f'User {owner.email} already exists', payload={'field': 'owner_email'})

    company.slug = _unique_slug(session, company.slug)

    try:
        session.add_all(records)
        session.flush()
        log_action(
            session,
            AuditAction.COMPANY_CREATED,
            company_id=company.id,
            user_id=owner.id,
            resource_type='company',
            resource_id=company.id,
            details={'name': company.name, 'slug': company.slug},
        )
        session.commit()
    except IntegrityError:
        session.rollback()
        raise BusinessLogicError(f'A company named "{name}" already exists', payload={'field': 'name'})
    except Exception:
        session.rollback()
        raise

    logger.info(f"[COMPANY] Company {company.id} ({company.slug}) created with owner {owner.email}")
    return records


def get_company(session, company_id: int) -> Company:
    company = session.get(Company, company_id)
    if not company:
        raise NotFoundError(f'Company {company_id} not found')
    return company


def get_company_settings(session, company_id: int) -> CompanySettings:
    settings = session.query(CompanySettings).filter_by(company_id=company_id).first()
    if not settings:
        raise NotFoundError(f'Settings for company {company_id} not found')
    return settings


def _percent_setting(name, value) -> Decimal:
    try:
        percent = parse_decimal(value, name)
    except ValueError as e:
        raise BusinessLogicError(str(e), payload={'field': name})
    if percent < 0 or percent > 100:
        raise BusinessLogicError(f'{name} must be between 0 and 100', payload={'field': name})
    return percent


def _int_setting(name, value, minimum, maximum) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not minimum <= value <= maximum:
        raise BusinessLogicError(f'{name} must be an integer between {minimum} and {maximum}', payload={'field': name})
    return value


def update_company_settings(session, company_id: int, data: dict, user_id: Optional[int] = None) -> CompanySettings:
    """
    Validate and apply a partial settings update, then drop the cached pricing policy.
    """
    settings = get_company_settings(session, company_id)
    changes = {}

    for key, value in data.items():
        if key == 'currency':
            value = str(value or '').upper()
            if not CURRENCY_PATTERN.match(value):
                raise BusinessLogicError(f'Invalid currency code: {value}', payload={'field': key})
        elif key == 'minor_units':
            value = _int_setting(key, value, 0, MAX_MINOR_UNITS)
        elif key in ('default_tax_rate', 'default_discount_percent'):
            value = _percent_setting(key, value)
        elif key == 'quote_valid_days':
            value = _int_setting(key, value, 1, 365)
        elif key == 'quote_number_prefix':
            if not PREFIX_PATTERN.match(str(value or '')):
                raise BusinessLogicError('quote_number_prefix must be 1-10 letters or digits', payload={'field': key})
        elif key in ('timezone', 'language', 'date_format'):
            if not isinstance(value, str) or not value.strip():
                raise BusinessLogicError(f'{key} cannot be empty', payload={'field': key})
            value = value.strip()
        elif key == 'notification_templates':
            if not isinstance(value, dict):
                raise BusinessLogicError('notification_templates must be an object', payload={'field': key})
            validate_overrides(value)
            value = dict(value)
        else:
            raise BusinessLogicError(f'Unknown setting: {key}', payload={'field': key})
        changes[key] = value

    try:
        for key, value in changes.items():
            setattr(settings, key, value)
        log_action(
            session,
            AuditAction.SETTINGS_CHANGED,
            company_id=company_id,
            user_id=user_id,
            resource_type='company_settings',
            resource_id=settings.id,
            details=changes,
        )
        session.commit()
    except Exception:
        session.rollback()
        raise

    invalidate_pricing_policy(company_id)
    logger.info(f"[COMPANY] Settings updated for company {company_id}: {sorted(changes)}")
    return settings


def _cache():
    if has_app_context():
        return current_app.extensions.get('cache')
    return None


def _load_pricing_policy(session, company_id: int) -> PricingPolicy:
    settings = get_company_settings(session, company_id)
    return PricingPolicy(
        minor_units=settings.minor_units,
        default_discount_percent=Decimal(settings.default_discount_percent or 0),
        default_tax_rate_percent=Decimal(settings.default_tax_rate or 0),
    )


def get_pricing_policy(session, company_id: int) -> PricingPolicy:
    """Pricing policy of a company, read through the Redis cache when available."""
    cache = _cache()
    if cache is None:
        return _load_pricing_policy(session, company_id)

    data = cache.memoize(
        company_id,
        'settings',
        'pricing_policy',
        lambda: _load_pricing_policy(session, company_id).to_dict(),
        ttl=current_app.config.get('CACHE_SETTINGS_TTL'),
    )
    return PricingPolicy.from_dict(data)


def invalidate_pricing_policy(company_id: int) -> None:
    cache = _cache()
    if cache is not None:
        cache.delete(company_id, 'settings', 'pricing_policy')
