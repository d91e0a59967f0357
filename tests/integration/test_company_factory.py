"""
Integration tests for company creation, settings and CLI commands.
"""

import pytest
from datetime import date, datetime, timedelta
from decimal import Decimal

from quotation_tool.exceptions import BusinessLogicError, TemplateVariableError, UnknownTemplateEvent
from quotation_tool.models import (
    AppUser, AuditLog, AuditAction, Company, CompanyBranding, CompanySettings, NotificationPreferences, UserRole,
)
from quotation_tool.services.cache_service import CacheService
from quotation_tool.services.company_service import (
    build_company_records, create_company, get_pricing_policy, update_company_settings,
)
from quotation_tool.services.quotation_service import get_quotation, transition_quotation


class InMemoryRedis:
    """Just enough of the redis client for CacheService."""

    def __init__(self):
        self.data = {}

    def ping(self):
        return True

    def get(self, key):
        return self.data.get(key)

    def setex(self, key, ttl, value):
        self.data[key] = value

    def delete(self, key):
        self.data.pop(key, None)


class TestBuildCompanyRecords:

    def test_records_are_linked(self):
        company, settings, branding, owner, prefs = build_company_records(
            'Café Nördic', 'Boss@Example.com', owner_name='Bea Boss', currency='eur',
        )

        assert company.slug == 'cafe-nordic'
        assert settings.company is company
        assert settings.currency == 'EUR'
        assert branding.company is company
        assert branding.contact_email == 'boss@example.com'
        assert owner.company is company
        assert owner.role == UserRole.OWNER
        assert prefs.user is owner

    @pytest.mark.parametrize('name,email,currency', [
        ('', 'a@b.com', None),
        ('Acme', 'not-an-email', None),
        ('Acme', 'a@b.com', 'EURO'),
    ])
    def test_invalid_input(self, name, email, currency):
        with pytest.raises(BusinessLogicError):
            build_company_records(name, email, currency=currency)


class TestCreateCompany:

    def test_everything_is_persisted(self, session, company, owner):
        assert session.query(CompanySettings).filter_by(company_id=company.id).count() == 1
        assert session.query(CompanyBranding).filter_by(company_id=company.id).count() == 1
        assert session.query(NotificationPreferences).filter_by(user_id=owner.id).count() == 1
        assert owner.company_id == company.id
        assert session.query(AuditLog).filter_by(
            company_id=company.id, action=AuditAction.COMPANY_CREATED,
        ).count() == 1

    def test_duplicate_name(self, session, company):
        with pytest.raises(BusinessLogicError):
            create_company(session, company.name, 'someone-else@test.com')
        assert session.query(Company).count() == 1

    def test_duplicate_owner_email(self, session, owner):
        with pytest.raises(BusinessLogicError):
            create_company(session, 'Brand New Co', owner.email)
        assert session.query(AppUser).count() == 1

    def test_slug_collision_gets_suffix(self, session):
        first = create_company(session, 'Blue Sky', 'a@bluesky.test')[0]
        second = create_company(session, 'Blue-Sky', 'b@bluesky.test')[0]

        assert first.slug == 'blue-sky'
        assert second.slug == 'blue-sky-1'


class TestSettings:

    def test_update_settings(self, session, company, owner):
        settings = update_company_settings(session, company.id, {
            'currency': 'eur',
            'minor_units': 0,
            'default_tax_rate': '21',
            'quote_valid_days': 15,
            'quote_number_prefix': 'OFF',
        }, user_id=owner.id)

        assert settings.currency == 'EUR'
        assert settings.minor_units == 0
        assert settings.default_tax_rate == Decimal('21')
        policy = get_pricing_policy(session, company.id)
        assert policy.minor_units == 0
        assert policy.default_tax_rate_percent == Decimal('21')

    @pytest.mark.parametrize('data', [
        {'currency': 'euro'},
        {'minor_units': 3},
        {'minor_units': True},
        {'default_tax_rate': '120'},
        {'default_discount_percent': 'abc'},
        {'quote_valid_days': 0},
        {'quote_number_prefix': 'QT 2026'},
        {'timezone': ''},
        {'notification_templates': 'nope'},
        {'favourite_colour': 'blue'},
    ])
    def test_invalid_settings(self, session, company, data):
        with pytest.raises(BusinessLogicError):
            update_company_settings(session, company.id, data)

    def test_template_overrides_are_checked(self, session, company):
        with pytest.raises(TemplateVariableError):
            update_company_settings(session, company.id, {
                'notification_templates': {'quotation_sent': {'subject': '{{password}}'}},
            })
        with pytest.raises(UnknownTemplateEvent):
            update_company_settings(session, company.id, {
                'notification_templates': {'invoice_paid': {'subject': 'Paid'}},
            })

    def test_template_override_is_used(self, session, company, draft_quotation):
        from quotation_tool.models import Notification
        update_company_settings(session, company.id, {
            'notification_templates': {'quotation_sent': {'subject': 'Offer {{quotation_number}} inside'}},
        })

        transition_quotation(session, company.id, draft_quotation.id, 'sent')

        email = session.query(Notification).filter_by(quotation_id=draft_quotation.id).one()
        assert email.title == f'Offer {draft_quotation.number} inside'

    def test_pricing_policy_cache_is_invalidated(self, app, session, company, monkeypatch):
        cache = CacheService(client=InMemoryRedis())
        monkeypatch.setitem(app.extensions, 'cache', cache)

        assert get_pricing_policy(session, company.id).default_tax_rate_percent == Decimal('0')
        assert cache.get(company.id, 'settings', 'pricing_policy') is not None

        update_company_settings(session, company.id, {'default_tax_rate': '7.5'})

        assert cache.get(company.id, 'settings', 'pricing_policy') is None
        assert get_pricing_policy(session, company.id).default_tax_rate_percent == Decimal('7.5')

    def test_cached_policy_keeps_decimals(self, app, session, company, monkeypatch):
        cache = CacheService(client=InMemoryRedis())
        monkeypatch.setitem(app.extensions, 'cache', cache)
        update_company_settings(session, company.id, {'default_discount_percent': '2.5'})

        get_pricing_policy(session, company.id)
        cached = cache.get(company.id, 'settings', 'pricing_policy')

        assert cached['default_discount_percent'] == Decimal('2.5')


class TestCliCommands:

    def test_create_company(self, app, session):
        runner = app.test_cli_runner()
        result = runner.invoke(args=[
            'create-company', '--name', 'CLI Traders', '--owner-email', 'cli@traders.test', '--currency', 'GBP',
        ])

        assert result.exit_code == 0
        assert 'Company created.' in result.output
        company = session.query(Company).filter_by(name='CLI Traders').one()
        assert session.query(CompanySettings).filter_by(company_id=company.id).one().currency == 'GBP'

    def test_create_company_duplicate_fails(self, app, company):
        name = company.name
        runner = app.test_cli_runner()
        result = runner.invoke(args=['create-company', '--name', name, '--owner-email', 'x@y.test'])

        assert result.exit_code == 1
        assert 'already exists' in result.output

    def test_expire_quotations(self, app, session, company, draft_quotation):
        company_id, quotation_id = company.id, draft_quotation.id
        transition_quotation(session, company_id, quotation_id, 'sent')
        later = (datetime.now() + timedelta(days=31)).isoformat()

        runner = app.test_cli_runner()
        result = runner.invoke(args=['expire-quotations', '--now', later])

        assert result.exit_code == 0
        assert '1 quotation(s) expired.' in result.output
        session.expire_all()
        assert get_quotation(session, company_id, quotation_id).status == 'expired'

    def test_expire_quotations_bad_date(self, app):
        result = app.test_cli_runner().invoke(args=['expire-quotations', '--now', 'yesterday'])
        assert result.exit_code != 0

    def test_retry_notifications(self, app):
        result = app.test_cli_runner().invoke(args=['retry-notifications'])

        assert result.exit_code == 0
        assert '0 notification(s) retried, 0 delivered.' in result.output
