"""
Integration tests for reusable quotation templates.
"""

import pytest
from datetime import date, timedelta
from decimal import Decimal

from quotation_tool.exceptions import BusinessLogicError, InvalidLineItem, NotFoundError, UnauthorizedError
from quotation_tool.models import AppUser, AuditAction, AuditLog, QuotationTemplate, UserRole
from quotation_tool.services.quotation_template_service import (
    activate_template, archive_template, create_template, create_template_version, delete_template,
    duplicate_template, get_template, list_categories, list_popular_templates, list_templates,
    update_template, use_template,
)


@pytest.fixture
def template_data(items_data):
    return {
        'name': 'Standard consulting',
        'description': 'Ten hours plus setup',
        'category': 'Consulting',
        'tags': ['Hourly', ' setup '],
        'default_items': items_data,
        'title': 'Consulting engagement',
        'terms': 'Net 30',
        'valid_days': 14,
    }


@pytest.fixture
def template(session, company, owner, template_data):
    return create_template(session, company.id, template_data, user_id=owner.id)


@pytest.fixture
def active_template(session, company, owner, template):
    return activate_template(session, company.id, template.id, user_id=owner.id)


@pytest.fixture
def sales_rep(session, company):
    rep = AppUser(company_id=company.id, email='rep@acme.test', role=UserRole.SALES)
    session.add(rep)
    session.commit()
    return rep


class TestCreateTemplate:

    def test_new_template_is_a_company_draft(self, template, owner):
        assert template.status == 'draft'
        assert template.visibility == 'company'
        assert template.created_by_id == owner.id
        assert template.usage_count == 0
        assert template.tag_list == ['hourly', 'setup']

    def test_default_items_are_stored_as_json(self, template):
        first, second = template.default_items
        assert first['description'] == 'Consulting hours'
        assert first['quantity'] == 10
        assert first['unit_price'] == '85.00'
        assert first['tax_rate_percent'] == '21'
        assert second['discount_percent'] == '10'
        assert second['tax_rate_percent'] is None

    def test_items_must_price(self, session, company, owner):
        with pytest.raises(InvalidLineItem) as exc:
            create_template(session, company.id, {
                'name': 'Broken',
                'default_items': [{'description': 'Bolts', 'quantity': 0, 'unit_price': '1.00'}],
            }, user_id=owner.id)
        assert exc.value.field == 'quantity'
        assert session.query(QuotationTemplate).count() == 0

    @pytest.mark.parametrize('data,field', [
        ({}, 'name'),
        ({'name': '   '}, 'name'),
        ({'name': 'T', 'valid_days': 0}, 'valid_days'),
        ({'name': 'T', 'valid_days': 400}, 'valid_days'),
        ({'name': 'T', 'visibility': 'public'}, 'visibility'),
        ({'name': 'T', 'is_default': 'yes'}, 'is_default'),
        ({'name': 'T', 'tags': 5}, 'tags'),
    ])
    def test_invalid_fields(self, session, company, owner, data, field):
        with pytest.raises(BusinessLogicError) as exc:
            create_template(session, company.id, data, user_id=owner.id)
        assert exc.value.payload == {'field': field}

    def test_unknown_fields(self, session, company, owner):
        with pytest.raises(BusinessLogicError):
            create_template(session, company.id, {'name': 'T', 'usage_count': 99}, user_id=owner.id)

    def test_creation_is_audited(self, session, company, template):
        entry = session.query(AuditLog).filter_by(resource_type='quotation_template', resource_id=template.id).one()
        assert entry.action == AuditAction.TEMPLATE_CREATED


class TestVisibility:

    def test_private_template_is_only_visible_to_its_creator(self, session, company, owner, sales_rep):
        private = create_template(session, company.id, {'name': 'Mine', 'visibility': 'private'}, user_id=sales_rep.id)

        assert get_template(session, company.id, private.id, sales_rep.id).id == private.id
        with pytest.raises(NotFoundError):
            get_template(session, company.id, private.id, owner.id)
        assert [t.id for t in list_templates(session, company.id, user_id=owner.id)] == []

    def test_other_company_cannot_see_template(self, session, company2, owner2, template):
        with pytest.raises(NotFoundError):
            get_template(session, company2.id, template.id, owner2.id)
        with pytest.raises(NotFoundError):
            use_template(session, company2.id, template.id, user_id=owner2.id)


class TestListing:

    def test_filters(self, session, company, owner, template):
        other = create_template(session, company.id, {'name': 'Hardware bundle', 'category': 'Hardware'}, user_id=owner.id)
        activate_template(session, company.id, other.id, user_id=owner.id)

        def ids(**filters):
            return [t.id for t in list_templates(session, company.id, user_id=owner.id, **filters)]

        assert ids() == [other.id, template.id]
        assert ids(status='draft') == [template.id]
        assert ids(category='Hardware') == [other.id]
        assert ids(tag='Hourly') == [template.id]
        assert ids(search='bundle') == [other.id]
        assert ids(search='setup') == [template.id]

    def test_unknown_status_filter(self, session, company, owner):
        with pytest.raises(BusinessLogicError):
            list_templates(session, company.id, user_id=owner.id, status='deleted')

    def test_categories(self, session, company, owner, template):
        create_template(session, company.id, {'name': 'B', 'category': 'Audit'}, user_id=owner.id)
        create_template(session, company.id, {'name': 'C', 'category': 'Consulting'}, user_id=owner.id)
        create_template(session, company.id, {'name': 'D'}, user_id=owner.id)

        assert list_categories(session, company.id, owner.id) == ['Audit', 'Consulting']

    def test_popular_templates_are_active_and_ordered_by_usage(self, session, company, owner, active_template):
        other = create_template(session, company.id, {'name': 'Rarely used'}, user_id=owner.id)
        activate_template(session, company.id, other.id, user_id=owner.id)
        create_template(session, company.id, {'name': 'Still a draft'}, user_id=owner.id)

        use_template(session, company.id, active_template.id, user_id=owner.id)
        use_template(session, company.id, active_template.id, user_id=owner.id)

        popular = list_popular_templates(session, company.id, owner.id)
        assert [t.id for t in popular] == [active_template.id, other.id]


class TestUpdateAndStatus:

    def test_update(self, session, company, owner, template):
        updated = update_template(session, company.id, template.id, {
            'name': 'Senior consulting', 'valid_days': None, 'default_items': [
                {'description': 'Senior hours', 'quantity': 5, 'unit_price': '120.00'},
            ],
        }, user_id=owner.id, user_role=UserRole.OWNER)

        assert updated.name == 'Senior consulting'
        assert updated.valid_days is None
        assert [item['unit_price'] for item in updated.default_items] == ['120.00']

    def test_only_creator_or_admin_can_change(self, session, company, owner, sales_rep, template):
        with pytest.raises(UnauthorizedError):
            update_template(session, company.id, template.id, {'name': 'Mine now'},
                            user_id=sales_rep.id, user_role=UserRole.SALES)
        with pytest.raises(UnauthorizedError):
            archive_template(session, company.id, template.id, user_id=sales_rep.id, user_role=UserRole.SALES)

        own = create_template(session, company.id, {'name': 'Rep template'}, user_id=sales_rep.id)
        archived = archive_template(session, company.id, own.id, user_id=owner.id, user_role=UserRole.ADMIN)
        assert archived.status == 'archived'

    def test_only_one_default_per_company(self, session, company, owner, template):
        update_template(session, company.id, template.id, {'is_default': True}, user_id=owner.id)
        other = create_template(session, company.id, {'name': 'New default', 'is_default': True}, user_id=owner.id)

        session.expire_all()
        assert get_template(session, company.id, template.id).is_default is False
        assert get_template(session, company.id, other.id).is_default is True
        assert [t.id for t in list_templates(session, company.id, is_default=True)] == [other.id]

    def test_archiving_clears_default(self, session, company, owner, template):
        update_template(session, company.id, template.id, {'is_default': True}, user_id=owner.id)

        archived = archive_template(session, company.id, template.id, user_id=owner.id)

        assert archived.status == 'archived'
        assert archived.is_default is False

    def test_status_changes_are_audited(self, session, company, owner, template):
        activate_template(session, company.id, template.id, user_id=owner.id)
        archive_template(session, company.id, template.id, user_id=owner.id)

        entries = session.query(AuditLog).filter_by(
            resource_type='quotation_template', action=AuditAction.TEMPLATE_STATUS_CHANGED,
        ).order_by(AuditLog.id).all()
        assert [entry.details for entry in entries] == [
            '{"from": "draft", "to": "active"}',
            '{"from": "active", "to": "archived"}',
        ]


class TestDuplicateAndVersions:

    def test_duplicate_is_a_private_draft_of_the_caller(self, session, company, owner, sales_rep, active_template):
        use_template(session, company.id, active_template.id, user_id=owner.id)

        copy = duplicate_template(session, company.id, active_template.id, user_id=sales_rep.id)

        assert copy.id != active_template.id
        assert copy.name == 'Standard consulting (Copy)'
        assert copy.status == 'draft'
        assert copy.visibility == 'private'
        assert copy.created_by_id == sales_rep.id
        assert copy.usage_count == 0
        assert copy.default_items == active_template.default_items

    def test_versions(self, session, company, owner, template):
        version = create_template_version(session, company.id, template.id, '2.0', user_id=owner.id)

        assert version.parent_template_id == template.id
        assert version.version == '2.0'
        assert version.status == 'draft'
        assert version.name == template.name

        with pytest.raises(BusinessLogicError) as exc:
            create_template_version(session, company.id, template.id, '2.0', user_id=owner.id)
        assert exc.value.status_code == 409

    @pytest.mark.parametrize('label', ['', '   ', None, 'x' * 21])
    def test_version_label_is_required(self, session, company, owner, template, label):
        with pytest.raises(BusinessLogicError) as exc:
            create_template_version(session, company.id, template.id, label, user_id=owner.id)
        assert exc.value.payload == {'field': 'version'}


class TestDelete:

    def test_unused_template_can_be_deleted(self, session, company, owner, template):
        version = create_template_version(session, company.id, template.id, '1.1', user_id=owner.id)

        delete_template(session, company.id, template.id, user_id=owner.id)

        with pytest.raises(NotFoundError):
            get_template(session, company.id, template.id)
        session.expire_all()
        assert get_template(session, company.id, version.id).parent_template_id is None

    def test_used_template_cannot_be_deleted(self, session, company, owner, active_template):
        use_template(session, company.id, active_template.id, user_id=owner.id)

        with pytest.raises(BusinessLogicError) as exc:
            delete_template(session, company.id, active_template.id, user_id=owner.id)
        assert exc.value.status_code == 409


class TestUseTemplate:

    def test_creates_a_priced_draft(self, session, company, owner, active_template):
        quotation = use_template(session, company.id, active_template.id, user_id=owner.id)

        assert quotation.status == 'draft'
        assert quotation.template_id == active_template.id
        assert quotation.title == 'Consulting engagement'
        assert quotation.terms == 'Net 30'
        assert quotation.owner_id == owner.id
        assert quotation.valid_until == date.today() + timedelta(days=14)
        assert quotation.grand_total == Decimal('1163.50')
        assert [line.description for line in quotation.lines] == ['Consulting hours', 'Setup fee']

    def test_usage_is_counted(self, session, company, owner, active_template):
        use_template(session, company.id, active_template.id, user_id=owner.id)
        use_template(session, company.id, active_template.id, user_id=owner.id)

        template = get_template(session, company.id, active_template.id)
        assert template.usage_count == 2
        assert template.last_used_at is not None

    def test_caller_overrides(self, session, company, owner, customer, active_template):
        valid_until = date.today() + timedelta(days=60)

        quotation = use_template(
            session, company.id, active_template.id, user_id=owner.id,
            client_id=customer.id, valid_until=valid_until, title='For Initech',
        )

        assert quotation.client_id == customer.id
        assert quotation.valid_until == valid_until
        assert quotation.title == 'For Initech'

    def test_company_default_validity_without_valid_days(self, session, company, owner, template):
        update_template(session, company.id, template.id, {'valid_days': None}, user_id=owner.id)
        activate_template(session, company.id, template.id, user_id=owner.id)

        quotation = use_template(session, company.id, template.id, user_id=owner.id)

        assert quotation.valid_until == date.today() + timedelta(days=30)

    @pytest.mark.parametrize('archive', [False, True])
    def test_only_active_templates_can_be_used(self, session, company, owner, template, archive):
        if archive:
            archive_template(session, company.id, template.id, user_id=owner.id)

        with pytest.raises(BusinessLogicError) as exc:
            use_template(session, company.id, template.id, user_id=owner.id)

        assert exc.value.status_code == 409
        assert get_template(session, company.id, template.id).usage_count == 0
