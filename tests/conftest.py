import pytest
from datetime import date, datetime
from decimal import Decimal
import uuid

from quotation_tool import create_app
from quotation_tool.database import db_session, get_session, create_schema, drop_schema
from quotation_tool.engine import LineItem, QuotationAggregate, QuotationStatus, compute_totals
from quotation_tool.exceptions import InvalidLineItem
from quotation_tool.services.client_service import create_client
from quotation_tool.services.company_service import create_company
from quotation_tool.services.quotation_service import create_quotation


@pytest.fixture(scope='session')
def app():
    """Create application instance for testing (in-memory SQLite, no Redis, no SMTP)."""
    return create_app('config.TestingConfig')


@pytest.fixture(autouse=True)
def app_context(app):
    """Run every test inside an app context on a fresh schema."""
    with app.app_context():
        yield
    db_session.remove()
    drop_schema()
    create_schema()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def session():
    """Database session for testing."""
    session = get_session()
    yield session
    session.rollback()


@pytest.fixture(scope='function')
def company_records(session):
    """Company, settings, branding, owner and owner preferences of the first tenant."""
    suffix = str(uuid.uuid4())[:8]
    return create_company(
        session,
        f'Acme Supplies {suffix}',
        f'owner1-{suffix}@test.com',
        owner_name='Olivia Owner',
    )


@pytest.fixture(scope='function')
def company(company_records):
    return company_records[0]


@pytest.fixture(scope='function')
def owner(company_records):
    return company_records[3]


@pytest.fixture(scope='function')
def company2_records(session):
    """Second tenant for isolation tests."""
    suffix = str(uuid.uuid4())[:8]
    return create_company(
        session,
        f'Globex {suffix}',
        f'owner2-{suffix}@test.com',
        owner_name='Gary Globex',
    )


@pytest.fixture(scope='function')
def company2(company2_records):
    return company2_records[0]


@pytest.fixture(scope='function')
def owner2(company2_records):
    return company2_records[3]


@pytest.fixture(scope='function')
def customer(session, company, owner):
    """Client of the first company."""
    return create_client(
        session,
        company.id,
        {'name': 'Initech', 'email': 'purchasing@initech.test'},
        user_id=owner.id,
    )


@pytest.fixture(scope='function')
def items_data():
    """Line items as they arrive from the API."""
    return [
        {'description': 'Consulting hours', 'quantity': 10, 'unit_price': '85.00', 'tax_rate_percent': '21'},
        {'description': 'Setup fee', 'quantity': 1, 'unit_price': '150.00', 'discount_percent': '10'},
    ]


@pytest.fixture(scope='function')
def draft_quotation(session, company, owner, customer, items_data):
    """Priced draft of the first company, valid for 30 days."""
    return create_quotation(
        session,
        company.id,
        items=items_data,
        client_id=customer.id,
        user_id=owner.id,
        title='Website relaunch',
    )


@pytest.fixture(scope='function')
def authenticated_client(client, owner, company):
    """Test client logged in as the first company's owner."""
    with client.session_transaction() as sess:
        sess['user_id'] = owner.id
        sess['company_id'] = company.id
    return client


@pytest.fixture
def make_quotation():
    """
    Factory for in-memory aggregates.

    Totals are computed from the items unless given explicitly or the items
    cannot be priced.
    """
    def _make(
        status=QuotationStatus.DRAFT,
        items=None,
        client_ref=7,
        valid_until=date(2026, 1, 31),
        created_at=datetime(2026, 1, 1, 9, 0),
        **fields
    ):
        if items is None:
            items = (LineItem('Widget', 2, Decimal('50.00'), tax_rate_percent=Decimal('10')),)
        items = tuple(items)

        values = {'id': 42, 'number': 'QT-2026-0001', 'owner_ref': 3}
        try:
            computed = compute_totals(items)
        except InvalidLineItem:
            computed = None
        if computed:
            values.update(
                subtotal=computed.subtotal,
                discount_amount=computed.discount_amount,
                tax_amount=computed.tax_amount,
                grand_total=computed.grand_total,
            )
        values.update(fields)

        return QuotationAggregate(
            client_ref=client_ref,
            items=items,
            status=status,
            valid_until=valid_until,
            created_at=created_at,
            **values
        )
    return _make
