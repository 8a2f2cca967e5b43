import pytest
from decimal import Decimal

from invoice_tracker import create_app
from invoice_tracker.database import create_all, drop_all, get_session
from invoice_tracker.models import Supplier
from invoice_tracker.services.invoice_service import create_invoice_with_lines


@pytest.fixture(scope='session')
def app():
    """Create application instance for testing (in-memory SQLite, no Redis)."""
    app = create_app('config.TestConfig')
    return app


@pytest.fixture(scope='function')
def client(app, session):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def session(app):
    """Database session on a freshly created schema."""
    get_session().remove()
    drop_all()
    create_all()
    session = get_session()
    yield session
    session.rollback()
    session.remove()


@pytest.fixture(scope='function')
def supplier_id(session):
    """Supplier invoicing in EUR, with a rate to SEK."""
    supplier = Supplier(
        name='Tech Solutions Inc.',
        email='contact@techsolutions.com',
        phone='555-123-4567',
        account_number='5050-1055',
        default_currency='EUR',
        currency_rate=Decimal('11.500000'),
    )
    session.add(supplier)
    session.commit()
    return supplier.id


@pytest.fixture(scope='function')
def other_supplier_id(session):
    supplier = Supplier(name='Office Depot', email='orders@officedepot.com', phone='555-987-6543')
    session.add(supplier)
    session.commit()
    return supplier.id


@pytest.fixture(scope='function')
def invoice_payload(supplier_id):
    return {
        'supplier_id': supplier_id,
        'invoice_number': 'INV-2023-001',
        'reference': 'PO-456789',
        'invoice_date': '2023-05-10',
        'due_date': '2023-06-10',
        'total_amount': '2500.00',
        'total_vat': '625.00',
        'account': '4010',
        'vat_account': '2610',
        'lines': [
            {
                'description': 'Premium Server Hosting (Annual)',
                'quantity': 1,
                'unit_price': '2000.00',
                'estimated_vat': '500.00',
                'supplier_part_number': 'SRV-PREM-001',
                'booking_number': 'BK-100',
            },
            {
                'description': 'SSL Certificate (Annual)',
                'quantity': 2,
                'unit_price': '250.00',
                'estimated_vat': '125.00',
                'supplier_part_number': 'SSL-STD-002',
                'booking_number': 'BK-100',
            },
        ],
    }


@pytest.fixture(scope='function')
def invoice_id(session, invoice_payload):
    """Invoice with two lines on booking BK-100 (2000.00 and 500.00)."""
    return create_invoice_with_lines(invoice_payload, session)
