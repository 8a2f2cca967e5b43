"""
Flask CLI commands for database management.

Commands:
- flask init-db: Create all tables
- flask seed-demo: Insert the demo suppliers and invoices
"""

import click
from flask import current_app
from invoice_tracker.database import create_all, get_session
from invoice_tracker.exceptions import InvoiceTrackerError
from invoice_tracker.models import Supplier
from invoice_tracker.services.invoice_service import create_invoice_with_lines


DEMO_SUPPLIERS = [
    {'name': 'Tech Solutions Inc.', 'email': 'contact@techsolutions.com', 'phone': '555-123-4567'},
    {'name': 'Office Depot', 'email': 'orders@officedepot.com', 'phone': '555-987-6543'},
    {'name': 'Global Manufacturing Ltd.', 'email': 'info@globalmanufacturing.com', 'phone': '555-456-7890'},
    {'name': 'Best Equipment Co.', 'email': 'sales@bestequipment.com', 'phone': '555-789-0123'},
]

DEMO_INVOICES = [
    {
        'supplier': 'Tech Solutions Inc.',
        'invoice_number': 'INV-2023-001', 'reference': 'PO-456789',
        'invoice_date': '2023-05-10', 'due_date': '2023-06-10',
        'status': 'paid', 'total_amount': '2500.00', 'notes': 'Payment received on time', 'source': 'Fortnox',
        'lines': [
            {'description': 'Premium Server Hosting (Annual)', 'quantity': 1, 'unit_price': '2000.00',
             'supplier_part_number': 'SRV-PREM-001', 'booking_number': '20230510'},
            {'description': 'SSL Certificate (Annual)', 'quantity': 2, 'unit_price': '250.00',
             'supplier_part_number': 'SSL-STD-002', 'booking_number': '20230510'},
        ],
    },
    {
        'supplier': 'Office Depot',
        'invoice_number': 'INV-2023-002', 'reference': 'PO-789123',
        'invoice_date': '2023-05-15', 'due_date': '2023-06-15',
        'status': 'pending', 'total_amount': '1200.50', 'source': 'Fortnox',
        'lines': [
            {'description': 'Office Supplies Bundle', 'quantity': 1, 'unit_price': '750.50',
             'supplier_part_number': 'OS-BDL-100'},
            {'description': 'Premium Paper Reams', 'quantity': 15, 'unit_price': '30.00',
             'supplier_part_number': 'PPR-A4-PRE'},
        ],
    },
    {
        'supplier': 'Global Manufacturing Ltd.',
        'invoice_number': 'INV-2023-003', 'reference': 'PO-246810',
        'invoice_date': '2023-04-25', 'due_date': '2023-05-25',
        'status': 'overdue', 'total_amount': '4750.75', 'notes': 'Second reminder sent', 'source': 'Fortnox',
        'lines': [
            {'description': 'Custom Parts Manufacturing', 'quantity': 50, 'unit_price': '95.00',
             'supplier_part_number': 'CPM-XYZ-50', 'booking_number': '20230425'},
            {'description': 'Rush Processing Fee', 'quantity': 1, 'unit_price': '0.75',
             'supplier_part_number': 'FEE-RUSH', 'booking_number': '20230425'},
        ],
    },
    {
        'supplier': 'Best Equipment Co.',
        'invoice_number': 'INV-2023-004', 'reference': 'PO-135792',
        'invoice_date': '2023-05-20', 'due_date': '2023-06-20',
        'status': 'pending', 'total_amount': '3200.00', 'source': 'Fortnox',
        'lines': [
            {'description': 'Heavy Duty Printer', 'quantity': 1, 'unit_price': '2700.00',
             'supplier_part_number': 'HDT-PR200'},
            {'description': 'Extended Warranty', 'quantity': 1, 'unit_price': '500.00',
             'supplier_part_number': 'WAR-3YR'},
        ],
    },
]


def seed_demo_data(db_session, default_currency='USD'):
    """Insert demo suppliers and invoices that are not there yet. Returns invoices created."""
    suppliers = {}
    for data in DEMO_SUPPLIERS:
        supplier = db_session.query(Supplier).filter_by(name=data['name']).first()
        if not supplier:
            supplier = Supplier(**data)
            db_session.add(supplier)
        suppliers[data['name']] = supplier
    db_session.commit()

    created = 0
    for data in DEMO_INVOICES:
        payload = {key: value for key, value in data.items() if key != 'supplier'}
        payload['supplier_id'] = suppliers[data['supplier']].id
        try:
            create_invoice_with_lines(payload, db_session, default_currency=default_currency)
        except InvoiceTrackerError as e:
            click.echo(click.style(f"Skipped {data['invoice_number']}: {e.message}", fg='yellow'))
            continue
        created += 1
    return created


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    def init_db_command():
        """Create all database tables."""
        create_all()
        click.echo(click.style('Database tables created.', fg='green'))

    @app.cli.command('seed-demo')
    def seed_demo_command():
        """Insert demo suppliers and invoices."""
        create_all()
        created = seed_demo_data(get_session(), current_app.config.get('DEFAULT_CURRENCY', 'USD'))
        click.echo(click.style(f'Created {created} demo invoice(s).', fg='green', bold=True))
