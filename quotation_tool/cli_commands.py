"""
Flask CLI commands.

Commands:
- flask init-db: Create missing tables
- flask create-company: Create a company with its owner
- flask expire-quotations: Expire sent/viewed quotations past their validity date
- flask retry-notifications: Retry failed notification e-mails
"""
from datetime import datetime

import click

from quotation_tool.database import db_session, create_schema
from quotation_tool.exceptions import QuotationToolError
from quotation_tool.models import DeliveryStatus
from quotation_tool.services.company_service import create_company
from quotation_tool.services.notification_service import retry_failed_notifications
from quotation_tool.services.quotation_service import expire_overdue_quotations


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    def init_db_command():
        """Create all tables that do not exist yet."""
        create_schema()
        click.echo(click.style('Database tables created.', fg='green'))

    @app.cli.command('create-company')
    @click.option('--name', prompt=True, help='Company name')
    @click.option('--owner-email', prompt=True, help='Owner e-mail address')
    @click.option('--owner-name', default=None, help='Owner full name')
    @click.option('--currency', default=None, help='ISO 4217 currency code')
    def create_company_command(name, owner_email, owner_name, currency):
        """Create a company with its settings, branding and owner."""
        try:
            company, settings, _, owner, _ = create_company(
                db_session, name, owner_email, owner_name=owner_name, currency=currency,
            )
        except QuotationToolError as e:
            click.echo(click.style(f'Error: {e.message}', fg='red'))
            raise SystemExit(1)

        click.echo(click.style('Company created.', fg='green', bold=True))
        click.echo(f'   ID: {company.id}')
        click.echo(f'   Slug: {company.slug}')
        click.echo(f'   Currency: {settings.currency}')
        click.echo(f'   Owner: {owner.email} (id {owner.id})')

    @app.cli.command('expire-quotations')
    @click.option('--company-id', type=int, default=None, help='Only sweep this company')
    @click.option('--now', 'now_str', default=None, help='Reference time (ISO format), defaults to now')
    def expire_quotations_command(company_id, now_str):
        """Expire sent/viewed quotations whose validity date is over."""
        try:
            now = datetime.fromisoformat(now_str) if now_str else datetime.now()
        except ValueError:
            raise click.BadParameter(f'Invalid datetime: {now_str}', param_hint='--now')

        expired = expire_overdue_quotations(db_session, now=now, company_id=company_id)
        for record in expired:
            click.echo(f'   {record.number} (company {record.company_id}) expired')
        click.echo(click.style(f'{len(expired)} quotation(s) expired.', fg='green'))

    @app.cli.command('retry-notifications')
    @click.option('--max-attempts', type=int, default=None, help='Skip notifications with this many attempts')
    def retry_notifications_command(max_attempts):
        """Retry failed notification e-mails."""
        retried = retry_failed_notifications(db_session, max_attempts=max_attempts)
        sent = sum(1 for notification in retried if notification.status == DeliveryStatus.SENT)
        click.echo(click.style(f'{len(retried)} notification(s) retried, {sent} delivered.', fg='green'))
