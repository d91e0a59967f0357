"""
Formatting and parsing helpers shared by services, e-mails and PDFs.
"""
import re
import unicodedata
from decimal import Decimal, InvalidOperation
from datetime import date, datetime
from typing import Union, Optional

EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')


def is_valid_email(email: str) -> bool:
    """Validate email format."""
    return bool(email) and EMAIL_PATTERN.match(email) is not None


def generate_slug(name: str) -> str:
    """Generate URL-safe slug from a company name."""
    # Normalize unicode characters
    slug = unicodedata.normalize('NFKD', name)
    slug = slug.encode('ascii', 'ignore').decode('ascii')

    # Convert to lowercase and replace spaces/special chars with hyphens
    slug = slug.lower()
    slug = re.sub(r'[^a-z0-9]+', '-', slug)
    slug = slug.strip('-')

    return slug[:80]


def parse_decimal(value: Union[int, float, Decimal, str, None], field: str) -> Decimal:
    """
    Parse a user-supplied number into Decimal.

    Floats are converted through str() so 0.1 stays 0.1.

    Raises:
        ValueError: if the value is empty or not a number.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValueError(f'{field} is required')
    if isinstance(value, bool):
        raise ValueError(f'{field} must be a number')
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValueError(f'{field} must be a number')


def format_money(value: Union[Decimal, int, str, None], currency: str = 'USD', minor_units: int = 2) -> str:
    """
    Format an amount with thousands separators and the currency code.

    Examples:
        format_money(Decimal('1234.5')) -> "1,234.50 USD"
        format_money(None) -> "-"
    """
    if value is None or value == "":
        return "-"
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return "-"
    return f"{amount:,.{minor_units}f} {currency}"


def format_date(value: Union[date, datetime, None], fmt: Optional[str] = None) -> str:
    """Format a date with the company date format (ISO by default)."""
    if value is None:
        return "-"
    return value.strftime(fmt or '%Y-%m-%d')
