"""
In-memory quotation aggregate and the value types exchanged with the engine.

Nothing here touches the database: the quotation service converts ORM rows
to these objects and back.
"""
import enum
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from quotation_tool.exceptions import ItemsFrozen

ZERO = Decimal('0.00')


class QuotationStatus(enum.Enum):
    """Quotation status enum."""
    DRAFT = "draft"
    SENT = "sent"
    VIEWED = "viewed"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({
    QuotationStatus.ACCEPTED,
    QuotationStatus.REJECTED,
    QuotationStatus.EXPIRED,
    QuotationStatus.CANCELLED,
})


class NotificationChannel(enum.Enum):
    """Delivery channels a side effect can target."""
    EMAIL = "email"
    IN_APP = "in_app"
    PUSH = "push"
    SMS = "sms"


class NotificationEvent(enum.Enum):
    """Quotation events that produce notifications."""
    QUOTATION_SENT = "quotation_sent"
    QUOTATION_VIEWED = "quotation_viewed"
    QUOTATION_ACCEPTED = "quotation_accepted"
    QUOTATION_REJECTED = "quotation_rejected"
    QUOTATION_CANCELLED = "quotation_cancelled"


class RecipientRole(enum.Enum):
    CLIENT = "client"
    OWNER = "owner"


@dataclass(frozen=True)
class LineItem:
    """One priced entry of a quotation."""
    description: str
    quantity: int
    unit_price: Decimal
    discount_percent: Optional[Decimal] = None
    tax_rate_percent: Optional[Decimal] = None
    id: Optional[int] = None


@dataclass(frozen=True)
class QuotationAggregate:
    """
    Quotation snapshot handled by the calculator, validator and workflow.

    Instances are immutable; every change returns a new aggregate so a failed
    operation never leaves a half-modified quotation behind.
    """
    id: Optional[int]
    number: Optional[str]
    client_ref: Optional[int]
    items: Tuple[LineItem, ...]
    status: QuotationStatus
    valid_until: Optional[date]
    created_at: datetime
    updated_at: Optional[datetime] = None
    subtotal: Decimal = ZERO
    discount_amount: Decimal = ZERO
    tax_amount: Decimal = ZERO
    grand_total: Decimal = ZERO
    currency: str = 'USD'
    version: int = 1
    owner_ref: Optional[int] = None
    sent_at: Optional[datetime] = None
    viewed_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    cancellation_reason: Optional[str] = None

    def with_items(self, items) -> 'QuotationAggregate':
        """Replace line items (draft only)."""
        if self.status is not QuotationStatus.DRAFT:
            raise ItemsFrozen(self.status.value)
        return replace(self, items=tuple(items))

    def with_totals(self, totals) -> 'QuotationAggregate':
        """Return a copy carrying the given calculator totals."""
        return replace(
            self,
            subtotal=totals.subtotal,
            discount_amount=totals.discount_amount,
            tax_amount=totals.tax_amount,
            grand_total=totals.grand_total,
        )

    def is_past_validity(self, now: datetime) -> bool:
        """True once the validity date is over (valid through the whole day)."""
        return self.valid_until is not None and now.date() > self.valid_until


@dataclass(frozen=True)
class Recipient:
    role: RecipientRole
    ref: Optional[int]


@dataclass(frozen=True)
class SideEffect:
    """
    Describes an action the caller must perform after persisting a transition.

    The engine never delivers anything itself.
    """
    kind: str
    channel: NotificationChannel
    recipient: Recipient
    event: NotificationEvent
    idempotency_key: str
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind,
            'channel': self.channel.value,
            'recipient': {'role': self.recipient.role.value, 'ref': self.recipient.ref},
            'event': self.event.value,
            'idempotency_key': self.idempotency_key,
            'payload': dict(self.payload),
        }


@dataclass(frozen=True)
class TransitionResult:
    quotation: QuotationAggregate
    previous_status: QuotationStatus
    new_status: QuotationStatus
    side_effects: Tuple[SideEffect, ...] = ()
