"""Quotation pricing and status workflow engine (pure, no I/O)."""
from quotation_tool.engine.models import (
    LineItem, QuotationAggregate, QuotationStatus, TERMINAL_STATES,
    NotificationChannel, NotificationEvent, RecipientRole, Recipient,
    SideEffect, TransitionResult,
)
from quotation_tool.engine.money import PricingPolicy, Totals, LineTotals, compute_totals, round_money
from quotation_tool.engine.validator import ValidationError, ValidationResult, validate
from quotation_tool.engine.workflow import (
    ALLOWED_TRANSITIONS, available_transitions, can_transition, parse_status, transition,
)

__all__ = [
    'LineItem', 'QuotationAggregate', 'QuotationStatus', 'TERMINAL_STATES',
    'NotificationChannel', 'NotificationEvent', 'RecipientRole', 'Recipient',
    'SideEffect', 'TransitionResult',
    'PricingPolicy', 'Totals', 'LineTotals', 'compute_totals', 'round_money',
    'ValidationError', 'ValidationResult', 'validate',
    'ALLOWED_TRANSITIONS', 'available_transitions', 'can_transition', 'parse_status', 'transition',
]
