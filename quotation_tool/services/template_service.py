"""
Notification templates with {{variable}} placeholders.

Each event has a default subject/body; companies override them through
CompanySettings.notification_templates.
"""
import re
from typing import Dict, Iterable, Optional, Set

from quotation_tool.engine.models import NotificationEvent
from quotation_tool.exceptions import TemplateVariableError, UnknownTemplateEvent

VARIABLE_PATTERN = re.compile(r'\{\{\s*([a-zA-Z_][a-zA-Z0-9_]*)\s*\}\}')

ALLOWED_VARIABLES = frozenset({
    'company_name',
    'client_name',
    'owner_name',
    'quotation_number',
    'quotation_title',
    'grand_total',
    'currency',
    'valid_until',
    'status',
    'reason',
})

DEFAULT_TEMPLATES = {
    NotificationEvent.QUOTATION_SENT.value: {
        'subject': 'Quotation {{quotation_number}} from {{company_name}}',
        'body': (
            'Hello {{client_name}},\n\n'
            '{{company_name}} has sent you quotation {{quotation_number}} '
            'for {{grand_total}}.\n'
            'It is valid until {{valid_until}}.'
        ),
    },
    NotificationEvent.QUOTATION_VIEWED.value: {
        'subject': 'Quotation {{quotation_number}} was viewed',
        'body': '{{client_name}} opened quotation {{quotation_number}}.',
    },
    NotificationEvent.QUOTATION_ACCEPTED.value: {
        'subject': 'Quotation {{quotation_number}} accepted',
        'body': '{{client_name}} accepted quotation {{quotation_number}} ({{grand_total}}).',
    },
    NotificationEvent.QUOTATION_REJECTED.value: {
        'subject': 'Quotation {{quotation_number}} rejected',
        'body': '{{client_name}} rejected quotation {{quotation_number}}.\nReason: {{reason}}',
    },
    NotificationEvent.QUOTATION_CANCELLED.value: {
        'subject': 'Quotation {{quotation_number}} cancelled',
        'body': (
            'Hello {{client_name}},\n\n'
            'Quotation {{quotation_number}} from {{company_name}} has been cancelled.'
        ),
    },
}


def extract_variables(template: str) -> Set[str]:
    """Return the variable names used in a template."""
    return set(VARIABLE_PATTERN.findall(template or ''))


def validate_template(template: str, allowed: Iterable[str] = ALLOWED_VARIABLES) -> None:
    """Raise TemplateVariableError if the template uses variables outside `allowed`."""
    unknown = extract_variables(template) - set(allowed)
    if unknown:
        raise TemplateVariableError(unknown)


def render(template: str, variables: Dict[str, object]) -> str:
    """
    Substitute every {{variable}} in the template.

    A variable that is missing from `variables` raises TemplateVariableError;
    a variable set to None renders as an empty string.
    """
    missing = extract_variables(template) - set(variables)
    if missing:
        raise TemplateVariableError(missing)

    def _replace(match):
        value = variables[match.group(1)]
        return '' if value is None else str(value)

    return VARIABLE_PATTERN.sub(_replace, template or '')


def get_template(event: str, overrides: Optional[Dict[str, Dict[str, str]]] = None) -> Dict[str, str]:
    """Company override for an event if present, default template otherwise."""
    if event not in DEFAULT_TEMPLATES:
        raise UnknownTemplateEvent(event)
    template = dict(DEFAULT_TEMPLATES[event])
    template.update((overrides or {}).get(event) or {})
    return template


def validate_overrides(overrides: Dict[str, Dict[str, str]]) -> None:
    """Check a notification_templates mapping before it is stored."""
    for event, template in (overrides or {}).items():
        if event not in DEFAULT_TEMPLATES:
            raise UnknownTemplateEvent(event)
        for part in ('subject', 'body'):
            validate_template(template.get(part, ''))
