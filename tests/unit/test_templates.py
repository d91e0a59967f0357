"""
Unit tests for notification templates.
"""

import pytest

from quotation_tool.exceptions import TemplateVariableError, UnknownTemplateEvent
from quotation_tool.services.template_service import (
    DEFAULT_TEMPLATES, extract_variables, get_template, render, validate_overrides, validate_template,
)


def test_extract_variables_tolerates_spaces():
    assert extract_variables('Hi {{ client_name }}, see {{quotation_number}}') == {'client_name', 'quotation_number'}
    assert extract_variables(None) == set()


def test_render_substitutes_every_variable():
    text = render('{{company_name}} - {{grand_total}} {{currency}}', {
        'company_name': 'Acme', 'grand_total': '1,163.50', 'currency': 'USD',
    })
    assert text == 'Acme - 1,163.50 USD'


def test_render_none_as_empty_string():
    assert render('Reason: {{reason}}', {'reason': None}) == 'Reason: '


def test_render_missing_variable_raises():
    with pytest.raises(TemplateVariableError) as exc:
        render('{{client_name}} {{unknown_thing}}', {'client_name': 'Initech'})
    assert exc.value.variables == ['unknown_thing']


def test_validate_template_rejects_unknown_variables():
    validate_template('{{quotation_number}} for {{client_name}}')
    with pytest.raises(TemplateVariableError):
        validate_template('{{password}}')


def test_every_default_template_uses_allowed_variables():
    for template in DEFAULT_TEMPLATES.values():
        validate_template(template['subject'])
        validate_template(template['body'])


def test_get_template_merges_override():
    overrides = {'quotation_sent': {'subject': 'Your quote {{quotation_number}}'}}
    template = get_template('quotation_sent', overrides)

    assert template['subject'] == 'Your quote {{quotation_number}}'
    assert template['body'] == DEFAULT_TEMPLATES['quotation_sent']['body']
    # Defaults are not mutated
    assert DEFAULT_TEMPLATES['quotation_sent']['subject'].startswith('Quotation')


def test_get_template_unknown_event():
    with pytest.raises(UnknownTemplateEvent) as exc:
        get_template('quotation_archived')
    assert exc.value.status_code == 400
    assert exc.value.to_dict()['event'] == 'quotation_archived'


def test_validate_overrides():
    validate_overrides({'quotation_rejected': {'body': 'Rejected: {{reason}}'}})

    with pytest.raises(UnknownTemplateEvent):
        validate_overrides({'invoice_paid': {'subject': 'Paid'}})
    with pytest.raises(TemplateVariableError):
        validate_overrides({'quotation_sent': {'subject': '{{secret}}'}})
