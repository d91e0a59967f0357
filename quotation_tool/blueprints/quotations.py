"""Quotations blueprint (JSON API, tenant-scoped)."""
from flask import Blueprint, jsonify, request, g, send_file

from quotation_tool.database import get_session
from quotation_tool.middleware import require_login, require_company
from quotation_tool.services import quotation_service
from quotation_tool.services.audit_service import get_audit_logs
from quotation_tool.services.pdf_service import generate_quotation_pdf
from quotation_tool.utils.request_data import get_json_body, optional_int

quotations_bp = Blueprint('quotations', __name__, url_prefix='/api/quotations')


def _detail(db_session, record):
    data = record.to_dict()
    data['available_transitions'] = [
        status.value for status in quotation_service.get_available_transitions(db_session, record)
    ]
    return data


@quotations_bp.route('', methods=['GET'])
@require_login
@require_company
def list_quotations():
    """List quotations; filters: ?status=, ?client_id=, ?q= (number or title)."""
    db_session = get_session()
    records = quotation_service.list_quotations(
        db_session,
        g.company_id,
        status=request.args.get('status') or None,
        client_id=optional_int(request.args, 'client_id'),
        search=request.args.get('q', '').strip() or None,
    )
    return jsonify({'quotations': [record.to_dict(include_lines=False) for record in records]})


@quotations_bp.route('', methods=['POST'])
@require_login
@require_company
def create_quotation():
    data = get_json_body()
    db_session = get_session()
    record = quotation_service.create_quotation(
        db_session,
        g.company_id,
        items=data.get('items') or [],
        client_id=optional_int(data, 'client_id'),
        owner_id=optional_int(data, 'owner_id'),
        valid_until=data.get('valid_until'),
        title=data.get('title'),
        notes=data.get('notes'),
        terms=data.get('terms'),
        user_id=g.user_id,
    )
    return jsonify(_detail(db_session, record)), 201


@quotations_bp.route('/<int:quotation_id>', methods=['GET'])
@require_login
@require_company
def get_quotation(quotation_id):
    db_session = get_session()
    record = quotation_service.get_quotation(db_session, g.company_id, quotation_id)
    return jsonify(_detail(db_session, record))


@quotations_bp.route('/<int:quotation_id>', methods=['PATCH'])
@require_login
@require_company
def update_quotation(quotation_id):
    """Update draft header fields. Body may carry "version" for the optimistic check."""
    data = get_json_body()
    version = optional_int(data, 'version')
    fields = {key: value for key, value in data.items() if key != 'version'}
    db_session = get_session()
    record = quotation_service.update_quotation_details(
        db_session, g.company_id, quotation_id, fields, expected_version=version, user_id=g.user_id,
    )
    return jsonify(_detail(db_session, record))


@quotations_bp.route('/<int:quotation_id>/items', methods=['PUT'])
@require_login
@require_company
def replace_items(quotation_id):
    """Body: {"items": [...], "version": n}"""
    data = get_json_body()
    db_session = get_session()
    record = quotation_service.update_quotation_items(
        db_session,
        g.company_id,
        quotation_id,
        data.get('items'),
        expected_version=optional_int(data, 'version'),
        user_id=g.user_id,
    )
    return jsonify(_detail(db_session, record))


@quotations_bp.route('/<int:quotation_id>/transitions', methods=['POST'])
@require_login
@require_company
def request_transition(quotation_id):
    """Body: {"status": "sent", "reason"?: "...", "version"?: n}"""
    data = get_json_body()
    db_session = get_session()
    record, result = quotation_service.transition_quotation(
        db_session,
        g.company_id,
        quotation_id,
        data.get('status'),
        user_id=g.user_id,
        reason=data.get('reason'),
        expected_version=optional_int(data, 'version'),
    )
    return jsonify({
        'status': 'success',
        'previous_status': result.previous_status.value,
        'new_status': result.new_status.value,
        'side_effects': [effect.to_dict() for effect in result.side_effects],
        'quotation': _detail(db_session, record),
    })


@quotations_bp.route('/<int:quotation_id>/duplicate', methods=['POST'])
@require_login
@require_company
def duplicate_quotation(quotation_id):
    db_session = get_session()
    record = quotation_service.duplicate_quotation(db_session, g.company_id, quotation_id, user_id=g.user_id)
    return jsonify(_detail(db_session, record)), 201


@quotations_bp.route('/<int:quotation_id>/validate', methods=['POST'])
@require_login
@require_company
def validate_quotation(quotation_id):
    db_session = get_session()
    result = quotation_service.validate_quotation(db_session, g.company_id, quotation_id)
    return jsonify(result.to_dict())


@quotations_bp.route('/<int:quotation_id>/pdf', methods=['GET'])
@require_login
@require_company
def download_pdf(quotation_id):
    db_session = get_session()
    record = quotation_service.get_quotation(db_session, g.company_id, quotation_id)
    pdf_buffer = generate_quotation_pdf(db_session, g.company_id, quotation_id)
    return send_file(
        pdf_buffer,
        mimetype='application/pdf',
        as_attachment=True,
        download_name=f"quotation_{record.number}.pdf",
    )


@quotations_bp.route('/<int:quotation_id>/history', methods=['GET'])
@require_login
@require_company
def quotation_history(quotation_id):
    """Audit trail for one quotation, newest first."""
    db_session = get_session()
    quotation_service.get_quotation(db_session, g.company_id, quotation_id)
    entries = get_audit_logs(
        db_session,
        g.company_id,
        limit=optional_int(request.args, 'limit') or 100,
        resource_type_filter='quotation',
        resource_id_filter=quotation_id,
    )
    return jsonify({'history': [entry.to_dict() for entry in entries]})
