"""Quotation templates blueprint (JSON API, tenant-scoped)."""
from flask import Blueprint, jsonify, request, g

from quotation_tool.database import get_session
from quotation_tool.middleware import require_login, require_company
from quotation_tool.services import quotation_service, quotation_template_service
from quotation_tool.utils.request_data import get_json_body, optional_int

quotation_templates_bp = Blueprint('quotation_templates', __name__, url_prefix='/api/quotation-templates')


@quotation_templates_bp.route('', methods=['GET'])
@require_login
@require_company
def list_templates():
    """Filters: ?status=, ?category=, ?visibility=, ?tag=, ?q= (name or description), ?default=1."""
    db_session = get_session()
    default = request.args.get('default')
    templates = quotation_template_service.list_templates(
        db_session,
        g.company_id,
        user_id=g.user_id,
        status=request.args.get('status') or None,
        category=request.args.get('category') or None,
        visibility=request.args.get('visibility') or None,
        tag=request.args.get('tag') or None,
        search=request.args.get('q', '').strip() or None,
        is_default=None if default is None else default == '1',
        limit=optional_int(request.args, 'limit') or 50,
        offset=optional_int(request.args, 'offset') or 0,
    )
    return jsonify({'templates': [template.to_dict() for template in templates]})


@quotation_templates_bp.route('', methods=['POST'])
@require_login
@require_company
def create_template():
    db_session = get_session()
    template = quotation_template_service.create_template(db_session, g.company_id, get_json_body(), user_id=g.user_id)
    return jsonify(template.to_dict()), 201


@quotation_templates_bp.route('/categories', methods=['GET'])
@require_login
@require_company
def list_categories():
    db_session = get_session()
    return jsonify({'categories': quotation_template_service.list_categories(db_session, g.company_id, g.user_id)})


@quotation_templates_bp.route('/popular', methods=['GET'])
@require_login
@require_company
def list_popular():
    db_session = get_session()
    templates = quotation_template_service.list_popular_templates(
        db_session, g.company_id, g.user_id, limit=optional_int(request.args, 'limit') or 10,
    )
    return jsonify({'templates': [template.to_dict() for template in templates]})


@quotation_templates_bp.route('/<int:template_id>', methods=['GET'])
@require_login
@require_company
def get_template(template_id):
    db_session = get_session()
    template = quotation_template_service.get_template(db_session, g.company_id, template_id, g.user_id)
    return jsonify(template.to_dict())


@quotation_templates_bp.route('/<int:template_id>', methods=['PATCH'])
@require_login
@require_company
def update_template(template_id):
    db_session = get_session()
    template = quotation_template_service.update_template(
        db_session, g.company_id, template_id, get_json_body(), user_id=g.user_id, user_role=g.user_role,
    )
    return jsonify(template.to_dict())


@quotation_templates_bp.route('/<int:template_id>', methods=['DELETE'])
@require_login
@require_company
def delete_template(template_id):
    db_session = get_session()
    quotation_template_service.delete_template(
        db_session, g.company_id, template_id, user_id=g.user_id, user_role=g.user_role,
    )
    return jsonify({'status': 'deleted', 'id': template_id})


@quotation_templates_bp.route('/<int:template_id>/activate', methods=['POST'])
@require_login
@require_company
def activate_template(template_id):
    db_session = get_session()
    template = quotation_template_service.activate_template(
        db_session, g.company_id, template_id, user_id=g.user_id, user_role=g.user_role,
    )
    return jsonify(template.to_dict())


@quotation_templates_bp.route('/<int:template_id>/archive', methods=['POST'])
@require_login
@require_company
def archive_template(template_id):
    db_session = get_session()
    template = quotation_template_service.archive_template(
        db_session, g.company_id, template_id, user_id=g.user_id, user_role=g.user_role,
    )
    return jsonify(template.to_dict())


@quotation_templates_bp.route('/<int:template_id>/duplicate', methods=['POST'])
@require_login
@require_company
def duplicate_template(template_id):
    db_session = get_session()
    template = quotation_template_service.duplicate_template(db_session, g.company_id, template_id, user_id=g.user_id)
    return jsonify(template.to_dict()), 201


@quotation_templates_bp.route('/<int:template_id>/versions', methods=['POST'])
@require_login
@require_company
def create_version(template_id):
    db_session = get_session()
    template = quotation_template_service.create_template_version(
        db_session, g.company_id, template_id, get_json_body().get('version'), user_id=g.user_id,
    )
    return jsonify(template.to_dict()), 201


@quotation_templates_bp.route('/<int:template_id>/use', methods=['POST'])
@require_login
@require_company
def use_template(template_id):
    """Create a draft quotation from the template; body: client_id, valid_until, title (all optional)."""
    db_session = get_session()
    data = request.get_json(silent=True) or {}
    record = quotation_template_service.use_template(
        db_session,
        g.company_id,
        template_id,
        user_id=g.user_id,
        client_id=optional_int(data, 'client_id'),
        valid_until=data.get('valid_until'),
        title=data.get('title'),
    )
    result = record.to_dict()
    result['available_transitions'] = [
        status.value for status in quotation_service.get_available_transitions(db_session, record)
    ]
    return jsonify(result), 201
