"""Companies blueprint: sign-up and company settings."""
from flask import Blueprint, jsonify, session as flask_session, g

from quotation_tool.database import get_session
from quotation_tool.middleware import require_login, require_company, require_role
from quotation_tool.models import UserRole
from quotation_tool.services import company_service
from quotation_tool.utils.request_data import get_json_body

companies_bp = Blueprint('companies', __name__, url_prefix='/api/companies')

COMPANY_FIELDS = ('owner_name', 'email', 'phone', 'address', 'currency')


@companies_bp.route('', methods=['POST'])
def create_company():
    """
    Create a company with its owner and log the owner in.

    Body: {"name", "owner_email", "owner_name"?, "email"?, "phone"?, "address"?, "currency"?}
    """
    data = get_json_body()
    db_session = get_session()

    company, settings, branding, owner, _ = company_service.create_company(
        db_session,
        data.get('name'),
        data.get('owner_email'),
        **{key: data[key] for key in COMPANY_FIELDS if key in data}
    )

    flask_session.clear()
    flask_session['user_id'] = owner.id
    flask_session['company_id'] = company.id
    flask_session.permanent = True

    return jsonify({
        'status': 'success',
        'company': {'id': company.id, 'name': company.name, 'slug': company.slug},
        'owner': {'id': owner.id, 'email': owner.email, 'role': owner.role},
        'settings': settings.to_dict(),
    }), 201


@companies_bp.route('/current', methods=['GET'])
@require_login
@require_company
def current_company():
    db_session = get_session()
    company = company_service.get_company(db_session, g.company_id)
    return jsonify({
        'id': company.id,
        'name': company.name,
        'slug': company.slug,
        'email': company.email,
        'phone': company.phone,
        'address': company.address,
        'status': company.status,
    })


@companies_bp.route('/current/settings', methods=['GET'])
@require_login
@require_company
def get_settings():
    db_session = get_session()
    settings = company_service.get_company_settings(db_session, g.company_id)
    return jsonify(settings.to_dict())


@companies_bp.route('/current/settings', methods=['PUT'])
@require_login
@require_company
@require_role(UserRole.OWNER, UserRole.ADMIN)
def update_settings():
    db_session = get_session()
    settings = company_service.update_company_settings(db_session, g.company_id, get_json_body(), user_id=g.user_id)
    return jsonify(settings.to_dict())
