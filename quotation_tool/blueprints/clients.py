"""Clients blueprint (JSON API, tenant-scoped)."""
from flask import Blueprint, jsonify, request, g

from quotation_tool.database import get_session
from quotation_tool.middleware import require_login, require_company
from quotation_tool.services import client_service
from quotation_tool.utils.request_data import get_json_body

clients_bp = Blueprint('clients', __name__, url_prefix='/api/clients')


@clients_bp.route('', methods=['GET'])
@require_login
@require_company
def list_clients():
    """List active clients; ?q= filters by name or e-mail."""
    db_session = get_session()
    clients = client_service.list_clients(
        db_session,
        g.company_id,
        search=request.args.get('q', '').strip() or None,
        include_inactive=request.args.get('include_inactive') == '1',
    )
    return jsonify({'clients': [client.to_dict() for client in clients]})


@clients_bp.route('', methods=['POST'])
@require_login
@require_company
def create_client():
    db_session = get_session()
    client = client_service.create_client(db_session, g.company_id, get_json_body(), user_id=g.user_id)
    return jsonify(client.to_dict()), 201


@clients_bp.route('/<int:client_id>', methods=['GET'])
@require_login
@require_company
def get_client(client_id):
    db_session = get_session()
    client = client_service.get_client(db_session, g.company_id, client_id)
    return jsonify(client.to_dict())
