"""Notifications blueprint: in-app notifications and preferences."""
from flask import Blueprint, jsonify, request, g

from quotation_tool.database import get_session
from quotation_tool.middleware import require_login, require_company
from quotation_tool.services import notification_preferences_service as preferences_service
from quotation_tool.services import notification_service
from quotation_tool.utils.request_data import get_json_body

notifications_bp = Blueprint('notifications', __name__, url_prefix='/api/notifications')


@notifications_bp.route('', methods=['GET'])
@require_login
@require_company
def list_notifications():
    """In-app notifications of the current user; ?unread=1 for unread only."""
    db_session = get_session()
    notifications = notification_service.list_notifications(
        db_session, g.company_id, g.user_id, unread_only=request.args.get('unread') == '1',
    )
    return jsonify({'notifications': [notification.to_dict() for notification in notifications]})


@notifications_bp.route('/<int:notification_id>/read', methods=['POST'])
@require_login
@require_company
def mark_read(notification_id):
    db_session = get_session()
    notification = notification_service.mark_read(db_session, g.company_id, g.user_id, notification_id)
    return jsonify(notification.to_dict())


@notifications_bp.route('/preferences', methods=['GET'])
@require_login
@require_company
def get_preferences():
    db_session = get_session()
    prefs = preferences_service.get_preferences(db_session, g.user_id)
    db_session.commit()
    return jsonify(prefs.to_dict())


@notifications_bp.route('/preferences', methods=['PUT'])
@require_login
@require_company
def update_preferences():
    """Body: {"notifications_enabled"?: bool, "channels"?: {...}, "events"?: {...}}"""
    db_session = get_session()
    prefs = preferences_service.update_preferences(db_session, g.user_id, get_json_body())
    return jsonify(prefs.to_dict())
