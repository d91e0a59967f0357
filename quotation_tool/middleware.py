"""Middleware for user and company context."""
from functools import wraps
from flask import session, g, jsonify, current_app
from quotation_tool.database import get_session
from quotation_tool.exceptions import UnauthorizedError
from quotation_tool.models import AppUser, Company


def load_user_and_company():
    """
    Load current user and company into g (Flask's per-request global).

    Sets g.user, g.user_id, g.company_id and g.user_role if the session
    identifies an active user of an active company.
    """
    g.user = None
    g.user_id = None
    g.company_id = None
    g.user_role = None

    try:
        user_id = session.get('user_id')
        if not user_id:
            return

        db_session = get_session()
        user = db_session.query(AppUser).filter_by(id=user_id, active=True).first()
        if not user:
            session.clear()
            return

        company_id = session.get('company_id')
        if company_id and company_id != user.company_id:
            # Users belong to exactly one company
            session.pop('company_id', None)
            company_id = None

        g.user = user
        g.user_id = user.id
        g.user_role = user.role

        if company_id:
            company = db_session.get(Company, company_id)
            if company and company.status == 'active':
                g.company_id = company_id
    except Exception as e:
        # Avoid crashing the whole app if context loading fails
        current_app.logger.error(f"Error in load_user_and_company: {e}")


def require_login(f):
    """Decorator: 401 JSON response unless a user is logged in."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if g.get('user') is None:
            return jsonify({'status': 'error', 'message': 'Authentication required'}), 401
        return f(*args, **kwargs)
    return decorated_function


def require_company(f):
    """
    Decorator: 403 JSON response unless a company is selected.

    Must be used AFTER require_login.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if g.get('company_id') is None:
            return jsonify({'status': 'error', 'message': 'No company selected'}), 403
        return f(*args, **kwargs)
    return decorated_function


def require_role(*roles):
    """Decorator: UnauthorizedError (403) unless the user has one of `roles`."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if g.get('user_role') not in roles:
                raise UnauthorizedError('Insufficient permissions')
            return f(*args, **kwargs)
        return decorated_function
    return decorator
