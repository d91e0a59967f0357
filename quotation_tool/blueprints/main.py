"""Liveness endpoints for the load balancer and monitoring."""
import logging

from flask import Blueprint, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from quotation_tool.database import get_session
from quotation_tool.services.cache_service import get_cache

logger = logging.getLogger(__name__)

main_bp = Blueprint('main', __name__)


@main_bp.route('/health')
def health():
    """200 when the database answers, 500 otherwise."""
    try:
        value = get_session().execute(text("SELECT 1")).scalar()
    except SQLAlchemyError as e:
        logger.error(f"[HEALTH] Database check failed: {e}")
        return jsonify({'status': 'unhealthy', 'database': 'disconnected', 'error': str(e)}), 500

    if value != 1:
        return jsonify({'status': 'unhealthy', 'database': 'error'}), 500
    return jsonify({'status': 'healthy', 'database': 'connected'}), 200


@main_bp.route('/health/cache')
def health_cache():
    """
    Redis round trip.

    Always 200: the application keeps working without the cache, so a missing
    Redis is reported as degraded.
    """
    cache = get_cache()
    if not cache.is_available():
        return jsonify({'status': 'degraded', 'cache': 'unavailable'}), 200

    cache.set(0, 'system', 'health_check', {'ok': True}, ttl=10)
    if (cache.get(0, 'system', 'health_check') or {}).get('ok'):
        return jsonify({'status': 'ok', 'cache': 'connected'}), 200
    return jsonify({'status': 'degraded', 'cache': 'error'}), 200
