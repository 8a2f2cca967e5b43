"""Main blueprint with health check endpoints."""
from flask import Blueprint, jsonify
from flask_wtf.csrf import generate_csrf
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from invoice_tracker.database import get_session
from invoice_tracker.services.cache_service import get_cache

main_bp = Blueprint('main', __name__)


@main_bp.route('/health')
def health():
    """
    Health check endpoint that validates database connection.

    Returns:
        200: Healthy (DB connected)
        500: Unhealthy (DB error)
    """
    try:
        session = get_session()
        row = session.execute(text("SELECT 1 as health_check")).fetchone()
    except SQLAlchemyError as e:
        return jsonify({
            'status': 'unhealthy',
            'database': 'disconnected',
            'error': str(e),
            'message': 'Failed to connect to database'
        }), 500

    if not row or row[0] != 1:
        return jsonify({
            'status': 'unhealthy',
            'database': 'error',
            'message': 'Unexpected query result'
        }), 500

    # Cache is optional: a missing Redis only degrades the service
    cache_status = 'connected' if get_cache().is_available() else 'degraded'
    return jsonify({
        'status': 'healthy',
        'database': 'connected',
        'cache': cache_status,
        'message': 'Database connection successful'
    }), 200


@main_bp.route('/csrf-token')
def csrf_token():
    """Token for clients posting JSON (send it back as X-CSRFToken)."""
    return jsonify({'csrf_token': generate_csrf()})
