# middleware/security.py
"""
Security Middleware for Request Processing
"""

from flask import current_app, request, jsonify
from functools import wraps
import hmac
import logging

logger = logging.getLogger(__name__)

ADMIN_TOKEN_HEADER = 'X-Admin-Token'


def security_headers(response):
    """Add security headers to all responses"""
    response.headers['X-Content-Type-Options'] = 'nosniff'
    response.headers['X-Frame-Options'] = 'DENY'
    response.headers['Referrer-Policy'] = 'strict-origin-when-cross-origin'
    response.headers['Permissions-Policy'] = 'camera=(), microphone=(), geolocation=()'
    if not current_app.debug:
        response.headers['Strict-Transport-Security'] = 'max-age=31536000; includeSubDomains'

    return response


def require_admin_token(f):
    """Decorator to require the admin API token when one is configured"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        expected = current_app.config.get('ADMIN_API_TOKEN')
        if expected:
            provided = request.headers.get(ADMIN_TOKEN_HEADER, '')
            if not hmac.compare_digest(provided.encode('utf-8'), expected.encode('utf-8')):
                logger.warning(f"Rejected admin request to {request.endpoint} from {request.remote_addr}")
                return jsonify({'success': False, 'error': 'Authentication required'}), 401

        return f(*args, **kwargs)
    return decorated_function
