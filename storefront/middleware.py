from flask import request, jsonify
from flask_login import current_user
from functools import wraps
import logging

from storefront.services.auth_service import require_role

logger = logging.getLogger(__name__)

# Exact paths that never require login
LOGIN_WHITELIST = [
    '/',
    '/favicon.ico',
    '/api/auth/login',
    '/api/auth/register',
    '/api/internal/create-super-user',
    # The provider cannot authenticate as a store user.
    '/api/webhooks/efi',
    '/api/webhooks/efi/pix',
    # Carries its token as a query parameter.
    '/ws/chat',
]


def is_public_browse_path(path: str) -> bool:
    # Catalog and reviews are readable anonymously.
    return path.startswith('/api/products')


def setup_auth_middleware(app):

    @app.before_request
    def require_login():
        path = request.path
        method = request.method.upper()

        if path in LOGIN_WHITELIST:
            return None

        # Allow anonymous browsing for safe methods
        if method in (
            'GET',
            'HEAD',
                'OPTIONS') and is_public_browse_path(path):
            return None

        if not path.startswith('/api/'):
            return None

        if not current_user.is_authenticated:
            return jsonify({'error': 'Not logged in',
                           'login_required': True}), 401

        return None


def role_required(*allowed_roles):
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            # Raises Unauthorized/Forbidden, rendered by the error handler.
            require_role(current_user, *allowed_roles)
            return f(*args, **kwargs)
        return decorated_function
    return decorator
