# auth_utils.py
"""
Authentication utilities for testing and production

Sessions are issued by the portal's auth service; this application only
reads the identity. With LOGIN_DISABLED (tests) the identity is taken from
the X-Test-User-Id header instead of the session.
"""

from functools import wraps

from flask import current_app, g, has_request_context, jsonify, request
from flask_login import current_user as flask_current_user

from logging_config import security_logger

TEST_USER_HEADER = 'X-Test-User-Id'


def get_current_user():
    """
    Get current user, respecting LOGIN_DISABLED config for testing

    Returns:
        The User, or None when nobody is authenticated
    """
    if current_app.config.get('LOGIN_DISABLED', False):
        return _load_test_user()

    if flask_current_user.is_authenticated:
        return flask_current_user._get_current_object()
    return None


def _load_test_user():
    if not has_request_context():
        return None
    raw_id = request.headers.get(TEST_USER_HEADER)
    if not raw_id or not raw_id.isdigit():
        return None
    from extensions import db
    from portal_database import User
    user = db.session.get(User, int(raw_id))
    if user is None or not user.is_active:
        return None
    return user


def _unauthorized():
    return jsonify({'error': 'Authentication required', 'code': 'UNAUTHORIZED'}), 401


def login_required(f):
    """Custom login_required decorator that respects LOGIN_DISABLED config"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user = get_current_user()
        if user is None or not user.is_authenticated:
            return _unauthorized()
        g.user_id = user.id
        return f(*args, **kwargs)
    return decorated_function


def admin_required(f):
    """Decorator to require admin role"""
    @wraps(f)
    @login_required
    def decorated_function(*args, **kwargs):
        user = get_current_user()
        if not user.is_admin:
            security_logger.log_access_denied(user.id, 'admin', request.path)
            return jsonify({'error': 'Admin access required', 'code': 'FORBIDDEN'}), 403
        return f(*args, **kwargs)
    return decorated_function
