"""
Authentication utilities for the Flask application
"""
import logging
from functools import wraps
from flask import current_app, g, jsonify, request

from consentlens.auth.token_guard import TokenExpiredError, ensure_token_or_401
from consentlens.services.supabase_service import SupabaseError

logger = logging.getLogger(__name__)

SESSION_EXPIRED_MESSAGE = "Session expired — please sign in again."


def get_store():
    return current_app.extensions['supabase']


def login_required(f):
    """
    Decorator to require a Supabase session for API routes.

    Expired tokens are rejected locally; valid-looking ones are resolved to a
    user through the auth API and exposed as g.user / g.access_token.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            token = ensure_token_or_401()
            user = get_store().get_user(token)
        except TokenExpiredError:
            logger.info(f"Rejected unauthenticated request to {request.endpoint}")
            return jsonify({'error': SESSION_EXPIRED_MESSAGE, 'auth_error': True}), 401
        except SupabaseError as e:
            logger.error(f"User lookup failed: {e}")
            return jsonify({'error': 'Authentication service unavailable'}), 503

        if not user or not user.get('id'):
            return jsonify({'error': SESSION_EXPIRED_MESSAGE, 'auth_error': True}), 401

        g.user = user
        g.access_token = token
        return f(*args, **kwargs)
    return decorated_function
