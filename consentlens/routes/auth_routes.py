from flask import Blueprint, g, jsonify, request
import logging

from consentlens.auth.token_guard import get_token_info
from consentlens.services.supabase_service import SupabaseError
from consentlens.utils.auth_utils import get_store, login_required

auth_bp = Blueprint('auth', __name__, url_prefix='/auth')
logger = logging.getLogger(__name__)


def _credentials():
    payload = request.get_json(silent=True) or {}
    if not isinstance(payload, dict):
        payload = {}
    return payload, payload.get('email'), payload.get('password')


@auth_bp.route('/signup', methods=['POST'])
def signup():
    """Create a Supabase account"""
    payload, email, password = _credentials()
    if not email or not password:
        return jsonify({'error': 'Missing email or password'}), 400

    metadata = {}
    if payload.get('fullName'):
        metadata['full_name'] = payload['fullName']

    try:
        result = get_store().sign_up(email, password, metadata)
    except SupabaseError as e:
        logger.warning(f"Sign-up failed: {e}")
        status = e.status_code if e.status_code and 400 <= e.status_code < 500 else 502
        return jsonify({'error': str(e)}), status

    logger.info("New account registered")
    return jsonify(result), 201


@auth_bp.route('/signin', methods=['POST'])
def signin():
    """Password sign-in; returns the Supabase session"""
    _, email, password = _credentials()
    if not email or not password:
        return jsonify({'error': 'Missing email or password'}), 400

    try:
        session = get_store().sign_in(email, password)
    except SupabaseError as e:
        logger.warning(f"Sign-in failed: {e}")
        if e.status_code and 400 <= e.status_code < 500:
            return jsonify({'error': 'Invalid email or password'}), 401
        return jsonify({'error': 'Authentication service unavailable'}), 502

    return jsonify(session)


@auth_bp.route('/signout', methods=['POST'])
@login_required
def signout():
    try:
        get_store().sign_out(g.access_token)
    except SupabaseError as e:
        # Token is dropped client-side anyway
        logger.warning(f"Sign-out failed: {e}")
    return jsonify({'success': True})


@auth_bp.route('/session')
@login_required
def current_session():
    """Current user and token lifetime"""
    return jsonify({'user': g.user, 'token': get_token_info(g.access_token)})
