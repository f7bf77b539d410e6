from flask import Blueprint, Response, g, jsonify, request
import json
import logging

from consentlens.services import account_service
from consentlens.services.supabase_service import SupabaseError
from consentlens.utils.auth_utils import get_store, login_required

account_bp = Blueprint('account', __name__, url_prefix='/api')
logger = logging.getLogger(__name__)


def _json_body() -> dict:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


@account_bp.route('/documents', methods=['POST'])
@login_required
def create_document():
    """Store a document so its analysis can be saved against it"""
    payload = _json_body()
    content = payload.get('content')
    law_region = payload.get('lawRegion')
    if not content or not law_region:
        return jsonify({'error': 'Missing content or lawRegion'}), 400

    try:
        document = account_service.create_document(
            get_store(),
            g.user,
            content=content,
            law_region=law_region,
            title=payload.get('title'),
            file_type=payload.get('fileType'),
        )
        return jsonify(document), 201
    except SupabaseError as e:
        return jsonify({'error': f'Failed to save document: {e}'}), 502


@account_bp.route('/documents', methods=['GET'])
@login_required
def list_documents():
    try:
        documents = account_service.recent_documents(get_store(), g.user['id'])
        return jsonify({'documents': documents, 'count': len(documents)})
    except SupabaseError as e:
        return jsonify({'error': f'Failed to load documents: {e}'}), 502


@account_bp.route('/account/stats')
@login_required
def account_stats():
    try:
        return jsonify(account_service.user_stats(get_store(), g.user['id']))
    except SupabaseError as e:
        return jsonify({'error': f'Failed to load stats: {e}'}), 502


@account_bp.route('/account/export')
@login_required
def export_data():
    """Download the caller's documents and analyses as a JSON file"""
    try:
        data = account_service.export_user_data(get_store(), g.user['id'])
    except SupabaseError as e:
        return jsonify({'error': f'Failed to export data: {e}'}), 502

    filename = account_service.export_filename()
    return Response(
        json.dumps(data, indent=2),
        mimetype='application/json',
        headers={'Content-Disposition': f'attachment; filename="{filename}"'},
    )


@account_bp.route('/account/profile', methods=['PATCH'])
@login_required
def update_profile():
    payload = _json_body()
    full_name = payload.get('fullName')
    retention = payload.get('dataRetentionDays')

    if full_name is not None and not isinstance(full_name, str):
        return jsonify({'error': 'fullName must be a string'}), 400
    if retention is not None and (isinstance(retention, bool) or not isinstance(retention, int) or retention <= 0):
        return jsonify({'error': 'dataRetentionDays must be a positive integer'}), 400

    try:
        profile = account_service.update_profile(
            get_store(),
            g.user['id'],
            g.access_token,
            full_name=full_name,
            data_retention_days=retention,
        )
        return jsonify({'success': True, 'profile': profile})
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except SupabaseError as e:
        return jsonify({'error': f'Failed to update profile: {e}'}), 502


@account_bp.route('/delete-account', methods=['POST'])
@login_required
def delete_account():
    """Delete the caller's data and auth user"""
    user_id = g.user['id']
    requested = _json_body().get('userId')
    if requested and requested != user_id:
        logger.warning(f"User {user_id} attempted to delete account {requested}")
        return jsonify({'error': 'You can only delete your own account'}), 403

    try:
        account_service.delete_account(get_store(), user_id)
    except SupabaseError as e:
        return jsonify({'error': str(e)}), 500

    return jsonify({'success': True})
