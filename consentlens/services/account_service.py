"""
Account-level operations over the Supabase record sets:
document creation, usage stats, data export and account deletion.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from consentlens.services.supabase_service import SupabaseService

logger = logging.getLogger(__name__)

DOCUMENTS_TABLE = 'documents'
ANALYSIS_RESULTS_TABLE = 'analysis_results'
USER_PROFILES_TABLE = 'user_profiles'

RECENT_DOCUMENTS_LIMIT = 5


def ensure_profile(store: SupabaseService, user: Dict[str, Any]) -> None:
    """Upsert the caller's user_profiles row from the auth user object."""
    metadata = user.get('user_metadata') or {}
    store.upsert(USER_PROFILES_TABLE, {
        'id': user['id'],
        'email': user.get('email'),
        'full_name': metadata.get('full_name'),
    }, on_conflict='id')


def create_document(
    store: SupabaseService,
    user: Dict[str, Any],
    content: str,
    law_region: str,
    title: Optional[str] = None,
    file_type: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Store a document for the user so an analysis can be attached to it.

    Returns:
        The inserted documents row.
    """
    ensure_profile(store, user)
    rows = store.insert(DOCUMENTS_TABLE, {
        'user_id': user['id'],
        'title': title or "Pasted Document",
        'content': content,
        'file_type': file_type or 'text/plain',
        'law_region': law_region,
    })
    document = rows[0] if rows else {}
    logger.info(f"Created document {document.get('id')} for user {user['id']}")
    return document


def recent_documents(store: SupabaseService, user_id: str) -> List[Dict[str, Any]]:
    return store.select(
        DOCUMENTS_TABLE,
        columns='id,title,law_region,file_type,created_at',
        filters={'user_id': user_id},
        order='created_at.desc',
        limit=RECENT_DOCUMENTS_LIMIT,
    )


def _document_ids(store: SupabaseService, user_id: str) -> List[str]:
    docs = store.select(DOCUMENTS_TABLE, columns='id', filters={'user_id': user_id})
    return [d['id'] for d in docs if d.get('id')]


def user_stats(store: SupabaseService, user_id: str) -> Dict[str, int]:
    """
    Usage summary for the profile page.

    Returns:
        documentsAnalyzed, averageComplianceScore (rounded, ignoring null
        scores, 0 when none) and totalRecommendations.
    """
    doc_ids = _document_ids(store, user_id)

    analyses = []
    if doc_ids:
        analyses = store.select(
            ANALYSIS_RESULTS_TABLE,
            columns='compliance_score,recommendations',
            filters={'document_id': doc_ids},
        )

    scores = [a['compliance_score'] for a in analyses if isinstance(a.get('compliance_score'), (int, float))]
    total_recs = sum(
        len(a['recommendations']) for a in analyses if isinstance(a.get('recommendations'), list)
    )

    return {
        'documentsAnalyzed': len(doc_ids),
        'averageComplianceScore': round(sum(scores) / len(scores)) if scores else 0,
        'totalRecommendations': total_recs,
    }


def export_user_data(store: SupabaseService, user_id: str) -> Dict[str, Any]:
    documents = store.select(DOCUMENTS_TABLE, filters={'user_id': user_id})
    doc_ids = [d['id'] for d in documents if d.get('id')]
    analyses = []
    if doc_ids:
        analyses = store.select(ANALYSIS_RESULTS_TABLE, filters={'document_id': doc_ids})
    return {'documents': documents, 'analysis_results': analyses}


def export_filename(today: Optional[datetime] = None) -> str:
    today = today or datetime.now(timezone.utc)
    return f"consentlens-export-{today.strftime('%Y-%m-%d')}.json"


def update_profile(
    store: SupabaseService,
    user_id: str,
    access_token: str,
    full_name: Optional[str] = None,
    data_retention_days: Optional[int] = None,
) -> Dict[str, Any]:
    """Update profile fields; the display name is mirrored into the auth user metadata."""
    values: Dict[str, Any] = {}
    if full_name is not None:
        values['full_name'] = full_name
    if data_retention_days is not None:
        values['data_retention_days'] = data_retention_days
    if not values:
        raise ValueError("Nothing to update")

    values['updated_at'] = datetime.now(timezone.utc).isoformat()
    rows = store.update(USER_PROFILES_TABLE, values, {'id': user_id})

    if full_name is not None:
        store.update_user_metadata(access_token, {'full_name': full_name})

    return rows[0] if rows else values


def delete_account(store: SupabaseService, user_id: str) -> None:
    """
    Delete everything the user owns, then the auth user itself.

    Order: analysis results of the user's documents, documents, profile, auth user.

    Raises:
        SupabaseError: If any step fails; later steps are not attempted.
    """
    doc_ids = _document_ids(store, user_id)
    if doc_ids:
        store.delete(ANALYSIS_RESULTS_TABLE, {'document_id': doc_ids})
    store.delete(DOCUMENTS_TABLE, {'user_id': user_id})
    store.delete(USER_PROFILES_TABLE, {'id': user_id})
    store.delete_user(user_id)
    logger.info(f"Deleted account {user_id} ({len(doc_ids)} documents)")
