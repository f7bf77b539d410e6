"""
Supabase service for record storage and authentication.
Talks to the PostgREST (/rest/v1) and GoTrue (/auth/v1) HTTP APIs with requests.
"""
import logging
from typing import Any, Dict, List, Optional

import requests
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from consentlens.auth.token_guard import TokenExpiredError
from consentlens.config import Settings

logger = logging.getLogger(__name__)


class SupabaseError(RuntimeError):
    """Raised when a Supabase call fails or Supabase is not configured."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def _error_message(response: requests.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return (response.text or '')[:500]
    if isinstance(data, dict):
        for key in ('message', 'msg', 'error_description', 'error'):
            if data.get(key):
                return str(data[key])
    return str(data)[:500]


def _filter_params(filters: Optional[Dict[str, Any]]) -> Dict[str, str]:
    """
    Convert {column: value} filters to PostgREST query parameters.

    Scalars become ``eq.<value>``; lists and tuples become ``in.("a","b")``.
    """
    params = {}
    for column, value in (filters or {}).items():
        if isinstance(value, (list, tuple)):
            quoted = ','.join('"{}"'.format(str(v).replace('"', '\\"')) for v in value)
            params[column] = f'in.({quoted})'
        else:
            params[column] = f'eq.{value}'
    return params


class SupabaseService:
    def __init__(
        self,
        url: Optional[str],
        api_key: Optional[str],
        anon_key: Optional[str] = None,
        service_role_key: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout=(5, 30),
    ):
        self.url = url.rstrip('/') if url else None
        self.api_key = api_key
        self.anon_key = anon_key or api_key
        self.service_role_key = service_role_key
        # Module-level requests calls; a shared Session is not thread safe
        self.session = session if session is not None else requests
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> 'SupabaseService':
        """Create the server-side client, preferring the service-role key."""
        if not settings.supabase_service_role_key:
            logger.warning(
                "SUPABASE_SERVICE_ROLE_KEY is not set. "
                "Server-side functions requiring admin rights will fail."
            )
        return cls(
            url=settings.supabase_url,
            api_key=settings.supabase_service_role_key or settings.supabase_anon_key,
            anon_key=settings.supabase_anon_key,
            service_role_key=settings.supabase_service_role_key,
        )

    @property
    def configured(self) -> bool:
        return bool(self.url and self.api_key)

    def _require_configured(self) -> None:
        if not self.configured:
            raise SupabaseError("Supabase is not configured (SUPABASE_URL / key missing)")

    def _headers(self, token: Optional[str] = None, api_key: Optional[str] = None,
                 prefer: Optional[str] = None) -> Dict[str, str]:
        key = api_key or self.api_key
        headers = {
            'apikey': key,
            'Authorization': f'Bearer {token or key}',
            'Content-Type': 'application/json',
            'Accept': 'application/json',
        }
        if prefer:
            headers['Prefer'] = prefer
        return headers

    def _send(self, method: str, url: str, action: str, **kwargs) -> requests.Response:
        self._require_configured()
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.error(f"Supabase {action} failed: {type(e).__name__} - {e}")
            raise SupabaseError(f"Supabase {action} failed: {type(e).__name__}") from e

        if response.status_code >= 300:
            message = _error_message(response)
            logger.error(f"Supabase {action} returned {response.status_code}: {message}")
            raise SupabaseError(message or f"Supabase {action} failed", response.status_code)
        return response

    @staticmethod
    def _json(response: requests.Response) -> Any:
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def _rest_url(self, table: str) -> str:
        return f"{self.url}/rest/v1/{table}"

    def insert(self, table: str, row: Dict[str, Any]) -> List[Dict[str, Any]]:
        """
        Insert one row.

        Returns:
            The inserted rows as returned by PostgREST.

        Raises:
            SupabaseError: On failure.
        """
        response = self._send(
            'POST', self._rest_url(table), f'insert into {table}',
            json=row, headers=self._headers(prefer='return=representation'),
        )
        return self._json(response) or []

    def upsert(self, table: str, row: Dict[str, Any], on_conflict: str = 'id') -> List[Dict[str, Any]]:
        response = self._send(
            'POST', self._rest_url(table), f'upsert into {table}',
            json=row, params={'on_conflict': on_conflict},
            headers=self._headers(prefer='resolution=merge-duplicates,return=representation'),
        )
        return self._json(response) or []

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((requests.HTTPError,)),
        reraise=True
    )
    def _get(self, url: str, params: Dict[str, Any]) -> requests.Response:
        response = self.session.get(url, params=params, headers=self._headers(), timeout=self.timeout)

        # Retry on 429/503
        if response.status_code in (429, 503):
            logger.warning(f"Received {response.status_code} from Supabase, will retry")
            response.raise_for_status()
        return response

    def select(
        self,
        table: str,
        columns: str = '*',
        filters: Optional[Dict[str, Any]] = None,
        order: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Select rows matching every filter.

        Args:
            table: Record set name.
            columns: PostgREST select list.
            filters: {column: value} or {column: [values]}.
            order: e.g. "created_at.desc".
            limit: Maximum number of rows.

        Returns:
            List of row dictionaries.
        """
        self._require_configured()
        params = {'select': columns, **_filter_params(filters)}
        if order:
            params['order'] = order
        if limit is not None:
            params['limit'] = limit

        try:
            response = self._get(self._rest_url(table), params)
        except requests.HTTPError as e:
            raise SupabaseError(f"Supabase select from {table} failed after retries",
                                e.response.status_code if e.response is not None else None) from e
        except requests.RequestException as e:
            logger.error(f"Supabase select from {table} failed: {type(e).__name__} - {e}")
            raise SupabaseError(f"Supabase select from {table} failed: {type(e).__name__}") from e

        if response.status_code >= 300:
            message = _error_message(response)
            logger.error(f"Supabase select from {table} returned {response.status_code}: {message}")
            raise SupabaseError(message, response.status_code)
        return self._json(response) or []

    def update(self, table: str, values: Dict[str, Any], filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        response = self._send(
            'PATCH', self._rest_url(table), f'update of {table}',
            json=values, params=_filter_params(filters),
            headers=self._headers(prefer='return=representation'),
        )
        return self._json(response) or []

    def delete(self, table: str, filters: Dict[str, Any]) -> None:
        if not filters:
            # PostgREST rejects unfiltered deletes; never send one
            raise SupabaseError(f"Refusing to delete from {table} without a filter")
        self._send('DELETE', self._rest_url(table), f'delete from {table}',
                   params=_filter_params(filters), headers=self._headers())

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def _auth_url(self, path: str) -> str:
        return f"{self.url}/auth/v1/{path}"

    def sign_up(self, email: str, password: str, metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        response = self._send(
            'POST', self._auth_url('signup'), 'sign-up',
            json={'email': email, 'password': password, 'data': metadata or {}},
            headers=self._headers(api_key=self.anon_key),
        )
        return self._json(response) or {}

    def sign_in(self, email: str, password: str) -> Dict[str, Any]:
        """Password sign-in; returns the session (access_token, refresh_token, user)."""
        response = self._send(
            'POST', self._auth_url('token'), 'sign-in',
            params={'grant_type': 'password'},
            json={'email': email, 'password': password},
            headers=self._headers(api_key=self.anon_key),
        )
        return self._json(response) or {}

    def sign_out(self, access_token: str) -> None:
        self._send('POST', self._auth_url('logout'), 'sign-out',
                   headers=self._headers(token=access_token, api_key=self.anon_key))

    def get_user(self, access_token: str) -> Dict[str, Any]:
        """
        Resolve the user behind an access token.

        Raises:
            TokenExpiredError: If Supabase rejects the token.
            SupabaseError: On any other failure.
        """
        try:
            response = self._send('GET', self._auth_url('user'), 'user lookup',
                                  headers=self._headers(token=access_token, api_key=self.anon_key))
        except SupabaseError as e:
            if e.status_code in (401, 403):
                raise TokenExpiredError("SESSION_EXPIRED") from e
            raise
        return self._json(response) or {}

    def update_user_metadata(self, access_token: str, data: Dict[str, Any]) -> Dict[str, Any]:
        response = self._send(
            'PUT', self._auth_url('user'), 'user metadata update',
            json={'data': data},
            headers=self._headers(token=access_token, api_key=self.anon_key),
        )
        return self._json(response) or {}

    def delete_user(self, user_id: str) -> None:
        """Delete an auth user (admin API, needs the service-role key)."""
        if not self.service_role_key:
            raise SupabaseError("SUPABASE_SERVICE_ROLE_KEY is required to delete users")
        self._send('DELETE', self._auth_url(f'admin/users/{user_id}'), 'user deletion',
                   headers=self._headers(api_key=self.service_role_key))
