"""
Token guard utility for Supabase JWT expiration checking.
Rejects expired bearer tokens before any call to the auth API.
"""
import base64
import json
import time
import logging
from typing import Optional
from flask import has_request_context, request

logger = logging.getLogger(__name__)


class TokenExpiredError(PermissionError):
    """Raised when token is expired or missing."""
    pass


def _decode_jwt_payload(token: str) -> dict:
    """
    Decode JWT payload without signature verification.

    Args:
        token: JWT token string (format: header.payload.signature)

    Returns:
        Decoded payload as dictionary

    Raises:
        ValueError: If token format is invalid or payload can't be decoded
    """
    try:
        parts = token.split('.')
        if len(parts) != 3:
            raise ValueError("Invalid JWT format: expected 3 parts separated by dots")

        payload_b64 = parts[1]

        # base64 requires length to be multiple of 4
        padding = 4 - (len(payload_b64) % 4)
        if padding != 4:
            payload_b64 += '=' * padding

        payload = json.loads(base64.urlsafe_b64decode(payload_b64))
        if not isinstance(payload, dict):
            raise ValueError("JWT payload is not an object")
        return payload

    except (ValueError, json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.error(f"Failed to decode JWT payload: {e}")
        raise ValueError(f"Invalid JWT token: {e}")


def token_exp_soon(token: str, skew_sec: int = 30) -> bool:
    """
    Check if token will expire soon (within skew_sec seconds).

    Invalid tokens and tokens without an 'exp' claim count as expired.
    """
    try:
        payload = _decode_jwt_payload(token)
    except ValueError:
        return True

    exp = payload.get('exp')
    if not isinstance(exp, (int, float)):
        logger.warning("JWT token missing 'exp' claim")
        return True

    time_until_exp = exp - time.time()
    if time_until_exp <= skew_sec:
        logger.debug(f"Token expires in {time_until_exp:.1f}s (skew: {skew_sec}s)")
        return True
    return False


def bearer_token_from_request() -> Optional[str]:
    """Return the token from an 'Authorization: Bearer <token>' header, if any."""
    if not has_request_context():
        return None
    header = request.headers.get('Authorization', '')
    scheme, _, token = header.partition(' ')
    if scheme.lower() != 'bearer' or not token.strip():
        return None
    return token.strip()


def ensure_token_or_401(token: Optional[str] = None, skew_sec: int = 30) -> str:
    """
    Ensure token is present and not expired.

    Args:
        token: JWT token string. If None, read from the Authorization header.
        skew_sec: Seconds before expiration to reject the token.

    Returns:
        Valid token string

    Raises:
        TokenExpiredError: If token is missing, expired, or will expire soon (SESSION_EXPIRED)
    """
    if token is None:
        token = bearer_token_from_request()

    if not token:
        logger.warning("No access token found")
        raise TokenExpiredError("SESSION_EXPIRED")

    if token_exp_soon(token, skew_sec):
        logger.warning("Access token is expired or expiring soon")
        raise TokenExpiredError("SESSION_EXPIRED")

    return token


def get_token_info(token: str) -> dict:
    """
    Get token information including expiration time and remaining lifetime.

    Returns:
        Dictionary with exp, iat, sub, remaining_seconds and is_expired
        (plus 'error' when the token cannot be decoded).
    """
    try:
        payload = _decode_jwt_payload(token)
    except ValueError as e:
        return {
            'exp': None,
            'iat': None,
            'sub': None,
            'remaining_seconds': None,
            'is_expired': True,
            'error': str(e)
        }

    exp = payload.get('exp')
    current_time = time.time()
    return {
        'exp': exp,
        'iat': payload.get('iat'),
        'sub': payload.get('sub'),
        'remaining_seconds': exp - current_time if exp else None,
        'is_expired': exp < current_time if exp else True
    }
