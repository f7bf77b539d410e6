"""
Authentication utilities package.
"""
from consentlens.auth.token_guard import (
    bearer_token_from_request,
    ensure_token_or_401,
    token_exp_soon,
    get_token_info,
    TokenExpiredError
)

__all__ = [
    'bearer_token_from_request',
    'ensure_token_or_401',
    'token_exp_soon',
    'get_token_info',
    'TokenExpiredError'
]
