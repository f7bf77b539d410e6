"""
Runtime configuration for ConsentLens.
Read once from the process environment at startup and passed into services.
"""
import os
from dataclasses import dataclass, field
from typing import Optional

DEFAULT_GROQ_URL = "https://api.groq.com/openai/v1/chat/completions"
DEFAULT_GROQ_BASE_URL = "https://api.groq.com/openai/v1"
DEFAULT_GROQ_MODEL = "llama-3.3-70b-versatile"


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == '':
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass(frozen=True)
class Settings:
    """Immutable settings object shared by the pipeline, chat and data-store services."""

    groq_api_key: Optional[str] = None
    groq_url: str = DEFAULT_GROQ_URL
    groq_base_url: str = DEFAULT_GROQ_BASE_URL
    groq_model: str = DEFAULT_GROQ_MODEL
    groq_fallback_model: Optional[str] = None
    use_fallback: bool = True
    groq_timeout: float = 60.0

    supabase_url: Optional[str] = None
    supabase_anon_key: Optional[str] = None
    supabase_service_role_key: Optional[str] = None

    secret_key: str = field(default='dev-secret-key', repr=False)

    @classmethod
    def from_env(cls) -> 'Settings':
        """Build settings from environment variables (call after load_dotenv)."""
        model = os.getenv('GROQ_MODEL', DEFAULT_GROQ_MODEL)
        return cls(
            groq_api_key=os.getenv('GROQ_API_KEY') or None,
            groq_url=os.getenv('GROQ_URL', DEFAULT_GROQ_URL),
            groq_base_url=os.getenv('GROQ_BASE_URL', DEFAULT_GROQ_BASE_URL),
            groq_model=model,
            groq_fallback_model=os.getenv('GROQ_FALLBACK_MODEL') or model,
            use_fallback=_env_flag('USE_FALLBACK', True),
            groq_timeout=float(os.getenv('GROQ_TIMEOUT', '60')),
            supabase_url=os.getenv('SUPABASE_URL') or None,
            supabase_anon_key=os.getenv('SUPABASE_ANON_KEY') or None,
            supabase_service_role_key=os.getenv('SUPABASE_SERVICE_ROLE_KEY') or None,
            secret_key=os.getenv('SECRET_KEY', 'dev-secret-key'),
        )

    @property
    def provider_configured(self) -> bool:
        return bool(self.groq_api_key and self.groq_model)

    @property
    def fallback_model(self) -> str:
        return self.groq_fallback_model or self.groq_model
