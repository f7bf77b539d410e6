from flask import Flask, jsonify
import logging
import os
from typing import Optional
from dotenv import load_dotenv
from werkzeug.middleware.proxy_fix import ProxyFix

from consentlens.config import Settings
from consentlens.routes.account_routes import account_bp
from consentlens.routes.analysis_routes import analysis_bp
from consentlens.routes.auth_routes import auth_bp
from consentlens.services.analysis_pipeline import AnalysisPipeline
from consentlens.services.chat_service import ChatService
from consentlens.services.groq_client import GroqClient
from consentlens.services.supabase_service import SupabaseService

# Load environment variables before Settings.from_env() reads them
load_dotenv()

logging.basicConfig(
    level=os.getenv('LOG_LEVEL', 'INFO').upper(),
    format='%(asctime)s %(levelname)s %(name)s: %(message)s'
)
logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    store=None,
    groq_client: Optional[GroqClient] = None,
    chat_service: Optional[ChatService] = None,
) -> Flask:
    """
    Build the Flask application.

    Args:
        settings: Configuration; read from the environment when omitted.
        store: Data-store collaborator (SupabaseService or a test double).
        groq_client: Provider client for the analysis pipeline.
        chat_service: Document chat service.
    """
    settings = settings or Settings.from_env()

    app = Flask(__name__)
    app.secret_key = settings.secret_key

    # Trust X-Forwarded-* from the reverse proxy in front of Waitress/Gunicorn
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_prefix=1)

    store = store if store is not None else SupabaseService.from_settings(settings)
    groq_client = groq_client or GroqClient(settings)

    app.config['SETTINGS'] = settings
    app.extensions['supabase'] = store
    app.extensions['analysis_pipeline'] = AnalysisPipeline(settings, groq_client, store)
    app.extensions['chat_service'] = chat_service or ChatService(settings)

    app.register_blueprint(auth_bp)
    app.register_blueprint(analysis_bp)
    app.register_blueprint(account_bp)

    @app.route('/health')
    def health():
        return jsonify({
            'status': 'ok',
            'provider_configured': settings.provider_configured,
            'store_configured': bool(getattr(store, 'configured', True)),
        })

    logger.info(
        f"ConsentLens app created: GROQ_API_KEY set={bool(settings.groq_api_key)}, "
        f"model={settings.groq_model or 'None'}, fallback_model={settings.fallback_model or 'None'}, "
        f"USE_FALLBACK={settings.use_fallback}, SUPABASE_URL={settings.supabase_url or 'None'}"
    )
    return app


app = create_app()

if __name__ == '__main__':
    app.run(debug=True, host='0.0.0.0', port=int(os.getenv('PORT', '5000')))
