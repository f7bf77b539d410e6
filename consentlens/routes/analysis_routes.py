from flask import Blueprint, current_app, jsonify, request
import logging

from consentlens.models import AnalysisRequest
from consentlens.services.text_extractor import extract_upload

analysis_bp = Blueprint('analysis', __name__, url_prefix='/api')
logger = logging.getLogger(__name__)


def _json_body() -> dict:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


@analysis_bp.route('/analyze', methods=['POST'])
def analyze():
    """Run a compliance analysis on submitted document text"""
    try:
        analysis_request = AnalysisRequest.from_payload(_json_body())
        pipeline = current_app.extensions['analysis_pipeline']
        outcome = pipeline.analyze(analysis_request)
        return jsonify(outcome.body), outcome.status_code
    except Exception as e:
        logger.exception("Analysis route failed")
        return jsonify({'error': 'Internal error', 'message': str(e)}), 500


@analysis_bp.route('/chat', methods=['POST'])
def chat():
    """Answer a question about an analysed document"""
    try:
        payload = _json_body()
        outcome = current_app.extensions['chat_service'].answer(
            document_content=payload.get('documentContent'),
            question=payload.get('question'),
            law_region=payload.get('lawRegion'),
            chat_history=payload.get('chatHistory'),
        )
        return jsonify(outcome.body), outcome.status_code
    except Exception:
        logger.exception("Chat API error")
        return jsonify({'error': 'Internal server error'}), 500


@analysis_bp.route('/extract-text', methods=['POST'])
def extract_text_route():
    """Turn an uploaded PDF/DOCX/TXT file into plain text for analysis"""
    if 'file' not in request.files:
        return jsonify({'error': 'No file uploaded'}), 400

    file = request.files['file']
    if not file.filename:
        return jsonify({'error': 'No file selected'}), 400

    try:
        return jsonify(extract_upload(file))
    except RuntimeError as e:
        logger.warning(f"Text extraction failed for {file.filename}: {e}")
        return jsonify({'error': str(e)}), 400
