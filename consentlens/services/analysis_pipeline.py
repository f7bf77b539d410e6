"""
Document analysis pipeline.
Builds the compliance prompt, calls Groq with retry and model fallback,
parses the model's JSON answer and stores the result against the document.
"""
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional

from consentlens.config import Settings
from consentlens.models import (
    FALLBACK_RESULT,
    AnalysisRequest,
    AnalysisResult,
    InvalidRequestError,
    ParsedAnalysis,
    ProviderResponse,
    ResponseKind,
)
from consentlens.services.groq_client import GroqClient, ProviderNetworkError

logger = logging.getLogger(__name__)

# Upstream context limit; only this prefix of the document is sent
MAX_CONTENT_CHARS = 12_000

ANALYSIS_RESULTS_TABLE = 'analysis_results'

REGION_LABELS = {
    'gdpr': "GDPR (EU)",
    'ccpa': "CCPA (California)",
    'dpdpa': "DPDPA (India)",
}

SYSTEM_PROMPT = (
    "You are a privacy-law assistant. Answer with JSON when possible, "
    "but if not produce a thorough textual analysis."
)

ANALYSIS_PROMPT_TEMPLATE = '''You are a specialized AI privacy analyst trained in legal document analysis.

Analyze the following document under {region} compliance requirements.
Focus on:
1. Privacy implications
2. Data handling practices
3. User rights and consent mechanisms
4. Security measures
5. Cross-border data transfers
6. Vendor/third-party relationships

Return a JSON object with:
{{
  "complianceScore": number (0-100), // Based on comprehensive evaluation
  "riskLevel": "low" | "medium" | "high", // Overall risk assessment
  "keyPoints": string[], // 5-7 most important findings
  "detailedAnalysis": {{
    "dataCollection": {{ // What data is collected
      "required": string[],
      "optional": string[],
      "purpose": string
    }},
    "userRights": string[], // Specific rights granted to users
    "dataSharingPractices": {{
      "parties": string[],
      "purposes": string[]
    }},
    "retentionPolicies": string,
    "securityMeasures": string[]
  }},
  "recommendations": [
    {{
      "title": string,
      "description": string,
      "severity": "low" | "medium" | "high",
      "category": "privacy" | "security" | "rights" | "compliance",
      "implementationSteps": string[]
    }}
  ],
  "complianceGaps": string[] // Specific areas needing improvement
}}

Document:
"""{document}"""

Provide detailed analysis considering both explicit statements and implicit implications.'''

_FENCED_JSON = re.compile(r'```(?:json)?\s*(.*?)```', re.DOTALL | re.IGNORECASE)


def region_label(law_region: str) -> str:
    """Map a jurisdiction token to its prompt label; anything else (including "GDPR") passes through verbatim."""
    return REGION_LABELS.get(law_region, law_region)


def build_prompt(content: str, law_region: str) -> str:
    return ANALYSIS_PROMPT_TEMPLATE.format(
        region=region_label(law_region),
        document=content[:MAX_CONTENT_CHARS],
    )


def build_messages(request: AnalysisRequest) -> List[Dict[str, str]]:
    return [
        {'role': 'system', 'content': SYSTEM_PROMPT},
        {'role': 'user', 'content': build_prompt(request.content, request.law_region)},
    ]


def extract_answer(response: ProviderResponse) -> str:
    """
    Pull the first choice's message text out of a successful response.

    If the provider body is not JSON, the raw body text is used instead.
    """
    try:
        payload = response.json()
    except ValueError:
        return response.body.strip()

    content = None
    if isinstance(payload, dict):
        choices = payload.get('choices')
        if isinstance(choices, list) and choices and isinstance(choices[0], dict):
            message = choices[0].get('message') or {}
            if isinstance(message, dict):
                content = message.get('content')
    return content.strip() if isinstance(content, str) else ''


def _json_candidates(answer: str) -> Iterator[str]:
    yield answer
    fenced = _FENCED_JSON.search(answer)
    if fenced:
        yield fenced.group(1).strip()
    start, end = answer.find('{'), answer.rfind('}')
    if 0 <= start < end:
        yield answer[start:end + 1]


def parse_analysis(answer: str) -> ParsedAnalysis:
    """
    Parse the model answer into an AnalysisResult.

    Accepts a bare JSON object, one inside a Markdown code fence, or one
    surrounded by prose. Anything else becomes the degraded textual result.
    """
    for candidate in _json_candidates(answer):
        try:
            data = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(data, dict):
            return ParsedAnalysis(AnalysisResult.from_dict(data))

    logger.warning(f"Model answer is not JSON ({len(answer)} chars), returning textual analysis")
    return ParsedAnalysis(AnalysisResult.degraded(answer), degraded=True)


@dataclass(frozen=True)
class AnalysisOutcome:
    """HTTP status and JSON body for the caller, plus the result to store (if any)."""

    status_code: int
    body: Dict[str, Any]
    result: Optional[AnalysisResult] = None


class AnalysisPipeline:
    def __init__(self, settings: Settings, groq_client: GroqClient, store=None):
        """
        Args:
            settings: Provider configuration and fallback policy.
            groq_client: Client used for the completion calls.
            store: Data-store collaborator exposing insert(table, row); optional.
        """
        self.settings = settings
        self.groq = groq_client
        self.store = store

    def analyze(self, request: AnalysisRequest) -> AnalysisOutcome:
        """
        Run one analysis.

        The outcome is fully determined before anything is stored; a storage
        failure is logged and never changes what the caller receives.
        """
        outcome = self._compute(request)
        if request.document_id and outcome.result is not None:
            self._persist(request.document_id, outcome.result)
        return outcome

    def _compute(self, request: AnalysisRequest) -> AnalysisOutcome:
        try:
            request.validate()
        except InvalidRequestError as e:
            return AnalysisOutcome(400, {'error': str(e)})

        settings = self.settings
        if not settings.provider_configured:
            logger.warning(
                f"GROQ config missing: hasKey={bool(settings.groq_api_key)}, "
                f"hasModel={bool(settings.groq_model)}"
            )
            if settings.use_fallback:
                logger.warning("USE_FALLBACK is true, returning local fallback")
                return AnalysisOutcome(200, FALLBACK_RESULT.to_dict(), FALLBACK_RESULT)
            return AnalysisOutcome(
                500, {'error': "GROQ_API_KEY or GROQ_MODEL missing. Set environment variables."}
            )

        messages = build_messages(request)
        logger.info(
            f"Analyzing document: region={request.law_region}, chars={len(request.content)}, "
            f"document_id={request.document_id}"
        )

        try:
            response = self.groq.complete_with_retries(settings.groq_model, messages)
            if response.kind is ResponseKind.NOT_FOUND:
                logger.warning(
                    f"Model {settings.groq_model} not found, retrying with fallback {settings.fallback_model}"
                )
                response = self.groq.complete(settings.fallback_model, messages)
        except ProviderNetworkError as e:
            return self._provider_failure(None, str(e))

        if not response.ok:
            return self._provider_failure(response.status_code, response.body)

        parsed = parse_analysis(extract_answer(response))
        if parsed.degraded:
            logger.warning(
                f"Returning textual analysis without score: region={request.law_region}, "
                f"document_id={request.document_id}"
            )
        else:
            logger.info(
                f"Analysis complete: score={parsed.result.compliance_score}, "
                f"risk={parsed.result.risk_level}, document_id={request.document_id}"
            )
        return AnalysisOutcome(200, parsed.result.to_dict(), parsed.result)

    def _provider_failure(self, status: Optional[int], body: str) -> AnalysisOutcome:
        status_value = status if status is not None else 'no_response'
        logger.error(f"Groq error after retries: status={status_value}, body={body[:500]}")

        if self.settings.use_fallback:
            payload = {
                **FALLBACK_RESULT.to_dict(),
                'fallback': True,
                'groqStatus': status_value,
                'groqBody': body,
            }
            return AnalysisOutcome(200, payload, FALLBACK_RESULT)

        # Non-secret provider error for the frontend
        return AnalysisOutcome(502, {'error': "Groq API failed", 'status': status_value, 'details': body})

    def _persist(self, document_id: str, result: AnalysisResult) -> None:
        if self.store is None:
            logger.warning(f"No data store configured, analysis for document {document_id} not saved")
            return
        try:
            self.store.insert(ANALYSIS_RESULTS_TABLE, result.to_record(document_id))
            logger.info(f"Saved analysis for document {document_id}")
        except Exception as e:
            logger.error(f"Failed to save analysis for document {document_id}: {type(e).__name__} - {e}")
