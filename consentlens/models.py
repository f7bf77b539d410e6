"""
Data classes for the analysis pipeline.
"""
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

RISK_LEVELS = ('low', 'medium', 'high')
SEVERITIES = ('low', 'medium', 'high')


class InvalidRequestError(ValueError):
    """Raised when an analysis request is missing required fields."""
    pass


@dataclass(frozen=True)
class AnalysisRequest:
    content: str
    law_region: str
    document_id: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Optional[Dict[str, Any]]) -> 'AnalysisRequest':
        """Build a request from the camelCase JSON body sent by the UI."""
        payload = payload or {}
        document_id = payload.get('documentId')
        return cls(
            content=payload.get('content') or '',
            law_region=payload.get('lawRegion') or '',
            document_id=str(document_id) if document_id else None,
        )

    def validate(self) -> None:
        if not isinstance(self.content, str) or not self.content:
            raise InvalidRequestError("Missing content or lawRegion")
        if not isinstance(self.law_region, str) or not self.law_region:
            raise InvalidRequestError("Missing content or lawRegion")


@dataclass(frozen=True)
class Recommendation:
    title: str
    description: str
    severity: str = 'medium'
    category: str = 'general'
    implementation_steps: Optional[List[str]] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Recommendation':
        severity = str(data.get('severity') or '').strip().lower()
        steps = data.get('implementationSteps')
        return cls(
            title=str(data.get('title') or ''),
            description=str(data.get('description') or ''),
            severity=severity if severity in SEVERITIES else 'medium',
            category=str(data.get('category') or 'general'),
            implementation_steps=_string_list(steps) if isinstance(steps, list) else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'title': self.title,
            'description': self.description,
            'severity': self.severity,
            'category': self.category,
        }
        if self.implementation_steps is not None:
            data['implementationSteps'] = list(self.implementation_steps)
        return data


def _string_list(values: Any) -> List[str]:
    if not isinstance(values, list):
        return []
    return [str(v) for v in values if v is not None]


def _coerce_score(value: Any) -> Optional[int]:
    # bool is an int subclass; a true/false score is meaningless
    if value is None or isinstance(value, bool):
        return None
    try:
        score = int(round(float(value)))
    except (TypeError, ValueError, OverflowError):
        # NaN, infinity and integers too large for a float
        return None
    return max(0, min(100, score))


@dataclass(frozen=True)
class AnalysisResult:
    """
    Compliance analysis of one document.

    Either the normalised model answer, the static fallback, or the degraded
    shape carrying the raw model text in ``textual_analysis``.
    """

    compliance_score: Optional[int]
    risk_level: str
    key_points: List[str] = field(default_factory=list)
    recommendations: List[Recommendation] = field(default_factory=list)
    textual_analysis: Optional[str] = None
    detailed_analysis: Optional[Dict[str, Any]] = None
    compliance_gaps: Optional[List[str]] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AnalysisResult':
        """
        Normalise a parsed model answer into the result shape.

        Args:
            data: JSON object returned by the model.

        Returns:
            AnalysisResult with every required field populated.
        """
        risk = str(data.get('riskLevel') or '').strip().lower()
        recommendations = data.get('recommendations')
        textual = data.get('textualAnalysis')
        detailed = data.get('detailedAnalysis')
        gaps = data.get('complianceGaps')
        return cls(
            compliance_score=_coerce_score(data.get('complianceScore')),
            risk_level=risk if risk in RISK_LEVELS else 'unknown',
            key_points=_string_list(data.get('keyPoints')),
            recommendations=[
                Recommendation.from_dict(item)
                for item in (recommendations if isinstance(recommendations, list) else [])
                if isinstance(item, dict)
            ],
            textual_analysis=textual if isinstance(textual, str) else None,
            detailed_analysis=detailed if isinstance(detailed, dict) else None,
            compliance_gaps=_string_list(gaps) if isinstance(gaps, list) else None,
        )

    @classmethod
    def degraded(cls, raw_text: str) -> 'AnalysisResult':
        """Result used when the model answered with prose instead of JSON."""
        return cls(
            compliance_score=None,
            risk_level='unknown',
            key_points=[],
            recommendations=[],
            textual_analysis=raw_text,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'complianceScore': self.compliance_score,
            'riskLevel': self.risk_level,
            'keyPoints': list(self.key_points),
            'recommendations': [r.to_dict() for r in self.recommendations],
        }
        if self.textual_analysis is not None:
            data['textualAnalysis'] = self.textual_analysis
        if self.detailed_analysis is not None:
            data['detailedAnalysis'] = self.detailed_analysis
        if self.compliance_gaps is not None:
            data['complianceGaps'] = list(self.compliance_gaps)
        return data

    def to_record(self, document_id: str) -> Dict[str, Any]:
        """Row written to the analysis_results record set."""
        return {
            'document_id': document_id,
            'summary': {'keyPoints': list(self.key_points)},
            'compliance_score': self.compliance_score,
            'risk_level': self.risk_level,
            'recommendations': [r.to_dict() for r in self.recommendations],
        }


# Small deterministic result so the UI keeps working without a provider
FALLBACK_RESULT = AnalysisResult(
    compliance_score=72,
    risk_level='medium',
    key_points=[
        "Data is shared with third-party analytics providers.",
        "User data may be stored for up to 24 months.",
        "You have the right to request deletion of personal data.",
        "Cookies are used for personalisation and ads.",
        "Service reserves the right to update terms without notice.",
    ],
    recommendations=[
        Recommendation(
            title="Disable third-party cookies",
            description="Limit tracking by turning off third-party cookies in your browser.",
            severity='medium',
            category='privacy',
        ),
        Recommendation(
            title="Request data deletion",
            description="Exercise your right to be forgotten if you stop using the service.",
            severity='high',
            category='rights',
        ),
    ],
)


@dataclass(frozen=True)
class ParsedAnalysis:
    """Structured model answer, or the degraded textual result."""

    result: AnalysisResult
    degraded: bool = False


class ResponseKind(str, Enum):
    SUCCESS = 'success'
    RATE_LIMITED = 'rate_limited'
    SERVER_ERROR = 'server_error'
    CLIENT_ERROR = 'client_error'
    NOT_FOUND = 'not_found'


@dataclass(frozen=True)
class ProviderResponse:
    """One HTTP answer from the completion provider, tagged by outcome."""

    kind: ResponseKind
    status_code: int
    body: str = ''
    retry_after_ms: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.kind is ResponseKind.SUCCESS

    def json(self) -> Any:
        return json.loads(self.body)
