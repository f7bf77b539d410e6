"""
Chat with an analysed document using Groq's OpenAI-compatible API.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import openai
from openai import OpenAI
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from consentlens.config import Settings

logger = logging.getLogger(__name__)

MAX_DOCUMENT_CHARS = 12_000

NOT_CONFIGURED_MESSAGE = "The GROQ_API_KEY is not configured. Please add it to your environment variables."
EMPTY_ANSWER_MESSAGE = "Sorry, I could not generate a response."

CHAT_REGION_LABELS = {
    'US': "CCPA and US privacy laws",
    'EU': "GDPR",
    'Global': "international privacy regulations",
    'gdpr': "GDPR",
    'ccpa': "CCPA and US privacy laws",
    'dpdpa': "DPDPA (India)",
}

CHAT_SYSTEM_PROMPT = '''You are ConsentLens, an expert AI privacy analyst specializing in {region} compliance.

Core Capabilities:
1. Deep understanding of privacy laws and regulations
2. Ability to interpret legal language for non-experts
3. Pattern recognition across privacy policies
4. Contextual awareness of modern privacy challenges

Guidelines for Response:
1. EVIDENCE: Always cite specific sections using markdown blockquotes (>)
2. CONTEXT: Reference previous chat history when relevant
3. IMPLICATIONS: Explain both direct and indirect consequences
4. COMPARISONS: Compare with standard industry practices when relevant
5. ACTIONABLE: Provide practical suggestions when appropriate

Document Analysis Context:
"""{document}"""

Previous Context:
{history}

Remember: Base all responses on the document content while leveraging privacy expertise to provide deeper insights.'''


@dataclass(frozen=True)
class ChatOutcome:
    status_code: int
    body: Dict[str, Any]


def _clean_history(chat_history: Any) -> List[Dict[str, str]]:
    """Keep only well-formed {role: user|assistant, content} turns."""
    if not isinstance(chat_history, list):
        return []
    history = []
    for turn in chat_history:
        if not isinstance(turn, dict):
            continue
        role = turn.get('role')
        content = turn.get('content')
        if role in ('user', 'assistant') and isinstance(content, str):
            history.append({'role': role, 'content': content})
    return history


def build_chat_messages(
    document_content: str,
    question: str,
    law_region: Optional[str],
    chat_history: List[Dict[str, str]],
) -> List[Dict[str, str]]:
    system_prompt = CHAT_SYSTEM_PROMPT.format(
        region=CHAT_REGION_LABELS.get(law_region or '', "privacy"),
        document=document_content[:MAX_DOCUMENT_CHARS],
        history='\n'.join(f"{msg['role']}: {msg['content']}" for msg in chat_history),
    )
    return [
        {'role': 'system', 'content': system_prompt},
        *chat_history,
        {'role': 'user', 'content': question},
    ]


class ChatService:
    def __init__(self, settings: Settings, client: Optional[OpenAI] = None):
        self.settings = settings
        self._client = client

    def _get_client(self) -> OpenAI:
        """Get or initialize the OpenAI SDK client pointed at Groq."""
        if self._client is None:
            # Retries are handled by tenacity in _call_groq
            self._client = OpenAI(
                api_key=self.settings.groq_api_key,
                base_url=self.settings.groq_base_url,
                max_retries=0,
            )
            logger.info("Groq chat client initialized")
        return self._client

    @retry(
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        retry=retry_if_exception_type((openai.RateLimitError, openai.APIError)),
        reraise=True
    )
    def _call_groq(self, messages: List[Dict[str, str]]) -> Optional[str]:
        response = self._get_client().chat.completions.create(
            model=self.settings.groq_model,
            messages=messages,
            temperature=0.3,
            max_tokens=4096,
            top_p=0.95,
            presence_penalty=0.1,
            frequency_penalty=0.1,
            timeout=self.settings.groq_timeout,
        )
        if not response.choices:
            return None
        return response.choices[0].message.content

    def answer(
        self,
        document_content: Optional[str],
        question: Optional[str],
        law_region: Optional[str] = None,
        chat_history: Any = None,
    ) -> ChatOutcome:
        """
        Answer a question about a document.

        Returns:
            ChatOutcome with {"content": ...} on success, {"error": ...} otherwise.
        """
        if not document_content or not question:
            return ChatOutcome(400, {'error': "Missing documentContent or question"})

        if not self.settings.groq_api_key:
            return ChatOutcome(200, {'content': NOT_CONFIGURED_MESSAGE})

        history = _clean_history(chat_history)
        messages = build_chat_messages(document_content, question, law_region, history)

        try:
            answer = self._call_groq(messages)
        except openai.OpenAIError as e:
            logger.error(f"Groq API error: {type(e).__name__} - {e}")
            return ChatOutcome(500, {'error': "Failed to get response from Groq"})

        content = (answer or '').strip()
        return ChatOutcome(200, {'content': content or EMPTY_ANSWER_MESSAGE})
