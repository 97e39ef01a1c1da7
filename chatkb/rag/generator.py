"""Completion provider adapter and answer prompt assembly."""

import logging
import re
from typing import Protocol

from ibm_watsonx_ai import Credentials
from ibm_watsonx_ai.foundation_models import ModelInference
from ibm_watsonx_ai.metanames import GenTextParamsMetaNames as GenParams
from ibm_watsonx_ai.wml_client_error import ApiRequestFailure

from chatkb.config import Settings
from chatkb.models import ChatTurn

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "ענה על השאלה בעברית בלבד. השתמש אך ורק במידע המופיע בהקשר. "
    "אם אין מספיק מידע, אמור שאינך יודע."
)

CITATION_INSTRUCTION = (
    "הנחיה: כאשר אתה עונה, השתמש בסימוני מקור בסגנון [1], [2] בסוף כל עובדה, "
    "לפי המספור של המקורות בהקשר. אל תשתמש במקורות שלא מופיעים בהקשר. "
    "אם אין מקור, אל תנחש."
)

NO_CONTEXT_REPLY = "מצטער, אין לי מספיק מידע לענות על השאלה הזו."

ROLE_LABELS = {"user": "משתמש", "assistant": "עוזר"}

RATE_LIMIT_MESSAGE = re.compile(r"\b429\b|too many requests|rate limit", re.IGNORECASE)


class RateLimitError(RuntimeError):
    """Raised when the completion provider rejects a call with HTTP 429."""


def is_rate_limited(exc: BaseException) -> bool:
    """Return True if an exception signals a provider rate limit."""
    if isinstance(exc, RateLimitError):
        return True
    status = getattr(exc, "status", None) or getattr(exc, "status_code", None)
    if status is None:
        response = getattr(exc, "response", None)
        status = getattr(response, "status_code", None)
    if status is not None:
        return status == 429
    return RATE_LIMIT_MESSAGE.search(str(exc)) is not None


class Completer(Protocol):
    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.2,
        max_tokens: int = 2048,
    ) -> str: ...


def build_answer_prompt(
    question: str, context: str, history: list[ChatTurn] | None = None
) -> tuple[str, str]:
    """Build the system and user prompts for a grounded answer.

    Args:
        question: The user's message.
        context: Citation-numbered context from retrieval.
        history: Earlier turns of the conversation, oldest first.

    Returns:
        Tuple of (system_prompt, user_prompt).
    """
    system_prompt = SYSTEM_PROMPT
    if context:
        system_prompt = f"{system_prompt}\n\nהקשר:\n{context}\n\n{CITATION_INSTRUCTION}"

    lines = [f"{ROLE_LABELS[turn.role]}: {turn.content}" for turn in history or []]
    if lines:
        transcript = "\n".join(lines)
        user_prompt = f"שיחה קודמת:\n{transcript}\n\nשאלה: {question}"
    else:
        user_prompt = question
    return system_prompt, user_prompt


class GeneratorClient:
    """Completion provider backed by a watsonx.ai foundation model."""

    def __init__(self, settings: Settings):
        self.settings = settings
        credentials = Credentials(
            api_key=settings.ibm_cloud_api_key,
            url=f"https://{settings.watsonx_region}.ml.cloud.ibm.com",
        )
        self.client = ModelInference(
            model_id=settings.watsonx_gen_model,
            project_id=settings.watsonx_project_id,
            credentials=credentials,
        )

    @staticmethod
    def _extract_text(response) -> str:
        data = response.get_result() if hasattr(response, "get_result") else response
        if isinstance(data, str):
            return data
        if isinstance(data, dict):
            if data.get("results"):
                return data["results"][0].get("generated_text", "")
            if "generated_text" in data:
                return data["generated_text"]
            return str(data)
        if hasattr(response, "generated_text"):
            return response.generated_text  # type: ignore[attr-defined]
        return str(data)

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.2,
        max_tokens: int = 2048,
    ) -> str:
        """Run one completion.

        Raises:
            RateLimitError: If the provider answered with HTTP 429.
            ApiRequestFailure: For any other provider failure.
        """
        prompt = f"{system_prompt}\n\n{user_prompt}"
        params = {
            GenParams.TEMPERATURE: float(temperature),
            GenParams.MAX_NEW_TOKENS: int(max_tokens),
            GenParams.TRUNCATE_INPUT_TOKENS: 0,
        }
        try:
            response = self.client.generate(prompt=prompt, params=params)
        except ApiRequestFailure as e:
            if is_rate_limited(e):
                raise RateLimitError(str(e)) from e
            raise
        return self._extract_text(response).strip()
