"""
LLM-backed turn classification with lenient output parsing.

The model is asked for a single JSON object. Output wrapped in code
fences or surrounded by chatter is salvaged by extracting the first
JSON object it contains. If nothing usable comes back, the result is a
low-confidence "other" that routes to message-taking, never a booking.
"""

import json
import re
from datetime import date, timedelta
from typing import Optional

from pydantic import ValidationError

from receptionist.clients.llm import LLMClient
from receptionist.config import settings
from receptionist.logging_context import get_call_logger
from receptionist.prompts.prompt_templates import CLASSIFIER_SYSTEM_PROMPT, CLASSIFY_TURN_PROMPT
from receptionist.schemas.business_schema import BusinessContext
from receptionist.schemas.conversation_schema import Intent, TurnClassification
from receptionist.schemas.memory_schema import ConversationMemory, Speaker

logger = get_call_logger(__name__)

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)
_decoder = json.JSONDecoder()


def fallback_classification() -> TurnClassification:
    return TurnClassification(intent=Intent.OTHER, confidence=0.3, needs_message=True)


def _first_json_object(text: str) -> Optional[dict]:
    for index, char in enumerate(text):
        if char != "{":
            continue
        try:
            candidate, _ = _decoder.raw_decode(text, index)
        except json.JSONDecodeError:
            continue
        if isinstance(candidate, dict):
            return candidate
    return None


def parse_classification(raw: str) -> Optional[TurnClassification]:
    """Parse classifier output, salvaging the first JSON object if needed."""
    text = _FENCE.sub("", raw.strip())
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        payload = None
    if not isinstance(payload, dict):
        payload = _first_json_object(text)
        if payload is None:
            return None
        logger.info("Salvaged classifier JSON from malformed output")
    try:
        return TurnClassification.model_validate(payload)
    except ValidationError as e:
        logger.warning("Classifier JSON failed validation: %s", e)
        return None


def resolve_relative_date(utterance: str, today: date) -> Optional[str]:
    """Map "today"/"tonight"/"tomorrow" onto the business's local calendar."""
    lowered = utterance.lower()
    if re.search(r"\btomorrow\b", lowered):
        return (today + timedelta(days=1)).isoformat()
    if re.search(r"\b(today|tonight)\b", lowered):
        return today.isoformat()
    return None


def _remembered_block(memory: ConversationMemory) -> str:
    remembered = memory.remembered_entities.model_dump(exclude_none=True)
    if not remembered:
        return "None"
    return "\n".join(f"- {key}: {value}" for key, value in remembered.items())


class IntentClassifier:
    """Classifies one caller utterance into an intent plus extracted entities."""

    def __init__(self, llm: LLMClient, history_messages: Optional[int] = None):
        self._llm = llm
        self._history_messages = history_messages or settings.model.classify_history_messages

    def build_messages(
        self, utterance: str, memory: ConversationMemory, context: BusinessContext
    ) -> list[dict[str, str]]:
        today = context.local_now.date()
        prompt = CLASSIFY_TURN_PROMPT.format(
            weekday=context.weekday.title(),
            today=today.isoformat(),
            tomorrow=(today + timedelta(days=1)).isoformat(),
            remembered=_remembered_block(memory),
            utterance=utterance,
        )
        messages = [{"role": "system", "content": CLASSIFIER_SYSTEM_PROMPT}]
        for entry in memory.transcript[-self._history_messages:]:
            role = "user" if entry.speaker == Speaker.CALLER else "assistant"
            messages.append({"role": role, "content": entry.text})
        messages.append({"role": "user", "content": prompt})
        return messages

    async def classify(
        self, utterance: str, memory: ConversationMemory, context: BusinessContext
    ) -> TurnClassification:
        messages = self.build_messages(utterance, memory, context)
        try:
            raw = await self._llm.complete_json(messages)
        except Exception as e:
            logger.error("Intent classification call failed: %s", e)
            return fallback_classification()

        result = parse_classification(raw or "")
        if result is None:
            logger.warning("Unusable classifier output, using conservative default")
            return fallback_classification()

        if result.requested_date is None:
            relative = resolve_relative_date(utterance, context.local_now.date())
            if relative:
                result.requested_date = relative
        logger.info(
            "Classified turn: intent=%s confidence=%.2f needs_message=%s",
            result.intent.value, result.confidence, result.needs_message,
        )
        return result
