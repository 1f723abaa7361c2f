"""
Post-generation guardrails for spoken replies.

Two checks run on every LLM-generated reply:
1. FormattingGuardrail: strips markdown that would be read aloud
2. FactGuardrail:       flags contact details that are not in the business
                        data, and the agent deferring for missing information

A failed fact check sends the turn to message-taking instead of letting
an invented fact reach the caller.
"""

import re
from dataclasses import dataclass
from typing import Optional

from receptionist.logging_context import get_call_logger
from receptionist.prompts.prompt_templates import DEFERRAL_PHRASE
from receptionist.schemas.business_schema import BusinessContext
from receptionist.schemas.memory_schema import RememberedEntities
from receptionist.utils import phone_digits

logger = get_call_logger(__name__)

_PHONE_LIKE = re.compile(r"\+?\(?\d[\d\s().-]{5,}\d")
_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_EMAIL = re.compile(r"[\w.+-]+@[\w-]+(?:\.[\w-]+)+")
_MIN_PHONE_LIKE_DIGITS = 7


@dataclass
class GuardrailResult:
    """Outcome of a single guardrail check."""
    passed: bool
    violation_type: Optional[str] = None
    message: Optional[str] = None
    severity: str = "warning"  # "warning" | "block" | "escalate"


class FormattingGuardrail:
    """Removes text formatting that has no meaning on a phone call."""

    def strip(self, text: str) -> str:
        text = text.replace("**", "").replace("*", "")
        text = re.sub(r"^\s*(?:#+|[-•]|\d+\.)\s+", "", text, flags=re.MULTILINE)
        return " ".join(text.split())


class FactGuardrail:
    """Flags replies that state contact details the business never provided."""

    def _known_text(self, context: BusinessContext, remembered: RememberedEntities) -> str:
        business = context.business
        parts = [business.phone or "", business.email or "", remembered.phone or "",
                 remembered.email or ""]
        parts.extend(f"{e.title or ''} {e.content or ''}" for e in context.knowledge_base)
        parts.extend(s.description or "" for s in context.services)
        return " ".join(parts)

    def check_reply(
        self, reply: str, context: BusinessContext, remembered: RememberedEntities
    ) -> GuardrailResult:
        if DEFERRAL_PHRASE in reply.lower().replace("’", "'"):
            return GuardrailResult(
                passed=False,
                violation_type="information_unavailable",
                message="Agent deferred a question it cannot answer.",
                severity="escalate",
            )

        known = self._known_text(context, remembered)
        known_digits = [phone_digits(m.group(0)) for m in _PHONE_LIKE.finditer(known)]
        for match in _PHONE_LIKE.finditer(reply):
            raw = match.group(0).strip()
            digits = phone_digits(raw)
            if len(digits) < _MIN_PHONE_LIKE_DIGITS or _ISO_DATE.match(raw):
                continue
            if not any(digits[-_MIN_PHONE_LIKE_DIGITS:] in k for k in known_digits):
                logger.warning("Reply contains unverified phone number")
                return GuardrailResult(
                    passed=False,
                    violation_type="unverified_phone",
                    message=f"Phone number '{raw}' is not in the business data.",
                    severity="escalate",
                )

        known_lower = known.lower()
        for match in _EMAIL.finditer(reply):
            if match.group(0).lower().rstrip(".") not in known_lower:
                logger.warning("Reply contains unverified email address")
                return GuardrailResult(
                    passed=False,
                    violation_type="unverified_email",
                    message=f"Email '{match.group(0)}' is not in the business data.",
                    severity="escalate",
                )
        return GuardrailResult(passed=True)


class ReplyGuardrailPipeline:
    """Cleans a generated reply and runs the fact check on the result."""

    def __init__(self):
        self.formatting = FormattingGuardrail()
        self.facts = FactGuardrail()

    def review(
        self, reply: str, context: BusinessContext, remembered: RememberedEntities
    ) -> tuple[str, GuardrailResult]:
        cleaned = self.formatting.strip(reply)
        return cleaned, self.facts.check_reply(cleaned, context, remembered)
