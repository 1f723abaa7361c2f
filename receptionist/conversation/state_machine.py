"""
Per-turn routing for the booking conversation.

Every turn is routed to exactly one TurnState by walking an ordered rule
table; the first rule whose guard matches wins. Routing is a pure
function of TurnSignals, so the whole decision can be tested without an
LLM or a datastore.

Usage:
    decision = select_route(signals)
    assert decision.state == TurnState.BOOKING_COMMIT
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from receptionist.schemas.conversation_schema import Intent, TurnClassification
from receptionist.schemas.memory_schema import RememberedEntities
from receptionist.schemas.notification_schema import NotificationCategory
from receptionist.utils import is_valid_phone

logger = logging.getLogger(__name__)


class TurnState(str, Enum):
    """Reply strategies a turn can be routed to."""
    SIMPLE_ACK = "simple_ack"
    BOOKING_IN_PROGRESS = "booking_in_progress"
    BOOKING_CONFIRM_PHONE = "booking_confirm_phone"
    BOOKING_COMMIT = "booking_commit"
    BOOKING_CONFLICT = "booking_conflict"
    MESSAGE_TAKING = "message_taking"
    GOODBYE = "goodbye"
    GENERIC_REPLY = "generic_reply"


@dataclass
class TurnSignals:
    """Everything routing needs to know about the current turn."""
    classification: Optional[TurnClassification]
    entities: RememberedEntities
    threshold: float
    simple_affirmation: bool = False
    pending_choice: bool = False
    phone_confirmed: bool = False
    awaiting_phone_confirmation: bool = False
    wants_message_now: bool = False
    wants_message_before: bool = False
    agent_took_message: bool = False
    booking_already_made: bool = False
    quote_needed: bool = False

    @property
    def confident_booking(self) -> bool:
        c = self.classification
        return c is not None and c.intent == Intent.BOOKING and c.confidence >= self.threshold

    @property
    def booking_complete(self) -> bool:
        return not self.entities.missing_booking_fields()

    @property
    def needs_message(self) -> bool:
        return self.classification is not None and self.classification.needs_message

    @property
    def low_confidence(self) -> bool:
        return self.classification is not None and self.classification.confidence < self.threshold

    @property
    def phone_needs_readback(self) -> bool:
        return (
            is_valid_phone(self.entities.phone)
            and not self.phone_confirmed
            and not self.awaiting_phone_confirmation
        )


@dataclass
class RouteDecision:
    """Selected state plus the rule that selected it."""
    state: TurnState
    reason: str
    category: Optional[NotificationCategory] = None


@dataclass
class RouteRule:
    """A single routing rule, evaluated in table order."""
    reason: str
    state: TurnState
    guard: Callable[[TurnSignals], bool]
    category: Optional[NotificationCategory] = field(default=None)


ROUTE_RULES: list[RouteRule] = [
    # --- Unresolved choice between offered times ---
    RouteRule("ambiguous_alternative", TurnState.BOOKING_CONFLICT,
              lambda s: s.pending_choice),

    # --- Shortcut for bare acknowledgements ---
    RouteRule("simple_affirmation", TurnState.SIMPLE_ACK,
              lambda s: s.simple_affirmation),

    # --- Caller asks for a message in this utterance ---
    RouteRule("explicit_message_request", TurnState.MESSAGE_TAKING,
              lambda s: s.wants_message_now, NotificationCategory.CALL_BACK),

    # --- Confident booking ---
    RouteRule("booking_needs_person", TurnState.MESSAGE_TAKING,
              lambda s: s.confident_booking and (s.needs_message or s.quote_needed),
              NotificationCategory.BOOKING_FAILED),
    RouteRule("booking_already_made", TurnState.BOOKING_COMMIT,
              lambda s: s.confident_booking and s.booking_already_made),
    RouteRule("booking_complete", TurnState.BOOKING_COMMIT,
              lambda s: s.confident_booking and s.booking_complete),
    RouteRule("phone_readback", TurnState.BOOKING_CONFIRM_PHONE,
              lambda s: s.confident_booking and s.phone_needs_readback),
    RouteRule("booking_missing_fields", TurnState.BOOKING_IN_PROGRESS,
              lambda s: s.confident_booking),

    # --- Message already under way ---
    RouteRule("message_requested_earlier", TurnState.MESSAGE_TAKING,
              lambda s: s.wants_message_before or s.agent_took_message,
              NotificationCategory.CALL_BACK),

    # --- Fallbacks ---
    RouteRule("low_confidence", TurnState.MESSAGE_TAKING,
              lambda s: s.low_confidence, NotificationCategory.LOW_CONFIDENCE),
    RouteRule("classifier_needs_message", TurnState.MESSAGE_TAKING,
              lambda s: s.needs_message, NotificationCategory.LOW_CONFIDENCE),
    RouteRule("goodbye", TurnState.GOODBYE,
              lambda s: s.classification is not None
              and s.classification.intent == Intent.GOODBYE),
]


def select_route(signals: TurnSignals, rules: Optional[list[RouteRule]] = None) -> RouteDecision:
    """Return the decision of the first matching rule, else a generic reply."""
    for rule in rules or ROUTE_RULES:
        if rule.guard(signals):
            decision = RouteDecision(rule.state, rule.reason, rule.category)
            break
    else:
        decision = RouteDecision(TurnState.GENERIC_REPLY, "default")
    logger.debug("Turn routed: %s (rule: %s)", decision.state.value, decision.reason)
    return decision
