from receptionist.conversation.guardrails import ReplyGuardrailPipeline
from receptionist.conversation.keyword_filters import KeywordTurnFilter, TurnFilter
from receptionist.conversation.state_machine import (
    RouteDecision,
    TurnSignals,
    TurnState,
    select_route,
)
from receptionist.conversation.orchestrator import TurnInputError, TurnOrchestrator

__all__ = [
    "TurnOrchestrator",
    "TurnInputError",
    "TurnState",
    "TurnSignals",
    "RouteDecision",
    "select_route",
    "KeywordTurnFilter",
    "TurnFilter",
    "ReplyGuardrailPipeline",
]
