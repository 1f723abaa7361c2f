"""
Turn orchestrator: one caller utterance in, one reply out.

Pipeline per turn:
    decode memory -> load business context -> resolve pending choices
    -> classify (unless the keyword filter says it is not needed)
    -> merge entities -> route -> run the route handler -> encode memory

The orchestrator keeps no state between turns; everything it needs to
continue a call travels in the client-carried memory blob.
"""

import re
from dataclasses import dataclass
from typing import Optional

from receptionist.clients.datastore import Datastore, DatastoreError
from receptionist.clients.gateway import NotificationGateway
from receptionist.clients.llm import LLMClient
from receptionist.config import AppConfig, settings
from receptionist.conversation import memory_codec
from receptionist.conversation.entity_memory import MergeResult, merge
from receptionist.conversation.guardrails import ReplyGuardrailPipeline
from receptionist.conversation.intent_classifier import IntentClassifier
from receptionist.conversation.keyword_filters import (
    KeywordTurnFilter,
    TurnFilter,
    mentioned_times,
)
from receptionist.conversation.state_machine import (
    RouteDecision,
    TurnSignals,
    TurnState,
    select_route,
)
from receptionist.logging_context import get_call_logger, set_call_context
from receptionist.prompts import prompt_templates as templates
from receptionist.prompts.system_prompts import build_system_prompt
from receptionist.schemas.booking_schema import BookingRequest
from receptionist.schemas.business_schema import BusinessContext
from receptionist.schemas.conversation_schema import (
    Intent,
    TurnClassification,
    TurnRequest,
    TurnResponse,
)
from receptionist.schemas.memory_schema import ConversationMemory, Speaker
from receptionist.schemas.notification_schema import CustomerMessage, NotificationCategory
from receptionist.tools.availability import CLOSED_DAY, AvailabilityEngine, weekday_of
from receptionist.tools.booking import BookingCommitter
from receptionist.tools.business_context import BusinessContextLoader, Clock, utc_now
from receptionist.tools.notifications import NotificationDispatcher
from receptionist.utils import format_date, format_phone_readback, format_time

logger = get_call_logger(__name__)

_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")


class TurnInputError(ValueError):
    """Raised for turns missing the utterance or the business identity."""


@dataclass
class TurnOutcome:
    reply_text: str
    has_appointment: bool = False
    needs_message: bool = False
    suggested_alternatives: Optional[list[str]] = None


@dataclass
class _Turn:
    """Working set for a single turn."""
    utterance: str
    memory: ConversationMemory
    context: BusinessContext
    classification: Optional[TurnClassification] = None
    merge_result: Optional[MergeResult] = None
    pending_choice: bool = False
    signals: Optional[TurnSignals] = None


def _booking_classification(**entities) -> TurnClassification:
    """A classification for turns resolved without the LLM."""
    return TurnClassification(intent=Intent.BOOKING, confidence=1.0, **entities)


def _spoken_times(times: list[str]) -> str:
    return ", ".join(format_time(t) for t in times)


def _offer_in_question(agent_text: str, offered: list[str]) -> list[str]:
    """Offered times named in the last agent sentence that names any."""
    for sentence in reversed(_SENTENCE_END.split(agent_text)):
        found = mentioned_times(sentence, offered)
        if found:
            return found
    return []


class TurnOrchestrator:
    """Stateless per-utterance decision engine."""

    def __init__(
        self,
        datastore: Datastore,
        llm: LLMClient,
        gateway: NotificationGateway,
        turn_filter: Optional[TurnFilter] = None,
        clock: Clock = utc_now,
        config: Optional[AppConfig] = None,
    ):
        self._config = config or settings
        self._llm = llm
        self._filter = turn_filter or KeywordTurnFilter()
        self._loader = BusinessContextLoader(datastore, clock=clock, config=self._config)
        self._classifier = IntentClassifier(llm, self._config.model.classify_history_messages)
        self._availability = AvailabilityEngine(datastore, self._config.datastore.reservation_status)
        self._committer = BookingCommitter(
            datastore, self._availability, status=self._config.datastore.reservation_status
        )
        self._notifier = NotificationDispatcher(gateway, datastore)
        self._guardrails = ReplyGuardrailPipeline()
        self._cap = self._config.conversation.transcript_cap

    async def handle_turn(self, request: TurnRequest) -> TurnResponse:
        utterance = (request.utterance_text or "").strip()
        if not utterance:
            raise TurnInputError("utterance_text is required")
        memory = memory_codec.decode(request.client_state, self._cap)
        business_id = memory.business_id or request.business_id
        if not business_id:
            raise TurnInputError("business_id is required in client_state")
        memory.business_id = business_id
        set_call_context(request.call_id, business_id)

        context = await self._loader.load(business_id)
        memory.turn_count += 1
        turn = _Turn(utterance=utterance, memory=memory, context=context)

        await self._understand(turn)
        turn.signals = self._signals(turn)
        decision = select_route(turn.signals)
        logger.info("Turn %d routed to %s (%s)", memory.turn_count,
                    decision.state.value, decision.reason)
        outcome = await self._dispatch(turn, decision)

        memory.append_turn(Speaker.CALLER, utterance, self._cap)
        memory.append_turn(Speaker.AGENT, outcome.reply_text, self._cap)
        return TurnResponse(
            reply_text=outcome.reply_text,
            client_state=memory_codec.encode(memory, self._cap),
            has_appointment=outcome.has_appointment,
            needs_message=outcome.needs_message,
            suggested_alternatives=outcome.suggested_alternatives,
        )

    # --- Understanding ---

    async def _understand(self, turn: _Turn) -> None:
        """Resolve pending choices, classify, and merge entities into memory."""
        memory = turn.memory
        utterance = turn.utterance
        affirmation = self._filter.is_simple_affirmation(utterance)

        if memory.pending_alternatives:
            self._resolve_alternative(turn, affirmation)
        if turn.classification is None and memory.awaiting_phone_confirmation:
            self._resolve_phone_confirmation(turn, affirmation)

        if turn.classification is None and not turn.pending_choice and not affirmation:
            if self._filter.needs_classification(utterance, memory.caller_texts()):
                turn.classification = await self._classifier.classify(
                    utterance, memory, turn.context
                )

        if turn.classification is not None:
            turn.merge_result = merge(turn.classification.entities(), memory.remembered_entities)
            memory.remembered_entities = turn.merge_result.entities
            if turn.merge_result.phone_changed:
                memory.phone_confirmed = False
                memory.awaiting_phone_confirmation = False

        if memory.awaiting_phone_confirmation:
            memory.awaiting_phone_confirmation = False
            disputed = (turn.merge_result is not None and turn.merge_result.rejected_phone) \
                or self._filter.starts_with_negation(utterance)
            if disputed:
                logger.info("Caller disputed the read-back phone number")
                memory.remembered_entities.phone = None
                memory.phone_confirmed = False
                if turn.classification is None:
                    turn.classification = _booking_classification()
            else:
                # Carrying on without correcting the read-back confirms the number.
                memory.phone_confirmed = True

    def _resolve_alternative(self, turn: _Turn, affirmation: bool) -> None:
        memory = turn.memory
        pending = memory.pending_alternatives
        chosen = mentioned_times(turn.utterance, pending)
        if len(chosen) != 1 and affirmation:
            if len(pending) == 1:
                chosen = pending
            else:
                chosen = _offer_in_question(memory.last_agent_text() or "", pending)
        if len(chosen) == 1:
            logger.info("Caller chose offered time %s", chosen[0])
            turn.classification = _booking_classification(requested_time=chosen[0])
            memory.pending_alternatives = []
        elif affirmation:
            turn.pending_choice = True
        else:
            memory.pending_alternatives = []

    def _resolve_phone_confirmation(self, turn: _Turn, affirmation: bool) -> None:
        memory = turn.memory
        if affirmation:
            memory.phone_confirmed = True
            memory.awaiting_phone_confirmation = False
            turn.classification = _booking_classification()
        elif self._filter.is_negation(turn.utterance):
            logger.info("Caller rejected the read-back phone number")
            memory.remembered_entities.phone = None
            memory.phone_confirmed = False
            memory.awaiting_phone_confirmation = False
            turn.classification = _booking_classification()

    def _signals(self, turn: _Turn) -> TurnSignals:
        memory = turn.memory
        conversation = " ".join(memory.caller_texts() + [turn.utterance]).lower()
        quote_needed = any(
            s.quote_needed and s.name.lower() in conversation for s in turn.context.services
        )
        agent_texts = memory.agent_texts()
        affirmation = (
            turn.classification is None
            and not turn.pending_choice
            and self._filter.is_simple_affirmation(turn.utterance)
        )
        return TurnSignals(
            classification=turn.classification,
            entities=memory.remembered_entities,
            threshold=turn.context.confidence_threshold,
            simple_affirmation=affirmation,
            pending_choice=turn.pending_choice,
            phone_confirmed=memory.phone_confirmed,
            awaiting_phone_confirmation=memory.awaiting_phone_confirmation,
            wants_message_now=self._filter.wants_message(turn.utterance),
            wants_message_before=any(self._filter.wants_message(t) for t in memory.caller_texts()),
            agent_took_message=memory.message_recorded or self._filter.agent_took_message(agent_texts),
            booking_already_made=self._filter.booking_already_made(agent_texts),
            quote_needed=quote_needed,
        )

    # --- Handlers ---

    async def _dispatch(self, turn: _Turn, decision: RouteDecision) -> TurnOutcome:
        state = decision.state
        if state == TurnState.SIMPLE_ACK:
            return await self._generic_reply(turn, templates.SIMPLE_ACK_INSTRUCTION)
        if state == TurnState.GENERIC_REPLY:
            return await self._generic_reply(turn)
        if state == TurnState.GOODBYE:
            return TurnOutcome(reply_text=turn.context.closing_message)
        if state == TurnState.BOOKING_IN_PROGRESS:
            return await self._booking_progress(turn)
        if state == TurnState.BOOKING_CONFIRM_PHONE:
            return self._phone_readback(turn)
        if state == TurnState.BOOKING_CONFLICT:
            pending = turn.memory.pending_alternatives
            return TurnOutcome(
                reply_text=templates.WHICH_ALTERNATIVE_REPLY.format(
                    alternatives=_spoken_times(pending)
                ),
                suggested_alternatives=list(pending),
            )
        if state == TurnState.BOOKING_COMMIT:
            if decision.reason == "booking_already_made":
                return await self._acknowledge_existing_booking(turn)
            return await self._commit(turn)
        return await self._take_message(turn, decision.category or NotificationCategory.CALL_BACK)

    async def _generate(self, turn: _Turn, instruction: Optional[str] = None) -> Optional[str]:
        system = build_system_prompt(turn.context, turn.memory.remembered_entities)
        if instruction:
            system = f"{system}\n{instruction}"
        history = turn.memory.transcript[-self._config.model.reply_history_messages:]
        messages = [{"role": "system", "content": system}]
        for entry in history:
            role = "user" if entry.speaker == Speaker.CALLER else "assistant"
            messages.append({"role": role, "content": entry.text})
        messages.append({"role": "user", "content": turn.utterance})
        try:
            return await self._llm.complete_text(messages)
        except Exception as e:
            logger.error("Reply generation failed: %s", e)
            return None

    async def _generic_reply(self, turn: _Turn, instruction: Optional[str] = None) -> TurnOutcome:
        generated = await self._generate(turn, instruction)
        if not generated:
            return TurnOutcome(reply_text=templates.GENERIC_FAILURE_REPLY)
        reply, check = self._guardrails.review(
            generated, turn.context, turn.memory.remembered_entities
        )
        if check.passed:
            return TurnOutcome(reply_text=reply)
        logger.warning("Reply failed guardrail (%s), taking a message", check.violation_type)
        deferral = reply if check.violation_type == "information_unavailable" else None
        return await self._take_message(turn, NotificationCategory.LOW_CONFIDENCE, deferral)

    async def _booking_progress(self, turn: _Turn) -> TurnOutcome:
        entities = turn.memory.remembered_entities
        missing = entities.missing_booking_fields()
        if "phone" in missing and turn.merge_result and turn.merge_result.rejected_phone:
            return TurnOutcome(reply_text=templates.PARTIAL_PHONE_REPLY)

        known = [
            templates.FIELD_LABELS[f] for f in ("name", "phone", "date", "time") if f not in missing
        ]
        known_hint = (
            templates.BOOKING_KNOWN_SUFFIX.format(known=templates.spoken_list(known))
            if known else ""
        )
        instruction = templates.BOOKING_PROGRESS_INSTRUCTION.format(
            missing=templates.missing_fields_phrase(missing), known=known_hint
        )
        return await self._generic_reply(turn, instruction)

    def _phone_readback(self, turn: _Turn) -> TurnOutcome:
        memory = turn.memory
        memory.awaiting_phone_confirmation = True
        reply = templates.PHONE_READBACK_REPLY.format(
            phone=format_phone_readback(memory.remembered_entities.phone)
        )
        missing = memory.remembered_entities.missing_booking_fields()
        if missing:
            reply += templates.PHONE_READBACK_MISSING_SUFFIX.format(
                missing=templates.missing_fields_phrase(missing)
            )
        return TurnOutcome(reply_text=reply)

    async def _acknowledge_existing_booking(self, turn: _Turn) -> TurnOutcome:
        logger.info("Booking already made in this call, not booking again")
        outcome = await self._generic_reply(turn, templates.BOOKING_ALREADY_MADE_INSTRUCTION)
        if not outcome.needs_message:
            outcome.has_appointment = True
        return outcome

    async def _commit(self, turn: _Turn) -> TurnOutcome:
        context = turn.context
        memory = turn.memory
        entities = memory.remembered_entities
        date, time = entities.requested_date, entities.requested_time

        try:
            availability = await self._availability.check(context, date, time)
            if availability.closed:
                return self._closed_reply(turn, availability.closed_reason, date, time)
            if not availability.available:
                alternatives = await self._availability.find_alternatives(context, date, time)
        except DatastoreError as e:
            logger.error("Availability check failed for %s %s: %s", date, time, e)
            return await self._take_message(turn, NotificationCategory.BOOKING_FAILED)
        if not availability.available:
            return await self._offer_alternatives(
                turn, templates.SLOT_TAKEN_REPLY, time, alternatives
            )

        request = BookingRequest(
            name=entities.name,
            phone=entities.phone,
            email=entities.email,
            date=date,
            time=time,
            party_size=entities.party_size or 1,
            notes=turn.classification.notes if turn.classification else None,
        )
        result = await self._committer.commit(context, request)
        if result.race_lost:
            return await self._offer_alternatives(
                turn, templates.SLOT_JUST_TAKEN_REPLY, time, result.alternatives
            )
        if not result.success:
            return await self._take_message(turn, NotificationCategory.BOOKING_FAILED)

        memory.pending_alternatives = []
        conversation_text = " | ".join(memory.caller_texts() + [turn.utterance])
        await self._notifier.booking_made(
            context.business, result.reservation, conversation_text, turn.utterance,
            caller_email=entities.email,
        )
        return TurnOutcome(
            reply_text=templates.BOOKING_CONFIRMED_REPLY.format(
                date=format_date(date), time=format_time(time)
            ),
            has_appointment=True,
        )

    def _closed_reply(self, turn: _Turn, reason: str, date: str, time: str) -> TurnOutcome:
        entities = turn.memory.remembered_entities
        day = weekday_of(date).title()
        entities.requested_time = None
        turn.memory.pending_alternatives = []
        if reason == CLOSED_DAY:
            entities.requested_date = None
            return TurnOutcome(reply_text=templates.CLOSED_DAY_REPLY.format(day=day))
        hours = turn.context.business.hours_for(weekday_of(date))
        return TurnOutcome(
            reply_text=templates.OUTSIDE_HOURS_REPLY.format(
                time=format_time(time), day=day,
                open=format_time(hours.open), close=format_time(hours.close),
            )
        )

    async def _offer_alternatives(
        self, turn: _Turn, template: str, time: str, alternatives: list[str]
    ) -> TurnOutcome:
        if not alternatives:
            return await self._take_message(
                turn, NotificationCategory.BOOKING_FAILED, templates.FULLY_BOOKED_REPLY
            )
        turn.memory.pending_alternatives = list(alternatives)
        return TurnOutcome(
            reply_text=template.format(
                time=format_time(time), alternatives=_spoken_times(alternatives)
            ),
            suggested_alternatives=list(alternatives),
        )

    async def _take_message(
        self,
        turn: _Turn,
        category: NotificationCategory,
        reply: Optional[str] = None,
    ) -> TurnOutcome:
        memory = turn.memory
        if memory.message_recorded:
            return await self._message_follow_up(turn)

        entities = memory.remembered_entities
        caller_texts = memory.caller_texts() + [turn.utterance]
        original_request = next(
            (t for t in caller_texts if self._filter.wants_message(t)), turn.utterance
        )
        intent = turn.classification.intent.value if turn.classification else "other"
        message = CustomerMessage(
            business_id=turn.context.business.id,
            caller_number=entities.phone or "unknown",
            caller_name=entities.name,
            caller_email=entities.email,
            message=" | ".join(caller_texts),
            request_type=intent,
            original_request=original_request,
            notification_category=category,
        )
        if not await self._notifier.message_taken(turn.context.business, message):
            return TurnOutcome(reply_text=templates.MESSAGE_DISABLED_REPLY)

        memory.message_recorded = True
        memory.pending_alternatives = []
        if reply is None:
            reply = templates.MESSAGE_TAKEN_REPLY
            if category == NotificationCategory.CALL_BACK:
                reply = templates.CALL_BACK_REPLY
            elif category == NotificationCategory.BOOKING_FAILED and turn.signals.quote_needed:
                reply = templates.QUOTE_NEEDED_REPLY
        return TurnOutcome(reply_text=reply, needs_message=True)

    async def _message_follow_up(self, turn: _Turn) -> TurnOutcome:
        classification = turn.classification
        if (classification and classification.intent == Intent.GOODBYE) or \
                self._filter.is_goodbye(turn.utterance):
            return TurnOutcome(reply_text=turn.context.closing_message)
        generated = await self._generate(turn, templates.MESSAGE_FOLLOW_UP_INSTRUCTION)
        if generated:
            reply, check = self._guardrails.review(
                generated, turn.context, turn.memory.remembered_entities
            )
            if check.passed:
                return TurnOutcome(reply_text=reply)
        return TurnOutcome(reply_text=templates.MESSAGE_TAKEN_REPLY)
