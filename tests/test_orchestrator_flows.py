"""End-to-end turn scenarios through the orchestrator."""

import json

import pytest

from receptionist.clients.datastore import DatastoreError
from receptionist.conversation.orchestrator import TurnInputError, TurnOrchestrator
from receptionist.prompts import prompt_templates as templates
from receptionist.schemas.conversation_schema import TurnRequest
from receptionist.tools.business_context import BusinessNotFoundError

from tests.conftest import (
    BUSINESS_ID,
    RecordingGateway,
    ScriptedLLM,
    classification_json,
    fixed_clock,
    make_business_row,
    make_reservation_row,
    make_state,
)

ALEX = {"name": "Alex", "phone": "5551234567"}


def turn(utterance: str, state=None, business_id=BUSINESS_ID) -> TurnRequest:
    return TurnRequest(utterance_text=utterance, client_state=state, business_id=business_id)


def booking_json(confidence=0.95, **fields) -> str:
    return classification_json(intent="booking", confidence=confidence, **fields)


def state_of(response) -> dict:
    return json.loads(response.client_state)


class TestInputErrors:
    @pytest.mark.asyncio
    async def test_missing_utterance(self, orchestrator, datastore):
        with pytest.raises(TurnInputError):
            await orchestrator.handle_turn(turn("   "))
        assert datastore.customer_messages == []

    @pytest.mark.asyncio
    async def test_missing_business_id(self, orchestrator):
        with pytest.raises(TurnInputError):
            await orchestrator.handle_turn(turn("hello", business_id=None))

    @pytest.mark.asyncio
    async def test_unknown_business(self, orchestrator):
        with pytest.raises(BusinessNotFoundError):
            await orchestrator.handle_turn(turn("hello", business_id="nope"))

    @pytest.mark.asyncio
    async def test_business_id_from_memory(self, orchestrator):
        response = await orchestrator.handle_turn(turn("hello", make_state(), business_id=None))
        assert state_of(response)["business_id"] == BUSINESS_ID


class TestMemoryUpdates:
    @pytest.mark.asyncio
    async def test_turn_appends_caller_and_agent(self, orchestrator):
        response = await orchestrator.handle_turn(turn("do you take insurance"))
        state = state_of(response)
        assert state["turn_count"] == 1
        assert [e["speaker"] for e in state["transcript"]] == ["caller", "agent"]
        assert state["transcript"][1]["text"] == response.reply_text

    @pytest.mark.asyncio
    async def test_unreadable_state_starts_over(self, orchestrator):
        response = await orchestrator.handle_turn(turn("hello", "%%%garbage%%%"))
        assert state_of(response)["turn_count"] == 1

    @pytest.mark.asyncio
    async def test_transcript_stays_capped(self, orchestrator):
        history = [("caller", f"q{i}") if i % 2 == 0 else ("agent", f"a{i}") for i in range(50)]
        response = await orchestrator.handle_turn(turn("do you take insurance", make_state(history)))
        transcript = state_of(response)["transcript"]
        assert len(transcript) == 50
        assert transcript[-2]["text"] == "do you take insurance"


class TestBookingScenarios:
    @pytest.mark.asyncio
    async def test_taken_slot_offers_alternatives(self, orchestrator, datastore, llm):
        datastore.add_reservation(make_reservation_row("2025-06-02", "14:00:00"))
        llm.queue_json(booking_json(
            name="Alex", phone="5551234567", requested_date="2025-06-02",
            requested_time="14:00:00", party_size=4,
        ))
        response = await orchestrator.handle_turn(
            turn("Monday June 2nd at 2pm, party of 4, name Alex, phone 5551234567")
        )
        assert response.has_appointment is False
        assert response.suggested_alternatives == ["13:30:00", "13:00:00", "14:30:00"]
        assert "2:00 PM is already booked" in response.reply_text
        assert "1:30 PM, 1:00 PM, 2:30 PM" in response.reply_text
        assert len(datastore.reservations) == 1
        assert state_of(response)["pending_alternatives"] == ["13:30:00", "13:00:00", "14:30:00"]

    @pytest.mark.asyncio
    async def test_complete_request_commits(self, orchestrator, datastore, llm, gateway):
        llm.queue_json(booking_json(
            name="Alex", phone="5551234567", requested_date="2025-06-02",
            requested_time="14:00:00", party_size=4,
        ))
        response = await orchestrator.handle_turn(
            turn("Book Monday June 2nd at 2pm for Alex, 555 123 4567, party of 4")
        )
        assert response.has_appointment is True
        assert response.reply_text == templates.BOOKING_CONFIRMED_REPLY.format(
            date="Monday, June 2, 2025", time="2:00 PM"
        )
        assert len(datastore.reservations) == 1
        assert datastore.reservations[0]["party_size"] == 4
        assert len(gateway.emails) == 1
        assert len(gateway.sms) == 1

    @pytest.mark.asyncio
    async def test_yeah_commits_the_confirmed_alternative(self, datastore, llm, gateway):
        datastore.add_business(make_business_row(operating_hours={
            "monday": {"open": "09:00", "close": "21:00"},
        }))
        datastore.add_reservation(make_reservation_row("2025-06-02", "17:00:00"))
        orchestrator = TurnOrchestrator(datastore, llm, gateway, clock=fixed_clock)
        state = make_state(
            [
                ("caller", "Can I book Monday at 5pm? Alex, 5551234567"),
                ("agent", "I'm sorry, 5:00 PM is taken. Would 5:30 PM work for you?"),
            ],
            remembered_entities=dict(ALEX, requested_date="2025-06-02", requested_time="17:00:00"),
            pending_alternatives=["17:30:00", "18:30:00"],
        )
        response = await orchestrator.handle_turn(turn("yeah", state))
        assert response.has_appointment is True
        assert "5:30 PM" in response.reply_text
        booked = [r["appointment_time"] for r in datastore.reservations if r["customer_name"] == "Alex"]
        assert booked == ["17:30:00"]
        assert llm.json_calls == []
        assert state_of(response)["pending_alternatives"] == []

    @pytest.mark.asyncio
    async def test_yeah_after_listing_several_asks_which(self, orchestrator, datastore, llm):
        state = make_state(
            [("agent", "We have 1:30 PM or 2:30 PM. Would either of those work?")],
            remembered_entities=dict(ALEX, requested_date="2025-06-02", requested_time="14:00:00"),
            pending_alternatives=["13:30:00", "14:30:00"],
        )
        response = await orchestrator.handle_turn(turn("sure", state))
        assert response.reply_text == templates.WHICH_ALTERNATIVE_REPLY.format(
            alternatives="1:30 PM, 2:30 PM"
        )
        assert response.suggested_alternatives == ["13:30:00", "14:30:00"]
        assert datastore.reservations == []
        assert state_of(response)["pending_alternatives"] == ["13:30:00", "14:30:00"]

    @pytest.mark.asyncio
    async def test_naming_an_alternative_commits_it(self, orchestrator, datastore):
        state = make_state(
            [("agent", "We have 1:30 PM or 2:30 PM. Would either of those work?")],
            remembered_entities=dict(ALEX, requested_date="2025-06-02", requested_time="14:00:00"),
            pending_alternatives=["13:30:00", "14:30:00"],
        )
        response = await orchestrator.handle_turn(turn("2:30 works", state))
        assert response.has_appointment is True
        assert datastore.reservations[0]["appointment_time"] == "14:30:00"

    @pytest.mark.asyncio
    async def test_closed_day_is_refused_without_alternatives(self, orchestrator, datastore, llm):
        llm.queue_json(booking_json(
            name="Alex", phone="5551234567", requested_date="2025-06-07", requested_time="10:00:00",
        ))
        response = await orchestrator.handle_turn(turn("Saturday at 10, Alex, 5551234567, book it"))
        assert response.reply_text == templates.CLOSED_DAY_REPLY.format(day="Saturday")
        assert response.suggested_alternatives is None
        assert datastore.reservations == []
        remembered = state_of(response)["remembered_entities"]
        assert remembered["requested_date"] is None
        assert remembered["name"] == "Alex"

    @pytest.mark.asyncio
    async def test_outside_hours_is_refused(self, orchestrator, datastore, llm):
        llm.queue_json(booking_json(
            name="Alex", phone="5551234567", requested_date="2025-06-02", requested_time="18:00:00",
        ))
        response = await orchestrator.handle_turn(turn("Monday at 6pm please, book Alex 5551234567"))
        assert "outside our hours" in response.reply_text
        assert "9:00 AM to 5:00 PM" in response.reply_text
        assert datastore.reservations == []

    @pytest.mark.asyncio
    async def test_already_booked_in_call_is_not_rebooked(self, orchestrator, datastore, llm):
        llm.queue_json(booking_json(
            name="Alex", phone="5551234567", requested_date="2025-06-02", requested_time="14:00:00",
        ))
        llm.queue_text("You're all set for Monday at 2:00 PM. Anything else?")
        state = make_state(
            [("agent", "Perfect! I've got you down for Monday, June 2, 2025 at 2:00 PM.")],
            remembered_entities=dict(ALEX, requested_date="2025-06-02", requested_time="14:00:00"),
        )
        response = await orchestrator.handle_turn(turn("so I'm booked for 2pm right?", state))
        assert response.has_appointment is True
        assert datastore.reservations == []

    @pytest.mark.asyncio
    async def test_race_lost_offers_fresh_alternatives(self, datastore, llm, gateway):
        class LateWriterDatastore(type(datastore)):
            async def count_reservations(self, *args):
                self.add_reservation(make_reservation_row("2025-06-02", "14:00:00"))
                return await super().count_reservations(*args)

        racing = LateWriterDatastore()
        racing.add_business(make_business_row())
        orchestrator = TurnOrchestrator(racing, llm, gateway, clock=fixed_clock)
        llm.queue_json(booking_json(
            name="Alex", phone="5551234567", requested_date="2025-06-02", requested_time="14:00:00",
        ))
        response = await orchestrator.handle_turn(turn("Monday 2pm, Alex, 5551234567, book it"))
        assert "just got booked" in response.reply_text
        assert response.suggested_alternatives == ["13:30:00", "13:00:00", "14:30:00"]
        assert response.has_appointment is False
        assert len(racing.reservations) == 1

    @pytest.mark.asyncio
    async def test_fully_booked_takes_message(self, orchestrator, datastore, llm):
        for time in ("12:30", "13:00", "13:30", "14:00", "14:30", "15:00", "15:30"):
            datastore.add_reservation(make_reservation_row("2025-06-02", f"{time}:00"))
        llm.queue_json(booking_json(
            name="Alex", phone="5551234567", requested_date="2025-06-02", requested_time="14:00:00",
        ))
        response = await orchestrator.handle_turn(turn("Monday 2pm, Alex, 5551234567, book it"))
        assert response.reply_text == templates.FULLY_BOOKED_REPLY
        assert response.needs_message is True
        assert datastore.customer_messages[0]["notification_category"] == "booking_failed"

    @pytest.mark.asyncio
    async def test_availability_read_failure_takes_message(self, datastore, llm, gateway):
        class FlakyDatastore(type(datastore)):
            async def list_reservations(self, business_id, start_date, end_date, status):
                if start_date == end_date:
                    raise DatastoreError("timeout")
                return await super().list_reservations(business_id, start_date, end_date, status)

        flaky = FlakyDatastore()
        flaky.add_business(make_business_row())
        orchestrator = TurnOrchestrator(flaky, llm, gateway, clock=fixed_clock)
        llm.queue_json(booking_json(
            name="Alex", phone="5551234567", requested_date="2025-06-16", requested_time="10:00:00",
        ))
        response = await orchestrator.handle_turn(turn("June 16th at 10, Alex, 5551234567"))
        assert response.needs_message is True
        assert response.has_appointment is False
        assert flaky.reservations == []
        assert flaky.customer_messages[0]["notification_category"] == "booking_failed"


class TestBookingProgress:
    @pytest.mark.asyncio
    async def test_asks_only_for_missing_fields(self, orchestrator, llm):
        llm.queue_json(booking_json(name="Alex"))
        llm.queue_text("Thanks Alex! What's the best phone number to reach you?")
        response = await orchestrator.handle_turn(turn("I'd like to book, my name is Alex"))
        assert response.reply_text == "Thanks Alex! What's the best phone number to reach you?"
        system = llm.text_calls[0][0]["content"]
        assert "You still need your phone number, your preferred date and your preferred time" in system
        assert "You already know their name" in system

    @pytest.mark.asyncio
    async def test_partial_phone_asks_for_complete_number(self, orchestrator, llm):
        llm.queue_json(booking_json(name="Alex", phone="555 1234"))
        response = await orchestrator.handle_turn(turn("book me in, Alex, 555 1234"))
        assert response.reply_text == templates.PARTIAL_PHONE_REPLY
        assert state_of(response)["remembered_entities"]["phone"] is None
        assert llm.text_calls == []

    @pytest.mark.asyncio
    async def test_partial_phone_keeps_valid_number(self, orchestrator, llm):
        llm.queue_json(booking_json(phone="1234"))
        state = make_state(remembered_entities=ALEX, phone_confirmed=True)
        response = await orchestrator.handle_turn(turn("book it, the number ends 1234", state))
        assert state_of(response)["remembered_entities"]["phone"] == "5551234567"

    @pytest.mark.asyncio
    async def test_phone_read_back_then_confirmation(self, orchestrator, llm):
        llm.queue_json(booking_json(name="Alex", phone="555-123-4567"))
        first = await orchestrator.handle_turn(turn("I want to book, Alex, 555-123-4567"))
        assert first.reply_text.startswith(
            "Just to confirm, I have your number as (555) 123-4567. Is that right?"
        )
        assert "your preferred date and your preferred time" in first.reply_text
        assert state_of(first)["awaiting_phone_confirmation"] is True

        llm.queue_text("Great. What day and time would you like?")
        second = await orchestrator.handle_turn(turn("yes", first.client_state))
        state = state_of(second)
        assert state["phone_confirmed"] is True
        assert state["awaiting_phone_confirmation"] is False
        assert second.reply_text == "Great. What day and time would you like?"
        assert len(llm.json_calls) == 1

    @pytest.mark.asyncio
    async def test_rejected_read_back_drops_phone(self, orchestrator, llm):
        state = make_state(remembered_entities=ALEX, awaiting_phone_confirmation=True)
        llm.queue_text("Sorry about that. What's the right number?")
        response = await orchestrator.handle_turn(turn("no", state))
        remembered = state_of(response)["remembered_entities"]
        assert remembered["phone"] is None
        assert state_of(response)["phone_confirmed"] is False

    @pytest.mark.asyncio
    async def test_partial_correction_of_read_back_is_not_a_confirmation(
        self, orchestrator, datastore, llm
    ):
        state = make_state(remembered_entities=ALEX, awaiting_phone_confirmation=True)
        llm.queue_json(booking_json(phone="555987"))
        response = await orchestrator.handle_turn(turn("no it's 555 987", state))
        assert response.reply_text == templates.PARTIAL_PHONE_REPLY
        memory = state_of(response)
        assert memory["remembered_entities"]["phone"] is None
        assert memory["phone_confirmed"] is False
        assert memory["awaiting_phone_confirmation"] is False
        assert datastore.reservations == []

    @pytest.mark.asyncio
    async def test_carrying_on_after_read_back_confirms(self, orchestrator, llm):
        state = make_state(remembered_entities=ALEX, awaiting_phone_confirmation=True)
        llm.queue_json(booking_json(requested_date="2025-06-02"))
        llm.queue_text("And what time on Monday works for you?")
        response = await orchestrator.handle_turn(turn("Monday would be good for booking", state))
        memory = state_of(response)
        assert memory["phone_confirmed"] is True
        assert memory["remembered_entities"]["phone"] == "5551234567"


class TestMessageTaking:
    @pytest.mark.asyncio
    async def test_promised_callback_is_recorded(self, orchestrator, datastore, llm, gateway):
        state = make_state([
            ("caller", "I have a question about my crown"),
            ("agent", "I'll pass that along to the dentist and get back to you."),
        ])
        response = await orchestrator.handle_turn(
            turn("Great, please have the dentist get back to me", state)
        )
        assert response.needs_message is True
        assert len(datastore.customer_messages) == 1
        assert datastore.customer_messages[0]["notification_category"] == "call_back"
        assert state_of(response)["message_recorded"] is True
        assert gateway.emails


    @pytest.mark.asyncio
    async def test_manager_message_beats_booking_words(self, orchestrator, datastore, llm, gateway):
        llm.queue_json(booking_json(confidence=0.9))
        state = make_state(remembered_entities=ALEX)
        response = await orchestrator.handle_turn(
            turn("I'd like to leave a message for the manager about my booking", state)
        )
        assert response.needs_message is True
        assert response.reply_text == templates.CALL_BACK_REPLY
        assert "name" not in response.reply_text.lower()
        assert "phone" not in response.reply_text.lower()
        record = datastore.customer_messages[0]
        assert record["notification_category"] == "call_back"
        assert record["caller_name"] == "Alex"
        assert record["caller_number"] == "5551234567"
        assert record["original_request"].startswith("I'd like to leave a message")
        assert datastore.reservations == []
        assert len(gateway.emails) == 1

    @pytest.mark.asyncio
    async def test_low_confidence_never_books(self, orchestrator, datastore, llm):
        llm.queue_json(booking_json(
            confidence=0.5, name="Sam", phone="5559876543",
            requested_date="2025-06-03", requested_time="15:00:00",
        ))
        response = await orchestrator.handle_turn(turn("uh maybe book tuesday at 3 or something"))
        assert datastore.reservations == []
        assert response.has_appointment is False
        assert response.needs_message is True
        assert datastore.customer_messages[0]["notification_category"] == "low_confidence"

    @pytest.mark.asyncio
    async def test_classifier_failure_takes_message(self, orchestrator, datastore, llm):
        llm.queue_json(RuntimeError("LLM unavailable"))
        response = await orchestrator.handle_turn(turn("I need to book something"))
        assert response.needs_message is True
        assert datastore.reservations == []
        record = datastore.customer_messages[0]
        assert record["request_type"] == "other"
        assert record["caller_number"] == "unknown"

    @pytest.mark.asyncio
    async def test_needs_message_beats_complete_booking(self, orchestrator, datastore, llm):
        llm.queue_json(classification_json(
            intent="booking", confidence=0.95, needs_message=True, name="Alex",
            phone="5551234567", requested_date="2025-06-02", requested_time="10:00:00",
        ))
        response = await orchestrator.handle_turn(turn("Book Monday at 10 for Alex 5551234567"))
        assert datastore.reservations == []
        assert datastore.customer_messages[0]["notification_category"] == "booking_failed"
        assert response.needs_message is True

    @pytest.mark.asyncio
    async def test_quote_service_forces_message(self, orchestrator, datastore, llm):
        datastore.add_service({"business_id": BUSINESS_ID, "name": "Implants", "quote_needed": True})
        llm.queue_json(booking_json(
            name="Alex", phone="5551234567", requested_date="2025-06-02", requested_time="10:00:00",
        ))
        response = await orchestrator.handle_turn(turn("Book implants Monday at 10, Alex, 5551234567"))
        assert response.reply_text == templates.QUOTE_NEEDED_REPLY
        assert datastore.reservations == []

    @pytest.mark.asyncio
    async def test_message_recorded_once_per_conversation(self, orchestrator, datastore, llm):
        llm.queue_json(classification_json(intent="other", confidence=0.9))
        first = await orchestrator.handle_turn(turn("can someone call me back about a refund"))
        assert len(datastore.customer_messages) == 1

        llm.queue_json(classification_json(intent="other", confidence=0.9))
        llm.queue_text("Absolutely, the team will call you back soon.")
        second = await orchestrator.handle_turn(
            turn("and please have them call me back after 3", first.client_state)
        )
        assert len(datastore.customer_messages) == 1
        assert second.reply_text == "Absolutely, the team will call you back soon."

    @pytest.mark.asyncio
    async def test_goodbye_after_message_uses_closing(self, orchestrator, llm):
        state = make_state(
            [("caller", "please call me back"), ("agent", templates.CALL_BACK_REPLY)],
            message_recorded=True,
        )
        llm.queue_json(classification_json(intent="goodbye", confidence=0.95))
        response = await orchestrator.handle_turn(turn("no that's all, bye", state))
        assert response.reply_text == "Thanks for calling Bright Smile Dental. Goodbye!"

    @pytest.mark.asyncio
    async def test_disabled_category_gives_neutral_reply(self, datastore, llm, gateway):
        datastore.add_business(make_business_row(notification_settings={"notify_on_call_backs": False}))
        orchestrator = TurnOrchestrator(datastore, llm, gateway, clock=fixed_clock)
        llm.queue_json(classification_json(intent="other", confidence=0.9))
        response = await orchestrator.handle_turn(turn("please call me back"))
        assert response.reply_text == templates.MESSAGE_DISABLED_REPLY
        assert response.needs_message is False
        assert datastore.customer_messages == []
        assert gateway.emails == []


class TestRepliesAndGuardrails:
    @pytest.mark.asyncio
    async def test_goodbye_uses_closing_message_verbatim(self, orchestrator, llm):
        llm.queue_json(classification_json(intent="goodbye", confidence=0.95))
        response = await orchestrator.handle_turn(turn("ok that's all, bye"))
        assert response.reply_text == "Thanks for calling Bright Smile Dental. Goodbye!"

    @pytest.mark.asyncio
    async def test_simple_affirmation_skips_classification(self, orchestrator, llm):
        llm.queue_text("Great! What else can I help with?")
        response = await orchestrator.handle_turn(turn("okay"))
        assert llm.json_calls == []
        assert response.reply_text == "Great! What else can I help with?"

    @pytest.mark.asyncio
    async def test_generic_reply_is_grounded_in_profile(self, orchestrator, llm):
        await orchestrator.handle_turn(turn("where are you located"))
        system = llm.text_calls[0][0]["content"]
        assert "12 Main Street, Springfield" in system
        assert "Bright Smile Dental" in system

    @pytest.mark.asyncio
    async def test_markdown_is_stripped(self, orchestrator, llm):
        llm.queue_text("**We're at** 12 Main Street.")
        response = await orchestrator.handle_turn(turn("where are you located"))
        assert response.reply_text == "We're at 12 Main Street."

    @pytest.mark.asyncio
    async def test_invented_phone_number_becomes_message(self, orchestrator, datastore, llm):
        llm.queue_text("You can reach our billing team at 555-999-0000.")
        response = await orchestrator.handle_turn(turn("who handles billing"))
        assert "555-999-0000" not in response.reply_text
        assert response.needs_message is True
        assert datastore.customer_messages[0]["notification_category"] == "low_confidence"

    @pytest.mark.asyncio
    async def test_business_phone_is_allowed(self, orchestrator, datastore, llm):
        llm.queue_text("You can call the front desk at (555) 010-2000.")
        response = await orchestrator.handle_turn(turn("what's the front desk line"))
        assert response.reply_text == "You can call the front desk at (555) 010-2000."
        assert datastore.customer_messages == []

    @pytest.mark.asyncio
    async def test_deferral_keeps_reply_and_takes_message(self, orchestrator, datastore, llm):
        deferral = "I don't have that information available right now, but someone will call you back."
        llm.queue_text(deferral)
        response = await orchestrator.handle_turn(turn("do you have parking"))
        assert response.reply_text == deferral
        assert response.needs_message is True
        assert len(datastore.customer_messages) == 1

    @pytest.mark.asyncio
    async def test_reply_failure_gives_generic_apology(self, datastore, gateway):
        llm = ScriptedLLM()
        llm.queue_text(RuntimeError("timeout"))
        orchestrator = TurnOrchestrator(datastore, llm, gateway, clock=fixed_clock)
        response = await orchestrator.handle_turn(turn("do you take insurance"))
        assert response.reply_text == templates.GENERIC_FAILURE_REPLY

    @pytest.mark.asyncio
    async def test_notification_failure_does_not_fail_booking(self, datastore, llm):
        gateway = RecordingGateway(fail_email=True, fail_sms=True)
        orchestrator = TurnOrchestrator(datastore, llm, gateway, clock=fixed_clock)
        llm.queue_json(booking_json(
            name="Alex", phone="5551234567", requested_date="2025-06-02", requested_time="11:00:00",
        ))
        response = await orchestrator.handle_turn(turn("Monday 11am, Alex, 5551234567, book it"))
        assert response.has_appointment is True
        assert len(datastore.reservations) == 1
