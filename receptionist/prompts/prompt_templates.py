"""
Reply templates and per-route LLM instructions.

Replies that must be exact (confirmations, conflicts, message-taking) are
rendered from templates here; everything else goes through the reply LLM
with one of the instructions below appended to the system prompt.
"""

CLASSIFIER_SYSTEM_PROMPT = "You are a JSON extraction assistant. Always return valid JSON only."

CLASSIFY_TURN_PROMPT = """Analyze this caller's speech and extract their intent and booking details.

Return a JSON object with these exact fields:
{{
  "intent": "booking" | "question" | "other" | "goodbye" | "confirmation",
  "confidence": 0.0-1.0,
  "name": "caller's name or null",
  "phone": "phone number digits exactly as spoken, even if incomplete, or null",
  "email": "email address or null",
  "requested_date": "YYYY-MM-DD or null",
  "requested_time": "HH:MM:SS or null",
  "party_size": number or null,
  "notes": "any booking notes or null",
  "needs_message": true or false
}}

Rules:
- Booking requests: intent "booking" with confidence 0.8 or higher. Set needs_message true only if the request cannot be handled without a person.
- Simple confirmations: intent "confirmation" with confidence 0.9 or higher.
- Ending phrases such as "bye", "that's all", "nothing else" or "I'll let you go": intent "goodbye".
- Unclear speech: confidence below 0.8 and needs_message true.
- Today is {weekday}, {today}. "today" and "tonight" mean {today}. "tomorrow" means {tomorrow}.
- Times: "6pm" or "6 p.m." is "18:00:00". "530" or "5:30" is "17:30:00". "630" is "18:30:00". Always extract one specific time, never a range.
- If the caller accepts a time the agent offered, extract that exact time.
- party_size is a number: "party of six", "six people" and "for 6" are all 6.
- Use the remembered information when the caller does not repeat it.

Remembered information:
{remembered}

Caller said: "{utterance}"

Return ONLY the JSON object."""

# --- Exact replies ---

BOOKING_CONFIRMED_REPLY = (
    "Perfect! I've got you down for {date} at {time}. Anything else I can help with?"
)

SLOT_TAKEN_REPLY = (
    "I'm sorry, but {time} is already booked. We do have availability at "
    "{alternatives}. Would any of those work for you?"
)

SLOT_JUST_TAKEN_REPLY = (
    "I'm sorry, but {time} just got booked. We do have availability at "
    "{alternatives}. Would any of those work for you?"
)

WHICH_ALTERNATIVE_REPLY = "Sure! Which of those times works best for you: {alternatives}?"

FULLY_BOOKED_REPLY = (
    "I'm so sorry, but we're completely booked for that time and don't have any "
    "nearby slots available. Let me have someone from our team call you back to "
    "find a time that works."
)

CLOSED_DAY_REPLY = "I'm sorry, but we're closed on {day}. Would you like to book for another day?"

OUTSIDE_HOURS_REPLY = (
    "I'm sorry, but {time} is outside our hours on {day}. We're open from {open} "
    "to {close} that day. Would another time work for you?"
)

PARTIAL_PHONE_REPLY = (
    "I'm sorry, but I only got part of your phone number. "
    "Could you please give me your complete phone number?"
)

PHONE_READBACK_REPLY = "Just to confirm, I have your number as {phone}. Is that right?"

PHONE_READBACK_MISSING_SUFFIX = " I'll also need {missing} to finish the booking."

MESSAGE_TAKEN_REPLY = (
    "I'm so sorry, but I'm not able to help with that right now. I've made a note "
    "and someone from our team will give you a call back shortly. "
    "Is there anything else I can help you with?"
)

CALL_BACK_REPLY = (
    "Of course. I've made a note and someone from our team will give you a call "
    "back shortly. Is there anything else I can help you with?"
)

QUOTE_NEEDED_REPLY = (
    "For that service, we'll need to provide you with a quote. I've made a note "
    "and someone from our team will call back to discuss pricing and availability."
)

MESSAGE_DISABLED_REPLY = "I understand. How else can I help you today?"

GENERIC_FAILURE_REPLY = "I'm sorry, I'm having a little trouble right now. Could you say that again?"

DEFERRAL_PHRASE = "i don't have that information available right now"

# --- Instructions appended to the reply prompt ---

SIMPLE_ACK_INSTRUCTION = (
    "The caller just gave a short acknowledgement. Reply in one brief, natural "
    "sentence that moves the conversation forward."
)

BOOKING_PROGRESS_INSTRUCTION = (
    "The caller is making a booking. You still need {missing}. Ask ONLY for "
    "{missing} in one short, friendly sentence. {known}"
)

BOOKING_KNOWN_SUFFIX = "You already know their {known}; do not ask for it again."

BOOKING_ALREADY_MADE_INSTRUCTION = (
    "A booking was already confirmed earlier in this call. Do not book again. "
    "Briefly acknowledge the existing booking and ask if there is anything else."
)

MESSAGE_FOLLOW_UP_INSTRUCTION = (
    "You have already taken a message and someone from the team will call the "
    "caller back. Do not take the message again. Reply briefly and reassure them."
)

FIELD_LABELS = {
    "name": "name",
    "phone": "phone number",
    "date": "preferred date",
    "time": "preferred time",
}


def spoken_list(items: list[str]) -> str:
    """Join items the way they are read aloud: "a, b and c"."""
    if len(items) <= 1:
        return "".join(items)
    return f"{', '.join(items[:-1])} and {items[-1]}"


def missing_fields_phrase(fields: list[str]) -> str:
    return spoken_list([f"your {FIELD_LABELS[f]}" for f in fields])
