"""
System prompt for reply generation.

The prompt is rebuilt every turn from the loaded business context so the
model only ever sees facts that exist in the business profile, the
knowledge base, the service list and the calendar. Voice-specific rules
keep replies short enough for a phone call.
"""

from receptionist.schemas.business_schema import BusinessContext
from receptionist.schemas.memory_schema import RememberedEntities
from receptionist.utils import format_time

NOT_AVAILABLE = "NOT AVAILABLE"

BUSINESS_TYPE_CONTEXTS = {
    "restaurant": (
        "This is a restaurant. You help customers make reservations and answer "
        "questions about the menu, hours and dining options."
    ),
    "salon": (
        "This is a hair or beauty salon. You help customers book appointments for "
        "haircuts, styling, coloring and other beauty services."
    ),
    "spa": (
        "This is a spa. You help customers book massages, facials and other treatments."
    ),
    "medical": (
        "This is a medical practice. You help patients book appointments with "
        "healthcare providers. Be professional and respectful."
    ),
    "dental": (
        "This is a dental practice. You help patients book dental appointments. "
        "Be professional and respectful."
    ),
    "contractor": (
        "This is a contractor. You help customers schedule service calls, estimates "
        "and work appointments."
    ),
    "fitness": (
        "This is a gym or fitness center. You help with memberships, class schedules "
        "and personal training sessions."
    ),
    "retail": (
        "This is a retail store. You help with product questions, store hours and "
        "special orders."
    ),
    "automotive": (
        "This is an automotive service business. You help customers schedule "
        "vehicle service appointments."
    ),
    "veterinary": (
        "This is a veterinary clinic. You help pet owners book appointments for "
        "their pets. Be caring and professional."
    ),
    "other": (
        "This is a general business. Help customers with their questions and bookings."
    ),
}

VOICE_STYLE_RULES = """
VOICE INTERACTION RULES (critical for phone calls):
- Keep responses to 1-2 sentences. This is a phone call, not a text chat.
- Never use markdown, bullet points, numbered lists, or any text formatting.
- Sound like a warm, friendly person at the front desk. Use contractions.
- Never mention that you are an AI or an assistant.
- Ask ONE question at a time.
"""

FACT_RULES = """
FACT RULES (never break these):
- Only state facts that appear in the business information, knowledge base,
  services or calendar below. Use addresses, phone numbers and emails EXACTLY
  as written.
- NEVER make up addresses, phone numbers, emails, specials, events, prices
  or hours. Never use placeholder information.
- NEVER ask the caller for business information.
- If something is NOT AVAILABLE or missing, say exactly: "I don't have that
  information available right now. Let me have someone from our team call
  you back with that information."
- Never ask for information the caller already gave; it is listed under
  remembered information.
"""


def _business_type_context(business_type: str) -> str:
    return BUSINESS_TYPE_CONTEXTS.get(business_type.lower(), BUSINESS_TYPE_CONTEXTS["other"])


def _knowledge_section(context: BusinessContext) -> str:
    entries = [
        f"{entry.title}: {entry.content}"
        for entry in context.knowledge_base
        if entry.title or entry.content
    ]
    return "\n".join(entries) or "No knowledge base entries."


def _services_section(context: BusinessContext) -> str:
    if not context.services:
        return "No services defined."
    lines = []
    for service in context.services:
        price = f"${service.price:.2f}" if service.price else "Price on request"
        duration = f" ({service.duration_minutes} minutes)" if service.duration_minutes else ""
        quote = " [QUOTE NEEDED - take a message, do not book]" if service.quote_needed else ""
        description = service.description or "No description"
        lines.append(f"- {service.name}{duration}: {description} - {price}{quote}")
    return "\n".join(lines)


def _calendar_section(context: BusinessContext) -> str:
    if not context.upcoming_reservations:
        return "No upcoming bookings."
    booked = [
        f"{r.get('appointment_date')} {r.get('appointment_time')}"
        for r in context.upcoming_reservations
    ]
    return "Booked slots: " + ", ".join(booked)


def current_status_text(context: BusinessContext) -> str:
    """Sentence the agent uses when asked whether the business is open."""
    hours = context.business.hours_for(context.weekday)
    if context.is_open_now:
        return f"We are currently OPEN (open until {format_time(hours.close)})"
    if hours.is_closed:
        return "We are currently CLOSED (closed all day today)"
    return (
        "We are currently CLOSED (hours today: "
        f"{format_time(hours.open)} - {format_time(hours.close)})"
    )


def _hours_section(context: BusinessContext) -> str:
    lines = []
    for day, hours in context.business.operating_hours.items():
        if hours.is_closed:
            lines.append(f"- {day.title()}: Closed")
        else:
            lines.append(f"- {day.title()}: {format_time(hours.open)} - {format_time(hours.close)}")
    return "\n".join(lines) or "Hours NOT AVAILABLE"


def _remembered_section(remembered: RememberedEntities) -> str:
    lines = []
    if remembered.name:
        lines.append(f"- Name: {remembered.name}")
    if remembered.phone:
        lines.append(f"- Phone: {remembered.phone}")
    if remembered.email:
        lines.append(f"- Email: {remembered.email}")
    if remembered.requested_date:
        lines.append(f"- Requested date: {remembered.requested_date}")
    if remembered.requested_time:
        lines.append(f"- Requested time: {remembered.requested_time}")
    if remembered.party_size:
        lines.append(f"- Party size: {remembered.party_size}")
    return "\n".join(lines) or "Nothing yet."


def build_system_prompt(context: BusinessContext, remembered: RememberedEntities) -> str:
    """Assemble the grounded reply prompt for one turn."""
    business = context.business
    business_type = business.business_type or "other"
    instructions = f"\nOwner instructions:\n{business.ai_instructions}\n" if business.ai_instructions else ""
    return f"""You are the friendly phone receptionist for {business.name}.

{_business_type_context(business_type)}
Only talk about what {business.name} offers.
{VOICE_STYLE_RULES}{FACT_RULES}{instructions}
Business information (use these EXACT values):
- Name: {business.name}
- Address: "{business.address or NOT_AVAILABLE}"
- Phone: "{business.phone or NOT_AVAILABLE}"
- Email: "{business.email or NOT_AVAILABLE}"

Operating hours:
{_hours_section(context)}

Today is {context.weekday.title()}, {context.today}. The local time is {context.local_now.strftime('%H:%M')}.
{current_status_text(context)}. Use exactly this when asked whether we are open.

Knowledge base:
{_knowledge_section(context)}

Services:
{_services_section(context)}

Calendar:
{_calendar_section(context)}

Remembered information about this caller:
{_remembered_section(remembered)}

When the caller is ready to end the call, say: "{context.closing_message}"
"""
