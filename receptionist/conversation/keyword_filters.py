"""
Vocabulary heuristics applied before and around LLM classification.

These are cheap, swappable shortcuts, not a grammar: the orchestrator
depends only on the ``TurnFilter`` protocol, so a stronger model can
replace ``KeywordTurnFilter`` without touching routing.
"""

import re
from typing import Iterable, Protocol

from receptionist.utils import parse_time


def _normalize(text: str) -> str:
    text = text.lower().replace("\u2019", "'")
    text = re.sub(r"[^\w\s':@.]", " ", text)
    text = re.sub(r"(?<!\d)[.:](?!\d)", " ", text)
    return " ".join(text.split())


def _contains_any(text: str, phrases: Iterable[str]) -> bool:
    return any(re.search(r"\b" + re.escape(p) + r"\b", text) for p in phrases)


def _contains_prefix(text: str, stems: Iterable[str]) -> bool:
    return any(re.search(r"\b" + re.escape(s), text) for s in stems)


class TurnFilter(Protocol):
    def is_simple_affirmation(self, text: str) -> bool: ...

    def is_negation(self, text: str) -> bool: ...

    def starts_with_negation(self, text: str) -> bool: ...

    def needs_classification(self, text: str, caller_history: list[str]) -> bool: ...

    def wants_message(self, text: str) -> bool: ...

    def is_goodbye(self, text: str) -> bool: ...

    def agent_took_message(self, agent_texts: list[str]) -> bool: ...

    def booking_already_made(self, agent_texts: list[str]) -> bool: ...


class KeywordTurnFilter:
    """Keyword-list implementation of TurnFilter."""

    AFFIRMATIONS = [
        "yeah", "yes", "yep", "yup", "ok", "okay", "sure", "alright",
        "sounds good", "that works", "perfect", "great",
    ]

    # Matched as word prefixes so "book" covers "booking" and "booked".
    BOOKING_STEMS = [
        "book", "reservation", "reserve", "appointment", "schedule",
        "available", "availability", "time slot", "tonight", "today", "tomorrow",
    ]

    MESSAGE_PHRASES = [
        "take a message", "leave a message", "call me back", "call back",
        "message", "interview", "manager", "callback", "need a callback",
        "want a callback",
    ]

    GOODBYE_PHRASES = [
        "bye", "goodbye", "good bye", "have a good day", "have a great day",
        "that's all", "that is all", "nothing else", "i'm done", "we're done",
        "i'll let you go",
    ]

    IDENTITY_PHRASES = [
        "my name", "name is", "this is", "my number", "phone", "email", "reach me at",
    ]

    AGENT_MESSAGE_PHRASES = [
        "i'll pass", "i've made a note", "someone will call",
        "manager will call", "call back",
    ]

    AGENT_BOOKED_PHRASES = [
        "i've got you down", "got you down", "reservation confirmed",
        "appointment confirmed",
    ]

    NEGATIONS = [
        "no", "nope", "nah", "not right", "that's wrong", "that's not right",
        "wrong", "incorrect", "wrong number",
    ]

    MAX_AFFIRMATION_WORDS = 4

    def is_simple_affirmation(self, text: str) -> bool:
        normalized = _normalize(text)
        if normalized in self.AFFIRMATIONS:
            return True
        if not any(normalized.startswith(a + " ") for a in self.AFFIRMATIONS):
            return False
        if len(normalized.split()) > self.MAX_AFFIRMATION_WORDS:
            return False
        if any(ch.isdigit() for ch in normalized):
            return False
        return not (
            self.mentions_booking(normalized)
            or self.wants_message(normalized)
            or self.is_goodbye(normalized)
        )

    def is_negation(self, text: str) -> bool:
        """A short "no" that carries no replacement details."""
        normalized = _normalize(text)
        if normalized in self.NEGATIONS:
            return True
        if any(ch.isdigit() for ch in normalized):
            return False
        words = normalized.split()
        return (
            len(words) <= self.MAX_AFFIRMATION_WORDS
            and any(normalized.startswith(n + " ") for n in self.NEGATIONS)
        )

    def starts_with_negation(self, text: str) -> bool:
        """Any utterance that opens with a "no", details or not."""
        normalized = _normalize(text)
        return normalized in self.NEGATIONS or any(
            normalized.startswith(n + " ") for n in self.NEGATIONS
        )

    def mentions_booking(self, text: str) -> bool:
        return _contains_prefix(_normalize(text), self.BOOKING_STEMS)

    def wants_message(self, text: str) -> bool:
        return _contains_any(_normalize(text), self.MESSAGE_PHRASES)

    def is_goodbye(self, text: str) -> bool:
        return _contains_any(_normalize(text), self.GOODBYE_PHRASES)

    def mentions_identity(self, text: str) -> bool:
        normalized = _normalize(text)
        return "@" in normalized or _contains_any(normalized, self.IDENTITY_PHRASES)

    def needs_classification(self, text: str, caller_history: list[str]) -> bool:
        """Decide whether a turn is worth an LLM classification call."""
        if (
            self.mentions_booking(text)
            or self.wants_message(text)
            or self.is_goodbye(text)
            or self.mentions_identity(text)
            or any(ch.isdigit() for ch in text)
        ):
            return True
        return any(
            self.mentions_booking(past) or self.wants_message(past)
            for past in caller_history
        )

    def agent_took_message(self, agent_texts: list[str]) -> bool:
        return any(_contains_any(_normalize(t), self.AGENT_MESSAGE_PHRASES) for t in agent_texts)

    def booking_already_made(self, agent_texts: list[str]) -> bool:
        return any(_contains_any(_normalize(t), self.AGENT_BOOKED_PHRASES) for t in agent_texts)


_PERIOD = r"(?:a\.?\s?m\.?|p\.?\s?m\.?)"


def _time_pattern(clock_time: str) -> re.Pattern:
    parsed = parse_time(clock_time)
    hour12 = parsed.hour % 12 or 12
    if parsed.minute:
        spoken = rf"{hour12}:?{parsed.minute:02d}(?!\d)(?:\s*{_PERIOD})?"
    else:
        spoken = (
            rf"{hour12}:00(?!\d)(?:\s*{_PERIOD})?"
            rf"|{hour12}\s*(?:{_PERIOD}|o'clock)"
        )
    twenty_four = rf"{parsed.hour}:{parsed.minute:02d}(?!\d)"
    return re.compile(rf"(?<![\d:])(?:{spoken}|{twenty_four})", re.IGNORECASE)


def mentioned_times(text: str, offered: list[str]) -> list[str]:
    """Return the offered HH:MM:SS times that ``text`` refers to.

    Recognizes "530", "5:30", "5:30 pm" and, for whole hours, "5 pm",
    "5:00" or "5 o'clock". An explicit am/pm that contradicts the
    offered time rules the match out.
    """
    found = []
    for clock_time in offered:
        is_pm = parse_time(clock_time).hour >= 12
        for match in _time_pattern(clock_time).finditer(text):
            period = re.search(r"([ap])\.?\s?m", match.group(0).lower())
            if period and (period.group(1) == "p") != is_pm:
                continue
            found.append(clock_time)
            break
    return found
