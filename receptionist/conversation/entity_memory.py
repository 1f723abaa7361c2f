"""
Reconcile freshly extracted entities with remembered ones.

Precedence per field: a non-null extraction wins and overwrites memory;
otherwise the remembered value stands. Phone numbers are only accepted
once they carry at least ten digits. A shorter candidate is logged and
dropped without touching a previously remembered number.
"""

from dataclasses import dataclass
from typing import Optional

from receptionist.logging_context import get_call_logger
from receptionist.schemas.memory_schema import BookingEntities, RememberedEntities
from receptionist.utils import is_valid_phone, phone_digits

logger = get_call_logger(__name__)

_MERGED_FIELDS = ("name", "email", "requested_date", "requested_time", "party_size")


@dataclass
class MergeResult:
    """Merged entities plus what the merge observed about the phone."""

    entities: RememberedEntities
    rejected_phone: Optional[str] = None
    phone_changed: bool = False


def merge(extracted: BookingEntities, remembered: RememberedEntities) -> MergeResult:
    """Merge ``extracted`` over ``remembered`` field by field."""
    merged = remembered.model_copy()
    for name in _MERGED_FIELDS:
        value = getattr(extracted, name)
        if value is not None:
            setattr(merged, name, value)

    rejected_phone = None
    phone_changed = False
    candidate = extracted.phone
    if candidate:
        if is_valid_phone(candidate):
            phone_changed = phone_digits(candidate) != phone_digits(remembered.phone)
            merged.phone = candidate
        else:
            rejected_phone = candidate
            logger.info(
                "Rejected partial phone number (%d digits), keeping remembered value",
                len(phone_digits(candidate)),
            )
    return MergeResult(entities=merged, rejected_phone=rejected_phone, phone_changed=phone_changed)
