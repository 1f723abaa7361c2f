"""
Decode and encode the conversation memory blob.

The blob is a JSON object carried by the telephony layer between turns.
Telephony providers commonly base64-wrap client state, so decoding
accepts either form. Decoding never fails: anything unreadable yields a
fresh default memory and the conversation continues from scratch.
"""

import base64
import binascii
import json
import logging
from typing import Optional, Union

from pydantic import ValidationError

from receptionist.config import settings
from receptionist.schemas.memory_schema import ConversationMemory

logger = logging.getLogger(__name__)


def _load_json(raw: Union[str, bytes]) -> Optional[dict]:
    try:
        payload = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError, TypeError, RecursionError):
        try:
            payload = json.loads(base64.b64decode(raw, validate=True))
        except (binascii.Error, ValueError, TypeError, RecursionError):
            return None
    return payload if isinstance(payload, dict) else None


def decode(raw: Optional[Union[str, bytes]], cap: Optional[int] = None) -> ConversationMemory:
    """Parse a client-supplied blob, returning a default memory on any failure."""
    if not raw:
        return ConversationMemory()
    payload = _load_json(raw)
    if payload is None:
        logger.warning("Unreadable client state, starting from an empty memory")
        return ConversationMemory()
    try:
        memory = ConversationMemory.model_validate(payload)
    except ValidationError as e:
        logger.warning("Invalid client state (%d errors), starting from an empty memory",
                       e.error_count())
        return ConversationMemory()
    cap = cap or settings.conversation.transcript_cap
    if len(memory.transcript) > cap:
        memory.transcript = memory.transcript[-cap:]
    return memory


def encode(memory: ConversationMemory, cap: Optional[int] = None) -> str:
    """Serialize memory to a JSON string, keeping only the newest ``cap`` entries."""
    cap = cap or settings.conversation.transcript_cap
    if len(memory.transcript) > cap:
        memory = memory.model_copy(update={"transcript": memory.transcript[-cap:]})
    return memory.model_dump_json()
