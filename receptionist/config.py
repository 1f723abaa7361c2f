"""
Centralized configuration with environment variable overrides.

Model settings, datastore and gateway credentials, and conversation
defaults live here. Per-business values stored on the business profile
(confidence threshold, slot capacity, timezone, closing message) take
precedence over the conversation defaults at runtime.
"""

import logging
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from receptionist.logging_context import CallContextFilter

load_dotenv()

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(name)s] [%(call_id)s %(business_id)s] %(levelname)s: %(message)s"


def _safe_int(env_var: str, default: str) -> int:
    """Parse an integer from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return int(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid integer for {env_var}: {raw!r}"
        ) from None


def _safe_float(env_var: str, default: str) -> float:
    """Parse a float from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return float(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid float for {env_var}: {raw!r}"
        ) from None


@dataclass(frozen=True)
class ModelConfig:
    """LLM settings for turn classification and reply generation."""

    llm_model: str = os.getenv("LLM_MODEL", "gpt-4o-mini")
    openai_api_key: str = os.getenv("OPENAI_API_KEY", "")
    classify_temperature: float = _safe_float("CLASSIFY_TEMPERATURE", "0.1")
    classify_max_tokens: int = _safe_int("CLASSIFY_MAX_TOKENS", "150")
    classify_history_messages: int = _safe_int("CLASSIFY_HISTORY_MESSAGES", "10")
    reply_temperature: float = _safe_float("REPLY_TEMPERATURE", "0.7")
    reply_max_tokens: int = _safe_int("REPLY_MAX_TOKENS", "80")
    reply_history_messages: int = _safe_int("REPLY_HISTORY_MESSAGES", "12")
    reply_presence_penalty: float = _safe_float("REPLY_PRESENCE_PENALTY", "0.2")
    reply_frequency_penalty: float = _safe_float("REPLY_FREQUENCY_PENALTY", "0.2")


@dataclass(frozen=True)
class DatastoreConfig:
    """Supabase connection and reservation query settings."""

    supabase_url: str = os.getenv("SUPABASE_URL", "")
    supabase_service_key: str = os.getenv("SUPABASE_SERVICE_KEY", "")
    booking_window_days: int = _safe_int("BOOKING_WINDOW_DAYS", "7")
    reservation_status: str = os.getenv("RESERVATION_STATUS", "scheduled")


@dataclass(frozen=True)
class NotificationConfig:
    """Email and SMS gateway settings."""

    telnyx_api_key: str = os.getenv("TELNYX_API_KEY", "")
    telnyx_from_number: str = os.getenv("TELNYX_FROM_NUMBER", "")
    telnyx_api_url: str = os.getenv("TELNYX_API_URL", "https://api.telnyx.com/v2/messages")
    mail_api_url: str = os.getenv("MAIL_API_URL", "")
    mail_api_key: str = os.getenv("MAIL_API_KEY", "")
    mail_from_address: str = os.getenv("MAIL_FROM_ADDRESS", "")
    timeout_sec: float = _safe_float("NOTIFICATION_TIMEOUT_SEC", "10.0")


@dataclass(frozen=True)
class ConversationConfig:
    """Defaults for turn handling when the business profile is silent."""

    transcript_cap: int = _safe_int("TRANSCRIPT_CAP", "50")
    confidence_threshold: float = _safe_float("CONFIDENCE_THRESHOLD", "0.8")
    max_per_slot: int = _safe_int("DEFAULT_MAX_PER_SLOT", "1")
    slot_minutes: int = _safe_int("DEFAULT_SLOT_MINUTES", "30")
    max_alternatives: int = _safe_int("MAX_ALTERNATIVES", "3")
    default_timezone: str = os.getenv("DEFAULT_TIMEZONE", "America/New_York")
    closing_message: str = os.getenv(
        "DEFAULT_CLOSING_MESSAGE", "Thank you for calling. Have a great day!"
    )


@dataclass(frozen=True)
class ApiConfig:
    """Inbound HTTP server settings."""

    host: str = os.getenv("API_HOST", "0.0.0.0")
    port: int = _safe_int("API_PORT", "8000")


@dataclass(frozen=True)
class AppConfig:
    """Root configuration aggregating all sub-configs."""

    model: ModelConfig = field(default_factory=ModelConfig)
    datastore: DatastoreConfig = field(default_factory=DatastoreConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    conversation: ConversationConfig = field(default_factory=ConversationConfig)
    api: ApiConfig = field(default_factory=ApiConfig)
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    agent_name: str = os.getenv("AGENT_NAME", "booking-receptionist")


def _validate_config(config: AppConfig) -> None:
    """Validate configuration values are within acceptable ranges."""
    for temp_name, temp_value in [
        ("CLASSIFY_TEMPERATURE", config.model.classify_temperature),
        ("REPLY_TEMPERATURE", config.model.reply_temperature),
    ]:
        if not 0.0 <= temp_value <= 2.0:
            raise ValueError(f"{temp_name} must be between 0.0 and 2.0, got {temp_value}")

    for count_name, count_value in [
        ("CLASSIFY_MAX_TOKENS", config.model.classify_max_tokens),
        ("REPLY_MAX_TOKENS", config.model.reply_max_tokens),
        ("CLASSIFY_HISTORY_MESSAGES", config.model.classify_history_messages),
        ("REPLY_HISTORY_MESSAGES", config.model.reply_history_messages),
        ("BOOKING_WINDOW_DAYS", config.datastore.booking_window_days),
        ("DEFAULT_MAX_PER_SLOT", config.conversation.max_per_slot),
        ("DEFAULT_SLOT_MINUTES", config.conversation.slot_minutes),
        ("MAX_ALTERNATIVES", config.conversation.max_alternatives),
    ]:
        if count_value < 1:
            raise ValueError(f"{count_name} must be >= 1, got {count_value}")

    if config.conversation.transcript_cap < 2:
        raise ValueError(
            f"TRANSCRIPT_CAP must be >= 2, got {config.conversation.transcript_cap}"
        )
    if not 0.0 <= config.conversation.confidence_threshold <= 1.0:
        raise ValueError(
            "CONFIDENCE_THRESHOLD must be between 0.0 and 1.0, "
            f"got {config.conversation.confidence_threshold}"
        )
    if config.notifications.timeout_sec <= 0:
        raise ValueError(
            f"NOTIFICATION_TIMEOUT_SEC must be > 0, got {config.notifications.timeout_sec}"
        )
    if not 1 <= config.api.port <= 65535:
        raise ValueError(f"API_PORT must be between 1 and 65535, got {config.api.port}")


def _log_handler() -> logging.Handler:
    """Console handler that stamps every record with the current call context."""
    handler = logging.StreamHandler()
    handler.addFilter(CallContextFilter())
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    return handler


def load_config() -> AppConfig:
    """Load and validate application configuration."""
    config = AppConfig()
    _validate_config(config)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        handlers=[_log_handler()],
    )
    logger.info("Configuration loaded for '%s'", config.agent_name)
    return config


# Singleton instance
settings = load_config()
