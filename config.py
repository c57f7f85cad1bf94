"""
Configuration and constants for the realtime voice bridge.
"""
import os
from dotenv import load_dotenv

load_dotenv()


class ConfigError(ValueError):
    """Raised at startup when the environment cannot run a call."""


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# =============================
# Server Configuration
# =============================
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 8080))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Public host for the wss:// stream URL handed to Twilio (defaults to the request host)
PUBLIC_HOST = os.getenv("PUBLIC_HOST")

# =============================
# OpenAI Realtime Configuration
# =============================
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_REALTIME_MODEL = os.getenv("OPENAI_REALTIME_MODEL", "gpt-realtime")
OPENAI_REALTIME_URL = os.getenv("OPENAI_REALTIME_URL", "wss://api.openai.com/v1/realtime")
OPENAI_REALTIME_BETA = _env_bool("OPENAI_REALTIME_BETA")
VOICE = os.getenv("VOICE", "alloy")
TEMPERATURE = float(os.getenv("TEMPERATURE", "0.8"))
MODALITIES = [m.strip() for m in os.getenv("MODALITIES", "audio,text").split(",") if m.strip()]

SYSTEM_MESSAGE = os.getenv(
    "SYSTEM_MESSAGE",
    "You are a friendly phone assistant.\n"
    "Keep answers short and conversational; callers are listening, not reading.\n"
    "If the caller interrupts you, stop and answer what they just said.\n",
)

# Optional: have the assistant speak first once the session is configured
GREETING_PROMPT = os.getenv("GREETING_PROMPT", "")

# =============================
# Turn-taking
# =============================
CANCEL_TIMEOUT_SECONDS = float(os.getenv("CANCEL_TIMEOUT_SECONDS", "2.0"))
SESSION_UPDATE_DELAY_MS = int(os.getenv("SESSION_UPDATE_DELAY_MS", "100"))

# =============================
# Twilio Configuration
# =============================
TELEPHONY_AUDIO_ENCODING = os.getenv("TELEPHONY_AUDIO_ENCODING", "audio/x-mulaw")
AI_AUDIO_FORMAT = os.getenv("AI_AUDIO_FORMAT", "g711_ulaw")

TWIML_GREETING = os.getenv("TWIML_GREETING", "")
TWIML_GREETING_VOICE = os.getenv("TWIML_GREETING_VOICE", "alice")
TWIML_GREETING_LANGUAGE = os.getenv("TWIML_GREETING_LANGUAGE", "en-US")

# Twilio media stream specifics
TWILIO_SAMPLE_RATE = 8000
# 8 kHz companded audio: one byte per sample
AUDIO_BYTES_PER_MS = TWILIO_SAMPLE_RATE // 1000
MARK_PREFIX = "responsePart"

# =============================
# Audio format compatibility
# =============================
# Telephony encoding -> accepted AI formats (beta name, GA name)
COMPATIBLE_AUDIO_FORMATS = {
    "audio/x-mulaw": ("g711_ulaw", "audio/pcmu"),
    "audio/x-alaw": ("g711_alaw", "audio/pcma"),
}

# Beta format names mapped to their GA equivalents
GA_AUDIO_FORMATS = {
    "g711_ulaw": "audio/pcmu",
    "g711_alaw": "audio/pcma",
    "audio/pcmu": "audio/pcmu",
    "audio/pcma": "audio/pcma",
}
BETA_AUDIO_FORMATS = {
    "g711_ulaw": "g711_ulaw",
    "g711_alaw": "g711_alaw",
    "audio/pcmu": "g711_ulaw",
    "audio/pcma": "g711_alaw",
}

LOG_EVENT_TYPES = [
    "error",
    "session.created",
    "session.updated",
    "input_audio_buffer.committed",
    "input_audio_buffer.speech_started",
    "input_audio_buffer.speech_stopped",
    "response.created",
    "response.done",
    "response.cancelled",
    "response.canceled",
    "response.failed",
    "rate_limits.updated",
]


def validate_config() -> None:
    """Check the settings a call cannot run without. Called once at startup."""
    if not OPENAI_API_KEY:
        raise ConfigError("Missing the OpenAI API key. Please set it in the .env file.")

    accepted = COMPATIBLE_AUDIO_FORMATS.get(TELEPHONY_AUDIO_ENCODING)
    if accepted is None:
        raise ConfigError(f"Unsupported telephony audio encoding: {TELEPHONY_AUDIO_ENCODING!r}")
    if AI_AUDIO_FORMAT not in accepted:
        raise ConfigError(
            f"AI audio format {AI_AUDIO_FORMAT!r} does not match telephony encoding "
            f"{TELEPHONY_AUDIO_ENCODING!r} (expected one of {', '.join(accepted)})"
        )

    if CANCEL_TIMEOUT_SECONDS <= 0:
        raise ConfigError("CANCEL_TIMEOUT_SECONDS must be positive.")
    if not MODALITIES:
        raise ConfigError("MODALITIES must name at least one output modality.")
