# gemini_messenger/utils/config.py
from typing import List, Dict, Optional
from pathlib import Path
from pydantic import BaseModel, Field

# --- Application Constants ---
APP_VERSION = "1.2.0"

# Priority-first candidate lists. The first entry is preferred, the rest are
# only used when the previous model reports it is out of capacity.
DEFAULT_CHAT_MODELS = [
    "gemini-3-flash-preview",
    "gemini-2.5-flash",
    "gemini-2.5-flash-lite",
]
DEFAULT_TTS_MODELS = [
    "gemini-2.5-flash-preview-tts",
    "gemini-2.5-pro-preview-tts",
]

# Gemini TTS always answers with raw 16-bit little-endian PCM, mono, 24kHz
TTS_SAMPLE_RATE = 24000
TTS_CHANNELS = 1
GEMINI_TTS_VOICES = ["Kore", "Puck", "Charon", "Fenrir", "Aoede", "Leda", "Orus", "Zephyr"]

SUPPORTED_LANGUAGES = ["ko", "en", "es", "fr"]
LANGUAGE_NAMES = {
    "ko": "Korean",
    "en": "English",
    "es": "Spanish",
    "fr": "French",
}
# Shown to the user while a tool call is being dispatched
LOOKUP_STATUS_MESSAGES = {
    "ko": "정보를 찾고 있습니다...",
    "en": "Looking this up...",
    "es": "Buscando información...",
    "fr": "Recherche en cours...",
}

DEFAULT_SYSTEM_INSTRUCTION = (
    "You are a helpful, intelligent, and creative AI assistant named Gemini Messenger. "
    "You provide clear, concise, and accurate information. "
    "When writing code, use markdown blocks."
)
# --- End Application Constants ---

# Import env vars for Pydantic defaults
from .env import (
    GEMINI_TTS_VOICE_ENV,
    APP_LANGUAGE_ENV,
)


def parse_model_list(raw: Optional[str], default: List[str]) -> List[str]:
    """Splits a comma-separated model list, falling back to `default` when empty."""
    if not raw:
        return list(default)
    models = [m.strip() for m in raw.split(",") if m.strip()]
    return models or list(default)


def normalize_language(language: Optional[str]) -> str:
    """Returns a supported language code, defaulting to the first supported one."""
    code = (language or "").strip().lower()
    if code in SUPPORTED_LANGUAGES:
        return code
    # "en-US", "es_MX" -> region dropped
    short = code.replace("_", "-").split("-")[0]
    if short in SUPPORTED_LANGUAGES:
        return short
    return SUPPORTED_LANGUAGES[0]


class AppSettings(BaseModel):
    """
    Centralized application settings.
    This object will be populated at startup and used throughout the application.
    """
    # --- Paths ---
    # These are set during startup in main()
    app_log_dir: Optional[Path] = None
    startup_timestamp_str: Optional[str] = None # For log filenames

    # --- General App Config ---
    verbose: bool = False
    language: str = APP_LANGUAGE_ENV
    system_message: str = DEFAULT_SYSTEM_INSTRUCTION
    speak_responses: bool = False

    # --- Backend Config ---
    gemini_api_key: Optional[str] = None # Populated from args/env
    chat_models: List[str] = Field(default_factory=lambda: list(DEFAULT_CHAT_MODELS))
    tts_models: List[str] = Field(default_factory=lambda: list(DEFAULT_TTS_MODELS))
    tts_voice: str = GEMINI_TTS_VOICE_ENV
    tts_sample_rate: int = TTS_SAMPLE_RATE
    tts_channels: int = TTS_CHANNELS

    # --- Tools ---
    enable_tools: bool = True
    enable_search_grounding: bool = True
    tool_http_timeout: float = 10.0
    page_fetch_max_chars: int = 8000

    # Localized strings, overridable for tests or new languages
    status_messages: Dict[str, str] = Field(default_factory=lambda: dict(LOOKUP_STATUS_MESSAGES))

    def status_message(self, language: str) -> str:
        return self.status_messages.get(language) or self.status_messages.get("en", LOOKUP_STATUS_MESSAGES["en"])


# Global instance of settings. This will be populated in main().
# Other modules can import this instance.
settings = AppSettings()

# Export specific constants and the settings instance
__all__ = [
    "APP_VERSION",
    "DEFAULT_CHAT_MODELS",
    "DEFAULT_TTS_MODELS",
    "TTS_SAMPLE_RATE",
    "TTS_CHANNELS",
    "GEMINI_TTS_VOICES",
    "SUPPORTED_LANGUAGES",
    "LANGUAGE_NAMES",
    "LOOKUP_STATUS_MESSAGES",
    "DEFAULT_SYSTEM_INSTRUCTION",
    "parse_model_list",
    "normalize_language",
    "settings",
    "AppSettings",
]
