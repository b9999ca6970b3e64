"""
Raw environment values (.env is loaded first). Parsing (splitting model lists,
converting numbers) happens in the CLI after command-line arguments are merged in.
"""

import os
from typing import Optional
from dotenv import load_dotenv

load_dotenv()

# --- Gemini Credentials ---
# API_KEY is accepted as a fallback for setups shared with the web client.
GEMINI_API_KEY_ENV: Optional[str] = os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY")

# --- Candidate Models (comma-separated, priority first) ---
GEMINI_CHAT_MODELS_ENV: Optional[str] = os.getenv("GEMINI_CHAT_MODELS")
GEMINI_TTS_MODELS_ENV: Optional[str] = os.getenv("GEMINI_TTS_MODELS")
GEMINI_TTS_VOICE_ENV: str = os.getenv("GEMINI_TTS_VOICE", "Kore")

# --- Conversation ---
APP_LANGUAGE_ENV: str = os.getenv("APP_LANGUAGE", "ko")
SYSTEM_MESSAGE_ENV: Optional[str] = os.getenv("SYSTEM_MESSAGE")

# --- Tool Providers ---
# Keep as strings for click defaults, conversion happens in the CLI
TOOL_HTTP_TIMEOUT_ENV: str = os.getenv("TOOL_HTTP_TIMEOUT", "10")
PAGE_FETCH_MAX_CHARS_ENV: str = os.getenv("PAGE_FETCH_MAX_CHARS", "8000")


__all__ = [
    "GEMINI_API_KEY_ENV",
    "GEMINI_CHAT_MODELS_ENV",
    "GEMINI_TTS_MODELS_ENV",
    "GEMINI_TTS_VOICE_ENV",
    "APP_LANGUAGE_ENV",
    "SYSTEM_MESSAGE_ENV",
    "TOOL_HTTP_TIMEOUT_ENV",
    "PAGE_FETCH_MAX_CHARS_ENV",
]
