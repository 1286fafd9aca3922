"""
Runtime configuration for InfoGenius.

Reads ``.env`` (python-dotenv) and then the process environment:

  GEMINI_API_KEY              backend credential (falls back to API_KEY, GOOGLE_API_KEY)
  INFOGENIUS_HTTP_TIMEOUT_MS  per-request timeout handed to the genai client
  INFOGENIUS_LOCATION_TIMEOUT seconds to wait for the optional location lookup
  INFOGENIUS_PORT             port for the development server
  INFOGENIUS_LOG_LEVEL        logging level name
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

RESEARCH_MODEL = "gemini-2.5-flash"  # supports both Search and Maps grounding
CHAT_MODEL = "gemini-3-pro-preview"
VISION_MODEL = "gemini-3-pro-preview"
TRANSCRIPTION_MODEL = "gemini-3-flash-preview"
TTS_MODEL = "gemini-2.5-flash-preview-tts"
TTS_VOICE = "Kore"
TTS_SAMPLE_RATE = 24000

KEY_ENV_VARS = ("GEMINI_API_KEY", "API_KEY", "GOOGLE_API_KEY")


@dataclass
class Settings:
    api_key: Optional[str] = None
    http_timeout_ms: int = 300_000
    location_timeout: float = 5.0
    port: int = 5001
    log_level: str = "INFO"

    def to_dict(self) -> dict:
        """Export for logging/display; never includes the key itself."""
        return {
            "has_api_key": bool(self.api_key),
            "http_timeout_ms": self.http_timeout_ms,
            "location_timeout": self.location_timeout,
            "port": self.port,
            "log_level": self.log_level,
        }


def get_settings() -> Settings:
    """Load settings from ``.env`` + environment variables."""
    load_dotenv()
    settings = Settings()

    for name in KEY_ENV_VARS:
        if os.environ.get(name):
            settings.api_key = os.environ[name]
            break

    if os.environ.get("INFOGENIUS_HTTP_TIMEOUT_MS"):
        settings.http_timeout_ms = int(os.environ["INFOGENIUS_HTTP_TIMEOUT_MS"])

    if os.environ.get("INFOGENIUS_LOCATION_TIMEOUT"):
        settings.location_timeout = float(os.environ["INFOGENIUS_LOCATION_TIMEOUT"])

    if os.environ.get("INFOGENIUS_PORT"):
        settings.port = int(os.environ["INFOGENIUS_PORT"])

    if os.environ.get("INFOGENIUS_LOG_LEVEL"):
        settings.log_level = os.environ["INFOGENIUS_LOG_LEVEL"].upper()

    return settings


class KeyStore:
    """The currently selected backend credential.

    Handed to the backend, which reads ``api_key`` on every request, so a
    re-selected key takes effect on the next call.
    """

    def __init__(self, api_key: Optional[str] = None):
        self._api_key = api_key or None
        self.has_valid_key = bool(self._api_key)

    @property
    def api_key(self) -> Optional[str]:
        return self._api_key

    def select(self, api_key: Optional[str]):
        self._api_key = (api_key or "").strip() or None
        self.has_valid_key = bool(self._api_key)

    def invalidate(self):
        """Mark the key as rejected by the backend; the user must re-select."""
        self.has_valid_key = False
