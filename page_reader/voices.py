"""Voice discovery and locale-based voice selection."""

import logging

import edge_tts

from page_reader.errors import EngineUnavailable

logger = logging.getLogger(__name__)


async def list_voices(filter_str: str | None = None) -> list[dict]:
    """Fetch installed edge-tts voices, optionally filtered by substring.

    The filter matches the voice's ShortName or Locale, case-insensitively.
    """
    voices = await edge_tts.list_voices()
    if filter_str:
        needle = filter_str.lower()
        voices = [
            v for v in voices
            if needle in v.get("ShortName", "").lower() or needle in v.get("Locale", "").lower()
        ]
    return sorted(voices, key=lambda v: (v.get("Locale", ""), v.get("ShortName", "")))


def _language(locale: str) -> str:
    return locale.replace("_", "-").split("-")[0].lower()


def pick_voice(voices: list[dict], locale: str) -> str:
    """Pick a voice ShortName for the locale.

    Priority: exact locale match → same language → first voice available.
    Raises EngineUnavailable if there are no voices at all.
    """
    if not voices:
        raise EngineUnavailable("No speech voices are available")

    wanted = locale.replace("_", "-").lower()
    for voice in voices:
        if voice.get("Locale", "").lower() == wanted:
            return voice["ShortName"]

    language = _language(locale)
    for voice in voices:
        if _language(voice.get("Locale", "")) == language:
            return voice["ShortName"]

    fallback = voices[0]["ShortName"]
    logger.warning("No voice for locale %s, falling back to %s", locale, fallback)
    return fallback
