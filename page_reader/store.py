"""Session directory: recognized pages, the active page, and settings."""

import json
import logging
import os
from datetime import datetime, timezone

from page_reader.constants import (
    DEFAULT_CHUNK_CHARS,
    DEFAULT_LOCALE,
    DEFAULT_REWIND_CHARS,
    OCR_URL,
    SESSION_DIR,
    TTS_RATE,
)
from page_reader.errors import DocumentMissing, SegmentationEmpty, SettingsError
from page_reader.models import Document

logger = logging.getLogger(__name__)

PAGES_FILE = "pages.json"
SETTINGS_FILE = "settings.json"

DEFAULT_SETTINGS = {
    "locale": DEFAULT_LOCALE,
    "rate": TTS_RATE,
    "chunk_chars": DEFAULT_CHUNK_CHARS,
    "rewind_chars": DEFAULT_REWIND_CHARS,
    "ocr_url": OCR_URL,
}


def write_artifact(session_dir: str, filename: str, data: dict) -> str:
    """Write JSON artifact to session_dir/filename.

    Returns path to the written file.
    """
    os.makedirs(session_dir, exist_ok=True)
    path = os.path.join(session_dir, filename)
    with open(path, "w") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
    return path


def load_artifact(session_dir: str, filename: str) -> dict | None:
    """Read JSON artifact. Returns None if missing or malformed."""
    path = os.path.join(session_dir, filename)
    if not os.path.exists(path):
        return None
    try:
        with open(path) as f:
            return json.load(f)
    except json.JSONDecodeError:
        logger.warning("Malformed session file: %s, ignoring it", path)
        return None


def load_settings(session_dir: str = SESSION_DIR) -> dict:
    """Return saved settings merged over DEFAULT_SETTINGS."""
    settings = dict(DEFAULT_SETTINGS)
    saved = load_artifact(session_dir, SETTINGS_FILE) or {}
    settings.update({k: v for k, v in saved.items() if k in DEFAULT_SETTINGS})
    return settings


def _positive_int(key: str, value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise SettingsError(f"Invalid value for {key}: {value}")
    if number < 1:
        raise SettingsError(f"{key} must be a positive integer, got {number}")
    return number


def _rate(key: str, value: str) -> str:
    sign, digits = value[:1], value[1:].rstrip("%")
    if sign not in ("+", "-") or not value.endswith("%") or not digits.isdigit():
        raise SettingsError(f"Invalid value for {key}: {value} (expected e.g. +10% or -5%)")
    return value


def _nonempty(key: str, value: str) -> str:
    if not value.strip():
        raise SettingsError(f"{key} must not be empty")
    return value.strip()


# CLI key → (settings key, validator)
SETTING_KEYS = {
    "locale": ("locale", _nonempty),
    "rate": ("rate", _rate),
    "chunk-chars": ("chunk_chars", _positive_int),
    "rewind-chars": ("rewind_chars", _positive_int),
    "ocr-url": ("ocr_url", _nonempty),
}


def update_setting(session_dir: str, key: str, value: str) -> tuple[str, object]:
    """Validate and persist one setting. Returns (settings key, parsed value)."""
    if key not in SETTING_KEYS:
        raise SettingsError(
            f"Invalid setting key: {key} (valid keys: {', '.join(sorted(SETTING_KEYS))})"
        )
    name, validate = SETTING_KEYS[key]
    parsed = validate(key, value)
    settings = load_settings(session_dir)
    settings[name] = parsed
    write_artifact(session_dir, SETTINGS_FILE, settings)
    return name, parsed


class DocumentStore:
    """Pages of recognized text and which one is active.

    In memory; load() and save() persist to pages.json in the session dir.
    """

    def __init__(self, session_dir: str = SESSION_DIR) -> None:
        self.session_dir = session_dir
        self._documents: dict[str, Document] = {}
        self._next_id = 1
        self.active_id: str | None = None

    @classmethod
    def load(cls, session_dir: str = SESSION_DIR) -> "DocumentStore":
        store = cls(session_dir)
        data = load_artifact(session_dir, PAGES_FILE)
        if not data:
            return store
        for entry in data.get("documents", []):
            doc = Document(id=entry["id"], text=entry["text"], created_at=entry.get("created_at", ""))
            store._documents[doc.id] = doc
        store._next_id = data.get("next_id", len(store._documents) + 1)
        active = data.get("active")
        store.active_id = active if active in store._documents else None
        return store

    def save(self) -> str:
        data = {
            "active": self.active_id,
            "next_id": self._next_id,
            "documents": [
                {"id": d.id, "text": d.text, "created_at": d.created_at}
                for d in self._documents.values()
            ],
        }
        return write_artifact(self.session_dir, PAGES_FILE, data)

    def add(self, text: str) -> Document:
        """Add a recognized page and make it active.

        Raises SegmentationEmpty if text is blank.
        """
        if not text.strip():
            raise SegmentationEmpty("Page has no readable text")
        doc = Document(
            id=f"page-{self._next_id}",
            text=text,
            created_at=datetime.now(timezone.utc).isoformat(),
        )
        self._next_id += 1
        self._documents[doc.id] = doc
        self.active_id = doc.id
        return doc

    def remove(self, document_id: str) -> None:
        if document_id not in self._documents:
            raise DocumentMissing(f"Document not found: {document_id}")
        del self._documents[document_id]
        if self.active_id == document_id:
            self.active_id = next(reversed(self._documents), None)

    def has(self, document_id: str) -> bool:
        return document_id in self._documents

    def get(self, document_id: str) -> Document:
        try:
            return self._documents[document_id]
        except KeyError:
            raise DocumentMissing(f"Document not found: {document_id}") from None

    def get_text(self, document_id: str) -> str:
        return self.get(document_id).text

    def documents(self) -> list[Document]:
        return list(self._documents.values())

    def __len__(self) -> int:
        return len(self._documents)
