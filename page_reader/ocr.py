"""Client for the external OCR service, with a daily free-scan allowance."""

import base64
import logging
from datetime import date

import requests

from page_reader.constants import DAILY_OCR_LIMIT, OCR_TIMEOUT, SESSION_DIR
from page_reader.errors import OcrError, OcrLimitReached
from page_reader.store import load_artifact, write_artifact

logger = logging.getLogger(__name__)

USAGE_FILE = "usage.json"


class UsageTracker:
    """Counts OCR scans per calendar day in usage.json."""

    def __init__(self, session_dir: str = SESSION_DIR, limit: int = DAILY_OCR_LIMIT) -> None:
        self.session_dir = session_dir
        self.limit = limit

    def _today(self) -> str:
        return date.today().isoformat()

    def usage(self) -> dict:
        stored = load_artifact(self.session_dir, USAGE_FILE)
        if not stored or stored.get("date") != self._today():
            return {"date": self._today(), "count": 0}
        return stored

    def remaining(self) -> int:
        return max(0, self.limit - self.usage()["count"])

    def record(self) -> int:
        """Count one scan. Raises OcrLimitReached when the allowance is used up."""
        usage = self.usage()
        if usage["count"] >= self.limit:
            raise OcrLimitReached(f"Daily limit of {self.limit} free scans reached")
        usage["count"] += 1
        write_artifact(self.session_dir, USAGE_FILE, usage)
        return self.limit - usage["count"]


class OcrClient:
    def __init__(self, url: str, usage: UsageTracker | None = None, timeout: float = OCR_TIMEOUT) -> None:
        self.url = url
        self.usage = usage
        self.timeout = timeout

    def recognize(self, image: bytes, mime_type: str = "image/jpeg") -> str:
        """Send an image to the OCR service and return the recognized text."""
        if self.usage is not None:
            self.usage.record()

        payload = {
            "image": base64.b64encode(image).decode("ascii"),
            "mimeType": mime_type,
        }
        logger.info("OCR request: %d bytes (%s)", len(image), mime_type)
        try:
            response = requests.post(self.url, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise OcrError(f"OCR request failed: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = {}

        if not response.ok:
            message = data.get("error") or f"HTTP {response.status_code}"
            raise OcrError(f"OCR failed: {message}")

        text = data.get("text")
        if not text or not text.strip():
            raise OcrError(data.get("error") or "OCR returned no text")
        return text
