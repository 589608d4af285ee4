"""Exception types raised across page_reader."""


class PageReaderError(Exception):
    """Base class for all page_reader errors."""


class SegmentationEmpty(PageReaderError):
    """Text has nothing speakable in it."""


class EngineUnavailable(PageReaderError):
    """No speech engine or no voice is available."""


class EngineTransientFailure(PageReaderError):
    """A single utterance failed; playback can continue with the next one."""


class DocumentMissing(PageReaderError, KeyError):
    """The referenced document is not in the store."""

    def __str__(self) -> str:
        return Exception.__str__(self)


class SettingsError(PageReaderError):
    """Invalid settings key or value."""


class OcrError(PageReaderError):
    """The OCR service failed or returned no text."""


class OcrLimitReached(OcrError):
    """The daily free OCR allowance is used up."""
