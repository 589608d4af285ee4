"""Playback state machine: resumable, interruptible speech from one text buffer.

The controller never relies on an engine's native pause. Pausing cancels the
in-flight utterance and remembers an offset; resuming speaks again from that
offset. Every utterance gets its own generation and its callbacks are bound
to it; callbacks from any other generation are ignored, so a late or repeated
"ended" event cannot advance the session past the utterance that is live.
"""

import functools
import logging
from typing import Any, Callable, Protocol

from page_reader.constants import DEFAULT_CHUNK_CHARS, DEFAULT_LOCALE, DEFAULT_REWIND_CHARS
from page_reader.engine import SpeechEngine
from page_reader.errors import DocumentMissing, EngineUnavailable
from page_reader.models import PlaybackSession, PlaybackState
from page_reader.segmenter import segment, word_start

logger = logging.getLogger(__name__)

_ACTIVE_STATES = (PlaybackState.PREPARING, PlaybackState.PLAYING, PlaybackState.PAUSED)


class TextSource(Protocol):
    def get_text(self, document_id: str) -> str: ...

    def has(self, document_id: str) -> bool: ...


class PlaybackController:
    """Drives a SpeechEngine segment by segment for one document at a time.

    All methods and engine callbacks must run on the same thread.
    """

    def __init__(
        self,
        engine: SpeechEngine,
        store: TextSource,
        locale: str = DEFAULT_LOCALE,
        max_chars: int = DEFAULT_CHUNK_CHARS,
        rewind_chars: int = DEFAULT_REWIND_CHARS,
    ) -> None:
        self._engine = engine
        self._store = store
        self.locale = locale
        self.max_chars = max_chars
        self.rewind_chars = rewind_chars
        self._session = PlaybackSession()
        self._handle: Any = None
        self._listeners: list[Callable[[PlaybackState], None]] = []
        self.last_error: str | None = None

    @property
    def state(self) -> PlaybackState:
        return self._session.state

    @property
    def active_document_id(self) -> str | None:
        return self._session.document_id

    @property
    def session(self) -> PlaybackSession:
        return self._session

    @property
    def position(self) -> int:
        """Absolute char offset of the playback position, 0 when idle."""
        if self._session.state not in _ACTIVE_STATES:
            return 0
        return self._session.current_offset()

    def add_listener(self, callback: Callable[[PlaybackState], None]) -> None:
        self._listeners.append(callback)

    # --- Public operations ---

    def play(self, document_id: str, start_offset: int = 0) -> bool:
        """Start reading document_id from start_offset, replacing any session.

        Returns True if an utterance was requested. A missing document, or no
        speakable text after start_offset, leaves the controller Idle and
        returns False.
        """
        self._cancel_inflight()
        session = self._session
        session.reset()
        self.last_error = None

        try:
            text = self._store.get_text(document_id)
        except DocumentMissing as e:
            logger.warning("Cannot play %s: %s", document_id, e)
            self.last_error = str(e)
            self._set_state(PlaybackState.IDLE)
            return False

        start_offset = max(0, min(start_offset, len(text)))
        segments = segment(text[start_offset:], max_chars=self.max_chars, base_offset=start_offset)
        if not segments:
            logger.info("Nothing to read in %s from offset %d", document_id, start_offset)
            self._set_state(PlaybackState.IDLE)
            return False

        session.document_id = document_id
        session.segments = segments
        session.segment_index = 0
        logger.info("Playing %s from offset %d (%d segments)", document_id, start_offset, len(segments))
        self._set_state(PlaybackState.PREPARING)
        return self._speak_current()

    def pause_or_resume(self) -> None:
        """Pause while playing; resume from the stored offset while paused."""
        session = self._session
        if session.state in (PlaybackState.PLAYING, PlaybackState.PREPARING):
            seg = session.current
            session.resume_offset = seg.start_offset + session.intra_offset
            self._cancel_inflight()
            logger.info("Paused %s at offset %d", session.document_id, session.resume_offset)
            self._set_state(PlaybackState.PAUSED)
        elif session.state == PlaybackState.PAUSED:
            if not self._store.has(session.document_id):
                self._drop_missing()
                return
            seg = session.current
            session.speak_from = max(0, session.resume_offset - seg.start_offset)
            session.intra_offset = session.speak_from
            logger.info("Resuming %s at offset %d", session.document_id, session.resume_offset)
            self._set_state(PlaybackState.PREPARING)
            self._speak_current()

    def rewind(self, delta_chars: int | None = None) -> bool:
        """Step back delta_chars (default rewind_chars) and continue playing.

        Clamps at the start of the document. Returns False when there was no
        active session to rewind.
        """
        if delta_chars is None:
            delta_chars = self.rewind_chars
        if delta_chars < 0:
            raise ValueError(f"delta_chars must not be negative, got {delta_chars}")

        session = self._session
        if session.state not in _ACTIVE_STATES:
            return False

        document_id = session.document_id
        try:
            text = self._store.get_text(document_id)
        except DocumentMissing:
            self._drop_missing()
            return False

        new_offset = word_start(text, max(0, session.current_offset() - delta_chars))
        logger.info("Rewinding %s by %d chars to offset %d", document_id, delta_chars, new_offset)
        return self.play(document_id, new_offset)

    def stop(self) -> None:
        """Cancel anything in flight and go back to Idle. Idempotent."""
        self._cancel_inflight()
        if self._session.state == PlaybackState.IDLE and self._session.document_id is None:
            return
        logger.info("Stopped %s", self._session.document_id)
        self._session.reset()
        self._set_state(PlaybackState.IDLE)

    # --- Internals ---

    def _set_state(self, state: PlaybackState) -> None:
        self._session.state = state
        for callback in list(self._listeners):
            callback(state)

    def _cancel_inflight(self) -> None:
        """Cancel the outstanding utterance and invalidate its callbacks."""
        if self._handle is not None:
            handle, self._handle = self._handle, None
            self._engine.cancel(handle)
        self._session.generation += 1

    def _speak_current(self) -> bool:
        session = self._session
        seg = session.current
        text = seg.text[session.speak_from:]
        stripped = text.lstrip()
        session.speak_from += len(text) - len(stripped)
        session.intra_offset = session.speak_from
        if not stripped:
            self._advance()
            return self._handle is not None

        # One generation per utterance; earlier segments' callbacks go stale.
        session.generation += 1
        generation = session.generation
        try:
            self._handle = self._engine.speak(
                stripped,
                self.locale,
                on_start=functools.partial(self._on_start, generation),
                on_boundary=functools.partial(self._on_boundary, generation),
                on_end=functools.partial(self._on_end, generation),
                on_error=functools.partial(self._on_error, generation),
            )
        except EngineUnavailable as e:
            self._fail(e)
            return False
        return True

    def _fail(self, error: Exception) -> None:
        logger.error("Speech engine unavailable: %s", error)
        self._handle = None
        self.last_error = str(error)
        document_id = self._session.document_id
        self._session.reset()
        self._session.document_id = document_id
        self._set_state(PlaybackState.ERROR)

    def _drop_missing(self) -> None:
        document_id = self._session.document_id
        logger.warning("Document %s disappeared during playback", document_id)
        self.stop()
        self.last_error = str(DocumentMissing(f"Document not found: {document_id}"))

    def _advance(self) -> None:
        session = self._session
        session.segment_index += 1
        session.speak_from = 0
        session.intra_offset = 0

        if session.segment_index >= len(session.segments):
            logger.info("Finished %s", session.document_id)
            self._set_state(PlaybackState.FINISHED)
            session.reset()
            self._set_state(PlaybackState.IDLE)
            return

        if not self._store.has(session.document_id):
            self._drop_missing()
            return
        self._speak_current()

    def _is_stale(self, generation: int) -> bool:
        return generation != self._session.generation

    def _on_start(self, generation: int) -> None:
        if self._is_stale(generation):
            return
        if self._session.state == PlaybackState.PREPARING:
            self._set_state(PlaybackState.PLAYING)

    def _on_boundary(self, generation: int, char_index: int) -> None:
        if self._is_stale(generation):
            return
        session = self._session
        seg = session.current
        if seg is None:
            return
        session.intra_offset = max(session.speak_from, min(session.speak_from + char_index, len(seg.text)))

    def _retire(self) -> None:
        """The current utterance is over; ignore anything else it reports."""
        self._handle = None
        self._session.generation += 1

    def _on_end(self, generation: int) -> None:
        if self._is_stale(generation):
            return
        self._retire()
        self._advance()

    def _on_error(self, generation: int, error: Exception) -> None:
        if self._is_stale(generation):
            return
        self._retire()
        if isinstance(error, EngineUnavailable):
            self._fail(error)
            return
        seg = self._session.current
        logger.warning("Skipping segment %d of %s: %s", seg.index, self._session.document_id, error)
        self._advance()
