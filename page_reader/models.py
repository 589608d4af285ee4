"""Data models for documents, segments and playback sessions."""

from dataclasses import dataclass, field
from enum import Enum


@dataclass(frozen=True)
class Document:
    id: str
    text: str
    created_at: str = ""   # ISO-8601, set by DocumentStore.add()


@dataclass(frozen=True)
class Segment:
    index: int
    text: str
    start_offset: int      # char offset into the owning document's text

    @property
    def end_offset(self) -> int:
        return self.start_offset + len(self.text)


class PlaybackState(Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    PLAYING = "playing"
    PAUSED = "paused"
    FINISHED = "finished"
    ERROR = "error"


@dataclass
class PlaybackSession:
    """Mutable playback state, owned by a single PlaybackController.

    `speak_from` is where the in-flight utterance began inside the current
    segment; `intra_offset` is the furthest position reported by the engine
    inside that segment. Both are relative to the segment's text.
    """

    document_id: str | None = None
    segments: list[Segment] = field(default_factory=list)
    segment_index: int = 0
    state: PlaybackState = PlaybackState.IDLE
    generation: int = 0
    speak_from: int = 0
    intra_offset: int = 0
    resume_offset: int = 0

    @property
    def current(self) -> Segment | None:
        if 0 <= self.segment_index < len(self.segments):
            return self.segments[self.segment_index]
        return None

    def current_offset(self) -> int:
        """Absolute offset of the playback position in the document."""
        if self.state == PlaybackState.PAUSED:
            return self.resume_offset
        seg = self.current
        if seg is None:
            return 0
        return seg.start_offset + self.intra_offset

    def reset(self) -> None:
        """Back to the Idle sentinel. The generation counter survives."""
        self.document_id = None
        self.segments = []
        self.segment_index = 0
        self.state = PlaybackState.IDLE
        self.speak_from = 0
        self.intra_offset = 0
        self.resume_offset = 0
