"""Speech engine contract and the edge-tts + ffplay implementation.

The controller only needs speak() and cancel(). Engines are not expected to
support pausing an utterance: pause/resume is built on top of cancel() and
speaking again from an offset.
"""

import asyncio
import io
import itertools
import logging
import shutil
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable

import edge_tts
from pydub import AudioSegment

from page_reader.constants import (
    PLAYER_BINARY,
    TICKS_PER_SECOND,
    TTS_RATE,
    TTS_RETRY_BASE_DELAY,
    TTS_RETRY_COUNT,
)
from page_reader.errors import EngineTransientFailure, EngineUnavailable
from page_reader.voices import pick_voice

logger = logging.getLogger(__name__)

_BOUNDARY_TYPES = ("WordBoundary", "SentenceBoundary")


class SpeechEngine(ABC):
    """Asynchronous text-to-speech capability driven by PlaybackController."""

    @abstractmethod
    def speak(
        self,
        text: str,
        locale: str,
        on_start: Callable[[], None],
        on_boundary: Callable[[int], None] | None,
        on_end: Callable[[], None],
        on_error: Callable[[Exception], None],
    ) -> Any:
        """
        Begin speaking text and return a handle for cancel(). Must not block.
        Callbacks fire later, on the caller's thread. on_boundary(char_index)
        is best effort and may never fire. Raises EngineUnavailable when there
        is no voice to speak with.
        """
        ...

    @abstractmethod
    def cancel(self, handle: Any) -> None:
        """Stop the utterance. No-op for a finished or already cancelled handle."""
        ...


@dataclass
class SpeechHandle:
    id: int
    text: str
    voice: str
    task: asyncio.Task | None = None
    process: asyncio.subprocess.Process | None = None
    timers: list[asyncio.TimerHandle] = field(default_factory=list)
    cancelled: bool = False
    done: bool = False


def boundary_index(text: str, word: str, cursor: int) -> int:
    """Locate a reported word in text at or after cursor, -1 if absent."""
    if not word:
        return -1
    return text.find(word, cursor)


def _export_wav(audio: bytes, path: str) -> None:
    """Decode MP3 bytes and write them to path as WAV."""
    clip = AudioSegment.from_file(io.BytesIO(audio), format="mp3")
    clip.export(path, format="wav")


class EdgeSpeechEngine(SpeechEngine):
    """
    Synthesize with edge-tts, decode with pydub, play with ffplay.
    Must be used from inside a running asyncio loop; call load_voices() once
    before the first speak() so voice and player availability are known.
    """

    def __init__(self, rate: str = TTS_RATE, player: str = PLAYER_BINARY) -> None:
        self._rate = rate
        self._player = player
        self._player_path: str | None = None
        self._voices: list[dict] = []
        self._ids = itertools.count(1)

    @property
    def voices(self) -> list[dict]:
        return list(self._voices)

    async def load_voices(self) -> None:
        """Resolve installed voices and the audio player."""
        self._player_path = shutil.which(self._player)
        if self._player_path is None:
            logger.warning("%s not found on PATH, speech is unavailable", self._player)
        try:
            self._voices = await edge_tts.list_voices()
        except Exception as e:
            logger.warning("Could not list edge-tts voices: %s", e)
            self._voices = []
        logger.info("Loaded %d voices", len(self._voices))

    def speak(self, text, locale, on_start, on_boundary, on_end, on_error):
        if self._player_path is None:
            raise EngineUnavailable(f"Audio player '{self._player}' is not installed")
        voice = pick_voice(self._voices, locale)

        handle = SpeechHandle(id=next(self._ids), text=text, voice=voice)
        loop = asyncio.get_running_loop()
        handle.task = loop.create_task(
            self._run(handle, on_start, on_boundary, on_end, on_error)
        )
        logger.info("Speaking #%d (%d chars) with %s", handle.id, len(text), voice)
        return handle

    def cancel(self, handle: SpeechHandle) -> None:
        if handle is None or handle.cancelled or handle.done:
            return
        handle.cancelled = True
        for timer in handle.timers:
            timer.cancel()
        handle.timers.clear()
        if handle.process is not None and handle.process.returncode is None:
            try:
                handle.process.terminate()
            except ProcessLookupError:
                pass
        if handle.task is not None:
            handle.task.cancel()
        logger.info("Cancelled #%d", handle.id)

    async def _synthesize(self, text: str, voice: str) -> tuple[bytes, list[tuple[int, float]]]:
        """Stream audio plus (char_index, seconds) boundaries, with retry logic.

        Retries on network errors or empty audio, backing off exponentially.
        """
        last_error = None
        for attempt in range(TTS_RETRY_COUNT):
            try:
                communicate = edge_tts.Communicate(
                    text, voice, rate=self._rate, boundary="WordBoundary"
                )
                audio = bytearray()
                boundaries = []
                cursor = 0
                async for chunk in communicate.stream():
                    if chunk["type"] == "audio":
                        audio.extend(chunk["data"])
                    elif chunk["type"] in _BOUNDARY_TYPES:
                        index = boundary_index(text, chunk.get("text", ""), cursor)
                        if index >= 0:
                            boundaries.append((index, chunk["offset"] / TICKS_PER_SECOND))
                            cursor = index + len(chunk["text"])

                if audio:
                    return bytes(audio), boundaries

                # No audio, treat as failure
                last_error = EngineTransientFailure(f"TTS produced no audio for: {text[:50]}...")
            except Exception as e:
                last_error = e

            if attempt < TTS_RETRY_COUNT - 1:
                delay = TTS_RETRY_BASE_DELAY * (2 ** attempt)
                await asyncio.sleep(delay)

        raise last_error

    async def _run(self, handle, on_start, on_boundary, on_end, on_error) -> None:
        loop = asyncio.get_running_loop()
        try:
            audio, boundaries = await self._synthesize(handle.text, handle.voice)

            with tempfile.NamedTemporaryFile("w+b", suffix=".wav") as f:
                # pydub shells out to ffmpeg; keep it off the event loop
                await asyncio.to_thread(_export_wav, audio, f.name)
                handle.process = await asyncio.create_subprocess_exec(
                    self._player_path, "-nodisp", "-autoexit", "-hide_banner",
                    "-loglevel", "quiet", f.name,
                    stdout=asyncio.subprocess.DEVNULL,
                    stderr=asyncio.subprocess.DEVNULL,
                )
                on_start()
                if on_boundary is not None:
                    for char_index, seconds in boundaries:
                        handle.timers.append(loop.call_later(seconds, on_boundary, char_index))
                returncode = await handle.process.wait()

            if handle.cancelled:
                return
            if returncode != 0:
                raise EngineTransientFailure(f"{self._player} exited with status {returncode}")
            handle.done = True
            on_end()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            handle.done = True
            if not handle.cancelled:
                logger.warning("Utterance #%d failed: %s", handle.id, e)
                on_error(e)
        finally:
            for timer in handle.timers:
                timer.cancel()
            handle.timers.clear()
