"""Shared fixtures for page reader tests."""

import itertools

import pytest

from page_reader.controller import PlaybackController
from page_reader.engine import SpeechEngine
from page_reader.errors import EngineUnavailable
from page_reader.store import DocumentStore


class FakeHandle:
    """One requested utterance. Tests fire its callbacks by hand."""

    def __init__(self, id, text, locale, on_start, on_boundary, on_end, on_error):
        self.id = id
        self.text = text
        self.locale = locale
        self.live = True
        self._on_start = on_start
        self._on_boundary = on_boundary
        self._on_end = on_end
        self._on_error = on_error

    def start(self):
        self._on_start()

    def boundary(self, char_index):
        self._on_boundary(char_index)

    def end(self):
        self.live = False
        self._on_end()

    def error(self, exc=None):
        self.live = False
        self._on_error(exc or Exception("synthesis failed"))


class FakeEngine(SpeechEngine):
    """Records speak/cancel calls in order; callbacks never fire on their own."""

    def __init__(self):
        self.available = True
        self.calls = []
        self.handles = []
        self._ids = itertools.count(1)

    def speak(self, text, locale, on_start, on_boundary, on_end, on_error):
        if not self.available:
            raise EngineUnavailable("No speech voices are available")
        handle = FakeHandle(next(self._ids), text, locale, on_start, on_boundary, on_end, on_error)
        self.handles.append(handle)
        self.calls.append(("speak", handle.id))
        return handle

    def cancel(self, handle):
        self.calls.append(("cancel", handle.id))
        handle.live = False

    @property
    def last(self):
        return self.handles[-1]

    def live_handles(self):
        return [h for h in self.handles if h.live]

    def spoken(self):
        return [h.text for h in self.handles]


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def store(tmp_path):
    return DocumentStore(str(tmp_path / "session"))


@pytest.fixture
def controller(engine, store):
    return PlaybackController(engine, store, locale="pt-BR")


@pytest.fixture
def sample_text():
    """Two short sentences, one segment each."""
    return "Hello world. This is a test."


@pytest.fixture
def long_text():
    """Several sentences in Portuguese, including one over the chunk budget."""
    return (
        "Era uma vez uma menina que adorava ler. Ela lia todos os dias!\n\n"
        "Certa manhã encontrou um livro antigo na estante da avó, com páginas "
        "amareladas e letras pequenas que contavam histórias de viagens por mares "
        "distantes, cidades esquecidas e florestas cheias de segredos que ninguém "
        "conhecia. Será que era verdade? Ninguém sabia."
    )
