"""Tests for CLI module."""

import asyncio
import io
import json
from datetime import date
from unittest.mock import patch, AsyncMock, MagicMock

import pytest

from page_reader.cli import main
from page_reader.engine import SpeechEngine
from page_reader.errors import EngineUnavailable


class AutoEngine(SpeechEngine):
    """Finishes every utterance on the next loop iterations."""

    def __init__(self, available=True):
        self.available = available
        self.spoken = []

    async def load_voices(self):
        pass

    def speak(self, text, locale, on_start, on_boundary, on_end, on_error):
        if not self.available:
            raise EngineUnavailable("No speech voices are available")
        self.spoken.append(text)
        loop = asyncio.get_running_loop()
        loop.call_soon(on_start)
        loop.call_soon(on_end)
        return len(self.spoken)

    def cancel(self, handle):
        pass


@pytest.fixture
def session_dir(tmp_path, monkeypatch):
    path = tmp_path / "session"
    monkeypatch.setattr("page_reader.cli.SESSION_DIR", str(path))
    monkeypatch.setattr("sys.stdin", io.StringIO(""))
    return path


def _run(*argv):
    with patch("sys.argv", ["page-reader", *argv]):
        main()


def _create_text_file(tmp_path, content="Hello world. This is a test.", name="page.txt"):
    path = tmp_path / name
    path.write_text(content, encoding="utf-8")
    return str(path)


def _pages(session_dir):
    return json.loads((session_dir / "pages.json").read_text())


# --- add / pages / remove ---

def test_add_creates_page(tmp_path, session_dir, capsys):
    _run("add", _create_text_file(tmp_path))
    out = capsys.readouterr().out
    assert "Added page-1" in out
    assert "2 segments" in out
    data = _pages(session_dir)
    assert data["active"] == "page-1"
    assert data["documents"][0]["text"] == "Hello world. This is a test."


def test_add_missing_file(tmp_path, session_dir, capsys):
    with pytest.raises(SystemExit) as exc:
        _run("add", str(tmp_path / "nope.txt"))
    assert exc.value.code == 1
    assert "File not found" in capsys.readouterr().err


def test_add_empty_file(tmp_path, session_dir, capsys):
    with pytest.raises(SystemExit):
        _run("add", _create_text_file(tmp_path, content="  \n"))
    assert "no readable text" in capsys.readouterr().err


def test_pages_lists_active_marker(tmp_path, session_dir, capsys):
    _run("add", _create_text_file(tmp_path, "Primeira."))
    _run("add", _create_text_file(tmp_path, "Segunda.", name="b.txt"))
    capsys.readouterr()
    _run("pages")
    lines = capsys.readouterr().out.splitlines()
    assert lines[0] == "Pages:"
    assert lines[1].strip().startswith("page-1")
    assert lines[2].strip().startswith("* page-2")


def test_pages_empty(session_dir, capsys):
    _run("pages")
    assert "No pages yet." in capsys.readouterr().out


def test_remove(tmp_path, session_dir, capsys):
    _run("add", _create_text_file(tmp_path))
    _run("remove", "page-1")
    assert "Removed page-1" in capsys.readouterr().out
    assert _pages(session_dir)["documents"] == []


def test_remove_missing(session_dir, capsys):
    with pytest.raises(SystemExit):
        _run("remove", "page-7")
    assert "not found" in capsys.readouterr().err


# --- segments / set ---

def test_segments_uses_chunk_setting(tmp_path, session_dir, capsys):
    _run("add", _create_text_file(tmp_path, " ".join(["palavra"] * 20)))
    _run("set", "chunk-chars", "40")
    capsys.readouterr()
    _run("segments")
    out = capsys.readouterr().out
    assert "page-1: 4 segments (max 40 chars)" in out
    assert "@0" in out


def test_segments_without_pages(session_dir, capsys):
    with pytest.raises(SystemExit):
        _run("segments")
    assert "No pages yet" in capsys.readouterr().err


def test_set_writes_settings(session_dir, capsys):
    _run("set", "locale", "en-GB")
    assert "Updated: locale → en-GB" in capsys.readouterr().out
    settings = json.loads((session_dir / "settings.json").read_text())
    assert settings["locale"] == "en-GB"


def test_set_invalid_key(session_dir, capsys):
    with pytest.raises(SystemExit) as exc:
        _run("set", "volume", "11")
    assert exc.value.code == 1
    assert "Invalid setting key" in capsys.readouterr().err


def test_set_invalid_value(session_dir, capsys):
    with pytest.raises(SystemExit):
        _run("set", "rewind-chars", "lots")
    assert "Invalid value" in capsys.readouterr().err


# --- scan ---

@patch("page_reader.ocr.requests.post")
def test_scan_adds_recognized_page(mock_post, tmp_path, session_dir, capsys):
    response = MagicMock(ok=True, status_code=200)
    response.json.return_value = {"text": "Texto reconhecido."}
    mock_post.return_value = response
    image = tmp_path / "page.png"
    image.write_bytes(b"\x89PNG")

    _run("scan", str(image))
    out = capsys.readouterr().out
    assert "Added page-1 from page.png" in out
    assert "Free scans left today: 2" in out
    assert mock_post.call_args.kwargs["json"]["mimeType"] == "image/png"


@patch("page_reader.ocr.requests.post")
def test_scan_daily_limit(mock_post, tmp_path, session_dir, capsys):
    session_dir.mkdir()
    (session_dir / "usage.json").write_text(
        json.dumps({"date": date.today().isoformat(), "count": 3})
    )
    image = tmp_path / "page.jpg"
    image.write_bytes(b"jpeg")

    with pytest.raises(SystemExit):
        _run("scan", str(image))
    assert "Try again tomorrow" in capsys.readouterr().err
    mock_post.assert_not_called()


# --- read ---

def test_read_plays_to_the_end(tmp_path, session_dir, capsys):
    engine = AutoEngine()
    _run("add", _create_text_file(tmp_path))
    with patch("page_reader.cli.EdgeSpeechEngine", return_value=engine):
        _run("read")
    assert engine.spoken == ["Hello world.", "This is a test."]
    out = capsys.readouterr().out
    assert "Reading page-1" in out
    assert "[finished]" in out
    assert "[idle]" in out


def test_read_from_offset(tmp_path, session_dir):
    engine = AutoEngine()
    _run("add", _create_text_file(tmp_path))
    with patch("page_reader.cli.EdgeSpeechEngine", return_value=engine):
        _run("read", "page-1", "--offset", "13")
    assert engine.spoken == ["This is a test."]


def test_read_engine_unavailable(tmp_path, session_dir, capsys):
    _run("add", _create_text_file(tmp_path))
    with patch("page_reader.cli.EdgeSpeechEngine", return_value=AutoEngine(available=False)):
        with pytest.raises(SystemExit) as exc:
            _run("read")
    assert exc.value.code == 1
    assert "No speech voices" in capsys.readouterr().err


def test_read_unknown_page(tmp_path, session_dir, capsys):
    _run("add", _create_text_file(tmp_path))
    with pytest.raises(SystemExit):
        _run("read", "page-9")
    assert "Page 'page-9' not found" in capsys.readouterr().err


# --- voices / misc ---

@patch("page_reader.voices.edge_tts.list_voices", new_callable=AsyncMock)
def test_voices_defaults_to_locale(mock_list, session_dir, capsys):
    mock_list.return_value = [
        {"ShortName": "en-US-AriaNeural", "Locale": "en-US"},
        {"ShortName": "pt-BR-FranciscaNeural", "Locale": "pt-BR"},
    ]
    _run("voices")
    out = capsys.readouterr().out
    assert "pt-BR-FranciscaNeural" in out
    assert "en-US-AriaNeural" not in out

    _run("voices", "--all")
    assert "en-US-AriaNeural" in capsys.readouterr().out


def test_no_command_prints_help(session_dir, capsys):
    _run()
    assert "usage: page-reader" in capsys.readouterr().out


def test_version(session_dir, capsys):
    with pytest.raises(SystemExit):
        _run("--version")
    assert "0.1.0" in capsys.readouterr().out
