"""CLI interface: page management, settings, and interactive read-aloud."""

import argparse
import asyncio
import logging
import mimetypes
import os
import sys
import threading

from page_reader.constants import SESSION_DIR, VERSION
from page_reader.controller import PlaybackController
from page_reader.engine import EdgeSpeechEngine
from page_reader.errors import (
    DocumentMissing,
    OcrError,
    OcrLimitReached,
    SegmentationEmpty,
    SettingsError,
)
from page_reader.models import PlaybackState
from page_reader.ocr import OcrClient, UsageTracker
from page_reader.segmenter import segment
from page_reader.store import DocumentStore, load_settings, update_setting
from page_reader.voices import list_voices

KEY_HELP = "Keys: [p] pause/resume  [r N] rewind N chars  [s] stop"


def _fail(message: str) -> None:
    print(f"Error: {message}", file=sys.stderr)
    raise SystemExit(1)


def _resolve_document(store: DocumentStore, document_id: str | None) -> str:
    """Use the given page id, or the active page when none is given."""
    document_id = document_id or store.active_id
    if document_id is None:
        print("Error: No pages yet.", file=sys.stderr)
        print("Run 'page-reader add <file>' or 'page-reader scan <image>' first.", file=sys.stderr)
        raise SystemExit(1)
    if not store.has(document_id):
        _fail(f"Page '{document_id}' not found.")
    return document_id


def _preview(text: str, width: int = 50) -> str:
    flat = " ".join(text.split())
    return flat if len(flat) <= width else flat[:width - 3] + "..."


def _add_page(store: DocumentStore, text: str, source: str) -> None:
    settings = load_settings(SESSION_DIR)
    try:
        doc = store.add(text)
    except SegmentationEmpty as e:
        _fail(f"{e}: {source}")
    store.save()
    count = len(segment(text, max_chars=settings["chunk_chars"]))
    print(f"Added {doc.id} from {source} ({len(text)} chars, {count} segments)")


def cmd_add(args):
    """Add a page from a text file."""
    file_path = args.file
    if not os.path.exists(file_path):
        _fail(f"File not found: {file_path}")

    with open(file_path, encoding="utf-8") as f:
        text = f.read()

    _add_page(DocumentStore.load(SESSION_DIR), text, os.path.basename(file_path))


def cmd_scan(args):
    """Recognize a page image via the OCR service and add it."""
    image_path = args.image
    if not os.path.exists(image_path):
        _fail(f"File not found: {image_path}")

    mime_type = args.mime or mimetypes.guess_type(image_path)[0] or "image/jpeg"
    with open(image_path, "rb") as f:
        image = f.read()

    settings = load_settings(SESSION_DIR)
    usage = UsageTracker(SESSION_DIR)
    client = OcrClient(settings["ocr_url"], usage=usage)
    try:
        text = client.recognize(image, mime_type)
    except OcrLimitReached as e:
        print(f"Error: {e}. Try again tomorrow.", file=sys.stderr)
        raise SystemExit(1)
    except OcrError as e:
        _fail(str(e))

    _add_page(DocumentStore.load(SESSION_DIR), text, os.path.basename(image_path))
    print(f"Free scans left today: {usage.remaining()}")


def cmd_pages(args):
    """List pages."""
    store = DocumentStore.load(SESSION_DIR)
    if not len(store):
        print("No pages yet.")
        return
    print("Pages:")
    for doc in store.documents():
        marker = "*" if doc.id == store.active_id else " "
        print(f"  {marker} {doc.id:<10} {len(doc.text):>6} chars  {_preview(doc.text)}")


def cmd_remove(args):
    """Remove a page."""
    store = DocumentStore.load(SESSION_DIR)
    try:
        store.remove(args.page)
    except DocumentMissing:
        _fail(f"Page '{args.page}' not found.")
    store.save()
    print(f"Removed {args.page}")


def cmd_segments(args):
    """Show how a page will be split for reading."""
    store = DocumentStore.load(SESSION_DIR)
    document_id = _resolve_document(store, args.page)
    settings = load_settings(SESSION_DIR)
    segments = segment(store.get_text(document_id), max_chars=settings["chunk_chars"])
    print(f"{document_id}: {len(segments)} segments (max {settings['chunk_chars']} chars)")
    for seg in segments:
        print(f"  {seg.index:>3} @{seg.start_offset:<6} {_preview(seg.text, 60)}")


def _handle_key(controller: PlaybackController, line: str) -> None:
    """Apply one keyboard command to the controller."""
    parts = line.split()
    command = parts[0].lower() if parts else "p"

    if command == "p":
        controller.pause_or_resume()
    elif command == "r":
        try:
            delta = int(parts[1]) if len(parts) > 1 else None
            controller.rewind(delta)
        except ValueError:
            print("  rewind needs a non-negative number of characters")
    elif command in ("s", "q"):
        controller.stop()
    else:
        print(f"  {KEY_HELP}")


def _start_key_reader(loop: asyncio.AbstractEventLoop, queue: asyncio.Queue) -> None:
    """Read stdin lines on a daemon thread and hand them to the loop thread."""
    def reader():
        for line in sys.stdin:
            loop.call_soon_threadsafe(queue.put_nowait, line.strip())
        loop.call_soon_threadsafe(queue.put_nowait, "s")

    threading.Thread(target=reader, daemon=True, name="page-reader-keys").start()


async def _read_aloud(store: DocumentStore, settings: dict, document_id: str, offset: int) -> bool:
    """Play a page until it finishes or the user stops. Returns True on success."""
    engine = EdgeSpeechEngine(rate=settings["rate"])
    await engine.load_voices()

    controller = PlaybackController(
        engine,
        store,
        locale=settings["locale"],
        max_chars=settings["chunk_chars"],
        rewind_chars=settings["rewind_chars"],
    )
    done = asyncio.Event()

    def on_state(state: PlaybackState) -> None:
        print(f"  [{state.value}] {controller.position}")
        if state == PlaybackState.ERROR:
            print(f"Error: {controller.last_error}", file=sys.stderr)
        if state in (PlaybackState.IDLE, PlaybackState.ERROR):
            done.set()

    controller.add_listener(on_state)

    if not controller.play(document_id, offset):
        return controller.last_error is None

    keys: asyncio.Queue = asyncio.Queue()
    if sys.stdin.isatty():
        print(KEY_HELP)
        _start_key_reader(asyncio.get_running_loop(), keys)

    while not done.is_set():
        get_key = asyncio.ensure_future(keys.get())
        finished = asyncio.ensure_future(done.wait())
        completed, pending = await asyncio.wait({get_key, finished}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        if get_key in completed:
            _handle_key(controller, get_key.result())

    ok = controller.state != PlaybackState.ERROR and controller.last_error is None
    controller.stop()
    return ok


def cmd_read(args):
    """Read a page aloud."""
    store = DocumentStore.load(SESSION_DIR)
    document_id = _resolve_document(store, args.page)
    settings = load_settings(SESSION_DIR)

    if store.active_id != document_id:
        store.active_id = document_id
        store.save()

    text = store.get_text(document_id)
    if not text.strip():
        print(f"Nothing to read in {document_id}.")
        return

    print(f"Reading {document_id} ({settings['locale']}, rate {settings['rate']})")
    ok = asyncio.run(_read_aloud(store, settings, document_id, args.offset))
    if not ok:
        raise SystemExit(1)


def cmd_voices(args):
    """List available voices."""
    filter_str = args.filter
    if filter_str is None and not args.all:
        filter_str = load_settings(SESSION_DIR)["locale"]
    voices = asyncio.run(list_voices(filter_str))
    if not voices:
        print("No matching voices found.")
        return
    print("Available voices:")
    for v in voices:
        print(f"  {v['ShortName']:<32} {v.get('Locale', '')}")


def cmd_set(args):
    """Update a setting."""
    try:
        _, value = update_setting(SESSION_DIR, args.key, args.value)
    except SettingsError as e:
        _fail(str(e))
    print(f"Updated: {args.key} → {value}")


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="page-reader",
        description="Page Reader — read recognized pages aloud with pause, resume and rewind",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log playback details")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # add
    add_parser = subparsers.add_parser("add", help="Add a page from a text file")
    add_parser.add_argument("file", help="Path to a UTF-8 text file")
    add_parser.set_defaults(func=cmd_add)

    # scan
    scan_parser = subparsers.add_parser("scan", help="Recognize a page image and add it")
    scan_parser.add_argument("image", help="Path to the page image")
    scan_parser.add_argument("--mime", help="Image MIME type (guessed from the extension by default)")
    scan_parser.set_defaults(func=cmd_scan)

    # pages
    pages_parser = subparsers.add_parser("pages", help="List pages")
    pages_parser.set_defaults(func=cmd_pages)

    # remove
    remove_parser = subparsers.add_parser("remove", help="Remove a page")
    remove_parser.add_argument("page", help="Page id")
    remove_parser.set_defaults(func=cmd_remove)

    # segments
    segments_parser = subparsers.add_parser("segments", help="Show how a page is split for reading")
    segments_parser.add_argument("page", nargs="?", help="Page id (default: active page)")
    segments_parser.set_defaults(func=cmd_segments)

    # read
    read_parser = subparsers.add_parser("read", help="Read a page aloud")
    read_parser.add_argument("page", nargs="?", help="Page id (default: active page)")
    read_parser.add_argument("--offset", type=int, default=0, help="Start at this character offset")
    read_parser.set_defaults(func=cmd_read)

    # voices
    voices_parser = subparsers.add_parser("voices", help="List available voices")
    voices_parser.add_argument("--filter", help="Filter voices by substring (default: configured locale)")
    voices_parser.add_argument("--all", action="store_true", help="List every voice")
    voices_parser.set_defaults(func=cmd_voices)

    # set
    set_parser = subparsers.add_parser("set", help="Update a setting")
    set_parser.add_argument("key", help="locale, rate, chunk-chars, rewind-chars or ocr-url")
    set_parser.add_argument("value", help="New value")
    set_parser.set_defaults(func=cmd_set)

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if not args.command:
        parser.print_help()
        return

    args.func(args)
