"""All magic numbers and configuration constants."""

DEFAULT_CHUNK_CHARS = 180           # chars: max length of one spoken segment
DEFAULT_REWIND_CHARS = 120          # chars: how far rewind() steps back
DEFAULT_LOCALE = "pt-BR"            # locale used when picking a voice
TTS_RATE = "+0%"                    # speech rate, relative string for edge-tts
TTS_RETRY_COUNT = 3                 # max synthesis attempts per segment
TTS_RETRY_BASE_DELAY = 1.0          # seconds: base delay for exponential backoff
TICKS_PER_SECOND = 10_000_000       # edge-tts boundary offsets are 100ns ticks
PLAYER_BINARY = "ffplay"            # player used for synthesized audio
DAILY_OCR_LIMIT = 3                 # free OCR scans per calendar day
OCR_TIMEOUT = 60                    # seconds: OCR request timeout
OCR_URL = "http://localhost:8888/.netlify/functions/ocr"
SESSION_DIR = "session"             # pages.json, settings.json, usage.json live here
VERSION = "0.1.0"
