"""All magic numbers and configuration constants."""

VERSION = "0.1.0"

# Pacing
SEGMENT_PAUSE_SECONDS = 0.3         # pause between narrated segments
CHUNK_PAUSE_SECONDS = 0.1           # pause between local-engine chunks
LOCAL_SETTLE_DELAY_SECONDS = 0.1    # local engine reset before a new utterance

# Local speech engine
LOCAL_CHUNK_LENGTH = 200            # chars; local engine truncates long utterances
LOCAL_BASE_WPM = 200                # words per minute at rate 1.0

# Remote playback
MIN_PLAYBACK_RATE = 0.5             # remote rate is approximated by playback speed
MAX_PLAYBACK_RATE = 2.0

# ElevenLabs
ELEVENLABS_API_URL = "https://api.elevenlabs.io/v1"
ELEVENLABS_MODEL = "eleven_turbo_v2"
ELEVENLABS_STABILITY = 0.5
ELEVENLABS_SIMILARITY_BOOST = 0.75
ELEVENLABS_STYLE = 0.0
REMOTE_REQUEST_TIMEOUT = 30.0       # seconds, transport-level bound only

# Edge neural voices
TTS_RETRY_COUNT = 3                 # max attempts per synthesis request
TTS_RETRY_BASE_DELAY = 1.0          # seconds, base delay for exponential backoff

DEFAULT_REMOTE_PROVIDER = "elevenlabs"
FALLBACK_REMOTE_PROVIDER = "edge"
CONFIG_ENV_VAR = "NARRIVA_CONFIG"
