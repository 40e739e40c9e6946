"""Configuration constants and helpers for voxsurvey."""

import os
from pathlib import Path

DEFAULT_PORT: int = 7870

VOXSURVEY_DIR: Path = Path.home() / ".voxsurvey"
PID_FILE: Path = VOXSURVEY_DIR / "server.pid"

QUESTION_BANK_PATH: Path = Path(
    os.environ.get(
        "VOXSURVEY_QUESTION_BANK",
        str(Path(__file__).parent / "data" / "questions.json"),
    )
)


def get_port() -> int:
    """Return the server port from VOXSURVEY_PORT env var, or DEFAULT_PORT."""
    raw = os.environ.get("VOXSURVEY_PORT")
    if raw is not None:
        try:
            return int(raw)
        except ValueError:
            return DEFAULT_PORT
    return DEFAULT_PORT


# --- Response store (persistence API) ---

RESPONSE_STORE_URL: str = os.environ.get(
    "VOXSURVEY_RESPONSE_STORE_URL", "http://localhost:5000"
)
RESPONSE_STORE_TIMEOUT: float = float(
    os.environ.get("VOXSURVEY_RESPONSE_STORE_TIMEOUT", "10.0")
)


# --- ElevenLabs TTS (English, on-device pipeline) ---

ELEVENLABS_API_KEY: str = os.environ.get("VOXSURVEY_ELEVENLABS_API_KEY", "")
ELEVENLABS_BASE_URL: str = os.environ.get(
    "VOXSURVEY_ELEVENLABS_BASE_URL", "https://api.elevenlabs.io"
)
TTS_VOICE_ID: str = os.environ.get("VOXSURVEY_TTS_VOICE_ID", "21m00Tcm4TlvDq8ikWAM")
TTS_MODEL: str = os.environ.get("VOXSURVEY_TTS_MODEL", "eleven_turbo_v2_5")
TTS_TIMEOUT: float = float(os.environ.get("VOXSURVEY_TTS_TIMEOUT", "10.0"))
HEALTH_CHECK_INTERVAL: float = float(
    os.environ.get("VOXSURVEY_HEALTH_CHECK_INTERVAL", "60.0")
)


# --- Azure Speech (cloud REST + SDK backends) ---

AZURE_SPEECH_KEY: str = os.environ.get("VOXSURVEY_AZURE_SPEECH_KEY", "")
AZURE_SPEECH_REGION: str = os.environ.get("VOXSURVEY_AZURE_SPEECH_REGION", "southeastasia")
AZURE_TIMEOUT: float = float(os.environ.get("VOXSURVEY_AZURE_TIMEOUT", "30.0"))
AZURE_VOICE_EN: str = os.environ.get("VOXSURVEY_AZURE_VOICE_EN", "en-US-JennyNeural")
AZURE_VOICE_KM: str = os.environ.get("VOXSURVEY_AZURE_VOICE_KM", "km-KH-SreymomNeural")


# --- Local Whisper-compatible recognizer (on-device backend) ---

WHISPER_BASE_URL: str = os.environ.get(
    "VOXSURVEY_WHISPER_BASE_URL", "http://localhost:8178"
)
WHISPER_MODEL: str = os.environ.get("VOXSURVEY_WHISPER_MODEL", "whisper-1")
WHISPER_API_KEY: str = os.environ.get("VOXSURVEY_WHISPER_API_KEY", "")
WHISPER_TIMEOUT: float = float(os.environ.get("VOXSURVEY_WHISPER_TIMEOUT", "15.0"))


# --- Audio capture ---

AUDIO_SAMPLE_RATE: int = int(os.environ.get("VOXSURVEY_AUDIO_SAMPLE_RATE", "16000"))
SILENCE_THRESHOLD: float = float(
    os.environ.get("VOXSURVEY_SILENCE_THRESHOLD", "0.01")
)  # RMS amplitude (0.0-1.0) below which a chunk counts as silence.
LISTEN_ONSET_TIMEOUT: float = float(
    os.environ.get("VOXSURVEY_LISTEN_ONSET_TIMEOUT", "8.0")
)  # Seconds to wait for the first speech before giving up.
MAX_LISTEN_DURATION: float = float(
    os.environ.get("VOXSURVEY_MAX_LISTEN_DURATION", "10.0")
)
TRAILING_SILENCE: float = float(os.environ.get("VOXSURVEY_TRAILING_SILENCE", "2.0"))


# --- Interaction timing and retry ceilings ---

AUTO_RECORD_DELAY: float = float(
    os.environ.get("VOXSURVEY_AUTO_RECORD_DELAY", "0.5")
)  # Pause between the end of a prompt and automatic recording.
SETTLE_DELAY: float = float(
    os.environ.get("VOXSURVEY_SETTLE_DELAY", "0.3")
)  # Pause after a final result before speaking the confirmation.
MAX_LISTEN_RETRIES: int = int(os.environ.get("VOXSURVEY_MAX_LISTEN_RETRIES", "2"))
MAX_RE_RECORDS: int = int(os.environ.get("VOXSURVEY_MAX_RE_RECORDS", "3"))
MAX_CONFIRMATION_RETRIES: int = int(
    os.environ.get("VOXSURVEY_MAX_CONFIRMATION_RETRIES", "1")
)


# --- Matching ---

MATCH_THRESHOLD_EN: float = float(os.environ.get("VOXSURVEY_MATCH_THRESHOLD_EN", "0.4"))
MATCH_THRESHOLD_KM: float = float(os.environ.get("VOXSURVEY_MATCH_THRESHOLD_KM", "0.5"))
