"""In-memory registry of browser sessions and their adapters."""
import logging
import os
import time
from pathlib import Path
from typing import Callable, Dict, Optional

from .presentation import KisanSession
from .services.camera import CameraAdapter
from .services.gemini import env_flag, get_gemini_api_key
from .services.speech import GeminiRecognizer, GTTSSynthesizer, SpeechInputAdapter, SpeechOutputAdapter, Synthesizer

logger = logging.getLogger(__name__)

_synthesizer: Optional[Synthesizer] = None

DEFAULT_SESSION_TTL_SECONDS = 1800


def tts_dir() -> str:
    default = Path(__file__).resolve().parent / "static" / "tts"
    return os.getenv("TTS_DIR", str(default))


def session_ttl_seconds() -> float:
    """Idle time after which a session is closed; 0 or less keeps sessions forever."""
    try:
        return float(os.getenv("SESSION_TTL_SECONDS", str(DEFAULT_SESSION_TTL_SECONDS)))
    except ValueError:
        logger.warning("[sessions] invalid SESSION_TTL_SECONDS=%r; using %d",
                       os.getenv("SESSION_TTL_SECONDS"), DEFAULT_SESSION_TTL_SECONDS)
        return float(DEFAULT_SESSION_TTL_SECONDS)


def get_synthesizer() -> Optional[Synthesizer]:
    global _synthesizer
    if not env_flag("SPEECH_OUTPUT"):
        return None
    if _synthesizer is None:
        _synthesizer = GTTSSynthesizer(tts_dir(), url_prefix="/tts")
    return _synthesizer


def build_session() -> KisanSession:
    """Create a session wired to the adapters this deployment supports."""
    recognizer = None
    if env_flag("SPEECH_INPUT") and get_gemini_api_key():
        recognizer = GeminiRecognizer()
    try:
        device_index = int(os.getenv("CAMERA_DEVICE_INDEX", "0"))
    except ValueError:
        logger.warning("[sessions] invalid CAMERA_DEVICE_INDEX=%r; camera disabled", os.getenv("CAMERA_DEVICE_INDEX"))
        device_index = -1
    return KisanSession(
        speech_input=SpeechInputAdapter(recognizer),
        speech_output=SpeechOutputAdapter(get_synthesizer()),
        camera=CameraAdapter(device_index=device_index),
    )


class SessionStore:
    """Open sessions by id.

    Pages that go away without a DELETE are closed once they have been idle
    for `ttl_seconds`; expiry is checked whenever a session is created or
    looked up.
    """

    def __init__(
        self,
        factory: Callable[[], KisanSession] = build_session,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._factory = factory
        self._ttl = session_ttl_seconds() if ttl_seconds is None else ttl_seconds
        self._clock = clock
        self._sessions: Dict[str, KisanSession] = {}
        self._last_seen: Dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def _expired(self, session_id: str, now: float) -> bool:
        if self._ttl <= 0:
            return False
        return now - self._last_seen.get(session_id, now) > self._ttl

    def evict_idle(self) -> int:
        now = self._clock()
        idle = [sid for sid in self._sessions if self._expired(sid, now)]
        for session_id in idle:
            logger.info("[sessions] evicting idle session %s", session_id)
            self.close(session_id)
        return len(idle)

    def create(self) -> KisanSession:
        self.evict_idle()
        session = self._factory()
        self._sessions[session.session_id] = session
        self._last_seen[session.session_id] = self._clock()
        logger.info("[sessions] created %s (%d active)", session.session_id, len(self._sessions))
        return session

    def get(self, session_id: str) -> KisanSession:
        session = self._sessions[session_id]
        now = self._clock()
        if self._expired(session_id, now):
            logger.info("[sessions] session %s expired", session_id)
            self.close(session_id)
            raise KeyError(session_id)
        self._last_seen[session_id] = now
        return session

    def close(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        self._last_seen.pop(session_id, None)
        if session is None:
            return False
        session.close()
        logger.info("[sessions] closed %s", session_id)
        return True

    def close_all(self) -> None:
        for session_id in list(self._sessions):
            self.close(session_id)
