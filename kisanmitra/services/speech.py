"""
Speech Service
Voice input (single-shot transcription) and read-aloud output for the
advisory feature.

Both adapters publish `SpeechEvent`s to subscribers instead of exposing
shared flags; the presentation layer listens and mirrors listening/speaking
state. Without an engine either adapter raises `CapabilityUnavailable`.
"""
import logging
import os
import uuid
from pathlib import Path
from typing import Callable, List, Literal, Optional

import anyio
from google.genai import types
from gtts import gTTS
from pydantic import BaseModel

from ..errors import CapabilityUnavailable
from ..languages import DEFAULT_LANGUAGE_CODE, language_name, tts_language
from . import gemini

logger = logging.getLogger(__name__)

VOICE_INPUT_UNSUPPORTED = "Voice input is not supported in this browser."
VOICE_OUTPUT_UNSUPPORTED = "Text-to-speech is not supported in this browser."

TRANSCRIBE_PROMPT = (
    "Transcribe the farmer's spoken question in this audio clip exactly as spoken, in {language}. "
    "Return only the transcript text with no commentary. If nothing intelligible is said, return an empty string."
)


class SpeechEvent(BaseModel):
    kind: Literal["start", "end", "result", "error"]
    transcript: Optional[str] = None
    error: Optional[str] = None
    audio_url: Optional[str] = None
    utterance_id: Optional[str] = None


class _EventSource:
    def __init__(self):
        self._subscribers: List[Callable[[SpeechEvent], None]] = []

    def subscribe(self, callback: Callable[[SpeechEvent], None]) -> None:
        self._subscribers.append(callback)

    def _emit(self, event: SpeechEvent) -> None:
        for callback in list(self._subscribers):
            callback(event)


# ---------------------------------------------------------------------------
# Voice input
# ---------------------------------------------------------------------------

class Recognizer:
    """Speech-to-text engine."""

    async def transcribe(self, audio: bytes, mime_type: str, language_code: str) -> str:
        raise NotImplementedError


class GeminiRecognizer(Recognizer):
    """Transcribes a recorded clip with the Gemini text model."""

    def __init__(self, client=None):
        self._client = client

    async def transcribe(self, audio: bytes, mime_type: str, language_code: str) -> str:
        client = self._client or gemini.get_client()
        response = await client.aio.models.generate_content(
            model=gemini.text_model(),
            contents=[
                types.Part.from_bytes(data=audio, mime_type=mime_type),
                TRANSCRIBE_PROMPT.format(language=language_name(language_code)),
            ],
        )
        return (response.text or "").strip()


class SpeechInputAdapter(_EventSource):
    """Single-shot listener: one utterance in, one transcript out, then stop."""

    def __init__(self, recognizer: Optional[Recognizer] = None, language_code: str = DEFAULT_LANGUAGE_CODE):
        super().__init__()
        self.recognizer = recognizer
        self.language_code = language_code
        self.listening = False
        self._turn = 0

    @property
    def supported(self) -> bool:
        return self.recognizer is not None

    def start(self) -> None:
        if not self.supported:
            raise CapabilityUnavailable(VOICE_INPUT_UNSUPPORTED)
        if self.listening:
            return
        self._turn += 1
        self.listening = True
        self._emit(SpeechEvent(kind="start"))

    def stop(self) -> None:
        if not self.listening:
            return
        self.listening = False
        self._emit(SpeechEvent(kind="end"))

    def toggle(self) -> None:
        if self.listening:
            self.stop()
        else:
            self.start()

    async def accept_audio(self, audio: bytes, mime_type: str = "audio/webm") -> Optional[str]:
        """Transcribe the recorded utterance and stop listening.

        Audio that arrives while not listening is ignored, as is a transcript
        that comes back after the user stopped listening early.
        """
        if not self.listening:
            logger.debug("[speech] audio received while not listening; ignored")
            return None
        turn = self._turn
        try:
            transcript = await self.recognizer.transcribe(audio, mime_type, self.language_code)
        except Exception as e:
            logger.warning("[speech] recognition failed: %s", e)
            if turn == self._turn and self.listening:
                self._emit(SpeechEvent(
                    kind="error",
                    error=f"Speech recognition error: {e}. Please ensure microphone access is granted.",
                ))
                self.stop()
            return None

        if turn != self._turn or not self.listening:
            logger.debug("[speech] transcript arrived after listening stopped; dropped")
            return None
        if transcript:
            self._emit(SpeechEvent(kind="result", transcript=transcript))
        self.stop()
        return transcript or None


# ---------------------------------------------------------------------------
# Read aloud
# ---------------------------------------------------------------------------

class Synthesizer:
    """Text-to-speech engine returning a URL the client can play."""

    async def synthesize(self, text: str, language_code: str) -> str:
        raise NotImplementedError

    def discard(self, audio_url: str) -> None:
        pass


class GTTSSynthesizer(Synthesizer):
    """Renders MP3 clips with gTTS into a directory served under `url_prefix`."""

    def __init__(self, output_dir: str, url_prefix: str = "/tts"):
        self.output_dir = Path(output_dir)
        self.url_prefix = url_prefix.rstrip("/")
        os.makedirs(self.output_dir, exist_ok=True)

    def _render(self, text: str, lang: str, path: Path) -> None:
        gTTS(text=text, lang=lang).save(str(path))

    async def synthesize(self, text: str, language_code: str) -> str:
        filename = f"tts_{uuid.uuid4().hex}.mp3"
        path = self.output_dir / filename
        await anyio.to_thread.run_sync(self._render, text, tts_language(language_code), path)
        logger.debug("[speech] rendered %s (%d chars)", filename, len(text))
        return f"{self.url_prefix}/{filename}"

    def discard(self, audio_url: str) -> None:
        name = audio_url.rsplit("/", 1)[-1]
        try:
            (self.output_dir / name).unlink()
        except FileNotFoundError:
            pass


class Utterance(BaseModel):
    id: str
    text: str
    language_code: str
    audio_url: Optional[str] = None


class SpeechOutputAdapter(_EventSource):
    """Reads text aloud, one utterance at a time.

    `speak` always cancels the current utterance first. The utterance counts
    as audible from its `start` event until `finished()` or `cancel()`.
    """

    def __init__(self, synthesizer: Optional[Synthesizer] = None, language_code: str = DEFAULT_LANGUAGE_CODE):
        super().__init__()
        self.synthesizer = synthesizer
        self.language_code = language_code
        self.current: Optional[Utterance] = None
        self._pending: Optional[Utterance] = None

    @property
    def supported(self) -> bool:
        return self.synthesizer is not None

    @property
    def speaking(self) -> bool:
        return self.current is not None

    async def speak(self, text: str) -> Optional[Utterance]:
        if not self.supported:
            raise CapabilityUnavailable(VOICE_OUTPUT_UNSUPPORTED)
        self.cancel()
        if not text or not text.strip():
            return None

        utterance = Utterance(id=uuid.uuid4().hex, text=text, language_code=self.language_code)
        self._pending = utterance
        try:
            audio_url = await self.synthesizer.synthesize(text, utterance.language_code)
        except Exception as e:
            logger.warning("[speech] synthesis failed: %s", e)
            if self._pending is utterance:
                self._pending = None
                self._emit(SpeechEvent(kind="error", error=f"Text-to-speech error: {e}", utterance_id=utterance.id))
            return None

        if self._pending is not utterance:
            # cancelled or superseded while rendering
            self.synthesizer.discard(audio_url)
            return None
        self._pending = None
        utterance.audio_url = audio_url
        self.current = utterance
        self._emit(SpeechEvent(kind="start", audio_url=audio_url, utterance_id=utterance.id))
        return utterance

    def finished(self, utterance_id: Optional[str] = None) -> None:
        """Playback of the current utterance ended on the client."""
        if self.current is None:
            return
        if utterance_id and utterance_id != self.current.id:
            return
        done = self.current
        self.current = None
        self.synthesizer.discard(done.audio_url)
        self._emit(SpeechEvent(kind="end", utterance_id=done.id))

    def cancel(self) -> None:
        self._pending = None
        if self.current is not None:
            done = self.current
            self.current = None
            self.synthesizer.discard(done.audio_url)
            self._emit(SpeechEvent(kind="end", utterance_id=done.id))

    async def toggle(self, text: Optional[str]) -> Optional[Utterance]:
        if self.speaking:
            self.cancel()
            return None
        if not text:
            return None
        return await self.speak(text)
