"""
Presentation state for one browser session.

Each feature (advisory, market prices, soil analysis) is a small state
machine: idle -> loading -> success | error, and back to loading on the next
submit. A state is replaced wholesale on every transition so that loading
and error can never be set together. Soil analysis adds a camera
sub-machine (closed -> open -> captured) in front of its submit.

Every submit bumps the feature's generation; a reply that comes back for an
older generation (the feature was reset while the call was in flight) is
dropped instead of overwriting newer state.
"""
import logging
import uuid
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

import anyio
from pydantic import BaseModel

from .agents import NO_DATA_MESSAGE, get_advisory, get_market_prices, get_soil_analysis
from .errors import CapabilityUnavailable, KisanMitraError, UpstreamFailure, ValidationError
from .languages import DEFAULT_LANGUAGE_CODE, find_language, language_name
from .services.camera import CAMERA_READ_FAILED, CameraAdapter
from .services.gemini import to_data_uri
from .services.speech import SpeechEvent, SpeechInputAdapter, SpeechOutputAdapter

logger = logging.getLogger(__name__)

ADVISORY_FAILED = "Failed to get advisory. The AI expert might be busy. Please try again later."
UNKNOWN_ERROR = "An unknown error occurred."


class Status(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


class CameraStage(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    CAPTURED = "captured"


class FeatureState(BaseModel):
    status: Status = Status.IDLE
    payload: Any = None
    message: Optional[str] = None
    notice: Optional[str] = None
    generation: int = 0


def _dump(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump()
    if isinstance(value, list):
        return [_dump(v) for v in value]
    return value


class Feature:
    """One independently loading feature of the page."""

    # Replaces the upstream message shown for `UpstreamFailure`, if set.
    failure_message: Optional[str] = None

    def __init__(self, name: str):
        self.name = name
        self.state = FeatureState()
        self._generation = 0

    @property
    def loading(self) -> bool:
        return self.state.status == Status.LOADING

    def reset(self) -> None:
        self._generation += 1
        self.state = FeatureState(generation=self._generation)

    def reject(self, message: str) -> FeatureState:
        self.state = FeatureState(status=Status.ERROR, message=message, generation=self._generation)
        return self.state

    def _error_message(self, error: KisanMitraError) -> str:
        if isinstance(error, UpstreamFailure) and self.failure_message:
            return self.failure_message
        return error.message

    def _notice(self, payload: Any) -> Optional[str]:
        return None

    async def run(self, call: Callable[[], Awaitable[Any]]) -> FeatureState:
        if self.loading:
            return self.state
        self._generation += 1
        generation = self._generation
        self.state = FeatureState(status=Status.LOADING, generation=generation)

        try:
            payload = await call()
        except KisanMitraError as e:
            if generation != self._generation:
                logger.info("[%s] dropping stale error from generation %d", self.name, generation)
                return self.state
            logger.info("[%s] failed: %s", self.name, e)
            self.state = FeatureState(status=Status.ERROR, message=self._error_message(e), generation=generation)
            return self.state
        except Exception:
            if generation == self._generation:
                self.state = FeatureState(status=Status.ERROR, message=UNKNOWN_ERROR, generation=generation)
            raise

        if generation != self._generation:
            logger.info("[%s] dropping stale reply from generation %d (now %d)", self.name, generation, self._generation)
            return self.state
        self.state = FeatureState(
            status=Status.SUCCESS,
            payload=payload,
            notice=self._notice(payload),
            generation=generation,
        )
        return self.state

    def snapshot(self) -> Dict[str, Any]:
        return {
            "status": self.state.status.value,
            "payload": _dump(self.state.payload),
            "message": self.state.message,
            "notice": self.state.notice,
            "generation": self.state.generation,
        }


class AdvisoryFeature(Feature):
    failure_message = ADVISORY_FAILED

    def __init__(self):
        super().__init__("advisory")


class MarketFeature(Feature):
    def __init__(self):
        super().__init__("market")

    def _notice(self, payload: Any) -> Optional[str]:
        if not payload:
            return NO_DATA_MESSAGE
        return None


class SoilFeature(Feature):
    def __init__(self):
        super().__init__("soil")


class KisanSession:
    """Everything one page needs: inputs, feature states, speech and camera."""

    def __init__(
        self,
        session_id: Optional[str] = None,
        advisor: Optional[Callable[..., Awaitable[Any]]] = None,
        market: Optional[Callable[..., Awaitable[Any]]] = None,
        soil: Optional[Callable[..., Awaitable[Any]]] = None,
        speech_input: Optional[SpeechInputAdapter] = None,
        speech_output: Optional[SpeechOutputAdapter] = None,
        camera: Optional[CameraAdapter] = None,
        language_code: str = DEFAULT_LANGUAGE_CODE,
    ):
        self.session_id = session_id or f"sess_{uuid.uuid4().hex}"
        self._advisor = advisor or get_advisory
        self._market = market or get_market_prices
        self._soil = soil or get_soil_analysis

        self.language_code = language_code
        self.query = ""
        self.market_location = ""

        self.advisory = AdvisoryFeature()
        self.market = MarketFeature()
        self.soil = SoilFeature()

        self.speech_input = speech_input or SpeechInputAdapter()
        self.speech_output = speech_output or SpeechOutputAdapter()
        self.speech_input.language_code = language_code
        self.speech_output.language_code = language_code
        self.speech_input.subscribe(self._on_listen_event)
        self.speech_output.subscribe(self._on_speak_event)
        self.listening = False
        self.speaking = False
        self.audio_url: Optional[str] = None
        self.utterance_id: Optional[str] = None
        self.speech_error: Optional[str] = None

        self.camera = camera or CameraAdapter(device_index=-1)
        self.camera_stage = CameraStage.CLOSED
        self.captured_image: Optional[str] = None
        self.camera_error: Optional[str] = None
        self._closed = False

    # -- speech events ---------------------------------------------------

    def _on_listen_event(self, event: SpeechEvent) -> None:
        if event.kind == "start":
            self.listening = True
            self.speech_error = None
        elif event.kind == "end":
            self.listening = False
        elif event.kind == "result":
            self.query = event.transcript or ""
        elif event.kind == "error":
            self.speech_error = event.error

    def _on_speak_event(self, event: SpeechEvent) -> None:
        if event.kind == "start":
            self.speaking = True
            self.audio_url = event.audio_url
            self.utterance_id = event.utterance_id
        elif event.kind in ("end", "error"):
            self.speaking = False
            self.audio_url = None
            self.utterance_id = None
            if event.kind == "error":
                self.speech_error = event.error

    # -- language ----------------------------------------------------------

    def set_language(self, code: str) -> bool:
        """Switch language; ignored while listening or fetching advice."""
        if find_language(code) is None:
            raise ValidationError(f"Unsupported language: {code}")
        if self.listening or self.advisory.loading:
            return False
        self.language_code = code
        self.speech_input.language_code = code
        self.speech_output.language_code = code
        return True

    # -- advisory ----------------------------------------------------------

    def toggle_listening(self) -> None:
        try:
            self.speech_input.toggle()
        except CapabilityUnavailable as e:
            self.speech_error = e.message

    async def accept_audio(self, audio: bytes, mime_type: str = "audio/webm") -> Optional[str]:
        return await self.speech_input.accept_audio(audio, mime_type)

    async def _speak(self, text: str) -> None:
        try:
            await self.speech_output.speak(text)
        except CapabilityUnavailable as e:
            self.speech_error = e.message

    async def submit_advisory(self, query: Optional[str] = None) -> FeatureState:
        if self.advisory.loading:
            return self.advisory.state
        if query is not None:
            self.query = query
        if not self.query.strip():
            return self.advisory.reject("Please enter a question.")

        self.speech_output.cancel()
        question = self.query
        language = language_name(self.language_code)
        state = await self.advisory.run(lambda: self._advisor(question, language))
        if state.status == Status.SUCCESS and self.speech_output.supported:
            await self._speak(state.payload.text)
        return self.advisory.state

    async def toggle_read_aloud(self) -> None:
        text = None
        if self.advisory.state.status == Status.SUCCESS:
            text = self.advisory.state.payload.text
        try:
            await self.speech_output.toggle(text)
        except CapabilityUnavailable as e:
            self.speech_error = e.message

    def speech_ended(self, utterance_id: Optional[str] = None) -> None:
        self.speech_output.finished(utterance_id)

    # -- market prices -------------------------------------------------------

    async def submit_market_prices(self, location: Optional[str] = None) -> FeatureState:
        if self.market.loading:
            return self.market.state
        if location is not None:
            self.market_location = location
        if not self.market_location.strip():
            return self.market.reject("Please enter a location.")
        where = self.market_location
        return await self.market.run(lambda: self._market(where))

    # -- soil analysis -------------------------------------------------------

    async def open_camera(self) -> None:
        """Start a new capture; any previous picture and analysis are cleared."""
        self.camera_error = None
        self.captured_image = None
        self.soil.reset()
        if self._closed or self.camera_stage == CameraStage.OPEN:
            return
        try:
            await anyio.to_thread.run_sync(self.camera.open)
        except CapabilityUnavailable as e:
            self.camera_error = e.message
            self.camera_stage = CameraStage.CLOSED
            return
        if self._closed:
            # torn down while the device was opening
            self.camera.release()
            self.camera_stage = CameraStage.CLOSED
            return
        self.camera_stage = CameraStage.OPEN

    async def capture(self) -> None:
        if self.camera_stage != CameraStage.OPEN:
            return
        try:
            frame = await anyio.to_thread.run_sync(self.camera.read_jpeg)
        except CapabilityUnavailable as e:
            self.camera_error = e.message
            self.camera_stage = CameraStage.CLOSED
            return
        except Exception as e:
            logger.warning("[camera] capture failed: %s", e)
            self.camera_error = CAMERA_READ_FAILED
            self.camera_stage = CameraStage.CLOSED
            return
        finally:
            self.camera.release()
        self.captured_image = to_data_uri(frame, "image/jpeg")
        self.camera_stage = CameraStage.CAPTURED

    def cancel_camera(self) -> None:
        self.camera.release()
        if self.camera_stage == CameraStage.OPEN:
            self.camera_stage = CameraStage.CLOSED

    async def retake(self) -> None:
        if self.camera_stage != CameraStage.CAPTURED:
            return
        await self.open_camera()

    async def analyze_soil(self) -> FeatureState:
        if self.soil.loading:
            return self.soil.state
        if self.camera_stage != CameraStage.CAPTURED or not self.captured_image:
            return self.soil.reject("Please capture an image first.")
        image = self.captured_image
        language = language_name(self.language_code)
        return await self.soil.run(lambda: self._soil(image, language))

    # -- lifecycle -----------------------------------------------------------

    def close(self) -> None:
        """Tear down the session. Replies still in flight are dropped."""
        self._closed = True
        self.camera.release()
        if self.camera_stage == CameraStage.OPEN:
            self.camera_stage = CameraStage.CLOSED
        self.speech_input.stop()
        self.speech_output.cancel()
        for feature in (self.advisory, self.market, self.soil):
            feature.reset()

    def snapshot(self) -> Dict[str, Any]:
        soil = self.soil.snapshot()
        if self.soil.state.status == Status.SUCCESS:
            soil["recommendationItems"] = self.soil.state.payload.recommendation_items()
        return {
            "session_id": self.session_id,
            "language": self.language_code,
            "query": self.query,
            "market_location": self.market_location,
            "advisory": self.advisory.snapshot(),
            "market": self.market.snapshot(),
            "soil": soil,
            "speech": {
                "input_supported": self.speech_input.supported,
                "output_supported": self.speech_output.supported,
                "listening": self.listening,
                "speaking": self.speaking,
                "audio_url": self.audio_url,
                "utterance_id": self.utterance_id,
                "error": self.speech_error,
            },
            "camera": {
                "supported": self.camera.supported,
                "stage": self.camera_stage.value,
                "active": self.camera.active,
                "captured_image": self.captured_image,
                "error": self.camera_error,
            },
        }
