import anyio
import pytest

from conftest import FakeRecognizer, FakeSynthesizer
from kisanmitra.errors import CapabilityUnavailable
from kisanmitra.services import speech
from kisanmitra.services.speech import (
    VOICE_INPUT_UNSUPPORTED,
    VOICE_OUTPUT_UNSUPPORTED,
    GTTSSynthesizer,
    SpeechInputAdapter,
    SpeechOutputAdapter,
    Synthesizer,
)

pytestmark = pytest.mark.anyio


def collect(adapter):
    events = []
    adapter.subscribe(events.append)
    return events


# -- voice input -----------------------------------------------------------------

async def test_input_without_recognizer_is_unsupported():
    adapter = SpeechInputAdapter()

    assert adapter.supported is False
    with pytest.raises(CapabilityUnavailable) as excinfo:
        adapter.start()
    assert excinfo.value.message == VOICE_INPUT_UNSUPPORTED


async def test_single_shot_recognition():
    adapter = SpeechInputAdapter(FakeRecognizer(transcript="How much urea for paddy?"))
    events = collect(adapter)

    adapter.start()
    transcript = await adapter.accept_audio(b"clip")

    assert transcript == "How much urea for paddy?"
    assert [e.kind for e in events] == ["start", "result", "end"]
    assert events[1].transcript == "How much urea for paddy?"
    assert adapter.listening is False

    # a second clip after the utterance ended is ignored
    assert await adapter.accept_audio(b"clip") is None
    assert len(events) == 3


async def test_recognition_error_reports_and_stops():
    adapter = SpeechInputAdapter(FakeRecognizer(error=RuntimeError("not-allowed")))
    events = collect(adapter)

    adapter.start()
    await adapter.accept_audio(b"clip")

    assert [e.kind for e in events] == ["start", "error", "end"]
    assert events[1].error == (
        "Speech recognition error: not-allowed. Please ensure microphone access is granted."
    )
    assert adapter.listening is False


async def test_toggle_stops_listening_early():
    adapter = SpeechInputAdapter(FakeRecognizer())
    events = collect(adapter)

    adapter.toggle()
    adapter.toggle()

    assert adapter.listening is False
    assert [e.kind for e in events] == ["start", "end"]


async def test_transcript_after_early_stop_is_dropped():
    gate = anyio.Event()

    class SlowRecognizer(FakeRecognizer):
        async def transcribe(self, audio, mime_type, language_code):
            await gate.wait()
            return "late transcript"

    adapter = SpeechInputAdapter(SlowRecognizer())
    events = collect(adapter)
    adapter.start()

    async with anyio.create_task_group() as tg:
        tg.start_soon(adapter.accept_audio, b"clip")
        await anyio.sleep(0)
        adapter.stop()
        gate.set()

    assert [e.kind for e in events] == ["start", "end"]


# -- read aloud ------------------------------------------------------------------

async def test_output_without_synthesizer_is_unsupported():
    adapter = SpeechOutputAdapter()

    with pytest.raises(CapabilityUnavailable) as excinfo:
        await adapter.speak("hello")
    assert excinfo.value.message == VOICE_OUTPUT_UNSUPPORTED


async def test_speak_cancels_previous_utterance():
    synthesizer = FakeSynthesizer()
    adapter = SpeechOutputAdapter(synthesizer, language_code="bn-IN")
    events = collect(adapter)

    first = await adapter.speak("first answer")
    second = await adapter.speak("second answer")

    assert [e.kind for e in events] == ["start", "end", "start"]
    assert events[1].utterance_id == first.id
    assert adapter.current is second
    assert synthesizer.discarded == ["/tts/clip_0.mp3"]
    assert synthesizer.rendered[1] == ("second answer", "bn-IN", "/tts/clip_1.mp3")


async def test_empty_text_is_not_spoken():
    synthesizer = FakeSynthesizer()
    adapter = SpeechOutputAdapter(synthesizer)

    assert await adapter.speak("   ") is None
    assert synthesizer.rendered == []


async def test_finished_ignores_other_utterances():
    adapter = SpeechOutputAdapter(FakeSynthesizer())
    utterance = await adapter.speak("answer")

    adapter.finished("someone-else")
    assert adapter.speaking is True

    adapter.finished(utterance.id)
    assert adapter.speaking is False


async def test_toggle_stops_speech():
    adapter = SpeechOutputAdapter(FakeSynthesizer())

    await adapter.toggle("answer")
    assert adapter.speaking is True
    assert await adapter.toggle("answer") is None
    assert adapter.speaking is False


async def test_synthesis_error_is_reported():
    adapter = SpeechOutputAdapter(FakeSynthesizer(error=RuntimeError("gTTS unreachable")))
    events = collect(adapter)

    assert await adapter.speak("answer") is None

    assert [e.kind for e in events] == ["error"]
    assert events[0].error == "Text-to-speech error: gTTS unreachable"
    assert adapter.speaking is False


async def test_cancel_during_synthesis_discards_clip():
    gate = anyio.Event()
    started = anyio.Event()

    class SlowSynthesizer(Synthesizer):
        def __init__(self):
            self.discarded = []

        async def synthesize(self, text, language_code):
            started.set()
            await gate.wait()
            return "/tts/slow.mp3"

        def discard(self, audio_url):
            self.discarded.append(audio_url)

    synthesizer = SlowSynthesizer()
    adapter = SpeechOutputAdapter(synthesizer)
    events = collect(adapter)

    async with anyio.create_task_group() as tg:
        tg.start_soon(adapter.speak, "long answer")
        await started.wait()
        adapter.cancel()
        gate.set()

    assert events == []
    assert adapter.speaking is False
    assert synthesizer.discarded == ["/tts/slow.mp3"]


async def test_gtts_synthesizer_writes_clip(tmp_path, monkeypatch):
    rendered = []

    class FakeGTTS:
        def __init__(self, text, lang):
            rendered.append((text, lang))

        def save(self, path):
            with open(path, "wb") as fh:
                fh.write(b"ID3")

    monkeypatch.setattr(speech, "gTTS", FakeGTTS)
    synthesizer = GTTSSynthesizer(str(tmp_path), url_prefix="/tts/")

    url = await synthesizer.synthesize("नमस्ते किसान", "hi-IN")

    assert url.startswith("/tts/tts_") and url.endswith(".mp3")
    assert rendered == [("नमस्ते किसान", "hi")]
    clip = tmp_path / url.rsplit("/", 1)[-1]
    assert clip.read_bytes() == b"ID3"

    synthesizer.discard(url)
    assert not clip.exists()
    synthesizer.discard(url)
