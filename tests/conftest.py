import json
from types import SimpleNamespace

import numpy as np
import pytest

from kisanmitra.services import gemini
from kisanmitra.services.camera import CameraAdapter
from kisanmitra.services.speech import Recognizer, Synthesizer


class FakeModels:
    """Stands in for `client.aio.models`; replies are consumed in order."""

    def __init__(self):
        self.content_replies = []
        self.image_replies = []
        self.content_calls = []
        self.image_calls = []

    async def generate_content(self, model, contents, config=None):
        self.content_calls.append({"model": model, "contents": contents, "config": config})
        reply = self.content_replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, dict):
            reply = json.dumps(reply)
        return SimpleNamespace(text=reply)

    async def generate_images(self, model, prompt, config=None):
        self.image_calls.append({"model": model, "prompt": prompt, "config": config})
        reply = self.image_replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return SimpleNamespace(
            generated_images=[SimpleNamespace(image=SimpleNamespace(image_bytes=b)) for b in reply]
        )


class FakeClient:
    def __init__(self):
        self.models = FakeModels()
        self.aio = SimpleNamespace(models=self.models)


class FakeRecognizer(Recognizer):
    def __init__(self, transcript="How do I control aphids on mustard?", error=None):
        self.transcript = transcript
        self.error = error
        self.calls = []

    async def transcribe(self, audio, mime_type, language_code):
        self.calls.append((audio, mime_type, language_code))
        if self.error:
            raise self.error
        return self.transcript


class FakeSynthesizer(Synthesizer):
    def __init__(self, error=None):
        self.error = error
        self.rendered = []
        self.discarded = []

    async def synthesize(self, text, language_code):
        if self.error:
            raise self.error
        url = f"/tts/clip_{len(self.rendered)}.mp3"
        self.rendered.append((text, language_code, url))
        return url

    def discard(self, audio_url):
        self.discarded.append(audio_url)


class FakeStream:
    def __init__(self, opened=True, frame_ok=True):
        self.opened = opened
        self.frame_ok = frame_ok
        self.released = False

    def isOpened(self):
        return self.opened

    def read(self):
        if not self.frame_ok:
            return False, None
        return True, np.full((8, 8, 3), 90, dtype=np.uint8)

    def release(self):
        self.released = True


class FakeCameraFactory:
    def __init__(self, stream_class=FakeStream, **stream_kwargs):
        self.stream_class = stream_class
        self.stream_kwargs = stream_kwargs
        self.streams = []

    def __call__(self, device_index):
        stream = self.stream_class(**self.stream_kwargs)
        self.streams.append(stream)
        return stream


def make_camera(stream_class=FakeStream, **stream_kwargs):
    factory = FakeCameraFactory(stream_class, **stream_kwargs)
    return CameraAdapter(device_index=0, capture_factory=factory), factory


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("GEMINI_API_KEY", "GEMINI_API_KEYS", "API_KEY", "ADVISORY_IMAGES",
                 "GEMINI_TEXT_MODEL", "GEMINI_IMAGE_MODEL"):
        monkeypatch.delenv(name, raising=False)
    yield
    gemini.set_client(None)


@pytest.fixture
def fake_client():
    client = FakeClient()
    gemini.set_client(client)
    yield client
    gemini.set_client(None)
