"""Shared fixtures: a recording fake backend and small image payloads."""

import base64
import io

import pytest
from PIL import Image

from gemini_backend import GroundedReply, InlineBlob
from orchestrator import Orchestrator
from settings import KeyStore

REPLY_TEXT = """\
FACTS:
- Honeybees visit about 50 to 100 flowers per trip.
- A colony can hold up to 60,000 bees.
IMAGE_PROMPT:
A cutaway diagram of a beehive with labeled chambers.
"""


def png_data_url(color=(200, 30, 30)):
    buf = io.BytesIO()
    Image.new("RGB", (4, 4), color).save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("utf-8")


class FakeBackend:
    """Stands in for GeminiBackend and records every call by name."""

    def __init__(self, reply_text=REPLY_TEXT, chunks=None, image=b"\x89PNG-fake", mime="image/png"):
        self.reply_text = reply_text
        self.chunks = chunks or []
        self.image = image
        self.mime = mime
        self.errors = {}
        self.calls = []
        self.analysis_text = "A red square."
        self.chat_text = "Hello from InfoGenius."
        self.transcript = "  how volcanoes form  "
        self.speech = b"\x00\x00\x00\x40"

    def _maybe_fail(self, name):
        if name in self.errors:
            raise self.errors[name]

    def names(self):
        return [call[0] for call in self.calls]

    async def generate_grounded_text(self, prompt, location=None):
        self.calls.append(("research", prompt, location))
        self._maybe_fail("research")
        return GroundedReply(text=self.reply_text, grounding_chunks=list(self.chunks))

    async def generate_image(self, model, prompt, aspect_ratio, image_size=None):
        self.calls.append(("generate_image", model, prompt, aspect_ratio, image_size))
        self._maybe_fail("generate_image")
        return [InlineBlob(data=self.image, mime_type=self.mime)] if self.image else []

    async def edit_image(self, model, image_bytes, mime_type, instruction, aspect_ratio):
        self.calls.append(("edit_image", model, image_bytes, mime_type, instruction, aspect_ratio))
        self._maybe_fail("edit_image")
        return [InlineBlob(data=b"edited", mime_type="image/png")]

    async def analyze_image(self, image_bytes, mime_type, prompt):
        self.calls.append(("analyze_image", image_bytes, mime_type, prompt))
        self._maybe_fail("analyze_image")
        return self.analysis_text

    async def chat(self, message):
        self.calls.append(("chat", message))
        self._maybe_fail("chat")
        return self.chat_text

    async def transcribe(self, audio_bytes, mime_type):
        self.calls.append(("transcribe", audio_bytes, mime_type))
        self._maybe_fail("transcribe")
        return self.transcript

    async def synthesize_speech(self, text):
        self.calls.append(("synthesize_speech", text))
        self._maybe_fail("synthesize_speech")
        return self.speech


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def keys():
    return KeyStore("test-key")


@pytest.fixture
def orchestrator(backend, keys):
    return Orchestrator(backend, keys, location_timeout=0.05)


@pytest.fixture
def image_data_url():
    return png_data_url()


@pytest.fixture
def make_backend():
    return FakeBackend
