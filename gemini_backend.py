"""
Gemini backend: every provider call InfoGenius makes goes through here.

A fresh ``genai.Client`` is built per request from the ``KeyStore`` so that a
re-selected key is picked up immediately. Responses are reduced to plain
Python values (text, grounding chunk dicts, inline blobs) before they leave
this module; provider errors (``google.genai.errors.APIError``) propagate
unchanged.
"""

import base64
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from google import genai
from google.genai import types
from google.genai.types import Modality

from settings import (
    CHAT_MODEL,
    RESEARCH_MODEL,
    TRANSCRIPTION_MODEL,
    TTS_MODEL,
    TTS_VOICE,
    VISION_MODEL,
    KeyStore,
)
from system_prompt import CHAT_SYSTEM_PROMPT, SPEECH_PROMPT, TRANSCRIBE_PROMPT

logger = logging.getLogger(__name__)

IMAGEN_MODELS = {"imagen-4.0-generate-001"}
SIZED_IMAGE_MODELS = {"gemini-3-pro-image-preview"}


class InfoGeniusError(Exception):
    pass


class MissingApiKeyError(InfoGeniusError):
    pass


@dataclass
class GroundedReply:
    text: str
    grounding_chunks: List[dict] = field(default_factory=list)


@dataclass
class InlineBlob:
    data: bytes
    mime_type: Optional[str] = None


def _first_candidate_parts(response):
    candidates = getattr(response, "candidates", None) or []
    if not candidates or candidates[0].content is None:
        return []
    return candidates[0].content.parts or []


def _inline_blobs(response):
    blobs = []
    for part in _first_candidate_parts(response):
        inline = getattr(part, "inline_data", None)
        if inline and inline.data:
            data = inline.data
            if isinstance(data, str):
                data = base64.b64decode(data)
            blobs.append(InlineBlob(data=data, mime_type=inline.mime_type))
    return blobs


def _grounding_chunks(response):
    """Flatten grounding metadata into ``{"web"|"maps": {"uri", "title"}}`` dicts."""
    chunks = []
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return chunks
    metadata = getattr(candidates[0], "grounding_metadata", None)
    for chunk in getattr(metadata, "grounding_chunks", None) or []:
        for kind in ("web", "maps"):
            source = getattr(chunk, kind, None)
            if source is not None:
                chunks.append({
                    kind: {
                        "uri": getattr(source, "uri", None),
                        "title": getattr(source, "title", None),
                    }
                })
                break
    return chunks


class GeminiBackend:
    def __init__(self, keys: KeyStore, http_timeout_ms: int = 300_000):
        self.keys = keys
        self.http_timeout_ms = http_timeout_ms

    def _client(self):
        api_key = self.keys.api_key
        if not api_key:
            raise MissingApiKeyError("No Gemini API key selected")
        return genai.Client(
            api_key=api_key,
            http_options=types.HttpOptions(timeout=self.http_timeout_ms),
        )

    async def generate_grounded_text(self, prompt, location=None) -> GroundedReply:
        tool_config = None
        if location is not None:
            latitude, longitude = location
            tool_config = types.ToolConfig(
                retrieval_config=types.RetrievalConfig(
                    lat_lng=types.LatLng(latitude=latitude, longitude=longitude),
                )
            )
        config = types.GenerateContentConfig(
            tools=[
                types.Tool(google_search=types.GoogleSearch()),
                types.Tool(google_maps=types.GoogleMaps()),
            ],
            tool_config=tool_config,
        )
        response = await self._client().aio.models.generate_content(
            model=RESEARCH_MODEL, contents=prompt, config=config,
        )
        return GroundedReply(text=response.text or "", grounding_chunks=_grounding_chunks(response))

    async def generate_image(self, model, prompt, aspect_ratio, image_size=None) -> List[InlineBlob]:
        client = self._client()

        if model in IMAGEN_MODELS:
            response = await client.aio.models.generate_images(
                model=model,
                prompt=prompt,
                config=types.GenerateImagesConfig(
                    number_of_images=1,
                    output_mime_type="image/jpeg",
                    aspect_ratio=aspect_ratio,
                ),
            )
            return [
                InlineBlob(data=generated.image.image_bytes, mime_type="image/jpeg")
                for generated in response.generated_images or []
                if generated.image and generated.image.image_bytes
            ]

        image_config_kwargs = {"aspect_ratio": aspect_ratio}
        if model in SIZED_IMAGE_MODELS and image_size:
            image_config_kwargs["image_size"] = image_size

        response = await client.aio.models.generate_content(
            model=model,
            contents=[types.Part.from_text(text=prompt)],
            config=types.GenerateContentConfig(
                response_modalities=[Modality.TEXT, Modality.IMAGE],
                image_config=types.ImageConfig(**image_config_kwargs),
            ),
        )
        return _inline_blobs(response)

    async def edit_image(self, model, image_bytes, mime_type, instruction, aspect_ratio) -> List[InlineBlob]:
        response = await self._client().aio.models.generate_content(
            model=model,
            contents=[
                types.Part.from_bytes(data=image_bytes, mime_type=mime_type),
                types.Part.from_text(text=instruction),
            ],
            config=types.GenerateContentConfig(
                response_modalities=[Modality.TEXT, Modality.IMAGE],
                image_config=types.ImageConfig(aspect_ratio=aspect_ratio),
            ),
        )
        return _inline_blobs(response)

    async def analyze_image(self, image_bytes, mime_type, prompt) -> str:
        response = await self._client().aio.models.generate_content(
            model=VISION_MODEL,
            contents=[
                types.Part.from_bytes(data=image_bytes, mime_type=mime_type),
                types.Part.from_text(text=prompt),
            ],
        )
        return response.text or ""

    async def chat(self, message) -> str:
        chat = self._client().aio.chats.create(
            model=CHAT_MODEL,
            config=types.GenerateContentConfig(system_instruction=CHAT_SYSTEM_PROMPT),
        )
        response = await chat.send_message(message)
        return response.text or ""

    async def transcribe(self, audio_bytes, mime_type) -> str:
        response = await self._client().aio.models.generate_content(
            model=TRANSCRIPTION_MODEL,
            contents=[
                types.Part.from_bytes(data=audio_bytes, mime_type=mime_type),
                types.Part.from_text(text=TRANSCRIBE_PROMPT),
            ],
        )
        return response.text or ""

    async def synthesize_speech(self, text) -> Optional[bytes]:
        """Return raw PCM16 little-endian mono audio at 24 kHz, or None."""
        response = await self._client().aio.models.generate_content(
            model=TTS_MODEL,
            contents=SPEECH_PROMPT.format(text=text),
            config=types.GenerateContentConfig(
                response_modalities=[Modality.AUDIO],
                speech_config=types.SpeechConfig(
                    voice_config=types.VoiceConfig(
                        prebuilt_voice_config=types.PrebuiltVoiceConfig(voice_name=TTS_VOICE),
                    ),
                ),
            ),
        )
        blobs = _inline_blobs(response)
        if not blobs:
            logger.warning("Speech response carried no audio part")
            return None
        return blobs[0].data
