"""GeminiBackend against a mocked google-genai client (no network)."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from gemini_backend import GeminiBackend, InlineBlob, MissingApiKeyError
from settings import KeyStore


def _response(parts=None, text="", chunks=None):
    candidate = SimpleNamespace(
        content=SimpleNamespace(parts=parts or []),
        grounding_metadata=SimpleNamespace(grounding_chunks=chunks),
    )
    return SimpleNamespace(candidates=[candidate], text=text)


def _image_part(data=b"png", mime="image/png"):
    return SimpleNamespace(inline_data=SimpleNamespace(data=data, mime_type=mime), text=None)


def _text_part(text):
    return SimpleNamespace(inline_data=None, text=text)


@pytest.fixture
def client_cls():
    with patch("gemini_backend.genai.Client") as client_cls:
        client = client_cls.return_value
        client.aio.models.generate_content = AsyncMock(return_value=_response())
        client.aio.models.generate_images = AsyncMock()
        yield client_cls


@pytest.fixture
def gemini(client_cls):
    return GeminiBackend(KeyStore("key-one"), http_timeout_ms=1234)


@pytest.mark.asyncio
async def test_missing_key_raises_before_any_client(client_cls):
    backend = GeminiBackend(KeyStore(None))
    with pytest.raises(MissingApiKeyError):
        await backend.chat("hello")
    client_cls.assert_not_called()


@pytest.mark.asyncio
async def test_fresh_client_per_call_with_current_key(gemini, client_cls):
    await gemini.analyze_image(b"img", "image/png", "describe")
    gemini.keys.select("key-two")
    await gemini.analyze_image(b"img", "image/png", "describe")

    keys_used = [call.kwargs["api_key"] for call in client_cls.call_args_list]
    assert keys_used == ["key-one", "key-two"]
    assert client_cls.call_args.kwargs["http_options"].timeout == 1234


@pytest.mark.asyncio
async def test_grounded_text_flattens_chunks_and_sets_location(gemini, client_cls):
    models = client_cls.return_value.aio.models
    models.generate_content.return_value = _response(
        text="FACTS:\n- x",
        chunks=[
            SimpleNamespace(web=SimpleNamespace(uri="https://a", title="A"), maps=None),
            SimpleNamespace(web=None, maps=SimpleNamespace(uri="https://m", title="M")),
        ],
    )

    reply = await gemini.generate_grounded_text("prompt", location=(10.0, 20.0))

    assert reply.text == "FACTS:\n- x"
    assert reply.grounding_chunks == [
        {"web": {"uri": "https://a", "title": "A"}},
        {"maps": {"uri": "https://m", "title": "M"}},
    ]
    config = models.generate_content.call_args.kwargs["config"]
    assert len(config.tools) == 2
    assert config.tool_config.retrieval_config.lat_lng.latitude == 10.0


@pytest.mark.asyncio
async def test_grounded_text_without_location(gemini, client_cls):
    await gemini.generate_grounded_text("prompt")
    config = client_cls.return_value.aio.models.generate_content.call_args.kwargs["config"]
    assert config.tool_config is None


@pytest.mark.asyncio
async def test_image_size_only_sent_for_pro_model(gemini, client_cls):
    models = client_cls.return_value.aio.models
    models.generate_content.return_value = _response(parts=[_text_part("here"), _image_part()])

    blobs = await gemini.generate_image("gemini-3-pro-image-preview", "p", "16:9", "4K")
    assert blobs == [InlineBlob(data=b"png", mime_type="image/png")]
    assert models.generate_content.call_args.kwargs["config"].image_config.image_size == "4K"

    await gemini.generate_image("gemini-2.5-flash-image", "p", "16:9", "4K")
    image_config = models.generate_content.call_args.kwargs["config"].image_config
    assert image_config.image_size is None
    assert image_config.aspect_ratio == "16:9"


@pytest.mark.asyncio
async def test_dedicated_model_uses_generate_images(gemini, client_cls):
    models = client_cls.return_value.aio.models
    models.generate_images.return_value = SimpleNamespace(
        generated_images=[SimpleNamespace(image=SimpleNamespace(image_bytes=b"jpg"))]
    )

    blobs = await gemini.generate_image("imagen-4.0-generate-001", "p", "9:16", "4K")

    assert blobs == [InlineBlob(data=b"jpg", mime_type="image/jpeg")]
    models.generate_content.assert_not_called()
    config = models.generate_images.call_args.kwargs["config"]
    assert config.number_of_images == 1
    assert config.aspect_ratio == "9:16"


@pytest.mark.asyncio
async def test_speech_returns_first_audio_part(gemini, client_cls):
    models = client_cls.return_value.aio.models
    models.generate_content.return_value = _response(parts=[_image_part(b"\x01\x02", "audio/L16;rate=24000")])
    assert await gemini.synthesize_speech("hi") == b"\x01\x02"

    models.generate_content.return_value = _response(parts=[])
    assert await gemini.synthesize_speech("hi") is None


@pytest.mark.asyncio
async def test_chat_sends_single_message(gemini, client_cls):
    chat = MagicMock()
    chat.send_message = AsyncMock(return_value=SimpleNamespace(text="answer"))
    client_cls.return_value.aio.chats.create.return_value = chat

    assert await gemini.chat("question") == "answer"
    chat.send_message.assert_awaited_once_with("question")
