"""
Image synthesis adapter: prompt or (image, instruction) -> data URL.

Three model families:
  imagen-4.0-generate-001     dedicated image model, one image, no size, no true edit
  gemini-2.5-flash-image      multimodal generate_content, size ignored
  gemini-3-pro-image-preview  multimodal generate_content, size honored
"""

import base64
import binascii
import io
import logging
import re

from PIL import Image, UnidentifiedImageError

from gemini_backend import IMAGEN_MODELS, InfoGeniusError
from system_prompt import EDIT_FALLBACK_PREFIX

logger = logging.getLogger(__name__)

DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?:;[\w=.-]+)*;base64,", re.IGNORECASE)

DEFAULT_IMAGE_MIME = "image/png"
DEFAULT_EDIT_MIME = "image/jpeg"


class NoImageProducedError(InfoGeniusError):
    pass


class InvalidPayloadError(InfoGeniusError):
    pass


def to_data_url(data, mime_type):
    b64 = base64.b64encode(data).decode("utf-8")
    return f"data:{mime_type};base64,{b64}"


def split_data_url(payload, default_mime=DEFAULT_EDIT_MIME):
    """Return ``(raw_bytes, mime_type)`` for a data URL or bare base64 string."""
    match = DATA_URL_RE.match(payload)
    mime = default_mime
    if match:
        mime = match.group("mime") or default_mime
        payload = payload[match.end():]
    try:
        return base64.b64decode(payload, validate=True), mime
    except (binascii.Error, ValueError) as e:
        raise InvalidPayloadError(f"Invalid base64 payload: {e}") from e


def sniff_image(payload):
    """Decode an uploaded image and confirm it is one Pillow can open.

    Returns ``(raw_bytes, mime_type)`` with the mime type taken from the
    actual image format rather than the upload's claim.
    """
    raw, claimed = split_data_url(payload)
    try:
        with Image.open(io.BytesIO(raw)) as img:
            img.verify()
            fmt = img.format
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        raise InvalidPayloadError("Uploaded file is not a readable image") from e
    return raw, Image.MIME.get(fmt, claimed)


def _first_image(blobs):
    for blob in blobs:
        if blob.data:
            return to_data_url(blob.data, blob.mime_type or DEFAULT_IMAGE_MIME)
    raise NoImageProducedError("Failed to generate image output from model")


def _value(member):
    return getattr(member, "value", member)


async def synthesize(backend, prompt, model, aspect_ratio, image_size="1K"):
    model, aspect_ratio = _value(model), _value(aspect_ratio)
    size = None if model in IMAGEN_MODELS else _value(image_size)
    logger.info("Synthesizing with %s (%s, %s)", model, aspect_ratio, size or "default size")
    blobs = await backend.generate_image(model, prompt, aspect_ratio, size)
    return _first_image(blobs)


async def edit(backend, previous_image, instruction, model, aspect_ratio):
    """Edit ``previous_image`` (a data URL) with ``instruction``.

    The dedicated image model has no edit operation; for it this becomes a
    fresh generation from the instruction with a "modified version" prefix.
    """
    model, aspect_ratio = _value(model), _value(aspect_ratio)
    if model in IMAGEN_MODELS:
        logger.info("%s cannot edit; regenerating from instruction", model)
        return await synthesize(backend, EDIT_FALLBACK_PREFIX + instruction, model, aspect_ratio)

    raw, mime = split_data_url(previous_image)
    logger.info("Editing with %s (%s)", model, aspect_ratio)
    blobs = await backend.edit_image(model, raw, mime, instruction, aspect_ratio)
    return _first_image(blobs)
