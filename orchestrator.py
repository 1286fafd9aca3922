"""
Flow orchestration for a single InfoGenius session.

    generate:  IDLE -> RESEARCHING -> SYNTHESIZING -> IDLE
    edit:      IDLE -> EDITING_IMAGE -> IDLE
    analyze:   IDLE -> ANALYZING_IMAGE -> IDLE

Only one flow runs at a time. A flow requested while another is active is
ignored, not queued. Flask serves each request on its own thread with its
own event loop, so claiming the idle state happens under a lock. Backend
failures are caught here, classified into a single user-facing message and
never retried.
"""

import logging
import threading
from enum import Enum

from audio import playback_payload
from gemini_backend import InfoGeniusError, MissingApiKeyError
from imaging import InvalidPayloadError, edit as edit_image, sniff_image, synthesize
from research import research
from session_history import (
    AnalysisResult,
    AspectRatio,
    GeneratedImage,
    GenerationRequest,
    History,
    ImageModel,
)
from system_prompt import (
    ANALYSIS_PROMPT,
    DEFAULT_ANALYSIS_CONTEXT,
    DEFAULT_ANALYSIS_QUESTION,
    Language,
)

logger = logging.getLogger(__name__)

VALIDATION_MESSAGE = "Please enter a topic or upload an image to analyze."
EMPTY_EDIT_MESSAGE = "Please describe the modification."
INVALID_IMAGE_MESSAGE = "The uploaded file is not a readable image."
NO_ANALYSIS_TEXT = "No analysis available."
NO_CHAT_TEXT = "I couldn't generate a response."

ACCESS_MESSAGES = {
    "generate": "Access denied. A paid Gemini API key is required for Pro features. Please re-select your key.",
    "edit": "Access denied. Please select a valid API key with billing enabled.",
}
FAILURE_MESSAGES = {
    "generate": "The service is temporarily unavailable. Please try again.",
    "edit": "Modification failed. Try a different command.",
    "transcribe": "Transcription failed. Please try again.",
    "chat": "Sorry, I couldn't reach the assistant. Please try again.",
    "speech": "Speech playback failed. Please try again.",
}
ACCESS_MARKERS = ("Requested entity was not found", "403", "404")


class FlowState(str, Enum):
    IDLE = "idle"
    RESEARCHING = "researching"
    SYNTHESIZING = "synthesizing"
    EDITING_IMAGE = "editing_image"
    ANALYZING_IMAGE = "analyzing_image"


STEPS = {
    FlowState.RESEARCHING: 1,
    FlowState.SYNTHESIZING: 2,
    FlowState.EDITING_IMAGE: 2,
}


class InputValidationError(InfoGeniusError):
    pass


class FlowError(InfoGeniusError):
    """A classified failure of an auxiliary call (chat, transcription, speech)."""


def is_access_error(exc):
    if isinstance(exc, MissingApiKeyError):
        return True
    if getattr(exc, "code", None) in (403, 404):
        return True
    text = str(exc)
    return any(marker in text for marker in ACCESS_MARKERS)


def classify_error(exc, flow="generate"):
    """Return ``(user_message, access_denied)`` for a failure in ``flow``."""
    if is_access_error(exc):
        return ACCESS_MESSAGES.get(flow, ACCESS_MESSAGES["generate"]), True
    return FAILURE_MESSAGES.get(flow, FAILURE_MESSAGES["generate"]), False


class Orchestrator:
    def __init__(self, backend, keys, location_timeout=5.0):
        self.backend = backend
        self.keys = keys
        self.location_timeout = location_timeout
        self.history = History()
        self.state = FlowState.IDLE
        self.loading_message = ""
        self.error = None
        self.facts = []
        self.citations = []
        self.analysis = None
        self.selected_image = None
        self._lock = threading.Lock()

    @property
    def is_loading(self):
        return self.state is not FlowState.IDLE

    @property
    def step(self):
        return STEPS.get(self.state, 0)

    @property
    def current(self):
        """The displayed result: the analysis if there is one, else the latest image."""
        if self.analysis is not None:
            return self.analysis
        return self.history.latest

    def _enter(self, state, message):
        previous, self.state = self.state, state
        self.loading_message = message
        self.error = None
        logger.info("%s -> %s", previous.value, state.value)

    def _claim(self, flow, state, message):
        """Move from IDLE to ``state``; False if another flow holds the session."""
        with self._lock:
            if self.is_loading:
                busy = self.state
            else:
                busy = None
                self._enter(state, message)
        if busy is not None:
            logger.info("%s ignored: %s in progress", flow, busy.value)
            return False
        return True

    def _finish(self):
        with self._lock:
            previous, self.state = self.state, FlowState.IDLE
            self.loading_message = ""
        logger.info("%s -> %s", previous.value, FlowState.IDLE.value)

    def _record_failure(self, exc, flow):
        message, access_denied = classify_error(exc, flow)
        if access_denied:
            self.keys.invalidate()
        return message

    def _reject_invalid(self, message):
        self.error = message
        raise InputValidationError(message)

    async def generate(self, request: GenerationRequest):
        """Research ``request.topic`` and synthesize an infographic for it.

        A request carrying ``source_image`` is routed to :meth:`analyze` with
        the topic as the question. Returns the new record, the analysis, or
        None when the request was ignored or failed.
        """
        if self.is_loading:
            logger.info("generate ignored: %s in progress", self.state.value)
            return None
        if not request.is_valid():
            self._reject_invalid(VALIDATION_MESSAGE)

        if request.source_image:
            return await self.analyze(
                request.source_image, request.topic, request.analysis_context, request.language,
            )

        if not self._claim("generate", FlowState.RESEARCHING, "Researching topic with Search & Maps..."):
            return None
        self.facts = []
        self.citations = []
        self.analysis = None

        locate = None
        if request.location is not None:
            async def locate():
                return request.location

        try:
            result = await research(
                self.backend,
                request.topic,
                request.level,
                request.style,
                request.language,
                locate=locate,
                location_timeout=self.location_timeout,
            )
            self.facts = list(result.facts)
            self.citations = list(result.citations)

            self._enter(FlowState.SYNTHESIZING, f"Designing Infographic ({request.image_size.value})...")
            image_data = await synthesize(
                self.backend, result.image_prompt, request.model, request.aspect_ratio, request.image_size,
            )
        except Exception as e:
            logger.exception("Generation failed for %r", request.topic)
            self.error = self._record_failure(e, "generate")
            return None
        finally:
            self._finish()

        record = GeneratedImage(
            image_data=image_data,
            prompt=request.topic,
            level=request.level,
            style=request.style,
            language=request.language,
            aspect_ratio=request.aspect_ratio,
            model=request.model,
            image_size=request.image_size,
        )
        self.history.add(record)
        return record

    async def edit(self, instruction, model=None, aspect_ratio=None):
        """Apply ``instruction`` to the most recent image."""
        if self.is_loading:
            logger.info("edit ignored: %s in progress", self.state.value)
            return None
        current = self.history.latest
        if current is None:
            return None
        instruction = (instruction or "").strip()
        if not instruction:
            self._reject_invalid(EMPTY_EDIT_MESSAGE)

        model = ImageModel(model or current.model or ImageModel.FLASH)
        aspect_ratio = AspectRatio(aspect_ratio or current.aspect_ratio or AspectRatio.WIDE)

        if not self._claim("edit", FlowState.EDITING_IMAGE, f'Processing Modification: "{instruction}"...'):
            return None
        try:
            image_data = await edit_image(self.backend, current.image_data, instruction, model, aspect_ratio)
        except Exception as e:
            logger.exception("Edit failed")
            self.error = self._record_failure(e, "edit")
            return None
        finally:
            self._finish()

        record = GeneratedImage(
            image_data=image_data,
            prompt=instruction,
            level=current.level,
            style=current.style,
            language=current.language,
            aspect_ratio=current.aspect_ratio,
            model=model,
        )
        self.history.add(record)
        self.analysis = None
        return record

    async def analyze(self, image, question="", context="", language=Language.ENGLISH):
        """Produce a written report about an uploaded image."""
        if self.is_loading:
            logger.info("analyze ignored: %s in progress", self.state.value)
            return None
        if not image:
            self._reject_invalid(VALIDATION_MESSAGE)
        try:
            raw, mime = sniff_image(image)
        except InvalidPayloadError:
            self._reject_invalid(INVALID_IMAGE_MESSAGE)

        if not self._claim("analyze", FlowState.ANALYZING_IMAGE, "Analyzing image content..."):
            return None
        self.facts = []
        self.citations = []
        self.analysis = None
        self.selected_image = image

        prompt = ANALYSIS_PROMPT.format(
            language=Language(language).value,
            question=(question or "").strip() or DEFAULT_ANALYSIS_QUESTION,
            context=(context or "").strip() or DEFAULT_ANALYSIS_CONTEXT,
        )
        try:
            report = await self.backend.analyze_image(raw, mime, prompt)
        except Exception as e:
            logger.exception("Image analysis failed")
            self.error = self._record_failure(e, "generate")
            return None
        finally:
            self._finish()

        self.analysis = AnalysisResult(report=report or NO_ANALYSIS_TEXT, source_image=image)
        return self.analysis

    def restore(self, image_id):
        """Bring a history record back to the front without duplicating it."""
        record = self.history.restore(image_id)
        if record is None:
            return None
        self.analysis = None
        self.selected_image = None
        return record

    def reset(self):
        self.history.clear()
        self.facts = []
        self.citations = []
        self.analysis = None
        self.selected_image = None
        self.error = None

    async def chat(self, message):
        try:
            reply = await self.backend.chat(message)
        except Exception as e:
            logger.exception("Chat failed")
            raise FlowError(self._record_failure(e, "chat")) from e
        return reply or NO_CHAT_TEXT

    async def transcribe(self, audio_bytes, mime_type="audio/webm"):
        try:
            return (await self.backend.transcribe(audio_bytes, mime_type)).strip()
        except Exception as e:
            logger.exception("Transcription failed")
            self.error = self._record_failure(e, "transcribe")
            raise FlowError(self.error) from e

    async def speak(self, text):
        try:
            pcm = await self.backend.synthesize_speech(text)
        except Exception as e:
            logger.exception("Speech synthesis failed")
            raise FlowError(self._record_failure(e, "speech")) from e
        if not pcm:
            raise FlowError(FAILURE_MESSAGES["speech"])
        return playback_payload(pcm)

    def snapshot(self):
        current = self.current
        if isinstance(current, AnalysisResult):
            current_view = {"kind": "analysis", **current.to_dict()}
        elif current is not None:
            current_view = {"kind": "image", **current.to_dict()}
        else:
            current_view = None
        return {
            "state": self.state.value,
            "step": self.step,
            "is_loading": self.is_loading,
            "loading_message": self.loading_message,
            "error": self.error,
            "has_valid_key": self.keys.has_valid_key,
            "facts": list(self.facts),
            "citations": [c.to_dict() for c in self.citations],
            "current": current_view,
            "selected_image": self.selected_image,
            "history": self.history.to_list(),
        }
