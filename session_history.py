"""
Session records and the in-memory image history.

History is most-recent-first and unbounded for the life of the process.
"""

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from system_prompt import AudienceLevel, Language, VisualStyle


class AspectRatio(str, Enum):
    WIDE = "16:9"
    TALL = "9:16"
    SQUARE = "1:1"


class ImageModel(str, Enum):
    FLASH = "gemini-2.5-flash-image"
    PRO = "gemini-3-pro-image-preview"
    IMAGEN4 = "imagen-4.0-generate-001"


class ImageSize(str, Enum):
    SIZE_1K = "1K"
    SIZE_2K = "2K"
    SIZE_4K = "4K"


def _now_ms():
    return int(time.time() * 1000)


def new_image_id():
    return f"{_now_ms()}-{uuid.uuid4().hex[:8]}"


def _text(data, field):
    value = data.get(field)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"{field} must be a string")
    return value.strip()


@dataclass
class GenerationRequest:
    topic: str = ""
    level: AudienceLevel = AudienceLevel.HIGH_SCHOOL
    style: VisualStyle = VisualStyle.DEFAULT
    language: Language = Language.ENGLISH
    aspect_ratio: AspectRatio = AspectRatio.WIDE
    model: ImageModel = ImageModel.FLASH
    image_size: ImageSize = ImageSize.SIZE_1K
    source_image: Optional[str] = None
    analysis_context: str = ""
    location: Optional[tuple] = None

    def __post_init__(self):
        self.level = AudienceLevel(self.level)
        self.style = VisualStyle(self.style)
        self.language = Language(self.language)
        self.aspect_ratio = AspectRatio(self.aspect_ratio)
        self.model = ImageModel(self.model)
        self.image_size = ImageSize(self.image_size)

    def is_valid(self):
        return bool(self.topic.strip()) or bool(self.source_image)

    @classmethod
    def from_dict(cls, data):
        """Build a request from JSON.

        Raises ValueError on an unknown enum value or a non-string text field.
        """
        location = data.get("location")
        if isinstance(location, dict):
            location = (float(location["latitude"]), float(location["longitude"]))
        return cls(
            topic=_text(data, "topic"),
            level=data.get("level") or AudienceLevel.HIGH_SCHOOL,
            style=data.get("style") or VisualStyle.DEFAULT,
            language=data.get("language") or Language.ENGLISH,
            aspect_ratio=data.get("aspect_ratio") or AspectRatio.WIDE,
            model=data.get("model") or ImageModel.FLASH,
            image_size=data.get("image_size") or ImageSize.SIZE_1K,
            source_image=_text(data, "source_image") or None,
            analysis_context=_text(data, "analysis_context"),
            location=location,
        )


@dataclass(frozen=True)
class GeneratedImage:
    image_data: str  # data URL
    prompt: str
    level: Optional[AudienceLevel] = None
    style: Optional[VisualStyle] = None
    language: Optional[Language] = None
    aspect_ratio: Optional[AspectRatio] = None
    model: Optional[ImageModel] = None
    image_size: Optional[ImageSize] = None
    id: str = field(default_factory=new_image_id)
    created_at: int = field(default_factory=_now_ms)

    def to_dict(self):
        def value(member):
            return member.value if member is not None else None

        return {
            "id": self.id,
            "image_data": self.image_data,
            "prompt": self.prompt,
            "created_at": self.created_at,
            "level": value(self.level),
            "style": value(self.style),
            "language": value(self.language),
            "aspect_ratio": value(self.aspect_ratio),
            "model": value(self.model),
            "image_size": value(self.image_size),
        }


@dataclass(frozen=True)
class AnalysisResult:
    report: str
    source_image: str
    created_at: int = field(default_factory=_now_ms)

    def to_dict(self):
        return {
            "report": self.report,
            "source_image": self.source_image,
            "created_at": self.created_at,
        }


class History:
    def __init__(self):
        self._records: List[GeneratedImage] = []

    def __len__(self):
        return len(self._records)

    def __iter__(self):
        return iter(list(self._records))

    def __getitem__(self, index):
        return self._records[index]

    @property
    def latest(self) -> Optional[GeneratedImage]:
        return self._records[0] if self._records else None

    def get(self, image_id) -> Optional[GeneratedImage]:
        for record in self._records:
            if record.id == image_id:
                return record
        return None

    def add(self, record: GeneratedImage):
        self._records.insert(0, record)

    def restore(self, image_id) -> Optional[GeneratedImage]:
        """Move the record with ``image_id`` to the front; None if unknown."""
        record = self.get(image_id)
        if record is None:
            return None
        self._records = [record] + [r for r in self._records if r.id != image_id]
        return record

    def clear(self):
        self._records = []

    def to_list(self):
        return [record.to_dict() for record in self._records]
