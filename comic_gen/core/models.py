from enum import Enum
from math import gcd
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


class StylePreset(str, Enum):
    PHOTOREALISM = "photorealism"
    COMIC = "comic"
    MANGA = "manga"
    ANIME = "anime"
    WATERCOLOR = "watercolor"
    PIXEL = "pixel"
    THREE_D = "3d"


class CharacterReference(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(description="Display name of the character, as entered by the user")
    image_bytes: bytes = Field(description="Raw bytes of the reference image")
    mime_type: str = Field(default="image/png", description="MIME type of the reference image")


class ReferenceProvenance(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(description="Character the reference image belongs to")
    mime_type: str = Field(description="MIME type of the attached reference image")

    def to_export(self) -> dict:
        return {"name": self.name, "mimeType": self.mime_type}


class GenerationOptions(BaseModel):
    """Settings for a single generation run. Built once and passed explicitly to every component."""

    model_config = ConfigDict(frozen=True)

    page_count: int = Field(default=6, ge=1, description="Number of panels to plan and render")
    language: str = Field(default="English", description="Language for titles, dialogue and captions")
    aspect_ratio: Tuple[int, int] = Field(default=(1024, 1536), description="Panel size as (width, height)")
    style_preset: str = Field(default=StylePreset.COMIC.value, description="One of the StylePreset values")
    style_notes: str = Field(default="", description="Free-text style notes appended verbatim to prompts")
    render_balloons_in_image: bool = Field(default=False, description="Draw dialogue as speech balloons in the image")
    show_captions_below_image: bool = Field(default=True, description="Captions are shown below the image by the consumer")
    seed: Optional[int] = Field(default=None, description="Optional seed passed to the image model")
    max_parallel: int = Field(default=2, ge=1, le=6, description="Maximum number of image requests in flight")
    text_model_id: str = Field(default="gemini-2.0-flash", description="Model used for story planning")
    image_model_id: str = Field(
        default="gemini-2.0-flash-preview-image-generation",
        description="Model used for panel rendering",
    )

    @field_validator("aspect_ratio")
    @classmethod
    def _positive_dimensions(cls, value: Tuple[int, int]) -> Tuple[int, int]:
        width, height = value
        if width <= 0 or height <= 0:
            raise ValueError("aspect ratio dimensions must be positive")
        return value

    @property
    def aspect_ratio_label(self) -> str:
        width, height = self.aspect_ratio
        divisor = gcd(width, height)
        return f"{width // divisor}:{height // divisor}"


class PanelSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    index: int = Field(ge=1, description="1-based position of the panel in the comic")
    title: str = Field(description="Short panel title")
    visual_description: str = Field(default="", description="What the panel shows: setting, camera, action")
    dialogue: str = Field(default="", description="Spoken text for the panel, empty if none")
    caption: str = Field(default="", description="Narration shown below the image")
    mentioned_characters: Tuple[str, ...] = Field(
        default=(), description="Names of characters appearing in the panel, in order of mention"
    )

    @field_validator("mentioned_characters")
    @classmethod
    def _dedupe_names(cls, names: Tuple[str, ...]) -> Tuple[str, ...]:
        seen = set()
        unique = []
        for name in names:
            key = name.casefold()
            if key in seen:
                continue
            seen.add(key)
            unique.append(name)
        return tuple(unique)


class PanelResult(BaseModel):
    """Outcome of one panel's job. Only that job writes to it."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    spec: PanelSpec
    composed_prompt: str = ""
    image_bytes: Optional[bytes] = None
    image_mime_type: Optional[str] = None
    used_references: List[ReferenceProvenance] = Field(default_factory=list)
    error: Optional[Exception] = None
    attempts: int = 0

    @property
    def index(self) -> int:
        return self.spec.index

    @property
    def succeeded(self) -> bool:
        return self.image_bytes is not None

    @property
    def settled(self) -> bool:
        return self.image_bytes is not None or self.error is not None

    def mark_succeeded(self, image_bytes: bytes, mime_type: str):
        self.image_bytes = image_bytes
        self.image_mime_type = mime_type
        self.error = None

    def mark_failed(self, error: Exception):
        self.image_bytes = None
        self.image_mime_type = None
        self.error = error


class PlanCharacter(BaseModel):
    name: str = Field(description="Character name, spelled consistently across panels")
    age: Optional[str] = Field(default=None, description="Apparent age")
    gender: Optional[str] = Field(default=None, description="Gender, if stated")
    key_traits: Optional[str] = Field(default=None, description="Visual traits that identify the character")


class PlanPanel(BaseModel):
    title: str = Field(description="Short panel title")
    visual_summary: str = Field(description="Setting, camera angle and key action of the panel")
    dialogue: str = Field(default="", description="Dialogue, empty if none")
    caption: str = Field(default="", description="Concise narration for below-image text")
    characters: List[PlanCharacter] = Field(default_factory=list, description="Characters visible in the panel")


class PlanDocument(BaseModel):
    """Response schema requested from the text model when planning a story."""

    panels: List[PlanPanel] = Field(description="Panels in reading order")
