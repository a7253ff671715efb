import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import ValidationError

from comic_gen.core.errors import ConfigError
from comic_gen.core.models import GenerationOptions

# Load environment variables
load_dotenv()

MAX_PARALLEL_LIMIT = 6


class Config:
    GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")

    TEXT_MODEL_NAME = os.getenv("TEXT_MODEL_NAME", "gemini-2.0-flash")
    IMAGE_MODEL_NAME = os.getenv("IMAGE_MODEL_NAME", "gemini-2.0-flash-preview-image-generation")

    BASE_OUTPUT_DIR = Path("output")

    # Generation defaults, mirrored by the CLI options
    DEFAULT_PAGE_COUNT = int(os.getenv("DEFAULT_PAGE_COUNT", "6"))
    DEFAULT_LANGUAGE = os.getenv("DEFAULT_LANGUAGE", "English")
    DEFAULT_ASPECT = os.getenv("DEFAULT_ASPECT", "1024x1536")
    DEFAULT_STYLE_PRESET = os.getenv("DEFAULT_STYLE_PRESET", "comic")
    DEFAULT_MAX_PARALLEL = int(os.getenv("DEFAULT_MAX_PARALLEL", "2"))

    # Per-request deadlines, enforced by the HTTP layer
    REQUEST_TIMEOUT_SECONDS = float(os.getenv("REQUEST_TIMEOUT_SECONDS", "120"))
    FETCH_TIMEOUT_SECONDS = float(os.getenv("FETCH_TIMEOUT_SECONDS", "60"))

    PANEL_RETRIES = int(os.getenv("PANEL_RETRIES", "0"))

    @staticmethod
    def validate():
        if not Config.GEMINI_API_KEY:
            raise ConfigError("GEMINI_API_KEY environment variable is not set.")


# Ensure output directories exist structure
def setup_directories(base_path: Path):
    dirs = [
        base_path / "characters",
        base_path / "panels",
    ]
    for d in dirs:
        d.mkdir(parents=True, exist_ok=True)


def parse_aspect(value: str) -> tuple:
    """Parses a "WIDTHxHEIGHT" string such as "1024x1536"."""
    parts = (value or "").lower().split("x")
    if len(parts) != 2:
        raise ConfigError(f"Aspect must look like WIDTHxHEIGHT, got '{value}'")
    try:
        width, height = int(parts[0]), int(parts[1])
    except ValueError:
        raise ConfigError(f"Aspect must look like WIDTHxHEIGHT, got '{value}'") from None
    if width <= 0 or height <= 0:
        raise ConfigError(f"Aspect dimensions must be positive, got '{value}'")
    return width, height


def clamp_parallel(value: Optional[int]) -> int:
    if value is None:
        value = Config.DEFAULT_MAX_PARALLEL
    return max(1, min(MAX_PARALLEL_LIMIT, int(value)))


def build_options(
    page_count: Optional[int] = None,
    language: Optional[str] = None,
    aspect: Optional[str] = None,
    style_preset: Optional[str] = None,
    style_notes: str = "",
    render_balloons_in_image: bool = False,
    show_captions_below_image: bool = True,
    seed: Optional[int] = None,
    max_parallel: Optional[int] = None,
    text_model_id: Optional[str] = None,
    image_model_id: Optional[str] = None,
) -> GenerationOptions:
    """
    Builds the immutable options for one run from raw user-facing values.

    Unset values fall back to Config defaults. max_parallel is clamped into
    [1, 6] rather than rejected; every other invalid value raises ConfigError.
    """
    if page_count is None:
        page_count = Config.DEFAULT_PAGE_COUNT
    if page_count < 1:
        raise ConfigError(f"Page count must be at least 1, got {page_count}")

    try:
        return GenerationOptions(
            page_count=page_count,
            language=language or Config.DEFAULT_LANGUAGE,
            aspect_ratio=parse_aspect(aspect or Config.DEFAULT_ASPECT),
            style_preset=(style_preset or Config.DEFAULT_STYLE_PRESET).strip().lower(),
            style_notes=style_notes or "",
            render_balloons_in_image=render_balloons_in_image,
            show_captions_below_image=show_captions_below_image,
            seed=seed,
            max_parallel=clamp_parallel(max_parallel),
            text_model_id=text_model_id or Config.TEXT_MODEL_NAME,
            image_model_id=image_model_id or Config.IMAGE_MODEL_NAME,
        )
    except ValidationError as e:
        raise ConfigError(f"Invalid generation options: {e}") from e
