from .errors import (
    ComicGenError,
    ConfigError,
    FetchError,
    NoImageReturnedError,
    PanelTimeoutError,
    PlanFormatError,
    ServiceError,
)
from .models import CharacterReference, GenerationOptions, PanelResult, PanelSpec, StylePreset
from .character_store import CharacterStore
from .planner import StoryPlanner, parse_plan
from .prompting import compose_prompt
from .references import resolve_references
from .extractor import extract_image
from .scheduler import PanelScheduler
from .bundle import ComicBundle, assemble_bundle
from .generator import ComicGenerator, GenerationRun
