import logging
from typing import List, NamedTuple, Optional, Sequence

from comic_gen.core.bundle import ComicBundle, assemble_bundle
from comic_gen.core.character_store import CharacterStore
from comic_gen.core.models import GenerationOptions, PanelResult, PanelSpec
from comic_gen.core.planner import StoryPlanner
from comic_gen.core.prompting import style_clause
from comic_gen.core.scheduler import PanelScheduler, ProgressCallback

logger = logging.getLogger(__name__)


class GenerationRun(NamedTuple):
    panels: List[PanelSpec]
    results: List[PanelResult]
    bundle: ComicBundle


class ComicGenerator:
    """Plans a story into panels, renders every panel and packages the results."""

    def __init__(self, ai_client, store: Optional[CharacterStore] = None, retries: int = 0, retry_delay: float = 1.0):
        self.ai_client = ai_client
        self.store = store if store is not None else CharacterStore()
        self.planner = StoryPlanner(ai_client)
        self.retries = retries
        self.retry_delay = retry_delay

    async def plan(self, story: str, options: GenerationOptions) -> List[PanelSpec]:
        # Fail on a bad style before spending a text request
        style_clause(options.style_preset)
        return await self.planner.plan(story, options, character_names=self.store.names())

    async def generate(
        self,
        panels: Sequence[PanelSpec],
        options: GenerationOptions,
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[PanelResult]:
        scheduler = PanelScheduler(self.ai_client, self.store, retries=self.retries, retry_delay=self.retry_delay)
        return await scheduler.dispatch(panels, options, on_progress=on_progress)

    async def run(
        self,
        story: str,
        options: GenerationOptions,
        on_progress: Optional[ProgressCallback] = None,
    ) -> GenerationRun:
        panels = await self.plan(story, options)
        results = await self.generate(panels, options, on_progress=on_progress)
        bundle = assemble_bundle(results)
        if bundle.is_partial:
            logger.warning(f"Panels without images: {bundle.missing_indices}")
        return GenerationRun(panels, results, bundle)
