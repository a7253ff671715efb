import asyncio
import logging
from typing import Callable, List, Optional, Sequence

import httpx

from comic_gen.core.character_store import CharacterStore
from comic_gen.core.errors import ComicGenError, PanelTimeoutError, ServiceError
from comic_gen.core.extractor import extract_image
from comic_gen.core.models import GenerationOptions, PanelResult, PanelSpec
from comic_gen.core.prompting import compose_prompt, style_clause
from comic_gen.core.references import provenance, resolve_references

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


class PanelScheduler:
    """
    Renders one image per panel with at most options.max_parallel requests in flight.

    The image service must provide two coroutines:
      - generate_image(prompt, references, options) -> raw generation response
      - fetch_file(uri) -> (bytes, content_type)

    A failing panel never affects the others: its error is logged and stored on
    its own PanelResult, and dispatch() still returns a result for every panel.
    """

    def __init__(self, image_service, store: CharacterStore, retries: int = 0, retry_delay: float = 1.0):
        self.image_service = image_service
        self.store = store
        self.retries = max(0, retries)
        self.retry_delay = retry_delay

        self.total = 0
        self.completed = 0
        self.in_flight = 0
        self.peak_in_flight = 0

    async def dispatch(
        self,
        panels: Sequence[PanelSpec],
        options: GenerationOptions,
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[PanelResult]:
        # Run-level: an unusable style fails before any job starts
        style_clause(options.style_preset)

        ordered = sorted(panels, key=lambda p: p.index)
        results = [PanelResult(spec=spec) for spec in ordered]

        self.total = len(results)
        self.completed = 0
        self.in_flight = 0
        self.peak_in_flight = 0
        if not results:
            return results

        logger.info(f"Dispatching {self.total} panels (max {options.max_parallel} in parallel)...")
        semaphore = asyncio.Semaphore(options.max_parallel)

        async def run_with_slot(result: PanelResult):
            async with semaphore:
                self.in_flight += 1
                self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
                try:
                    await self._run_job(result, options)
                finally:
                    self.in_flight -= 1
                    self.completed += 1
            self._report_progress(on_progress)

        # Tasks are created in index order, so waiting panels acquire free slots FIFO
        await asyncio.gather(*(run_with_slot(result) for result in results))

        failed = [r.index for r in results if not r.succeeded]
        if failed:
            logger.warning(f"Run finished with {len(failed)} failed panel(s): {failed}")
        else:
            logger.info(f"All {self.total} panels generated.")
        return results

    async def _run_job(self, result: PanelResult, options: GenerationOptions):
        spec = result.spec
        result.composed_prompt = compose_prompt(spec, options)
        references = resolve_references(spec.mentioned_characters, self.store)
        result.used_references = provenance(references)

        attempts_allowed = self.retries + 1
        while True:
            result.attempts += 1
            try:
                logger.info(f"Generating panel {spec.index} (attempt {result.attempts}, refs: {len(references)})...")
                response = await self.image_service.generate_image(result.composed_prompt, references, options)
                image = await extract_image(response, self.image_service.fetch_file)
                result.mark_succeeded(image.data, image.mime_type)
                logger.info(f"Panel {spec.index} done ({image.mime_type}, {len(image.data)} bytes).")
                return
            except asyncio.CancelledError:
                raise
            except Exception as e:
                error = self._as_panel_error(e, spec.index)
                if result.attempts >= attempts_allowed:
                    logger.error(f"Failed to generate panel {spec.index}: {error}")
                    result.mark_failed(error)
                    return
                delay = self.retry_delay * 2 ** (result.attempts - 1)
                logger.warning(f"Panel {spec.index} failed ({error}); retrying in {delay:.1f}s.")
                await asyncio.sleep(delay)

    @staticmethod
    def _as_panel_error(error: Exception, index: int) -> ComicGenError:
        if isinstance(error, ComicGenError):
            if error.panel_index is None:
                error.panel_index = index
            return error
        if isinstance(error, (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException)):
            wrapped = PanelTimeoutError(f"Image request for panel {index} timed out.", panel_index=index)
        else:
            wrapped = ServiceError(f"Image request for panel {index} failed: {error}", panel_index=index)
        wrapped.__cause__ = error
        return wrapped

    def _report_progress(self, on_progress: Optional[ProgressCallback]):
        logger.info(f"Generated {self.completed}/{self.total}")
        if on_progress is None:
            return
        try:
            on_progress(self.completed, self.total)
        except Exception as e:
            logger.warning(f"Progress callback failed: {e}")
