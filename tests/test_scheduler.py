import asyncio
import pytest

from comic_gen.core.character_store import CharacterStore
from comic_gen.core.errors import ConfigError, NoImageReturnedError, PanelTimeoutError, ServiceError
from comic_gen.core.models import GenerationOptions, PanelSpec
from comic_gen.core.scheduler import PanelScheduler
from conftest import FakeImageService, make_panels, make_response, text_part


def dispatch(scheduler, panels, options, on_progress=None):
    return asyncio.run(scheduler.dispatch(panels, options, on_progress=on_progress))


class TestPanelScheduler:
    def test_in_flight_never_exceeds_max_parallel(self):
        service = FakeImageService(delays={n: 0.01 * (n % 3) for n in range(1, 9)})
        scheduler = PanelScheduler(service, CharacterStore())
        options = GenerationOptions(page_count=8, max_parallel=3)

        results = dispatch(scheduler, make_panels(8), options)

        assert service.peak_in_flight == 3
        assert scheduler.peak_in_flight == 3
        assert scheduler.in_flight == 0
        assert scheduler.completed == scheduler.total == 8
        assert all(r.succeeded and r.error is None for r in results)

    def test_single_slot_runs_panels_one_by_one_in_index_order(self):
        service = FakeImageService()
        scheduler = PanelScheduler(service, CharacterStore())
        options = GenerationOptions(page_count=3, max_parallel=1)

        dispatch(scheduler, make_panels(3), options)

        assert service.events == ["start-1", "end-1", "start-2", "end-2", "start-3", "end-3"]

    def test_failing_panel_is_isolated(self):
        service = FakeImageService(failures={3: RuntimeError("quota exceeded")})
        scheduler = PanelScheduler(service, CharacterStore())
        options = GenerationOptions(page_count=5, max_parallel=2)

        results = dispatch(scheduler, make_panels(5), options)

        assert [r.index for r in results] == [1, 2, 3, 4, 5]
        for r in results:
            if r.index == 3:
                assert r.image_bytes is None
                assert isinstance(r.error, ServiceError)
                assert r.error.panel_index == 3
                assert "quota exceeded" in str(r.error)
            else:
                assert r.image_bytes == f"image-{r.index}".encode()
                assert r.error is None
        assert scheduler.completed == 5

    def test_slots_are_refilled_as_soon_as_a_job_settles(self):
        # Panel 1 is slow; panel 3 must start while panel 1 is still running
        service = FakeImageService(delays={1: 0.05, 2: 0, 3: 0})
        scheduler = PanelScheduler(service, CharacterStore())
        options = GenerationOptions(page_count=3, max_parallel=2)

        dispatch(scheduler, make_panels(3), options)

        assert service.events.index("start-3") < service.events.index("end-1")

    def test_results_are_in_index_order_regardless_of_completion(self):
        service = FakeImageService(delays={1: 0.03, 2: 0.02, 3: 0})
        scheduler = PanelScheduler(service, CharacterStore())
        options = GenerationOptions(page_count=3, max_parallel=3)

        results = dispatch(scheduler, list(reversed(make_panels(3))), options)

        ends = [e for e in service.events if e.startswith("end-")]
        assert ends == ["end-3", "end-2", "end-1"]
        assert [r.index for r in results] == [1, 2, 3]

    def test_progress_reported_after_every_panel(self):
        service = FakeImageService(failures={2: RuntimeError("boom")})
        scheduler = PanelScheduler(service, CharacterStore())
        progress = []

        dispatch(scheduler, make_panels(4), GenerationOptions(page_count=4), on_progress=lambda d, t: progress.append((d, t)))

        assert progress == [(1, 4), (2, 4), (3, 4), (4, 4)]

    def test_progress_callback_errors_are_ignored(self):
        service = FakeImageService()
        scheduler = PanelScheduler(service, CharacterStore())

        def broken(done, total):
            raise RuntimeError("ui gone")

        results = dispatch(scheduler, make_panels(2), GenerationOptions(page_count=2), on_progress=broken)

        assert all(r.succeeded for r in results)

    def test_timeout_becomes_panel_timeout_error(self):
        service = FakeImageService(failures={2: asyncio.TimeoutError()})
        scheduler = PanelScheduler(service, CharacterStore())

        results = dispatch(scheduler, make_panels(3), GenerationOptions(page_count=3))

        assert isinstance(results[1].error, PanelTimeoutError)
        assert isinstance(results[1].error, ServiceError)
        assert results[0].succeeded and results[2].succeeded

    def test_response_without_image_fails_only_that_panel(self):
        service = FakeImageService()
        original = service.generate_image

        async def generate_image(prompt, references, options):
            if "scene-1" in prompt:
                return make_response(text_part("I cannot draw that."))
            return await original(prompt, references, options)

        service.generate_image = generate_image
        scheduler = PanelScheduler(service, CharacterStore())

        results = dispatch(scheduler, make_panels(2), GenerationOptions(page_count=2))

        assert isinstance(results[0].error, NoImageReturnedError)
        assert results[0].error.panel_index == 1
        assert results[1].succeeded

    def test_retries_failed_panel(self):
        service = FakeImageService()
        original = service.generate_image
        calls = {"count": 0}

        async def flaky(prompt, references, options):
            calls["count"] += 1
            if calls["count"] == 1:
                raise RuntimeError("transient")
            return await original(prompt, references, options)

        service.generate_image = flaky
        scheduler = PanelScheduler(service, CharacterStore(), retries=2, retry_delay=0)

        results = dispatch(scheduler, make_panels(1), GenerationOptions(page_count=1))

        assert results[0].succeeded
        assert results[0].attempts == 2

    def test_gives_up_after_retries(self):
        service = FakeImageService(failures={1: RuntimeError("down")})
        scheduler = PanelScheduler(service, CharacterStore(), retries=1, retry_delay=0)

        results = dispatch(scheduler, make_panels(1), GenerationOptions(page_count=1))

        assert results[0].attempts == 2
        assert isinstance(results[0].error, ServiceError)

    def test_unknown_style_fails_before_dispatch(self):
        service = FakeImageService()
        scheduler = PanelScheduler(service, CharacterStore())

        with pytest.raises(ConfigError):
            dispatch(scheduler, make_panels(2), GenerationOptions(page_count=2, style_preset="cubism"))
        assert service.calls == []

    def test_records_prompt_and_references(self):
        store = CharacterStore()
        store.add("Alice", b"alice-1", "image/png")
        store.add("Bob", b"bob-1", "image/jpeg")
        service = FakeImageService()
        scheduler = PanelScheduler(service, store)
        panel = PanelSpec(index=1, title="T", visual_description="scene-1", mentioned_characters=("alice",))

        results = dispatch(scheduler, [panel], GenerationOptions(page_count=1))

        assert "scene-1" in results[0].composed_prompt
        assert [(r.name, r.mime_type) for r in results[0].used_references] == [("Alice", "image/png")]
        _, _, refs = service.calls[0]
        assert [r.image_bytes for r in refs] == [b"alice-1"]

    def test_empty_panel_list(self):
        scheduler = PanelScheduler(FakeImageService(), CharacterStore())
        assert dispatch(scheduler, [], GenerationOptions()) == []
        assert scheduler.completed == scheduler.total == 0
