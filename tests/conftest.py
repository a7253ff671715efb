import asyncio
import pytest
from types import SimpleNamespace
import sys
import os

# Add project root to sys.path so we can import comic_gen
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from comic_gen.core.errors import FetchError
from comic_gen.core.models import GenerationOptions, PanelSpec


@pytest.fixture
def mock_genai_client(mocker):
    """Fixture to mock the Google GenAI Client."""
    mock_client = mocker.patch('google.genai.Client')
    return mock_client

@pytest.fixture
def mock_env(monkeypatch):
    """Fixture to mock environment variables."""
    monkeypatch.setenv("GEMINI_API_KEY", "fake_key")
    monkeypatch.setenv("TEXT_MODEL_NAME", "gemini-test-model")


def inline_part(data: bytes, mime_type: str = "image/png"):
    return SimpleNamespace(inline_data=SimpleNamespace(data=data, mime_type=mime_type), file_data=None, text=None)


def file_part(uri: str, mime_type: str = "image/png"):
    return SimpleNamespace(inline_data=None, file_data=SimpleNamespace(file_uri=uri, mime_type=mime_type), text=None)


def text_part(text: str):
    return SimpleNamespace(inline_data=None, file_data=None, text=text)


def make_response(*parts):
    return SimpleNamespace(parts=list(parts))


def make_panels(count: int, **overrides):
    return [
        PanelSpec(index=n, title=f"Panel {n}", visual_description=f"scene-{n}", **overrides)
        for n in range(1, count + 1)
    ]


class FakeImageService:
    """
    Stands in for GenAIClient in scheduler tests.

    Panels are recognized by the "scene-N" marker in their prompt. Each call
    records start/end events and the number of concurrent calls.
    """

    def __init__(self, delays=None, failures=None, files=None):
        self.delays = delays or {}
        self.failures = failures or {}
        self.files = files or {}
        self.in_flight = 0
        self.peak_in_flight = 0
        self.events = []
        self.calls = []

    @staticmethod
    def panel_number(prompt: str) -> int:
        marker = prompt.split("scene-", 1)[1]
        return int(marker.split()[0].rstrip("."))

    async def generate_image(self, prompt, references, options):
        n = self.panel_number(prompt)
        self.calls.append((n, prompt, list(references)))
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        self.events.append(f"start-{n}")
        try:
            await asyncio.sleep(self.delays.get(n, 0))
            failure = self.failures.get(n)
            if failure is not None:
                raise failure
            return make_response(inline_part(f"image-{n}".encode()))
        finally:
            self.in_flight -= 1
            self.events.append(f"end-{n}")

    async def fetch_file(self, uri):
        if uri not in self.files:
            raise FetchError(f"{uri} not found", uri=uri)
        return self.files[uri]


@pytest.fixture
def options():
    return GenerationOptions(page_count=3, style_preset="comic", max_parallel=2)
