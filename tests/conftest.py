"""
Pytest configuration and fixtures for long video tests.
"""
import os
import itertools
import tempfile
import pytest
from pathlib import Path
from unittest.mock import AsyncMock

# Set test environment before importing package modules
_TEST_DATA_DIR = tempfile.mkdtemp(prefix="longvideo_test_")
os.environ["STORAGE_BACKEND"] = "memory"
os.environ["DATA_DIR"] = _TEST_DATA_DIR
os.environ["DATABASE_PATH"] = str(Path(_TEST_DATA_DIR) / "test.db")
os.environ["VECTORENGINE_API_KEYS"] = ""
os.environ["DEBUG"] = "true"

from longvideo.exceptions import UpstreamRequestError  # noqa: E402
from longvideo.orchestration.models import Scene  # noqa: E402
from longvideo.orchestration.orchestrator import LongVideoOrchestrator  # noqa: E402
from longvideo.persistence import InMemoryTaskRepository, InMemoryHistorySink  # noqa: E402
from longvideo.rendering.merge import MergeEngine  # noqa: E402
from longvideo.services.capabilities import (  # noqa: E402
    AnalysisResult,
    Capabilities,
    StoryAnalyzer,
    ImageGenerator,
    VideoGenerator,
    NarrationSynthesizer,
    MergeService,
)
from longvideo.services.credential_pool import CredentialPool  # noqa: E402
from longvideo.services.retry import FallbackEngine, RetryPolicy  # noqa: E402


# =============================================================================
# Fake capabilities
# =============================================================================

class FakeAnalyzer(StoryAnalyzer):
    """Returns one scene per requested segment unless told otherwise."""

    def __init__(self, scene_count=None, error=None):
        self.scene_count = scene_count
        self.error = error
        self.calls = []

    async def analyze(self, story, *, scene_count, character_description, visual_style,
                      language, model, api_key, endpoint=None):
        self.calls.append({"model": model, "api_key": api_key, "scene_count": scene_count})
        if self.error is not None:
            raise self.error
        count = self.scene_count or scene_count
        scenes = [
            Scene(id=i, description=f"desc {i}", narration=f"narration {i}", image_prompt=f"prompt {i}")
            for i in range(1, count + 1)
        ]
        return AnalysisResult(scenes=scenes, character_prompt="a young hero", model=model)


class FakeImageGenerator(ImageGenerator):

    def __init__(self):
        self.calls = []
        self._ids = itertools.count(1)

    async def generate(self, prompt, *, reference_image_url, mode, model, api_key):
        self.calls.append({"prompt": prompt, "model": model, "api_key": api_key})
        return f"https://cdn.test/images/{next(self._ids)}.png"


class FakeVideoGenerator(VideoGenerator):
    """Rejects every clip whose prompt is in fail_prompts (or all of them)."""

    def __init__(self, fail_prompts=None, fail_all=False):
        self.fail_prompts = set(fail_prompts or [])
        self.fail_all = fail_all
        self.calls = []
        self._ids = itertools.count(1)

    async def generate(self, image_url, prompt, *, model, api_key):
        self.calls.append({"image_url": image_url, "prompt": prompt, "model": model, "api_key": api_key})
        if self.fail_all or prompt in self.fail_prompts:
            raise UpstreamRequestError(f"{model} rejected the request", status_code=400)
        return f"https://cdn.test/videos/{next(self._ids)}.mp4"


class FakeNarrationSynthesizer(NarrationSynthesizer):

    def __init__(self):
        self.calls = []
        self._ids = itertools.count(1)

    async def synthesize(self, text, *, voice_id, language, model, api_key):
        self.calls.append({"text": text, "voice_id": voice_id, "model": model})
        return f"https://cdn.test/audio/{next(self._ids)}.mp3"


class FakeMergeService(MergeService):

    def __init__(self, error=None, url="https://cdn.test/merged/final.mp4"):
        self.error = error
        self.url = url
        self.calls = []

    async def merge(self, manifest, *, model, api_key):
        self.calls.append({"model": model, "videos": [v["url"] for v in manifest["videos"]]})
        if self.error is not None:
            raise self.error
        return self.url


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def no_sleep():
    """Injected sleep that returns immediately and records requested delays."""
    return AsyncMock(return_value=None)


@pytest.fixture
def api_keys():
    return [f"test-key-{i}" for i in range(1, 7)]


@pytest.fixture
def pool(api_keys):
    return CredentialPool(api_keys, group_count=3)


@pytest.fixture
def engine(pool, no_sleep):
    return FallbackEngine(pool, policy=RetryPolicy(max_retries=2, base_delay=0.01), sleep=no_sleep)


@pytest.fixture
def history_sink():
    return InMemoryHistorySink()


@pytest.fixture
def capabilities(history_sink):
    return Capabilities(
        analyzer=FakeAnalyzer(),
        image=FakeImageGenerator(),
        video=FakeVideoGenerator(),
        narration=FakeNarrationSynthesizer(),
        history=history_sink,
    )


@pytest.fixture
def cloud_merge():
    return FakeMergeService()


@pytest.fixture
def merge_engine(engine, cloud_merge):
    return MergeEngine(engine, cloud=cloud_merge, local=None)


@pytest.fixture
def orchestrator(engine, capabilities, merge_engine, no_sleep):
    return LongVideoOrchestrator(engine, capabilities, merge_engine, cooldown=5.0, sleep=no_sleep)


@pytest.fixture
def task_repository():
    return InMemoryTaskRepository()


@pytest.fixture
def service(task_repository, orchestrator):
    from longvideo.services.long_video_service import LongVideoService
    return LongVideoService(task_repository, orchestrator)


@pytest.fixture
def sample_story():
    return "A young fisherman finds a glowing pearl and sails across the harbour to return it to the sea."
