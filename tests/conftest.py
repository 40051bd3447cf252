"""
Test Configuration
==================

Pytest configuration with fixtures for all test types.
Provides isolated settings, in-memory render doubles and sample markup.
"""

import os
import shutil
import tempfile
from pathlib import Path
from typing import Generator

# Settings are read when the logging module is first imported.
_SESSION_ROOT = Path(tempfile.mkdtemp(prefix="poster_pipeline_test_"))
os.environ.setdefault("POSTER_PIPELINE_ENVIRONMENT", "testing")
os.environ.setdefault("POSTER_PIPELINE_STORAGE_PATH", str(_SESSION_ROOT / "storage"))
os.environ.setdefault("POSTER_PIPELINE_OUTPUT_PATH", str(_SESSION_ROOT / "storage" / "artifacts"))

import pytest

import poster_pipeline.config.settings as settings_module
from poster_pipeline.config.settings import Settings
from poster_pipeline.core.batch.orchestrator import BatchOrchestrator
from poster_pipeline.models.schemas import BatchTaskInput, CanvasDescription

from tests.utils.data_generators import MarkupDataGenerator
from tests.utils.mocks import FakeRasterizer, InMemorySurfaceHost, RecordingDelivery


class TestSettings(Settings):
    """Test-specific settings."""

    __test__ = False

    environment: str = "testing"
    debug: bool = True
    log_level: str = "DEBUG"
    settle_delay: float = 0.0
    inter_task_delay: float = 0.0
    download_stagger: float = 0.0
    raster_timeout: float = 5.0


@pytest.fixture(scope="session", autouse=True)
def session_storage() -> Generator[Path, None, None]:
    """Remove the session storage directory after the run."""
    yield _SESSION_ROOT
    shutil.rmtree(_SESSION_ROOT, ignore_errors=True)


@pytest.fixture
def test_settings(tmp_path: Path) -> TestSettings:
    """Settings with zero delays and per-test storage."""
    return TestSettings(
        storage_path=tmp_path / "storage",
        output_path=tmp_path / "artifacts",
    )


@pytest.fixture(autouse=True)
def override_settings(test_settings: TestSettings, monkeypatch: pytest.MonkeyPatch):
    """Make get_settings() return the per-test settings."""
    monkeypatch.setattr(settings_module, "settings", test_settings)
    yield test_settings


@pytest.fixture
def surface_host() -> InMemorySurfaceHost:
    return InMemorySurfaceHost()


@pytest.fixture
def rasterizer() -> FakeRasterizer:
    return FakeRasterizer()


@pytest.fixture
def delivery() -> RecordingDelivery:
    return RecordingDelivery()


@pytest.fixture
def canvas() -> CanvasDescription:
    return CanvasDescription(width=400, height=600)


@pytest.fixture
def invitee_names() -> list:
    return ["Alice", "Bob", "Carol"]


@pytest.fixture
def invitation_template() -> str:
    return MarkupDataGenerator.invitation_template()


@pytest.fixture
def invitation_tasks(invitation_template: str, invitee_names: list) -> list:
    """One task per invitee with the greeting token already substituted."""
    return [
        BatchTaskInput(
            id=f"variant_{index}",
            name=name,
            markup=invitation_template.replace("XXX女士", f"{name}女士"),
        )
        for index, name in enumerate(invitee_names, start=1)
    ]


@pytest.fixture
def make_orchestrator(surface_host, rasterizer, delivery, canvas, test_settings):
    """Factory building orchestrators wired to the in-memory doubles."""

    def _make(tasks, **overrides) -> BatchOrchestrator:
        kwargs = dict(
            rasterizer=rasterizer,
            surface_host=surface_host,
            delivery=delivery,
            settings=test_settings,
        )
        kwargs.update(overrides)
        return BatchOrchestrator(tasks, canvas, "Acme", **kwargs)

    return _make
