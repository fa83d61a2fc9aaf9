# tests/conftest.py
"""Shared test fixtures.

Every test that touches the backend goes through a respx router mounted on
``BASE_URL``; nothing leaves the process. State and the failure log live in
``tmp_path`` so tests never see each other's files.

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/property/
"""

import os
from collections.abc import Iterator
from pathlib import Path

import pytest
import respx
from hypothesis import Phase, Verbosity, settings

from edcprobe.core.config import HarnessSettings
from edcprobe.core.diagnostics import DiagnosticsSink
from edcprobe.core.events import EventBus
from edcprobe.core.state import StateStore
from edcprobe.engine.context import HarnessContext

BASE_URL = "http://edc.test/api"
ADMIN_PASSWORD = "Secr3t!pass"


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Drop EDCPROBE_* variables from the developer's shell."""
    for key in list(os.environ):
        if key.startswith("EDCPROBE_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def harness_settings(tmp_path: Path) -> HarnessSettings:
    return HarnessSettings(
        base_url=BASE_URL,
        admin_password=ADMIN_PASSWORD,
        state_path=tmp_path / "state" / "state.json",
        diagnostics_path=tmp_path / "logs" / "test-errors.jsonl",
    )


@pytest.fixture
def store(harness_settings: HarnessSettings) -> StateStore:
    return StateStore(harness_settings.state_path)


@pytest.fixture
def sink(harness_settings: HarnessSettings) -> DiagnosticsSink:
    return DiagnosticsSink(harness_settings.diagnostics_path, echo=False)


@pytest.fixture
def api() -> Iterator[respx.MockRouter]:
    """respx router for the fake backend; unmatched requests fail the test."""
    with respx.mock(base_url=BASE_URL, assert_all_called=False) as router:
        yield router


@pytest.fixture
def harness(harness_settings: HarnessSettings, api: respx.MockRouter) -> Iterator[HarnessContext]:
    """HarnessContext wired to the respx router with console output off."""
    with HarnessContext.build(harness_settings, echo=False, bus=EventBus()) as ctx:
        yield ctx


# =============================================================================
# Hypothesis Configuration
# =============================================================================

# CI profile: Fast tests for continuous integration
settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,  # Disable deadline for CI (timing varies)
)

# Nightly profile: Thorough testing for scheduled runs
settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

# Debug profile: Minimal examples with verbose output for debugging
settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

# Load profile from environment, default to "ci"
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))
