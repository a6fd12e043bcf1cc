"""Pytest configuration for translation workflow engine tests."""
from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import List, Optional

import pytest

# Ensure the repository root is on ``sys.path`` so that ``translation_workflow``
# can be imported when the test suite is executed without installing the package.
ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from translation_workflow.config import EngineSettings  # noqa: E402
from translation_workflow.engine import WorkflowEngine, build_workflow_engine  # noqa: E402
from translation_workflow.models import Actor, Grant, ProjectCreate, Role, ScopeType  # noqa: E402
from translation_workflow.providers import ProviderResult  # noqa: E402


class FakeProvider:
    """Scriptable translation provider.

    ``errors`` are raised in order before any successful call; ``gate`` blocks
    every call until it is set.
    """

    def __init__(self, confidence: Optional[int] = None) -> None:
        self.confidence = confidence
        self.calls: List[str] = []
        self.errors: List[Exception] = []
        self.gate: Optional[asyncio.Event] = None
        self.started: Optional[asyncio.Event] = None

    async def translate(self, text: str, source_language: str, target_language: str) -> ProviderResult:
        self.calls.append(text)
        if self.started is not None:
            self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.errors:
            raise self.errors.pop(0)
        return ProviderResult(text=f"[{target_language}] {text}", confidence=self.confidence, provider="fake")


def make_settings(**overrides) -> EngineSettings:
    values = {
        "translation_provider": "stub",
        "database_url": None,
        "provider_retry_backoff": 0,
        "seed_demo_data": False,
        "openai_api_key": None,
        "anthropic_api_key": None,
        "google_api_key": None,
    }
    values.update(overrides)
    return EngineSettings(**values)


def member(user_id: str, role: Role, project_id: str) -> Actor:
    """Actor carrying a single per-call project grant."""
    return Actor(
        user_id=user_id,
        grants=[Grant(scope_type=ScopeType.PROJECT, scope_id=project_id, role=role)],
    )


@pytest.fixture
def settings() -> EngineSettings:
    return make_settings()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def engine(settings: EngineSettings, provider: FakeProvider) -> WorkflowEngine:
    return build_workflow_engine(settings, provider=provider)


@pytest.fixture
def owner() -> Actor:
    return Actor(user_id="olivia")


@pytest.fixture
def project(engine: WorkflowEngine, owner: Actor):
    return engine.projects.create_project(
        owner,
        ProjectCreate(name="Help Center", source_language="English", target_languages=["Spanish"]),
    )


@pytest.fixture
def document(engine: WorkflowEngine, owner: Actor, project):
    return engine.projects.add_document(
        project.id,
        owner,
        "faq.txt",
        "Welcome to our platform\nReset your password\nContact support",
    )[0]


@pytest.fixture
def segments(engine: WorkflowEngine, document):
    return engine.segments.list_segments(document.id)
