"""Wiring of the workflow services into a single engine object."""
from __future__ import annotations

from typing import Dict, List, Optional

import structlog

from .config import EngineSettings, get_settings
from .database import build_engine, build_session_factory, create_tables
from .errors import InvalidInput
from .memory import GlossaryService, TranslationMemoryService
from .models import (
    Actor,
    GlossaryConstraint,
    GlossaryTerm,
    MatchResult,
    ProjectCreate,
    Segment,
    TranslationMemoryEntry,
)
from .permissions import Action
from .providers import TranslationProvider, build_provider
from .repository import SqlPersistence
from .services import ConfidenceStrategy, ProjectService, SegmentService, WorkflowAggregator, run_commit
from .state import Persistence, State

logger = structlog.get_logger(__name__)

QUICK_TRANSLATION_PROJECT = "Quick Translation"


class WorkflowEngine:
    """Entry point holding one consistent set of services."""

    def __init__(
        self,
        settings: EngineSettings,
        state: State,
        provider: TranslationProvider,
        confidence: Optional[ConfidenceStrategy] = None,
    ) -> None:
        self.settings = settings
        self.state = state
        self.provider = provider
        self.memory = TranslationMemoryService(state, settings)
        self.glossary = GlossaryService(state)
        self.aggregator = WorkflowAggregator(state)
        self.projects = ProjectService(state, self.aggregator)
        self.segments = SegmentService(state, settings, self.projects, self.memory, provider, confidence)

    async def quick_translate(
        self, actor: Actor, text: str, source_language: str, target_language: str
    ) -> Segment:
        """Translate a snippet through a throwaway single-document project.

        The project is only created once the translation is in hand, so a
        failed or cancelled provider call leaves nothing behind.
        """

        payload = self.projects.parse_project(
            {
                "name": QUICK_TRANSLATION_PROJECT,
                "source_language": source_language,
                "target_languages": [target_language],
            }
        )
        if not text or not text.strip():
            raise InvalidInput("Document has no translatable text", name=QUICK_TRANSLATION_PROJECT)
        match, updates = await self.segments.draft_translation(
            text, payload.source_language, payload.target_languages[0]
        )
        return await run_commit(self.state, self._store_quick_translation, actor, payload, text, match, updates)

    def _store_quick_translation(
        self,
        actor: Actor,
        payload: ProjectCreate,
        text: str,
        match: MatchResult,
        updates: Dict[str, object],
    ) -> Segment:
        with self.state.transaction():
            project = self.projects.create_project(actor, payload)
            document = self.projects.add_document(
                project.id, actor, QUICK_TRANSLATION_PROJECT, text, split_lines=False
            )[0]
            segment = self.state.list_segments(document.id)[0]
            return self.segments.apply_translation(segment, actor, segment.version, match, updates)

    def record_memory(
        self,
        actor: Actor,
        source_text: str,
        target_text: str,
        source_language: str,
        target_language: str,
        quality: int = 0,
        supersede: bool = False,
    ) -> TranslationMemoryEntry:
        """Add a shared TM entry; replacing an existing target needs a managing role."""

        self.projects.require_any(actor, Action.TRANSLATE)
        if supersede:
            self.projects.require_any(actor, Action.MANAGE_GLOSSARY)
        return self.memory.record(
            source_text, target_text, source_language, target_language, quality=quality, supersede=supersede
        )

    def add_glossary_term(
        self,
        actor: Actor,
        term: str,
        preferred_translation: str,
        domain: str = "General",
        definition: Optional[str] = None,
        notes: Optional[str] = None,
        project_id: Optional[str] = None,
    ) -> GlossaryTerm:
        if project_id is not None:
            project = self.projects.get_project(project_id)
            self.projects.authorize(actor, Action.MANAGE_GLOSSARY, project)
        else:
            self.projects.require_any(actor, Action.MANAGE_GLOSSARY)
        return self.glossary.add_term(term, preferred_translation, domain, definition, notes, project_id)

    def apply_glossary(
        self, text: str, domain: Optional[str] = None, project_id: Optional[str] = None
    ) -> List[GlossaryConstraint]:
        return self.glossary.apply_glossary(text, domain, project_id)


def build_workflow_engine(
    settings: Optional[EngineSettings] = None,
    provider: Optional[TranslationProvider] = None,
    persistence: Optional[Persistence] = None,
    confidence: Optional[ConfidenceStrategy] = None,
) -> WorkflowEngine:
    """Assemble an engine, loading stored state when a database is configured."""

    settings = settings or get_settings()
    sql: Optional[SqlPersistence] = None
    if persistence is None and settings.database_url:
        db_engine = build_engine(settings.database_url)
        create_tables(db_engine)
        sql = SqlPersistence(build_session_factory(db_engine))
        persistence = sql
    state = State(persistence)
    if sql is not None:
        sql.load(state)
    engine = WorkflowEngine(settings, state, provider or build_provider(settings), confidence)
    logger.info(
        "Workflow engine ready",
        provider=settings.translation_provider,
        persistent=persistence is not None,
    )
    return engine
