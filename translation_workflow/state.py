"""In-memory working set with atomic, versioned transactions."""
from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from threading import RLock
from typing import Dict, Iterator, List, Optional, Protocol, Tuple

import structlog
from pydantic import BaseModel

from .errors import ConflictError, NotFound
from .languages import language_key
from .models import (
    Document,
    GlossaryTerm,
    Project,
    ScopeType,
    Segment,
    Team,
    TeamMembership,
    TranslationMemoryEntry,
)

logger = structlog.get_logger(__name__)

MemoryKey = Tuple[str, str, str]


@dataclass
class UnitOfWork:
    """Entities written or deleted inside one transaction."""

    projects: Dict[str, Project] = field(default_factory=dict)
    documents: Dict[str, Document] = field(default_factory=dict)
    segments: Dict[str, Segment] = field(default_factory=dict)
    memory: Dict[str, TranslationMemoryEntry] = field(default_factory=dict)
    glossary: Dict[str, GlossaryTerm] = field(default_factory=dict)
    memberships: Dict[str, TeamMembership] = field(default_factory=dict)
    teams: Dict[str, Team] = field(default_factory=dict)
    deleted: List[Tuple[str, str]] = field(default_factory=list)
    # Segment versions as they were before this transaction first touched them.
    base_versions: Dict[str, int] = field(default_factory=dict)

    @property
    def empty(self) -> bool:
        return not (
            self.projects
            or self.documents
            or self.segments
            or self.memory
            or self.glossary
            or self.memberships
            or self.teams
            or self.deleted
        )


class Persistence(Protocol):
    """Durable store able to apply a unit of work atomically."""

    def flush(self, unit: UnitOfWork) -> None:
        ...


def memory_key(source_text: str, source_language: str, target_language: str) -> MemoryKey:
    """Normalised (source, source language, target language) key."""
    return normalize_text(source_text), language_key(source_language), language_key(target_language)


def normalize_text(text: str) -> str:
    """Case and whitespace insensitive form of ``text``."""
    return " ".join(text.split()).casefold()


class State:
    """Stores engine entities with coarse locking.

    Stored models are never mutated in place; writers put replacement copies,
    so a transaction only needs the previous value of each key it touches.
    """

    def __init__(self, persistence: Optional[Persistence] = None) -> None:
        self._projects: Dict[str, Project] = {}
        self._documents: Dict[str, Document] = {}
        self._segments: Dict[str, Segment] = {}
        self._memory: Dict[str, TranslationMemoryEntry] = {}
        self._glossary: Dict[str, GlossaryTerm] = {}
        self._memberships: Dict[str, TeamMembership] = {}
        self._teams: Dict[str, Team] = {}
        self._lock = RLock()
        self._unit: Optional[UnitOfWork] = None
        self._undo: Dict[Tuple[str, str], Optional[BaseModel]] = {}
        self._persistence = persistence

    # Transactions ---------------------------------------------------------
    @property
    def persistent(self) -> bool:
        return self._persistence is not None

    @contextmanager
    def transaction(self) -> Iterator[UnitOfWork]:
        """Apply every write in the block atomically.

        Nested blocks join the outer transaction. If the block or the
        persistence flush raises, every key the block touched is restored.
        """

        with self._lock:
            if self._unit is not None:
                yield self._unit
                return
            unit = UnitOfWork()
            self._unit = unit
            self._undo = {}
            try:
                yield unit
                if self._persistence is not None and not unit.empty:
                    self._persistence.flush(unit)
            except BaseException:
                for (store, key), previous in self._undo.items():
                    if previous is None:
                        getattr(self, store).pop(key, None)
                    else:
                        getattr(self, store)[key] = previous
                logger.warning(
                    "Transaction rolled back",
                    touched_segments=list(unit.segments),
                    restored=len(self._undo),
                )
                raise
            finally:
                self._unit = None
                self._undo = {}

    def _write(self, store: str, key: str, value) -> None:
        self._remember(store, key)
        getattr(self, store)[key] = value

    def _remove(self, store: str, key: str) -> None:
        self._remember(store, key)
        getattr(self, store).pop(key, None)

    def _remember(self, store: str, key: str) -> None:
        if self._unit is not None and (store, key) not in self._undo:
            self._undo[(store, key)] = getattr(self, store).get(key)

    def _track(self, bucket: str, entity) -> None:
        if self._unit is not None:
            getattr(self._unit, bucket)[entity.id] = entity

    def _track_delete(self, kind: str, entity_id: str) -> None:
        if self._unit is not None:
            self._unit.deleted.append((kind, entity_id))

    # Projects -------------------------------------------------------------
    def put_project(self, project: Project) -> Project:
        with self._lock:
            self._write("_projects", project.id, project)
            self._track("projects", project)
        return project

    def get_project(self, project_id: str) -> Project:
        project = self._projects.get(project_id)
        if project is None:
            raise NotFound("project", project_id)
        return project

    def list_projects(self) -> List[Project]:
        with self._lock:
            return list(self._projects.values())

    def delete_project(self, project_id: str) -> None:
        with self._lock:
            self._remove("_projects", project_id)
            self._track_delete("project", project_id)

    # Documents ------------------------------------------------------------
    def put_document(self, document: Document) -> Document:
        with self._lock:
            self._write("_documents", document.id, document)
            self._track("documents", document)
        return document

    def get_document(self, document_id: str) -> Document:
        document = self._documents.get(document_id)
        if document is None:
            raise NotFound("document", document_id)
        return document

    def list_documents(self, project_id: str) -> List[Document]:
        with self._lock:
            return [doc for doc in self._documents.values() if doc.project_id == project_id]

    def delete_document(self, document_id: str) -> None:
        with self._lock:
            self._remove("_documents", document_id)
            self._track_delete("document", document_id)

    # Segments -------------------------------------------------------------
    def add_segment(self, segment: Segment) -> Segment:
        with self._lock:
            self._write("_segments", segment.id, segment)
            self._track("segments", segment)
        return segment

    def replace_segment(self, segment: Segment, expected_version: int) -> Segment:
        """Compare-and-set write; bumps the version on success."""

        with self._lock:
            current = self.get_segment(segment.id)
            if current.version != expected_version:
                raise ConflictError(segment.id, expected_version, current.version)
            if self._unit is not None:
                self._unit.base_versions.setdefault(segment.id, current.version)
            stored = segment.model_copy(update={"version": current.version + 1})
            self._write("_segments", stored.id, stored)
            self._track("segments", stored)
        return stored

    def get_segment(self, segment_id: str) -> Segment:
        segment = self._segments.get(segment_id)
        if segment is None:
            raise NotFound("segment", segment_id)
        return segment

    def list_segments(self, document_id: str) -> List[Segment]:
        with self._lock:
            segments = [seg for seg in self._segments.values() if seg.document_id == document_id]
        return sorted(segments, key=lambda segment: segment.ordinal)

    # Translation memory ---------------------------------------------------
    def put_memory_entry(self, entry: TranslationMemoryEntry) -> TranslationMemoryEntry:
        with self._lock:
            self._write("_memory", entry.id, entry)
            self._track("memory", entry)
        return entry

    def get_memory_entry(self, entry_id: str) -> TranslationMemoryEntry:
        entry = self._memory.get(entry_id)
        if entry is None:
            raise NotFound("translation_memory_entry", entry_id)
        return entry

    def find_memory_entry(self, key: MemoryKey) -> Optional[TranslationMemoryEntry]:
        with self._lock:
            for entry in self._memory.values():
                if memory_key(entry.source_text, entry.source_language, entry.target_language) == key:
                    return entry
        return None

    def list_memory(self, source_language: str, target_language: str) -> List[TranslationMemoryEntry]:
        pair = (language_key(source_language), language_key(target_language))
        with self._lock:
            return [
                entry
                for entry in self._memory.values()
                if (language_key(entry.source_language), language_key(entry.target_language)) == pair
            ]

    # Glossary -------------------------------------------------------------
    def put_glossary_term(self, term: GlossaryTerm) -> GlossaryTerm:
        with self._lock:
            self._write("_glossary", term.id, term)
            self._track("glossary", term)
        return term

    def list_glossary(self) -> List[GlossaryTerm]:
        with self._lock:
            return list(self._glossary.values())

    # Memberships & teams --------------------------------------------------
    def put_membership(self, membership: TeamMembership) -> TeamMembership:
        with self._lock:
            self._write("_memberships", membership.id, membership)
            self._track("memberships", membership)
        return membership

    def delete_membership(self, membership_id: str) -> None:
        with self._lock:
            self._remove("_memberships", membership_id)
            self._track_delete("membership", membership_id)

    def list_memberships(
        self,
        scope_type: Optional[ScopeType] = None,
        scope_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> List[TeamMembership]:
        with self._lock:
            return [
                membership
                for membership in self._memberships.values()
                if (scope_type is None or membership.scope_type == scope_type)
                and (scope_id is None or membership.scope_id == scope_id)
                and (user_id is None or membership.user_id == user_id)
            ]

    def put_team(self, team: Team) -> Team:
        with self._lock:
            self._write("_teams", team.id, team)
            self._track("teams", team)
        return team

    def get_team(self, team_id: str) -> Team:
        team = self._teams.get(team_id)
        if team is None:
            raise NotFound("team", team_id)
        return team

    def list_teams(self) -> List[Team]:
        with self._lock:
            return list(self._teams.values())
