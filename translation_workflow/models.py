"""Domain and API models for the translation workflow engine."""
from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .languages import language_key, language_name


class Role(str, Enum):
    """Project roles in ascending privilege."""

    VIEWER = "viewer"
    REVIEWER = "reviewer"
    TRANSLATOR = "translator"
    ADMIN = "admin"
    OWNER = "owner"


class ProjectStatus(str, Enum):
    """Project lifecycle states."""

    DRAFT = "draft"
    ACTIVE = "active"
    IN_REVIEW = "in_review"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class DocumentStatus(str, Enum):
    """Document lifecycle states derived from segment progress."""

    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    IN_REVIEW = "in_review"
    COMPLETED = "completed"


class SegmentStatus(str, Enum):
    """Per-segment translation states."""

    UNTRANSLATED = "untranslated"
    MACHINE_TRANSLATED = "machine_translated"
    HUMAN_EDITED = "human_edited"
    REVIEWED = "reviewed"


class SegmentOrigin(str, Enum):
    """Where the current target text came from."""

    MEMORY = "memory"
    PROVIDER = "provider"
    HUMAN = "human"


class ScopeType(str, Enum):
    """Scope a role grant applies to."""

    PROJECT = "project"
    TEAM = "team"


class Grant(BaseModel):
    """Raw (scope, role) grant supplied by the identity collaborator."""

    model_config = ConfigDict(frozen=True)

    scope_type: ScopeType
    scope_id: str
    role: Role


class Actor(BaseModel):
    """Explicit per-call caller context."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    grants: List[Grant] = Field(default_factory=list)

    @field_validator("user_id")
    @classmethod
    def _require_user_id(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("actor id must not be empty")
        return value


class ProjectCreate(BaseModel):
    """All fields required to create a project in one validated step."""

    name: str = Field(..., min_length=1)
    description: str = ""
    source_language: str = Field(..., min_length=1)
    target_languages: List[str] = Field(..., min_length=1)
    due_date: Optional[date] = None

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("project name must not be blank")
        return value

    @field_validator("source_language")
    @classmethod
    def _canonical_source(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("source language must not be blank")
        return language_name(value)

    @model_validator(mode="after")
    def _check_targets(self) -> "ProjectCreate":
        seen = set()
        targets: List[str] = []
        for language in self.target_languages:
            if not language.strip():
                raise ValueError("target languages must not be blank")
            key = language_key(language)
            if key == language_key(self.source_language):
                raise ValueError("source language cannot also be a target language")
            if key not in seen:
                seen.add(key)
                targets.append(language_name(language))
        self.target_languages = targets
        return self


class Project(BaseModel):
    """Persisted project representation."""

    id: str
    name: str
    description: str = ""
    source_language: str
    target_languages: List[str]
    status: ProjectStatus = ProjectStatus.DRAFT
    progress: float = Field(default=0.0, ge=0.0, le=100.0)
    owner_id: str
    due_date: Optional[date] = None
    created_at: datetime
    updated_at: datetime


class Document(BaseModel):
    """One language pair of one source file inside a project."""

    id: str
    project_id: str
    name: str
    source_language: str
    target_language: str
    status: DocumentStatus = DocumentStatus.QUEUED
    progress: float = Field(default=0.0, ge=0.0, le=100.0)
    segment_count: int = 0
    assigned_translator: Optional[str] = None
    archived: bool = False
    created_at: datetime
    updated_at: datetime


class SegmentNote(BaseModel):
    """Comment left on a segment."""

    author_id: str
    text: str
    created_at: datetime


class Segment(BaseModel):
    """Smallest unit of translatable text."""

    id: str
    document_id: str
    ordinal: int = Field(..., ge=0)
    source_text: str
    target_text: Optional[str] = None
    status: SegmentStatus = SegmentStatus.UNTRANSLATED
    confidence: int = Field(default=0, ge=0, le=100)
    origin: Optional[SegmentOrigin] = None
    memory_entry_id: Optional[str] = None
    translator_id: Optional[str] = None
    reviewer_id: Optional[str] = None
    review_comment: Optional[str] = None
    notes: List[SegmentNote] = Field(default_factory=list)
    version: int = 1
    created_at: datetime
    updated_at: datetime


class TranslationMemoryEntry(BaseModel):
    """Reusable source -> target pair."""

    id: str
    source_text: str
    target_text: str
    source_language: str
    target_language: str
    frequency: int = 1
    quality: int = Field(default=0, ge=0, le=100)
    human_reviewed: bool = False
    created_at: datetime
    last_used: datetime


class MatchResult(BaseModel):
    """Outcome of a memory lookup; ``entry`` is None on a miss."""

    entry: Optional[TranslationMemoryEntry] = None
    similarity: int = 0

    @property
    def found(self) -> bool:
        return self.entry is not None


class GlossaryTerm(BaseModel):
    """Curated term with a mandated translation."""

    id: str
    term: str
    preferred_translation: str
    domain: str = "General"
    definition: Optional[str] = None
    notes: Optional[str] = None
    project_id: Optional[str] = None
    created_at: datetime


class GlossaryConstraint(BaseModel):
    """A glossary term found in a piece of text."""

    term_id: str
    term: str
    preferred_translation: str
    domain: str
    start: int
    end: int


class TeamMembership(BaseModel):
    """Stored (scope, user, role) grant."""

    id: str
    scope_type: ScopeType
    scope_id: str
    user_id: str
    role: Role
    created_at: datetime


class Team(BaseModel):
    """Group of users whose members inherit access to the listed projects."""

    id: str
    name: str
    project_ids: List[str] = Field(default_factory=list)
    created_by: Optional[str] = None
    created_at: datetime


class EffectiveMember(BaseModel):
    """User with access to a project and the strongest role across grant paths."""

    user_id: str
    role: Role
    sources: List[str] = Field(default_factory=list)
