"""SQLAlchemy tables backing the workflow engine."""
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.sql import func

from .database import Base


class Project(Base):
    __tablename__ = "projects"

    id = Column(String(36), primary_key=True)
    name = Column(String(255), nullable=False, index=True)
    description = Column(Text, default="")
    source_language = Column(String(64), nullable=False)
    target_languages = Column(JSON, nullable=False)
    status = Column(String(20), nullable=False, default="draft")
    progress = Column(Float, default=0.0)
    owner_id = Column(String(64), nullable=False, index=True)
    due_date = Column(Date)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())


class Document(Base):
    __tablename__ = "documents"

    id = Column(String(36), primary_key=True)
    project_id = Column(String(36), ForeignKey("projects.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    source_language = Column(String(64), nullable=False)
    target_language = Column(String(64), nullable=False)
    status = Column(String(20), nullable=False, default="queued")
    progress = Column(Float, default=0.0)
    segment_count = Column(Integer, default=0)
    assigned_translator = Column(String(64))
    archived = Column(Boolean, default=False)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())


class Segment(Base):
    __tablename__ = "segments"

    id = Column(String(36), primary_key=True)
    document_id = Column(String(36), ForeignKey("documents.id"), nullable=False)
    ordinal = Column(Integer, nullable=False)
    source_text = Column(Text, nullable=False)
    target_text = Column(Text)
    status = Column(String(20), nullable=False, default="untranslated")
    confidence = Column(Integer, default=0)
    origin = Column(String(20))
    memory_entry_id = Column(String(36))
    translator_id = Column(String(64))
    reviewer_id = Column(String(64))
    review_comment = Column(Text)
    notes = Column(JSON)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    # Versions are assigned by the engine; the mapper adds them to the UPDATE's WHERE clause.
    __mapper_args__ = {"version_id_col": version, "version_id_generator": False}

    __table_args__ = (UniqueConstraint("document_id", "ordinal", name="uq_segment_ordinal"),)


class TranslationMemoryEntry(Base):
    __tablename__ = "translation_memory"

    id = Column(String(36), primary_key=True)
    source_text = Column(Text, nullable=False)
    target_text = Column(Text, nullable=False)
    source_language = Column(String(64), nullable=False)
    target_language = Column(String(64), nullable=False)
    frequency = Column(Integer, default=1)
    quality = Column(Integer, default=0)
    human_reviewed = Column(Boolean, default=False)
    created_at = Column(DateTime, default=func.now())
    last_used = Column(DateTime, default=func.now())

    # Indexes for performance
    __table_args__ = (
        Index("idx_tm_languages", "source_language", "target_language"),
        Index("idx_tm_frequency", "frequency"),
    )


class GlossaryTerm(Base):
    __tablename__ = "glossary_terms"

    id = Column(String(36), primary_key=True)
    term = Column(String(255), nullable=False)
    preferred_translation = Column(String(255), nullable=False)
    domain = Column(String(100), nullable=False, default="General")
    definition = Column(Text)
    notes = Column(Text)
    project_id = Column(String(36), index=True)
    created_at = Column(DateTime, default=func.now())

    __table_args__ = (Index("idx_glossary_term_domain", "term", "domain"),)


class Membership(Base):
    __tablename__ = "memberships"

    id = Column(String(36), primary_key=True)
    scope_type = Column(String(20), nullable=False)
    scope_id = Column(String(36), nullable=False)
    user_id = Column(String(64), nullable=False, index=True)
    role = Column(String(20), nullable=False)
    created_at = Column(DateTime, default=func.now())

    __table_args__ = (Index("idx_membership_scope", "scope_type", "scope_id"),)


class Team(Base):
    __tablename__ = "teams"

    id = Column(String(36), primary_key=True)
    name = Column(String(255), nullable=False)
    project_ids = Column(JSON)
    created_by = Column(String(255))
    created_at = Column(DateTime, default=func.now())
