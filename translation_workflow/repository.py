"""SQL persistence for the in-memory working set."""
from __future__ import annotations

from contextlib import contextmanager
from enum import Enum
from typing import Callable, Dict, Iterator, Optional, Type

import structlog
from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from . import models
from .db_models import (
    Document as ORMDocument,
    GlossaryTerm as ORMGlossaryTerm,
    Membership as ORMMembership,
    Project as ORMProject,
    Segment as ORMSegment,
    Team as ORMTeam,
    TranslationMemoryEntry as ORMTranslationMemoryEntry,
)
from .errors import ConflictError, DuplicateKey
from .state import State, UnitOfWork

logger = structlog.get_logger(__name__)

# Flush order follows foreign keys; deletes run in reverse.
_TABLES = (
    ("projects", "project", ORMProject),
    ("documents", "document", ORMDocument),
    ("segments", "segment", ORMSegment),
    ("memory", "translation_memory_entry", ORMTranslationMemoryEntry),
    ("glossary", "glossary_term", ORMGlossaryTerm),
    ("memberships", "membership", ORMMembership),
    ("teams", "team", ORMTeam),
)


def _columns(entity: BaseModel) -> Dict[str, object]:
    data = {}
    for name, value in entity.model_dump().items():
        data[name] = value.value if isinstance(value, Enum) else value
    if isinstance(entity, models.Segment):
        data["notes"] = [note.model_dump(mode="json") for note in entity.notes]
    return data


class SqlPersistence:
    """Applies units of work through SQLAlchemy in a single session."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    @contextmanager
    def _session_scope(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def flush(self, unit: UnitOfWork) -> None:
        try:
            with self._session_scope() as session:
                for bucket, kind, orm_class in _TABLES:
                    for entity in getattr(unit, bucket).values():
                        if orm_class is ORMSegment:
                            self._write_segment(session, entity, unit.base_versions.get(entity.id))
                        else:
                            session.merge(orm_class(**_columns(entity)))
                    session.flush()
                kinds = {kind: orm_class for _, kind, orm_class in _TABLES}
                for kind, entity_id in reversed(unit.deleted):
                    record = session.get(kinds[kind], entity_id)
                    if record is not None:
                        session.delete(record)
                session.flush()
        except StaleDataError as exc:
            segment_id = next(iter(unit.segments), "segment")
            logger.warning("Stale segment write rejected by database", segment_id=segment_id)
            raise ConflictError(segment_id, unit.base_versions.get(segment_id)) from exc
        except IntegrityError as exc:
            raise DuplicateKey("Database uniqueness constraint violated", detail=str(exc.orig)) from exc

    def _write_segment(self, session: Session, segment: models.Segment, base_version: Optional[int]) -> None:
        record = session.get(ORMSegment, segment.id)
        values = _columns(segment)
        if record is None:
            session.add(ORMSegment(**values))
            return
        if base_version is not None and record.version != base_version:
            raise ConflictError(segment.id, base_version, record.version)
        for name, value in values.items():
            setattr(record, name, value)

    def load(self, state: State) -> State:
        """Populate ``state`` with every stored entity."""

        loaders = (
            (ORMProject, models.Project, state.put_project),
            (ORMDocument, models.Document, state.put_document),
            (ORMSegment, models.Segment, state.add_segment),
            (ORMTranslationMemoryEntry, models.TranslationMemoryEntry, state.put_memory_entry),
            (ORMGlossaryTerm, models.GlossaryTerm, state.put_glossary_term),
            (ORMMembership, models.TeamMembership, state.put_membership),
            (ORMTeam, models.Team, state.put_team),
        )
        session = self._session_factory()
        try:
            for orm_class, model_class, put in loaders:
                for record in session.query(orm_class).all():
                    put(self._to_model(model_class, record))
        finally:
            session.close()
        logger.info("State loaded from database", projects=len(state.list_projects()))
        return state

    @staticmethod
    def _to_model(model_class: Type[BaseModel], record) -> BaseModel:
        data = {column.name: getattr(record, column.name) for column in record.__table__.columns}
        if model_class is models.Segment:
            data["notes"] = data.get("notes") or []
        if model_class is models.Team:
            data["project_ids"] = data.get("project_ids") or []
        return model_class.model_validate(data)
