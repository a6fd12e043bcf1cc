"""Translation memory and glossary matching."""
from __future__ import annotations

import math
import re
from datetime import datetime
from typing import Dict, List, Optional, Tuple
from uuid import uuid4

import structlog

from .config import EngineSettings
from .errors import DuplicateKey, InvalidInput
from .languages import language_name
from .models import GlossaryConstraint, GlossaryTerm, MatchResult, TranslationMemoryEntry
from .state import State, memory_key, normalize_text

logger = structlog.get_logger(__name__)


def edit_distance(a: str, b: str) -> int:
    """Levenshtein distance between ``a`` and ``b``."""

    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + (char_a != char_b),
                )
            )
        previous = current
    return previous[-1]


def similarity(a: str, b: str) -> int:
    """Length-normalised similarity, 100 only for equal normalised text."""

    left, right = normalize_text(a), normalize_text(b)
    if left == right:
        return 100
    longest = max(len(left), len(right))
    score = 100 * (1 - edit_distance(left, right) / longest)
    # Floor keeps near-identical strings strictly below an exact match.
    return max(0, min(99, math.floor(score)))


def _require_text(value: str, field: str) -> str:
    if value is None or not value.strip():
        raise InvalidInput(f"{field} must not be empty", field=field)
    return value


class TranslationMemoryService:
    """Fuzzy lookup and upsert of reusable translation pairs."""

    def __init__(self, state: State, settings: EngineSettings) -> None:
        self._state = state
        self._settings = settings

    def lookup(self, source_text: str, source_language: str, target_language: str) -> MatchResult:
        _require_text(source_text, "source_text")
        best: Optional[Tuple[int, int, datetime]] = None
        best_entry: Optional[TranslationMemoryEntry] = None
        for entry in self._state.list_memory(source_language, target_language):
            score = similarity(entry.source_text, source_text)
            if score < self._settings.similarity_floor:
                continue
            rank = (score, entry.frequency, entry.last_used)
            if best is None or rank > best:
                best = rank
                best_entry = entry
        if best_entry is None:
            return MatchResult()
        return MatchResult(entry=best_entry, similarity=best[0])

    def record(
        self,
        source_text: str,
        target_text: str,
        source_language: str,
        target_language: str,
        quality: int = 0,
        human_reviewed: bool = False,
        supersede: bool = False,
        count_use: bool = True,
    ) -> TranslationMemoryEntry:
        """Insert a pair or bump the frequency of the existing one.

        ``count_use=False`` upserts without counting another reuse, for pairs
        whose reuse was already counted when the segment was filled.

        The stored target only changes when ``supersede`` is set, and even
        then a human-reviewed target is kept unless the newcomer is also
        reviewed and of at least the same quality.
        """

        _require_text(source_text, "source_text")
        _require_text(target_text, "target_text")
        key = memory_key(source_text, source_language, target_language)
        now = datetime.utcnow()
        with self._state.transaction():
            existing = self._state.find_memory_entry(key)
            if existing is None:
                entry = TranslationMemoryEntry(
                    id=str(uuid4()),
                    source_text=source_text.strip(),
                    target_text=target_text.strip(),
                    source_language=language_name(source_language),
                    target_language=language_name(target_language),
                    quality=quality,
                    human_reviewed=human_reviewed,
                    created_at=now,
                    last_used=now,
                )
                logger.info("Translation memory entry created", entry_id=entry.id)
                return self._state.put_memory_entry(entry)

            updates: Dict[str, object] = {}
            if count_use:
                updates["frequency"] = existing.frequency + 1
            if supersede:
                protected = existing.human_reviewed and (
                    not human_reviewed or quality < existing.quality
                )
                if protected:
                    logger.warning(
                        "Translation memory overwrite refused",
                        entry_id=existing.id,
                        stored_quality=existing.quality,
                        offered_quality=quality,
                    )
                else:
                    updates.update(
                        target_text=target_text.strip(),
                        quality=quality,
                        human_reviewed=human_reviewed,
                        last_used=now,
                    )
            return self._state.put_memory_entry(existing.model_copy(update=updates))

    def mark_used(self, entry_id: str) -> TranslationMemoryEntry:
        """Count a reuse of ``entry_id``."""

        with self._state.transaction():
            entry = self._state.get_memory_entry(entry_id)
            return self._state.put_memory_entry(
                entry.model_copy(
                    update={"frequency": entry.frequency + 1, "last_used": datetime.utcnow()}
                )
            )

    def list_entries(self, source_language: str, target_language: str) -> List[TranslationMemoryEntry]:
        entries = self._state.list_memory(source_language, target_language)
        return sorted(entries, key=lambda entry: (-entry.frequency, entry.source_text))


class GlossaryService:
    """Domain terminology with organisation and project scopes."""

    def __init__(self, state: State) -> None:
        self._state = state

    def add_term(
        self,
        term: str,
        preferred_translation: str,
        domain: str = "General",
        definition: Optional[str] = None,
        notes: Optional[str] = None,
        project_id: Optional[str] = None,
    ) -> GlossaryTerm:
        _require_text(term, "term")
        _require_text(preferred_translation, "preferred_translation")
        domain = (domain or "General").strip()
        key = (term.strip().casefold(), domain.casefold(), project_id)
        with self._state.transaction():
            for existing in self._state.list_glossary():
                if self._key(existing) == key:
                    raise DuplicateKey(
                        f"Glossary term '{term}' already exists in domain '{domain}'",
                        term=term,
                        domain=domain,
                        project_id=project_id,
                        existing_id=existing.id,
                    )
            entry = GlossaryTerm(
                id=str(uuid4()),
                term=term.strip(),
                preferred_translation=preferred_translation.strip(),
                domain=domain,
                definition=definition,
                notes=notes,
                project_id=project_id,
                created_at=datetime.utcnow(),
            )
            self._state.put_glossary_term(entry)
        logger.info("Glossary term added", term_id=entry.id, domain=domain, project_id=project_id)
        return entry

    def list_terms(self, domain: Optional[str] = None, project_id: Optional[str] = None) -> List[GlossaryTerm]:
        terms = self._scoped_terms(domain, project_id)
        return sorted(terms.values(), key=lambda term: term.term.casefold())

    def apply_glossary(
        self, text: str, domain: Optional[str] = None, project_id: Optional[str] = None
    ) -> List[GlossaryConstraint]:
        """Terms present in ``text``; the text itself is never rewritten."""

        _require_text(text, "text")
        constraints: List[GlossaryConstraint] = []
        for term in self._scoped_terms(domain, project_id).values():
            pattern = re.compile(r"(?<!\w)" + re.escape(term.term) + r"(?!\w)", re.IGNORECASE)
            match = pattern.search(text)
            if match is None:
                continue
            constraints.append(
                GlossaryConstraint(
                    term_id=term.id,
                    term=term.term,
                    preferred_translation=term.preferred_translation,
                    domain=term.domain,
                    start=match.start(),
                    end=match.end(),
                )
            )
        return sorted(constraints, key=lambda constraint: (constraint.start, -constraint.end))

    def _scoped_terms(self, domain: Optional[str], project_id: Optional[str]) -> Dict[Tuple[str, str], GlossaryTerm]:
        wanted = domain.strip().casefold() if domain else None
        scoped: Dict[Tuple[str, str], GlossaryTerm] = {}
        for term in self._state.list_glossary():
            if wanted is not None and term.domain.casefold() != wanted:
                continue
            if term.project_id not in (None, project_id):
                continue
            key = (term.term.casefold(), term.domain.casefold())
            # Project terms override organisation terms.
            if key in scoped and scoped[key].project_id is not None:
                continue
            scoped[key] = term
        return scoped

    @staticmethod
    def _key(term: GlossaryTerm) -> Tuple[str, str, Optional[str]]:
        return term.term.casefold(), term.domain.casefold(), term.project_id
