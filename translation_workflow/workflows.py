"""Segment state machine and document/project roll-up rules."""
from __future__ import annotations

from typing import Dict, FrozenSet, Iterable, List, Optional

from .errors import InvalidTransition
from .models import Document, DocumentStatus, ProjectStatus, Segment, SegmentStatus


SEGMENT_TRANSITIONS: Dict[SegmentStatus, FrozenSet[SegmentStatus]] = {
    SegmentStatus.UNTRANSLATED: frozenset(
        {SegmentStatus.MACHINE_TRANSLATED, SegmentStatus.HUMAN_EDITED}
    ),
    SegmentStatus.MACHINE_TRANSLATED: frozenset(
        {
            SegmentStatus.MACHINE_TRANSLATED,
            SegmentStatus.HUMAN_EDITED,
            SegmentStatus.REVIEWED,
            SegmentStatus.UNTRANSLATED,
        }
    ),
    SegmentStatus.HUMAN_EDITED: frozenset(
        {SegmentStatus.HUMAN_EDITED, SegmentStatus.REVIEWED, SegmentStatus.UNTRANSLATED}
    ),
    SegmentStatus.REVIEWED: frozenset({SegmentStatus.HUMAN_EDITED, SegmentStatus.UNTRANSLATED}),
}

PROGRESS_WEIGHTS: Dict[SegmentStatus, float] = {
    SegmentStatus.UNTRANSLATED: 0.0,
    SegmentStatus.MACHINE_TRANSLATED: 50.0,
    SegmentStatus.HUMAN_EDITED: 80.0,
    SegmentStatus.REVIEWED: 100.0,
}

AWAITING_REVIEW = SegmentStatus.HUMAN_EDITED


def check_transition(segment: Segment, target: SegmentStatus, reason: Optional[str] = None) -> None:
    """Raise ``InvalidTransition`` unless ``segment`` may move to ``target``."""

    if target not in SEGMENT_TRANSITIONS[segment.status]:
        raise InvalidTransition(segment.id, segment.status, target, reason)


def document_progress(segments: Iterable[Segment]) -> float:
    """Weighted mean of segment states, 0-100."""

    weights = [PROGRESS_WEIGHTS[segment.status] for segment in segments]
    if not weights:
        return 0.0
    return round(sum(weights) / len(weights), 2)


def document_status(segments: List[Segment], progress: float) -> DocumentStatus:
    """Derive a document's status from its segments."""

    if not segments or progress <= 0:
        return DocumentStatus.QUEUED
    if all(segment.status == SegmentStatus.REVIEWED for segment in segments):
        return DocumentStatus.COMPLETED
    if any(segment.status == AWAITING_REVIEW for segment in segments):
        return DocumentStatus.IN_REVIEW
    return DocumentStatus.IN_PROGRESS


def project_progress(documents: Iterable[Document]) -> float:
    """Mean progress of live documents that have segments."""

    counted = [doc.progress for doc in documents if not doc.archived and doc.segment_count > 0]
    if not counted:
        return 0.0
    return round(sum(counted) / len(counted), 2)


def project_status(current: ProjectStatus, documents: Iterable[Document]) -> ProjectStatus:
    """Derive a project's status; ``archived`` is manual and sticky.

    A project counts as ``in_review`` as soon as every live document is in
    review or completed, rather than staying ``active`` until all documents
    complete. One document in review alongside a queued or in-progress one
    still leaves the project ``active``.
    """

    if current == ProjectStatus.ARCHIVED:
        return current
    live = [doc for doc in documents if not doc.archived]
    if not live or all(doc.status == DocumentStatus.QUEUED for doc in live):
        return ProjectStatus.DRAFT
    if all(doc.status == DocumentStatus.COMPLETED for doc in live):
        return ProjectStatus.COMPLETED
    if all(doc.status in (DocumentStatus.IN_REVIEW, DocumentStatus.COMPLETED) for doc in live):
        return ProjectStatus.IN_REVIEW
    return ProjectStatus.ACTIVE
