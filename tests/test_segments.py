"""Segment state machine, concurrency guard and cascading roll-ups."""
from __future__ import annotations

import asyncio
import threading

import pytest

from conftest import make_settings, member
from translation_workflow.engine import build_workflow_engine
from translation_workflow.errors import (
    ConflictError,
    DuplicateOrdinal,
    InvalidInput,
    InvalidTransition,
    ProviderUnavailable,
    Unauthorized,
)
from translation_workflow.models import (
    Actor,
    DocumentStatus,
    ProjectCreate,
    ProjectStatus,
    Role,
    SegmentOrigin,
    SegmentStatus,
)


def test_create_segment_rejects_duplicate_ordinal(engine, document) -> None:
    with pytest.raises(DuplicateOrdinal):
        engine.segments.create_segment(document.id, 0, "Another line")


@pytest.mark.parametrize("ordinal, text", [(-1, "Text"), (5, "   "), (5, "")])
def test_create_segment_validates_input(engine, document, ordinal, text) -> None:
    with pytest.raises(InvalidInput):
        engine.segments.create_segment(document.id, ordinal, text)


def test_create_segment_updates_document_count(engine, document) -> None:
    engine.segments.create_segment(document.id, 3, "New line")
    assert engine.projects.get_document(document.id).segment_count == 4


def test_translate_on_memory_miss_uses_provider(engine, provider, owner, segments) -> None:
    segment = segments[1]
    translated = asyncio.run(engine.segments.translate(segment.id, owner, segment.version))

    assert provider.calls == ["Reset your password"]
    assert translated.status == SegmentStatus.MACHINE_TRANSLATED
    assert translated.target_text == "[Spanish] Reset your password"
    assert translated.origin == SegmentOrigin.PROVIDER
    assert translated.confidence == 90
    assert translated.translator_id == owner.user_id
    assert translated.version == segment.version + 1


def test_translate_uses_provider_confidence_when_reported(engine, provider, owner, segments) -> None:
    provider.confidence = 72
    translated = asyncio.run(engine.segments.translate(segments[0].id, owner, 1))
    assert translated.confidence == 72


def test_translate_prefers_translation_memory(engine, provider, owner, segments) -> None:
    entry = engine.memory.record("Welcome to our platform", "Bienvenido a nuestra plataforma", "English", "Spanish")

    translated = asyncio.run(engine.segments.translate(segments[0].id, owner, 1))

    assert provider.calls == []
    assert translated.target_text == "Bienvenido a nuestra plataforma"
    assert translated.confidence == 100
    assert translated.origin == SegmentOrigin.MEMORY
    assert translated.memory_entry_id == entry.id
    assert engine.state.get_memory_entry(entry.id).frequency == 2


def test_provider_failure_leaves_segment_untouched(engine, provider, owner, segments) -> None:
    provider.errors = [ProviderUnavailable("down")]
    with pytest.raises(ProviderUnavailable):
        asyncio.run(engine.segments.translate(segments[0].id, owner, 1))
    stored = engine.segments.get_segment(segments[0].id)
    assert stored.status == SegmentStatus.UNTRANSLATED
    assert stored.version == 1


def test_cancelled_translate_writes_nothing(engine, provider, owner, segments) -> None:
    segment = segments[0]

    async def scenario() -> None:
        provider.gate = asyncio.Event()
        provider.started = asyncio.Event()
        task = asyncio.create_task(engine.segments.translate(segment.id, owner, segment.version))
        await provider.started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(scenario())

    stored = engine.segments.get_segment(segment.id)
    assert stored.status == SegmentStatus.UNTRANSLATED
    assert stored.target_text is None
    assert stored.version == segment.version


def test_translate_reviewed_segment_is_invalid(engine, owner, segments) -> None:
    segment = asyncio.run(engine.segments.translate(segments[0].id, owner, 1))
    segment = engine.segments.review(segment.id, owner, True, segment.version)
    with pytest.raises(InvalidTransition) as excinfo:
        asyncio.run(engine.segments.translate(segment.id, owner, segment.version))
    assert excinfo.value.context["current"] == SegmentStatus.REVIEWED


@pytest.mark.parametrize("prepare", ["untranslated", "translated", "reviewed"])
def test_viewer_edit_always_unauthorized(engine, owner, project, segments, prepare) -> None:
    segment = segments[0]
    if prepare != "untranslated":
        segment = asyncio.run(engine.segments.translate(segment.id, owner, segment.version))
    if prepare == "reviewed":
        segment = engine.segments.review(segment.id, owner, True, segment.version)

    viewer = member("vera", Role.VIEWER, project.id)
    with pytest.raises(Unauthorized):
        engine.segments.edit(segment.id, viewer, "Hola", segment.version)


def test_edit_records_translator_and_keeps_confidence(engine, owner, project, segments) -> None:
    translator = member("tina", Role.TRANSLATOR, project.id)
    segment = asyncio.run(engine.segments.translate(segments[0].id, owner, 1))

    edited = engine.segments.edit(segment.id, translator, "Bienvenidos a nuestra plataforma", segment.version)

    assert edited.status == SegmentStatus.HUMAN_EDITED
    assert edited.origin == SegmentOrigin.HUMAN
    assert edited.confidence == segment.confidence
    assert edited.translator_id == owner.user_id


def test_edit_from_scratch_gets_human_confidence(engine, project, segments) -> None:
    translator = member("tina", Role.TRANSLATOR, project.id)
    edited = engine.segments.edit(segments[0].id, translator, "Bienvenido", 1)
    assert edited.confidence == 80
    assert edited.translator_id == "tina"


def test_edit_with_blank_text_is_rejected(engine, owner, segments) -> None:
    with pytest.raises(InvalidInput):
        engine.segments.edit(segments[0].id, owner, "  ", 1)


def test_stale_version_conflicts(engine, owner, segments) -> None:
    engine.segments.edit(segments[0].id, owner, "Primera", 1)
    with pytest.raises(ConflictError) as excinfo:
        engine.segments.edit(segments[0].id, owner, "Segunda", 1)
    assert excinfo.value.expected == 1
    assert excinfo.value.actual == 2


def test_concurrent_edits_with_same_version(engine, owner, segments) -> None:
    segment = segments[0]
    barrier = threading.Barrier(2)
    outcomes = []

    def worker(text: str) -> None:
        barrier.wait()
        try:
            engine.segments.edit(segment.id, owner, text, segment.version)
            outcomes.append("ok")
        except ConflictError:
            outcomes.append("conflict")

    threads = [threading.Thread(target=worker, args=(text,)) for text in ("Hola", "Buenas")]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(outcomes) == ["conflict", "ok"]
    assert engine.segments.get_segment(segment.id).version == segment.version + 1


def test_failed_recompute_rolls_back_segment(engine, owner, document, segments, monkeypatch) -> None:
    def explode(document_id: str):
        raise RuntimeError("aggregation failed")

    monkeypatch.setattr(engine.aggregator, "recompute_document", explode)
    with pytest.raises(RuntimeError):
        engine.segments.edit(segments[0].id, owner, "Hola", 1)

    stored = engine.segments.get_segment(segments[0].id)
    assert stored.status == SegmentStatus.UNTRANSLATED
    assert stored.target_text is None
    assert stored.version == 1


def test_rollback_restores_inserts_updates_and_deletes(engine, owner, project, document) -> None:
    state = engine.state
    renamed = project.model_copy(update={"name": "Renamed"})
    membership = state.list_memberships(user_id=owner.user_id)[0]

    with pytest.raises(RuntimeError):
        with state.transaction():
            state.put_project(renamed)
            state.put_project(renamed.model_copy(update={"name": "Renamed twice"}))
            state.delete_membership(membership.id)
            engine.projects.create_project(
                owner, ProjectCreate(name="Scratch", source_language="en", target_languages=["de"])
            )
            raise RuntimeError("abort")

    assert state.get_project(project.id).name == "Help Center"
    assert [p.id for p in state.list_projects()] == [project.id]
    assert state.list_memberships(user_id=owner.user_id) == [membership]
    assert state.get_document(document.id) == document


def test_review_requires_reviewer_capability(engine, owner, project, segments) -> None:
    segment = asyncio.run(engine.segments.translate(segments[0].id, owner, 1))
    translator = member("tina", Role.TRANSLATOR, project.id)
    with pytest.raises(Unauthorized):
        engine.segments.review(segment.id, translator, True, segment.version)


def test_review_untranslated_is_invalid(engine, project, segments) -> None:
    reviewer = member("rui", Role.REVIEWER, project.id)
    with pytest.raises(InvalidTransition):
        engine.segments.review(segments[0].id, reviewer, True, 1)


def test_approve_records_reviewer_and_memory(engine, owner, project, segments) -> None:
    segment = engine.segments.edit(segments[1].id, owner, "Restablezca su contraseña", 1)
    reviewer = member("rui", Role.REVIEWER, project.id)

    reviewed = engine.segments.review(segment.id, reviewer, True, segment.version, comment="Looks good")

    assert reviewed.status == SegmentStatus.REVIEWED
    assert reviewed.reviewer_id == "rui"
    match = engine.memory.lookup("Reset your password", "English", "Spanish")
    assert match.similarity == 100
    assert match.entry.human_reviewed
    assert match.entry.target_text == "Restablezca su contraseña"


def test_approving_memory_fill_does_not_count_reuse_twice(engine, owner, project, segments) -> None:
    entry = engine.memory.record("Welcome to our platform", "Bienvenido a nuestra plataforma", "English", "Spanish")
    translated = asyncio.run(engine.segments.translate(segments[0].id, owner, 1))
    assert engine.state.get_memory_entry(entry.id).frequency == 2

    engine.segments.review(translated.id, member("rui", Role.REVIEWER, project.id), True, translated.version)

    stored = engine.state.get_memory_entry(entry.id)
    assert stored.frequency == 2
    assert stored.human_reviewed


def test_reject_requires_comment(engine, owner, project, segments) -> None:
    segment = asyncio.run(engine.segments.translate(segments[0].id, owner, 1))
    reviewer = member("rui", Role.REVIEWER, project.id)
    with pytest.raises(InvalidInput):
        engine.segments.review(segment.id, reviewer, False, segment.version)

    rejected = engine.segments.review(segment.id, reviewer, False, segment.version, comment="Wrong register")
    assert rejected.status == SegmentStatus.HUMAN_EDITED
    assert rejected.review_comment == "Wrong register"
    assert rejected.notes[-1].author_id == "rui"


def test_dual_control_blocks_self_review(provider) -> None:
    engine = build_workflow_engine(make_settings(require_dual_control=True), provider=provider)
    owner = Actor(user_id="olivia")
    project = engine.projects.create_project(
        owner, ProjectCreate(name="Legal", source_language="en", target_languages=["fr"])
    )
    document = engine.projects.add_document(project.id, owner, "terms.txt", "Terms of Service")[0]
    segment = engine.segments.edit(engine.segments.list_segments(document.id)[0].id, owner, "Conditions", 1)

    with pytest.raises(Unauthorized):
        engine.segments.review(segment.id, owner, True, segment.version)
    reviewed = engine.segments.review(segment.id, member("rui", Role.REVIEWER, project.id), True, segment.version)
    assert reviewed.status == SegmentStatus.REVIEWED


def test_reviewed_segment_needs_reopen_before_translator_edit(engine, owner, project, segments) -> None:
    segment = engine.segments.edit(segments[0].id, owner, "Hola", 1)
    segment = engine.segments.review(segment.id, owner, True, segment.version)
    translator = member("tina", Role.TRANSLATOR, project.id)
    with pytest.raises(Unauthorized):
        engine.segments.edit(segment.id, translator, "Hola de nuevo", segment.version)

    reviewer = member("rui", Role.REVIEWER, project.id)
    reopened = engine.segments.reopen(segment.id, reviewer, segment.version, comment="Terminology changed")
    assert reopened.status == SegmentStatus.HUMAN_EDITED
    assert reopened.reviewer_id is None

    edited = engine.segments.edit(reopened.id, translator, "Hola de nuevo", reopened.version)
    assert edited.target_text == "Hola de nuevo"


def test_reopen_only_from_reviewed(engine, owner, segments) -> None:
    with pytest.raises(InvalidTransition):
        engine.segments.reopen(segments[0].id, owner, 1)


def test_reset_clears_translation_and_confidence(engine, owner, project, segments) -> None:
    segment = segments[0]
    assert segment.confidence == 0
    segment = asyncio.run(engine.segments.translate(segment.id, owner, segment.version))
    assert segment.confidence > 0

    with pytest.raises(Unauthorized):
        engine.segments.reset(segment.id, member("tina", Role.TRANSLATOR, project.id), segment.version)

    reset = engine.segments.reset(segment.id, owner, segment.version)
    assert reset.status == SegmentStatus.UNTRANSLATED
    assert reset.confidence == 0
    assert reset.target_text is None


def test_comment_appends_note(engine, project, segments) -> None:
    reviewer = member("rui", Role.REVIEWER, project.id)
    commented = engine.segments.comment(segments[0].id, reviewer, "Check the tone", 1)
    assert [note.text for note in commented.notes] == ["Check the tone"]
    assert commented.status == SegmentStatus.UNTRANSLATED
    with pytest.raises(Unauthorized):
        engine.segments.comment(segments[0].id, member("vera", Role.VIEWER, project.id), "Hi", 2)


def test_progress_is_monotonic_under_approvals(engine, owner, project, document, segments) -> None:
    for segment in segments:
        asyncio.run(engine.segments.translate(segment.id, owner, segment.version))
    assert engine.projects.get_document(document.id).progress == 50.0

    seen = []
    for segment in engine.segments.list_segments(document.id):
        engine.segments.review(segment.id, owner, True, segment.version)
        seen.append(engine.projects.get_document(document.id).progress)

    assert seen == sorted(seen)
    assert seen[-1] == 100.0
    assert engine.projects.get_document(document.id).status == DocumentStatus.COMPLETED
    assert engine.projects.get_project(project.id).status == ProjectStatus.COMPLETED


def test_human_edit_moves_document_to_review(engine, owner, project, document, segments) -> None:
    engine.segments.edit(segments[0].id, owner, "Hola", 1)
    refreshed = engine.projects.get_document(document.id)
    assert refreshed.status == DocumentStatus.IN_REVIEW
    assert refreshed.progress == pytest.approx(26.67)
    assert engine.projects.get_project(project.id).status == ProjectStatus.IN_REVIEW
