"""Role resolution and capability checks."""
from __future__ import annotations

import pytest

from translation_workflow.errors import Unauthorized
from translation_workflow.models import Grant, ProjectStatus, Role, ScopeType, SegmentStatus
from translation_workflow.permissions import AccessContext, Action, Resource, can, require, resolve_role


def grant(scope_type: ScopeType, scope_id: str, role: Role) -> Grant:
    return Grant(scope_type=scope_type, scope_id=scope_id, role=role)


def resource(**overrides) -> Resource:
    values = {"project_id": "p1", "project_status": ProjectStatus.ACTIVE}
    values.update(overrides)
    return Resource(**values)


def test_owner_resolves_to_owner_without_grants() -> None:
    assert resolve_role("olivia", "p1", "olivia", [], {}) == Role.OWNER


def test_maximum_role_across_direct_and_team_grants() -> None:
    grants = [
        grant(ScopeType.PROJECT, "p1", Role.TRANSLATOR),
        grant(ScopeType.TEAM, "t1", Role.ADMIN),
    ]
    assert resolve_role("tom", "p1", "olivia", grants, {"t1": {"p1"}}) == Role.ADMIN


def test_team_grant_without_project_access_is_ignored() -> None:
    grants = [grant(ScopeType.TEAM, "t1", Role.ADMIN)]
    assert resolve_role("tom", "p1", "olivia", grants, {"t1": {"p2"}}) is None


def test_owner_grant_for_non_owner_is_capped_at_admin() -> None:
    grants = [grant(ScopeType.PROJECT, "p1", Role.OWNER)]
    assert resolve_role("mallory", "p1", "olivia", grants, {}) == Role.ADMIN


@pytest.mark.parametrize("status", list(SegmentStatus))
def test_viewer_can_never_edit(status: SegmentStatus) -> None:
    context = AccessContext(actor_id="vera", role=Role.VIEWER)
    assert not can(context, Action.EDIT, resource(segment_status=status))
    assert can(context, Action.VIEW, resource(segment_status=status))


def test_translator_cannot_edit_reviewed_segment() -> None:
    context = AccessContext(actor_id="tina", role=Role.TRANSLATOR)
    assert can(context, Action.EDIT, resource(segment_status=SegmentStatus.HUMAN_EDITED))
    assert not can(context, Action.EDIT, resource(segment_status=SegmentStatus.REVIEWED))


def test_translator_limited_to_assigned_documents() -> None:
    context = AccessContext(actor_id="tina", role=Role.TRANSLATOR)
    mine = resource(segment_status=SegmentStatus.UNTRANSLATED, assigned_translator="tina")
    theirs = resource(segment_status=SegmentStatus.UNTRANSLATED, assigned_translator="tom")
    assert can(context, Action.TRANSLATE, mine)
    assert not can(context, Action.TRANSLATE, theirs)


def test_capabilities_are_not_cumulative_by_rank() -> None:
    translator = AccessContext(actor_id="tina", role=Role.TRANSLATOR)
    reviewer = AccessContext(actor_id="rui", role=Role.REVIEWER)
    assert not can(translator, Action.REVIEW, resource())
    assert not can(translator, Action.REOPEN, resource())
    assert can(reviewer, Action.REVIEW, resource())
    assert not can(reviewer, Action.EDIT, resource())


def test_archived_project_only_allows_viewing_and_management() -> None:
    admin = AccessContext(actor_id="ada", role=Role.ADMIN)
    archived = resource(project_status=ProjectStatus.ARCHIVED)
    assert not can(admin, Action.EDIT, archived)
    assert not can(admin, Action.MANAGE_DOCUMENTS, archived)
    assert can(admin, Action.VIEW, archived)
    assert can(admin, Action.MANAGE_PROJECT, archived)


def test_only_owner_deletes_or_transfers() -> None:
    admin = AccessContext(actor_id="ada", role=Role.ADMIN)
    owner = AccessContext(actor_id="olivia", role=Role.OWNER)
    for action in (Action.DELETE_PROJECT, Action.TRANSFER_OWNERSHIP):
        assert not can(admin, action, resource())
        assert can(owner, action, resource())


def test_require_raises_with_context() -> None:
    context = AccessContext(actor_id="nobody", role=None)
    with pytest.raises(Unauthorized) as excinfo:
        require(context, Action.VIEW, resource(), entity_id="p1")
    assert excinfo.value.context["actor_id"] == "nobody"
    assert excinfo.value.to_dict()["context"]["action"] == "view"
