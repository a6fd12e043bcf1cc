"""Role ranking, capability table and the ``can`` check."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Mapping, Optional, Set

from .errors import Unauthorized
from .models import Grant, ProjectStatus, Role, ScopeType, SegmentStatus


class Action(str, Enum):
    """Operations gated by role."""

    VIEW = "view"
    COMMENT = "comment"
    TRANSLATE = "translate"
    EDIT = "edit"
    REVIEW = "review"
    REOPEN = "reopen"
    RESET = "reset"
    MANAGE_GLOSSARY = "manage_glossary"
    MANAGE_DOCUMENTS = "manage_documents"
    MANAGE_MEMBERS = "manage_members"
    MANAGE_PROJECT = "manage_project"
    DELETE_PROJECT = "delete_project"
    TRANSFER_OWNERSHIP = "transfer_ownership"


ROLE_RANK: Dict[Role, int] = {
    Role.VIEWER: 0,
    Role.REVIEWER: 1,
    Role.TRANSLATOR: 2,
    Role.ADMIN: 3,
    Role.OWNER: 4,
}

_ALL = frozenset(Role)
_MANAGERS = frozenset({Role.ADMIN, Role.OWNER})

# Capabilities are explicit per role: a translator outranks a reviewer but
# may not review or reopen.
CAPABILITIES: Dict[Action, FrozenSet[Role]] = {
    Action.VIEW: _ALL,
    Action.COMMENT: frozenset({Role.REVIEWER, Role.TRANSLATOR, Role.ADMIN, Role.OWNER}),
    Action.TRANSLATE: frozenset({Role.TRANSLATOR, Role.ADMIN, Role.OWNER}),
    Action.EDIT: frozenset({Role.TRANSLATOR, Role.ADMIN, Role.OWNER}),
    Action.REVIEW: frozenset({Role.REVIEWER, Role.ADMIN, Role.OWNER}),
    Action.REOPEN: frozenset({Role.REVIEWER, Role.ADMIN, Role.OWNER}),
    Action.RESET: _MANAGERS,
    Action.MANAGE_GLOSSARY: _MANAGERS,
    Action.MANAGE_DOCUMENTS: _MANAGERS,
    Action.MANAGE_MEMBERS: _MANAGERS,
    Action.MANAGE_PROJECT: _MANAGERS,
    Action.DELETE_PROJECT: frozenset({Role.OWNER}),
    Action.TRANSFER_OWNERSHIP: frozenset({Role.OWNER}),
}

# Allowed on archived projects.
_ARCHIVE_SAFE = frozenset({Action.VIEW, Action.MANAGE_PROJECT, Action.DELETE_PROJECT})


@dataclass(frozen=True)
class AccessContext:
    """Who is acting and with which effective role."""

    actor_id: str
    role: Optional[Role]


@dataclass(frozen=True)
class Resource:
    """State of the resource an action targets."""

    project_id: str
    project_status: ProjectStatus
    segment_status: Optional[SegmentStatus] = None
    assigned_translator: Optional[str] = None


def rank(role: Optional[Role]) -> int:
    return ROLE_RANK[role] if role is not None else -1


def max_role(roles: Iterable[Role]) -> Optional[Role]:
    """Highest-privilege role of ``roles`` or None when empty."""
    best: Optional[Role] = None
    for role in roles:
        if rank(role) > rank(best):
            best = role
    return best


def grant_applies(grant: Grant, project_id: str, team_projects: Mapping[str, Set[str]]) -> bool:
    """Whether ``grant`` gives access to ``project_id`` directly or via a team."""
    if grant.scope_type == ScopeType.PROJECT:
        return grant.scope_id == project_id
    return project_id in team_projects.get(grant.scope_id, set())


def resolve_role(
    user_id: str,
    project_id: str,
    owner_id: str,
    grants: Iterable[Grant],
    team_projects: Mapping[str, Set[str]],
) -> Optional[Role]:
    """Effective role: the maximum across ownership and every applicable grant."""

    if user_id == owner_id:
        return Role.OWNER
    roles = [grant.role for grant in grants if grant_applies(grant, project_id, team_projects)]
    # Ownership is only ever derived from the project record.
    return max_role(role if role != Role.OWNER else Role.ADMIN for role in roles)


def can(context: AccessContext, action: Action, resource: Resource) -> bool:
    """Pure permission check over effective role and resource state."""

    role = context.role
    if role is None or role not in CAPABILITIES[action]:
        return False
    if resource.project_status == ProjectStatus.ARCHIVED and action not in _ARCHIVE_SAFE:
        return False
    if action in (Action.EDIT, Action.TRANSLATE):
        if role == Role.TRANSLATOR:
            if resource.segment_status == SegmentStatus.REVIEWED:
                return False
            if resource.assigned_translator not in (None, context.actor_id):
                return False
    return True


def require(context: AccessContext, action: Action, resource: Resource, entity_id: Optional[str] = None) -> None:
    """Raise ``Unauthorized`` unless ``can`` allows the action."""

    if not can(context, action, resource):
        role = context.role.value if context.role else None
        raise Unauthorized(
            f"User '{context.actor_id}' with role {role} may not {action.value}",
            actor_id=context.actor_id,
            role=role,
            action=action.value,
            project_id=resource.project_id,
            entity_id=entity_id,
            project_status=resource.project_status,
            segment_status=resource.segment_status,
        )
