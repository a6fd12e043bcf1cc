"""Service layer: projects, membership, segment workflow and roll-ups."""
from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Callable, Dict, List, Mapping, Optional, Set, Tuple, Union
from uuid import uuid4

import structlog
from pydantic import ValidationError

from .config import EngineSettings
from .errors import DuplicateOrdinal, InvalidInput, InvalidTransition, NotFound, Unauthorized
from .memory import TranslationMemoryService
from .models import (
    Actor,
    Document,
    EffectiveMember,
    Grant,
    MatchResult,
    Project,
    ProjectCreate,
    ProjectStatus,
    Role,
    ScopeType,
    Segment,
    SegmentNote,
    SegmentOrigin,
    SegmentStatus,
    Team,
    TeamMembership,
)
from .permissions import AccessContext, Action, Resource, can, rank, require, resolve_role
from .providers import ProviderResult, TranslationProvider
from .state import State
from .workflows import (
    check_transition,
    document_progress,
    document_status,
    project_progress,
    project_status,
)

logger = structlog.get_logger(__name__)


async def run_commit(state: State, commit: Callable[..., Segment], *args) -> Segment:
    """Run a synchronous commit, in a worker thread when it writes to a database."""

    if state.persistent:
        return await asyncio.to_thread(commit, *args)
    return commit(*args)


def build_segment(document_id: str, ordinal: int, source_text: str) -> Segment:
    """Construct a fresh untranslated segment after validating its input."""

    if isinstance(ordinal, bool) or not isinstance(ordinal, int) or ordinal < 0:
        raise InvalidInput("Ordinal must be a non-negative integer", ordinal=ordinal)
    if source_text is None or not source_text.strip():
        raise InvalidInput("Segment source text must not be empty", document_id=document_id)
    now = datetime.utcnow()
    return Segment(
        id=str(uuid4()),
        document_id=document_id,
        ordinal=ordinal,
        source_text=source_text,
        created_at=now,
        updated_at=now,
    )


class ConfidenceStrategy:
    """Default confidence scoring; swap in a subclass to change the formula."""

    def __init__(self, settings: EngineSettings) -> None:
        self._settings = settings

    def for_memory_match(self, match: MatchResult) -> int:
        return match.similarity

    def for_provider(self, result: ProviderResult) -> int:
        if result.confidence is None:
            return self._settings.default_confidence
        return max(1, min(100, int(result.confidence)))

    def for_human_edit(self, segment: Segment) -> int:
        return segment.confidence or self._settings.human_edit_confidence


class WorkflowAggregator:
    """Recomputes document and project roll-ups after segment writes."""

    def __init__(self, state: State) -> None:
        self._state = state

    def recompute_document(self, document_id: str) -> Document:
        with self._state.transaction():
            document = self._state.get_document(document_id)
            segments = self._state.list_segments(document_id)
            progress = document_progress(segments)
            updated = document.model_copy(
                update={
                    "progress": progress,
                    "status": document_status(segments, progress),
                    "segment_count": len(segments),
                    "updated_at": datetime.utcnow(),
                }
            )
            self._state.put_document(updated)
            self.recompute_project(document.project_id)
        return updated

    def recompute_project(self, project_id: str) -> Project:
        with self._state.transaction():
            project = self._state.get_project(project_id)
            documents = self._state.list_documents(project_id)
            updated = project.model_copy(
                update={
                    "progress": project_progress(documents),
                    "status": project_status(project.status, documents),
                    "updated_at": datetime.utcnow(),
                }
            )
            self._state.put_project(updated)
        if updated.status != project.status:
            logger.info(
                "Project status changed",
                project_id=project_id,
                previous=project.status.value,
                status=updated.status.value,
            )
        return updated


class ProjectService:
    """Project lifecycle, documents, membership and access resolution."""

    def __init__(self, state: State, aggregator: WorkflowAggregator) -> None:
        self._state = state
        self.aggregator = aggregator

    # Access ---------------------------------------------------------------
    def effective_role(self, actor: Actor, project: Project) -> Optional[Role]:
        stored = [
            Grant(scope_type=membership.scope_type, scope_id=membership.scope_id, role=membership.role)
            for membership in self._state.list_memberships(user_id=actor.user_id)
        ]
        return resolve_role(
            actor.user_id,
            project.id,
            project.owner_id,
            list(actor.grants) + stored,
            self._team_projects(),
        )

    def authorize(
        self,
        actor: Actor,
        action: Action,
        project: Project,
        document: Optional[Document] = None,
        segment: Optional[Segment] = None,
    ) -> AccessContext:
        context = AccessContext(actor_id=actor.user_id, role=self.effective_role(actor, project))
        resource = Resource(
            project_id=project.id,
            project_status=project.status,
            segment_status=segment.status if segment else None,
            assigned_translator=document.assigned_translator if document else None,
        )
        require(context, action, resource, entity_id=(segment or document or project).id)
        return context

    def require_any(self, actor: Actor, action: Action) -> None:
        """Gate organisation-wide writes on holding ``action`` in some live project."""

        for project in self._state.list_projects():
            if project.status == ProjectStatus.ARCHIVED:
                continue
            context = AccessContext(actor_id=actor.user_id, role=self.effective_role(actor, project))
            if can(context, action, Resource(project_id=project.id, project_status=project.status)):
                return
        raise Unauthorized(
            f"User '{actor.user_id}' may not {action.value} in any project",
            actor_id=actor.user_id,
            action=action.value,
        )

    # Projects -------------------------------------------------------------
    @staticmethod
    def parse_project(payload: Union[ProjectCreate, Mapping[str, object]]) -> ProjectCreate:
        if isinstance(payload, ProjectCreate):
            return payload
        try:
            return ProjectCreate(**payload)
        except ValidationError as exc:
            raise InvalidInput(
                "Invalid project definition",
                errors=[f"{'.'.join(map(str, err['loc']))}: {err['msg']}" for err in exc.errors()],
            ) from exc

    def create_project(self, actor: Actor, payload: Union[ProjectCreate, Mapping[str, object]]) -> Project:
        payload = self.parse_project(payload)
        now = datetime.utcnow()
        project = Project(
            id=str(uuid4()),
            name=payload.name,
            description=payload.description,
            source_language=payload.source_language,
            target_languages=payload.target_languages,
            owner_id=actor.user_id,
            due_date=payload.due_date,
            created_at=now,
            updated_at=now,
        )
        with self._state.transaction():
            self._state.put_project(project)
            self._put_direct_membership(project.id, actor.user_id, Role.OWNER)
        logger.info("Project created", project_id=project.id, owner_id=actor.user_id)
        return project

    def get_project(self, project_id: str) -> Project:
        return self._state.get_project(project_id)

    def list_projects_for_user(self, actor: Actor) -> List[Project]:
        projects = [
            project
            for project in self._state.list_projects()
            if self.effective_role(actor, project) is not None
        ]
        return sorted(projects, key=lambda project: project.created_at, reverse=True)

    def archive_project(self, project_id: str, actor: Actor) -> Project:
        project = self._state.get_project(project_id)
        self.authorize(actor, Action.MANAGE_PROJECT, project)
        if project.status == ProjectStatus.ARCHIVED:
            raise InvalidTransition(project.id, project.status, ProjectStatus.ARCHIVED)
        with self._state.transaction():
            archived = self._state.put_project(
                project.model_copy(update={"status": ProjectStatus.ARCHIVED, "updated_at": datetime.utcnow()})
            )
        logger.info("Project archived", project_id=project_id, actor_id=actor.user_id)
        return archived

    def unarchive_project(self, project_id: str, actor: Actor) -> Project:
        project = self._state.get_project(project_id)
        self.authorize(actor, Action.MANAGE_PROJECT, project)
        if project.status != ProjectStatus.ARCHIVED:
            raise InvalidTransition(project.id, project.status, ProjectStatus.DRAFT, "project is not archived")
        with self._state.transaction():
            self._state.put_project(project.model_copy(update={"status": ProjectStatus.DRAFT}))
            restored = self.aggregator.recompute_project(project_id)
        logger.info("Project unarchived", project_id=project_id, status=restored.status.value)
        return restored

    def delete_project(self, project_id: str, actor: Actor) -> Optional[Project]:
        """Delete an empty project; projects with documents are archived instead."""

        project = self._state.get_project(project_id)
        self.authorize(actor, Action.DELETE_PROJECT, project)
        with self._state.transaction():
            if self._state.list_documents(project_id):
                if project.status == ProjectStatus.ARCHIVED:
                    return project
                archived = project.model_copy(
                    update={"status": ProjectStatus.ARCHIVED, "updated_at": datetime.utcnow()}
                )
                logger.info("Project with documents archived instead of deleted", project_id=project_id)
                return self._state.put_project(archived)
            for membership in self._state.list_memberships(ScopeType.PROJECT, project_id):
                self._state.delete_membership(membership.id)
            for team in self._state.list_teams():
                if project_id in team.project_ids:
                    self._state.put_team(
                        team.model_copy(update={"project_ids": [pid for pid in team.project_ids if pid != project_id]})
                    )
            self._state.delete_project(project_id)
        logger.info("Project deleted", project_id=project_id, actor_id=actor.user_id)
        return None

    def transfer_ownership(self, project_id: str, actor: Actor, new_owner_id: str) -> Project:
        project = self._state.get_project(project_id)
        self.authorize(actor, Action.TRANSFER_OWNERSHIP, project)
        if not new_owner_id or new_owner_id == project.owner_id:
            raise InvalidInput("New owner must differ from the current owner", new_owner_id=new_owner_id)
        with self._state.transaction():
            updated = self._state.put_project(
                project.model_copy(update={"owner_id": new_owner_id, "updated_at": datetime.utcnow()})
            )
            self._put_direct_membership(project_id, project.owner_id, Role.ADMIN)
            self._put_direct_membership(project_id, new_owner_id, Role.OWNER)
        logger.info(
            "Project ownership transferred",
            project_id=project_id,
            previous_owner=project.owner_id,
            owner_id=new_owner_id,
        )
        return updated

    # Documents ------------------------------------------------------------
    def add_document(
        self,
        project_id: str,
        actor: Actor,
        name: str,
        content: str,
        split_lines: bool = True,
        assigned_translator: Optional[str] = None,
    ) -> List[Document]:
        """Ingest one source file as one document per target language."""

        project = self._state.get_project(project_id)
        self.authorize(actor, Action.MANAGE_DOCUMENTS, project)
        if not name or not name.strip():
            raise InvalidInput("Document name must not be empty", project_id=project_id)
        if split_lines:
            units = [line.strip() for line in (content or "").splitlines() if line.strip()]
        else:
            units = [content] if content and content.strip() else []
        if not units:
            raise InvalidInput("Document has no translatable text", project_id=project_id, name=name)

        now = datetime.utcnow()
        created: List[Document] = []
        with self._state.transaction():
            for target_language in project.target_languages:
                document = self._state.put_document(
                    Document(
                        id=str(uuid4()),
                        project_id=project.id,
                        name=name.strip(),
                        source_language=project.source_language,
                        target_language=target_language,
                        assigned_translator=assigned_translator,
                        created_at=now,
                        updated_at=now,
                    )
                )
                for ordinal, unit in enumerate(units):
                    self._state.add_segment(build_segment(document.id, ordinal, unit))
                created.append(self.aggregator.recompute_document(document.id))
        logger.info(
            "Document ingested",
            project_id=project_id,
            documents=[doc.id for doc in created],
            segments=len(units),
        )
        return created

    def get_document(self, document_id: str) -> Document:
        return self._state.get_document(document_id)

    def list_documents(self, project_id: str, include_archived: bool = False) -> List[Document]:
        self._state.get_project(project_id)
        documents = self._state.list_documents(project_id)
        if not include_archived:
            documents = [doc for doc in documents if not doc.archived]
        return sorted(documents, key=lambda doc: (doc.created_at, doc.target_language))

    def assign_translator(self, document_id: str, actor: Actor, user_id: Optional[str]) -> Document:
        document = self._state.get_document(document_id)
        project = self._state.get_project(document.project_id)
        self.authorize(actor, Action.MANAGE_DOCUMENTS, project, document)
        with self._state.transaction():
            updated = self._state.put_document(
                document.model_copy(update={"assigned_translator": user_id, "updated_at": datetime.utcnow()})
            )
        logger.info("Translator assigned", document_id=document_id, translator_id=user_id)
        return updated

    def remove_document(self, document_id: str, actor: Actor) -> Optional[Document]:
        """Archive a document that has segments, delete an empty one."""

        document = self._state.get_document(document_id)
        project = self._state.get_project(document.project_id)
        self.authorize(actor, Action.MANAGE_DOCUMENTS, project, document)
        with self._state.transaction():
            if self._state.list_segments(document_id):
                result: Optional[Document] = self._state.put_document(
                    document.model_copy(update={"archived": True, "updated_at": datetime.utcnow()})
                )
            else:
                self._state.delete_document(document_id)
                result = None
            self.aggregator.recompute_project(project.id)
        logger.info("Document removed", document_id=document_id, archived=result is not None)
        return result

    # Membership -----------------------------------------------------------
    def grant_role(self, project_id: str, actor: Actor, user_id: str, role: Role) -> TeamMembership:
        project = self._state.get_project(project_id)
        context = self.authorize(actor, Action.MANAGE_MEMBERS, project)
        if role == Role.OWNER:
            raise InvalidInput("Ownership can only be transferred", user_id=user_id)
        if user_id == project.owner_id:
            raise Unauthorized("The project owner's role cannot be changed by a grant", user_id=user_id)
        existing = self._direct_membership(project_id, user_id)
        if rank(role) >= rank(context.role) or (existing and rank(existing.role) >= rank(context.role)):
            raise Unauthorized(
                f"Role {context.role.value} may not grant {role.value}",
                actor_id=actor.user_id,
                user_id=user_id,
                role=role,
            )
        with self._state.transaction():
            membership = self._put_direct_membership(project_id, user_id, role)
        logger.info("Role granted", project_id=project_id, user_id=user_id, role=role.value)
        return membership

    def revoke_role(self, project_id: str, actor: Actor, user_id: str) -> None:
        project = self._state.get_project(project_id)
        context = self.authorize(actor, Action.MANAGE_MEMBERS, project)
        if user_id == project.owner_id:
            raise Unauthorized("The project owner cannot be revoked", user_id=user_id)
        existing = self._direct_membership(project_id, user_id)
        if existing is None:
            raise NotFound("membership", f"{project_id}:{user_id}")
        if rank(existing.role) >= rank(context.role):
            raise Unauthorized(
                f"Role {context.role.value} may not revoke {existing.role.value}",
                actor_id=actor.user_id,
                user_id=user_id,
            )
        with self._state.transaction():
            self._state.delete_membership(existing.id)
        logger.info("Role revoked", project_id=project_id, user_id=user_id)

    def create_team(self, actor: Actor, name: str) -> Team:
        if not name or not name.strip():
            raise InvalidInput("Team name must not be empty")
        team = Team(
            id=str(uuid4()),
            name=name.strip(),
            created_by=actor.user_id,
            created_at=datetime.utcnow(),
        )
        with self._state.transaction():
            self._state.put_team(team)
        logger.info("Team created", team_id=team.id, actor_id=actor.user_id)
        return team

    def add_team_member(self, team_id: str, actor: Actor, user_id: str, role: Role) -> TeamMembership:
        """Add or change a team member.

        A team without project access is managed by its creator. Once it reaches
        projects, the actor needs MANAGE_MEMBERS on each of them and may only
        hand out roles strictly below its own there.
        """

        team = self._state.get_team(team_id)
        if role == Role.OWNER:
            raise InvalidInput("Teams cannot grant ownership", team_id=team_id)
        existing = [
            membership.role for membership in self._state.list_memberships(ScopeType.TEAM, team_id, user_id)
        ]
        if not team.project_ids and actor.user_id != team.created_by:
            raise Unauthorized(
                f"User '{actor.user_id}' may not manage team {team_id}",
                actor_id=actor.user_id,
                team_id=team_id,
            )
        for project_id in team.project_ids:
            project = self._state.get_project(project_id)
            context = self.authorize(actor, Action.MANAGE_MEMBERS, project)
            ceiling = rank(context.role)
            if rank(role) >= ceiling or any(rank(current) >= ceiling for current in existing):
                raise Unauthorized(
                    f"Role {context.role.value} may not grant {role.value} through team {team_id}",
                    actor_id=actor.user_id,
                    user_id=user_id,
                    project_id=project_id,
                    role=role,
                )
        with self._state.transaction():
            for membership in self._state.list_memberships(ScopeType.TEAM, team_id, user_id):
                self._state.delete_membership(membership.id)
            membership = self._state.put_membership(
                TeamMembership(
                    id=str(uuid4()),
                    scope_type=ScopeType.TEAM,
                    scope_id=team_id,
                    user_id=user_id,
                    role=role,
                    created_at=datetime.utcnow(),
                )
            )
        logger.info("Team member added", team_id=team_id, user_id=user_id, role=role.value)
        return membership

    def grant_team_access(self, team_id: str, project_id: str, actor: Actor) -> Team:
        team = self._state.get_team(team_id)
        project = self._state.get_project(project_id)
        context = self.authorize(actor, Action.MANAGE_MEMBERS, project)
        if project_id in team.project_ids:
            return team
        for membership in self._state.list_memberships(ScopeType.TEAM, team_id):
            if rank(membership.role) >= rank(context.role):
                raise Unauthorized(
                    f"Role {context.role.value} may not grant team {team_id} with a {membership.role.value} member",
                    actor_id=actor.user_id,
                    team_id=team_id,
                    user_id=membership.user_id,
                )
        with self._state.transaction():
            updated = self._state.put_team(team.model_copy(update={"project_ids": team.project_ids + [project_id]}))
        logger.info("Team access granted", team_id=team_id, project_id=project_id)
        return updated

    def effective_members(self, project_id: str) -> List[EffectiveMember]:
        """Union of ownership, direct grants and team grants, one entry per user."""

        project = self._state.get_project(project_id)
        members: Dict[str, Tuple[Role, List[str]]] = {}

        def add(user_id: str, role: Role, source: str) -> None:
            if role == Role.OWNER and user_id != project.owner_id:
                role = Role.ADMIN
            current, sources = members.get(user_id, (role, []))
            if rank(role) > rank(current):
                current = role
            if source not in sources:
                sources.append(source)
            members[user_id] = (current, sources)

        add(project.owner_id, Role.OWNER, "owner")
        for membership in self._state.list_memberships(ScopeType.PROJECT, project_id):
            add(membership.user_id, membership.role, "project")
        for team in self._state.list_teams():
            if project_id not in team.project_ids:
                continue
            for membership in self._state.list_memberships(ScopeType.TEAM, team.id):
                add(membership.user_id, membership.role, f"team:{team.id}")

        result = [
            EffectiveMember(user_id=user_id, role=role, sources=sources)
            for user_id, (role, sources) in members.items()
        ]
        return sorted(result, key=lambda member: (-rank(member.role), member.user_id))

    def _team_projects(self) -> Dict[str, Set[str]]:
        return {team.id: set(team.project_ids) for team in self._state.list_teams()}

    def _direct_membership(self, project_id: str, user_id: str) -> Optional[TeamMembership]:
        found = self._state.list_memberships(ScopeType.PROJECT, project_id, user_id)
        return found[0] if found else None

    def _put_direct_membership(self, project_id: str, user_id: str, role: Role) -> TeamMembership:
        existing = self._direct_membership(project_id, user_id)
        if existing is not None:
            return self._state.put_membership(existing.model_copy(update={"role": role}))
        return self._state.put_membership(
            TeamMembership(
                id=str(uuid4()),
                scope_type=ScopeType.PROJECT,
                scope_id=project_id,
                user_id=user_id,
                role=role,
                created_at=datetime.utcnow(),
            )
        )


class SegmentService:
    """Segment state machine: translate, edit, review and their cascades."""

    def __init__(
        self,
        state: State,
        settings: EngineSettings,
        projects: ProjectService,
        memory: TranslationMemoryService,
        provider: TranslationProvider,
        confidence: Optional[ConfidenceStrategy] = None,
    ) -> None:
        self._state = state
        self._settings = settings
        self._projects = projects
        self._memory = memory
        self._provider = provider
        self._confidence = confidence or ConfidenceStrategy(settings)

    def create_segment(self, document_id: str, ordinal: int, source_text: str) -> Segment:
        segment = build_segment(document_id, ordinal, source_text)
        with self._state.transaction():
            self._state.get_document(document_id)
            if any(existing.ordinal == ordinal for existing in self._state.list_segments(document_id)):
                raise DuplicateOrdinal(
                    f"Ordinal {ordinal} already used in document '{document_id}'",
                    document_id=document_id,
                    ordinal=ordinal,
                )
            self._state.add_segment(segment)
            self._projects.aggregator.recompute_document(document_id)
        logger.info("Segment created", segment_id=segment.id, document_id=document_id, ordinal=ordinal)
        return segment

    def get_segment(self, segment_id: str) -> Segment:
        return self._state.get_segment(segment_id)

    def list_segments(self, document_id: str) -> List[Segment]:
        self._state.get_document(document_id)
        return self._state.list_segments(document_id)

    async def translate(self, segment_id: str, actor: Actor, expected_version: int) -> Segment:
        """Fill the segment from translation memory or the external provider.

        Nothing is written until the provider call has returned, so a
        cancelled call leaves the segment untouched.
        """

        segment, document, project = self._load(segment_id)
        self._projects.authorize(actor, Action.TRANSLATE, project, document, segment)
        check_transition(segment, SegmentStatus.MACHINE_TRANSLATED)
        match, updates = await self.draft_translation(
            segment.source_text, document.source_language, document.target_language
        )
        return await run_commit(
            self._state, self.apply_translation, segment, actor, expected_version, match, updates
        )

    async def draft_translation(
        self, source_text: str, source_language: str, target_language: str
    ) -> Tuple[MatchResult, Dict[str, object]]:
        """Machine translation updates for ``source_text``; writes nothing."""

        match = self._memory.lookup(source_text, source_language, target_language)
        if match.found:
            target_text = match.entry.target_text
            confidence = self._confidence.for_memory_match(match)
            origin = SegmentOrigin.MEMORY
        else:
            result = await self._provider.translate(source_text, source_language, target_language)
            target_text = result.text
            confidence = self._confidence.for_provider(result)
            origin = SegmentOrigin.PROVIDER
        return match, {
            "target_text": target_text,
            "status": SegmentStatus.MACHINE_TRANSLATED,
            "confidence": confidence,
            "origin": origin,
            "memory_entry_id": match.entry.id if match.found else None,
        }

    def apply_translation(
        self,
        segment: Segment,
        actor: Actor,
        expected_version: int,
        match: MatchResult,
        updates: Dict[str, object],
    ) -> Segment:
        def reuse_memory() -> None:
            if match.found:
                self._memory.mark_used(match.entry.id)

        stored = self._commit(
            segment,
            expected_version,
            dict(updates, translator_id=segment.translator_id or actor.user_id),
            after=reuse_memory,
        )
        logger.info(
            "Segment translated",
            segment_id=segment.id,
            actor_id=actor.user_id,
            origin=updates["origin"].value,
            similarity=match.similarity,
            confidence=updates["confidence"],
        )
        return stored

    def edit(self, segment_id: str, actor: Actor, new_target_text: str, expected_version: int) -> Segment:
        segment, document, project = self._load(segment_id)
        self._projects.authorize(actor, Action.EDIT, project, document, segment)
        if segment.status == SegmentStatus.REVIEWED:
            # Editing a reviewed segment re-opens it.
            self._projects.authorize(actor, Action.REOPEN, project, document, segment)
        check_transition(segment, SegmentStatus.HUMAN_EDITED)
        if new_target_text is None or not new_target_text.strip():
            raise InvalidInput("Target text must not be empty", segment_id=segment_id)

        stored = self._commit(
            segment,
            expected_version,
            {
                "target_text": new_target_text,
                "status": SegmentStatus.HUMAN_EDITED,
                "confidence": self._confidence.for_human_edit(segment),
                "origin": SegmentOrigin.HUMAN,
                "translator_id": segment.translator_id or actor.user_id,
                "reviewer_id": None,
            },
        )
        logger.info("Segment edited", segment_id=segment_id, actor_id=actor.user_id)
        return stored

    def review(
        self,
        segment_id: str,
        actor: Actor,
        approve: bool,
        expected_version: int,
        comment: Optional[str] = None,
    ) -> Segment:
        segment, document, project = self._load(segment_id)
        self._projects.authorize(actor, Action.REVIEW, project, document, segment)
        target = SegmentStatus.REVIEWED if approve else SegmentStatus.HUMAN_EDITED
        if segment.status == SegmentStatus.UNTRANSLATED:
            raise InvalidTransition(segment.id, segment.status, target, "segment has no translation to review")
        check_transition(segment, target)

        if approve:
            if (
                self._settings.require_dual_control
                and segment.translator_id is not None
                and segment.translator_id == actor.user_id
            ):
                raise Unauthorized(
                    "Dual control requires a reviewer other than the translator",
                    segment_id=segment_id,
                    actor_id=actor.user_id,
                )
            updates: Dict[str, object] = {
                "status": SegmentStatus.REVIEWED,
                "reviewer_id": actor.user_id,
                "review_comment": comment,
            }
            after = self._record_reviewed(segment, document) if self._settings.record_on_review else None
        else:
            if comment is None or not comment.strip():
                raise InvalidInput("Rejecting a segment requires a review comment", segment_id=segment_id)
            updates = {
                "status": SegmentStatus.HUMAN_EDITED,
                "reviewer_id": None,
                "review_comment": comment,
                "notes": segment.notes + [self._note(actor, comment)],
            }
            after = None

        stored = self._commit(segment, expected_version, updates, after=after)
        logger.info("Segment reviewed", segment_id=segment_id, actor_id=actor.user_id, approved=approve)
        return stored

    def reopen(self, segment_id: str, actor: Actor, expected_version: int, comment: Optional[str] = None) -> Segment:
        segment, document, project = self._load(segment_id)
        self._projects.authorize(actor, Action.REOPEN, project, document, segment)
        if segment.status != SegmentStatus.REVIEWED:
            raise InvalidTransition(segment.id, segment.status, SegmentStatus.HUMAN_EDITED, "only reviewed segments can be re-opened")
        updates: Dict[str, object] = {"status": SegmentStatus.HUMAN_EDITED, "reviewer_id": None}
        if comment and comment.strip():
            updates["review_comment"] = comment
            updates["notes"] = segment.notes + [self._note(actor, comment)]
        stored = self._commit(segment, expected_version, updates)
        logger.info("Segment re-opened", segment_id=segment_id, actor_id=actor.user_id)
        return stored

    def reset(self, segment_id: str, actor: Actor, expected_version: int) -> Segment:
        segment, document, project = self._load(segment_id)
        self._projects.authorize(actor, Action.RESET, project, document, segment)
        check_transition(segment, SegmentStatus.UNTRANSLATED)
        stored = self._commit(
            segment,
            expected_version,
            {
                "target_text": None,
                "status": SegmentStatus.UNTRANSLATED,
                "confidence": 0,
                "origin": None,
                "memory_entry_id": None,
                "translator_id": None,
                "reviewer_id": None,
                "review_comment": None,
            },
        )
        logger.warning("Segment reset", segment_id=segment_id, actor_id=actor.user_id)
        return stored

    def comment(self, segment_id: str, actor: Actor, text: str, expected_version: int) -> Segment:
        segment, document, project = self._load(segment_id)
        self._projects.authorize(actor, Action.COMMENT, project, document, segment)
        if text is None or not text.strip():
            raise InvalidInput("Comment must not be empty", segment_id=segment_id)
        return self._commit(segment, expected_version, {"notes": segment.notes + [self._note(actor, text)]})

    # Internal helpers -----------------------------------------------------
    def _load(self, segment_id: str) -> Tuple[Segment, Document, Project]:
        segment = self._state.get_segment(segment_id)
        document = self._state.get_document(segment.document_id)
        project = self._state.get_project(document.project_id)
        return segment, document, project

    def _commit(
        self,
        segment: Segment,
        expected_version: int,
        updates: Dict[str, object],
        after: Optional[Callable[[], None]] = None,
    ) -> Segment:
        """Write the segment and its cascades as one atomic unit."""

        updates = dict(updates, updated_at=datetime.utcnow())
        with self._state.transaction():
            stored = self._state.replace_segment(segment.model_copy(update=updates), expected_version)
            if after is not None:
                after()
            self._projects.aggregator.recompute_document(segment.document_id)
        return stored

    def _record_reviewed(self, segment: Segment, document: Document) -> Callable[[], None]:
        def record() -> None:
            self._memory.record(
                segment.source_text,
                segment.target_text,
                document.source_language,
                document.target_language,
                quality=segment.confidence,
                human_reviewed=True,
                supersede=True,
                count_use=segment.origin != SegmentOrigin.MEMORY,
            )

        return record

    @staticmethod
    def _note(actor: Actor, text: str) -> SegmentNote:
        return SegmentNote(author_id=actor.user_id, text=text.strip(), created_at=datetime.utcnow())
