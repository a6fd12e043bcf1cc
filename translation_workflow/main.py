"""FastAPI application exposing the translation workflow engine."""
from __future__ import annotations

from typing import Dict, List, Optional, Type

import structlog
from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError

from .bootstrap import seed_initial_data
from .config import get_settings
from .engine import WorkflowEngine, build_workflow_engine
from .errors import (
    ConflictError,
    DuplicateKey,
    DuplicateOrdinal,
    InvalidInput,
    InvalidTransition,
    NotFound,
    ProviderUnavailable,
    RateLimited,
    Unauthorized,
    WorkflowError,
)
from .languages import LANGUAGE_OPTIONS
from .logging_config import configure_logging
from .models import (
    Actor,
    Document,
    EffectiveMember,
    GlossaryConstraint,
    GlossaryTerm,
    Grant,
    MatchResult,
    Project,
    ProjectCreate,
    Role,
    Segment,
    Team,
    TeamMembership,
    TranslationMemoryEntry,
)
from .permissions import Action

logger = structlog.get_logger(__name__)

ERROR_STATUS: Dict[Type[WorkflowError], int] = {
    InvalidInput: 422,
    NotFound: 404,
    Unauthorized: 403,
    InvalidTransition: 409,
    ConflictError: 409,
    DuplicateOrdinal: 409,
    DuplicateKey: 409,
    RateLimited: 429,
    ProviderUnavailable: 503,
}


def status_for(exc: WorkflowError) -> int:
    for error_type in type(exc).__mro__:
        if error_type in ERROR_STATUS:
            return ERROR_STATUS[error_type]
    return 500


def parse_grants(header: Optional[str]) -> List[Grant]:
    """Parse ``scope_type:scope_id=role`` pairs separated by commas."""

    grants: List[Grant] = []
    if not header:
        return grants
    for raw in header.split(","):
        raw = raw.strip()
        if not raw:
            continue
        scope, _, role = raw.partition("=")
        scope_type, _, scope_id = scope.partition(":")
        try:
            grants.append(Grant(scope_type=scope_type.strip(), scope_id=scope_id.strip(), role=role.strip()))
        except ValidationError as exc:
            raise InvalidInput("Malformed X-Actor-Grants entry", entry=raw) from exc
        if not scope_id.strip():
            raise InvalidInput("Malformed X-Actor-Grants entry", entry=raw)
    return grants


def get_actor(
    x_actor_id: Optional[str] = Header(None),
    x_actor_grants: Optional[str] = Header(None),
) -> Actor:
    if not x_actor_id or not x_actor_id.strip():
        raise Unauthorized("Missing X-Actor-Id header")
    return Actor(user_id=x_actor_id.strip(), grants=parse_grants(x_actor_grants))


def get_engine(request: Request) -> WorkflowEngine:
    return request.app.state.engine


class LocaleOption(BaseModel):
    code: str
    name: str


class DocumentUpload(BaseModel):
    name: str
    content: str
    split_lines: bool = True
    assigned_translator: Optional[str] = None


class SegmentCreate(BaseModel):
    ordinal: int
    source_text: str


class VersionedRequest(BaseModel):
    expected_version: int = Field(..., ge=1)


class EditRequest(VersionedRequest):
    target_text: str


class ReviewRequest(VersionedRequest):
    approve: bool
    comment: Optional[str] = None


class ReopenRequest(VersionedRequest):
    comment: Optional[str] = None


class CommentRequest(VersionedRequest):
    text: str


class AssignRequest(BaseModel):
    user_id: Optional[str] = None


class TransferRequest(BaseModel):
    new_owner_id: str


class RoleRequest(BaseModel):
    role: Role


class TeamCreate(BaseModel):
    name: str


class TeamMemberCreate(BaseModel):
    user_id: str
    role: Role


class MemoryRecord(BaseModel):
    source_text: str
    target_text: str
    source_language: str
    target_language: str
    quality: int = Field(default=0, ge=0, le=100)
    supersede: bool = False


class GlossaryTermCreate(BaseModel):
    term: str
    preferred_translation: str
    domain: str = "General"
    definition: Optional[str] = None
    notes: Optional[str] = None
    project_id: Optional[str] = None


class GlossaryRequest(BaseModel):
    text: str
    domain: Optional[str] = None
    project_id: Optional[str] = None


class QuickTranslateRequest(BaseModel):
    text: str
    source_language: str
    target_language: str


def create_app(engine: Optional[WorkflowEngine] = None) -> FastAPI:
    """Build the HTTP surface around ``engine`` (a configured one by default)."""

    settings = engine.settings if engine is not None else get_settings()
    configure_logging(settings.log_level)
    engine = engine or build_workflow_engine(settings)
    if settings.seed_demo_data:
        seed_initial_data(engine)

    app = FastAPI(
        title="Translation Workflow Engine",
        description="Segment workflow, translation memory, glossary and project membership.",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.engine = engine
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(WorkflowError)
    async def workflow_error_handler(request: Request, exc: WorkflowError) -> JSONResponse:
        status_code = status_for(exc)
        logger.warning(
            "Request failed",
            path=request.url.path,
            status_code=status_code,
            error_type=type(exc).__name__,
            error=exc.message,
        )
        headers = None
        if isinstance(exc, RateLimited) and exc.retry_after:
            headers = {"Retry-After": str(int(exc.retry_after))}
        return JSONResponse(status_code=status_code, content=exc.to_dict(), headers=headers)

    @app.get("/health", summary="Health check")
    def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    @app.get("/locales", response_model=List[LocaleOption], summary="List supported languages")
    def list_locales() -> List[LocaleOption]:
        return [LocaleOption(**option) for option in LANGUAGE_OPTIONS]

    # Projects -------------------------------------------------------------
    @app.post("/projects", response_model=Project, status_code=201, summary="Create a project")
    def create_project(
        payload: ProjectCreate,
        actor: Actor = Depends(get_actor),
        engine: WorkflowEngine = Depends(get_engine),
    ) -> Project:
        return engine.projects.create_project(actor, payload)

    @app.get("/projects", response_model=List[Project], summary="List projects visible to the caller")
    def list_projects(actor: Actor = Depends(get_actor), engine: WorkflowEngine = Depends(get_engine)):
        return engine.projects.list_projects_for_user(actor)

    @app.get("/projects/{project_id}", response_model=Project)
    def get_project(project_id: str, actor: Actor = Depends(get_actor), engine: WorkflowEngine = Depends(get_engine)):
        project = engine.projects.get_project(project_id)
        engine.projects.authorize(actor, Action.VIEW, project)
        return project

    @app.post("/projects/{project_id}/archive", response_model=Project)
    def archive_project(
        project_id: str, actor: Actor = Depends(get_actor), engine: WorkflowEngine = Depends(get_engine)
    ):
        return engine.projects.archive_project(project_id, actor)

    @app.post("/projects/{project_id}/unarchive", response_model=Project)
    def unarchive_project(
        project_id: str, actor: Actor = Depends(get_actor), engine: WorkflowEngine = Depends(get_engine)
    ):
        return engine.projects.unarchive_project(project_id, actor)

    @app.delete("/projects/{project_id}", summary="Delete an empty project or archive a populated one")
    def delete_project(
        project_id: str, actor: Actor = Depends(get_actor), engine: WorkflowEngine = Depends(get_engine)
    ):
        archived = engine.projects.delete_project(project_id, actor)
        if archived is None:
            return {"status": "deleted"}
        return {"status": "archived", "project": archived.model_dump(mode="json")}

    @app.post("/projects/{project_id}/transfer", response_model=Project)
    def transfer_ownership(
        project_id: str,
        payload: TransferRequest,
        actor: Actor = Depends(get_actor),
        engine: WorkflowEngine = Depends(get_engine),
    ):
        return engine.projects.transfer_ownership(project_id, actor, payload.new_owner_id)

    # Documents ------------------------------------------------------------
    @app.post("/projects/{project_id}/documents", response_model=List[Document], status_code=201)
    def add_document(
        project_id: str,
        payload: DocumentUpload,
        actor: Actor = Depends(get_actor),
        engine: WorkflowEngine = Depends(get_engine),
    ):
        return engine.projects.add_document(
            project_id,
            actor,
            payload.name,
            payload.content,
            split_lines=payload.split_lines,
            assigned_translator=payload.assigned_translator,
        )

    @app.get("/projects/{project_id}/documents", response_model=List[Document])
    def list_documents(
        project_id: str,
        include_archived: bool = Query(False),
        actor: Actor = Depends(get_actor),
        engine: WorkflowEngine = Depends(get_engine),
    ):
        engine.projects.authorize(actor, Action.VIEW, engine.projects.get_project(project_id))
        return engine.projects.list_documents(project_id, include_archived=include_archived)

    @app.post("/documents/{document_id}/assign", response_model=Document)
    def assign_translator(
        document_id: str,
        payload: AssignRequest,
        actor: Actor = Depends(get_actor),
        engine: WorkflowEngine = Depends(get_engine),
    ):
        return engine.projects.assign_translator(document_id, actor, payload.user_id)

    @app.delete("/documents/{document_id}")
    def remove_document(
        document_id: str, actor: Actor = Depends(get_actor), engine: WorkflowEngine = Depends(get_engine)
    ):
        archived = engine.projects.remove_document(document_id, actor)
        return {"status": "deleted" if archived is None else "archived"}

    @app.get("/documents/{document_id}/segments", response_model=List[Segment])
    def list_segments(
        document_id: str, actor: Actor = Depends(get_actor), engine: WorkflowEngine = Depends(get_engine)
    ):
        document = engine.projects.get_document(document_id)
        engine.projects.authorize(actor, Action.VIEW, engine.projects.get_project(document.project_id), document)
        return engine.segments.list_segments(document_id)

    @app.post("/documents/{document_id}/segments", response_model=Segment, status_code=201)
    def create_segment(
        document_id: str,
        payload: SegmentCreate,
        actor: Actor = Depends(get_actor),
        engine: WorkflowEngine = Depends(get_engine),
    ):
        document = engine.projects.get_document(document_id)
        project = engine.projects.get_project(document.project_id)
        engine.projects.authorize(actor, Action.MANAGE_DOCUMENTS, project, document)
        return engine.segments.create_segment(document_id, payload.ordinal, payload.source_text)

    # Segments -------------------------------------------------------------
    @app.get("/segments/{segment_id}", response_model=Segment)
    def get_segment(segment_id: str, actor: Actor = Depends(get_actor), engine: WorkflowEngine = Depends(get_engine)):
        segment = engine.segments.get_segment(segment_id)
        document = engine.projects.get_document(segment.document_id)
        engine.projects.authorize(actor, Action.VIEW, engine.projects.get_project(document.project_id), document)
        return segment

    @app.post("/segments/{segment_id}/translate", response_model=Segment)
    async def translate_segment(
        segment_id: str,
        payload: VersionedRequest,
        actor: Actor = Depends(get_actor),
        engine: WorkflowEngine = Depends(get_engine),
    ):
        return await engine.segments.translate(segment_id, actor, payload.expected_version)

    @app.post("/segments/{segment_id}/edit", response_model=Segment)
    def edit_segment(
        segment_id: str,
        payload: EditRequest,
        actor: Actor = Depends(get_actor),
        engine: WorkflowEngine = Depends(get_engine),
    ):
        return engine.segments.edit(segment_id, actor, payload.target_text, payload.expected_version)

    @app.post("/segments/{segment_id}/review", response_model=Segment)
    def review_segment(
        segment_id: str,
        payload: ReviewRequest,
        actor: Actor = Depends(get_actor),
        engine: WorkflowEngine = Depends(get_engine),
    ):
        return engine.segments.review(
            segment_id, actor, payload.approve, payload.expected_version, comment=payload.comment
        )

    @app.post("/segments/{segment_id}/reopen", response_model=Segment)
    def reopen_segment(
        segment_id: str,
        payload: ReopenRequest,
        actor: Actor = Depends(get_actor),
        engine: WorkflowEngine = Depends(get_engine),
    ):
        return engine.segments.reopen(segment_id, actor, payload.expected_version, comment=payload.comment)

    @app.post("/segments/{segment_id}/reset", response_model=Segment)
    def reset_segment(
        segment_id: str,
        payload: VersionedRequest,
        actor: Actor = Depends(get_actor),
        engine: WorkflowEngine = Depends(get_engine),
    ):
        return engine.segments.reset(segment_id, actor, payload.expected_version)

    @app.post("/segments/{segment_id}/comments", response_model=Segment)
    def comment_segment(
        segment_id: str,
        payload: CommentRequest,
        actor: Actor = Depends(get_actor),
        engine: WorkflowEngine = Depends(get_engine),
    ):
        return engine.segments.comment(segment_id, actor, payload.text, payload.expected_version)

    # Membership -----------------------------------------------------------
    @app.get("/projects/{project_id}/members", response_model=List[EffectiveMember])
    def list_members(project_id: str, actor: Actor = Depends(get_actor), engine: WorkflowEngine = Depends(get_engine)):
        engine.projects.authorize(actor, Action.VIEW, engine.projects.get_project(project_id))
        return engine.projects.effective_members(project_id)

    @app.put("/projects/{project_id}/members/{user_id}", response_model=TeamMembership)
    def grant_role(
        project_id: str,
        user_id: str,
        payload: RoleRequest,
        actor: Actor = Depends(get_actor),
        engine: WorkflowEngine = Depends(get_engine),
    ):
        return engine.projects.grant_role(project_id, actor, user_id, payload.role)

    @app.delete("/projects/{project_id}/members/{user_id}", status_code=204)
    def revoke_role(
        project_id: str,
        user_id: str,
        actor: Actor = Depends(get_actor),
        engine: WorkflowEngine = Depends(get_engine),
    ) -> None:
        engine.projects.revoke_role(project_id, actor, user_id)

    @app.post("/teams", response_model=Team, status_code=201)
    def create_team(
        payload: TeamCreate,
        actor: Actor = Depends(get_actor),
        engine: WorkflowEngine = Depends(get_engine),
    ):
        return engine.projects.create_team(actor, payload.name)

    @app.post("/teams/{team_id}/members", response_model=TeamMembership, status_code=201)
    def add_team_member(
        team_id: str,
        payload: TeamMemberCreate,
        actor: Actor = Depends(get_actor),
        engine: WorkflowEngine = Depends(get_engine),
    ):
        return engine.projects.add_team_member(team_id, actor, payload.user_id, payload.role)

    @app.post("/teams/{team_id}/projects/{project_id}", response_model=Team)
    def grant_team_access(
        team_id: str,
        project_id: str,
        actor: Actor = Depends(get_actor),
        engine: WorkflowEngine = Depends(get_engine),
    ):
        return engine.projects.grant_team_access(team_id, project_id, actor)

    # Translation memory & glossary ----------------------------------------
    @app.get("/translation-memory/lookup", response_model=MatchResult)
    def lookup_memory(
        source_text: str,
        source_language: str,
        target_language: str,
        engine: WorkflowEngine = Depends(get_engine),
    ):
        return engine.memory.lookup(source_text, source_language, target_language)

    @app.get("/translation-memory", response_model=List[TranslationMemoryEntry])
    def list_memory(source_language: str, target_language: str, engine: WorkflowEngine = Depends(get_engine)):
        return engine.memory.list_entries(source_language, target_language)

    @app.post("/translation-memory", response_model=TranslationMemoryEntry, summary="Add or reuse a TM entry")
    def record_memory(
        payload: MemoryRecord,
        actor: Actor = Depends(get_actor),
        engine: WorkflowEngine = Depends(get_engine),
    ):
        return engine.record_memory(actor, **payload.model_dump())

    @app.post("/glossary", response_model=GlossaryTerm, status_code=201)
    def add_glossary_term(
        payload: GlossaryTermCreate,
        actor: Actor = Depends(get_actor),
        engine: WorkflowEngine = Depends(get_engine),
    ):
        return engine.add_glossary_term(actor, **payload.model_dump())

    @app.get("/glossary", response_model=List[GlossaryTerm])
    def list_glossary(
        domain: Optional[str] = None,
        project_id: Optional[str] = None,
        engine: WorkflowEngine = Depends(get_engine),
    ):
        return engine.glossary.list_terms(domain, project_id)

    @app.post("/glossary/constraints", response_model=List[GlossaryConstraint])
    def glossary_constraints(payload: GlossaryRequest, engine: WorkflowEngine = Depends(get_engine)):
        return engine.apply_glossary(payload.text, payload.domain, payload.project_id)

    @app.post("/quick-translate", response_model=Segment, summary="Translate a snippet in a throwaway project")
    async def quick_translate(
        payload: QuickTranslateRequest,
        actor: Actor = Depends(get_actor),
        engine: WorkflowEngine = Depends(get_engine),
    ):
        return await engine.quick_translate(actor, payload.text, payload.source_language, payload.target_language)

    return app
