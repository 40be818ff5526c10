"""API route handlers and Pydantic request/response schemas."""

import logging
from typing import Literal, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, HTTPException, Request, UploadFile
from pydantic import BaseModel, Field

from vizprompts.config import settings
from vizprompts.orchestrator.pipeline import PromptPipeline
from vizprompts.orchestrator.registry import SessionRegistry
from vizprompts.orchestrator.session import PromptSession
from vizprompts.orchestrator.state import InvalidTransitionError
from vizprompts.pipeline.refinement import build_refine_instruction
from vizprompts.pipeline.templates import get_template, list_templates
from vizprompts.schemas.analysis import HistoryItem
from vizprompts.schemas.media import MediaInfo
from vizprompts.services.history import SqlHistorySink
from vizprompts.services.projector import project
from vizprompts.services.upload_validator import check_upload_size

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

# One entry per open browser tab; idle sessions expire
SESSIONS = SessionRegistry(
    idle_seconds=settings.server.session_idle_seconds,
    max_sessions=settings.server.max_sessions,
)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_pipeline(request: Request) -> PromptPipeline:
    return request.app.state.pipeline


def get_history(request: Request) -> Optional[SqlHistorySink]:
    return getattr(request.app.state, "history", None)


def _get_session(session_id: str) -> PromptSession:
    session = SESSIONS.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


async def read_upload(file: UploadFile, pipeline: PromptPipeline) -> bytes:
    """Read an upload without buffering more than one byte past the size limit."""
    limit = pipeline.settings.upload
    if file.size is not None:
        check_upload_size(file.size, limit)
    return await file.read(limit.max_bytes + 1)


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

class TemplateItem(BaseModel):
    id: str
    title: str
    category: str
    prompt: str


class ViewsResponse(BaseModel):
    """The four copyable text blobs."""
    masterPrompt: str
    structured: str
    detailed: str
    superStructured: str


class AnalyzeResponse(BaseModel):
    views: ViewsResponse
    frame_count: int
    scene_count: int


class StructureRequest(BaseModel):
    prompt: str = Field(min_length=1)
    master_prompt: Optional[str] = None


class RefineRequest(BaseModel):
    prompt: str = Field(min_length=1)
    mode: Literal["refine", "detail"] = "refine"
    tone: Optional[str] = None
    style: Optional[str] = None
    camera: Optional[str] = None
    lighting: Optional[str] = None
    instruction: Optional[str] = None
    negative_prompt: Optional[str] = None
    master_prompt: Optional[str] = None


class RefineResponse(BaseModel):
    prompt: str


class SessionRefineRequest(BaseModel):
    mode: Literal["refine", "detail"] = "refine"
    tone: Optional[str] = None
    style: Optional[str] = None
    camera: Optional[str] = None
    lighting: Optional[str] = None
    instruction: Optional[str] = None
    negative_prompt: Optional[str] = None


class FromTemplateRequest(BaseModel):
    template_id: str
    master_prompt: Optional[str] = None


class PromptEditRequest(BaseModel):
    prompt: str


class ProgressResponse(BaseModel):
    stage: str
    percent: int
    message: str


class SessionResponse(BaseModel):
    id: str
    status: str
    updating: bool
    generation: int
    source: str
    draft: str
    progress: Optional[ProgressResponse] = None
    views: Optional[ViewsResponse] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    diagnostic: Optional[dict] = None
    media: Optional[MediaInfo] = None


# ---------------------------------------------------------------------------
# Stateless endpoints
# ---------------------------------------------------------------------------

@router.get("/health")
async def health():
    return {"status": "ok"}


@router.get("/templates", response_model=list[TemplateItem])
async def templates():
    return [TemplateItem(**t.model_dump()) for t in list_templates()]


@router.post("/upload", response_model=AnalyzeResponse)
async def upload_and_analyze(
    file: UploadFile = File(...),
    master_prompt: Optional[str] = Form(None),
    frames: Optional[int] = Form(None, ge=1, le=60),
    pipeline: PromptPipeline = Depends(get_pipeline),
):
    """One-shot analysis: validate, sample, analyze and return all views."""
    content = await read_upload(file, pipeline)
    asset = pipeline.validate(content, file.content_type, filename=file.filename or "upload")
    outcome = await pipeline.analyze(asset, master_prompt=master_prompt, target_count=frames)
    return AnalyzeResponse(
        views=ViewsResponse(**outcome.views.export()),
        frame_count=len(outcome.frames),
        scene_count=len(outcome.result.scenes),
    )


@router.post("/structure", response_model=ViewsResponse)
async def structure_prompt(
    request: StructureRequest,
    pipeline: PromptPipeline = Depends(get_pipeline),
):
    result = (await pipeline.structure(request.prompt, request.master_prompt)).unwrap()
    return ViewsResponse(**project(result).export())


@router.post("/refine", response_model=RefineResponse)
async def refine_prompt(
    request: RefineRequest,
    pipeline: PromptPipeline = Depends(get_pipeline),
):
    instruction = build_refine_instruction(
        request.mode, request.tone, request.style, request.camera, request.lighting, request.instruction
    )
    text = await pipeline.refine(
        request.prompt,
        instruction,
        negative_prompt=request.negative_prompt,
        master_prompt=request.master_prompt,
    )
    return RefineResponse(prompt=text)


@router.get("/history", response_model=list[HistoryItem])
async def history(
    limit: int = 20,
    sink: Optional[SqlHistorySink] = Depends(get_history),
):
    if limit < 1 or limit > 200:
        raise HTTPException(status_code=422, detail="limit must be 1-200")
    if sink is None:
        return []
    return await sink.recent(limit)


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

@router.post("/sessions", status_code=202, response_model=SessionResponse)
async def create_session(
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    master_prompt: Optional[str] = Form(None),
    frames: Optional[int] = Form(None, ge=1, le=60),
    pipeline: PromptPipeline = Depends(get_pipeline),
):
    """Open a session for an upload and analyze it in the background.

    Upload validation and the preview metadata (resolution, duration) are
    handled before the response; rejected or undecodable uploads never
    create a session.
    """
    content = await read_upload(file, pipeline)
    session = PromptSession(pipeline, master_prompt=master_prompt)
    session.select_asset(content, file.content_type, filename=file.filename or "upload")
    await session.inspect_asset()
    SESSIONS.add(session)
    logger.info(f"Session {session.id} created for {session.source!r}")

    background_tasks.add_task(session.start_analysis, frames)
    return SessionResponse(**session.snapshot())


@router.post("/sessions/from-template", status_code=202, response_model=SessionResponse)
async def create_session_from_template(
    request: FromTemplateRequest,
    background_tasks: BackgroundTasks,
    pipeline: PromptPipeline = Depends(get_pipeline),
):
    try:
        get_template(request.template_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Template {request.template_id} not found")

    session = PromptSession(pipeline, master_prompt=request.master_prompt)
    SESSIONS.add(session)
    background_tasks.add_task(session.load_template, request.template_id)
    return SessionResponse(**session.snapshot())


@router.get("/sessions/{session_id}", response_model=SessionResponse)
async def get_session(session_id: str):
    return SessionResponse(**_get_session(session_id).snapshot())


@router.put("/sessions/{session_id}/prompt", status_code=202, response_model=SessionResponse)
async def edit_session_prompt(session_id: str, request: PromptEditRequest):
    """Replace the draft master prompt; restructuring runs after a quiet period."""
    session = _get_session(session_id)
    if session.status != "success":
        raise HTTPException(
            status_code=409,
            detail=f"Cannot edit prompt while session is {session.status}",
        )
    session.edit_master_prompt(request.prompt)
    return SessionResponse(**session.snapshot())


@router.post("/sessions/{session_id}/refine", response_model=SessionResponse)
async def refine_session_prompt(session_id: str, request: SessionRefineRequest):
    session = _get_session(session_id)
    instruction = build_refine_instruction(
        request.mode, request.tone, request.style, request.camera, request.lighting, request.instruction
    )
    try:
        await session.refine(instruction, negative_prompt=request.negative_prompt)
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return SessionResponse(**session.snapshot())


@router.delete("/sessions/{session_id}", status_code=204)
async def close_session(session_id: str):
    session = _get_session(session_id)
    session.cancel()
    SESSIONS.pop(session_id)
