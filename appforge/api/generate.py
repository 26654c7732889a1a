# FILE: appforge/api/generate.py
# =========================================================
# Generation routes: start (202), live stream, sync run,
# single-phase regeneration, components, status, cancel
# =========================================================

import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from appforge.api.deps import get_optional_user, get_orchestrator, get_project_or_404
from appforge.engines import EngineError
from appforge.schemas.generate import ComponentsRequest, GenerateAccepted, GenerateRequest, GenerationOverrides, PhaseRegenerateRequest
from appforge.services.progress_service import GenerationConflict
from appforge.services.project_store import ProjectNotFound
from appforge.validators.phase_validator import InvalidPhaseError

router = APIRouter(prefix="/api/generate", tags=["generate"])
logger = logging.getLogger("appforge.generate")


def _overrides(config: Optional[GenerationOverrides]) -> Dict[str, Any]:
    return config.dict(exclude_none=True) if config else {}


@router.post("", status_code=202, response_model=GenerateAccepted)
async def start_generation(
        request: GenerateRequest,
        user=Depends(get_optional_user),
        orchestrator=Depends(get_orchestrator),
):
    try:
        accepted = await orchestrator.start(request.project_id, request.prompt, _overrides(request.config))
    except ProjectNotFound:
        raise HTTPException(status_code=404, detail="Project not found")
    except GenerationConflict as e:
        raise HTTPException(status_code=409, detail=str(e))

    logger.info(f"Generation accepted for {request.project_id} (user={user['id'] if user else 'anonymous'})")
    return accepted


@router.get("/{project_id}/stream")
async def stream_generation(
        project: Dict[str, Any] = Depends(get_project_or_404),
        orchestrator=Depends(get_orchestrator),
):
    subscription = orchestrator.subscribe(project["id"], project["status"])

    async def event_stream():
        try:
            async for event in subscription:
                yield f"data: {json.dumps(event, default=str)}\n\n"
        finally:
            subscription.close()

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.post("/sync")
async def generate_sync(
        request: GenerateRequest,
        orchestrator=Depends(get_orchestrator),
):
    try:
        return await orchestrator.generate_sync(request.project_id, request.prompt, _overrides(request.config))
    except ProjectNotFound:
        raise HTTPException(status_code=404, detail="Project not found")
    except GenerationConflict as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post("/{project_id}/phase/{phase}")
async def regenerate_phase(
        project_id: str,
        phase: str,
        request: Optional[PhaseRegenerateRequest] = None,
        orchestrator=Depends(get_orchestrator),
):
    overrides = _overrides(request.config) if request else {}
    try:
        return await orchestrator.regenerate_phase(project_id, phase, overrides)
    except InvalidPhaseError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ProjectNotFound:
        raise HTTPException(status_code=404, detail="Project not found")
    except EngineError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_http_detail())


@router.post("/{project_id}/components")
async def generate_components(
        project_id: str,
        request: ComponentsRequest,
        orchestrator=Depends(get_orchestrator),
):
    try:
        return await orchestrator.generate_components(project_id, request.components)
    except ProjectNotFound:
        raise HTTPException(status_code=404, detail="Project not found")
    except EngineError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_http_detail())


@router.get("/{project_id}/status")
async def generation_status(project_id: str, orchestrator=Depends(get_orchestrator)):
    try:
        return await orchestrator.status(project_id)
    except ProjectNotFound:
        raise HTTPException(status_code=404, detail="Project not found")


@router.post("/{project_id}/cancel")
async def cancel_generation(
        project: Dict[str, Any] = Depends(get_project_or_404),
        orchestrator=Depends(get_orchestrator),
):
    if not await orchestrator.cancel(project["id"]):
        raise HTTPException(status_code=404, detail="No active generation for this project")
    return {"project_id": project["id"], "status": "cancelled"}
