# FILE: appforge/api/engines.py

from fastapi import APIRouter, Request

from appforge.engines import ENGINE_PRESETS, list_engines

router = APIRouter(prefix="/api/engines", tags=["engines"])


@router.get("")
async def engines(request: Request):
    return {
        "default": getattr(request.app.state.orchestrator.engine, "kind", None),
        "engines": list_engines(),
    }


@router.get("/presets")
async def engine_presets():
    return {"presets": ENGINE_PRESETS}
