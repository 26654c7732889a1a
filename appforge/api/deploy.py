# =========================================================
# FILE: appforge/api/deploy.py
# =========================================================

import logging

from fastapi import APIRouter, Depends, HTTPException

from appforge.api.deps import get_project_or_404, get_supervisor
from appforge.services.port_service import PortAllocationError
from appforge.services.process_service import ProcessSupervisorError
from appforge.services.project_store import ProjectNotFound

router = APIRouter(prefix="/api/deploy", tags=["deploy"])
logger = logging.getLogger("appforge.deploy")


@router.get("/running")
async def running_apps(supervisor=Depends(get_supervisor)):
    apps = supervisor.running()
    return {"count": len(apps), "apps": apps}


@router.post("/{project_id}/local")
async def deploy_local(
        project_id: str,
        skip_install: bool = False,
        strict_install: bool = False,
        supervisor=Depends(get_supervisor),
):
    try:
        return await supervisor.start(project_id, skip_install=skip_install, strict_install=strict_install)
    except ProjectNotFound:
        raise HTTPException(status_code=404, detail="Project not found")
    except ProcessSupervisorError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PortAllocationError as e:
        logger.error(f"Port allocation failed for {project_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/{project_id}/docker")
async def deploy_docker(project_id: str, supervisor=Depends(get_supervisor)):
    try:
        return await supervisor.start_docker(project_id)
    except ProjectNotFound:
        raise HTTPException(status_code=404, detail="Project not found")
    except ProcessSupervisorError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/{project_id}/stop")
async def stop_app(project_id: str, stop_docker: bool = False, supervisor=Depends(get_supervisor)):
    return await supervisor.stop(project_id, stop_docker=stop_docker)


@router.post("/{project_id}/restart")
async def restart_app(
        project: dict = Depends(get_project_or_404),
        supervisor=Depends(get_supervisor),
):
    try:
        return await supervisor.restart(project["id"])
    except ProcessSupervisorError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/{project_id}/status")
async def app_status(project_id: str, supervisor=Depends(get_supervisor)):
    return supervisor.status(project_id)


@router.get("/{project_id}/logs")
async def app_logs(project_id: str, supervisor=Depends(get_supervisor)):
    return {"project_id": project_id, "logs": supervisor.logs(project_id)}
