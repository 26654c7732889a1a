# =========================================================
# FILE: appforge/api/projects.py
# =========================================================

import asyncio
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException

from appforge.api.deps import (
    get_file_system,
    get_optional_user,
    get_orchestrator,
    get_ports,
    get_project_or_404,
    get_store,
    get_supervisor,
)
from appforge.schemas.projects import ProjectCreate, ProjectFileItem, ProjectFileWrite, ProjectResponse
from appforge.services.file_system_service import FileSystemError, PathTraversalError

router = APIRouter(prefix="/api/projects", tags=["projects"])
logger = logging.getLogger("appforge.projects")


@router.post("", response_model=ProjectResponse, status_code=201)
async def create_project(
        data: ProjectCreate,
        user=Depends(get_optional_user),
        store=Depends(get_store),
):
    project = await store.create({
        "name": data.name,
        "description": data.description,
        "config": data.config.dict(),
        "user_id": user["id"] if user else None,
    })
    logger.info(f"Created project {project['id']} ({project['name']})")
    return project


@router.get("", response_model=List[ProjectResponse])
async def list_projects(user=Depends(get_optional_user), store=Depends(get_store)):
    return await store.list(user["id"] if user else None)


@router.get("/{project_id}", response_model=ProjectResponse)
async def get_project(project=Depends(get_project_or_404)):
    return project


@router.delete("/{project_id}")
async def delete_project(
        project=Depends(get_project_or_404),
        store=Depends(get_store),
        file_system=Depends(get_file_system),
        ports=Depends(get_ports),
        supervisor=Depends(get_supervisor),
        orchestrator=Depends(get_orchestrator),
):
    pid = project["id"]
    if await orchestrator.cancel(pid):
        logger.info(f"Cancelled running generation for {pid} before delete")
    await supervisor.stop(pid)
    ports.release(pid)
    file_system.delete_project_directory(pid)
    await store.delete(pid)
    logger.info(f"Deleted project {pid}")
    return {"deleted": True, "project_id": pid}


@router.get("/{project_id}/files", response_model=List[ProjectFileItem])
async def list_project_files(project=Depends(get_project_or_404), file_system=Depends(get_file_system)):
    return file_system.list_files(project["id"])


@router.get("/{project_id}/files/{file_path:path}")
async def read_project_file(
        file_path: str,
        project=Depends(get_project_or_404),
        file_system=Depends(get_file_system),
):
    content = file_system.read_file(project["id"], file_path)
    if content is None:
        raise HTTPException(status_code=404, detail="File not found")
    return {"path": file_path, "content": content}


@router.post("/{project_id}/files")
async def write_project_file(
        data: ProjectFileWrite,
        project=Depends(get_project_or_404),
        store=Depends(get_store),
        file_system=Depends(get_file_system),
):
    pid = project["id"]
    if file_system.get_project_path(pid) is None:
        raise HTTPException(status_code=404, detail="Project folder not found")
    try:
        saved = await asyncio.to_thread(file_system.write_file, pid, data.path, data.content)
    except PathTraversalError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except FileSystemError as e:
        raise HTTPException(status_code=400, detail=str(e))

    generated = project.get("generated_files") or []
    if saved not in generated:
        await store.update(pid, {"generated_files": sorted([*generated, saved])})
    return {"success": True, "path": saved}
