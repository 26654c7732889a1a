# FILE: appforge/services/project_store.py
"""
Project record store backed by the async SQLAlchemy session factory.

Records are handed out as plain dicts so the orchestrator and the HTTP layer
never hold on to ORM instances across sessions.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from appforge.models.project import Project, ProjectStatus

_MUTABLE_FIELDS = {
    "name",
    "slug",
    "description",
    "status",
    "config",
    "generation_prompt",
    "output_path",
    "generated_files",
    "generation_stats",
    "test_results",
    "ports",
    "urls",
    "error",
}


class ProjectNotFound(Exception):
    pass


def _iso(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    return dt.replace(tzinfo=timezone.utc).isoformat()


def project_to_dict(p: Project) -> Dict[str, Any]:
    return {
        "id": p.id,
        "user_id": p.user_id,
        "name": p.name,
        "slug": p.slug,
        "description": p.description or "",
        "status": p.status,
        "config": dict(p.config or {}),
        "generation_prompt": p.generation_prompt,
        "output_path": p.output_path,
        "generated_files": list(p.generated_files or []),
        "generation_stats": p.generation_stats,
        "test_results": p.test_results,
        "ports": p.ports,
        "urls": p.urls,
        "error": p.error,
        "created_at": _iso(p.created_at),
        "updated_at": _iso(p.updated_at),
    }


class ProjectStore:
    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def create(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        project = Project(
            id=fields.get("id") or str(uuid.uuid4()),
            user_id=fields.get("user_id"),
            name=(fields.get("name") or "Untitled Project").strip(),
            description=fields.get("description") or "",
            status=fields.get("status") or ProjectStatus.DRAFT,
            config=dict(fields.get("config") or {}),
            generated_files=[],
        )
        async with self._session_factory() as db:
            db.add(project)
            await db.commit()
            return project_to_dict(project)

    async def get(self, project_id: str) -> Optional[Dict[str, Any]]:
        async with self._session_factory() as db:
            project = await db.get(Project, project_id)
            return project_to_dict(project) if project else None

    async def update(self, project_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        async with self._session_factory() as db:
            project = await db.get(Project, project_id)
            if not project:
                raise ProjectNotFound(project_id)
            for key, value in fields.items():
                if key not in _MUTABLE_FIELDS:
                    raise ValueError(f"Unknown project field: {key}")
                setattr(project, key, value)
            project.updated_at = datetime.utcnow()
            await db.commit()
            return project_to_dict(project)

    async def delete(self, project_id: str) -> bool:
        async with self._session_factory() as db:
            res = await db.execute(delete(Project).where(Project.id == project_id))
            await db.commit()
            return bool(res.rowcount)

    async def list(self, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        stmt = select(Project).order_by(Project.created_at.desc())
        if user_id:
            stmt = stmt.where(Project.user_id == user_id)
        async with self._session_factory() as db:
            rows = (await db.execute(stmt)).scalars().all()
            return [project_to_dict(p) for p in rows]
