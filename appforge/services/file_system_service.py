# FILE: appforge/services/file_system_service.py
"""
On-disk layout of generated projects.

GENERATED_APPS_DIR/<project_id>-<slug>/
    backend/ frontend/ database/ infrastructure/ docs/ .github/
    project.json      (metadata written after generation)
"""

import logging
import os
import secrets
import shutil
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from appforge.core.config import GENERATED_APPS_DIR
from appforge.core.files import read_json, write_json
from appforge.repair.manifests import (
    default_backend_manifest,
    default_frontend_manifest,
    dump_manifest,
    slugify,
)

logger = logging.getLogger("appforge.files")

METADATA_FILE = "project.json"

PROJECT_STRUCTURE = [
    "backend/src/config",
    "backend/src/controllers",
    "backend/src/middleware",
    "backend/src/models",
    "backend/src/routes",
    "backend/src/services",
    "backend/src/utils",
    "backend/tests",
    "frontend/app",
    "frontend/components/ui",
    "frontend/components/layout",
    "frontend/lib",
    "frontend/hooks",
    "frontend/public",
    "database/migrations",
    "database/seeds",
    "infrastructure",
    "docs",
    ".github/workflows",
]

SKIP_DIRS = {"node_modules", ".git", ".next", "dist", "build"}


class FileSystemError(Exception):
    pass


class PathTraversalError(FileSystemError):
    pass


def _safe_join(base: Path, relative_path: str) -> Path:
    target = (base / relative_path).resolve()
    if base.resolve() not in target.parents:
        raise PathTraversalError(f"Path escapes project directory: {relative_path}")
    return target


def backend_env(project_id: str, project_name: str, backend_port: int, frontend_port: int) -> str:
    slug = slugify(project_name).replace("-", "_")
    return (
        "# Generated by AppForge - ports are assigned per project\n"
        f"PORT={backend_port}\n"
        "NODE_ENV=development\n"
        f"FRONTEND_URL=http://localhost:{frontend_port}\n"
        "\n"
        "# Database\n"
        "DB_HOST=localhost\n"
        "DB_PORT=5432\n"
        f"DB_NAME={slug}_dev\n"
        "DB_USERNAME=postgres\n"
        "DB_PASSWORD=postgres\n"
        "\n"
        "# Auth\n"
        f"JWT_SECRET={project_id}-{secrets.token_hex(24)}\n"
        "JWT_EXPIRES_IN=24h\n"
        "\n"
        f"CORS_ORIGIN=http://localhost:{frontend_port}\n"
    )


def frontend_env(backend_port: int, frontend_port: int) -> str:
    return (
        f"NEXT_PUBLIC_API_URL=http://localhost:{backend_port}\n"
        f"PORT={frontend_port}\n"
    )


class ProjectFileSystem:
    def __init__(self, root: Path = GENERATED_APPS_DIR):
        self.root = Path(root)

    def _ensure_root(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    def get_project_path(self, project_id: str, slug: Optional[str] = None) -> Optional[Path]:
        if slug:
            return self.root / f"{project_id}-{slug}"
        if not self.root.exists():
            return None
        for child in sorted(self.root.iterdir()):
            if child.is_dir() and (child.name == project_id or child.name.startswith(f"{project_id}-")):
                return child
        return None

    def create_project_structure(self, project_id: str, project_name: str) -> Dict[str, str]:
        self._ensure_root()
        slug = slugify(project_name)
        base = self.get_project_path(project_id, slug)
        for rel in PROJECT_STRUCTURE:
            (base / rel).mkdir(parents=True, exist_ok=True)
        logger.info(f"Created project structure at {base}")
        return {"path": str(base), "slug": slug}

    def save_file(self, base: Path, relative_path: str, content: str) -> str:
        target = _safe_join(Path(base), relative_path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
        return relative_path

    def save_many(self, base: Path, files: Dict[str, str]) -> List[str]:
        saved = []
        for rel, content in files.items():
            try:
                saved.append(self.save_file(base, rel, content))
            except (OSError, FileSystemError) as e:
                logger.error(f"Failed to save {rel}: {e}")
        return saved

    def ensure_default_manifests(self, base: Path, project_name: str, files: Dict[str, str]) -> List[str]:
        """Writes default package.json files for sides the model left without one."""
        created = []
        for rel, builder in (
                ("backend/package.json", default_backend_manifest),
                ("frontend/package.json", default_frontend_manifest),
        ):
            if rel in files:
                continue
            self.save_file(base, rel, dump_manifest(builder(project_name)))
            created.append(rel)
        return created

    def write_env_files(self, base: Path, project_id: str, project_name: str, ports: Dict[str, Any]) -> List[str]:
        backend_port = int(ports["backend_port"])
        frontend_port = int(ports["frontend_port"])
        return [
            self.save_file(base, "backend/.env", backend_env(project_id, project_name, backend_port, frontend_port)),
            self.save_file(base, "frontend/.env.local", frontend_env(backend_port, frontend_port)),
        ]

    def save_metadata(self, project_id: str, metadata: Dict[str, Any]) -> None:
        base = self.get_project_path(project_id)
        if base is None:
            raise FileSystemError(f"Project directory not found: {project_id}")
        payload = dict(metadata)
        payload["updated_at"] = datetime.utcnow().isoformat()
        write_json(base / METADATA_FILE, payload)

    def read_metadata(self, project_id: str) -> Optional[Dict[str, Any]]:
        base = self.get_project_path(project_id)
        if base is None:
            return None
        return read_json(base / METADATA_FILE)

    def read_file(self, project_id: str, relative_path: str) -> Optional[str]:
        base = self.get_project_path(project_id)
        if base is None:
            return None
        try:
            target = _safe_join(base, relative_path)
        except FileSystemError:
            return None
        if not target.is_file():
            return None
        return target.read_text(encoding="utf-8", errors="replace")

    def write_file(self, project_id: str, relative_path: str, content: str) -> str:
        base = self.get_project_path(project_id)
        if base is None:
            raise FileSystemError(f"Project directory not found: {project_id}")
        target = _safe_join(base, relative_path)
        if target.exists() and not target.is_file():
            raise FileSystemError(f"Target is not a file: {relative_path}")
        saved = self.save_file(base, relative_path, content)
        logger.info(f"Wrote {saved} in {base.name}")
        return saved

    def list_files(self, project_id: str) -> List[Dict[str, Any]]:
        base = self.get_project_path(project_id)
        if base is None:
            return []
        out = []
        for dirpath, dirnames, filenames in os.walk(base):
            dirnames[:] = sorted(d for d in dirnames if d not in SKIP_DIRS)
            for name in sorted(filenames):
                path = Path(dirpath) / name
                st = path.stat()
                out.append({
                    "name": name,
                    "path": path.relative_to(base).as_posix(),
                    "size": st.st_size,
                    "modified_at": datetime.utcfromtimestamp(st.st_mtime).isoformat(),
                })
        return out

    def delete_project_directory(self, project_id: str) -> bool:
        base = self.get_project_path(project_id)
        if base is None:
            return False
        shutil.rmtree(base, ignore_errors=True)
        logger.info(f"Deleted project directory {base}")
        return True
