# FILE: appforge/services/port_service.py
"""
Port allocation for generated apps.

Each project gets one (frontend, backend) pair, persisted as a JSON list so
assignments survive restarts. The platform's own ports are never handed out.
"""

import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set

from appforge.core.config import PLATFORM_PORTS, PORT_ASSIGNMENTS_FILE, STARTING_PORT
from appforge.core.files import write_json

logger = logging.getLogger("appforge.ports")


class PortAllocationError(Exception):
    pass


class PortAllocator:
    def __init__(
            self,
            store_path: Path = PORT_ASSIGNMENTS_FILE,
            reserved_ports: Iterable[int] = PLATFORM_PORTS,
            starting_port: int = STARTING_PORT,
    ):
        self.store_path = Path(store_path)
        self.reserved_ports = set(int(p) for p in reserved_ports)
        self.starting_port = int(starting_port)
        self._lock = threading.Lock()

    # ----------------------------
    # Disk helpers
    # ----------------------------
    def _load(self) -> List[Dict[str, Any]]:
        if not self.store_path.exists():
            return []
        try:
            data = json.loads(self.store_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise PortAllocationError(f"Port assignment store unreadable: {e}") from e
        if not isinstance(data, list):
            raise PortAllocationError("Port assignment store is not a list")
        return data

    def _save(self, assignments: List[Dict[str, Any]]) -> None:
        try:
            write_json(self.store_path, assignments)
        except OSError as e:
            raise PortAllocationError(f"Port assignment store unwritable: {e}") from e

    def _used_ports(self, assignments: List[Dict[str, Any]]) -> Set[int]:
        used = set(self.reserved_ports)
        for a in assignments:
            used.add(int(a["frontend_port"]))
            used.add(int(a["backend_port"]))
        return used

    @staticmethod
    def _next_free(used: Set[int], start: int) -> int:
        port = start
        while port in used:
            port += 1
        return port

    # ----------------------------
    # Public API
    # ----------------------------
    def assign(self, project_id: str, project_name: str) -> Dict[str, Any]:
        with self._lock:
            assignments = self._load()
            existing = next((a for a in assignments if a.get("project_id") == project_id), None)
            if existing:
                logger.info(f"Project {project_name} already has ports assigned")
                return existing

            used = self._used_ports(assignments)
            frontend_port = self._next_free(used, self.starting_port)
            used.add(frontend_port)
            backend_port = self._next_free(used, frontend_port + 1)

            assignment = {
                "project_id": project_id,
                "project_name": project_name,
                "frontend_port": frontend_port,
                "backend_port": backend_port,
                "assigned_at": datetime.utcnow().isoformat(),
            }
            assignments.append(assignment)
            self._save(assignments)

        logger.info(f"Assigned ports to {project_name}: frontend={frontend_port} backend={backend_port}")
        return assignment

    def get_assignment(self, project_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return next((a for a in self._load() if a.get("project_id") == project_id), None)

    def release(self, project_id: str) -> None:
        with self._lock:
            assignments = self._load()
            kept = [a for a in assignments if a.get("project_id") != project_id]
            if len(kept) < len(assignments):
                self._save(kept)
                logger.info(f"Released ports for project {project_id}")

    def all_assignments(self) -> List[Dict[str, Any]]:
        with self._lock:
            return self._load()
