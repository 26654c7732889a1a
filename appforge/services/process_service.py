# FILE: appforge/services/process_service.py
"""
Local run of generated apps.

- npm install per side (best effort unless strict_install)
- backend: `npm start` with PORT in env and in backend/.env
- frontend: `npm run dev -- -p <port>`
- stdout/stderr kept in a ring buffer per side
- stop: SIGTERM to the process group, SIGKILL after a grace period
  (taskkill /T /F on Windows)
- docker: `docker-compose up -d` / `down` in the project folder
"""

import asyncio
import logging
import os
import re
import signal
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional, Tuple

import httpx

from appforge.core.config import (
    INSTALL_TIMEOUT_SECONDS,
    PROCESS_LOG_LIMIT,
    PROCESS_STOP_GRACE_SECONDS,
    SERVER_WAIT_TIMEOUT_SECONDS,
)
from appforge.models.project import ProjectStatus
from appforge.services.project_store import ProjectNotFound

logger = logging.getLogger("appforge.deploy")

MAX_OUTPUT_CHARS = 12000
IS_WINDOWS = os.name == "nt"
SIDES = ("backend", "frontend")
COMPOSE_FILES = ("docker-compose.yml", "docker-compose.yaml")
DOCKER_URLS = {"frontend": "http://localhost:3000", "backend": "http://localhost:5000"}


class ProcessSupervisorError(Exception):
    pass


def npm_command() -> str:
    return "npm.cmd" if IS_WINDOWS else "npm"


def _spawn_kwargs() -> Dict[str, Any]:
    # own process group so npm's node children die with it
    return {} if IS_WINDOWS else {"start_new_session": True}


async def run_command(
        cmd: List[str],
        cwd: Path,
        timeout: int,
        env: Optional[Dict[str, str]] = None,
) -> Tuple[int, str]:
    """Runs a command to completion, returning (exit code, tail of combined output)."""
    logger.info(f"$ (cwd={cwd}) {' '.join(cmd)}")
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            cwd=str(cwd),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            env=env or os.environ.copy(),
        )
    except OSError as e:
        return 1, f"!! EXCEPTION: {e}"

    try:
        out, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        return 124, "!! TIMEOUT"

    text = (out or b"").decode("utf-8", errors="replace")
    return proc.returncode, text[-MAX_OUTPUT_CHARS:]


async def wait_for_server(url: str, timeout: float = SERVER_WAIT_TIMEOUT_SECONDS, interval: float = 1.0) -> bool:
    deadline = time.monotonic() + timeout
    async with httpx.AsyncClient(timeout=interval * 2) as client:
        while time.monotonic() < deadline:
            try:
                resp = await client.get(url)
                if resp.status_code < 400:
                    return True
            except httpx.HTTPError:
                pass
            await asyncio.sleep(interval)
    return False


def find_compose_file(base: Path) -> Optional[Path]:
    for name in COMPOSE_FILES:
        if (base / name).is_file():
            return base / name
    return None


def rewrite_env_port(env_file: Path, port: int) -> None:
    if not env_file.exists():
        return
    content = env_file.read_text(encoding="utf-8")
    if re.search(r"^PORT=.*$", content, re.M):
        content = re.sub(r"^PORT=.*$", f"PORT={port}", content, flags=re.M)
    else:
        content = f"PORT={port}\n" + content
    env_file.write_text(content, encoding="utf-8")


# ----------------------------
# Registry
# ----------------------------
@dataclass
class RunningApp:
    project_id: str
    project_path: str
    backend_port: int
    frontend_port: int
    start_time: float = field(default_factory=time.time)
    backend: Optional[asyncio.subprocess.Process] = None
    frontend: Optional[asyncio.subprocess.Process] = None
    logs: Dict[str, Deque[Dict[str, str]]] = field(default_factory=dict)
    tasks: List[asyncio.Task] = field(default_factory=list)

    def process(self, side: str) -> Optional[asyncio.subprocess.Process]:
        return getattr(self, side)


class ProcessRegistry:
    """Project id -> running app. The only place that knows what is running."""

    def __init__(self):
        self._apps: Dict[str, RunningApp] = {}

    def get(self, project_id: str) -> Optional[RunningApp]:
        return self._apps.get(project_id)

    def put(self, app: RunningApp) -> None:
        self._apps[app.project_id] = app

    def remove(self, project_id: str) -> Optional[RunningApp]:
        return self._apps.pop(project_id, None)

    def clear_side(self, project_id: str, side: str, proc: asyncio.subprocess.Process) -> None:
        app = self._apps.get(project_id)
        if app is not None and app.process(side) is proc:
            setattr(app, side, None)

    def project_ids(self) -> List[str]:
        return list(self._apps)


# ----------------------------
# Supervisor
# ----------------------------
class LocalProcessSupervisor:
    def __init__(
            self,
            store,
            file_system,
            ports,
            registry: Optional[ProcessRegistry] = None,
            log_limit: int = PROCESS_LOG_LIMIT,
            stop_grace_seconds: float = PROCESS_STOP_GRACE_SECONDS,
            install_timeout: int = INSTALL_TIMEOUT_SECONDS,
            commands: Optional[Dict[str, List[str]]] = None,
    ):
        self.store = store
        self.fs = file_system
        self.ports = ports
        self.registry = registry or ProcessRegistry()
        self.log_limit = log_limit
        self.stop_grace_seconds = stop_grace_seconds
        self.install_timeout = install_timeout
        self._commands = commands or {}

    def _command(self, side: str, port: int) -> List[str]:
        if side in self._commands:
            return list(self._commands[side])
        if side == "backend":
            return [npm_command(), "start"]
        return [npm_command(), "run", "dev", "--", "-p", str(port)]

    def _install_command(self) -> List[str]:
        return list(self._commands.get("install") or [npm_command(), "install"])

    # ----------------------------
    # start
    # ----------------------------
    async def start(self, project_id: str, skip_install: bool = False, strict_install: bool = False) -> Dict[str, Any]:
        app = self.registry.get(project_id)
        if app is not None and (app.backend or app.frontend):
            info = self.status(project_id)
            info["already_running"] = True
            return info
        if app is not None:
            # both sides exited on their own; start over
            self.registry.remove(project_id)
            for task in app.tasks:
                task.cancel()

        project = await self.store.get(project_id)
        if not project:
            raise ProjectNotFound(project_id)

        base = self.fs.get_project_path(project_id)
        if base is None or not base.exists():
            raise ProcessSupervisorError(f"Project folder not found for {project_id}")

        assignment = self.ports.get_assignment(project_id) or self.ports.assign(project_id, project["name"])
        ports = {
            "backend": int(assignment["backend_port"]),
            "frontend": int(assignment["frontend_port"]),
        }
        sides = [s for s in SIDES if (base / s / "package.json").exists()]
        if not sides:
            raise ProcessSupervisorError("No runnable backend or frontend found")

        install: Dict[str, Any] = {}
        if not skip_install:
            for side in sides:
                rc, output = await run_command(self._install_command(), base / side, self.install_timeout)
                install[side] = {"success": rc == 0, "exit_code": rc}
                if rc != 0:
                    logger.error(f"npm install failed for {project_id}/{side} (exit {rc}): {output[-2000:]}")
                    install[side]["output"] = output[-2000:]
                    if strict_install:
                        raise ProcessSupervisorError(f"Dependency install failed for {side} (exit {rc})")

        rewrite_env_port(base / "backend" / ".env", ports["backend"])

        app = RunningApp(
            project_id=project_id,
            project_path=str(base),
            backend_port=ports["backend"],
            frontend_port=ports["frontend"],
            logs={side: deque(maxlen=self.log_limit) for side in SIDES},
        )
        self.registry.put(app)

        for side in sides:
            proc = await self._spawn(app, side, base / side, ports[side])
            setattr(app, side, proc)
        if app.backend is None and app.frontend is None:
            self.registry.remove(project_id)
            raise ProcessSupervisorError(f"Could not start any process for {project_id}")

        info = self.status(project_id)
        info["install"] = install
        if info["urls"]:
            await self.store.update(project_id, {
                "status": ProjectStatus.DEPLOYED,
                "urls": info["urls"],
                "ports": {"frontend": ports["frontend"], "backend": ports["backend"]},
            })
        logger.info(f"Started {project_id}: {info['pids']}")
        return info

    async def _spawn(self, app: RunningApp, side: str, cwd: Path, port: int) -> Optional[asyncio.subprocess.Process]:
        env = os.environ.copy()
        env["PORT"] = str(port)
        cmd = self._command(side, port)
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=str(cwd),
                env=env,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                **_spawn_kwargs(),
            )
        except OSError as e:
            logger.error(f"Failed to spawn {side} for {app.project_id}: {e}")
            self._log(app, side, f"Failed to start: {e}", "stderr")
            return None

        app.tasks.append(asyncio.create_task(self._watch(app, side, proc)))
        return proc

    def _log(self, app: RunningApp, side: str, message: str, kind: str) -> None:
        app.logs[side].append({
            "time": datetime.utcnow().isoformat(),
            "message": message,
            "type": kind,
        })

    async def _pump(self, app: RunningApp, side: str, stream: asyncio.StreamReader, kind: str) -> None:
        try:
            async for raw in stream:
                line = raw.decode("utf-8", errors="replace").rstrip()
                if line:
                    self._log(app, side, line, kind)
        except ValueError as e:
            # line longer than the stream buffer limit
            self._log(app, side, f"!! output dropped: {e}", kind)

    async def _watch(self, app: RunningApp, side: str, proc: asyncio.subprocess.Process) -> None:
        await asyncio.gather(
            self._pump(app, side, proc.stdout, "stdout"),
            self._pump(app, side, proc.stderr, "stderr"),
        )
        code = await proc.wait()
        logger.info(f"{side} process for {app.project_id} exited with code {code}")
        self.registry.clear_side(app.project_id, side, proc)

    # ----------------------------
    # stop
    # ----------------------------
    async def _terminate(self, proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is not None:
            return
        if IS_WINDOWS:
            await run_command(["taskkill", "/PID", str(proc.pid), "/T", "/F"], Path.cwd(), 30)
            await proc.wait()
            return
        try:
            os.killpg(proc.pid, signal.SIGTERM)
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(proc.wait(), timeout=self.stop_grace_seconds)
        except asyncio.TimeoutError:
            try:
                os.killpg(proc.pid, signal.SIGKILL)
            except ProcessLookupError:
                return
            await proc.wait()

    async def stop(self, project_id: str, stop_docker: bool = False) -> Dict[str, Any]:
        app = self.registry.remove(project_id)
        extra = {"docker_stopped": await self.stop_docker(project_id)} if stop_docker else {}
        if app is None and not extra.get("docker_stopped"):
            return {"project_id": project_id, "status": "stopped", "was_running": False, **extra}

        if app is not None:
            for side in SIDES:
                proc = app.process(side)
                if proc is not None:
                    await self._terminate(proc)
            for task in app.tasks:
                task.cancel()

        project = await self.store.get(project_id)
        if project:
            await self.store.update(project_id, {"status": ProjectStatus.STOPPED, "urls": None})
        logger.info(f"Stopped {project_id}")
        return {"project_id": project_id, "status": "stopped", "was_running": app is not None, **extra}

    async def stop_all(self) -> None:
        for project_id in self.registry.project_ids():
            await self.stop(project_id)

    async def restart(self, project_id: str) -> Dict[str, Any]:
        await self.stop(project_id)
        return await self.start(project_id, skip_install=True)

    # ----------------------------
    # docker compose
    # ----------------------------
    def _compose_command(self, *args: str) -> List[str]:
        return [*(self._commands.get("compose") or ["docker-compose"]), *args]

    async def start_docker(self, project_id: str) -> Dict[str, Any]:
        project = await self.store.get(project_id)
        if not project:
            raise ProjectNotFound(project_id)

        base = self.fs.get_project_path(project_id)
        compose = find_compose_file(base) if base is not None else None
        if compose is None:
            raise ProcessSupervisorError("docker-compose.yml not found in project")

        rc, output = await run_command(self._compose_command("up", "-d"), compose.parent, self.install_timeout)
        if rc != 0:
            logger.error(f"docker-compose up failed for {project_id} (exit {rc}): {output[-2000:]}")
            raise ProcessSupervisorError(f"docker-compose failed (exit {rc}): {output[-2000:]}")

        await self.store.update(project_id, {"status": ProjectStatus.DEPLOYED, "urls": dict(DOCKER_URLS)})
        logger.info(f"Started docker containers for {project_id}")
        return {
            "project_id": project_id,
            "status": "running",
            "mode": "docker",
            "urls": dict(DOCKER_URLS),
            "output": output,
        }

    async def stop_docker(self, project_id: str) -> bool:
        base = self.fs.get_project_path(project_id)
        compose = find_compose_file(base) if base is not None else None
        if compose is None:
            return False
        rc, output = await run_command(self._compose_command("down"), compose.parent, self.install_timeout)
        if rc != 0:
            logger.error(f"docker-compose down failed for {project_id} (exit {rc}): {output[-2000:]}")
            return False
        logger.info(f"Stopped docker containers for {project_id}")
        return True

    # ----------------------------
    # reads
    # ----------------------------
    def status(self, project_id: str) -> Dict[str, Any]:
        app = self.registry.get(project_id)
        backend = app.backend if app else None
        frontend = app.frontend if app else None
        if app is None or (backend is None and frontend is None):
            return {
                "project_id": project_id,
                "status": "stopped",
                "running": False,
                "urls": None,
                "pids": None,
                "uptime": None,
            }
        return {
            "project_id": project_id,
            "status": "running",
            "running": True,
            "urls": {
                "frontend": f"http://localhost:{app.frontend_port}" if frontend else None,
                "backend": f"http://localhost:{app.backend_port}" if backend else None,
            },
            "pids": {
                "frontend": frontend.pid if frontend else None,
                "backend": backend.pid if backend else None,
            },
            "uptime": int(time.time() - app.start_time),
        }

    def logs(self, project_id: str) -> Dict[str, List[Dict[str, str]]]:
        app = self.registry.get(project_id)
        if app is None:
            return {side: [] for side in SIDES}
        return {side: list(app.logs.get(side, [])) for side in SIDES}

    def running(self) -> List[Dict[str, Any]]:
        return [
            info for info in (self.status(pid) for pid in self.registry.project_ids())
            if info["running"]
        ]
