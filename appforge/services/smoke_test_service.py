# FILE: appforge/services/smoke_test_service.py
"""
Spin-up-and-probe check of a generated backend: start the entry point on a
free port, poll GET /health, kill it.
"""

import asyncio
import logging
import os
import socket
import time
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from appforge.core.config import INSTALL_TIMEOUT_SECONDS, SMOKE_TEST_INSTALL, SMOKE_TEST_TIMEOUT_SECONDS
from appforge.services.process_service import npm_command, run_command, wait_for_server

logger = logging.getLogger("appforge.smoke")

ENTRY_CANDIDATES = (
    "backend/src/server.js",
    "backend/server.js",
    "backend/src/index.js",
    "backend/src/app.js",
)
STDERR_TAIL_BYTES = 2000


def find_server_entry(paths: Iterable[str]) -> Optional[str]:
    paths = list(paths)
    for candidate in ENTRY_CANDIDATES:
        if candidate in paths:
            return candidate
    return next((p for p in paths if p.startswith("backend/") and p.endswith("server.js")), None)


async def _drain(stream: asyncio.StreamReader, limit: int = STDERR_TAIL_BYTES) -> bytes:
    """Reads a pipe to EOF, keeping only the last `limit` bytes."""
    tail = b""
    while True:
        chunk = await stream.read(4096)
        if not chunk:
            return tail
        tail = (tail + chunk)[-limit:]


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


class SmokeTester:
    def __init__(
            self,
            timeout: int = SMOKE_TEST_TIMEOUT_SECONDS,
            install: bool = SMOKE_TEST_INSTALL,
            node_command: str = "node",
    ):
        self.timeout = timeout
        self.install = install
        self.node_command = node_command

    async def run(self, project_path: Path, entry: str) -> Dict[str, Any]:
        started = time.monotonic()
        result: Dict[str, Any] = {"entry": entry, "success": False, "tests": [], "error": None}

        side_dir = Path(project_path) / entry.split("/", 1)[0]
        if self.install and (side_dir / "package.json").exists() and not (side_dir / "node_modules").exists():
            rc, output = await run_command([npm_command(), "install"], side_dir, INSTALL_TIMEOUT_SECONDS)
            if rc != 0:
                result["error"] = f"npm install failed (exit {rc})"
                result["output"] = output[-2000:]
                result["duration_ms"] = int((time.monotonic() - started) * 1000)
                return result

        port = _free_port()
        env = os.environ.copy()
        env["PORT"] = str(port)
        env["NODE_ENV"] = "test"
        script = str(Path(project_path) / entry)

        try:
            proc = await asyncio.create_subprocess_exec(
                self.node_command,
                script,
                cwd=str(side_dir),
                env=env,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            result["error"] = f"Could not start {self.node_command}: {e}"
            result["duration_ms"] = int((time.monotonic() - started) * 1000)
            return result

        # stderr is drained while polling
        drain = asyncio.create_task(_drain(proc.stderr))
        url = f"http://127.0.0.1:{port}/health"
        try:
            healthy = await wait_for_server(url, timeout=self.timeout, interval=0.5)
        finally:
            if proc.returncode is None:
                proc.kill()
            await proc.wait()
            stderr = await drain

        result["tests"].append({"name": "GET /health", "passed": healthy})
        result["success"] = all(t["passed"] for t in result["tests"])
        if not healthy:
            tail = stderr.decode("utf-8", errors="replace")
            result["error"] = f"Server did not answer {url} within {self.timeout}s"
            if tail:
                result["output"] = tail
        result["duration_ms"] = int((time.monotonic() - started) * 1000)
        logger.info(f"Smoke test {entry}: {'passed' if result['success'] else 'failed'}")
        return result
