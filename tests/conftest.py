"""
Shared fixtures: an on-disk SQLite store per test, temp project folders, a
scripted engine that answers per phase, and a smoke tester that never spawns
node.
"""

import asyncio
import re
from typing import Any, Callable, Dict, List, Optional, Union

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from appforge.core.database import create_tables, make_engine, make_session_factory
from appforge.engines import EngineResult
from appforge.services.file_system_service import ProjectFileSystem
from appforge.services.generation_service import GenerationOrchestrator
from appforge.services.port_service import PortAllocator
from appforge.services.process_service import LocalProcessSupervisor
from appforge.services.progress_service import SessionRegistry
from appforge.services.project_store import ProjectStore
from appforge.validators.multi_file import serialize_file_map

_PHASE_RE = re.compile(r"Generation phase: (\w+)")

BACKEND_FILES = {
    "backend/package.json": '{\n  "name": "shop-backend",\n  "dependencies": {"express": "^4.18.2", "bcrypt": "^5.1.0"}\n}\n',
    "backend/src/server.js": (
        "const express = require('express');\n"
        "const config = require('./config');\n"
        "const routes = require('./routes');\n"
        "const { errorHandler } = require('./middleware/errorHandler');\n"
        "const app = express();\n"
        "app.get('/health', (req, res) => res.json({ ok: true }));\n"
        "app.use('/api', routes);\n"
        "app.use(errorHandler);\n"
        "app.listen(config.server.port);\n"
    ),
    "backend/src/config/index.js": "require('dotenv').config();\nmodule.exports = { server: { port: process.env.PORT } };\n",
    "backend/src/routes/index.js": "const router = require('express').Router();\nmodule.exports = router;\n",
    "backend/src/middleware/auth.js": "const jwt = require('jsonwebtoken');\nexports.authenticate = () => {};\n",
    "backend/src/middleware/errorHandler.js": "exports.errorHandler = (err, req, res, next) => res.status(500).end();\n",
    "backend/src/services/authService.js": "const bcrypt = require('bcrypt');\nmodule.exports = { bcrypt };\n",
    "backend/.env": "PORT=5000\n",
}

FRONTEND_FILES = {
    "frontend/package.json": '{"name": "shop-frontend", "dependencies": {"next": "14.0.4"}}',
    "frontend/app/layout.tsx": "import './globals.css';\nexport default function RootLayout({ children }) { return children; }\n",
    "frontend/app/globals.css": "@tailwind base;\n",
    "frontend/app/page.tsx": "export default function Home() { return null; }\n",
    "frontend/tailwind.config.js": "module.exports = {};\n",
    "frontend/.env.local": "NEXT_PUBLIC_API_URL=http://localhost:5000\n",
}

DATABASE_FILES = {
    "database/schema.sql": "CREATE TABLE users (id UUID PRIMARY KEY);\n",
}

INFRASTRUCTURE_FILES = {
    "docker-compose.yml": "services: {}\n",
    ".gitignore": "node_modules\n.env\n",
}

DOCUMENTATION_FILES = {
    "README.md": "# Shop\n",
    "docs/API.md": "# API\n",
}

PHASE_FILES = {
    "backend": BACKEND_FILES,
    "frontend": FRONTEND_FILES,
    "database": DATABASE_FILES,
    "infrastructure": INFRASTRUCTURE_FILES,
    "documentation": DOCUMENTATION_FILES,
}

Reply = Union[str, Exception, Callable[[], Any]]


class ScriptedEngine:
    """Answers each phase prompt from a script; a list is consumed one reply per call."""

    kind = "scripted"

    def __init__(self, replies: Optional[Dict[str, Union[Reply, List[Reply]]]] = None):
        self.replies = replies if replies is not None else {
            phase: serialize_file_map(files) for phase, files in PHASE_FILES.items()
        }
        self.calls: List[str] = []

    async def generate(self, prompt, system_prompt=None, max_tokens=None, model=None):
        m = _PHASE_RE.search(prompt)
        key = m.group(1) if m else "components"
        self.calls.append(key)

        reply = self.replies.get(key, "")
        if isinstance(reply, list):
            reply = reply.pop(0) if len(reply) > 1 else reply[0]
        if callable(reply) and not isinstance(reply, Exception):
            reply = reply()
            if asyncio.iscoroutine(reply):
                reply = await reply
        if isinstance(reply, Exception):
            raise reply
        return EngineResult(content=reply, input_tokens=100, output_tokens=200, elapsed_ms=5)


class FakeSmokeTester:
    def __init__(self, success: bool = True):
        self.success = success
        self.calls = []

    async def run(self, project_path, entry):
        self.calls.append(entry)
        return {
            "entry": entry,
            "success": self.success,
            "tests": [{"name": "GET /health", "passed": self.success}],
            "error": None if self.success else "Server did not answer",
        }


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def store(db_engine):
    return ProjectStore(make_session_factory(db_engine))


@pytest.fixture
def file_system(tmp_path):
    return ProjectFileSystem(tmp_path / "generated-apps")


@pytest.fixture
def ports(tmp_path):
    return PortAllocator(tmp_path / "data" / "port-assignments.json", reserved_ports=[3000, 3001], starting_port=4000)


@pytest.fixture
def engine():
    return ScriptedEngine()


@pytest.fixture
def smoke_tester():
    return FakeSmokeTester()


@pytest.fixture
def orchestrator(store, file_system, ports, engine, smoke_tester):
    return GenerationOrchestrator(
        store=store,
        file_system=file_system,
        ports=ports,
        engine=engine,
        smoke_tester=smoke_tester,
        sessions=SessionRegistry(),
        cleanup_delay=0.05,
    )


@pytest.fixture
def supervisor(store, file_system, ports):
    return LocalProcessSupervisor(store, file_system, ports, stop_grace_seconds=2)


@pytest_asyncio.fixture
async def project(store):
    return await store.create({
        "name": "Shop Floor",
        "description": "An online shop",
        "config": {"features": ["Orders", "Product Catalog"], "multi_tenant": False},
    })


@pytest_asyncio.fixture
async def async_client(store, file_system, ports, orchestrator, supervisor, db_engine):
    from appforge.server import create_app

    app = create_app(
        services={
            "store": store,
            "file_system": file_system,
            "ports": ports,
            "orchestrator": orchestrator,
            "supervisor": supervisor,
        },
        database=db_engine,
    )
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
