# FILE: appforge/server.py
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import FastAPI
from starlette.middleware.cors import CORSMiddleware

from appforge.api import deploy, engines, generate, generate_ws, projects
from appforge.core.config import CORS_ORIGINS, GENERATED_APPS_DIR, PORT_ASSIGNMENTS_FILE
from appforge.core.database import SessionLocal, create_tables, engine as db_engine
from appforge.engines import get_engine
from appforge.services.file_system_service import ProjectFileSystem
from appforge.services.generation_service import GenerationOrchestrator
from appforge.services.port_service import PortAllocator
from appforge.services.process_service import LocalProcessSupervisor
from appforge.services.project_store import ProjectStore
from appforge.services.smoke_test_service import SmokeTester

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("appforge")


def build_services(
        session_factory=SessionLocal,
        generated_dir: Path = GENERATED_APPS_DIR,
        port_store: Path = PORT_ASSIGNMENTS_FILE,
        engine: Any = None,
        smoke_tester: Any = None,
        cleanup_delay: Optional[float] = None,
) -> Dict[str, Any]:
    store = ProjectStore(session_factory)
    file_system = ProjectFileSystem(generated_dir)
    ports = PortAllocator(port_store)
    orchestrator_kwargs = {} if cleanup_delay is None else {"cleanup_delay": cleanup_delay}
    orchestrator = GenerationOrchestrator(
        store=store,
        file_system=file_system,
        ports=ports,
        engine=engine or get_engine(),
        smoke_tester=smoke_tester or SmokeTester(),
        **orchestrator_kwargs,
    )
    supervisor = LocalProcessSupervisor(store, file_system, ports)
    return {
        "store": store,
        "file_system": file_system,
        "ports": ports,
        "orchestrator": orchestrator,
        "supervisor": supervisor,
    }


def create_app(services: Optional[Dict[str, Any]] = None, database=db_engine) -> FastAPI:
    app = FastAPI(title="AppForge Studio")

    for name, service in (services or build_services()).items():
        setattr(app.state, name, service)

    app.include_router(projects.router)
    app.include_router(generate.router)
    app.include_router(generate_ws.router)
    app.include_router(deploy.router)
    app.include_router(engines.router)

    app.add_middleware(
        CORSMiddleware,
        allow_credentials=True,
        allow_origins=CORS_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/health")
    async def health():
        return {
            "status": "ok",
            "active_generations": app.state.orchestrator.sessions.active_ids(),
            "running_apps": len(app.state.supervisor.running()),
        }

    @app.on_event("startup")
    async def startup():
        await create_tables(database)
        logger.info("Database ready")

    @app.on_event("shutdown")
    async def shutdown():
        await app.state.supervisor.stop_all()
        await database.dispose()

    return app


app = create_app()
