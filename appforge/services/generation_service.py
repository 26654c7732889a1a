# =========================================================
# FILE: appforge/services/generation_service.py
# =========================================================
"""
Generation orchestrator.

setup -> backend -> frontend -> database -> infrastructure -> documentation -> finalizing

- phases run one after another; a failed content phase is recorded and the
  run continues with the next one
- finalizing writes files, ports, env files and metadata, then smoke tests
- the background task owns the session from start to removal
- cancel is bookkeeping only: the task notices at the next phase boundary
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from appforge.core.config import SESSION_CLEANUP_DELAY_SECONDS
from appforge.engines import get_engine, preset_engine_kind
from appforge.models.project import ProjectStatus
from appforge.services.phase_generator import PhaseResult, generate_components, generate_single_phase
from appforge.services.progress_service import (
    GenerationSession,
    SessionRegistry,
    Subscription,
    idle_subscription,
)
from appforge.services.project_store import ProjectNotFound
from appforge.services.smoke_test_service import find_server_entry
from appforge.validators.multi_file import count_lines
from appforge.validators.phase_validator import CONTENT_PHASES, PHASE_STAT_KEYS, PHASES, check_phase

logger = logging.getLogger("appforge.generate")

OUTCOME_SUCCEEDED = "succeeded"
OUTCOME_PARTIAL = "partially_succeeded"
OUTCOME_FAILED = "failed"

CANCEL_MESSAGE = "Generation cancelled by user"


class GenerationError(Exception):
    pass


class GenerationCancelled(Exception):
    pass


def build_generation_config(project: Dict[str, Any], overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    stored = dict(project.get("config") or {})
    config = {
        "name": project.get("name") or "Untitled Project",
        "description": project.get("description") or "",
        "industry": stored.get("industry"),
        "features": list(stored.get("features") or []),
        "integrations": list(stored.get("integrations") or []),
        "multi_tenant": bool(stored.get("multi_tenant")),
        "authentication": stored.get("authentication") or "JWT",
    }
    for key, value in (overrides or {}).items():
        if value is not None:
            config[key] = value
    return config


def classify_outcome(phase_results: List[Dict[str, Any]], smoke_passed: bool) -> str:
    failed = [r for r in phase_results if r.get("error")]
    if not failed and smoke_passed:
        return OUTCOME_SUCCEEDED
    if len(failed) >= len(CONTENT_PHASES):
        return OUTCOME_FAILED
    return OUTCOME_PARTIAL


class GenerationOrchestrator:
    def __init__(
            self,
            store,
            file_system,
            ports,
            engine,
            smoke_tester,
            sessions: Optional[SessionRegistry] = None,
            cleanup_delay: float = SESSION_CLEANUP_DELAY_SECONDS,
    ):
        self.store = store
        self.fs = file_system
        self.ports = ports
        self.engine = engine
        self.smoke_tester = smoke_tester
        self.sessions = sessions or SessionRegistry()
        self.cleanup_delay = cleanup_delay
        self._preset_engines: Dict[str, Any] = {}

    # =========================================================
    # Entry points
    # =========================================================
    async def _open_session(self, project_id: str, prompt: Optional[str], overrides: Optional[Dict[str, Any]]):
        project = await self.store.get(project_id)
        if not project:
            raise ProjectNotFound(project_id)
        # raises GenerationConflict while another run for this project is live
        session = self.sessions.create(project_id)
        session.status = "generating"
        config = build_generation_config(project, overrides)
        await self.store.update(project_id, {
            "status": ProjectStatus.GENERATING,
            "generation_prompt": prompt,
            "error": None,
        })
        return session, config

    async def start(
            self,
            project_id: str,
            prompt: Optional[str] = None,
            overrides: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Accepts the run and returns at once; the work continues in a task."""
        session, config = await self._open_session(project_id, prompt, overrides)
        session.task = asyncio.create_task(self.run(session, config))
        return {
            "project_id": project_id,
            "status": session.status,
            "phases": [{"id": p["id"], "label": p["label"], "weight": p["weight"]} for p in session.phases],
        }

    async def generate_sync(
            self,
            project_id: str,
            prompt: Optional[str] = None,
            overrides: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        session, config = await self._open_session(project_id, prompt, overrides)
        result = await self.run(session, config)
        return {"project": await self.store.get(project_id), "generation": result}

    def subscribe(self, project_id: str, project_status: str = ProjectStatus.DRAFT) -> Subscription:
        session = self.sessions.get(project_id)
        if session is None:
            return idle_subscription(project_id, project_status)
        return session.subscribe()

    async def cancel(self, project_id: str) -> bool:
        session = self.sessions.get(project_id)
        if session is None or session.status != "generating":
            return False
        session.cancelled = True
        session.status = "cancelled"
        session.add_log(CANCEL_MESSAGE, "warning")
        session.broadcast({"type": "cancelled", "project_id": project_id, "message": CANCEL_MESSAGE})
        self.sessions.remove(session)
        await self.store.update(project_id, {"status": ProjectStatus.DRAFT, "error": CANCEL_MESSAGE})
        return True

    async def status(self, project_id: str) -> Dict[str, Any]:
        project = await self.store.get(project_id)
        if not project:
            raise ProjectNotFound(project_id)
        session = self.sessions.get(project_id)
        return {
            "project_id": project_id,
            "status": project["status"],
            "is_generating": bool(session and session.status == "generating"),
            "session": session.snapshot() if session else None,
            "generation_stats": project.get("generation_stats"),
            "error": project.get("error"),
            "output_path": project.get("output_path"),
        }

    async def regenerate_phase(self, project_id: str, phase: str, overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        check_phase(phase)
        project = await self.store.get(project_id)
        if not project:
            raise ProjectNotFound(project_id)
        config = build_generation_config(project, overrides)

        session = self.sessions.get(project_id)
        if session:
            session.add_log(f"Regenerating {phase} phase...", "thinking")
        result = await generate_single_phase(phase, config, self.engine_for(config, phase))

        saved: List[str] = []
        base = self.fs.get_project_path(project_id)
        if base is not None:
            saved = await asyncio.to_thread(self.fs.save_many, base, result.files)
            merged = sorted(set(project.get("generated_files") or []) | set(saved))
            await self.store.update(project_id, {"generated_files": merged})
        if session:
            session.add_log(f"Regenerated {phase}: {len(result.files)} files", "success")

        return {
            "phase": phase,
            "files": result.files,
            "saved": saved,
            "stats": result.stats,
            "fixes": result.fixes,
            "warnings": result.warnings,
        }

    async def generate_components(self, project_id: str, components: List[str]) -> Dict[str, Any]:
        project = await self.store.get(project_id)
        if not project:
            raise ProjectNotFound(project_id)
        files = await generate_components(components, project["name"], project.get("description") or "", self.engine)

        saved: List[str] = []
        base = self.fs.get_project_path(project_id)
        if base is not None and files:
            saved = await asyncio.to_thread(self.fs.save_many, base, files)
        return {"files": files, "saved": saved}

    def engine_for(self, config: Dict[str, Any], phase: str):
        """The configured engine, unless the run names a preset that maps this phase elsewhere."""
        preset = config.get("engine_preset")
        if not preset:
            return self.engine
        kind = preset_engine_kind(preset, phase)
        if getattr(self.engine, "kind", None) == kind:
            return self.engine
        if kind not in self._preset_engines:
            self._preset_engines[kind] = get_engine(kind)
        return self._preset_engines[kind]

    # =========================================================
    # The run
    # =========================================================
    def _check_cancelled(self, session: GenerationSession) -> None:
        if session.cancelled:
            raise GenerationCancelled()

    def _record_phase_stats(self, session: GenerationSession, phase: str, result: PhaseResult) -> None:
        stat_key = PHASE_STAT_KEYS[phase]
        session.update_stats(**{
            stat_key: session.stats[stat_key] + len(result.files),
            "total_files": session.stats["total_files"] + len(result.files),
            "total_lines": session.stats["total_lines"] + count_lines(result.files),
        })

    async def _run_content_phase(
            self,
            session: GenerationSession,
            phase: str,
            config: Dict[str, Any],
            all_files: Dict[str, str],
    ) -> Dict[str, Any]:
        label = next(lbl for pid, lbl, _ in PHASES if pid == phase)
        session.update_phase(phase, "in_progress")
        session.add_log(f"{label}...", "thinking")

        try:
            result = await generate_single_phase(phase, config, self.engine_for(config, phase))
        except Exception as e:
            session.update_phase(phase, "failed")
            session.add_log(f"{phase} phase failed: {e}", "error")
            return {"phase": phase, "files_generated": 0, "error": str(e)}

        self._check_cancelled(session)

        # merged before the next phase starts
        all_files.update(result.files)
        self._record_phase_stats(session, phase, result)
        for fix in result.fixes:
            session.add_log(f"Fixed: {fix}", "info")
        for warning in result.warnings:
            session.add_log(warning, "warning")

        summary = dict(result.stats)
        if not result.valid:
            summary["error"] = f"Missing critical files: {', '.join(result.stats['missing'])}"
            session.update_phase(phase, "failed", len(result.files))
            session.add_log(f"{phase}: {summary['error']}", "error")
        else:
            session.update_phase(phase, "completed", len(result.files))
            session.add_log(
                f"{phase}: {len(result.files)} files, {result.stats['lines']} lines",
                "success",
            )
        return summary

    async def run(self, session: GenerationSession, config: Dict[str, Any]) -> Dict[str, Any]:
        project_id = session.project_id
        all_files: Dict[str, str] = {}
        phase_results: List[Dict[str, Any]] = []

        try:
            # ---- setup
            session.update_phase("setup", "in_progress")
            session.add_log(f"Starting generation for {config['name']}", "info")
            structure = await asyncio.to_thread(self.fs.create_project_structure, project_id, config["name"])
            base = Path(structure["path"])
            session.add_log(f"Created project folder {structure['slug']}", "success")
            session.update_phase("setup", "completed")

            # ---- content phases
            for phase in CONTENT_PHASES:
                self._check_cancelled(session)
                phase_results.append(await self._run_content_phase(session, phase, config, all_files))

            self._check_cancelled(session)

            # ---- finalizing
            session.update_phase("finalizing", "in_progress")
            if not all_files:
                raise GenerationError("No files were generated across all phases")

            saved = await asyncio.to_thread(self.fs.save_many, base, all_files)
            self._check_cancelled(session)
            session.add_log(f"Saved {len(saved)} files", "success")

            defaults = await asyncio.to_thread(self.fs.ensure_default_manifests, base, config["name"], all_files)
            for rel in defaults:
                session.add_log(f"Created default {rel}", "warning")
            saved.extend(defaults)
            self._check_cancelled(session)

            assignment = await asyncio.to_thread(self.ports.assign, project_id, config["name"])
            ports = {"frontend": assignment["frontend_port"], "backend": assignment["backend_port"]}
            session.add_log(f"Assigned ports: frontend {ports['frontend']}, backend {ports['backend']}", "info")
            saved.extend(await asyncio.to_thread(
                self.fs.write_env_files, base, project_id, config["name"], assignment
            ))

            final_stats = {
                **session.stats,
                "total_files": len(saved),
                "total_tokens": sum(r.get("input_tokens", 0) + r.get("output_tokens", 0) for r in phase_results),
                "phases": phase_results,
                "duration_ms": session.elapsed_ms,
            }
            await asyncio.to_thread(self.fs.save_metadata, project_id, {
                "id": project_id,
                "name": config["name"],
                "config": config,
                "files": sorted(saved),
                "stats": final_stats,
                "ports": ports,
            })
            self._check_cancelled(session)
            await self.store.update(project_id, {
                "status": ProjectStatus.TESTING,
                "slug": structure["slug"],
                "output_path": str(base),
                "generated_files": sorted(saved),
                "generation_stats": final_stats,
                "ports": ports,
            })

            test_results = await self._smoke_test(session, base, saved)
            self._check_cancelled(session)
            session.update_phase("finalizing", "completed")

            # ---- outcome
            outcome = classify_outcome(phase_results, bool(test_results.get("success")))
            failed_count = len([r for r in phase_results if r.get("error")])
            error = f"{failed_count} phase(s) had errors" if failed_count else None
            await self.store.update(project_id, {
                "status": ProjectStatus.FAILED if outcome == OUTCOME_FAILED else ProjectStatus.DEPLOYED,
                "test_results": test_results,
                "error": error,
            })

            session.status = outcome
            result = {
                "success": outcome != OUTCOME_FAILED,
                "outcome": outcome,
                "duration_ms": session.elapsed_ms,
                "output_path": str(base),
                "files_generated": len(saved),
                "stats": final_stats,
                "phase_results": phase_results,
                "test_results": test_results,
                "error": error,
            }
            session.add_log(
                f"Generation finished ({outcome}) in {result['duration_ms'] / 1000:.1f}s",
                "success" if outcome == OUTCOME_SUCCEEDED else "warning",
            )
            session.broadcast({"type": "complete", **result})
            self.sessions.schedule_removal(session, self.cleanup_delay)
            return result

        except GenerationCancelled:
            logger.info(f"Generation for {project_id} stopped after cancel")
            await self._settle(project_id, {"status": ProjectStatus.DRAFT, "error": CANCEL_MESSAGE})
            return {"success": False, "outcome": "cancelled", "error": CANCEL_MESSAGE}

        except Exception as e:
            logger.exception(f"Generation failed for {project_id}")
            session.status = OUTCOME_FAILED
            session.add_log(f"Generation failed: {e}", "error")
            session.broadcast({"type": "error", "error": str(e)})
            self.sessions.remove(session)
            await self._settle(project_id, {"status": ProjectStatus.FAILED, "error": str(e)})
            return {
                "success": False,
                "outcome": OUTCOME_FAILED,
                "error": str(e),
                "duration_ms": session.elapsed_ms,
                "phase_results": phase_results,
            }

    async def _settle(self, project_id: str, fields: Dict[str, Any]) -> None:
        """Writes the final status of a stopped run, or cleans up after a deleted project."""
        try:
            await self.store.update(project_id, fields)
        except ProjectNotFound:
            logger.warning(f"Project {project_id} was deleted during generation, discarding its output")
            await asyncio.to_thread(self.ports.release, project_id)
            await asyncio.to_thread(self.fs.delete_project_directory, project_id)

    async def _smoke_test(self, session: GenerationSession, base: Path, saved: List[str]) -> Dict[str, Any]:
        entry = find_server_entry(saved)
        if entry is None:
            session.add_log("No server entry point found, skipping smoke test", "warning")
            return {"success": False, "skipped": True, "tests": [], "error": "No server entry point"}

        session.add_log(f"Smoke testing {entry}...", "thinking")
        try:
            results = await self.smoke_tester.run(base, entry)
        except Exception as e:
            logger.exception("Smoke test crashed")
            results = {"success": False, "tests": [], "error": str(e)}

        if results.get("success"):
            session.add_log("Smoke test passed", "success")
        else:
            session.add_log(f"Smoke test failed: {results.get('error')}", "warning")
        return results
