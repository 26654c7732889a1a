# =========================================================
# FILE: appforge/services/progress_service.py
# =========================================================
"""
Live state of in-flight generations.

A GenerationSession holds phase statuses, logs and stats for one project and
fans every change out to its subscribers. Subscribers are plain asyncio
queues, so any transport (SSE, WebSocket, a test) can drain them. A new
subscriber always gets `connected` + a `state` snapshot before deltas.
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional

from appforge.core.config import LOG_REPLAY_LIMIT
from appforge.schemas.progress import GenerationStats, LogEntry, LogType, PhaseStatus, SessionSnapshot, SessionStatus
from appforge.validators.phase_validator import PHASES

logger = logging.getLogger("appforge.generate")

TERMINAL_EVENTS = {"complete", "error", "cancelled"}

_LOG_LEVELS = {
    "info": logging.INFO,
    "thinking": logging.INFO,
    "success": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class GenerationConflict(Exception):
    pass


def _now_iso() -> str:
    return datetime.utcnow().isoformat()


def initial_phases() -> List[Dict[str, Any]]:
    return [
        {"id": pid, "label": label, "weight": weight, "status": "pending", "files_generated": 0}
        for pid, label, weight in PHASES
    ]


def compute_progress(phases: List[Dict[str, Any]]) -> float:
    total = 0.0
    for p in phases:
        if p["status"] == "completed":
            total += p["weight"]
        elif p["status"] == "in_progress":
            total += p["weight"] * 0.5
    return min(100.0, total)


class Subscription:
    def __init__(self, session: Optional["GenerationSession"] = None):
        self.queue: "asyncio.Queue[Optional[Dict[str, Any]]]" = asyncio.Queue()
        self._session = session
        self.closed = False

    def push(self, event: Dict[str, Any]) -> None:
        if not self.closed:
            self.queue.put_nowait(event)

    def end(self) -> None:
        if not self.closed:
            self.queue.put_nowait(None)

    def close(self) -> None:
        self.closed = True
        if self._session is not None:
            self._session.subscribers.discard(self)
            self._session = None

    async def __aiter__(self) -> AsyncIterator[Dict[str, Any]]:
        while True:
            event = await self.queue.get()
            if event is None:
                return
            yield event
            if event.get("type") in TERMINAL_EVENTS:
                return


class GenerationSession:
    def __init__(self, project_id: str, log_replay_limit: int = LOG_REPLAY_LIMIT):
        self.project_id = project_id
        self.started_at = _now_iso()
        self._started = time.monotonic()
        self.status: SessionStatus = "pending"
        self.phases = initial_phases()
        self.logs: List[Dict[str, str]] = []
        self.stats: Dict[str, int] = GenerationStats().dict()
        self.subscribers = set()
        self.cancelled = False
        self.task: Optional[asyncio.Task] = None
        self.log_replay_limit = log_replay_limit

    @property
    def progress(self) -> float:
        return compute_progress(self.phases)

    @property
    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self._started) * 1000)

    def phase(self, phase_id: str) -> Dict[str, Any]:
        return next(p for p in self.phases if p["id"] == phase_id)

    # ----------------------------
    # fan-out
    # ----------------------------
    def broadcast(self, event: Dict[str, Any]) -> None:
        for sub in list(self.subscribers):
            sub.push(event)

    def subscribe(self) -> Subscription:
        sub = Subscription(self)
        self.subscribers.add(sub)
        sub.push({"type": "connected", "project_id": self.project_id})
        sub.push({"type": "state", "state": self.snapshot()})
        return sub

    def close_subscribers(self) -> None:
        for sub in list(self.subscribers):
            sub.end()
        self.subscribers.clear()

    # ----------------------------
    # mutations
    # ----------------------------
    def update_phase(self, phase_id: str, status: PhaseStatus, files_generated: Optional[int] = None) -> None:
        phase = self.phase(phase_id)
        phase["status"] = status
        if files_generated is not None:
            phase["files_generated"] = files_generated
        self.broadcast({"type": "phase", "phase": dict(phase), "progress": self.progress})

    def add_log(self, message: str, type: LogType = "info") -> Dict[str, str]:
        entry = LogEntry(timestamp=_now_iso(), message=message, type=type).dict()
        self.logs.append(entry)
        logger.log(_LOG_LEVELS.get(type, logging.INFO), f"[{self.project_id}] {message}")
        self.broadcast({"type": "log", "log": entry})
        return entry

    def update_stats(self, **updates: int) -> None:
        for key, value in updates.items():
            if key not in self.stats:
                raise KeyError(f"Unknown stat: {key}")
            self.stats[key] = value
        self.broadcast({"type": "stats", "stats": dict(self.stats)})

    def snapshot(self) -> Dict[str, Any]:
        return SessionSnapshot(
            project_id=self.project_id,
            status=self.status,
            started_at=self.started_at,
            progress=self.progress,
            phases=self.phases,
            logs=self.logs[-self.log_replay_limit:],
            stats=self.stats,
        ).dict()


def idle_subscription(project_id: str, status: str) -> Subscription:
    """For clients that connect when nothing is running: one snapshot, then end of stream."""
    sub = Subscription()
    sub.push({"type": "connected", "project_id": project_id})
    sub.push({
        "type": "state",
        "state": SessionSnapshot(project_id=project_id, status=status, phases=initial_phases()).dict(),
    })
    sub.end()
    return sub


class SessionRegistry:
    """Project id -> live GenerationSession. One instance per orchestrator."""

    def __init__(self, log_replay_limit: int = LOG_REPLAY_LIMIT):
        self._sessions: Dict[str, GenerationSession] = {}
        self.log_replay_limit = log_replay_limit

    def get(self, project_id: str) -> Optional[GenerationSession]:
        return self._sessions.get(project_id)

    def create(self, project_id: str) -> GenerationSession:
        current = self._sessions.get(project_id)
        if current is not None and current.status in ("pending", "generating"):
            raise GenerationConflict(f"Generation already in progress for {project_id}")
        session = GenerationSession(project_id, self.log_replay_limit)
        if current is not None:
            current.close_subscribers()
        self._sessions[project_id] = session
        return session

    def remove(self, session: GenerationSession) -> None:
        # a newer session for the same project must survive a late removal
        if self._sessions.get(session.project_id) is session:
            del self._sessions[session.project_id]
        session.close_subscribers()

    def schedule_removal(self, session: GenerationSession, delay: float) -> None:
        if delay <= 0:
            self.remove(session)
            return
        asyncio.get_running_loop().call_later(delay, self.remove, session)

    def active_ids(self) -> List[str]:
        return [pid for pid, s in self._sessions.items() if s.status == "generating"]
