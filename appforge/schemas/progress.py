# =========================================================
# FILE: appforge/schemas/progress.py
# =========================================================

from typing import List, Literal, Optional

from pydantic import BaseModel, Field, validator

LogType = Literal["info", "success", "warning", "error", "thinking"]
PhaseStatus = Literal["pending", "in_progress", "completed", "failed"]
SessionStatus = Literal["pending", "generating", "succeeded", "partially_succeeded", "failed", "cancelled"]
StreamEventType = Literal["connected", "state", "phase", "log", "stats", "complete", "error", "cancelled"]


class LogEntry(BaseModel):
    timestamp: str = Field(..., min_length=1)
    message: str
    type: LogType = "info"

    @validator("message", pre=True)
    def _stringify(cls, value):
        return "" if value is None else str(value)


class PhaseState(BaseModel):
    id: str
    label: str
    weight: int
    status: PhaseStatus = "pending"
    files_generated: int = 0


class GenerationStats(BaseModel):
    backend_files: int = 0
    frontend_files: int = 0
    database_files: int = 0
    infra_files: int = 0
    doc_files: int = 0
    total_files: int = 0
    total_lines: int = 0


class SessionSnapshot(BaseModel):
    project_id: str
    status: str
    started_at: Optional[str] = None
    progress: float = 0
    phases: List[PhaseState] = Field(default_factory=list)
    logs: List[LogEntry] = Field(default_factory=list)
    stats: GenerationStats = Field(default_factory=GenerationStats)
