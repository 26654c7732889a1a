# =========================================================
# FILE: appforge/schemas/projects.py
# =========================================================

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, validator


class ProjectConfig(BaseModel):
    industry: Optional[str] = None
    features: List[str] = Field(default_factory=list)
    integrations: List[str] = Field(default_factory=list)
    multi_tenant: bool = False
    authentication: str = "JWT"


class ProjectCreate(BaseModel):
    name: str
    description: str = ""
    config: ProjectConfig = Field(default_factory=ProjectConfig)

    @validator("name")
    def _require_name(cls, value: str):
        if not value or not value.strip():
            raise ValueError("Project name cannot be empty")
        return value.strip()


class ProjectResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str
    user_id: Optional[str] = None
    name: str
    slug: Optional[str] = None
    description: str = ""
    status: str
    config: Dict[str, Any] = Field(default_factory=dict)
    output_path: Optional[str] = None
    generated_files: List[str] = Field(default_factory=list)
    generation_stats: Optional[Dict[str, Any]] = None
    test_results: Optional[Dict[str, Any]] = None
    ports: Optional[Dict[str, Any]] = None
    urls: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class ProjectFileItem(BaseModel):
    name: str
    path: str
    size: int
    modified_at: str


class ProjectFileWrite(BaseModel):
    path: str
    content: str

    @validator("path")
    def _require_path(cls, value: str):
        if not value or not value.strip():
            raise ValueError("File path is required")
        return value.strip()
