# =========================================================
# FILE: appforge/schemas/generate.py
# =========================================================

from typing import List, Optional

from pydantic import BaseModel, Field, validator

from appforge.engines import ENGINE_PRESETS

AUTH_MODES = {"jwt", "session", "oauth", "none"}


class GenerationOverrides(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    industry: Optional[str] = None
    features: Optional[List[str]] = None
    integrations: Optional[List[str]] = None
    multi_tenant: Optional[bool] = None
    authentication: Optional[str] = None
    engine_preset: Optional[str] = None

    @validator("features", "integrations", pre=True)
    def _normalize_list(cls, value):
        if value is None:
            return None
        if isinstance(value, str):
            value = value.split(",")
        return [str(v).strip() for v in value if str(v).strip()]

    @validator("authentication")
    def _validate_auth(cls, v: Optional[str]):
        if v is None:
            return v
        if v.strip().lower() not in AUTH_MODES:
            raise ValueError(f"authentication must be one of {sorted(AUTH_MODES)}")
        return v.strip().upper() if v.strip().lower() == "jwt" else v.strip().lower()

    @validator("engine_preset")
    def _validate_preset(cls, v: Optional[str]):
        if v is None:
            return v
        if v.strip().lower() not in ENGINE_PRESETS:
            raise ValueError(f"engine_preset must be one of {sorted(ENGINE_PRESETS)}")
        return v.strip().lower()


class GenerateRequest(BaseModel):
    project_id: str = Field(..., min_length=1)
    prompt: Optional[str] = None
    config: Optional[GenerationOverrides] = None


class PhaseRegenerateRequest(BaseModel):
    config: Optional[GenerationOverrides] = None


class ComponentsRequest(BaseModel):
    components: List[str]

    @validator("components")
    def _require_components(cls, value: List[str]):
        cleaned = [c.strip() for c in value if c and c.strip()]
        if not cleaned:
            raise ValueError("At least one component is required")
        return cleaned


class GenerateAccepted(BaseModel):
    project_id: str
    status: str
    phases: List[dict]
