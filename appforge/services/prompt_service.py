# FILE: appforge/services/prompt_service.py

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable, Dict, List

from appforge.repair.manifests import REQUIRED_BACKEND_PACKAGES, REQUIRED_FRONTEND_PACKAGES
from appforge.validators.phase_validator import check_phase

PROMPTS_DIR = Path(__file__).resolve().parents[1] / "prompts"


def _read_text(path: Path) -> str:
    return path.read_text(encoding="utf-8")


@lru_cache(maxsize=None)
def _load_prompt_template(filename: str) -> str:
    path = PROMPTS_DIR / filename
    if not path.exists():
        raise FileNotFoundError(f"Prompt template not found: {path}")
    return _read_text(path)


def _render_template(template: str, values: Dict[str, str]) -> str:
    rendered = template
    for key, value in values.items():
        rendered = rendered.replace(f"{{{{{key}}}}}", value)
    return rendered


def _features(config: Dict[str, Any]) -> List[str]:
    return [str(f).strip() for f in (config.get("features") or []) if str(f).strip()]


def _feature_key(feature: str, sep: str = "") -> str:
    return sep.join(feature.lower().split())


def _base_values(config: Dict[str, Any]) -> Dict[str, str]:
    features = _features(config)
    integrations = [str(i) for i in (config.get("integrations") or [])]
    return {
        "NAME": (config.get("name") or "Untitled Project").strip(),
        "DESCRIPTION": (config.get("description") or "").strip(),
        "INDUSTRY": (config.get("industry") or "general").strip(),
        "FEATURES": ", ".join(features) or "None",
        "INTEGRATIONS": ", ".join(integrations) or "None",
        "MULTI_TENANT": "Yes - use organization_id on all models" if config.get("multi_tenant") else "No",
        "AUTHENTICATION": (config.get("authentication") or "JWT").strip(),
    }


@lru_cache(maxsize=1)
def build_system_prompt() -> str:
    return _load_prompt_template("system.txt")


def build_backend_prompt(config: Dict[str, Any]) -> str:
    values = _base_values(config)
    feature_files = []
    for f in _features(config):
        key = _feature_key(f)
        model = "".join(w[:1].upper() + w[1:] for w in f.split())
        feature_files.append(
            f"\nFeature: {f}\n"
            f"- backend/src/routes/{key}.js\n"
            f"- backend/src/controllers/{key}Controller.js\n"
            f"- backend/src/services/{key}Service.js\n"
            f"- backend/src/models/{model}.js"
        )
    values.update({
        "BACKEND_DEPENDENCIES": json.dumps(REQUIRED_BACKEND_PACKAGES, indent=2),
        "TENANT_FILES": "10. backend/src/middleware/tenantContext.js - multi-tenant isolation" if config.get("multi_tenant") else "",
        "FEATURE_FILES": "\n".join(feature_files),
    })
    return _render_template(_load_prompt_template("backend.txt"), values)


def build_frontend_prompt(config: Dict[str, Any]) -> str:
    values = _base_values(config)
    pages = [f"- frontend/app/{_feature_key(f, '-')}/page.tsx" for f in _features(config)]
    values.update({
        "FRONTEND_DEPENDENCIES": json.dumps(REQUIRED_FRONTEND_PACKAGES, indent=2),
        "FEATURE_PAGES": "\n".join(pages),
    })
    return _render_template(_load_prompt_template("frontend.txt"), values)


def build_database_prompt(config: Dict[str, Any]) -> str:
    values = _base_values(config)
    tenant = bool(config.get("multi_tenant"))
    values.update({
        "TENANT_SCHEMA": ", organization_id on tenant tables and row-level security policies" if tenant else "",
        "TENANT_COLUMN": "organization_id, " if tenant else "",
        "TENANT_TABLE": "- organizations (id, name, slug, plan, created_at, updated_at)" if tenant else "",
        "FEATURE_TABLES": "\n".join(
            f"- {_feature_key(f, '_')} (with appropriate columns)" for f in _features(config)
        ),
    })
    return _render_template(_load_prompt_template("database.txt"), values)


def build_infrastructure_prompt(config: Dict[str, Any]) -> str:
    return _render_template(_load_prompt_template("infrastructure.txt"), _base_values(config))


def build_documentation_prompt(config: Dict[str, Any]) -> str:
    return _render_template(_load_prompt_template("documentation.txt"), _base_values(config))


def build_components_prompt(components: List[str], project_name: str, description: str) -> str:
    return _render_template(
        _load_prompt_template("components.txt"),
        {
            "NAME": (project_name or "Untitled Project").strip(),
            "COMPONENTS": ", ".join(components),
            "DESCRIPTION": (description or "").strip(),
        },
    )


_PHASE_BUILDERS: Dict[str, Callable[[Dict[str, Any]], str]] = {
    "backend": build_backend_prompt,
    "frontend": build_frontend_prompt,
    "database": build_database_prompt,
    "infrastructure": build_infrastructure_prompt,
    "documentation": build_documentation_prompt,
}


def build_phase_prompt(phase: str, config: Dict[str, Any]) -> str:
    return _PHASE_BUILDERS[check_phase(phase)](config)
