# =========================================================
# FILE: appforge/validators/phase_validator.py
# =========================================================

import posixpath
import re
from typing import Dict, List, Tuple

# Phases in execution order; setup and finalizing carry no model output.
PHASES: List[Tuple[str, str, int]] = [
    ("setup", "Setting up project structure", 5),
    ("backend", "Generating backend API", 30),
    ("frontend", "Building frontend components", 25),
    ("database", "Creating database schema", 15),
    ("infrastructure", "Setting up infrastructure", 10),
    ("documentation", "Writing documentation", 10),
    ("finalizing", "Finalizing project", 5),
]

CONTENT_PHASES = ["backend", "frontend", "database", "infrastructure", "documentation"]

CRITICAL_FILES: Dict[str, List[str]] = {
    "backend": [
        "backend/src/server.js",
        "backend/package.json",
        "backend/src/config/index.js",
        "backend/src/routes/index.js",
        "backend/src/middleware/auth.js",
        "backend/src/middleware/errorHandler.js",
    ],
    "frontend": [
        "frontend/app/layout.tsx",
        "frontend/package.json",
        "frontend/app/page.tsx",
        "frontend/tailwind.config.js",
    ],
    "database": [
        "database/schema.sql",
    ],
    "infrastructure": [],
    "documentation": [],
}

# stats counter each content phase feeds
PHASE_STAT_KEYS = {
    "backend": "backend_files",
    "frontend": "frontend_files",
    "database": "database_files",
    "infrastructure": "infra_files",
    "documentation": "doc_files",
}

SOURCE_EXTENSIONS = (".js", ".jsx", ".ts", ".tsx", ".mjs", ".cjs")
RESOLVE_SUFFIXES = ("", ".js", ".jsx", ".ts", ".tsx", ".mjs", ".cjs", ".json")
INDEX_FILES = ("index.js", "index.jsx", "index.ts", "index.tsx")

_RELATIVE_IMPORT_RE = re.compile(
    r"""(?:require\(\s*|\bfrom\s+|^\s*import\s+)['"](?P<target>\.{1,2}/[^'"]*)['"]""",
    re.M,
)


class InvalidPhaseError(ValueError):
    pass


def check_phase(phase: str) -> str:
    if phase not in CONTENT_PHASES:
        raise InvalidPhaseError(f"Invalid phase: {phase}. Valid phases: {', '.join(CONTENT_PHASES)}")
    return phase


def validate_phase_files(phase: str, files: Dict[str, str]) -> Dict[str, object]:
    required = CRITICAL_FILES.get(phase, [])
    missing = [p for p in required if p not in files]
    return {"valid": not missing, "missing": missing}


def _target_exists(target: str, files: Dict[str, str]) -> bool:
    if any(target + suffix in files for suffix in RESOLVE_SUFFIXES):
        return True
    return any(posixpath.join(target, index) in files for index in INDEX_FILES)


def find_dangling_imports(files: Dict[str, str]) -> List[str]:
    """Relative imports whose target is not in the file set. Warnings only."""
    warnings: List[str] = []
    for path, content in files.items():
        if not path.endswith(SOURCE_EXTENSIONS):
            continue
        base = posixpath.dirname(path)
        for m in _RELATIVE_IMPORT_RE.finditer(content or ""):
            spec = m.group("target")
            # stylesheets and assets are not resolved here
            if spec.endswith((".css", ".scss", ".svg", ".png")):
                continue
            target = posixpath.normpath(posixpath.join(base, spec))
            if not _target_exists(target, files):
                warnings.append(f"Missing import in {path}: {spec}")
    return warnings
