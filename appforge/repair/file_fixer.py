# FILE: appforge/repair/file_fixer.py
"""
Deterministic repair pass over a generated file map.

Order matters and is fixed:
  1. dependency manifests (required packages, deprecated package swap, in
     manifests and in source imports)
  2. missing standard scripts
  3. model-authored environment files removed
  4. dangling relative imports reported as warnings (never rewritten)

Running the pass on its own output reports no fixes.
"""

import json
import logging
import posixpath
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from appforge.repair.manifests import (
    BACKEND_SCRIPTS,
    DEPRECATED_PACKAGES,
    FRONTEND_SCRIPTS,
    REQUIRED_BACKEND_PACKAGES,
    REQUIRED_FRONTEND_PACKAGES,
    dump_manifest,
    slugify,
)
from appforge.validators.phase_validator import SOURCE_EXTENSIONS, find_dangling_imports

logger = logging.getLogger("appforge.repair")

BACKEND_MANIFEST = "backend/package.json"
FRONTEND_MANIFEST = "frontend/package.json"


@dataclass
class FixReport:
    files: Dict[str, str]
    applied_fixes: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


def _load_manifest(files: Dict[str, str], path: str, warnings: List[str]) -> Optional[Dict[str, Any]]:
    try:
        data = json.loads(files[path] or "{}")
    except ValueError as e:
        warnings.append(f"Could not parse {path}: {e}")
        return None
    if not isinstance(data, dict):
        warnings.append(f"{path} is not a JSON object")
        return None
    return data


def _section(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = data.get(key)
    if not isinstance(value, dict):
        value = {}
        data[key] = value
    return value


# ----------------------------
# Step 1: dependencies
# ----------------------------
def _import_patterns(old: str) -> List[re.Pattern]:
    name = re.escape(old)
    return [
        re.compile(r"(require\(\s*)(['\"])" + name + r"\2"),
        re.compile(r"(\bfrom\s+)(['\"])" + name + r"\2"),
        re.compile(r"(^\s*import\s+)(['\"])" + name + r"\2", re.M),
    ]


def _swap_source_imports(files: Dict[str, str], fixes: List[str]) -> None:
    for old, new in DEPRECATED_PACKAGES.items():
        patterns = _import_patterns(old)
        for path in sorted(files):
            if not path.endswith(SOURCE_EXTENSIONS):
                continue
            content = files[path]
            updated = content
            for pat in patterns:
                updated = pat.sub(lambda m: f"{m.group(1)}{m.group(2)}{new}{m.group(2)}", updated)
            if updated != content:
                files[path] = updated
                fixes.append(f"Replaced '{old}' import with '{new}' in {path}")


def _fix_dependencies(files: Dict[str, str], config: Dict[str, Any], fixes: List[str], warnings: List[str]) -> None:
    project_slug = slugify(config.get("name") or "app")
    required_by_manifest = {
        BACKEND_MANIFEST: REQUIRED_BACKEND_PACKAGES,
        FRONTEND_MANIFEST: REQUIRED_FRONTEND_PACKAGES,
    }

    for path in sorted(p for p in files if posixpath.basename(p) == "package.json"):
        data = _load_manifest(files, path, warnings)
        if data is None:
            continue
        changed = False

        for old, new in DEPRECATED_PACKAGES.items():
            for key in ("dependencies", "devDependencies"):
                deps = data.get(key)
                if isinstance(deps, dict) and old in deps:
                    del deps[old]
                    changed = True
                    fixes.append(f"Removed '{old}' from {key} in {path}")
                    if path not in required_by_manifest:
                        _section(data, "dependencies").setdefault(new, "*")

        required = required_by_manifest.get(path)
        if required:
            for key, packages in required.items():
                deps = _section(data, key)
                other = data.get("devDependencies" if key == "dependencies" else "dependencies") or {}
                for name, version in packages.items():
                    if name in deps or name in other:
                        continue
                    deps[name] = version
                    changed = True
                    fixes.append(f"Added missing {key} '{name}@{version}' to {path}")

            side = path.split("/", 1)[0]
            if not data.get("name"):
                data["name"] = f"{project_slug}-{side}"
                changed = True
                fixes.append(f"Added package name to {path}")
            if path == BACKEND_MANIFEST and not data.get("main"):
                data["main"] = "src/server.js"
                changed = True
                fixes.append(f"Added main entry to {path}")

        if changed:
            files[path] = dump_manifest(data)

    _swap_source_imports(files, fixes)


# ----------------------------
# Step 2: scripts
# ----------------------------
def _fix_scripts(files: Dict[str, str], fixes: List[str], warnings: List[str]) -> None:
    for path, scripts in ((BACKEND_MANIFEST, BACKEND_SCRIPTS), (FRONTEND_MANIFEST, FRONTEND_SCRIPTS)):
        if path not in files:
            continue
        # parse errors were already reported in step 1
        data = _load_manifest(files, path, [])
        if data is None:
            continue
        existing = _section(data, "scripts")
        added = []
        for name, command in scripts.items():
            if name not in existing:
                existing[name] = command
                added.append(name)
        if added:
            files[path] = dump_manifest(data)
            fixes.append(f"Added scripts ({', '.join(added)}) to {path}")


# ----------------------------
# Step 3: env files
# ----------------------------
def is_env_file(path: str) -> bool:
    name = posixpath.basename(path)
    return name == ".env" or name.startswith(".env.")


def _strip_env_files(files: Dict[str, str], fixes: List[str]) -> None:
    for path in sorted(p for p in files if is_env_file(p)):
        del files[path]
        fixes.append(f"Removed model-authored environment file {path}")


def validate_and_fix_files(files: Dict[str, str], config: Optional[Dict[str, Any]] = None) -> FixReport:
    fixed = dict(files or {})
    fixes: List[str] = []
    warnings: List[str] = []

    _fix_dependencies(fixed, config or {}, fixes, warnings)
    _fix_scripts(fixed, fixes, warnings)
    _strip_env_files(fixed, fixes)
    warnings.extend(find_dangling_imports(fixed))

    if fixes:
        logger.info(f"Applied {len(fixes)} fixes")
    return FixReport(files=fixed, applied_fixes=fixes, warnings=warnings)
