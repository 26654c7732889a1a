import json

import pytest

from appforge.repair.file_fixer import is_env_file, validate_and_fix_files
from appforge.repair.manifests import (
    BACKEND_SCRIPTS,
    FRONTEND_SCRIPTS,
    REQUIRED_BACKEND_PACKAGES,
    default_backend_manifest,
    slugify,
)
from appforge.validators.phase_validator import (
    InvalidPhaseError,
    check_phase,
    find_dangling_imports,
    validate_phase_files,
)

from .conftest import BACKEND_FILES, FRONTEND_FILES


def test_env_files_are_removed():
    report = validate_and_fix_files({
        "backend/.env": "SECRET=1",
        "frontend/.env.local": "X=1",
        "backend/.env.example": "X=",
        "backend/src/env.js": "module.exports = process.env;",
    })

    assert set(report.files) == {"backend/src/env.js"}
    assert len([f for f in report.applied_fixes if "environment file" in f]) == 3


@pytest.mark.parametrize("path,expected", [
    (".env", True),
    ("backend/.env", True),
    ("frontend/.env.production", True),
    ("backend/src/.envrc", False),
    ("backend/env.js", False),
])
def test_is_env_file(path, expected):
    assert is_env_file(path) is expected


def test_deprecated_package_is_swapped_in_manifest_and_imports():
    report = validate_and_fix_files(dict(BACKEND_FILES), {"name": "Shop"})

    manifest = json.loads(report.files["backend/package.json"])
    assert "bcrypt" not in manifest["dependencies"]
    assert "bcryptjs" in manifest["dependencies"]
    assert "require('bcryptjs')" in report.files["backend/src/services/authService.js"]
    assert any("Replaced 'bcrypt' import" in f for f in report.applied_fixes)


def test_es_module_imports_are_swapped():
    files = {
        "backend/package.json": json.dumps({"name": "x", "dependencies": {}}),
        "backend/src/a.ts": 'import bcrypt from "bcrypt";\nimport other from "bcrypt-extra";\n',
    }

    report = validate_and_fix_files(files)

    content = report.files["backend/src/a.ts"]
    assert 'from "bcryptjs"' in content
    assert 'from "bcrypt-extra"' in content


def test_missing_required_packages_and_scripts_are_added():
    files = {
        "backend/package.json": json.dumps({"dependencies": {"express": "^4.0.0"}, "scripts": {"start": "node index.js"}}),
        "frontend/package.json": "{}",
    }

    report = validate_and_fix_files(files, {"name": "My Shop"})

    backend = json.loads(report.files["backend/package.json"])
    frontend = json.loads(report.files["frontend/package.json"])
    assert backend["dependencies"]["express"] == "^4.0.0"
    for name in REQUIRED_BACKEND_PACKAGES["dependencies"]:
        assert name in backend["dependencies"]
    assert backend["name"] == "my-shop-backend"
    assert backend["main"] == "src/server.js"
    # existing scripts win
    assert backend["scripts"]["start"] == "node index.js"
    assert set(BACKEND_SCRIPTS) <= set(backend["scripts"])
    assert set(FRONTEND_SCRIPTS) <= set(frontend["scripts"])
    assert frontend["name"] == "my-shop-frontend"


def test_package_in_dev_dependencies_is_not_duplicated():
    files = {"backend/package.json": json.dumps({"dependencies": {"jest": "^28.0.0"}})}

    report = validate_and_fix_files(files)

    backend = json.loads(report.files["backend/package.json"])
    assert backend["dependencies"]["jest"] == "^28.0.0"
    assert "jest" not in backend["devDependencies"]
    assert "supertest" in backend["devDependencies"]


def test_fix_pass_is_idempotent():
    files = {**BACKEND_FILES, **FRONTEND_FILES}

    first = validate_and_fix_files(files, {"name": "Shop"})
    second = validate_and_fix_files(first.files, {"name": "Shop"})

    assert first.applied_fixes
    assert second.applied_fixes == []
    assert second.files == first.files


def test_unparseable_manifest_is_reported_not_fixed():
    files = {"backend/package.json": "{ nope"}

    report = validate_and_fix_files(files)

    assert report.files["backend/package.json"] == "{ nope"
    assert any("Could not parse backend/package.json" in w for w in report.warnings)


def test_dangling_imports_are_warnings_only():
    files = {
        "backend/src/server.js": "const routes = require('./routes');\nconst x = require('./missing');\n",
        "backend/src/routes/index.js": "module.exports = {};",
        "frontend/app/page.tsx": "import Button from '../components/Button';\nimport './page.css';\n",
        "frontend/components/Button.tsx": "export default () => null;",
    }

    report = validate_and_fix_files(files)

    assert report.warnings == ["Missing import in backend/src/server.js: ./missing"]
    assert report.files["backend/src/server.js"] == files["backend/src/server.js"]
    assert report.applied_fixes == []


def test_find_dangling_imports_resolves_extensions_and_index_files():
    files = {
        "backend/src/a.js": "const b = require('./b');\nconst c = require('./lib');\nconst d = require('../data.json');\n",
        "backend/src/b.ts": "",
        "backend/src/lib/index.js": "",
        "backend/data.json": "{}",
    }
    assert find_dangling_imports(files) == []


def test_validate_phase_files_reports_missing():
    result = validate_phase_files("frontend", {"frontend/app/page.tsx": ""})

    assert result["valid"] is False
    assert "frontend/app/layout.tsx" in result["missing"]
    assert "frontend/app/page.tsx" not in result["missing"]
    assert validate_phase_files("documentation", {}) == {"valid": True, "missing": []}


@pytest.mark.parametrize("phase", ["setup", "finalizing", "backendz", ""])
def test_check_phase_rejects_non_content_phases(phase):
    with pytest.raises(InvalidPhaseError):
        check_phase(phase)


def test_slugify():
    assert slugify("My Shop!! 2024") == "my-shop-2024"
    assert slugify("???") == "project"
    assert len(slugify("x" * 200)) <= 50


def test_default_backend_manifest_is_complete():
    manifest = default_backend_manifest("Shop")
    report = validate_and_fix_files({"backend/package.json": json.dumps(manifest)}, {"name": "Shop"})
    assert report.applied_fixes == []
