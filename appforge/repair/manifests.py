# FILE: appforge/repair/manifests.py
import json
from typing import Any, Dict

REQUIRED_BACKEND_PACKAGES: Dict[str, Dict[str, str]] = {
    "dependencies": {
        "bcryptjs": "^2.4.3",
        "cors": "^2.8.5",
        "dotenv": "^16.3.1",
        "express": "^4.18.2",
        "express-rate-limit": "^7.1.5",
        "express-validator": "^7.0.1",
        "helmet": "^7.1.0",
        "jsonwebtoken": "^9.0.2",
        "pg": "^8.11.3",
        "sequelize": "^6.35.2",
        "uuid": "^9.0.1",
        "winston": "^3.11.0",
    },
    "devDependencies": {
        "jest": "^29.7.0",
        "supertest": "^6.3.3",
    },
}

REQUIRED_FRONTEND_PACKAGES: Dict[str, Dict[str, str]] = {
    "dependencies": {
        "next": "14.0.4",
        "react": "^18.2.0",
        "react-dom": "^18.2.0",
        "axios": "^1.6.2",
        "tailwindcss": "^3.4.0",
        "autoprefixer": "^10.4.16",
        "postcss": "^8.4.32",
    },
    "devDependencies": {
        "@types/node": "^20.10.5",
        "@types/react": "^18.2.45",
        "@types/react-dom": "^18.2.18",
        "typescript": "^5.3.3",
        "eslint": "^8.56.0",
        "eslint-config-next": "14.0.4",
    },
}

BACKEND_SCRIPTS = {
    "start": "node src/server.js",
    "dev": "node --watch src/server.js",
    "test": "jest",
}

FRONTEND_SCRIPTS = {
    "dev": "next dev",
    "build": "next build",
    "start": "next start",
    "lint": "next lint",
}

# known-wrong package -> replacement
DEPRECATED_PACKAGES = {
    "bcrypt": "bcryptjs",
}


def slugify(name: str, max_length: int = 50) -> str:
    out = []
    for ch in (name or "").lower():
        out.append(ch if ch.isascii() and ch.isalnum() else "-")
    slug = "-".join(part for part in "".join(out).split("-") if part)
    return slug[:max_length].strip("-") or "project"


def dump_manifest(data: Dict[str, Any]) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False) + "\n"


def default_backend_manifest(project_name: str) -> Dict[str, Any]:
    return {
        "name": f"{slugify(project_name)}-backend",
        "version": "1.0.0",
        "description": f"Backend API for {project_name}",
        "main": "src/server.js",
        "scripts": dict(BACKEND_SCRIPTS),
        "dependencies": dict(REQUIRED_BACKEND_PACKAGES["dependencies"]),
        "devDependencies": dict(REQUIRED_BACKEND_PACKAGES["devDependencies"]),
        "engines": {"node": ">=18.0.0"},
    }


def default_frontend_manifest(project_name: str) -> Dict[str, Any]:
    return {
        "name": f"{slugify(project_name)}-frontend",
        "version": "1.0.0",
        "private": True,
        "scripts": dict(FRONTEND_SCRIPTS),
        "dependencies": dict(REQUIRED_FRONTEND_PACKAGES["dependencies"]),
        "devDependencies": dict(REQUIRED_FRONTEND_PACKAGES["devDependencies"]),
    }
