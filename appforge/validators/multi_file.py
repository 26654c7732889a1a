# =========================================================
# FILE: appforge/validators/multi_file.py
# =========================================================
"""
Multi-file response format.

    ===FILE: backend/src/server.js===
    ...content...
    ===END FILE===

Parsing is lenient: blocks without an end marker, or whose path is unsafe or
outside the known project roots, are skipped.
"""

import logging
import posixpath
import re
from typing import Dict, Optional

logger = logging.getLogger("appforge.parser")

FILE_START = "===FILE: {path}==="
END_MARKER = "===END FILE==="

_HEADER_RE = re.compile(r"^===FILE:[ \t]*(?P<path>[^\s=]+)[ \t]*===[ \t]*(?P<eol>\r?\n)", re.M)

ALLOWED_ROOT_DIRS = (
    "backend",
    "frontend",
    "database",
    "infrastructure",
    "docs",
    "tests",
    ".github",
)

ALLOWED_ROOT_FILES = (
    "README.md",
    "docker-compose.yml",
    "docker-compose.yaml",
    ".gitignore",
    ".dockerignore",
    "Makefile",
    "LICENSE",
)


def normalize_file_path(raw: str) -> Optional[str]:
    """Returns the project-relative POSIX path, or None when the path is not acceptable."""
    p = (raw or "").strip().strip("`'\"")
    if p.startswith("./"):
        p = p[2:]
    if not p or p.startswith("/") or "\\" in p or ":" in p:
        return None
    # the header grammar has no room for whitespace or "=" in a path
    if "=" in p or any(ch.isspace() for ch in p):
        return None

    parts = p.split("/")
    if any(part in ("", ".", "..") for part in parts):
        return None

    if len(parts) == 1:
        return p if p in ALLOWED_ROOT_FILES else None
    if parts[0] not in ALLOWED_ROOT_DIRS:
        return None
    return posixpath.normpath(p)


def parse_multi_file_response(text: str) -> Dict[str, str]:
    files: Dict[str, str] = {}
    if not text:
        return files

    headers = list(_HEADER_RE.finditer(text))
    for i, m in enumerate(headers):
        start = m.end()
        end = text.find(END_MARKER, start)
        if end == -1:
            continue
        next_header = headers[i + 1].start() if i + 1 < len(headers) else len(text)
        if end > next_header:
            # header without its own end marker
            continue

        path = normalize_file_path(m.group("path"))
        if path is None:
            logger.debug(f"Skipping file block with rejected path: {m.group('path')!r}")
            continue

        content = text[start:end]
        # the newline in front of the end marker belongs to the format
        if content.endswith("\n"):
            content = content[:-1]
            if m.group("eol") == "\r\n" and content.endswith("\r"):
                content = content[:-1]
        files[path] = content

    return files


def serialize_file_map(files: Dict[str, str]) -> str:
    blocks = []
    for path, content in files.items():
        blocks.append(f"{FILE_START.format(path=path)}\n{content}\n{END_MARKER}\n")
    return "\n".join(blocks)


def count_lines(files: Dict[str, str]) -> int:
    return sum(len(content.split("\n")) for content in files.values())
