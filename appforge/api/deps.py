# FILE: appforge/api/deps.py

from typing import Any, Dict, Optional

import jwt
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from appforge.core.config import JWT_ALGORITHM, JWT_SECRET

security = HTTPBearer(auto_error=False)


async def get_optional_user(
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[Dict[str, Any]]:
    """Anonymous access is allowed; a bearer token, when sent, must be valid."""
    if not credentials or not credentials.credentials:
        return None

    try:
        payload = jwt.decode(
            credentials.credentials.strip(),
            JWT_SECRET,
            algorithms=[JWT_ALGORITHM],
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

    user_id = payload.get("user_id") or payload.get("sub") or payload.get("id")
    if not user_id or not isinstance(user_id, str):
        raise HTTPException(status_code=401, detail="Invalid token payload")
    return {"id": user_id, "email": payload.get("email")}


def get_store(request: Request):
    return request.app.state.store


def get_file_system(request: Request):
    return request.app.state.file_system


def get_ports(request: Request):
    return request.app.state.ports


def get_orchestrator(request: Request):
    return request.app.state.orchestrator


def get_supervisor(request: Request):
    return request.app.state.supervisor


async def get_project_or_404(project_id: str, store=Depends(get_store)) -> Dict[str, Any]:
    project = await store.get(project_id)
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    return project
