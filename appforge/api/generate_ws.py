# /appforge/api/generate_ws.py
"""
WebSocket view of a generation's progress. Same events as the SSE stream.
"""
from typing import Any, Dict

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

router = APIRouter(tags=["generate"])


async def send_json(ws: WebSocket, data: Dict[str, Any]):
    """Send JSON data to WebSocket if connected."""
    if ws.client_state == WebSocketState.CONNECTED:
        await ws.send_json(data)


@router.websocket("/ws/generate/{project_id}")
async def generation_websocket(websocket: WebSocket, project_id: str):
    await websocket.accept()

    project = await websocket.app.state.store.get(project_id)
    if not project:
        await send_json(websocket, {"type": "error", "error": "Project not found"})
        await websocket.close(code=4404)
        return

    subscription = websocket.app.state.orchestrator.subscribe(project_id, project["status"])
    try:
        async for event in subscription:
            await send_json(websocket, event)
    except WebSocketDisconnect:
        pass
    finally:
        subscription.close()

    if websocket.client_state == WebSocketState.CONNECTED:
        await websocket.close()
