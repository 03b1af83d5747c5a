# app/routes/websockets.py
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
import logging

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws/{company_id}")
async def websocket_endpoint(websocket: WebSocket, company_id: str):
    """Progress channel for one tenant's import jobs."""
    manager = websocket.app.state.registry.connections
    await manager.connect(company_id, websocket)
    try:
        while True:
            # Keep connection alive by waiting for messages
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        manager.disconnect(company_id, websocket)
        logger.info(f"WebSocket client for {company_id} disconnected")
