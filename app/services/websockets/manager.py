# app/services/websockets/manager.py
from collections import defaultdict
from typing import Any, Dict, List
from fastapi import WebSocket
import json
import logging

logger = logging.getLogger(__name__)


class ConnectionManager:
    """
    Tenant-scoped push channel. A message published for one company only
    reaches that company's sockets.
    """

    def __init__(self):
        self.active_connections: Dict[str, List[WebSocket]] = defaultdict(list)

    async def connect(self, company_id: str, websocket: WebSocket):
        await websocket.accept()
        self.active_connections[company_id].append(websocket)
        logger.info(f"WebSocket connected for {company_id}. Connections: {self.connection_count(company_id)}")

    def disconnect(self, company_id: str, websocket: WebSocket):
        connections = self.active_connections.get(company_id, [])
        if websocket in connections:
            connections.remove(websocket)
        if not connections:
            self.active_connections.pop(company_id, None)
        logger.info(f"WebSocket disconnected for {company_id}. Connections: {self.connection_count(company_id)}")

    def connection_count(self, company_id: str) -> int:
        return len(self.active_connections.get(company_id, []))

    async def publish(self, company_id: str, message: Dict[str, Any]):
        """Send a message to every socket of one tenant"""
        json_message = json.dumps(message, default=str)
        disconnected = []

        for connection in list(self.active_connections.get(company_id, [])):
            try:
                await connection.send_text(json_message)
            except Exception as e:
                logger.error(f"Error sending to WebSocket for {company_id}: {e}")
                disconnected.append(connection)

        # Clean up disconnected clients
        for connection in disconnected:
            self.disconnect(company_id, connection)
