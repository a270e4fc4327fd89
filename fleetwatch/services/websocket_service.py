"""
FastAPI WebSocket Service
Manages display connections and pushes fleet snapshots and deltas
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from fastapi import WebSocket

logger = logging.getLogger(__name__)


def _drain(queue: asyncio.Queue):
    while True:
        try:
            queue.get_nowait()
        except asyncio.QueueEmpty:
            return


class WebSocketManager:
    """Manage WebSocket connections and broadcasts.

    publish() never awaits: every client has a bounded queue drained by its own
    sender task. A snapshot supersedes whatever is still pending for a client, and
    a client whose queue overflows is resynchronised with a fresh snapshot.
    """

    def __init__(self, snapshot_provider: Optional[Callable[[], dict]] = None, queue_size: int = 32):
        self.snapshot_provider = snapshot_provider
        self.queue_size = queue_size
        self.active_connections: Dict[str, WebSocket] = {}
        self.queues: Dict[str, asyncio.Queue] = {}
        self.senders: Dict[str, asyncio.Task] = {}
        self.dropped = 0

    def _snapshot_message(self) -> Optional[dict]:
        if self.snapshot_provider is None:
            return None
        return {"type": "snapshot", "data": self.snapshot_provider()}

    async def connect(self, websocket: WebSocket, client_id: str):
        """Accept and register a new WebSocket connection"""
        await websocket.accept()
        self.active_connections[client_id] = websocket
        queue = self.queues[client_id] = asyncio.Queue(maxsize=self.queue_size)
        logger.info(f"✅ Client connected: {client_id}")

        await websocket.send_json({
            "type": "connection",
            "message": "Connected to fleet feed",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })
        snapshot = self._snapshot_message()
        if snapshot is not None:
            queue.put_nowait(snapshot)
        self.senders[client_id] = asyncio.create_task(self._sender(client_id))

    async def _sender(self, client_id: str):
        queue = self.queues[client_id]
        websocket = self.active_connections[client_id]
        try:
            while True:
                message = await queue.get()
                await websocket.send_json(message)
        except Exception as e:
            logger.error(f"Error sending to {client_id}: {e}")
            self._forget(client_id)

    def _forget(self, client_id: str):
        self.active_connections.pop(client_id, None)
        self.queues.pop(client_id, None)
        self.senders.pop(client_id, None)

    async def disconnect(self, client_id: str):
        """Unregister a disconnected client"""
        task = self.senders.get(client_id)
        self._forget(client_id)
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info(f"❌ Client disconnected: {client_id}")

    async def disconnect_all(self):
        """Close all connections"""
        for client_id, websocket in list(self.active_connections.items()):
            try:
                await websocket.close()
            except Exception as e:
                logger.error(f"Error closing connection: {e}")
            await self.disconnect(client_id)

    def publish(self, message: dict):
        """Queue a message for every client without waiting on any of them"""
        for client_id, queue in list(self.queues.items()):
            if message.get("type") == "snapshot":
                _drain(queue)
            try:
                queue.put_nowait(message)
            except asyncio.QueueFull:
                self.dropped += 1
                logger.warning(f"Client {client_id} is falling behind, resyncing with a snapshot")
                _drain(queue)
                queue.put_nowait(self._snapshot_message() or message)

    async def send_to_client(self, client_id: str, data: dict):
        """Send data to specific client"""
        websocket = self.active_connections.get(client_id)
        if websocket is None:
            return
        try:
            await websocket.send_json(data)
        except Exception as e:
            logger.error(f"Error sending to client: {e}")
            await self.disconnect(client_id)

    def get_connection_count(self) -> int:
        """Get number of active connections"""
        return len(self.active_connections)
