"""
Per-user push notifications over WebSocket.

``ConnectionManager`` lives in each API process and knows only its own
sockets. Jobs usually run in a Celery worker, so they publish through
``NotificationPublisher`` onto a Redis channel; every API process runs
``forward_notifications`` to relay those messages to its local sockets.

Delivery is at most once: a user with no open connection simply misses
the message and recovers state by polling the job status.
"""

import json
import logging
from typing import Any, Optional, Protocol

from fastapi import WebSocket
from redis.exceptions import RedisError
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, wait_exponential
from tenacity.wait import wait_base

from app.core.redis_client import RedisClient

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    """Anything that can push a payload to one user's sessions."""

    async def notify_user(self, user_id: str, payload: dict) -> Any: ...


class ConnectionManager:
    """Tracks open sockets and which user each one is bound to."""

    def __init__(self):
        self._sockets: dict[str, WebSocket] = {}
        self._user_of: dict[str, str] = {}
        self._connections_of: dict[str, set[str]] = {}

    def connect(self, connection_id: str, websocket: WebSocket) -> None:
        """Register an accepted socket; it receives nothing until authenticated."""
        self._sockets[connection_id] = websocket
        logger.debug(f"Client connected: {connection_id}")

    def authenticate(self, connection_id: str, user_id: str) -> None:
        """Bind ``connection_id`` to ``user_id`` for the life of the connection."""
        if connection_id not in self._sockets:
            raise KeyError(connection_id)
        previous = self._user_of.get(connection_id)
        if previous and previous != user_id:
            self._unbind(connection_id, previous)
        self._user_of[connection_id] = user_id
        self._connections_of.setdefault(user_id, set()).add(connection_id)
        logger.info(f"User authenticated: {user_id} on {connection_id}")

    def disconnect(self, connection_id: str) -> None:
        self._sockets.pop(connection_id, None)
        user_id = self._user_of.pop(connection_id, None)
        if user_id:
            self._unbind(connection_id, user_id)
        logger.debug(f"Client disconnected: {connection_id}")

    def _unbind(self, connection_id: str, user_id: str) -> None:
        connections = self._connections_of.get(user_id)
        if connections is None:
            return
        connections.discard(connection_id)
        if not connections:
            del self._connections_of[user_id]

    def is_authenticated(self, connection_id: str) -> bool:
        return connection_id in self._user_of

    def connected_users(self) -> list[str]:
        return list(self._connections_of)

    def connection_count(self, user_id: str) -> int:
        return len(self._connections_of.get(user_id, ()))

    async def notify_user(self, user_id: str, payload: dict) -> int:
        """
        Send ``payload`` to every connection bound to ``user_id``.

        Returns how many connections received it. Sockets that fail to send
        are dropped.
        """
        delivered = 0
        for connection_id in list(self._connections_of.get(user_id, ())):
            websocket = self._sockets.get(connection_id)
            if websocket is None:
                continue
            try:
                await websocket.send_json(payload)
                delivered += 1
            except Exception as e:
                logger.warning(f"Dropping connection {connection_id}: {e}")
                self.disconnect(connection_id)
        if not delivered:
            logger.debug(f"No live connection for user {user_id}; message dropped")
        return delivered


class NotificationPublisher:
    """Publishes user notifications on the shared Redis channel."""

    def __init__(self, redis: RedisClient, channel: str):
        self.redis = redis
        self.channel = channel

    async def notify_user(self, user_id: str, payload: dict) -> int:
        return await self.redis.publish(
            self.channel,
            {"userId": user_id, "payload": payload},
        )


async def _relay(redis: RedisClient, manager: ConnectionManager, channel: str) -> None:
    pubsub = redis.pubsub()
    try:
        await pubsub.subscribe(channel)
        logger.info(f"Listening for notifications on {channel}")
        async for message in pubsub.listen():
            if message.get("type") != "message":
                continue
            try:
                data: dict[str, Any] = json.loads(message["data"])
                await manager.notify_user(data["userId"], data["payload"])
            except (ValueError, KeyError, TypeError) as e:
                logger.warning(f"Ignoring malformed notification: {e}")
        await pubsub.unsubscribe(channel)
    finally:
        await pubsub.aclose()


def _log_reconnect(retry_state: RetryCallState) -> None:
    logger.warning(
        f"Notification subscription lost ({retry_state.outcome.exception()}), "
        f"resubscribing in {retry_state.next_action.sleep:.1f}s"
    )


async def forward_notifications(
    redis: RedisClient,
    manager: ConnectionManager,
    channel: str,
    wait: Optional[wait_base] = None,
) -> None:
    """
    Relay messages from ``channel`` to local sockets until cancelled.

    A dropped Redis connection is resubscribed with exponential backoff;
    the relay only returns when the subscription ends cleanly.
    """
    async for attempt in AsyncRetrying(
        retry=retry_if_exception_type((RedisError, OSError)),
        wait=wait or wait_exponential(multiplier=1, min=1, max=30),
        before_sleep=_log_reconnect,
        reraise=True,
    ):
        with attempt:
            await _relay(redis, manager, channel)


# Global connection manager for this process
_manager: Optional[ConnectionManager] = None


def get_connection_manager() -> ConnectionManager:
    global _manager
    if _manager is None:
        _manager = ConnectionManager()
    return _manager
