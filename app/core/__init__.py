"""
Core utilities and clients.
"""

from app.core.redis_client import RedisClient, get_redis
from app.core.notifications import (
    ConnectionManager,
    NotificationPublisher,
    get_connection_manager,
)

__all__ = [
    "RedisClient",
    "get_redis",
    "ConnectionManager",
    "NotificationPublisher",
    "get_connection_manager",
]
