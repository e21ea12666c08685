"""
Redis (ElastiCache) Module for LiveKit
"""

from .functions import create_redis_resources, format_redis_address

__all__ = [
    "create_redis_resources",
    "format_redis_address",
]
