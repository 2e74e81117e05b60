"""
Redis Infrastructure Module

Connection lifecycle for the Redis cache backend: a single client,
connectivity tracking and background reconnection.
"""

from .connection import RedisConnectionManager

__all__ = ["RedisConnectionManager"]
