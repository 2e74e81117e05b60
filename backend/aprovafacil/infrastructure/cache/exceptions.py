"""
Cache Infrastructure Exceptions

Domain-specific exceptions for cache operations.
Write paths raise these; read paths downgrade failures to a cache miss.
"""

from typing import Optional, Any, Dict
from fastapi import HTTPException


class CacheException(Exception):
    """Base exception for cache-related errors.

    All failing cache mutations should raise this or its subclasses.
    The original backend error is kept as ``__cause__``.
    """

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class CacheConnectionException(CacheException):
    """Raised when the cache backend is unreachable or the connection is lost."""

    def __init__(
        self,
        message: str = "Cache backend connection failed",
        operation: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if original_error:
            details["original_error"] = str(original_error)
            details["original_error_type"] = type(original_error).__name__

        super().__init__(
            message=message, error_code="CACHE_CONNECTION_ERROR", details=details
        )
        if original_error:
            self.__cause__ = original_error


class CacheOperationException(CacheException):
    """Raised when a cache command fails on a reachable backend."""

    def __init__(
        self,
        operation: str,
        key: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        details: Dict[str, Any] = {"operation": operation}
        if key:
            details["key"] = key
        if original_error:
            details["original_error"] = str(original_error)
            details["original_error_type"] = type(original_error).__name__

        super().__init__(
            message=f"Cache operation '{operation}' failed",
            error_code="CACHE_OPERATION_ERROR",
            details=details,
        )
        if original_error:
            self.__cause__ = original_error


class CacheSerializationException(CacheException):
    """Raised when a value cannot be serialized for the cache backend."""

    def __init__(self, key: str, original_error: Optional[Exception] = None):
        details = {"key": key}
        if original_error:
            details["original_error"] = str(original_error)

        super().__init__(
            message=f"Value for cache key '{key}' is not serializable",
            error_code="CACHE_SERIALIZATION_ERROR",
            details=details,
        )
        if original_error:
            self.__cause__ = original_error


class CacheConfigurationException(CacheException):
    """Raised when cache configuration is invalid."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        config_value: Optional[Any] = None,
    ):
        details = {}
        if config_key:
            details["config_key"] = config_key
        if config_value is not None:
            details["config_value"] = str(config_value)

        super().__init__(
            message=message, error_code="CACHE_CONFIGURATION_ERROR", details=details
        )


# HTTP Exceptions for API layer
class CacheHTTPException(HTTPException):
    """HTTP exception wrapper for cache errors."""

    def __init__(self, cache_exception: CacheException, status_code: int = 503):
        self.cache_exception = cache_exception
        super().__init__(
            status_code=status_code,
            detail={
                "error": cache_exception.error_code,
                "message": cache_exception.message,
                "details": cache_exception.details,
            },
        )
