"""
Custom exceptions for the storefront service.
"""
from typing import Optional


class StorefrontException(Exception):
    """Base exception for storefront operations"""
    pass


class ValidationError(StorefrontException):
    """Raised when client-side validation fails"""
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class StorageUnavailableError(StorefrontException):
    """Raised when the key-value store cannot be reached"""
    pass


class RedisConnectionError(StorageUnavailableError):
    """Raised when Redis connection fails"""
    pass


class UpstreamError(StorefrontException):
    """Raised when the upstream API answers with a non-2xx status"""
    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(message)


class UpstreamTransportError(StorefrontException):
    """Raised when the upstream API cannot be reached or returns unreadable data"""
    def __init__(self, message: str, cause: Optional[Exception] = None):
        self.message = message
        self.cause = cause
        super().__init__(message)


class ResponseShapeError(StorefrontException):
    """Raised when an upstream response does not have the expected shape"""
    def __init__(self, endpoint: str, detail: str):
        self.endpoint = endpoint
        self.detail = detail
        super().__init__(f"Unexpected response from {endpoint}: {detail}")
