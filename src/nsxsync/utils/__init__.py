"""Utility functions and exceptions."""

from .exceptions import (
    AllocationExhaustedError,
    DependencyNotReadyError,
    IPBlockExhaustedError,
    NSXAPIError,
    NSXAuthenticationError,
    NSXRateLimitError,
    NSXSyncError,
    ParentConfigNotFoundError,
    ResourceConflictError,
    ResourceNotFoundError,
    SagaStateError,
    StoreTypeError,
    ValidationError,
)

__all__ = [
    "NSXSyncError",
    "ValidationError",
    "ParentConfigNotFoundError",
    "DependencyNotReadyError",
    "StoreTypeError",
    "AllocationExhaustedError",
    "SagaStateError",
    "NSXAPIError",
    "ResourceNotFoundError",
    "ResourceConflictError",
    "NSXRateLimitError",
    "NSXAuthenticationError",
    "IPBlockExhaustedError",
]
