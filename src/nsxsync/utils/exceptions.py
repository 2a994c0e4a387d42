"""Custom exceptions for the NSX resource synchronizer.

Exception Hierarchy:
-------------------
NSXSyncError (base)
├── ValidationError
│   ├── ParentConfigNotFoundError   # Upstream network has no resolved configuration
│   └── DependencyNotReadyError     # Referenced subnet missing or nested binding
├── StoreTypeError                  # Wrong resource kind handed to a store (also TypeError)
├── AllocationExhaustedError        # No free VLAN left on the candidate parents
├── SagaStateError                  # Illegal transition of a create saga
└── NSXAPIError (base for API errors)
    ├── ResourceNotFoundError       # HTTP 404 Not Found
    ├── ResourceConflictError       # HTTP 409 / 412
    ├── NSXRateLimitError           # HTTP 429 Too Many Requests
    ├── NSXAuthenticationError      # HTTP 401 / 403
    └── IPBlockExhaustedError       # Error code 520012 on a pool subnet create

Usage Guidelines:
----------------
1. Catch specific exceptions for specific handling:
   - IPBlockExhaustedError: Do not retry in place, the block is full
   - AllocationExhaustedError: Operator must free a VLAN or add a parent
   - DependencyNotReadyError: Requeue later, the dependency may appear

2. StoreTypeError is a programming error. Never catch it to continue.

3. Let httpx errors (NetworkError, TimeoutException) bubble up for retry logic

4. Use NSXSyncError as catch-all for synchronizer errors
"""

from typing import Any


class NSXSyncError(Exception):
    """Base exception for all synchronizer errors."""

    pass


class ValidationError(NSXSyncError):
    """Raised when a desired spec cannot be translated into backend resources."""

    def __init__(self, message: str, original_error: Exception | None = None) -> None:
        """
        Initialize ValidationError.

        Args:
            message: Error message.
            original_error: Optional original exception that caused this error.
        """
        super().__init__(message)
        self.original_error = original_error


class ParentConfigNotFoundError(ValidationError):
    """Raised when no parent configuration exists for a child subnet's parent."""

    def __init__(self, owner_uid: str, parent: str) -> None:
        super().__init__(
            f"no parent configuration found for ChildSubnet {owner_uid} with value {parent}"
        )
        self.owner_uid = owner_uid
        self.parent = parent


class DependencyNotReadyError(ValidationError):
    """Raised when a referenced subnet is missing or would create a nested binding."""

    def __init__(self, message: str, dependency: str | None = None) -> None:
        """
        Initialize DependencyNotReadyError.

        Args:
            message: Error message.
            dependency: Name of the resource the caller is waiting on.
        """
        super().__init__(message)
        self.dependency = dependency


class StoreTypeError(NSXSyncError, TypeError):
    """Raised when a store receives a resource of a kind it does not hold."""

    def __init__(self, store: str, expected: str, received: Any) -> None:
        super().__init__(
            f"{store} cannot apply {type(received).__name__}, expected {expected}"
        )
        self.store = store
        self.expected = expected


class AllocationExhaustedError(NSXSyncError):
    """
    Raised when every VLAN in [1, 4094] is already used on the candidate parents.

    This is reported rather than retried: it needs operator intervention
    (free a VLAN or attach another parent).
    """

    def __init__(self, resource: str, parents: list[str]) -> None:
        """
        Initialize AllocationExhaustedError.

        Args:
            resource: Identity of the resource that needed a VLAN.
            parents: Candidate parent segment or subnet paths.
        """
        super().__init__(
            f"no valid VLAN for connection binding maps of {resource} "
            f"on parents {', '.join(sorted(parents)) or '<none>'}"
        )
        self.resource = resource
        self.parents = list(parents)


class SagaStateError(NSXSyncError):
    """Raised on an illegal transition of a provisioning saga."""

    def __init__(self, saga: str, current: str, target: str) -> None:
        super().__init__(f"saga {saga} cannot move from {current} to {target}")
        self.saga = saga
        self.current = current
        self.target = target


class NSXAPIError(NSXSyncError):
    """Base exception for NSX API errors."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_code: int | None = None,
        related_errors: list[dict[str, Any]] | None = None,
    ) -> None:
        """
        Initialize NSXAPIError.

        Args:
            message: Error message.
            status_code: Optional HTTP status code.
            error_code: Optional NSX error code from the response body.
            related_errors: Related errors reported by NSX (each with
                ``error_code`` and ``error_message``).
        """
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
        self.related_errors = related_errors or []


class ResourceNotFoundError(NSXAPIError):
    """Raised when an NSX resource cannot be found."""

    def __init__(self, resource_type: str, identifier: str) -> None:
        """
        Initialize ResourceNotFoundError.

        Args:
            resource_type: Type of resource that wasn't found.
            identifier: Identifier or path used to look the resource up.
        """
        super().__init__(f"{resource_type} not found: {identifier}", status_code=404)
        self.resource_type = resource_type
        self.identifier = identifier


class ResourceConflictError(NSXAPIError):
    """Raised on a revision or existence conflict (409 / 412)."""

    def __init__(self, message: str, status_code: int = 409) -> None:
        super().__init__(message, status_code=status_code)


class NSXRateLimitError(NSXAPIError):
    """Raised when the NSX API rate limit is hit."""

    def __init__(self, retry_after: int) -> None:
        """
        Initialize NSXRateLimitError.

        Args:
            retry_after: Seconds to wait before retrying.
        """
        super().__init__(f"Rate limit exceeded, retry after {retry_after}s", status_code=429)
        self.retry_after = retry_after


class NSXAuthenticationError(NSXAPIError):
    """Raised when NSX rejects the credentials."""

    def __init__(self, message: str = "Authentication failed", status_code: int = 401) -> None:
        super().__init__(message, status_code=status_code)


class IPBlockExhaustedError(NSXAPIError):
    """
    Raised when an IP block has no spare capacity for a new pool subnet.

    Kept distinct from generic API errors so callers can choose not to
    retry in place. The offending block path is recorded in the exhausted
    block set before this is raised.
    """

    def __init__(self, block_path: str) -> None:
        """
        Initialize IPBlockExhaustedError.

        Args:
            block_path: Policy path of the exhausted IP block.
        """
        super().__init__(f"ip block {block_path} is exhausted")
        self.block_path = block_path
