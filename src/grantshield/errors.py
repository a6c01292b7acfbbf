"""
Error taxonomy for the security pipeline.

Each error carries the HTTP status the API layer maps it to.
"""

from typing import Optional


class SecurityPipelineError(Exception):
    """Base class for pipeline errors."""

    status_code = 500
    public_message = "Internal server error"


class AuthorizationError(SecurityPipelineError):
    """Caller lacks the identity (401) or role (403) for a gated action."""

    def __init__(self, message: str = "Unauthorized", status_code: int = 401):
        super().__init__(message)
        self.status_code = status_code
        self.public_message = message


class ValidationError(SecurityPipelineError):
    """Missing or malformed input."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.public_message = message


class NotFoundError(SecurityPipelineError):
    """The requested record does not exist."""

    status_code = 404

    def __init__(self, message: str):
        super().__init__(message)
        self.public_message = message


class StorageError(SecurityPipelineError):
    """Persistence read/write failure.

    The message is logged; callers without admin rights only ever see
    `public_message`.
    """

    status_code = 500
    public_message = "Storage operation failed"

    def __init__(self, message: str, operation: Optional[str] = None):
        super().__init__(message)
        self.operation = operation


class RateLimitExceeded(SecurityPipelineError):
    """Deliberate reject by the rate limiter, not a failure."""

    status_code = 429
    public_message = "Too many requests"

    def __init__(self, identifier: str, retry_after: int):
        super().__init__(f"Rate limit exceeded for {identifier}")
        self.identifier = identifier
        self.retry_after = retry_after


class AccountLocked(SecurityPipelineError):
    """Authentication attempted against a locked account."""

    status_code = 423
    public_message = "Account locked"

    def __init__(self, user_id: str):
        super().__init__(f"Account {user_id} is locked")
        self.user_id = user_id
