"""Data types exchanged with the object store adapter.

The adapter in build_cache.services.s3 translates client-library failures
into these types so the cache client never inspects botocore errors.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

REAUTHENTICATION_STATUS_CODES = frozenset({400, 401, 403})


def might_require_reauthentication(status_code: Optional[int]) -> bool:
    """Check whether a status code suggests expired or invalid credentials.

    Args:
        status_code: HTTP status reported by the store (None if unknown)

    Returns:
        True for 400, 401 and 403
    """
    return status_code in REAUTHENTICATION_STATUS_CODES


@dataclass(frozen=True)
class RemoteObject:
    """An object fetched from the bucket.

    Attributes:
        content: Full object body
        last_modified: Store-side modification time (timezone-aware)
    """

    content: bytes
    last_modified: datetime


class RemoteError(Exception):
    """A remote operation failed.

    Attributes:
        status_code: HTTP status code, None for transport failures
        operation: Remote operation name (e.g. "PutObject")
        not_found: The error text also says the object is missing ("404");
            the load is a miss once the failure has been handled
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        operation: str = "",
        not_found: bool = False,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.operation = operation
        self.not_found = not_found

    @property
    def reauthentication_likely(self) -> bool:
        return might_require_reauthentication(self.status_code)


class AuthFailure(RemoteError):
    """A remote failure with a 400, 401 or 403 status."""

    pass


def remote_error(
    message: str,
    status_code: Optional[int],
    operation: str = "",
    not_found: bool = False,
) -> RemoteError:
    """Build the RemoteError subclass matching a status code."""
    if might_require_reauthentication(status_code):
        return AuthFailure(message, status_code=status_code, operation=operation, not_found=not_found)
    return RemoteError(message, status_code=status_code, operation=operation, not_found=not_found)
