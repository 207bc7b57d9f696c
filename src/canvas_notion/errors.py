"""Exceptions raised across the sync service."""

from __future__ import annotations


class SyncServiceError(Exception):
    """Base error that maps onto a ``{success: false, error}`` response."""

    status_code = 500


class ValidationError(SyncServiceError):
    """Raised when required request fields are missing or malformed."""

    status_code = 400


class AuthenticationError(SyncServiceError):
    """Raised when a bearer token is missing or cannot be verified."""

    status_code = 401


class NotConnectedError(SyncServiceError):
    """Raised when the user has no stored Notion access token."""

    status_code = 403

    def __init__(self, message: str = "Notion integration not connected") -> None:
        super().__init__(message)


class NoPageAccessError(SyncServiceError):
    """Raised when the parent page cannot be read with the stored token."""

    status_code = 403

    def __init__(self, page_id: str) -> None:
        self.page_id = page_id
        super().__init__(
            f"No access to parent page ({page_id}). "
            "Share it with your integration via Notion's page connections."
        )


class NotFoundError(SyncServiceError):
    status_code = 404


class UserNotFoundError(NotFoundError):
    def __init__(self, email: str) -> None:
        self.email = email
        super().__init__("User not found")


class SyncInProgressError(SyncServiceError):
    """Raised when a run for the same user and page has not finished yet."""

    status_code = 409

    def __init__(self, page_id: str) -> None:
        self.page_id = page_id
        super().__init__(f"A sync for page {page_id} is already in progress")


class SyncDispatchError(SyncServiceError):
    """Raised when a background run could not be scheduled."""

    status_code = 500


class NotionAPIError(RuntimeError):
    """Raised when the Notion API returns a non-retryable or exhausted error."""

    def __init__(
        self,
        status_code: int,
        request: str,
        detail: str,
        *,
        code: str | None = None,
        request_id: str | None = None,
    ) -> None:
        self.status_code = status_code
        self.request = request
        self.detail = detail
        self.code = code
        self.request_id = request_id
        if request_id:
            message = (
                f"Notion API error {status_code} on {request} "
                f"(request_id={request_id}): {detail}"
            )
        else:
            message = f"Notion API error {status_code} on {request}: {detail}"
        super().__init__(message)


class StoreError(RuntimeError):
    """Raised when the Realtime Database REST API rejects a request."""
