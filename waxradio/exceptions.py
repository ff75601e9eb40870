"""
Custom exceptions for the WaxRadio client core, and the classification of
vendor errors into a closed set of kinds.
"""
import asyncio
from enum import Enum
from typing import Optional

import httpx
from postgrest.exceptions import APIError


class ErrorKind(str, Enum):
    """What the caller can do about a failure."""
    TRANSIENT = "transient"
    PERMISSION = "permission"
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    UNKNOWN = "unknown"


class WaxRadioException(Exception):
    """Base exception class for WaxRadio."""

    kind = ErrorKind.UNKNOWN

    def __init__(self, message: str, details: str = None, kind: Optional[ErrorKind] = None):
        self.message = message
        self.details = details
        if kind is not None:
            self.kind = kind
        super().__init__(self.message)


class StoreError(WaxRadioException):
    """Raised when a remote store operation fails."""
    pass


class TransientStoreError(StoreError):
    """Raised when the store is unreachable or temporarily unavailable."""
    kind = ErrorKind.TRANSIENT


class PermissionDeniedError(StoreError):
    """Raised when access rules reject the operation."""
    kind = ErrorKind.PERMISSION


class NotFoundError(StoreError):
    """Raised when a document does not exist."""
    kind = ErrorKind.NOT_FOUND


class AuthenticationError(WaxRadioException):
    """Raised when the identity provider rejects an operation."""
    pass


class ValidationError(WaxRadioException):
    """Raised when user input validation fails."""
    kind = ErrorKind.VALIDATION


class TrackNotFoundError(ValidationError):
    """Raised when a vote or load references a track that is not in the list."""
    kind = ErrorKind.NOT_FOUND


class PlaceholderTrackError(ValidationError):
    """Raised when a placeholder track is voted on or played."""
    pass


class VoteError(WaxRadioException):
    """Raised when a vote could not be persisted."""
    pass


class PlaybackError(WaxRadioException):
    """Raised by an audio output that cannot start playback."""
    pass


class FileUploadError(WaxRadioException):
    """Raised when file upload operations fail."""
    pass


class ConfigurationError(WaxRadioException):
    """Raised when configuration is invalid."""
    pass


_PERMISSION_CODES = {
    "permission-denied", "unauthenticated", "42501", "PGRST301", "PGRST302",
    "storage/unauthorized", "AccessDenied", "InvalidAccessKeyId", "SignatureDoesNotMatch",
}
_NOT_FOUND_CODES = {"not-found", "PGRST116", "NoSuchKey", "NoSuchBucket"}
_TRANSIENT_CODES = {
    "unavailable", "deadline-exceeded", "resource-exhausted", "aborted",
    "57014", "08000", "08003", "08006", "PGRST000", "PGRST001", "PGRST002",
    "SlowDown", "RequestTimeout", "ServiceUnavailable", "InternalError",
}
_VALIDATION_CODES = {"invalid-argument", "22P02", "23502", "23514", "PGRST204"}


def _status_kind(status: int) -> Optional[ErrorKind]:
    if status in (401, 403):
        return ErrorKind.PERMISSION
    if status == 404:
        return ErrorKind.NOT_FOUND
    if status in (408, 425, 429) or status >= 500:
        return ErrorKind.TRANSIENT
    if 400 <= status < 500:
        return ErrorKind.VALIDATION
    return None


def classify_error(exc: BaseException) -> ErrorKind:
    """
    Map an error raised by a vendor SDK onto an ErrorKind.

    Vendor errors carry their meaning in different places: httpx raises typed
    network errors, PostgREST puts a SQLSTATE or PGRST code on ``APIError``,
    the auth API and botocore expose an HTTP status or an error code string.
    """
    if isinstance(exc, WaxRadioException):
        return exc.kind
    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError)):
        return ErrorKind.TRANSIENT
    if isinstance(exc, (ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return ErrorKind.TRANSIENT
    if isinstance(exc, httpx.HTTPStatusError):
        return _status_kind(exc.response.status_code) or ErrorKind.UNKNOWN

    code = exc.code if isinstance(exc, APIError) else getattr(exc, "code", None)
    response = getattr(exc, "response", None)
    if code is None and isinstance(response, dict):
        # botocore ClientError
        code = response.get("Error", {}).get("Code")
    if code is not None:
        code = str(code)
        if code in _PERMISSION_CODES:
            return ErrorKind.PERMISSION
        if code in _NOT_FOUND_CODES:
            return ErrorKind.NOT_FOUND
        if code in _TRANSIENT_CODES:
            return ErrorKind.TRANSIENT
        if code in _VALIDATION_CODES:
            return ErrorKind.VALIDATION

    status = getattr(exc, "status", None)
    if isinstance(status, int):
        kind = _status_kind(status)
        if kind is not None:
            return kind

    if "offline" in str(exc).lower():
        return ErrorKind.TRANSIENT
    return ErrorKind.UNKNOWN


_STORE_ERRORS = {
    ErrorKind.TRANSIENT: TransientStoreError,
    ErrorKind.PERMISSION: PermissionDeniedError,
    ErrorKind.NOT_FOUND: NotFoundError,
}


def to_store_error(exc: BaseException, message: str) -> StoreError:
    """Wrap a vendor error in the StoreError subclass matching its kind."""
    kind = classify_error(exc)
    error_class = _STORE_ERRORS.get(kind, StoreError)
    return error_class(message, str(exc), kind=kind)


def user_message(kind: ErrorKind, fallback: Optional[str] = None) -> str:
    """User-facing message for a profile loading failure."""
    if kind is ErrorKind.TRANSIENT:
        return "Connection to database failed. Please check your internet connection and try again."
    if kind is ErrorKind.PERMISSION:
        return "Permission denied: Unable to access user profile."
    return fallback or "Failed to load user profile. Please try again."
