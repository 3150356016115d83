"""
Shared types for remote capability clients.

Defines the client error hierarchy used by every adapter (source video,
caption extraction, remote storage, AI captions, platform publishers) and
helpers that translate httpx failures into it.
"""

import logging
from dataclasses import dataclass

import httpx

logger = logging.getLogger(__name__)

# Substrings of low-level connection errors that mean the host is unreachable
UNREACHABLE_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo",
    "temporary failure in name resolution",
    "connection refused",
    "network is unreachable",
    "no route to host",
)


@dataclass
class ClientConfig:
    """
    Configuration for an HTTP-backed capability client.

    Attributes:
        base_url: API endpoint URL
        timeout: Request timeout in seconds
        api_key: Optional token for authenticated services
    """

    base_url: str
    timeout: float = 30.0
    api_key: str | None = None


class ClientError(Exception):
    """
    Base exception for remote capability failures.

    Attributes:
        message: Error description
        service: Remote service name (instagram, youtube, github, ...)
        original_error: Underlying exception if available
    """

    def __init__(
        self,
        message: str,
        service: str | None = None,
        original_error: Exception | None = None,
    ):
        self.message = message
        self.service = service
        self.original_error = original_error
        super().__init__(message)

    def __str__(self) -> str:
        parts = [self.message]
        if self.service:
            parts.append(f"service={self.service}")
        return " | ".join(parts)


class ClientTimeoutError(ClientError):
    """Raised when a request times out."""

    pass


class ClientConnectionError(ClientError):
    """
    Raised when the remote service cannot be reached.

    Attributes:
        unreachable: True for DNS failures, refused connections and
            unreachable networks; False for resets and other transient drops
    """

    def __init__(self, message: str, unreachable: bool = False, **kwargs):
        super().__init__(message, **kwargs)
        self.unreachable = unreachable


class ClientResponseError(ClientError):
    """
    Raised when a remote service returns an error response.

    Attributes:
        status_code: HTTP status code if available
        response_body: Response body if available
        platform_message: Error message extracted from the body, if any
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
        platform_message: str | None = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.status_code = status_code
        self.response_body = response_body
        self.platform_message = platform_message

    def __str__(self) -> str:
        base = super().__str__()
        if self.status_code is not None:
            base += f" | status={self.status_code}"
        return base


class StorageLimitError(ClientError):
    """Raised when an artifact exceeds the remote storage size cap."""

    def __init__(self, size_mb: float, limit_mb: float, **kwargs):
        super().__init__(
            f"File is too large for remote storage: {size_mb:.2f}MB exceeds {limit_mb:.0f}MB limit",
            **kwargs,
        )
        self.size_mb = size_mb
        self.limit_mb = limit_mb


class DownloadError(ClientError):
    """Raised when the source media cannot be fetched or is not a playable video."""

    pass


def is_unreachable(error: BaseException) -> bool:
    """Check whether a low-level error means the host cannot be reached."""
    text = str(error).lower()
    return any(marker in text for marker in UNREACHABLE_MARKERS)


def extract_platform_message(response: httpx.Response) -> str | None:
    """
    Pull the human-readable error message out of an error response body.

    Understands Graph-API style ``{"error": {"message": ...}}`` and flat
    ``{"message": ...}`` bodies.
    """
    try:
        data = response.json()
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None
    error = data.get("error")
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    if isinstance(error, str):
        return error
    if data.get("message"):
        return str(data["message"])
    return None


def raise_for_response(response: httpx.Response, service: str, action: str) -> None:
    """
    Raise ClientResponseError for non-2xx responses.

    Args:
        response: httpx response to check
        service: Remote service name
        action: What was being attempted, for the error message

    Raises:
        ClientResponseError: If the response status is not 2xx
    """
    if response.is_success:
        return

    platform_message = extract_platform_message(response)
    detail = platform_message or response.reason_phrase
    raise ClientResponseError(
        f"{action} failed: HTTP {response.status_code} {detail}",
        status_code=response.status_code,
        response_body=response.text[:1000],
        platform_message=platform_message,
        service=service,
    )


def translate_transport_error(error: httpx.HTTPError, service: str, action: str) -> ClientError:
    """
    Convert an httpx transport error into the client error hierarchy.

    Args:
        error: httpx exception raised by a request
        service: Remote service name
        action: What was being attempted

    Returns:
        Matching ClientError subclass instance (caller raises it)
    """
    if isinstance(error, httpx.TimeoutException):
        return ClientTimeoutError(
            f"{action} timed out", service=service, original_error=error
        )
    if isinstance(error, (httpx.ConnectError, httpx.NetworkError)):
        return ClientConnectionError(
            f"{action} failed: cannot connect ({error})",
            unreachable=isinstance(error, httpx.ConnectError) and is_unreachable(error),
            service=service,
            original_error=error,
        )
    return ClientError(f"{action} failed: {error}", service=service, original_error=error)
