"""
Custom exceptions for the feed ingestion engine.

Exception hierarchy:
- IngestError (base)
  - ConfigurationError: Invalid configuration or subscription target
  - StreamConnectionError: WebSocket connection issues
    - ReconnectExhaustedError: Reconnection sequence gave up
  - MessageParseError: Invalid/malformed messages
  - ApiError: REST call failed (non-2xx, timeout, undecodable body)
  - PoolClosedError: Work submitted to a drained worker pool
"""

from __future__ import annotations

from typing import Any, Optional


class IngestError(Exception):
    """Base exception for all ingestion errors."""

    def __init__(
        self,
        message: str,
        *,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.component = component
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.component:
            parts.append(f"[component={self.component}]")
        if self.details:
            parts.append(f"[details={self.details}]")
        return " ".join(parts)


class ConfigurationError(IngestError):
    """Raised when configuration is invalid."""

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.field = field
        self.value = value
        details = details or {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        super().__init__(message, component=component, details=details)


class StreamConnectionError(IngestError):
    """Raised when the WebSocket connection fails or is unusable."""

    def __init__(
        self,
        message: str,
        *,
        url: Optional[str] = None,
        reconnect_attempt: int = 0,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.url = url
        self.reconnect_attempt = reconnect_attempt
        details = details or {}
        if url:
            details["url"] = url
        details["reconnect_attempt"] = reconnect_attempt
        super().__init__(message, component=component, details=details)


class ReconnectExhaustedError(StreamConnectionError):
    """Raised when the reconnection sequence has used up all attempts."""


class MessageParseError(IngestError):
    """Raised when a message cannot be parsed."""

    def __init__(
        self,
        message: str,
        *,
        raw_data: Optional[str] = None,
        expected_type: Optional[str] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.raw_data = raw_data
        self.expected_type = expected_type
        details = details or {}
        if expected_type:
            details["expected_type"] = expected_type
        # raw_data stays out of details to avoid log spam
        super().__init__(message, component=component, details=details)


class ApiError(IngestError):
    """Raised when a REST request fails."""

    def __init__(
        self,
        message: str,
        *,
        url: Optional[str] = None,
        status: Optional[int] = None,
        body: Optional[str] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.url = url
        self.status = status
        self.body = body
        details = details or {}
        if url:
            details["url"] = url
        if status is not None:
            details["status"] = status
        if body:
            details["body"] = body[:200]
        super().__init__(message, component=component, details=details)


class PoolClosedError(IngestError):
    """Raised when work is submitted to a pool that is shutting down."""
