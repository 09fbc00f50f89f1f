# src/trips_web/errors.py

# Every component raises one of these; the handlers registered in main
# turn them into {"error": true, "message": ...} responses.

from typing import Optional

from fastapi import status


class TripsWebError(Exception):
    """Base exception for all trips-web errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ValidationFailed(TripsWebError):
    """A required input (address, state, signature, time window...) is missing."""

    status_code = status.HTTP_400_BAD_REQUEST


class Unauthenticated(TripsWebError):
    """Missing or invalid session, bearer credential or privilege token."""

    status_code = status.HTTP_401_UNAUTHORIZED


class NotFound(TripsWebError):
    """The requested resource is unknown to this process."""

    status_code = status.HTTP_404_NOT_FOUND


class UpstreamError(TripsWebError):
    """Base for failures talking to an external service."""

    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(self, message: str, *, service: str = "") -> None:
        self.service = service
        super().__init__(message)


class UpstreamUnavailable(UpstreamError):
    """Transport-level failure (connection refused, timeout, TLS...)."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class UpstreamStatusError(UpstreamError):
    """External service answered with a non-success status code."""

    def __init__(self, message: str, *, service: str = "", status_code: Optional[int] = None) -> None:
        self.upstream_status = status_code
        super().__init__(message, service=service)


class MalformedUpstreamResponse(UpstreamError):
    """Response body was undecodable or lacked a required field."""


class VehicleQueryFailed(UpstreamError):
    """Any failure of the identity service vehicle query.

    The underlying error is chained as ``__cause__``.
    """
