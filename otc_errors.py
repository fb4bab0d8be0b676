"""
Error taxonomy shared by the upstream client, the report pipeline and the
HTTP layer. Every error carries the HTTP status the API should answer with.
"""
from typing import Optional


class OtcError(Exception):
    status_code: int = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class ConfigurationError(OtcError):
    """Required configuration (the API credential) is missing."""


class UpstreamError(OtcError):
    """
    The reservation API answered with a non-success status, could not be
    reached, or returned a payload we cannot use.

    `upstream_status` is the status Lodgify sent (None for transport
    failures); the HTTP layer reuses it, or answers 502 when there is none.
    """

    status_code = 502

    def __init__(self, message: str, upstream_status: Optional[int] = None):
        super().__init__(message, status_code=upstream_status)
        self.upstream_status = upstream_status


class ShapeError(UpstreamError):
    """Upstream JSON did not have the structure we expected."""


class ValidationError(OtcError):
    """Malformed query parameters."""

    status_code = 400
