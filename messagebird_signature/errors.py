"""
Error taxonomy for request signature verification.

Every failure is terminal for a single verification call. The boundary
adapter turns the kind into an HTTP status code.
"""

from enum import Enum
from typing import Optional

from fastapi import status


DEFAULT_TIMESTAMP_HEADER = "MessageBird-Request-Timestamp"
DEFAULT_SIGNATURE_HEADER = "MessageBird-Signature"

# RFC 9110 name for 413; older Starlette releases only ship the deprecated alias
HTTP_413_CONTENT_TOO_LARGE = 413


class ErrorKind(str, Enum):
    """Reason a request failed verification."""
    MISSING_TIMESTAMP_HEADER = "missing_timestamp_header"
    INVALID_TIMESTAMP = "invalid_timestamp"
    MISSING_SIGNATURE_HEADER = "missing_signature_header"
    SIGNATURE_MISMATCH = "signature_mismatch"
    REQUEST_EXPIRED = "request_expired"
    BODY_READ_FAILURE = "body_read_failure"


HTTP_STATUS_BY_KIND = {
    ErrorKind.MISSING_TIMESTAMP_HEADER: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.INVALID_TIMESTAMP: status.HTTP_400_BAD_REQUEST,
    ErrorKind.MISSING_SIGNATURE_HEADER: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.SIGNATURE_MISMATCH: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.REQUEST_EXPIRED: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.BODY_READ_FAILURE: status.HTTP_400_BAD_REQUEST,
}


class SignatureVerificationError(Exception):
    """Base class for verification failures, carrying the kind and HTTP status."""

    kind: ErrorKind

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code or HTTP_STATUS_BY_KIND[self.kind]


class MissingTimestampHeader(SignatureVerificationError):
    kind = ErrorKind.MISSING_TIMESTAMP_HEADER

    def __init__(self, header: str = DEFAULT_TIMESTAMP_HEADER) -> None:
        super().__init__(f'The "{header}" header is missing.')


class InvalidTimestamp(SignatureVerificationError):
    kind = ErrorKind.INVALID_TIMESTAMP

    def __init__(self, header: str = DEFAULT_TIMESTAMP_HEADER) -> None:
        super().__init__(f'The "{header}" has an invalid value.')


class MissingSignatureHeader(SignatureVerificationError):
    kind = ErrorKind.MISSING_SIGNATURE_HEADER

    def __init__(self, header: str = DEFAULT_SIGNATURE_HEADER) -> None:
        super().__init__(f'The "{header}" header is missing.')


class SignatureMismatch(SignatureVerificationError):
    kind = ErrorKind.SIGNATURE_MISMATCH

    def __init__(self) -> None:
        super().__init__("Signatures not match.")


class RequestExpired(SignatureVerificationError):
    kind = ErrorKind.REQUEST_EXPIRED

    def __init__(self) -> None:
        super().__init__("Request expired.")


class BodyReadFailure(SignatureVerificationError):
    """Raised by the boundary adapter when the raw body cannot be read in full."""
    kind = ErrorKind.BODY_READ_FAILURE
