"""
MessageBird request signature verification.

Verifies that an inbound webhook was signed by MessageBird and is recent.
"""

from messagebird_signature.canonical import canonicalize_query
from messagebird_signature.errors import (
    BodyReadFailure,
    ErrorKind,
    InvalidTimestamp,
    MissingSignatureHeader,
    MissingTimestampHeader,
    RequestExpired,
    SignatureMismatch,
    SignatureVerificationError,
)
from messagebird_signature.schemas import SignatureConfig, SignedRequest, VerificationResult
from messagebird_signature.signature import encode_signature, generate, is_recent, is_valid
from messagebird_signature.verifier import SignatureVerifier, validate

__version__ = "1.0.0"
__all__ = [
    "canonicalize_query",
    "generate",
    "encode_signature",
    "is_valid",
    "is_recent",
    "validate",
    "SignatureVerifier",
    "SignatureConfig",
    "SignedRequest",
    "VerificationResult",
    "ErrorKind",
    "SignatureVerificationError",
    "MissingTimestampHeader",
    "InvalidTimestamp",
    "MissingSignatureHeader",
    "SignatureMismatch",
    "RequestExpired",
    "BodyReadFailure",
]
