"""
Pydantic models for request signature verification.

This module contains:
- SignatureConfig: immutable verifier configuration
- SignedRequest: the framework-independent view of an inbound request
- VerificationResult: outcome of a verification call
- Response models for the HTTP layer
"""

import hashlib
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from messagebird_signature.canonical import query_pairs
from messagebird_signature.errors import (
    DEFAULT_SIGNATURE_HEADER,
    DEFAULT_TIMESTAMP_HEADER,
    ErrorKind,
    SignatureVerificationError,
)


DEFAULT_MAX_AGE_SECONDS = 100
DEFAULT_HASH_NAME = "sha256"


# =============================================================================
# Verifier Configuration
# =============================================================================

class SignatureConfig(BaseModel):
    """
    Immutable settings for a signing context.

    Separate instances can coexist, e.g. one per tenant key.
    """
    model_config = ConfigDict(frozen=True)

    timestamp_header: str = Field(
        default=DEFAULT_TIMESTAMP_HEADER,
        min_length=1,
        description="Header carrying the request timestamp"
    )
    signature_header: str = Field(
        default=DEFAULT_SIGNATURE_HEADER,
        min_length=1,
        description="Header carrying the base64 signature"
    )
    max_age_seconds: int = Field(
        default=DEFAULT_MAX_AGE_SECONDS,
        gt=0,
        description="Requests at least this old are expired"
    )
    hash_name: str = Field(
        default=DEFAULT_HASH_NAME,
        description="hashlib algorithm used for the body digest and the HMAC"
    )

    @field_validator("hash_name")
    @classmethod
    def validate_hash_name(cls, v: str) -> str:
        """Only fixed-length hashlib algorithms can back an HMAC."""
        name = v.lower()
        if name.startswith("shake_"):
            raise ValueError(f"hash_name '{v}' has no fixed digest size")
        try:
            hashlib.new(name)
        except ValueError:
            raise ValueError(f"hash_name '{v}' is not supported by hashlib")
        return name


# =============================================================================
# Request Model
# =============================================================================

class SignedRequest(BaseModel):
    """
    Framework-independent inbound request.

    Header names are stored lower-cased so lookups are case-insensitive;
    when a header repeats, the first value is kept.
    Query parameters are kept as flat (key, value) pairs so repeated keys
    survive.
    """
    model_config = ConfigDict(frozen=True)

    headers: Dict[str, str] = Field(default_factory=dict)
    query: List[Tuple[str, str]] = Field(default_factory=list)
    raw_body: bytes = b""

    @field_validator("headers", mode="before")
    @classmethod
    def lowercase_header_names(cls, v):
        if v is None:
            return {}
        items = v.items() if hasattr(v, "items") else v
        headers = {}
        # first occurrence wins, as with starlette Headers.get()
        for name, value in items:
            if value is not None:
                headers.setdefault(str(name).lower(), str(value))
        return headers

    @field_validator("query", mode="before")
    @classmethod
    def flatten_query(cls, v):
        return query_pairs(v)

    @field_validator("raw_body", mode="before")
    @classmethod
    def encode_raw_body(cls, v):
        if v is None:
            return b""
        if isinstance(v, str):
            return v.encode("utf-8")
        return v

    def header(self, name: str) -> Optional[str]:
        """Return a header value by case-insensitive name, or None."""
        return self.headers.get(name.lower())


# =============================================================================
# Verification Result
# =============================================================================

class VerificationResult(BaseModel):
    """Outcome of verifying one request; failed results carry exactly one kind."""
    model_config = ConfigDict(frozen=True)

    valid: bool
    error: Optional[ErrorKind] = None
    message: Optional[str] = None
    status_code: Optional[int] = None

    @classmethod
    def success(cls) -> "VerificationResult":
        return cls(valid=True)

    @classmethod
    def failure(cls, exc: SignatureVerificationError) -> "VerificationResult":
        return cls(
            valid=False,
            error=exc.kind,
            message=exc.message,
            status_code=exc.status_code,
        )

    def __bool__(self) -> bool:
        return self.valid


# =============================================================================
# Pydantic Response Models
# =============================================================================

class WebhookResponse(BaseModel):
    """Response model for an accepted webhook."""
    status: str = Field(default="ok", description="Operation status")


class ErrorResponse(BaseModel):
    """Response model for rejected requests."""
    detail: str = Field(..., description="Error description")
    code: Optional[str] = Field(None, description="Machine-readable error kind")


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
