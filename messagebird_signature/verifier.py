"""
Unified request validation.

SignatureVerifier binds a signing key to an immutable SignatureConfig and
runs the checks in a fixed order:

1. Timestamp header present (before any digest is computed)
2. Signature header present and matching (SignatureMismatch)
3. Timestamp parseable and recent (InvalidTimestamp, RequestExpired)

A forged request is therefore rejected as forged even when it is also stale.
"""

import logging
from typing import Dict, Optional

from messagebird_signature.canonical import QueryInput
from messagebird_signature.errors import RequestExpired, SignatureMismatch, SignatureVerificationError
from messagebird_signature.schemas import SignatureConfig, SignedRequest, VerificationResult
from messagebird_signature import signature

logger = logging.getLogger(__name__)


class SignatureVerifier:
    """
    Verifies requests against one signing key.

    Instances hold no mutable state and can be shared between concurrent
    requests.

    Example:
        >>> verifier = SignatureVerifier("signing-key")
        >>> result = verifier.verify(SignedRequest(headers=..., query=..., raw_body=...))
        >>> result.valid
    """

    def __init__(self, signing_key, config: Optional[SignatureConfig] = None):
        if not signing_key:
            raise ValueError("signing_key is required")
        self._signing_key = signing_key
        self.config = config or SignatureConfig()

    def generate(self, request: SignedRequest) -> bytes:
        """Compute the expected signature of a request."""
        return signature.generate(
            request.header(self.config.timestamp_header),
            request.query,
            request.raw_body,
            self._signing_key,
            hash_name=self.config.hash_name,
            timestamp_header=self.config.timestamp_header,
        )

    def is_valid(self, request: SignedRequest, computed_digest: bytes) -> bool:
        """Compare the request's signature header with a computed digest."""
        return signature.is_valid(
            request.header(self.config.signature_header),
            computed_digest,
            signature_header=self.config.signature_header,
        )

    def is_recent(self, request: SignedRequest, now: Optional[float] = None) -> bool:
        """Check the request's timestamp header against the freshness window."""
        return signature.is_recent(
            request.header(self.config.timestamp_header),
            self.config.max_age_seconds,
            now=now,
            timestamp_header=self.config.timestamp_header,
        )

    def validate(self, request: SignedRequest, now: Optional[float] = None) -> bool:
        """
        Validate a request, raising on the first failed check.

        Raises:
            SignatureVerificationError: one subclass per failure kind

        Returns:
            True when every check passes
        """
        digest = self.generate(request)

        if not self.is_valid(request, digest):
            raise SignatureMismatch()

        if not self.is_recent(request, now=now):
            raise RequestExpired()

        return True

    def verify(self, request: SignedRequest, now: Optional[float] = None) -> VerificationResult:
        """
        Validate a request and report the outcome as a result value.

        Verification failures never raise from here; callers branch on
        result.valid and result.error instead.
        """
        try:
            self.validate(request, now=now)
        except SignatureVerificationError as e:
            logger.info(f"Signature verification failed: {e.kind.value}")
            return VerificationResult.failure(e)

        logger.debug("Signature verification passed")
        return VerificationResult.success()

    def sign(self, timestamp: str, query: QueryInput = None, raw_body=b"") -> Dict[str, str]:
        """
        Build the headers a sender attaches to a request.

        Returns:
            Mapping of timestamp and signature header names to their values
        """
        digest = signature.generate(
            timestamp,
            query,
            raw_body,
            self._signing_key,
            hash_name=self.config.hash_name,
            timestamp_header=self.config.timestamp_header,
        )
        return {
            self.config.timestamp_header: timestamp,
            self.config.signature_header: signature.encode_signature(digest),
        }

    def __repr__(self) -> str:
        return f"SignatureVerifier(config={self.config!r})"


def validate(
    request: SignedRequest,
    signing_key,
    config: Optional[SignatureConfig] = None,
    now: Optional[float] = None,
) -> bool:
    """
    Validate a request with a one-off verifier.

    Raises:
        SignatureVerificationError: on the first failed check
    """
    return SignatureVerifier(signing_key, config).validate(request, now=now)
