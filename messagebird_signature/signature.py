"""
Signature generation and the two request checks.

Signed payload:
    <timestamp> "\n" <canonical query> "\n" <digest of raw body>

The HMAC of that payload under the signing key is what the sender puts,
base64 encoded, into the signature header. All functions here are pure
apart from reading the clock in is_recent() when no time is given.
"""

import base64
import binascii
import hashlib
import hmac
import logging
import time
from datetime import datetime, timezone
from typing import Optional, Union

from messagebird_signature.canonical import QueryInput, canonicalize_query
from messagebird_signature.errors import (
    DEFAULT_SIGNATURE_HEADER,
    DEFAULT_TIMESTAMP_HEADER,
    InvalidTimestamp,
    MissingSignatureHeader,
    MissingTimestampHeader,
)
from messagebird_signature.schemas import DEFAULT_HASH_NAME, DEFAULT_MAX_AGE_SECONDS

logger = logging.getLogger(__name__)

BytesLike = Union[bytes, bytearray, str]

# Anything longer lies far beyond datetime.max
MAX_TIMESTAMP_DIGITS = 20


def _to_bytes(value: Optional[BytesLike]) -> bytes:
    if value is None:
        return b""
    if isinstance(value, str):
        return value.encode("utf-8")
    return bytes(value)


# =============================================================================
# Signature Generator
# =============================================================================

def build_payload(
    timestamp: str,
    query: QueryInput,
    raw_body: Optional[BytesLike],
    hash_name: str = DEFAULT_HASH_NAME,
) -> bytes:
    """
    Build the byte sequence that gets signed.

    Args:
        timestamp: Timestamp header value, used verbatim
        query: Query parameters in any form canonicalize_query() accepts
        raw_body: Exact request body as received
        hash_name: hashlib algorithm for the body digest

    Returns:
        UTF-8 prefix followed by the raw body digest
    """
    prefix = f"{timestamp}\n{canonicalize_query(query)}\n".encode("utf-8")
    body_digest = hashlib.new(hash_name, _to_bytes(raw_body)).digest()
    return prefix + body_digest


def generate(
    timestamp: Optional[str],
    query: QueryInput,
    raw_body: Optional[BytesLike],
    signing_key: BytesLike,
    hash_name: str = DEFAULT_HASH_NAME,
    timestamp_header: str = DEFAULT_TIMESTAMP_HEADER,
) -> bytes:
    """
    Compute the expected signature of a request.

    Raises:
        MissingTimestampHeader: timestamp is None or empty; nothing is hashed

    Returns:
        Raw HMAC digest bytes
    """
    if not timestamp:
        raise MissingTimestampHeader(timestamp_header)

    payload = build_payload(timestamp, query, raw_body, hash_name)
    digest = hmac.new(_to_bytes(signing_key), payload, hash_name).digest()
    logger.debug(f"Generated signature over {len(payload)} payload bytes")
    return digest


def encode_signature(digest: bytes) -> str:
    """Base64-encode a digest for the signature header."""
    return base64.b64encode(digest).decode("ascii")


def decode_signature(signature: str) -> bytes:
    """
    Decode a base64 signature header leniently.

    Missing padding is tolerated and the URL-safe alphabet is accepted.
    A value that cannot be decoded yields b"", which never matches a digest.
    """
    value = signature.strip()
    value += "=" * (-len(value) % 4)
    try:
        return base64.b64decode(value, altchars=b"-_")
    except (binascii.Error, ValueError):
        return b""


# =============================================================================
# Checks
# =============================================================================

def is_valid(
    signature: Optional[str],
    computed_digest: bytes,
    signature_header: str = DEFAULT_SIGNATURE_HEADER,
) -> bool:
    """
    Compare a supplied signature with the computed digest in constant time.

    Unequal lengths compare as "not equal"; they never raise.

    Raises:
        MissingSignatureHeader: signature is None or empty
    """
    if not signature:
        raise MissingSignatureHeader(signature_header)

    logger.debug(f"Comparing signature: {signature[:8]}...")
    return hmac.compare_digest(decode_signature(signature), computed_digest)


def parse_timestamp(
    timestamp: Optional[str],
    timestamp_header: str = DEFAULT_TIMESTAMP_HEADER,
) -> float:
    """
    Parse a timestamp header into seconds since the epoch.

    Accepts integer seconds or an ISO-8601 datetime (naive values are UTC).

    Raises:
        MissingTimestampHeader: timestamp is None or empty
        InvalidTimestamp: unparseable, not representable as a datetime,
            or not after the epoch
    """
    if not timestamp:
        raise MissingTimestampHeader(timestamp_header)

    text = timestamp.strip()
    if text.isascii() and text.isdigit():
        if len(text) > MAX_TIMESTAMP_DIGITS:
            raise InvalidTimestamp(timestamp_header)
        seconds = int(text)
        try:
            datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, ValueError, OSError):
            raise InvalidTimestamp(timestamp_header) from None
    else:
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            raise InvalidTimestamp(timestamp_header) from None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        seconds = parsed.timestamp()

    if not seconds > 0:
        raise InvalidTimestamp(timestamp_header)
    return seconds


def is_recent(
    timestamp: Optional[str],
    max_age_seconds: int = DEFAULT_MAX_AGE_SECONDS,
    now: Optional[float] = None,
    timestamp_header: str = DEFAULT_TIMESTAMP_HEADER,
) -> bool:
    """
    Check that a request timestamp lies within the freshness window.

    A timestamp in the future gives a negative age and counts as recent.

    Args:
        timestamp: Timestamp header value
        max_age_seconds: Requests this old or older are rejected
        now: Current time in epoch seconds (defaults to the wall clock)

    Returns:
        True if now - timestamp < max_age_seconds
    """
    seconds = parse_timestamp(timestamp, timestamp_header)
    current_time = int(time.time()) if now is None else now
    age = current_time - seconds
    logger.debug(f"Request age: {age}s (max {max_age_seconds}s)")
    return age < max_age_seconds
