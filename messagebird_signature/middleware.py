"""
Request gating for Starlette and FastAPI applications.

Extracts the timestamp and signature headers, the query pairs and the raw
body from the incoming request, verifies them and either lets the request
through or answers with an error response.

Two entry points:
- SignatureMiddleware: gates every non-exempt path of an application
- require_signature(): FastAPI dependency for gating individual routes
"""

import logging
from typing import Callable, Iterable, Optional

from fastapi import HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import ClientDisconnect
from starlette.types import ASGIApp

from messagebird_signature.errors import HTTP_413_CONTENT_TOO_LARGE, BodyReadFailure
from messagebird_signature.logging_utils import log_verification_data
from messagebird_signature.metrics import record_verification_outcome
from messagebird_signature.schemas import ErrorResponse, SignedRequest, VerificationResult
from messagebird_signature.verifier import SignatureVerifier

logger = logging.getLogger(__name__)

DEFAULT_MAX_BODY_BYTES = 100 * 1024


def _body_too_large() -> BodyReadFailure:
    return BodyReadFailure("Request body too large.", status_code=HTTP_413_CONTENT_TOO_LARGE)


async def read_signed_request(
    request: Request,
    max_body_bytes: int = DEFAULT_MAX_BODY_BYTES,
) -> SignedRequest:
    """
    Materialize the parts of a request that are covered by the signature.

    The body is streamed with a running byte count, so reading stops as
    soon as max_body_bytes is exceeded, with or without Content-Length.
    Handlers further down the stack can still read the body.

    Raises:
        BodyReadFailure: client disconnected or malformed Content-Length (400),
            body larger than max_body_bytes (413)
    """
    declared = request.headers.get("content-length")
    if declared is not None:
        try:
            declared_length = int(declared)
        except ValueError:
            raise BodyReadFailure("Invalid Content-Length header.") from None
        if declared_length > max_body_bytes:
            raise _body_too_large()

    chunks = []
    received = 0
    try:
        async for chunk in request.stream():
            received += len(chunk)
            if received > max_body_bytes:
                raise _body_too_large()
            chunks.append(chunk)
    except ClientDisconnect:
        raise BodyReadFailure("Request body could not be read.") from None

    raw_body = b"".join(chunks)
    # Same cache request.body() fills, so downstream handlers can read it
    request._body = raw_body

    logger.debug(f"Request body size: {len(raw_body)} bytes")
    return SignedRequest(
        headers=request.headers,
        query=request.query_params,
        raw_body=raw_body,
    )


async def verify_request(
    request: Request,
    verifier: SignatureVerifier,
    max_body_bytes: int = DEFAULT_MAX_BODY_BYTES,
) -> VerificationResult:
    """Read and verify a request, recording the outcome for metrics and logs."""
    try:
        signed_request = await read_signed_request(request, max_body_bytes)
    except BodyReadFailure as e:
        logger.error(f"Failed to read request body: {e.message}")
        result = VerificationResult.failure(e)
    else:
        result = verifier.verify(signed_request)

    record_verification_outcome("valid" if result.valid else result.error.value)
    log_verification_data(request, result)
    return result


def _error_response(detail: str, code: Optional[str], status_code: int) -> JSONResponse:
    body = ErrorResponse(detail=detail, code=code)
    return JSONResponse(body.model_dump(exclude_none=True), status_code=status_code)


class SignatureMiddleware(BaseHTTPMiddleware):
    """
    Reject requests that do not carry a valid, recent MessageBird signature.

    Without a verifier (no signing key configured) every gated request is
    answered with 503.
    """

    def __init__(
        self,
        app: ASGIApp,
        verifier: Optional[SignatureVerifier],
        exempt_paths: Iterable[str] = (),
        max_body_bytes: int = DEFAULT_MAX_BODY_BYTES,
    ) -> None:
        super().__init__(app)
        self._verifier = verifier
        self._exempt_paths = set(exempt_paths)
        self._max_body_bytes = max_body_bytes

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in self._exempt_paths:
            return await call_next(request)

        if self._verifier is None:
            logger.error("Signing key not configured, rejecting request")
            return _error_response(
                "Signing key not configured.",
                None,
                status.HTTP_503_SERVICE_UNAVAILABLE,
            )

        result = await verify_request(request, self._verifier, self._max_body_bytes)
        if not result.valid:
            return _error_response(result.message, result.error.value, result.status_code)

        request.state.signature_verified = True
        return await call_next(request)


def require_signature(
    verifier: SignatureVerifier,
    max_body_bytes: int = DEFAULT_MAX_BODY_BYTES,
) -> Callable:
    """
    Build a FastAPI dependency that verifies the request signature.

    Example:
        >>> gate = require_signature(SignatureVerifier("signing-key"))
        >>> @app.post("/webhook", dependencies=[Depends(gate)])
        ... async def webhook(): ...
    """

    async def signature_dependency(request: Request) -> VerificationResult:
        result = await verify_request(request, verifier, max_body_bytes)
        if not result.valid:
            raise HTTPException(status_code=result.status_code, detail=result.message)
        return result

    return signature_dependency
