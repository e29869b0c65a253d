import logging
from typing import Optional

from fastapi import FastAPI, Request, Response, status

from messagebird_signature.config import Settings, get_settings
from messagebird_signature.logging_utils import setup_logging, RequestLoggingMiddleware
from messagebird_signature.metrics import get_metrics, get_metrics_content_type
from messagebird_signature.middleware import SignatureMiddleware
from messagebird_signature.schemas import ErrorResponse, HealthResponse, WebhookResponse
from messagebird_signature.verifier import SignatureVerifier


logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build a webhook receiver gated by MessageBird signature verification.

    Health and metrics routes are exempt from the gate; every other route
    only sees requests whose signature and timestamp checked out.
    """
    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL)

    verifier = None
    if settings.SIGNING_KEY:
        verifier = SignatureVerifier(settings.SIGNING_KEY, settings.signature_config())
    else:
        logger.warning("MESSAGEBIRD_SIGNING_KEY not set, webhook requests will be rejected")

    app = FastAPI(
        title="MessageBird Webhook Receiver",
        description="Receives MessageBird webhooks after verifying their request signature",
        version="1.0.0",
    )

    # Added first so that request logging wraps signature verification
    app.add_middleware(
        SignatureMiddleware,
        verifier=verifier,
        exempt_paths=settings.EXEMPT_PATHS,
        max_body_bytes=settings.MAX_BODY_BYTES,
    )
    app.add_middleware(RequestLoggingMiddleware)

    # =========================================================================
    # Health Check Routes
    # =========================================================================

    @app.get("/health/live", response_model=HealthResponse)
    async def health_live() -> HealthResponse:
        """Liveness probe - always returns 200 once the app is running."""
        return HealthResponse(status="ok")

    @app.get("/health/ready", response_model=HealthResponse)
    async def health_ready(response: Response) -> HealthResponse:
        """
        Readiness probe - returns 200 only if a signing key is configured.
        Otherwise returns 503 (Service Unavailable).
        """
        if verifier is None:
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return HealthResponse(
                status="not_ready",
                reason="MESSAGEBIRD_SIGNING_KEY not configured"
            )

        return HealthResponse(status="ready")

    # =========================================================================
    # Webhook Route
    # =========================================================================

    @app.post(
        "/webhook",
        response_model=WebhookResponse,
        responses={
            400: {"model": ErrorResponse, "description": "Invalid timestamp or unreadable body"},
            401: {"model": ErrorResponse, "description": "Missing or invalid signature, or expired request"},
            413: {"model": ErrorResponse, "description": "Request body too large"},
        }
    )
    async def webhook(request: Request) -> WebhookResponse:
        """
        Accept a MessageBird webhook.

        Reaching this handler means the signature middleware verified:
            - MessageBird-Request-Timestamp is present and recent
            - MessageBird-Signature matches the timestamp, query and body
        """
        raw_body = await request.body()
        logger.info(f"Verified webhook received ({len(raw_body)} bytes)")
        return WebhookResponse(status="ok")

    # =========================================================================
    # Metrics Route
    # =========================================================================

    @app.get("/metrics")
    async def metrics() -> Response:
        """Expose Prometheus-style metrics."""
        return Response(
            content=get_metrics(),
            media_type=get_metrics_content_type()
        )

    return app


app = create_app()
