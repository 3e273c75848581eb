"""
Integrity Relay Backend
FastAPI application relaying mobile attestation tokens to the decoding authority
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI
from slowapi.errors import RateLimitExceeded

from .health import readiness
from .metrics.performance import metrics, track_performance
from .middleware.rate_limiter import limiter, rate_limit_handler
from .middleware.security_headers import SecurityHeadersMiddleware
from .routers import integrity
from .services.integrity.config import RelaySettings, load_settings
from .services.integrity.credentials import (
    CredentialProvider,
    ServiceAccountCredentialProvider,
    StaticCredentialProvider,
)
from .services.integrity.play_integrity import PlayIntegrityClient, StubTokenDecoder
from .services.integrity.service import VerificationService
from .utils.errors import register_error_handlers

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def build_credentials(settings: RelaySettings, http_client: httpx.AsyncClient) -> CredentialProvider:
    """Credential provider for the configured credential source"""
    if settings.service_account_file:
        return ServiceAccountCredentialProvider.from_file(
            settings.service_account_file,
            http_client,
            token_uri=settings.token_uri,
            refresh_skew=settings.credential_refresh_skew
        )
    if settings.static_token:
        return StaticCredentialProvider(settings.static_token)
    raise ValueError("No service credential configured for the decoding authority")


def build_service(settings: RelaySettings, http_client: httpx.AsyncClient) -> VerificationService:
    """Wire decoder and verification service from settings"""
    metrics.configure_quota(settings.daily_quota, settings.quota_alert_threshold)

    if settings.stub_mode:
        logger.warning("Integrity relay in stub mode - tokens are not sent to the decoding authority")
        decoder = StubTokenDecoder(settings.package_name)
    else:
        decoder = PlayIntegrityClient(
            settings,
            build_credentials(settings, http_client),
            http_client,
            collector=metrics
        )
    return VerificationService(settings, decoder, collector=metrics)


async def sweep_challenges(service: VerificationService, interval: float):
    """Periodically drop expired challenges"""
    while True:
        await asyncio.sleep(interval)
        service.store.sweep()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the outbound HTTP client and verification service"""
    settings: RelaySettings = app.state.settings
    settings.log_config_summary()

    http_client = None
    if getattr(app.state, "verification_service", None) is None:
        http_client = httpx.AsyncClient(timeout=settings.request_timeout)
        app.state.verification_service = build_service(settings, http_client)

    sweeper = asyncio.create_task(
        sweep_challenges(app.state.verification_service, settings.sweep_interval)
    )
    try:
        yield
    finally:
        sweeper.cancel()
        try:
            await sweeper
        except asyncio.CancelledError:
            pass
        if http_client is not None:
            await http_client.aclose()
            app.state.verification_service = None
        logger.info("Integrity relay stopped")


def create_app(settings: Optional[RelaySettings] = None,
               service: Optional[VerificationService] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Inbound rate limits are process-wide: slowapi evaluates them per request
    from ``load_settings()``, so ``challenge_rate_limit`` and
    ``verify_rate_limit`` on an injected ``settings`` object are not applied.

    Args:
        settings: Relay settings (loaded from environment if omitted)
        service: Pre-built verification service, used instead of wiring one
    """
    app = FastAPI(
        title="Integrity Relay",
        description="""
    ## Integrity Relay API

    Backend verification relay for mobile app, device and account integrity.

    ### Flow:
    - `POST /v1/integrity/challenges` - issue a single-use challenge for a session
    - the app requests an integrity token bound to the challenge
    - `POST /v1/integrity/verdicts` - relay the token and receive an ALLOW/DENY decision
    """,
        version="1.0.0",
        lifespan=lifespan,
        tags_metadata=[
            {
                "name": "Integrity",
                "description": "Challenge issuance and token verification",
            },
            {
                "name": "Health",
                "description": "System health checks and monitoring endpoints",
            }
        ]
    )

    app.state.settings = settings if settings is not None else load_settings()
    process_settings = load_settings()
    if (app.state.settings.challenge_rate_limit, app.state.settings.verify_rate_limit) != (
            process_settings.challenge_rate_limit, process_settings.verify_rate_limit):
        logger.warning(f"Injected rate limits ignored, using INTEGRITY_* limits - "
                       f"Challenges: {process_settings.challenge_rate_limit}, "
                       f"Verdicts: {process_settings.verify_rate_limit}")
    app.state.verification_service = service
    app.state.limiter = limiter

    register_error_handlers(app)
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    app.middleware("http")(track_performance)
    app.add_middleware(SecurityHeadersMiddleware)

    app.include_router(integrity.router)
    app.include_router(readiness.router)

    @app.get("/", tags=["Health"])
    async def root():
        """Root endpoint with API information"""
        return {
            "service": "Integrity Relay",
            "version": "1.0.0",
            "status": "running",
            "endpoints": {
                "health": "/health",
                "challenges": "/v1/integrity/challenges",
                "verdicts": "/v1/integrity/verdicts",
                "metrics": "/v1/integrity/metrics",
                "docs": "/docs"
            }
        }

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
