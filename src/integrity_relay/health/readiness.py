"""
Readiness and liveness checks for the integrity relay
"""

import time
from fastapi import APIRouter, Request

router = APIRouter(prefix="/health", tags=["Health"])


@router.get("")
async def health_check():
    """Basic health check"""
    return {
        "status": "ok",
        "service": "integrity-relay",
        "timestamp": time.time()
    }


@router.get("/ready")
async def readiness_check(request: Request):
    """Readiness check covering configuration, decoder wiring and quota headroom"""
    settings = request.app.state.settings
    service = getattr(request.app.state, "verification_service", None)

    checks = {
        "enabled": settings.enabled,
        "configuration": False,
        "decoder": service is not None,
        "quota": False
    }
    details = {}

    issues = settings.validate_config()
    checks["configuration"] = not issues
    details["configuration"] = {
        "stub_mode": settings.stub_mode,
        "production_ready": settings.is_production_ready(),
        "issues": issues
    }

    if service is not None:
        details["decoder"] = service.decoder.get_configuration_status()
        details["challenges"] = service.store.get_stats()
        quota = service.metrics.get_quota_stats()
        checks["quota"] = quota["decode_calls"] < quota["daily_quota"]
        details["quota"] = quota

    all_ready = all(checks.values())

    return {
        "ready": all_ready,
        "status": "healthy" if all_ready else "degraded",
        "checks": checks,
        "details": details,
        "timestamp": time.time()
    }


@router.get("/live")
async def liveness_check():
    """Simple liveness check for container orchestration"""
    return {
        "alive": True,
        "service": "integrity-relay",
        "timestamp": time.time()
    }
