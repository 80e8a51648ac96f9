"""
Health check endpoints.
"""

import time

from fastapi import APIRouter, Depends, Request

from mailrelay.config import ConfigurationError, Settings, get_settings, validate_settings

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "mailrelay"}


@router.get("/readyz")
async def readyz(request: Request, settings: Settings = Depends(get_settings)):
    """
    Readiness check.

    Reports configuration problems, the upload directory state and the
    clients built at startup. External APIs are not called.
    """
    checks = {}
    overall_ok = True

    # 1) Configuration
    try:
        validate_settings(settings)
        checks["configuration"] = {"ok": True, "environment": settings.environment}
    except ConfigurationError as e:
        checks["configuration"] = {
            "ok": False,
            "issues": e.issues,
            "environment": settings.environment,
        }
        overall_ok = False

    # 2) Upload directory
    upload_path = settings.upload_path()
    upload_ok = upload_path.is_dir()
    checks["uploads"] = {"ok": upload_ok, "path": str(upload_path)}
    if not upload_ok:
        checks["uploads"]["error"] = "Upload directory does not exist"
        overall_ok = False

    # 3) Mailjet client
    service = getattr(request.app.state, "email_service", None)
    if service is None:
        checks["mailjet"] = {"ok": False, "error": "Email service not initialized"}
        overall_ok = False
    else:
        try:
            checks["mailjet"] = {"ok": True, **service.mailjet.health_check()}
        except Exception as e:
            checks["mailjet"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
            overall_ok = False

    # 4) Search backend
    checks["search"] = {
        "ok": True,
        "configured": bool(settings.IDOL_API_KEY),
        "index": settings.APP_EMAILS_IDOL_INDEX,
    }

    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}
