"""
Mail relay application: FastAPI app, service lifecycle and error mapping.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from mailrelay.config import get_settings, validate_settings
from mailrelay.infrastructure.observability.logging import get_logger, log_request, setup_logging
from mailrelay.middleware import RequestContextMiddleware
from mailrelay.models.api.email_response import ErrorResponse
from mailrelay.routes import email, health
from mailrelay.services.background import BackgroundTaskRunner
from mailrelay.services.email_service import EmailService, EmailValidationError, UpstreamError
from mailrelay.services.idol_client import IdolClient
from mailrelay.services.mailjet_client import MailjetClient
from mailrelay.services.permission_tree import create_permission_tree_provider

# Setup logging before creating the app
setup_logging(log_level=get_settings().LOG_LEVEL)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Validate configuration, build the clients, and tear them down on exit."""
    settings = validate_settings(get_settings())
    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    settings.upload_path().mkdir(parents=True, exist_ok=True)

    mailjet = MailjetClient.from_settings(settings)
    idol = IdolClient.from_settings(settings) if settings.IDOL_API_KEY else None
    background = BackgroundTaskRunner()

    app.state.email_service = EmailService(
        mailjet=mailjet,
        tree_provider=create_permission_tree_provider(settings, idol),
        background=background,
        idol=idol,
        emails_index=settings.APP_EMAILS_IDOL_INDEX,
    )
    logger.info(
        "All services initialized successfully",
        permission_tree_source=settings.PERMISSION_TREE_SOURCE,
        search_enabled=idol is not None,
    )

    yield

    logger.info("Application shutting down", pending_background_tasks=background.pending)
    await background.drain()

    shutdown_errors = []
    for name, client in (("mailjet", mailjet), ("idol", idol)):
        if client is None:
            continue
        try:
            await client.close()
        except Exception as e:
            logger.error(f"Error closing {name} client", error=str(e))
            shutdown_errors.append(f"{name}: {e}")

    if shutdown_errors:
        logger.warning("Some services had shutdown errors", errors=shutdown_errors)
    else:
        logger.info("All services closed successfully")


app = FastAPI(
    title="Mail Relay",
    description="Recipient-authorized email sending over Mailjet with IDOL message search",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(email.router)


@app.exception_handler(EmailValidationError)
async def email_validation_error_handler(request: Request, exc: EmailValidationError):
    logger.info("Request rejected", reason=str(exc), path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=ErrorResponse(reason=str(exc)).model_dump(exclude_none=True),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = (first.get("loc") or ("request",))[-1]
    reason = f"invalid {field} field: {first.get('msg', 'invalid value')}"
    logger.info("Request rejected", reason=reason, error_count=len(errors), path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=ErrorResponse(reason=reason).model_dump(exclude_none=True),
    )


@app.exception_handler(UpstreamError)
async def upstream_error_handler(request: Request, exc: UpstreamError):
    logger.error(
        "Upstream failure",
        source=exc.source,
        upstream_status=exc.status_code,
        response_data=exc.response_data,
        error=str(exc),
        path=request.url.path,
    )
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content=ErrorResponse(reason=str(exc), upstream_status=exc.status_code).model_dump(
            exclude_none=True
        ),
    )


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    start_time = time.time()
    response = await call_next(request)
    process_time = (time.time() - start_time) * 1000

    log_request(
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(process_time, 2),
        request_id=getattr(request.state, "request_id", None),
    )
    return response


# Outermost: the request id must be bound before the timing middleware logs
app.add_middleware(RequestContextMiddleware)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
