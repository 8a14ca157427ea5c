import logging

from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from territory.api.routes import router as api_router
from territory.core.config import get_settings
from territory.logging import configure_logging
from territory.middleware.correlation_id import CorrelationIdMiddleware
from territory.middleware.request_logging import RequestLoggingMiddleware
from territory.otel import get_fastapi_server_request_hook, setup_otel


configure_logging()
logger = logging.getLogger("territory.lifecycle")

settings = get_settings()

app = FastAPI(title=settings.app_name, version="0.1.0")
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.include_router(api_router)

if settings.otel_enabled:
    setup_otel("territory-api", True)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())

logger.info("app.configured")
