from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from bdcrm.api.routes import router as api_router
from bdcrm.core.config import get_settings
from bdcrm.core.events import InternalEvent, event_bus
from bdcrm.logging import configure_logging
from bdcrm.middleware.correlation_id import CorrelationIdMiddleware
from bdcrm.middleware.request_logging import RequestLoggingMiddleware
from bdcrm.otel import get_fastapi_server_request_hook, setup_otel


configure_logging()
logger = logging.getLogger("bdcrm.lifecycle")
_subscriptions_registered = False

_timeline_event_types = [
    "workpackage.timeline.cascaded",
    "workpackage.effective_start_date_changed",
]


def _on_system_started(event: InternalEvent) -> None:
    logger.info("system_event", extra={"event_name": event.name})


def _on_timeline_event(event: InternalEvent) -> None:
    payload = event.payload if isinstance(event.payload, dict) else {}
    body = payload.get("payload") if isinstance(payload.get("payload"), dict) else {}
    logger.info(
        "timeline_event",
        extra={
            "event_name": event.name,
            "work_package_id": body.get("work_package_id"),
            "shifted_count": len(body.get("shifted_phase_ids") or []),
        },
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _subscriptions_registered
    if not _subscriptions_registered:
        event_bus.subscribe("system.started", _on_system_started)
        for event_name in _timeline_event_types:
            event_bus.subscribe(event_name, _on_timeline_event)
        _subscriptions_registered = True
    event_bus.publish("system.started", {"service": "api"})
    yield


settings = get_settings()

app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.include_router(api_router)

if settings.otel_enabled:
    setup_otel("api", True)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())
