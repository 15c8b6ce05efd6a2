import logging

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse

from .api import router
from .config import settings
from .errors import GatewayError
from .telemetry import setup_observability, shutdown_observability

logger = logging.getLogger(__name__)

app = FastAPI(title="MQTT HTTP Gateway")
app.include_router(router)


@app.on_event("startup")
def on_startup():
    setup_observability()


@app.on_event("shutdown")
def on_shutdown():
    shutdown_observability()


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError):
    logger.info(
        "Request failed",
        extra={"method": request.method, "path": request.url.path, "kind": exc.kind.name, "status": exc.status_code},
    )
    return PlainTextResponse(exc.kind.message, status_code=exc.status_code)


def run():
    uvicorn.run(app, host=settings.http_host, port=settings.http_port, log_level=settings.log_level.lower())
