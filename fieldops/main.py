import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from fieldops.api.service_orders import router as service_orders_router
from fieldops.services.service_orders.errors import ServiceOrderError

logger = logging.getLogger(__name__)

app = FastAPI(title="fieldops API")


@app.exception_handler(ServiceOrderError)
async def service_order_error_handler(request: Request, exc: ServiceOrderError):
    if exc.status_code >= 500:
        logger.error("service_order_error path=%s code=%s", request.url.path, exc.code)
    http_exc = exc.to_http_exception()
    return JSONResponse(status_code=http_exc.status_code, content={"detail": http_exc.detail})


def _include_api_router(router, dependencies=None):
    app.include_router(router, dependencies=dependencies)
    app.include_router(router, prefix="/api/v1", dependencies=dependencies)


_include_api_router(service_orders_router)


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.get("/metrics")
def metrics():
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
