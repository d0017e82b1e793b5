import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app_logger import configure_logging
from database import create_tables
from errors import IngestError, IngestFailed
from routers.api import router
from settings import settings

configure_logging(settings.LOG_LEVEL)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.AUTO_CREATE_TABLES:
        await create_tables()
    yield


app = FastAPI(
    title="Beacon Ingest API",
    description="API de ingestão de beacons BLE enviados pelos gateways",
    version="1.0.0",
    lifespan=lifespan,
)


@app.exception_handler(IngestError)
async def ingest_error_handler(request: Request, exc: IngestError):
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.message})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    """Falhas fora do pipeline (dependências, leitura do corpo) também respondem em JSON."""
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    error = IngestFailed()
    return JSONResponse(status_code=error.status_code, content={"success": False, "error": error.message})


app.include_router(router)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
