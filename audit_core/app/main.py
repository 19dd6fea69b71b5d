import logging
import os

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder

from .db import create_db_and_tables
from .audits import router as audits_router
from .items import router as items_router
from .scan import router as scan_router
from .excel import router as excel_router
from .preferences import router as preferences_router

logger = logging.getLogger(__name__)


def configure_logging():
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def get_cors_origins():
    """Get CORS origins from environment or use defaults for development"""
    origins_env = os.getenv("CORS_ORIGINS", "")
    if origins_env:
        return [o.strip() for o in origins_env.split(",") if o.strip()]
    return [
        "http://127.0.0.1:3000",
        "http://localhost:3000",
        "http://127.0.0.1:8080",
        "http://localhost:8080",
    ]


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed bodies and query params are client errors (400), not 422."""
    logger.info("Rejected request to %s: %s", request.url.path, exc.errors())
    return JSONResponse(
        status_code=400,
        content=jsonable_encoder({"detail": exc.errors()}),
    )


def create_app() -> FastAPI:
    configure_logging()

    app = FastAPI(
        title="Inventory Audit",
        description="Warehouse inventory audits: spreadsheet import, scan reconciliation and export",
        version="1.0.0",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    app.include_router(audits_router)
    app.include_router(items_router)
    app.include_router(scan_router)
    app.include_router(excel_router)
    app.include_router(preferences_router)

    @app.on_event("startup")
    def on_startup():
        logger.info("Creating database tables at startup")
        create_db_and_tables()

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


app = create_app()
