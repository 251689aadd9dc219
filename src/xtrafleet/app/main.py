"""FastAPI application entry point for the XtraFleet API."""

import logging
from contextlib import asynccontextmanager
from pathlib import Path

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from xtrafleet.app.config import get_settings
from xtrafleet.app.errors import register_error_handlers
from xtrafleet.infra.database import init_db

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: initialize database on startup."""
    await init_db()
    yield


settings = get_settings()

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.debug else logging.WARNING,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)

app = FastAPI(
    title="XtraFleet API",
    lifespan=lifespan,
    debug=settings.debug,
)

# CORS middleware: all origins in debug mode for LAN/IP access
_cors_origins = settings.cors_origins_list
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=("*" not in _cors_origins),
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Error mapping and route includes
# ---------------------------------------------------------------------------
from xtrafleet.app.routes.auth import router as auth_router
from xtrafleet.app.routes.drivers import invitations_router, router as drivers_router
from xtrafleet.app.routes.payments import router as payments_router
from xtrafleet.app.routes.tla import router as tla_router

register_error_handlers(app)

app.include_router(auth_router)
app.include_router(tla_router)
app.include_router(invitations_router)
app.include_router(drivers_router)
app.include_router(payments_router)

# Static file mount for uploaded compliance documents
_uploads_dir = Path(settings.uploads_dir)
_uploads_dir.mkdir(parents=True, exist_ok=True)
app.mount(settings.public_uploads_url, StaticFiles(directory=str(_uploads_dir)), name="uploads")


@app.get("/health", tags=["health"])
async def health_check():
    """Return service health status."""
    return {"status": "ok", "service": "xtrafleet"}


def run() -> None:
    """Run the application with uvicorn (used by project.scripts entry point)."""
    uvicorn.run(
        "xtrafleet.app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )


if __name__ == "__main__":
    run()
