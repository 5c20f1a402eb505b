"""FastAPI application entry point for the HomeTrace scheduling API."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from hometrace import __version__
from hometrace.app.config import get_settings
from hometrace.app.error_handlers import register_exception_handlers
from hometrace.infra.database import init_db

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: initialize database on startup."""
    await init_db()
    logger.info("HomeTrace API %s started", __version__)
    yield


settings = get_settings()

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.debug else logging.WARNING,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)

app = FastAPI(
    title="HomeTrace API",
    version=__version__,
    lifespan=lifespan,
    debug=settings.debug,
)

# CORS middleware: allow all origins in debug mode
_cors_origins = settings.cors_origins_list
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=("*" not in _cors_origins),
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# ---------------------------------------------------------------------------
# Route includes
# ---------------------------------------------------------------------------
from hometrace.app.routes.auth import router as auth_router
from hometrace.app.routes.connections import router as connections_router
from hometrace.app.routes.houses import router as houses_router
from hometrace.app.routes.suggestions import router as suggestions_router
from hometrace.app.routes.visits import router as visits_router
from hometrace.app.routes.tours import router as tours_router

app.include_router(auth_router)
app.include_router(connections_router)
app.include_router(houses_router)
# Before visits: /api/visits/suggestions must not match /api/visits/{visit_id}
app.include_router(suggestions_router)
app.include_router(visits_router)
app.include_router(tours_router)


@app.get("/health", tags=["health"])
async def health_check():
    """Return service health status."""
    return {"status": "ok", "service": "hometrace", "version": __version__}


def run() -> None:
    """Run the application with uvicorn (used by project.scripts entry point)."""
    uvicorn.run(
        "hometrace.app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )


if __name__ == "__main__":
    run()
