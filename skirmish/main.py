"""FastAPI application entry point."""
from contextlib import asynccontextmanager
from pathlib import Path
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from skirmish import __version__
from skirmish.api.dependencies import get_combat_service
from skirmish.api.routes import characters, encounters
from skirmish.config import get_settings
from skirmish.core.rules_config import apply_preset, apply_rules_file
from skirmish.middleware.error_handler import setup_error_handlers

settings = get_settings()

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("skirmish.app")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events - startup and shutdown."""
    logger.info(f"Skirmish engine {__version__} starting (debug={settings.DEBUG})")
    if settings.RULES_FILE:
        apply_rules_file(Path(settings.RULES_FILE))
        logger.info(f"Rules loaded from {settings.RULES_FILE}")
    elif not apply_preset(settings.RULES_PRESET):
        logger.warning(f"Unknown rules preset '{settings.RULES_PRESET}', using standard rules")

    yield  # Application runs here

    service = get_combat_service()
    logger.info(f"Shutting down with {len(service.registry)} encounters in memory")


app = FastAPI(
    title="Skirmish Encounter Engine",
    description="Turn-based tactical combat rules engine for tabletop encounters",
    version=__version__,
    lifespan=lifespan,
)


# Middleware to log ALL requests
@app.middleware("http")
async def log_requests(request: Request, call_next):
    logger.debug(f"[REQUEST] {request.method} {request.url.path}")
    response = await call_next(request)
    logger.debug(f"[RESPONSE] {request.method} {request.url.path} -> {response.status_code}")
    return response

# CORS middleware for frontends
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Setup structured error handlers
setup_error_handlers(app, debug=settings.DEBUG)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "online", "service": "Skirmish Encounter Engine", "version": __version__}


@app.get("/health")
async def health_check():
    """Detailed health check."""
    return {
        "status": "healthy",
        "encounters": len(get_combat_service().registry),
        "debug_mode": settings.DEBUG,
    }


# Routes
app.include_router(encounters.router, prefix="/api/encounters", tags=["encounters"])
app.include_router(characters.router, prefix="/api/characters", tags=["characters"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("skirmish.main:app", host=settings.HOST, port=settings.PORT, reload=settings.DEBUG)
