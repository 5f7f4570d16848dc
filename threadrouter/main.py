import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from threadrouter.config import get_settings
from threadrouter.api.routes import discussions, webhooks
from threadrouter.services.runtime import get_runtime

settings = get_settings()

# Configure application logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

# Set log level for threadrouter modules
logger = logging.getLogger("threadrouter")
logger.setLevel(logging.DEBUG if settings.debug else logging.INFO)


@asynccontextmanager
async def lifespan(app: FastAPI):
    runtime = app.dependency_overrides.get(get_runtime, get_runtime)()
    logger.info(
        f"Sources: {runtime.registry.source_platforms}, sinks: {runtime.registry.sink_platforms}"
    )
    yield
    await runtime.runner.drain()


app = FastAPI(
    title=settings.app_name,
    description="Routes tasks detected in team discussions to the right destination",
    version="0.1.0",
    lifespan=lifespan,
)

# Include routers
app.include_router(webhooks.router, prefix="/api/webhooks", tags=["Webhooks"])
app.include_router(discussions.router, prefix="/api/discussions", tags=["Discussions"])


@app.get("/")
async def root():
    return {
        "message": "Welcome to threadrouter",
        "version": "0.1.0",
        "endpoints": {
            "webhooks": "/api/webhooks/{platform}",
            "discussions": "/api/discussions/{discussion_id}",
            "health": "/health",
            "docs": "/docs",
            "redoc": "/redoc",
        },
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": settings.app_name}
