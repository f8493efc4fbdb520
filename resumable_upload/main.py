"""
Main FastAPI application entry point
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api import router
from .core.config import Settings, StorageConfig, settings
from .services import FileServer, SqlDedupIndex, build_coordinator, build_dedup_index

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def create_app(config: Optional[StorageConfig] = None, app_settings: Settings = settings) -> FastAPI:
    """Build the app; services are wired during startup for the given storage root"""
    storage_config = config or StorageConfig.from_settings(app_settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan context manager for startup/shutdown"""
        logger.info("🚀 Starting Upload Server...")

        storage_config.ensure_directories()
        logger.info(f"✅ Storage root ready: {storage_config.root}")

        dedup_index = build_dedup_index(storage_config, app_settings)
        if isinstance(dedup_index, SqlDedupIndex):
            dedup_index.rebuild()

        app.state.coordinator = build_coordinator(storage_config, dedup_index)
        app.state.file_server = FileServer(storage_config)

        logger.info(f"🌐 Server ready at http://{app_settings.SERVER_HOST}:{app_settings.SERVER_PORT}")
        logger.info(f"📖 API docs at http://{app_settings.SERVER_HOST}:{app_settings.SERVER_PORT}/docs")

        yield

        logger.info("🛑 Shutting down Upload Server...")
        if isinstance(dedup_index, SqlDedupIndex):
            dedup_index.engine.dispose()

    app = FastAPI(
        title=app_settings.APP_TITLE,
        description=app_settings.APP_DESCRIPTION,
        version=app_settings.APP_VERSION,
        lifespan=lifespan
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)

    @app.get("/")
    async def root():
        """Root endpoint"""
        return {
            "service": app_settings.APP_TITLE,
            "version": app_settings.APP_VERSION,
            "status": "running",
            "docs": "/docs",
            "health": "/health"
        }

    @app.get("/health")
    async def health():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "storage": str(storage_config.root)
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        app,
        host=settings.SERVER_HOST,
        port=settings.SERVER_PORT,
        log_level=settings.LOG_LEVEL.lower()
    )
