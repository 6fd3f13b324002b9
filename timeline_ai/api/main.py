"""Timeline AI API - orchestration core service.

Exposes the orchestration core over HTTP:
- Model catalog and availability
- Chat dispatch (cached, with retry and fallback) and streaming
- Editing workflows
- Batch clip operations
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from timeline_ai import __version__
from timeline_ai.api.dependencies import Services, build_services
from timeline_ai.api.routes import batch, chat, models, workflows

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "*").split(",")


def create_app(services: Optional[Services] = None) -> FastAPI:
    """Build the FastAPI app.

    Services are constructed in the lifespan unless given explicitly.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Building services...")
        app.state.services = services or build_services()
        logger.info("Timeline AI API ready")
        yield
        logger.info("Shutting down Timeline AI API")
        app.state.services.provider_router.clear_cache()

    app = FastAPI(
        title="Timeline AI API",
        description="""
## Orchestration Core

- **Models**: catalog of cloud and local chat models
- **Chat**: resilient dispatch with caching, retry and fallback; streaming
- **Workflows**: automated editing pipelines over the native media bridge
- **Batch**: concurrency-bounded clip operations with progress tracking

### Key Endpoints

- `GET /v1/models` - List usable models
- `POST /v1/chat` - Dispatch a chat request
- `POST /v1/workflows/run` - Run an editing workflow
- `POST /v1/batch` - Start a batch job
""",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(models.router, prefix="/v1")
    app.include_router(chat.router, prefix="/v1")
    app.include_router(workflows.router, prefix="/v1")
    app.include_router(batch.router, prefix="/v1")

    @app.get("/")
    async def root():
        """Root endpoint with API info."""
        return {
            "service": "Timeline AI API",
            "version": __version__,
            "docs": "/docs",
            "endpoints": {
                "models": "/v1/models",
                "chat": "/v1/chat",
                "cache": "/v1/cache/stats",
                "workflows": "/v1/workflows",
                "batch": "/v1/batch",
            },
        }

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        current: Services = app.state.services
        return {
            "status": "healthy",
            "models_loaded": current.provider_router.catalog.count,
            "workflows_loaded": len(current.workflow_executor.get_available_workflows()),
            "active_workflows": len(current.workflow_executor.get_active_workflows()),
            "cache": current.provider_router.cache_stats(),
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "timeline_ai.api.main:app",
        host="0.0.0.0",
        port=int(os.environ.get("PORT", "8001")),
        reload=True,
    )
