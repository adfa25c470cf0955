"""FastAPI application factory.

Main entry point for the classroom Web API.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from classroom.backend.functions import get_function_registry
from classroom.db.database import get_db_path, init_db
from classroom.web.routes import (
    assignments_router,
    generation_router,
    gradebook_router,
    health_router,
    knowledge_base_router,
    progress_router,
)

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Lifespan context manager for startup/shutdown events."""
    init_db(get_db_path())
    functions = get_function_registry()
    logger.info(
        "api_startup",
        db_path=str(get_db_path().absolute()),
        functions=functions.names(),
    )
    yield


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI app instance
    """
    app = FastAPI(
        title="Classroom API",
        description="Gradebook, knowledge base and content generation API",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router)
    app.include_router(gradebook_router)
    app.include_router(assignments_router)
    app.include_router(knowledge_base_router)
    app.include_router(generation_router)
    app.include_router(progress_router)

    return app


# Default app instance for uvicorn
app = create_app()
