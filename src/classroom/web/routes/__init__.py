"""Route handlers for the Web API."""

from classroom.web.routes.health import router as health_router
from classroom.web.routes.gradebook import router as gradebook_router
from classroom.web.routes.assignments import router as assignments_router
from classroom.web.routes.knowledge_base import router as knowledge_base_router
from classroom.web.routes.generation import router as generation_router
from classroom.web.routes.progress import router as progress_router

__all__ = [
    "health_router",
    "gradebook_router",
    "assignments_router",
    "knowledge_base_router",
    "generation_router",
    "progress_router",
]
