"""folio-rag API layer: routes, schemas and middleware."""

from src.api.middleware import (
    ErrorHandlingMiddleware,
    RequestLoggingMiddleware,
    configure_cors,
)
from src.api.routes import router
from src.api.schemas import (
    ChunkView,
    ErrorResponse,
    HealthResponse,
    SearchRequest,
    SearchResultsResponse,
)

__all__ = [
    "ErrorHandlingMiddleware",
    "RequestLoggingMiddleware",
    "configure_cors",
    "router",
    "ChunkView",
    "ErrorResponse",
    "HealthResponse",
    "SearchRequest",
    "SearchResultsResponse",
]
