"""HTTP client for the classroom API."""

from classroom.client.http_client import (
    BackendConnectionError,
    BackendError,
    BackendResponseError,
    ClassroomClient,
)

__all__ = [
    "BackendConnectionError",
    "BackendError",
    "BackendResponseError",
    "ClassroomClient",
]
