"""Invocable processing functions.

Named handlers taking a JSON body, invoked by name like serverless
functions. Document processing registers ``process-document`` and
``kb-process-textfile`` here.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

import structlog

logger = structlog.get_logger(__name__)

FunctionHandler = Callable[[dict[str, Any]], dict[str, Any] | None]


class FunctionInvocationError(Exception):
    """Function is unknown or its handler raised."""

    pass


@dataclass
class FunctionResult:
    name: str
    data: dict[str, Any] = field(default_factory=dict)


class FunctionRegistry:
    def __init__(self) -> None:
        self._handlers: dict[str, FunctionHandler] = {}

    def register(self, name: str, handler: FunctionHandler) -> None:
        self._handlers[name] = handler
        logger.debug("functions.registered", name=name)

    def names(self) -> list[str]:
        return sorted(self._handlers)

    def invoke(self, name: str, body: dict[str, Any]) -> FunctionResult:
        """Run a function synchronously.

        Raises:
            FunctionInvocationError: If the function is unknown or fails
        """
        handler = self._handlers.get(name)
        if handler is None:
            raise FunctionInvocationError(f"Function '{name}' is not registered")

        logger.info("functions.invoked", name=name, body_keys=sorted(body))
        try:
            data = handler(body)
        except Exception as e:
            logger.error("functions.failed", name=name, error=str(e))
            raise FunctionInvocationError(f"{name}: {e}") from e
        return FunctionResult(name=name, data=data or {})


# Global instance
_registry: FunctionRegistry | None = None


def get_function_registry() -> FunctionRegistry:
    """Get the function registry with the document processors registered."""
    global _registry
    if _registry is None:
        from classroom.core.document_processing import register_processors

        _registry = FunctionRegistry()
        register_processors(_registry)
    return _registry


def reset_function_registry() -> None:
    global _registry
    _registry = None
