"""
Service-boundary guards.

Services never leak backend or pydantic exceptions to their callers:
storage failures surface as ``GatewayUnavailable`` and model validation
failures as ``duofinance.errors.ValidationError``.
"""

from contextlib import contextmanager
from typing import Any, Iterator, TypeVar

import pydantic
import structlog

from duofinance import errors
from duofinance.services.storage import StorageError


logger = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT", bound=pydantic.BaseModel)


@contextmanager
def gateway_call(operation: str) -> Iterator[None]:
    """Translate storage exceptions raised inside the block."""
    try:
        yield
    except StorageError as e:
        logger.error("gateway_failed", operation=operation, error=str(e))
        raise errors.GatewayUnavailable(f"{operation} failed: {e}") from e


def build(model: type[ModelT], **data: Any) -> ModelT:
    """Construct a model, reporting bad input as a ValidationError."""
    try:
        return model(**data)
    except pydantic.ValidationError as e:
        raise errors.ValidationError(_describe(e)) from e


def rebuild(instance: ModelT, **changes: Any) -> ModelT:
    """Copy of ``instance`` with ``changes`` applied and re-validated."""
    return build(type(instance), **{**instance.model_dump(), **changes})


def _describe(error: pydantic.ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"])
        parts.append(f"{location}: {item['msg']}" if location else item["msg"])
    return "; ".join(parts)
