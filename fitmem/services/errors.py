"""
Request-level exceptions raised by the coaching core.
"""

from contextlib import contextmanager

from ..utils.logging_config import get_logger

logger = get_logger(__name__)


class FitMemError(Exception):
    """Base exception for request-level failures."""
    pass


class ValidationError(FitMemError):
    """A required field is missing or malformed. Raised before any external call."""
    pass


class NotFoundError(FitMemError):
    """Unknown user or memory id."""
    pass


class UpstreamError(FitMemError):
    """An LLM or memory-store call failed. Not retried inside the core."""

    def __init__(self, operation: str, cause: Exception):
        self.operation = operation
        self.cause = cause
        super().__init__(f'{operation} failed: {cause}')


def require(value, field_name: str) -> None:
    """Raise ValidationError when a required string field is missing or blank."""
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f'{field_name} is required')


@contextmanager
def upstream_call(operation: str):
    """Wrap collaborator failures into UpstreamError labeled with `operation`.

    Request-level errors raised inside the block pass through unchanged.
    """
    try:
        yield
    except FitMemError:
        raise
    except Exception as e:
        logger.error(f'{operation} failed: {e}')
        raise UpstreamError(operation, e) from e
