"""Shared helpers for the API routers.

Routers import from here instead of from ``main`` so that the application
module can be imported without side effects in tests.
"""

import logging

logger = logging.getLogger(__name__)


def _safe_error(operation: str, e: Exception) -> str:
    """Log the full exception but return a safe message without internal details.

    This prevents leaking stack traces, file paths, or template internals
    to API consumers while preserving full diagnostics in server logs.
    """
    logger.exception("Error during %s", operation)
    return f"{operation} failed. Please try again or contact support."
