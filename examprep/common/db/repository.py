"""
Repository Base Module

This module provides the base class and error type shared by the
persistence adapters.
"""

import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)


class RepositoryError(Exception):
    """
    Raised when the underlying store fails.

    This is an infrastructure error, not one of the domain errors; services
    let it propagate unchanged.
    """

    def __init__(self, message: str, original_exception: Optional[Exception] = None):
        super().__init__(message)
        self.message = message
        self.original_exception = original_exception


class BaseRepository:
    """
    Common base for repository adapters.

    Holds the entity type name used in log lines and error messages.
    """

    def __init__(self, entity_type: str):
        self.entity_type = entity_type

    def _wrap(self, action: str, entity_id: Any, error: Exception) -> RepositoryError:
        logger.error(f"Database error during {action} of {self.entity_type} {entity_id}: {error}")
        return RepositoryError(
            f"Database error during {action} of {self.entity_type} {entity_id}",
            original_exception=error
        )
