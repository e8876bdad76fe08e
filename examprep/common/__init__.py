"""
Common Utilities

Shared infrastructure for the ExamPrep backend: logging, errors,
serialization, authorization and database access.
"""

from examprep.common.logger import app_logger, get_logger, configure_logger
from examprep.common.exceptions import (
    ExamPrepError,
    NotFoundError,
    ValidationError,
    InvariantError,
    ConflictError,
    ForbiddenError
)

__all__ = [
    'app_logger',
    'get_logger',
    'configure_logger',
    'ExamPrepError',
    'NotFoundError',
    'ValidationError',
    'InvariantError',
    'ConflictError',
    'ForbiddenError',
]
