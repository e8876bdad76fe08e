"""
Database Module

Async engine/session management and the base repository types.
"""

from examprep.common.db.repository import BaseRepository, RepositoryError
from examprep.common.db.session import (
    initialize_database,
    close_database,
    get_engine,
    get_session_factory
)

__all__ = [
    'BaseRepository',
    'RepositoryError',
    'initialize_database',
    'close_database',
    'get_engine',
    'get_session_factory',
]
