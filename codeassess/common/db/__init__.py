"""
Database Module

This package provides the async engine and session factory for the
relational assessment store.
"""

from codeassess.common.db.session import (
    create_engine,
    create_session_factory,
    get_engine_kwargs,
)

__all__ = [
    'create_engine',
    'create_session_factory',
    'get_engine_kwargs',
]
