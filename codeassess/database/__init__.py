"""
Database Module

This module provides the declarative base and the ORM models of the
assessment schema.
"""

from codeassess.database.base import Base, ModelBase, metadata

__all__ = ['Base', 'ModelBase', 'metadata']
