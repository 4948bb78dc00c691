"""Lending, reservation and fine consistency engine for a multi-branch library."""
from library_engine.engine import LibraryEngine
from library_engine.errors import (
    Conflict,
    Ineligible,
    InvalidState,
    LibraryError,
    NotFound,
    ValidationError,
)

__all__ = [
    'LibraryEngine', 'LibraryError',
    'NotFound', 'InvalidState', 'Ineligible', 'Conflict', 'ValidationError',
]

__version__ = '1.0.0'
