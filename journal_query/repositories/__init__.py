"""
Repositories package for data access layer.
"""

from journal_query.repositories.journal_repository import (
    JournalRepository,
    is_connectivity_message
)

__all__ = [
    'JournalRepository',
    'is_connectivity_message'
]
