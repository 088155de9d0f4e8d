"""
Pytest configuration file.

This file is automatically loaded by pytest before any tests run.
It sets up the test environment configuration and the shared store and
embedding doubles.
"""
import os
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

# Set APP_ENV to test before any other imports
os.environ['APP_ENV'] = 'test'
os.environ['USE_SECRETS_MANAGER'] = 'false'

# Add the project root to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))


SUBJECT_ID = "1e7caad7-180d-439c-abd4-2f0d45256f68"


@pytest.fixture
def subject_id():
    return SUBJECT_ID


@pytest.fixture
def mock_repository():
    """JournalRepository double; every store call is an AsyncMock returning no rows."""
    repository = MagicMock()
    repository.execute_dynamic_query = AsyncMock(return_value=[])
    repository.match_entries = AsyncMock(return_value=[])
    repository.match_entries_with_date = AsyncMock(return_value=[])
    repository.fetch_recent_entries = AsyncMock(return_value=[])
    repository.count_entries = AsyncMock(return_value=0)
    return repository


@pytest.fixture
def mock_embedding_service():
    service = MagicMock()
    service.embed = AsyncMock(return_value=[0.1] * 8)
    return service


@pytest.fixture
def journal_rows():
    """Journal entries as returned by the search procedures."""
    return [
        {
            "id": 101,
            "content": "Felt anxious before the review but the walk afterwards helped.",
            "created_at": "2024-06-03T08:15:00+00:00",
            "similarity": 0.42,
            "themes": ["work", "exercise"],
            "emotions": {"anxiety": 0.7, "relief": 0.4},
        },
        {
            "id": 102,
            "content": "Quiet evening, read for a while.",
            "created_at": "2024-06-02T21:40:00+00:00",
            "similarity": 0.31,
            "themes": ["rest"],
            "emotions": {"calm": 0.8},
        },
    ]
