"""
Security module for log redaction.
"""
from journal_query.security.pii_redactor import (
    PIIRedactionFilter,
    redact_pii
)

__all__ = [
    'PIIRedactionFilter',
    'redact_pii'
]
