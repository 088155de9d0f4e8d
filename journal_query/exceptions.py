"""
Error taxonomy for the query plan execution engine.

Only PlanValidationError is meant to reach the caller of the engine. The
remaining errors are raised by collaborators (repository, embedding service,
sanitization) and are converted by the step executors into fallback
attempts or recorded error strings.
"""


class JournalQueryError(Exception):
    """Base class for all engine errors."""


class PlanValidationError(JournalQueryError):
    """The plan is structurally invalid (unknown step type, bad dependency, cycle)."""


class SanitizationError(JournalQueryError):
    """The subject identifier is not a valid identity token, or a query failed safety checks."""


class ConnectivityError(JournalQueryError):
    """A remote call timed out or could not reach the data store."""


class QueryError(JournalQueryError):
    """The data store rejected the query (syntax error, type mismatch, ...)."""


class EmbeddingError(JournalQueryError):
    """The embedding service could not produce a vector for the search text."""
