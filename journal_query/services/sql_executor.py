"""
SQL step execution.

Planner SQL is cleaned, validated as a read-only journal query, has its
subject placeholder substituted with the validated identity token, and is
sent to the ``execute_dynamic_query`` procedure. Steps that cannot run, and
filtering steps that come back empty, are handed to the fallback ladder.
"""
import logging
from typing import Any, Dict, List, Optional, Union

from journal_query.exceptions import ConnectivityError, QueryError, SanitizationError
from journal_query.orchestration.plan_models import HybridSearchStep, SqlAnalysisStep
from journal_query.repositories.journal_repository import JournalRepository
from journal_query.services.fallback_engine import FallbackEngine, FallbackReason
from journal_query.services.step_results import StepOutcome
from journal_query.utils.sanitization import (
    sanitize_identity_in_query,
    strip_statement_terminators,
    validate_sql_query,
)

logger = logging.getLogger("sql_executor")

AGGREGATE_KEY_TOKENS = {"count", "total", "avg", "average", "percentage", "percent", "sum", "min", "max", "score"}


def detect_sql_query_type(rows: List[Dict[str, Any]]) -> str:
    """
    Infer the query type of a step that did not declare one.

    A first row with an aggregate-shaped column (``entry_count``, ``avg_score``,
    ``total`` ...) means ``analysis``; anything else, including no rows, is
    treated as ``filtering``.
    """
    if not rows or not isinstance(rows[0], dict):
        return "filtering"

    for key in rows[0]:
        tokens = str(key).lower().split("_")
        if any(token in AGGREGATE_KEY_TOKENS for token in tokens):
            return "analysis"
    return "filtering"


class SqlStepExecutor:
    """Executes the SQL part of sql_analysis and hybrid_search steps."""

    def __init__(
        self,
        repository: JournalRepository,
        fallback_engine: FallbackEngine,
        user_timezone: str = "UTC"
    ):
        self.repository = repository
        self.fallback_engine = fallback_engine
        self.user_timezone = user_timezone

    async def run(
        self,
        step: Union[SqlAnalysisStep, HybridSearchStep],
        subject_id: str,
        user_timezone: Optional[str] = None
    ) -> StepOutcome:
        """
        Execute one SQL-bearing step.

        Args:
            step: The analysis step
            subject_id: Identity token of the journal owner
            user_timezone: Timezone passed to the dynamic query procedure

        Returns:
            StepOutcome with rows, errors, effective query type and fallback info.
            Store failures never raise.
        """
        query = strip_statement_terminators(step.sql_query or "")
        if not query:
            logger.warning("SQL step has no query, using vector fallback")
            return await self._fallback(step, subject_id, FallbackReason.NO_QUERY, [])

        is_valid, validation_error = validate_sql_query(query, has_time_range=step.time_range is not None)
        if not is_valid:
            logger.error(f"SQL validation failed: {validation_error}")
            return await self._fallback(
                step, subject_id, FallbackReason.VALIDATION_FAILED,
                [f"SQL validation failed: {validation_error}"]
            )

        try:
            query = sanitize_identity_in_query(query, subject_id)
        except SanitizationError as e:
            logger.error(f"SQL sanitization failed: {e}")
            return await self._fallback(
                step, subject_id, FallbackReason.SANITIZATION_FAILED,
                [f"SQL sanitization failed: {e}"]
            )

        logger.info(f"Executing SQL ({step.sql_query_type or 'auto-detect'}): {query[:200]}")

        try:
            rows = await self.repository.execute_dynamic_query(query, user_timezone or self.user_timezone)
        except ConnectivityError as e:
            logger.error(f"SQL connectivity failure, using vector fallback: {e}")
            return await self._fallback(
                step, subject_id, FallbackReason.CONNECTIVITY,
                [f"SQL connectivity error: {e}"]
            )
        except QueryError as e:
            logger.error(f"SQL query failed: {e}")
            return StepOutcome(
                rows=[], source="sql",
                errors=[f"SQL query error: {e}"],
                sql_query_type=step.sql_query_type,
            )

        sql_query_type = step.sql_query_type
        if sql_query_type is None:
            sql_query_type = detect_sql_query_type(rows)
            logger.info(f"Auto-detected SQL query type: {sql_query_type}")

        if sql_query_type == "filtering" and not rows:
            logger.info("Filtering query returned no rows, using vector fallback")
            return await self._fallback(step, subject_id, FallbackReason.NO_ROWS, [])

        logger.info(f"SQL step returned {len(rows)} rows")
        return StepOutcome(rows=rows, source="sql", sql_query_type=sql_query_type)

    async def _fallback(
        self,
        step: Union[SqlAnalysisStep, HybridSearchStep],
        subject_id: str,
        reason: FallbackReason,
        errors: List[str]
    ) -> StepOutcome:
        result = await self.fallback_engine.run(step, subject_id, reason)
        # Fallback rows are journal entries, so they are summarised as filtered entries
        return StepOutcome(
            rows=result.rows,
            source="sql",
            errors=errors + result.errors,
            sql_query_type="filtering",
            fallback=result,
        )
