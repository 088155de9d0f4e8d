"""
Fallback ladder for steps whose primary execution produced nothing usable.

The ladder is an ordered list of FallbackLevel strategies tried by a small
driver loop until one returns rows:

1. Time-constrained vector search at the step's own window, three
   progressively looser thresholds.
2. Time-range expansion: symmetric doubling, backward extension and fixed
   lookbacks, searched at the loosest threshold.
3. Unconstrained vector search with no date bound.
4. Baseline fetch of the subject's most recent entries.

Every level that relaxes the user's intent attaches provenance so the
consolidation step can phrase degraded results accordingly.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from journal_query.config import FallbackPolicy
from journal_query.exceptions import ConnectivityError, EmbeddingError, QueryError
from journal_query.orchestration.plan_models import TimeRange
from journal_query.repositories.journal_repository import JournalRepository
from journal_query.services.embedding_service import EmbeddingService
from journal_query.services.step_results import FallbackResult
from journal_query.services.vector_executor import VectorStepExecutor
from journal_query.utils.sanitization import extract_search_terms_from_sql

logger = logging.getLogger("fallback_engine")


class FallbackReason(str, Enum):
    NO_QUERY = "no_sql_query"
    VALIDATION_FAILED = "sql_validation_failed"
    SANITIZATION_FAILED = "sanitization_failed"
    NO_ROWS = "filtering_returned_no_rows"
    CONNECTIVITY = "connectivity_error"


@dataclass
class FallbackRequest:
    """Everything a level needs to know about the step being replaced."""
    subject_id: str
    reason: FallbackReason
    search_text: str
    primary_threshold: float
    time_range: Optional[TimeRange]
    embedding: Optional[List[float]]
    attempts: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def has_time_range(self) -> bool:
        return self.time_range is not None and self.time_range.is_bounded


@dataclass
class LevelResult:
    rows: List[Dict[str, Any]]
    provenance: Dict[str, Any]


def threshold_ladder(primary: float, step: float, attempts: int, floor: float) -> List[float]:
    """
    Non-increasing similarity thresholds starting at ``primary``, never below ``floor``.

    >>> threshold_ladder(0.2, 0.05, 3, 0.1)
    [0.2, 0.15, 0.1]
    """
    ladder: List[float] = []
    for index in range(attempts):
        threshold = round(max(primary - index * step, floor), 4)
        if not ladder or threshold < ladder[-1]:
            ladder.append(threshold)
    return ladder


def expand_time_ranges(
    time_range: TimeRange,
    policy: FallbackPolicy,
    now: datetime
) -> List[Tuple[str, TimeRange]]:
    """
    Wider candidate windows derived from ``time_range``, in the order they should be tried.

    A window with no start is already unbounded in the past; it has no
    meaningful widening short of dropping the constraint, so no candidates
    are produced for it.
    """
    if time_range.start is None:
        return []

    start = time_range.start
    end = time_range.end or now
    duration = end - start
    if duration <= timedelta(0):
        duration = timedelta(days=1)

    extra = duration * (policy.expansion_factor - 1)

    doubled_end = end + extra / 2
    if end <= now < doubled_end:
        doubled_end = now

    candidates: List[Tuple[str, datetime, datetime]] = [
        ("symmetric_doubling", start - extra / 2, doubled_end),
        ("backward_extension", start - extra, end),
    ]
    for days in policy.lookback_days:
        if duration < timedelta(days=days):
            candidates.append((f"lookback_{days}d", end - timedelta(days=days), end))

    seen = {(start, end)}
    expanded: List[Tuple[str, TimeRange]] = []
    for strategy, candidate_start, candidate_end in candidates:
        key = (candidate_start, candidate_end)
        if key in seen:
            continue
        seen.add(key)
        expanded.append((strategy, TimeRange(start=candidate_start, end=candidate_end)))
    return expanded


# ============================================================================
# LEVELS
# ============================================================================

class FallbackLevel:
    """One rung of the ladder."""
    name = "fallback_level"

    def applies(self, request: FallbackRequest) -> bool:
        return True

    async def attempt(self, request: FallbackRequest) -> Optional[LevelResult]:
        raise NotImplementedError

    def _record(self, request: FallbackRequest, **details: Any) -> None:
        request.attempts.append({"level": self.name, **details})


class TimeConstrainedVectorLevel(FallbackLevel):
    name = "time_constrained_vector"

    def __init__(self, vector_executor: VectorStepExecutor, policy: FallbackPolicy):
        self.vector_executor = vector_executor
        self.policy = policy

    def applies(self, request: FallbackRequest) -> bool:
        return request.embedding is not None and request.has_time_range

    async def attempt(self, request: FallbackRequest) -> Optional[LevelResult]:
        # Time filtering shrinks the candidate pool, so ask for more rows
        limit = self.policy.time_constrained_limit
        thresholds = threshold_ladder(
            request.primary_threshold,
            self.policy.threshold_step,
            self.policy.threshold_attempts,
            self.policy.time_constrained_floor,
        )
        for threshold in thresholds:
            rows = await self.vector_executor.search(
                request.embedding, threshold, limit, request.subject_id, request.time_range
            )
            self._record(request, threshold=threshold, rows=len(rows))
            if rows:
                return LevelResult(rows, {
                    "level": self.name,
                    "threshold": threshold,
                    "timeRange": request.time_range.as_params(),
                })
        return None


class TimeRangeExpansionLevel(FallbackLevel):
    name = "time_range_expansion"

    def __init__(
        self,
        vector_executor: VectorStepExecutor,
        policy: FallbackPolicy,
        clock: Callable[[], datetime]
    ):
        self.vector_executor = vector_executor
        self.policy = policy
        self.clock = clock

    def applies(self, request: FallbackRequest) -> bool:
        return request.embedding is not None and request.has_time_range

    async def attempt(self, request: FallbackRequest) -> Optional[LevelResult]:
        loosest = threshold_ladder(
            request.primary_threshold,
            self.policy.threshold_step,
            self.policy.threshold_attempts,
            self.policy.time_constrained_floor,
        )[-1]

        for strategy, candidate in expand_time_ranges(request.time_range, self.policy, self.clock()):
            rows = await self.vector_executor.search(
                request.embedding, loosest, self.policy.time_constrained_limit, request.subject_id, candidate
            )
            self._record(request, strategy=strategy, timeRange=candidate.as_params(), rows=len(rows))
            if rows:
                logger.info(f"Time range expansion '{strategy}' found {len(rows)} rows")
                return LevelResult(rows, {
                    "level": self.name,
                    "strategy": strategy,
                    "threshold": loosest,
                    "originalTimeRange": request.time_range.as_params(),
                    "expandedTimeRange": candidate.as_params(),
                    "warning": "Time range was widened beyond the requested period",
                })
        return None


class UnconstrainedVectorLevel(FallbackLevel):
    name = "unconstrained_vector"

    def __init__(self, vector_executor: VectorStepExecutor, policy: FallbackPolicy):
        self.vector_executor = vector_executor
        self.policy = policy

    def applies(self, request: FallbackRequest) -> bool:
        return request.embedding is not None

    async def attempt(self, request: FallbackRequest) -> Optional[LevelResult]:
        thresholds = threshold_ladder(
            request.primary_threshold,
            self.policy.threshold_step,
            self.policy.threshold_attempts,
            self.policy.unconstrained_floor,
        )
        for threshold in thresholds:
            rows = await self.vector_executor.search(
                request.embedding, threshold, self.policy.unconstrained_limit, request.subject_id
            )
            self._record(request, threshold=threshold, rows=len(rows))
            if rows:
                provenance: Dict[str, Any] = {"level": self.name, "threshold": threshold}
                if request.has_time_range:
                    provenance["originalTimeRange"] = request.time_range.as_params()
                    provenance["warning"] = "Time constraints were dropped; results may fall outside the requested period"
                return LevelResult(rows, provenance)
        return None


class BaselineFetchLevel(FallbackLevel):
    name = "baseline_fetch"

    def __init__(self, repository: JournalRepository, policy: FallbackPolicy):
        self.repository = repository
        self.policy = policy

    async def attempt(self, request: FallbackRequest) -> Optional[LevelResult]:
        rows = await self.repository.fetch_recent_entries(request.subject_id, self.policy.baseline_limit)
        self._record(request, rows=len(rows))
        if not rows:
            return None
        return LevelResult(rows, {
            "level": self.name,
            "warning": "No relevant entries matched; showing the most recent entries instead",
        })


# ============================================================================
# DRIVER
# ============================================================================

class FallbackEngine:
    """Walks the ladder until a level returns rows."""

    def __init__(
        self,
        vector_executor: VectorStepExecutor,
        repository: JournalRepository,
        embedding_service: EmbeddingService,
        policy: Optional[FallbackPolicy] = None,
        levels: Optional[Sequence[FallbackLevel]] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.embedding_service = embedding_service
        self.policy = policy or FallbackPolicy()
        clock = clock or (lambda: datetime.now(timezone.utc))
        self.levels: List[FallbackLevel] = list(levels) if levels is not None else [
            TimeConstrainedVectorLevel(vector_executor, self.policy),
            TimeRangeExpansionLevel(vector_executor, self.policy, clock),
            UnconstrainedVectorLevel(vector_executor, self.policy),
            BaselineFetchLevel(repository, self.policy),
        ]

    def search_text_for(self, step: Any) -> str:
        """Vector query, then step description, then SQL literals, then a generic default."""
        vector_search = getattr(step, "vector_search", None)
        if vector_search is not None and vector_search.query.strip():
            return vector_search.query
        if getattr(step, "description", None):
            return step.description
        extracted = extract_search_terms_from_sql(getattr(step, "sql_query", None) or "")
        return extracted or self.policy.default_search_text

    def primary_threshold_for(self, step: Any) -> float:
        vector_search = getattr(step, "vector_search", None)
        if vector_search is not None:
            return vector_search.threshold
        return self.policy.primary_threshold

    async def run(self, step: Any, subject_id: str, reason: FallbackReason) -> FallbackResult:
        """
        Replace a failed or empty step with the best rows the ladder can find.

        Never raises for store or embedding failures; they are recorded in
        ``FallbackResult.errors`` and the next level is tried.
        """
        errors: List[str] = []
        search_text = self.search_text_for(step)
        logger.info(f"Fallback triggered ({reason.value}); search text: {search_text}")

        embedding: Optional[List[float]] = None
        try:
            embedding = await self.embedding_service.embed(search_text)
        except EmbeddingError as e:
            logger.error(f"Fallback embedding failed, skipping semantic levels: {e}")
            errors.append(str(e))

        request = FallbackRequest(
            subject_id=subject_id,
            reason=reason,
            search_text=search_text,
            primary_threshold=self.primary_threshold_for(step),
            time_range=getattr(step, "time_range", None),
            embedding=embedding,
        )

        for level in self.levels:
            if not level.applies(request):
                continue
            try:
                result = await level.attempt(request)
            except (ConnectivityError, QueryError) as e:
                logger.error(f"Fallback level {level.name} failed: {e}")
                errors.append(f"{level.name}: {e}")
                continue

            if result is not None:
                logger.info(f"Fallback level {level.name} produced {len(result.rows)} rows")
                provenance = {"reason": reason.value, **result.provenance}
                return FallbackResult(rows=result.rows, level=level.name, provenance=[provenance], errors=errors)

        logger.warning(f"Fallback ladder exhausted without results ({len(request.attempts)} attempts)")
        return FallbackResult(
            rows=[],
            provenance=[{"reason": reason.value, "level": None, "warning": "Fallback ladder found no entries"}],
            errors=errors,
        )
