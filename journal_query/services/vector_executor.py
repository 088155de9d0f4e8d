import logging
from typing import Any, Dict, List, Optional, Sequence, Union

from journal_query.exceptions import ConnectivityError, EmbeddingError, QueryError
from journal_query.orchestration.plan_models import HybridSearchStep, TimeRange, VectorSearchStep
from journal_query.repositories.journal_repository import JournalRepository
from journal_query.services.embedding_service import EmbeddingService
from journal_query.services.step_results import StepOutcome

logger = logging.getLogger("vector_executor")


class VectorStepExecutor:
    """
    Runs semantic-similarity steps.

    Failures never escalate to the SQL fallback path: vector search is itself
    what the fallback ladder falls back to.
    """

    def __init__(self, repository: JournalRepository, embedding_service: EmbeddingService):
        self.repository = repository
        self.embedding_service = embedding_service

    async def run(self, step: Union[VectorSearchStep, HybridSearchStep], subject_id: str) -> StepOutcome:
        params = step.vector_search
        logger.info(f"Executing vector search: {params.query}")

        try:
            embedding = await self.embedding_service.embed(params.query)
            rows = await self.search(embedding, params.threshold, params.limit, subject_id, step.time_range)
        except (EmbeddingError, ConnectivityError, QueryError) as e:
            logger.error(f"Vector search failed: {e}")
            return StepOutcome(rows=[], source="vector", errors=[f"Vector search error: {e}"])

        logger.info(f"Vector search returned {len(rows)} rows")
        return StepOutcome(rows=rows, source="vector")

    async def search(
        self,
        embedding: Sequence[float],
        threshold: float,
        limit: int,
        subject_id: str,
        time_range: Optional[TimeRange] = None
    ) -> List[Dict[str, Any]]:
        """
        Call the bounded or unbounded search procedure depending on ``time_range``.

        Raises:
            ConnectivityError, QueryError: Propagated from the repository
        """
        if time_range is not None and time_range.is_bounded:
            bounds = time_range.as_params()
            logger.debug(f"Time-bounded search {bounds['start']} -> {bounds['end']} (threshold={threshold}, limit={limit})")
            return await self.repository.match_entries_with_date(
                embedding, threshold, limit, subject_id,
                start_date=bounds["start"],
                end_date=bounds["end"],
            )

        logger.debug(f"Unbounded search (threshold={threshold}, limit={limit})")
        return await self.repository.match_entries(embedding, threshold, limit, subject_id)
