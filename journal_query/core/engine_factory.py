"""
Wiring for a production PlanExecutor.

Builds the Supabase async client, the repository and the embedding service
from EngineConfig and the environment-loaded credentials, sharing one
semaphore between every outbound call.
"""
import asyncio
import logging
from typing import Optional

from supabase import AsyncClient, acreate_client

from journal_query.config import (
    EMBEDDING_MODEL,
    ENABLE_PII_REDACTION,
    LOG_LEVEL,
    OPENAI_API_KEY,
    SUPABASE_SERVICE_ROLE_KEY,
    SUPABASE_URL,
    EngineConfig,
)
from journal_query.logging_config import setup_logging
from journal_query.orchestration.plan_executor import PlanExecutor
from journal_query.repositories.journal_repository import JournalRepository
from journal_query.services.embedding_service import EmbeddingService

logger = logging.getLogger("engine_factory")


async def create_supabase_client(
    url: Optional[str] = None,
    service_key: Optional[str] = None
) -> AsyncClient:
    """Create the Supabase async client used for RPCs and table reads."""
    url = url or SUPABASE_URL
    service_key = service_key or SUPABASE_SERVICE_ROLE_KEY
    if not url or not service_key:
        raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be configured")

    try:
        client = await acreate_client(url, service_key)
        logger.info("Supabase client created")
        return client
    except Exception as e:
        logger.error(f"Failed to create Supabase client: {e}")
        raise


async def build_plan_executor(
    config: Optional[EngineConfig] = None,
    client: Optional[AsyncClient] = None,
    configure_logging: bool = False
) -> PlanExecutor:
    """
    Assemble a PlanExecutor with its collaborators.

    Args:
        config: Engine configuration; EngineConfig.from_env() when omitted
        client: Existing Supabase client to reuse
        configure_logging: Install the LOG_LEVEL / ENABLE_PII_REDACTION logging setup first

    Returns:
        Ready-to-use PlanExecutor
    """
    if configure_logging:
        setup_logging(log_level=LOG_LEVEL, enable_pii_redaction=ENABLE_PII_REDACTION)

    config = config or EngineConfig.from_env()
    client = client or await create_supabase_client()
    semaphore = asyncio.Semaphore(config.max_concurrent_calls)

    repository = JournalRepository(
        client,
        table_name=config.journal_table,
        timeout_seconds=config.rpc_timeout_seconds,
        semaphore=semaphore,
    )
    embedding_service = EmbeddingService(
        model=EMBEDDING_MODEL,
        api_key=OPENAI_API_KEY or None,
        timeout_seconds=config.embedding_timeout_seconds,
        semaphore=semaphore,
    )

    logger.info(
        f"Plan executor ready (max concurrent calls: {config.max_concurrent_calls}, "
        f"plan timeout: {config.plan_timeout_seconds or 'none'})"
    )
    return PlanExecutor(repository, embedding_service, config)
