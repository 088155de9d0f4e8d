"""
Tests for engine wiring.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock

import journal_query.core.engine_factory as engine_factory
from journal_query.config import EngineConfig
from journal_query.orchestration.plan_executor import PlanExecutor


@pytest.fixture
def mock_acreate_client(mocker):
    client = MagicMock(name="AsyncClient")
    return mocker.patch.object(engine_factory, "acreate_client", AsyncMock(return_value=client))


class TestCreateSupabaseClient:

    @pytest.mark.asyncio
    async def test_creates_client(self, mock_acreate_client):
        client = await engine_factory.create_supabase_client("https://db.example.supabase.co", "service-key")

        assert client is mock_acreate_client.return_value
        mock_acreate_client.assert_awaited_once_with("https://db.example.supabase.co", "service-key")

    @pytest.mark.asyncio
    async def test_requires_url_and_key(self, monkeypatch, mock_acreate_client):
        monkeypatch.setattr(engine_factory, "SUPABASE_URL", "")
        monkeypatch.setattr(engine_factory, "SUPABASE_SERVICE_ROLE_KEY", "")

        with pytest.raises(ValueError, match="SUPABASE_URL"):
            await engine_factory.create_supabase_client()

        mock_acreate_client.assert_not_called()

    @pytest.mark.asyncio
    async def test_client_errors_propagate(self, mock_acreate_client):
        mock_acreate_client.side_effect = RuntimeError("bad url")

        with pytest.raises(RuntimeError):
            await engine_factory.create_supabase_client("https://x", "key")


class TestBuildPlanExecutor:
    """Test collaborator wiring."""

    @pytest.fixture(autouse=True)
    def openai_key(self, monkeypatch):
        monkeypatch.setattr(engine_factory, "OPENAI_API_KEY", "sk-test-key")

    @pytest.mark.asyncio
    async def test_shared_semaphore_and_config(self):
        client = MagicMock()
        config = EngineConfig(
            rpc_timeout_seconds=3.0,
            embedding_timeout_seconds=4.0,
            max_concurrent_calls=2,
            journal_table="journal_entries_v2",
        )

        executor = await engine_factory.build_plan_executor(config, client=client)

        assert isinstance(executor, PlanExecutor)
        assert executor.config is config
        repository = executor.repository
        embedding_service = executor.vector_executor.embedding_service
        assert repository.client is client
        assert repository.table_name == "journal_entries_v2"
        assert repository.timeout_seconds == 3.0
        assert embedding_service.timeout_seconds == 4.0
        assert repository._semaphore is embedding_service._semaphore
        assert repository._semaphore._value == 2

    @pytest.mark.asyncio
    async def test_creates_client_when_missing(self, monkeypatch, mock_acreate_client):
        monkeypatch.setattr(engine_factory, "SUPABASE_URL", "https://db.example.supabase.co")
        monkeypatch.setattr(engine_factory, "SUPABASE_SERVICE_ROLE_KEY", "service-key")

        executor = await engine_factory.build_plan_executor(EngineConfig())

        assert executor.repository.client is mock_acreate_client.return_value

    @pytest.mark.asyncio
    async def test_configure_logging(self, mocker):
        setup = mocker.patch.object(engine_factory, "setup_logging")

        await engine_factory.build_plan_executor(EngineConfig(), client=MagicMock(), configure_logging=True)

        setup.assert_called_once_with(
            log_level=engine_factory.LOG_LEVEL,
            enable_pii_redaction=engine_factory.ENABLE_PII_REDACTION,
        )
