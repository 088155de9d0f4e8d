import os
from typing import Optional, Tuple
from dotenv import load_dotenv
from pydantic import BaseModel, Field


def load_environment_config():
    """
    Load environment-specific configuration based on APP_ENV variable.

    Environments:
    - production: Uses .env.production
    - sit: Uses .env.sit
    - test: Uses .env.test
    - development: Uses .env (default)
    """
    env = os.getenv('APP_ENV', 'development').lower()

    env_files = {
        'production': '.env.production',
        'sit': '.env.sit',
        'test': '.env.test',
        'development': '.env',
    }

    env_file = env_files.get(env, '.env')

    if os.path.exists(env_file):
        load_dotenv(env_file)
        print(f"🔧 Loaded configuration from: {env_file}")
    else:
        load_dotenv()
        if env not in ('development', 'test'):
            print(f"⚠️  Environment file {env_file} not found, using default .env")


def _optional_float(name: str) -> Optional[float]:
    raw = os.getenv(name, "").strip()
    return float(raw) if raw else None


load_environment_config()


# AWS Secrets Manager integration (conditional)
USE_SECRETS_MANAGER: bool = os.getenv('USE_SECRETS_MANAGER', 'false').lower() == 'true'

if USE_SECRETS_MANAGER:
    try:
        from journal_query.services.aws_secrets import (
            get_openai_api_key,
            get_secrets_manager,
            get_supabase_service_key,
        )

        secrets_manager = get_secrets_manager()

        if secrets_manager.available:
            OPENAI_API_KEY = get_openai_api_key(os.getenv("OPENAI_API_KEY", ""))
            SUPABASE_SERVICE_ROLE_KEY = get_supabase_service_key(os.getenv("SUPABASE_SERVICE_ROLE_KEY", ""))
            print(f"🔐 AWS Secrets Manager: Connected - Using secure secrets from region {secrets_manager.region_name}")
        else:
            OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
            SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")
            print("⚠️  AWS Secrets Manager: Unavailable - Using environment variables")

    except Exception as e:
        print(f"⚠️  AWS Secrets Manager initialization failed: {e} - Using environment variables")
        OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
        SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")
else:
    OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
    SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")

SUPABASE_URL = os.getenv("SUPABASE_URL", "")

# Embeddings
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")

# Per-call timeouts and outbound concurrency
RPC_TIMEOUT_SECONDS = float(os.getenv("RPC_TIMEOUT_SECONDS", "10"))
EMBEDDING_TIMEOUT_SECONDS = float(os.getenv("EMBEDDING_TIMEOUT_SECONDS", "15"))
MAX_CONCURRENT_CALLS = int(os.getenv("MAX_CONCURRENT_CALLS", "8"))

# Unset means no plan-wide deadline
PLAN_TIMEOUT_SECONDS = _optional_float("PLAN_TIMEOUT_SECONDS")

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
ENABLE_PII_REDACTION = os.getenv("ENABLE_PII_REDACTION", "true").lower() == "true"

# Data store names
JOURNAL_ENTRIES_TABLE = os.getenv("JOURNAL_ENTRIES_TABLE", "Journal Entries")


class FallbackPolicy(BaseModel):
    """
    Tunables for the fallback ladder.

    The expansion windows and threshold steps were chosen empirically; they
    are policy, not invariants.
    """
    primary_threshold: float = Field(default=0.2, gt=0, le=1)
    threshold_step: float = Field(default=0.05, ge=0)
    threshold_attempts: int = Field(default=3, ge=1)
    time_constrained_floor: float = Field(default=0.1, gt=0, le=1)
    unconstrained_floor: float = Field(default=0.05, gt=0, le=1)
    time_constrained_limit: int = Field(default=30, gt=0)
    unconstrained_limit: int = Field(default=15, gt=0)
    baseline_limit: int = Field(default=10, gt=0)
    expansion_factor: float = Field(default=2.0, gt=1)
    lookback_days: Tuple[int, ...] = (30, 90, 180)
    default_search_text: str = "personal thoughts feelings experiences"


class EngineConfig(BaseModel):
    """Explicit configuration handed to the engine at construction time."""
    rpc_timeout_seconds: float = Field(default=10.0, gt=0)
    embedding_timeout_seconds: float = Field(default=15.0, gt=0)
    max_concurrent_calls: int = Field(default=8, ge=1)
    plan_timeout_seconds: Optional[float] = Field(default=None, gt=0)
    journal_table: str = "Journal Entries"
    default_timezone: str = "UTC"
    fallback: FallbackPolicy = Field(default_factory=FallbackPolicy)

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Build a config from the module-level settings loaded above."""
        return cls(
            rpc_timeout_seconds=RPC_TIMEOUT_SECONDS,
            embedding_timeout_seconds=EMBEDDING_TIMEOUT_SECONDS,
            max_concurrent_calls=MAX_CONCURRENT_CALLS,
            plan_timeout_seconds=PLAN_TIMEOUT_SECONDS,
            journal_table=JOURNAL_ENTRIES_TABLE,
        )
