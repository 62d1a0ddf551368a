from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # Database (Supabase Postgres)
    SUPABASE_DB_URL: str

    # Bearer token expected on job endpoints
    SERVICE_API_TOKEN: str | None = None

    ENCRYPTION_KEY: str | None = None

    # HubSpot app credentials
    HUBSPOT_CLIENT_ID: str | None = None
    HUBSPOT_CLIENT_SECRET: str | None = None
    HUBSPOT_API_BASE_URL: str = "https://api.hubapi.com"

    # Pinecone data plane
    PINECONE_API_KEY: str | None = None
    PINECONE_INDEX_NAME: str = "sales-copilot"
    PINECONE_INDEX_HOST: str | None = None
    PINECONE_API_VERSION: str = "2025-01"

    # LLM / embedding providers
    LLM_PROVIDER: str = "openai"
    OPENAI_API_KEY: str | None = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    OPENAI_EMBEDDING_MODEL: str = "text-embedding-3-large"
    ANTHROPIC_API_KEY: str | None = None
    ANTHROPIC_MODEL: str = "claude-3-5-sonnet-latest"
    GOOGLE_AI_API_KEY: str | None = None
    GOOGLE_AI_MODEL: str = "gemini-1.5-pro"
    LLM_TEMPERATURE: float = 0.2
    LLM_MAX_TOKENS: int = 1000
    LLM_TIMEOUT_SECONDS: float = 60.0

    # =================================================================
    # SYNC PACING - fixed sleeps between units of work
    # =================================================================
    CRM_PAGE_DELAY_SECONDS: float = 2.0
    CRM_ASSOCIATION_DELAY_SECONDS: float = 1.0
    TRAINING_DEAL_DELAY_SECONDS: float = 3.0
    TRAINING_TENANT_DELAY_SECONDS: float = 5.0
    EMBEDDING_BATCH_DELAY_SECONDS: float = 0.5

    # Batch sizes and caps
    TRAINING_PAGE_SIZE: int = 10
    TRAINING_MAX_RECORDS: int = 200
    TRAINING_WINDOW_DAYS: int = 90
    EMBEDDING_BATCH_SIZE: int = 10
    VECTOR_FETCH_BATCH_SIZE: int = 100
    VECTOR_UPSERT_BATCH_SIZE: int = 50

    # Time budget for one job invocation (None disables the check)
    JOB_TIME_BUDGET_SECONDS: float | None = 400.0
    JOB_TIME_MARGIN_SECONDS: float = 30.0

    # Scoring
    SCORING_TOP_K: int = 5
    SCORING_QUEUE_BATCH_SIZE: int = 20
    SCORING_STORE_VECTORS: bool = True

    # Scores per billing period by plan tier
    PLAN_SCORE_LIMITS: dict[str, int] = {
        "FREE": 50,
        "STARTER": 750,
        "GROWTH": 7500,
        "PRO": 3000,
    }

    # =================================================================
    # DATABASE POOL SETTINGS
    # =================================================================
    DB_POOL_MIN_SIZE: int = 2
    DB_POOL_MAX_SIZE: int = 8
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_MAX_IDLE: float = 600.0  # 10 minutes
    DB_POOL_MAX_LIFETIME: float = 3600.0  # 1 hour

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def namespace_for(self, tenant_id: str) -> str:
        """Vector namespace holding one tenant's records."""
        return f"hubspot-{tenant_id}"

    def plan_limit(self, plan_tier: str | None) -> int:
        tier = (plan_tier or "FREE").upper()
        return self.PLAN_SCORE_LIMITS.get(tier, self.PLAN_SCORE_LIMITS["FREE"])

    def get_db_pool_config(self) -> dict:
        """
        Get database pool configuration.
        Jobs run one tenant at a time, so the pool stays small.
        """
        config = {
            "min_size": self.DB_POOL_MIN_SIZE,
            "max_size": self.DB_POOL_MAX_SIZE,
            "timeout": self.DB_POOL_TIMEOUT,
            "max_idle": self.DB_POOL_MAX_IDLE,
            "max_lifetime": self.DB_POOL_MAX_LIFETIME,
        }

        if self.environment == "development":
            config.update({"min_size": 1, "max_size": 4, "timeout": 15.0})

        return config


settings = Settings()
