from dataclasses import dataclass, field
from datetime import datetime


@dataclass(slots=True)
class AIConfig:
    provider: str
    model: str
    temperature: float
    max_tokens: int
    scoring_prompt: str | None = None


@dataclass(slots=True)
class TenantAccount:
    portal_id: str
    encrypted_access_token: bytes
    encrypted_refresh_token: bytes
    expires_at: datetime | None = None
    status: str = "active"
    ai_config: dict = field(default_factory=dict)
    last_training_date: datetime | None = None


@dataclass(slots=True)
class Subscription:
    plan_tier: str
    current_period_start: datetime
    current_period_end: datetime
