from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # App
    app_name: str = "threadrouter"
    debug: bool = False

    # Webhook verification
    slack_signing_secret: str = ""
    figma_webhook_passcode: str = ""
    notion_webhook_secret: str = ""  # Subscription verification token
    webhook_tolerance_seconds: int = 300  # Replay window (5 minutes)

    # Pipeline
    job_max_attempts: int = 3
    retry_base_delay: float = 1.0  # Seconds, doubled per attempt
    delivery_max_attempts: int = 3

    # Routing
    routing_gap_threshold: float = 0.5

    # AI classification (via gen_ai_hub proxy)
    openai_model: str = "gpt-4o"
    temperature: float = 0.0
    default_max_tasks: int = 5
    ai_cache_ttl_seconds: int = 3600
    ai_cache_max_entries: int = 1000

    # Mention resolution
    persist_unmapped_mentions: bool = True

    # Optional YAML file used to seed the in-memory store with flows
    flows_file: str = ""

    model_config = ConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
