# src/config/settings.py
from typing import Optional
from pydantic_settings import BaseSettings
from pathlib import Path

# Get project root (2 levels up from this file)
PROJECT_ROOT = Path(__file__).parent.parent.parent

class Settings(BaseSettings):
    # OpenAI (or any OpenAI-compatible gateway)
    openai_api_key: str
    openai_base_url: Optional[str] = None
    openai_embedding_model: str = "text-embedding-3-small"
    openai_llm_model: str = "gpt-4o-mini"
    embedding_dimension: int = 1536
    embedding_timeout: float = 30.0

    # Completion retry / rate limiting
    llm_max_retries: int = 3
    llm_retry_delay: float = 1.0
    llm_backoff_multiplier: float = 2.0
    llm_timeout: float = 15.0
    llm_temperature: float = 0.7
    llm_max_tokens: int = 1000
    max_concurrent_llm_calls: int = 5

    # SQL Server (feedback + classifications)
    sql_server_host: str
    sql_server_port: int = 1433
    sql_server_database: str
    sql_server_username: str
    sql_server_password: str

    # PostgreSQL (taxonomy vector index)
    postgres_host: str
    postgres_port: int = 5432
    postgres_database: str
    postgres_username: str
    postgres_password: str
    postgres_sslmode: str = "require"

    # Taxonomy matching
    match_threshold: float = 0.8

    # Prediction pipeline
    batch_size: int = 100
    worker_count: int = 5
    max_item_retries: int = 3
    item_retry_delay: float = 2.0

    # Insight aggregation
    top_insights_limit: int = 15
    lob_min_support: int = 5
    category_min_support: int = 3
    max_feedbacks_per_summary: int = 10
    top_feedback_limit: int = 5
    insight_batch_size: int = 10

    # Linear (issue tracker)
    linear_api_key: Optional[str] = None
    linear_team_id: Optional[str] = None
    linear_api_url: str = "https://api.linear.app/graphql"
    linear_page_size: int = 50
    linear_timeout: float = 10.0
    ticket_cache_ttl: float = 300.0

    class Config:
        env_file = str(PROJECT_ROOT / ".env")
        case_sensitive = False
