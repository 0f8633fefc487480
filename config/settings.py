"""Application settings."""

import os
from typing import Optional
from pydantic import BaseModel


class Settings(BaseModel):
    """Application configuration settings."""

    # LLM Provider settings
    llm_provider: str = "openai"  # "openai" or "anthropic"
    llm_model: Optional[str] = None  # Override default model (gpt-4.1-nano or claude)

    # API Keys
    openai_api_key: Optional[str] = None
    anthropic_api_key: Optional[str] = None
    market_data_api_key: Optional[str] = None

    # Persistence
    db_path: str = "data/conversations.db"

    # Vector store and token catalog
    vector_store_path: str = "data/vector_store.pkl"
    embedding_model: str = "text-embedding-3-small"
    token_collection: str = "token_resolution"
    token_catalog_path: str = "data/tokens.csv"

    # Domain data API
    market_data_base_url: str = "https://api.vybenetwork.xyz"
    market_data_timeout: int = 10

    # Conversation window
    recent_window_size: int = 6
    reindex_every: int = 10

    # Context window trimming
    context_window_tokens: Optional[int] = None  # None uses the model's own window
    trim_floor_chars: int = 100
    trim_safety_margin: int = 50

    # Retries and deadlines
    retry_max_attempts: int = 3
    retry_base_delay: float = 1.0
    turn_timeout: float = 120.0

    # Logging
    verbose: bool = False

    def __init__(self, **data):
        # Auto-load API keys from environment if not provided
        if data.get("openai_api_key") is None:
            data["openai_api_key"] = os.environ.get("OPENAI_API_KEY")

        if data.get("anthropic_api_key") is None:
            data["anthropic_api_key"] = os.environ.get("ANTHROPIC_API_KEY")

        if data.get("market_data_api_key") is None:
            data["market_data_api_key"] = os.environ.get("MARKET_DATA_API_KEY")

        if data.get("llm_model") is None and os.environ.get("DEFAULT_AI_MODEL"):
            data["llm_model"] = os.environ["DEFAULT_AI_MODEL"]

        super().__init__(**data)

    def get_llm_api_key(self) -> Optional[str]:
        """Get the API key for the configured LLM provider."""
        if self.llm_provider == "openai":
            return self.openai_api_key
        elif self.llm_provider == "anthropic":
            return self.anthropic_api_key
        return None
