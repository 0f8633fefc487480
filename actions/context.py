"""Per-turn dependencies handed to action handlers."""

from typing import Optional

from pydantic import BaseModel, ConfigDict

from config.settings import Settings
from llm.base_client import BaseLLMClient
from memory.sqlite_store import SQLiteConversationStore
from retrieval.market_data import MarketDataClient
from retrieval.token_catalog import TokenCatalog
from retrieval.vector_store import BaseVectorStore


class ActionContext(BaseModel):
    """Services and identity available to every handler for one turn."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    conversation_id: str
    user_id: str
    settings: Settings
    store: SQLiteConversationStore
    llm_client: Optional[BaseLLMClient] = None
    vector_store: Optional[BaseVectorStore] = None
    market_data: Optional[MarketDataClient] = None
    token_catalog: Optional[TokenCatalog] = None
