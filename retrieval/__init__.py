"""Retrieval layer: embeddings, vector store, token catalog and market data."""

from .embeddings import EmbeddingClient
from .vector_store import BaseVectorStore, LocalVectorStore, VectorHit, VectorRecord, chat_collection_name
from .token_catalog import TokenCatalog, TokenRecord, format_token_document, parse_token_document, index_token_catalog
from .market_data import MarketDataClient

__all__ = [
    "EmbeddingClient",
    "BaseVectorStore",
    "LocalVectorStore",
    "VectorHit",
    "VectorRecord",
    "chat_collection_name",
    "TokenCatalog",
    "TokenRecord",
    "format_token_document",
    "parse_token_document",
    "index_token_catalog",
    "MarketDataClient",
]
