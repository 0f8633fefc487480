"""Local token catalog: CSV loading, document text format, and indexing."""

import logging
import re
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd
import yaml
from pydantic import BaseModel, Field

from .vector_store import BaseVectorStore, VectorRecord

logger = logging.getLogger(__name__)

TOKEN_NAME_PATTERN = re.compile(r"Token Name: ([^.]+)\.")
SYMBOL_PATTERN = re.compile(r"Symbol: ([^.]+)\.")
ADDRESS_PATTERN = re.compile(r"Address: ([^.]+)\.")


class TokenRecord(BaseModel):
    """A token known to the local catalog."""
    address: str
    name: str
    symbol: str
    tags: List[str] = Field(default_factory=list)
    coingecko_id: Optional[str] = None

    def to_candidate(self) -> Dict[str, Optional[str]]:
        return {
            "token_name": self.name,
            "token_symbol": self.symbol,
            "token_address": self.address,
        }


def format_token_document(token: TokenRecord) -> str:
    """Text indexed for a token; `parse_token_document` reads it back."""
    tags = ", ".join(token.tags) if token.tags else "none"
    return (
        f"Token Name: {token.name}. Symbol: {token.symbol}. Address: {token.address}. "
        f"Tags: {tags}. CoinGecko ID: {token.coingecko_id or 'unknown'}."
    )


def parse_token_document(document: str) -> Dict[str, Optional[str]]:
    """
    Extract name, symbol and address from an indexed token document.

    Missing name/symbol become "Unknown"; a missing address becomes None.
    """
    name = TOKEN_NAME_PATTERN.search(document or "")
    symbol = SYMBOL_PATTERN.search(document or "")
    address = ADDRESS_PATTERN.search(document or "")
    return {
        "name": name.group(1).strip() if name else "Unknown",
        "symbol": symbol.group(1).strip() if symbol else "Unknown",
        "address": address.group(1).strip() if address else None,
    }


class TokenCatalog:
    """Tokens loaded from a CSV file with pandas."""

    def __init__(self, tokens: Optional[List[TokenRecord]] = None):
        self.tokens: List[TokenRecord] = tokens or []

    @classmethod
    def from_csv(cls, csv_path: str, columns_config_path: Optional[str] = None) -> "TokenCatalog":
        """
        Load tokens from a CSV file.

        Args:
            csv_path: Path to the catalog CSV
            columns_config_path: Path to column alias config (default: config/token_columns.yaml)

        Returns:
            TokenCatalog (empty if the file does not exist)
        """
        if not Path(csv_path).exists():
            logger.warning(f"Token catalog not found at {csv_path}; substring fallback disabled")
            return cls()

        if columns_config_path is None:
            columns_config_path = Path(__file__).parent.parent / "config" / "token_columns.yaml"
        with open(columns_config_path, "r") as f:
            aliases = yaml.safe_load(f)

        df = pd.read_csv(csv_path, dtype=str, keep_default_na=False)
        columns = {}
        for field, names in aliases.items():
            found = next((n for n in names if n in df.columns), None)
            if found:
                columns[field] = found

        missing = {"address", "name", "symbol"} - set(columns)
        if missing:
            raise ValueError(f"Token catalog {csv_path} is missing columns: {', '.join(sorted(missing))}")

        df = df.rename(columns={v: k for k, v in columns.items()})
        df = df[(df["name"].str.strip() != "") & (df["symbol"].str.strip() != "")]

        tokens = []
        for row in df.to_dict(orient="records"):
            raw_tags = row.get("tags", "") or ""
            tokens.append(TokenRecord(
                address=row["address"].strip(),
                name=row["name"].strip(),
                symbol=row["symbol"].strip(),
                tags=[t.strip() for t in re.split(r"[,|;]", raw_tags) if t.strip()],
                coingecko_id=(row.get("coingecko_id") or "").strip() or None,
            ))

        logger.info(f"Loaded {len(tokens)} tokens from {csv_path}")
        return cls(tokens)

    def __len__(self) -> int:
        return len(self.tokens)

    def find_mentioned(self, text: str, limit: int = 5, exclude_addresses=()) -> List[TokenRecord]:
        """Tokens whose symbol or name appears in the text (case-insensitive)."""
        lowered = (text or "").lower()
        excluded = set(exclude_addresses)
        matches = []
        for token in self.tokens:
            if token.address in excluded:
                continue
            if token.symbol.lower() in lowered or token.name.lower() in lowered:
                matches.append(token)
                if len(matches) >= limit:
                    break
        return matches


async def index_token_catalog(
    store: BaseVectorStore,
    catalog: TokenCatalog,
    collection: str = "token_resolution"
) -> int:
    """Upsert one document per token into the token-identity collection."""
    await store.get_or_create_collection(collection, {"description": "Token identity resolution"})
    records = [
        VectorRecord(
            id=token.address,
            text=format_token_document(token),
            metadata={"name": token.name, "symbol": token.symbol, "address": token.address},
        )
        for token in catalog.tokens
    ]
    count = await store.upsert_many(collection, records)
    logger.info(f"Indexed {count} tokens into {collection}")
    return count
