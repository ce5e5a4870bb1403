"""
Token metadata resolution.

Strategies, in order:
1. the static token list (loaded once per session)
2. the bridged-token interface (name, symbol, logoLink, decimals)
3. plain ERC-20 (name, symbol, decimals)

Results are cached per (chain, lowercased address). Metadata is display-only:
a failure leaves it absent and never blocks a view.
"""
from __future__ import annotations

import asyncio
import json
import logging
from decimal import Decimal
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from urllib.parse import quote, urlsplit

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from . import abi
from .cache import ViewCache
from .config import MetadataConfig, get_config
from .exceptions import DecodeError
from .logging_utils import OperationType, get_recon_logger
from .models import TokenMetadata
from .registry import ChainRegistry
from .rpc_client import RPCClientError, RPCError

logger = logging.getLogger(__name__)

# Characters left alone by JavaScript's encodeURI
_ENCODE_URI_SAFE = ";,/?:@&=+$-_.!~*'()#"


class TokenListEntry(BaseModel):
    """One token of a token list."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str
    symbol: str
    address: str
    chain_id: int = Field(alias="chainId")
    decimals: int = Field(ge=0, le=255)
    logo_uri: Optional[str] = Field(default=None, alias="logoURI")

    @field_validator("address")
    @classmethod
    def _check_address(cls, v: str) -> str:
        if not (v.startswith("0x") and len(v) == 42):
            raise ValueError("not an address")
        int(v[2:], 16)
        return v


def sanitize_logo_uri(raw: Optional[str], gateway: str = "https://ipfs.io/ipfs/") -> Optional[str]:
    """
    Logo URI safe to display.

    ``ipfs://x`` maps to the gateway, ``https:`` URLs pass through, anything
    else is None.
    """
    s = str(raw or "").strip()
    if not s:
        return None
    if s.startswith("ipfs://"):
        path = s[len("ipfs://"):]
        return f"{gateway.rstrip('/')}/{quote(path, safe=_ENCODE_URI_SAFE)}"
    try:
        parts = urlsplit(s)
    except ValueError:
        return None
    if parts.scheme.lower() != "https" or not parts.netloc:
        return None
    path = parts.path or "/"
    url = f"https://{parts.netloc.lower()}{path}"
    if parts.query:
        url += f"?{parts.query}"
    if parts.fragment:
        url += f"#{parts.fragment}"
    return url


def format_amount(amount: int, decimals: int) -> str:
    """``amount`` in whole units with trailing zeros trimmed."""
    if decimals <= 0:
        return str(amount)
    sign = "-" if amount < 0 else ""
    whole, frac = divmod(abs(amount), 10 ** decimals)
    frac_str = str(frac).rjust(decimals, "0").rstrip("0")
    return f"{sign}{whole}.{frac_str}" if frac_str else f"{sign}{whole}"


def amount_to_decimal(amount: int, decimals: int) -> Decimal:
    return Decimal(amount).scaleb(-decimals)


class MetadataResolver:
    """Resolves and caches token metadata for display."""

    def __init__(
        self,
        registry: ChainRegistry,
        cache: Optional[ViewCache] = None,
        config: Optional[MetadataConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        ttl: Optional[float] = None,
    ):
        self._registry = registry
        self._cache = cache or ViewCache()
        self._config = config or get_config().metadata
        self._http_client = http_client
        self._ttl = ttl if ttl is not None else registry.config.refresh.interval("token_meta", 60.0)
        self._token_list: Optional[Dict[Tuple[int, str], TokenListEntry]] = None
        self._token_list_lock = asyncio.Lock()

    async def _fetch_token_list_document(self, source: str) -> dict:
        if source.startswith("http://") or source.startswith("https://"):
            client = self._http_client or httpx.AsyncClient(
                timeout=self._config.http_timeout_seconds
            )
            try:
                response = await client.get(source)
                response.raise_for_status()
                return response.json()
            finally:
                if self._http_client is None:
                    await client.aclose()
        return json.loads(Path(source).read_text())

    async def load_token_list(self) -> Dict[Tuple[int, str], TokenListEntry]:
        """
        Load the token list once per session.

        Invalid entries are skipped. A list that cannot be loaded counts as
        empty and is not retried.
        """
        async with self._token_list_lock:
            if self._token_list is not None:
                return self._token_list

            entries: Dict[Tuple[int, str], TokenListEntry] = {}
            source = self._config.token_list_url
            if source:
                try:
                    document = await self._fetch_token_list_document(source)
                    raw_tokens = document.get("tokens", []) if isinstance(document, dict) else []
                except (httpx.HTTPError, OSError, ValueError) as e:
                    logger.warning(f"Failed to load token list from {source}: {e}")
                    raw_tokens = []

                for raw in raw_tokens:
                    try:
                        entry = TokenListEntry.model_validate(raw)
                    except (ValidationError, ValueError) as e:
                        logger.debug(f"Skipping invalid token list entry {raw!r}: {e}")
                        continue
                    entries[(entry.chain_id, entry.address.lower())] = entry
                logger.info(f"Loaded {len(entries)} tokens from {source}")

            self._token_list = entries
            return entries

    def set_token_list(self, entries: List[TokenListEntry]) -> None:
        self._token_list = {(e.chain_id, e.address.lower()): e for e in entries}

    async def _read_string(self, client, token: str, fn: abi.FunctionABI) -> str:
        return str(fn.decode_single(await client.call_contract(token, fn.encode())))

    async def _read_decimals(self, client, token: str) -> int:
        data = await client.call_contract(token, abi.TOKEN_DECIMALS.encode())
        return int(abi.TOKEN_DECIMALS.decode_single(data))

    async def _from_bridged_token(self, client, token: str) -> Optional[TokenMetadata]:
        try:
            name, symbol, logo, decimals = await asyncio.gather(
                self._read_string(client, token, abi.TOKEN_NAME),
                self._read_string(client, token, abi.TOKEN_SYMBOL),
                self._read_string(client, token, abi.TOKEN_LOGO_LINK),
                self._read_decimals(client, token),
            )
        except (RPCError, RPCClientError, DecodeError) as e:
            logger.debug(f"Bridged token metadata unavailable for {token}: {e}")
            return None
        return TokenMetadata(
            name=name,
            symbol=symbol,
            decimals=decimals,
            logo_uri=sanitize_logo_uri(logo, self._config.ipfs_gateway),
        )

    async def _from_erc20(self, client, token: str) -> Optional[TokenMetadata]:
        try:
            name, symbol, decimals = await asyncio.gather(
                self._read_string(client, token, abi.TOKEN_NAME),
                self._read_string(client, token, abi.TOKEN_SYMBOL),
                self._read_decimals(client, token),
            )
        except (RPCError, RPCClientError, DecodeError) as e:
            logger.debug(f"ERC-20 metadata unavailable for {token}: {e}")
            return None
        return TokenMetadata(name=name, symbol=symbol, decimals=decimals)

    async def _resolve_uncached(self, chain_id: int, token_address: str) -> Optional[TokenMetadata]:
        token_list = await self.load_token_list()
        entry = token_list.get((chain_id, token_address.lower()))
        if entry is not None:
            return TokenMetadata(
                name=entry.name,
                symbol=entry.symbol,
                decimals=entry.decimals,
                logo_uri=sanitize_logo_uri(entry.logo_uri, self._config.ipfs_gateway),
            )

        client = self._registry.resolve_client(chain_id)
        if client is None:
            return None

        async with get_recon_logger().operation_context(
            OperationType.METADATA_RESOLVE, chain_id, token=token_address
        ) as ctx:
            meta = await self._from_bridged_token(client, token_address)
            ctx.metadata["source"] = "bridged"
            if meta is None:
                meta = await self._from_erc20(client, token_address)
                ctx.metadata["source"] = "erc20" if meta else None
            return meta

    async def resolve_token_meta(
        self, chain_id: int, token_address: str
    ) -> Optional[TokenMetadata]:
        """Metadata for a token, or None when no strategy succeeds."""
        key = ("token-meta", chain_id, token_address.lower())
        found, cached = self._cache.lookup(key)
        if found:
            return cached
        meta = await self._resolve_uncached(chain_id, token_address)
        self._cache.set(key, meta, self._ttl)
        return meta

    async def resolve_many(
        self, tokens: List[Tuple[int, str]]
    ) -> Dict[Tuple[int, str], Optional[TokenMetadata]]:
        """Resolve distinct (chain, token) pairs concurrently."""
        unique: List[Tuple[int, str]] = []
        seen = set()
        for chain_id, token in tokens:
            k = (chain_id, token.lower())
            if k not in seen:
                seen.add(k)
                unique.append(k)
        results = await asyncio.gather(
            *(self.resolve_token_meta(chain_id, token) for chain_id, token in unique)
        )
        return dict(zip(unique, results))
