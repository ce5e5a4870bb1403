"""
Ledger enumeration across contract versions.

Deployed ledgers expose their id lists in different shapes: some return the
whole list in one call, some expose a count plus ranged reads, some only
ranged reads. Strategies are tried in that order. A strategy that reverts is
remembered as unsupported for the (chain, contract, signature) so later scans
go straight to the next one.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Set, Tuple

from . import abi
from .abi import FunctionABI
from .config import PaginationConfig, get_config
from .exceptions import DecodeError
from .logging_utils import OperationType, get_recon_logger
from .rpc_client import ChainRPCClient, RPCClientError, RPCError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Listing:
    """
    An enumerable id list on a contract.

    ``prefix_args`` are passed ahead of the count/index arguments (e.g. a
    role id). ``page_size`` overrides the configured page size.
    """
    name: str
    bulk: FunctionABI
    count: FunctionABI
    page: FunctionABI
    prefix_args: Tuple[Any, ...] = ()
    page_size: Optional[int] = None


DEPOSIT_HASHES = Listing(
    "deposit_hashes",
    bulk=abi.GET_DEPOSIT_HASHES,
    count=abi.GET_DEPOSIT_HASH_COUNT,
    page=abi.GET_DEPOSIT_HASHES_PAGE,
)

WITHDRAW_HASHES = Listing(
    "withdraw_hashes",
    bulk=abi.GET_WITHDRAW_HASHES,
    count=abi.GET_WITHDRAW_HASH_COUNT,
    page=abi.GET_WITHDRAW_HASHES_PAGE,
)


def chain_keys_listing(page_size: int) -> Listing:
    return Listing(
        "chain_keys",
        bulk=abi.GET_CHAIN_KEYS,
        count=abi.GET_CHAIN_KEY_COUNT,
        page=abi.GET_CHAIN_KEYS_FROM,
        page_size=page_size,
    )


def role_members_listing(role_id: int) -> Listing:
    return Listing(
        f"role_members:{role_id}",
        bulk=abi.GET_ACTIVE_ROLE_MEMBERS,
        count=abi.GET_ACTIVE_ROLE_MEMBER_COUNT,
        page=abi.GET_ACTIVE_ROLE_MEMBERS_FROM,
        prefix_args=(role_id,),
    )


class _Unsupported(Exception):
    """The contract does not implement a function form."""


class LedgerPaginator:
    """
    Enumerates id lists with bulk, counted and open-ended strategies.

    The only state is the set of function forms known to revert.
    """

    def __init__(self, pagination: Optional[PaginationConfig] = None):
        self._pagination = pagination or get_config().pagination
        self._unsupported: Set[Tuple[int, str, str]] = set()

    def _key(self, client: ChainRPCClient, address: str, fn: FunctionABI) -> Tuple[int, str, str]:
        return (client.chain_id, address.lower(), fn.signature)

    def is_unsupported(self, client: ChainRPCClient, address: str, fn: FunctionABI) -> bool:
        return self._key(client, address, fn) in self._unsupported

    def reset(self) -> None:
        """Forget every function form marked unsupported."""
        self._unsupported.clear()

    async def _read(
        self,
        client: ChainRPCClient,
        address: str,
        fn: FunctionABI,
        *args: Any,
        remember: bool = True,
    ) -> Any:
        """
        Call ``fn`` and decode its single output.

        Reverts and undecodable results raise ``_Unsupported`` and, when
        ``remember`` is set, mark the form unsupported. Transport errors
        propagate unchanged.
        """
        try:
            data = await client.call_contract(address, fn.encode(*args))
            return fn.decode_single(data)
        except RPCError as e:
            if not e.is_revert:
                raise
            if remember:
                self._unsupported.add(self._key(client, address, fn))
            raise _Unsupported(str(e)) from e
        except DecodeError as e:
            if remember:
                self._unsupported.add(self._key(client, address, fn))
            raise _Unsupported(str(e)) from e

    async def _try_bulk(
        self, client: ChainRPCClient, address: str, listing: Listing
    ) -> Optional[List[Any]]:
        if self.is_unsupported(client, address, listing.bulk):
            return None
        try:
            return list(await self._read(client, address, listing.bulk, *listing.prefix_args))
        except _Unsupported:
            logger.debug(f"{listing.bulk.signature} unsupported on {address}")
            return None
        except (RPCError, RPCClientError) as e:
            logger.debug(f"{listing.bulk.signature} failed on {address}: {e}")
            return None

    async def _read_pages(
        self,
        client: ChainRPCClient,
        address: str,
        listing: Listing,
        limit: int,
        page_size: int,
    ) -> List[Any]:
        """Sequential pages until a short page, an error or ``limit``."""
        items: List[Any] = []
        while len(items) < limit:
            count = min(page_size, limit - len(items))
            try:
                page = await self._read(
                    client, address, listing.page, *listing.prefix_args, len(items), count,
                    remember=False,
                )
            except (_Unsupported, RPCError, RPCClientError) as e:
                logger.warning(
                    f"Page read {listing.page.signature} at {len(items)} failed on "
                    f"chain {client.chain_id}: {e}; returning {len(items)} items"
                )
                break
            if not page:
                break
            items.extend(page)
            if len(page) < count:
                break
        return items[:limit]

    async def _try_counted(
        self, client: ChainRPCClient, address: str, listing: Listing, page_size: int
    ) -> Optional[List[Any]]:
        if self.is_unsupported(client, address, listing.count):
            return None
        try:
            total = int(await self._read(client, address, listing.count, *listing.prefix_args))
        except _Unsupported:
            logger.debug(f"{listing.count.signature} unsupported on {address}")
            return None
        except (RPCError, RPCClientError) as e:
            logger.debug(f"{listing.count.signature} failed on {address}: {e}")
            return None
        if total == 0:
            return []
        limit = min(total, self._pagination.max_items)
        return await self._read_pages(client, address, listing, limit, page_size)

    async def enumerate_record_ids(
        self,
        client: ChainRPCClient,
        ledger_address: str,
        listing: Listing,
    ) -> List[Any]:
        """
        Every id of ``listing`` on the contract at ``ledger_address``.

        Pure read, fresh scan each call, at most ``max_items`` ids. A page
        failure returns what was collected before it.
        """
        page_size = listing.page_size or self._pagination.page_size
        recon_logger = get_recon_logger()

        async with recon_logger.operation_context(
            OperationType.LEDGER_SCAN,
            client.chain_id,
            listing=listing.name,
            address=ledger_address,
        ) as ctx:
            ids = await self._try_bulk(client, ledger_address, listing)
            strategy = "bulk"
            if ids is None:
                ids = await self._try_counted(client, ledger_address, listing, page_size)
                strategy = "counted"
            if ids is None:
                ids = await self._read_pages(
                    client, ledger_address, listing, self._pagination.max_items, page_size
                )
                strategy = "open_ended"

            ids = ids[: self._pagination.max_items]
            ctx.metadata["strategy"] = strategy
            ctx.metadata["count"] = len(ids)
            return ids


_paginator: Optional[LedgerPaginator] = None


def get_paginator() -> LedgerPaginator:
    """Get the session-wide paginator."""
    global _paginator
    if _paginator is None:
        _paginator = LedgerPaginator()
    return _paginator


async def enumerate_record_ids(
    client: ChainRPCClient,
    ledger_address: str,
    listing: Listing,
) -> List[Any]:
    """Enumerate ``listing`` with the session-wide paginator."""
    return await get_paginator().enumerate_record_ids(client, ledger_address, listing)
