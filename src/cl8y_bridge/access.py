"""AccessManager reads: permission checks, execution delays, role members."""
from __future__ import annotations

import logging
from typing import List, Optional

from . import abi
from .exceptions import DecodeError
from .logging_utils import OperationType, get_recon_logger
from .models import PermissionCheck
from .paginator import LedgerPaginator, get_paginator, role_members_listing
from .rpc_client import ChainRPCClient, RPCClientError, RPCError

logger = logging.getLogger(__name__)


async def can_call(
    client: ChainRPCClient,
    access_manager: str,
    caller: str,
    target: str,
    function_selector: bytes,
) -> Optional[PermissionCheck]:
    """
    AccessManager.canCall(caller, target, selector).

    Returns None when the read fails.
    """
    data = abi.CAN_CALL.encode(caller, target, function_selector)
    async with get_recon_logger().operation_context(
        OperationType.PERMISSION_CHECK, client.chain_id, target=target
    ) as ctx:
        try:
            immediate, delay = abi.CAN_CALL.decode(
                await client.call_contract(access_manager, data)
            )
        except (RPCError, RPCClientError, DecodeError) as e:
            logger.warning(
                f"canCall({caller}, {target}) failed on chain {client.chain_id}: {e}"
            )
            ctx.metadata["error"] = str(e)
            return None
        ctx.metadata["immediate"] = immediate
        return PermissionCheck(immediate=bool(immediate), delay=int(delay))


async def execution_delay(
    client: ChainRPCClient,
    access_manager: Optional[str],
    actor: Optional[str],
    target: str,
    function_selector: bytes,
) -> int:
    """Delay in seconds the actor must wait to call ``target``; 0 without an actor."""
    if not actor or not access_manager:
        return 0
    check = await can_call(client, access_manager, actor, target, function_selector)
    return check.delay if check else 0


async def role_members(
    client: ChainRPCClient,
    access_manager: str,
    role_id: int,
    paginator: Optional[LedgerPaginator] = None,
) -> List[str]:
    """Active members of ``role_id``."""
    paginator = paginator or get_paginator()
    return await paginator.enumerate_record_ids(
        client, access_manager, role_members_listing(role_id)
    )
