from __future__ import annotations

import logging
from typing import List, Optional

from core.cancel import CancelToken
from engine.battle import DEFAULT_RESPONSE_TIMEOUT, Battle

logger = logging.getLogger(__name__)


def advance_battle(
    battle: Battle,
    *,
    max_headers: int = 5,
    timeout: float = DEFAULT_RESPONSE_TIMEOUT,
    cancel: Optional[CancelToken] = None,
) -> List[str]:
    """
    Drive the first rounds of a header battle, then stop.

      1. query the merkle root hashes and wait for the reply;
      2. read the superblock's Dogecoin block hashes;
      3. query the first `max_headers` block headers one by one, waiting
         for each reply.

    Returns the block hashes that were queried. A DefenderTimeoutError
    from any wait propagates unchanged.
    """
    logger.info("querying block hashes of session %s", battle.session_id)
    receipt = battle.query_merkle_root_hashes(cancel=cancel)
    battle.await_response(receipt.block_number + 1, timeout=timeout, cancel=cancel)

    hashes = battle.get_block_hashes(cancel=cancel)[:max_headers]
    for block_hash in hashes:
        logger.info("querying block header %s", block_hash)
        receipt = battle.query_block_header(block_hash, cancel=cancel)
        battle.await_response(receipt.block_number + 1, timeout=timeout, cancel=cancel)

    logger.info("finished querying %d header(s); challenge abandoned", len(hashes))
    return hashes
