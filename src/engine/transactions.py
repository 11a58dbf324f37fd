from __future__ import annotations

import logging
from typing import Any, Optional

from core.cancel import CancelToken, check_cancelled
from core.errors import (
    OperationCancelledError,
    TransactionCancelledError,
    TransactionRevertedError,
)
from core.models import ContractRef, Receipt
from helper.hexutil import short_hex
from ledger.base import LedgerEventSource

logger = logging.getLogger(__name__)


def submit_and_wait(
    ledger: LedgerEventSource,
    contract: ContractRef,
    method: str,
    *args: Any,
    value: int = 0,
    session_id: Optional[str] = None,
    cancel: Optional[CancelToken] = None,
) -> Receipt:
    """
    Submit `method(*args)` and block until its receipt is available.

    Every transaction of the engine goes through here:
      - cancellation is checked before submission, so a cancelled call
        never reaches the ledger;
      - once submitted, cancellation of the inclusion wait is reported as
        TransactionCancelledError carrying the pending transaction, so the
        caller can still account for it;
      - a failed receipt (or a call rejected at submission) raises
        TransactionRevertedError with method, args and session id.

    Nothing is retried.
    """
    check_cancelled(cancel)

    try:
        pending = ledger.send_transaction(contract, method, *args, value=value)
    except TransactionRevertedError as exc:
        raise TransactionRevertedError(
            method, args, session_id=session_id, reason=exc.reason
        ) from exc

    logger.info(
        "sent %s.%s(%s) tx=%s", contract.name, method,
        ", ".join(map(str, args)), short_hex(pending.transaction_hash),
    )

    try:
        receipt = ledger.await_inclusion(pending, cancel=cancel)
    except OperationCancelledError as exc:
        logger.warning("cancelled while waiting for tx=%s", short_hex(pending.transaction_hash))
        raise TransactionCancelledError(pending) from exc

    if not receipt.status:
        logger.warning(
            "%s.%s reverted in block %d (tx=%s)",
            contract.name, method, receipt.block_number, receipt.transaction_hash,
        )
        raise TransactionRevertedError(method, args, session_id=session_id, receipt=receipt)

    logger.debug("%s.%s included in block %d", contract.name, method, receipt.block_number)
    return receipt
