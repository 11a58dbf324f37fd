# src/ledger/simulation.py
from __future__ import annotations

import hashlib
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from core.cancel import CancelToken, check_cancelled
from core.models import ContractRef, PendingTransaction, RawEvent, Receipt
from helper.hexutil import normalize_hex
from ledger.base import LedgerEventSource

logger = logging.getLogger(__name__)

# (contract, event name, args) emitted by a simulated transaction
Emit = Tuple[ContractRef, str, Dict[str, Any]]
TransactionHandler = Callable[[PendingTransaction], Optional[Iterable[Emit]]]


class TransactionRejected(Exception):
    """Raised by a transaction handler to make the simulated call revert."""

    def __init__(self, reason: str = "reverted") -> None:
        super().__init__(reason)
        self.reason = reason


class SimulationLedger(LedgerEventSource):
    """
    Minimal in-memory simulation of the host ledger.

    This is *not* a contract emulator. It only records:
        - an append-only event log (block_number, log_index ordered);
        - view results, set by the test or scenario;
        - per-method transaction handlers deciding which events a
          transaction emits, or whether it reverts;
        - events scheduled for future blocks (opponent responses).

    Each await_inclusion() mines exactly one block holding the
    transaction's events, after any events scheduled for that height.
    mine_block() advances the chain without a transaction, which is how
    tests let time pass for the opponent.
    """

    def __init__(self, sender: str, *, start_height: int = 0) -> None:
        self._sender = normalize_hex(sender)
        self._height = start_height
        self._events: List[RawEvent] = []
        self._next_log_index: Dict[int, int] = {}
        self._views: Dict[Tuple[str, str], Any] = {}
        self._handlers: Dict[Tuple[str, str], TransactionHandler] = {}
        self._scheduled: Dict[int, List[Emit]] = {}
        self._tx_counter = 0
        self.sent: List[PendingTransaction] = []

    # ------------------------------------------------------------------
    # Scenario setup
    # ------------------------------------------------------------------

    def set_view(self, contract: ContractRef, method: str, value: Any) -> None:
        """
        Register a view result. `value` may be a callable, in which case it
        is called with the view arguments.
        """
        self._views[(contract.address, method)] = value

    def on_transaction(
        self, contract: ContractRef, method: str, handler: TransactionHandler
    ) -> None:
        self._handlers[(contract.address, method)] = handler

    def emit(
        self,
        contract: ContractRef,
        name: str,
        args: Dict[str, Any],
        *,
        block_number: Optional[int] = None,
        transaction_hash: Optional[str] = None,
    ) -> RawEvent:
        """Append an event to `block_number` (default: current block)."""
        height = self._height if block_number is None else block_number
        if height > self._height:
            raise ValueError(
                f"Cannot emit into future block {height} (tip is {self._height}); "
                "use schedule() instead."
            )
        log_index = self._next_log_index.get(height, 0)
        self._next_log_index[height] = log_index + 1
        event = RawEvent(
            name=name,
            args=dict(args),
            block_number=height,
            log_index=log_index,
            transaction_hash=transaction_hash,
            address=contract.address,
        )
        self._events.append(event)
        self._events.sort(key=RawEvent.position)
        return event

    def schedule(
        self, block_number: int, contract: ContractRef, name: str, args: Dict[str, Any]
    ) -> None:
        """Emit an event once the chain reaches `block_number`."""
        if block_number <= self._height:
            self.emit(contract, name, args, block_number=block_number)
            return
        self._scheduled.setdefault(block_number, []).append((contract, name, dict(args)))

    def respond_later(
        self, contract: ContractRef, name: str, args: Dict[str, Any], *, blocks: int = 1
    ) -> None:
        self.schedule(self._height + blocks, contract, name, args)

    def mine_block(self, *emits: Emit) -> int:
        """Mine one block with scheduled events, then `emits`."""
        self._height += 1
        for contract, name, args in self._scheduled.pop(self._height, []):
            self.emit(contract, name, args)
        for contract, name, args in emits:
            self.emit(contract, name, args)
        return self._height

    # ------------------------------------------------------------------
    # LedgerEventSource: reads
    # ------------------------------------------------------------------

    @property
    def sender(self) -> str:
        return self._sender

    def block_number(self) -> int:
        return self._height

    def query_events(
        self,
        contract: ContractRef,
        event_name: str,
        from_block: int,
        to_block: Optional[int] = None,
    ) -> List[RawEvent]:
        upper = self._height if to_block is None else to_block
        return [
            ev
            for ev in self._events
            if ev.address == contract.address
            and ev.name == event_name
            and from_block <= ev.block_number <= upper
        ]

    def call_view(self, contract: ContractRef, method: str, *args: Any) -> Any:
        try:
            value = self._views[(contract.address, method)]
        except KeyError:
            raise KeyError(f"No simulated view {contract.name}.{method}") from None
        return value(*args) if callable(value) else value

    # ------------------------------------------------------------------
    # LedgerEventSource: writes
    # ------------------------------------------------------------------

    def send_transaction(
        self,
        contract: ContractRef,
        method: str,
        *args: Any,
        value: int = 0,
    ) -> PendingTransaction:
        self._tx_counter += 1
        digest = hashlib.sha256(
            f"{self._tx_counter}:{contract.address}:{method}:{args!r}".encode("utf-8")
        ).hexdigest()
        pending = PendingTransaction(
            transaction_hash="0x" + digest,
            contract=contract,
            method=method,
            args=list(args),
            value=value,
        )
        self.sent.append(pending)
        return pending

    def await_inclusion(
        self,
        pending: PendingTransaction,
        cancel: Optional[CancelToken] = None,
    ) -> Receipt:
        check_cancelled(cancel)
        self.mine_block()

        handler = self._handlers.get((pending.contract.address, pending.method))
        try:
            emits = list(handler(pending) or ()) if handler is not None else []
        except TransactionRejected as exc:
            logger.debug("simulated revert of %s: %s", pending.method, exc.reason)
            return Receipt(
                transaction_hash=pending.transaction_hash,
                block_number=self._height,
                status=False,
            )

        events = [
            self.emit(contract, name, args, transaction_hash=pending.transaction_hash)
            for contract, name, args in emits
        ]
        return Receipt(
            transaction_hash=pending.transaction_hash,
            block_number=self._height,
            status=True,
            events=events,
        )

    # ------------------------------------------------------------------
    # Inspection helpers
    # ------------------------------------------------------------------

    def sent_methods(self) -> List[str]:
        return [tx.method for tx in self.sent]
