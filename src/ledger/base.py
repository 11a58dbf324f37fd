from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, List, Optional

from core.cancel import CancelToken
from core.models import ContractRef, PendingTransaction, RawEvent, Receipt


# ======================================================================
# Abstract Interface: LedgerEventSource
# ======================================================================

class LedgerEventSource(ABC):
    """
    Abstract interface to the host ledger, as consumed by the dispute engine.

    The ledger is the only authority on claim and battle state. The engine
    never keeps its own copy beyond the lifetime of one dispute interaction;
    it reads through this interface and writes by submitting transactions.

    Two logically distinct capabilities are exposed:

        (1) Reads:
              - block_number():   current tip height
              - query_events():   append-ordered event log, by contract,
                                  event name and inclusive block interval
              - call_view():      point query of current contract state

        (2) Writes:
              - send_transaction():  submit a call as the local signer
              - await_inclusion():   block until mined, return the receipt

    Implementations:
        • ledger.simulation.SimulationLedger: in-memory ledger used by
          tests and dry runs.
        • ledger.web3_source.Web3EventSource: JSON-RPC node via web3.py.

    Transaction ordering (nonces) for a shared signer is the
    implementation's concern; the engine never sequences nonces.
    """

    # --------------------------------------------------------------
    # 1. Reads
    # --------------------------------------------------------------

    @abstractmethod
    def block_number(self) -> int:
        """Return the height of the latest block."""
        raise NotImplementedError

    @abstractmethod
    def query_events(
        self,
        contract: ContractRef,
        event_name: str,
        from_block: int,
        to_block: Optional[int] = None,
    ) -> List[RawEvent]:
        """
        Return all `event_name` events emitted by `contract` in blocks
        [from_block, to_block] (inclusive; None means latest), in log order.
        """
        raise NotImplementedError

    @abstractmethod
    def call_view(self, contract: ContractRef, method: str, *args: Any) -> Any:
        """
        Call a read-only contract method and return its raw result.
        Struct results may be returned as a mapping or as a tuple in
        declaration order.
        """
        raise NotImplementedError

    # --------------------------------------------------------------
    # 2. Writes
    # --------------------------------------------------------------

    @abstractmethod
    def send_transaction(
        self,
        contract: ContractRef,
        method: str,
        *args: Any,
        value: int = 0,
    ) -> PendingTransaction:
        """Submit `method(*args)` on `contract` from the local signer."""
        raise NotImplementedError

    @abstractmethod
    def await_inclusion(
        self,
        pending: PendingTransaction,
        cancel: Optional[CancelToken] = None,
    ) -> Receipt:
        """
        Block until `pending` is included and return its receipt.

        A reverted transaction yields a receipt with status=False; it is up
        to the caller to turn that into an error. Cancellation through
        `cancel` raises OperationCancelledError.
        """
        raise NotImplementedError

    # --------------------------------------------------------------
    # 3. Identity
    # --------------------------------------------------------------

    @property
    @abstractmethod
    def sender(self) -> str:
        """Address transactions are sent from (the local actor)."""
        raise NotImplementedError
