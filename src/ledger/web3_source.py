from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from web3 import Web3
from web3.exceptions import (
    ContractLogicError,
    MismatchedABI,
    TimeExhausted,
    Web3Exception,
)

from core.cancel import CancelToken, check_cancelled
from core.errors import (
    InclusionTimeoutError,
    LedgerConnectionError,
    TransactionRevertedError,
)
from core.models import ContractRef, PendingTransaction, RawEvent, Receipt
from helper.hexutil import normalize_hex
from ledger.base import LedgerEventSource

logger = logging.getLogger(__name__)

# Interval between receipt lookups inside one wait_for_transaction_receipt slice.
RECEIPT_POLL_LATENCY = 0.1


def _abi_value(value: Any) -> Any:
    if isinstance(value, str) and Web3.is_address(value):
        return Web3.to_checksum_address(value)
    if isinstance(value, (list, tuple)):
        return [_abi_value(item) for item in value]
    return value


def load_abis(abi_dir: str | Path) -> Dict[str, List[Dict[str, Any]]]:
    """
    Load contract ABIs from `abi_dir`: one `<ContractName>.json` file per
    contract, holding either the bare ABI list or a build artifact with an
    "abi" key.
    """
    abis: Dict[str, List[Dict[str, Any]]] = {}
    for path in sorted(Path(abi_dir).glob("*.json")):
        data = json.loads(path.read_text(encoding="utf-8"))
        abis[path.stem] = data["abi"] if isinstance(data, dict) else data
    return abis


class Web3EventSource(LedgerEventSource):
    """
    LedgerEventSource backed by a JSON-RPC node through web3.py.

      - Contracts are bound lazily from ContractRef.name → ABI.
      - Receipt logs are decoded against every contract bound so far, so
        events emitted by a callee (e.g. the battle manager emitting
        NewBattle during challengeSuperblock) are decoded too.
      - Arguments arrive as lowercase hex; 20-byte values are checksummed
        before encoding since web3 refuses lowercase `address` arguments.
      - Transport failures surface as LedgerConnectionError; a call the
        node refuses to execute surfaces as TransactionRevertedError.
    """

    def __init__(
        self,
        w3: Web3,
        abis: Mapping[str, List[Dict[str, Any]]],
        *,
        sender: str,
        receipt_timeout: float = 120.0,
        poll_latency: float = 0.5,
    ) -> None:
        self._w3 = w3
        self._abis = dict(abis)
        self._sender = normalize_hex(sender)
        self._receipt_timeout = receipt_timeout
        self._poll_latency = poll_latency
        self._contracts: Dict[str, Any] = {}

    @classmethod
    def from_rpc(
        cls,
        rpc_url: str,
        abis: Mapping[str, List[Dict[str, Any]]],
        *,
        sender: str,
        **kwargs: Any,
    ) -> "Web3EventSource":
        return cls(Web3(Web3.HTTPProvider(rpc_url)), abis, sender=sender, **kwargs)

    # ------------------------------------------------------------------
    # Contract binding
    # ------------------------------------------------------------------

    def _contract(self, ref: ContractRef) -> Any:
        bound = self._contracts.get(ref.address)
        if bound is None:
            try:
                abi = self._abis[ref.name]
            except KeyError:
                raise LedgerConnectionError(f"No ABI loaded for contract {ref.name}") from None
            bound = self._w3.eth.contract(address=Web3.to_checksum_address(ref.address), abi=abi)
            self._contracts[ref.address] = bound
        return bound

    def bind(self, *refs: ContractRef) -> None:
        """Bind contracts up front so their logs decode in any receipt."""
        for ref in refs:
            self._contract(ref)

    def function_call(self, contract: ContractRef, method: str, *args: Any) -> Any:
        """Bound contract function `method(*args)`, with ABI-ready arguments."""
        fn = getattr(self._contract(contract).functions, method)
        return fn(*[_abi_value(arg) for arg in args])

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def sender(self) -> str:
        return self._sender

    def block_number(self) -> int:
        try:
            return int(self._w3.eth.block_number)
        except (Web3Exception, OSError) as exc:
            raise LedgerConnectionError(f"block_number failed: {exc}") from exc

    def query_events(
        self,
        contract: ContractRef,
        event_name: str,
        from_block: int,
        to_block: Optional[int] = None,
    ) -> List[RawEvent]:
        event = getattr(self._contract(contract).events, event_name)
        try:
            logs = event.get_logs(
                from_block=from_block,
                to_block="latest" if to_block is None else to_block,
            )
        except (Web3Exception, OSError) as exc:
            raise LedgerConnectionError(
                f"get_logs({contract.name}.{event_name}, {from_block}..{to_block}) failed: {exc}"
            ) from exc
        events = [self._to_raw_event(log) for log in logs]
        events.sort(key=RawEvent.position)
        return events

    def call_view(self, contract: ContractRef, method: str, *args: Any) -> Any:
        try:
            return self.function_call(contract, method, *args).call()
        except (Web3Exception, OSError) as exc:
            raise LedgerConnectionError(f"{contract.name}.{method} view failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def send_transaction(
        self,
        contract: ContractRef,
        method: str,
        *args: Any,
        value: int = 0,
    ) -> PendingTransaction:
        tx_params = {"from": Web3.to_checksum_address(self._sender), "value": value}
        try:
            tx_hash = self.function_call(contract, method, *args).transact(tx_params)
        except ContractLogicError as exc:
            # Rejected during gas estimation: the call would revert.
            raise TransactionRevertedError(method, args, reason=str(exc)) from exc
        except (Web3Exception, OSError) as exc:
            raise LedgerConnectionError(f"{contract.name}.{method} submission failed: {exc}") from exc

        pending = PendingTransaction(
            transaction_hash=normalize_hex(tx_hash),
            contract=contract,
            method=method,
            args=list(args),
            value=value,
        )
        logger.debug("submitted %s.%s tx=%s", contract.name, method, pending.transaction_hash)
        return pending

    def await_inclusion(
        self,
        pending: PendingTransaction,
        cancel: Optional[CancelToken] = None,
    ) -> Receipt:
        # Wait in slices of poll_latency so the token is checked between them.
        deadline = time.monotonic() + self._receipt_timeout
        while True:
            check_cancelled(cancel)
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise InclusionTimeoutError(pending, self._receipt_timeout)
            try:
                receipt = self._w3.eth.wait_for_transaction_receipt(
                    pending.transaction_hash,
                    timeout=min(self._poll_latency, remaining),
                    poll_latency=min(RECEIPT_POLL_LATENCY, self._poll_latency),
                )
                break
            except TimeExhausted:
                continue
            except (Web3Exception, OSError) as exc:
                raise LedgerConnectionError(
                    f"receipt lookup for {pending.transaction_hash} failed: {exc}"
                ) from exc

        return Receipt(
            transaction_hash=pending.transaction_hash,
            block_number=int(receipt["blockNumber"]),
            status=int(receipt["status"]) == 1,
            events=self._decode_receipt_logs(receipt),
        )

    # ------------------------------------------------------------------
    # Decoding
    # ------------------------------------------------------------------

    def _decode_receipt_logs(self, receipt: Any) -> List[RawEvent]:
        events: List[RawEvent] = []
        for log in receipt["logs"]:
            address = normalize_hex(log["address"])
            contract = self._contracts.get(address)
            if contract is None:
                continue
            for item in contract.abi:
                if item.get("type") != "event":
                    continue
                try:
                    decoded = getattr(contract.events, item["name"])().process_log(log)
                except MismatchedABI:
                    continue
                events.append(self._to_raw_event(decoded))
                break
        return events

    @staticmethod
    def _to_raw_event(log: Any) -> RawEvent:
        tx_hash = log.get("transactionHash")
        return RawEvent(
            name=log["event"],
            args=dict(log["args"]),
            block_number=int(log["blockNumber"]),
            log_index=int(log.get("logIndex", 0)),
            transaction_hash=normalize_hex(tx_hash) if tx_hash is not None else None,
            address=normalize_hex(log["address"]) if log.get("address") else None,
        )
