from __future__ import annotations

import logging
from typing import List, Optional, Set

from core.cancel import CancelToken, check_cancelled
from core.enums import EventName
from core.errors import DefenderTimeoutError, DuplicateQueryError, PollTimeoutError
from core.events import BattleEvent, BattleResponseEvent, LedgerEvent, NewBattleEvent
from core.models import ContractRef, CorrelationKey, Receipt, SessionInfo
from engine.poller import DEFAULT_POLL_INTERVAL, EventPoller
from engine.resolver import bind_as_challenger, resolve_last_header_battle
from engine.transactions import submit_and_wait
from helper.hexutil import normalize_hex
from ledger.base import LedgerEventSource

logger = logging.getLogger(__name__)

DEFAULT_RESPONSE_TIMEOUT = 120.0

RESPONSE_EVENTS = (
    EventName.RESPOND_MERKLE_ROOT_HASHES,
    EventName.RESPOND_BLOCK_HEADER,
    EventName.RESOLVED_SCRYPT_HASH_VALIDATION,
)


class Battle:
    """
    Challenger side of one header battle.

    Responsibilities:
      - issue the three query types of the battle manager
        (queryMerkleRootHashes, queryBlockHeader,
        requestScryptHashValidation) for this session;
      - refuse to query the same block hash twice from this instance;
      - wait for the submitter's matching response, or report a defender
        timeout.

    The battle manager owns the state machine. This class never infers a
    transition locally; `session_info()` reads the current state when a
    strategy needs to know whose turn it is.

    Query bookkeeping lives only in this object. A hash is recorded once
    its query transaction was included successfully; a reverted query
    leaves it unrecorded. Nothing is persisted: a fresh Battle for the
    same session starts with empty sets.
    """

    def __init__(
        self,
        ledger: LedgerEventSource,
        battle_manager: ContractRef,
        session_id: str,
        superblock_id: str,
        *,
        challenger: Optional[str] = None,
        poller: Optional[EventPoller] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        self.ledger = ledger
        self.battle_manager = battle_manager
        self.key = CorrelationKey(superblock_id=superblock_id, session_id=session_id)
        self.challenger = normalize_hex(challenger) if challenger is not None else ledger.sender
        self.poller = poller or EventPoller(ledger, poll_interval=poll_interval)
        self.headers_queried: Set[str] = set()
        self.scrypt_hashes_queried: Set[str] = set()

    def __repr__(self) -> str:
        return f"Battle(session={self.session_id}, superblock={self.superblock_id})"

    @property
    def session_id(self) -> str:
        return self.key.session_id

    @property
    def superblock_id(self) -> str:
        return self.key.superblock_id

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_event(
        cls,
        ledger: LedgerEventSource,
        battle_manager: ContractRef,
        event: NewBattleEvent,
        **kwargs,
    ) -> "Battle":
        """Bind to the battle announced by `event`; the signer must be its challenger."""
        key = bind_as_challenger(event, ledger.sender)
        return cls(
            ledger,
            battle_manager,
            key.session_id,
            key.superblock_id,
            challenger=event.challenger,
            **kwargs,
        )

    @classmethod
    def from_last_battle(
        cls,
        ledger: LedgerEventSource,
        battle_manager: ContractRef,
        *,
        from_block: int = 0,
        cancel: Optional[CancelToken] = None,
        **kwargs,
    ) -> "Battle":
        event = resolve_last_header_battle(
            ledger, battle_manager, from_block=from_block, cancel=cancel
        )
        return cls.from_event(ledger, battle_manager, event, **kwargs)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def query_merkle_root_hashes(self, cancel: Optional[CancelToken] = None) -> Receipt:
        return self._send("queryMerkleRootHashes", self.superblock_id, self.session_id, cancel=cancel)

    def query_block_header(self, block_hash: str, cancel: Optional[CancelToken] = None) -> Receipt:
        block_hash = normalize_hex(block_hash)
        if block_hash in self.headers_queried:
            raise DuplicateQueryError(block_hash, "block header")
        receipt = self._send(
            "queryBlockHeader", self.superblock_id, self.session_id, block_hash, cancel=cancel
        )
        self.headers_queried.add(block_hash)
        return receipt

    def request_scrypt_hash_validation(
        self, block_hash: str, cancel: Optional[CancelToken] = None
    ) -> Receipt:
        block_hash = normalize_hex(block_hash)
        if block_hash in self.scrypt_hashes_queried:
            raise DuplicateQueryError(block_hash, "scrypt hash")
        receipt = self._send(
            "requestScryptHashValidation",
            self.superblock_id,
            self.session_id,
            block_hash,
            cancel=cancel,
        )
        self.scrypt_hashes_queried.add(block_hash)
        return receipt

    def _send(self, method: str, *args, cancel: Optional[CancelToken] = None) -> Receipt:
        return submit_and_wait(
            self.ledger,
            self.battle_manager,
            method,
            *args,
            session_id=self.session_id,
            cancel=cancel,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_block_hashes(self, cancel: Optional[CancelToken] = None) -> List[str]:
        """Dogecoin block hashes of the superblock, as sent by the submitter."""
        check_cancelled(cancel)
        hashes = self.ledger.call_view(self.battle_manager, "getDogeBlockHashes", self.session_id)
        return [normalize_hex(h) for h in hashes]

    def session_info(self, cancel: Optional[CancelToken] = None) -> SessionInfo:
        check_cancelled(cancel)
        return SessionInfo.from_view(
            self.ledger.call_view(self.battle_manager, "sessions", self.session_id)
        )

    def pending_scrypt_hash_id(self, cancel: Optional[CancelToken] = None) -> Optional[str]:
        """Set while a scrypt sub-battle is outstanding for this session."""
        return self.session_info(cancel).pending_scrypt_hash_id

    # ------------------------------------------------------------------
    # Responses
    # ------------------------------------------------------------------

    def await_response(
        self,
        from_block: int,
        timeout: float = DEFAULT_RESPONSE_TIMEOUT,
        cancel: Optional[CancelToken] = None,
    ) -> List[BattleEvent]:
        """
        Wait for the submitter's next response(s) to this session.

        Scans RespondMerkleRootHashes, RespondBlockHeader and
        ResolvedScryptHashValidation from `from_block` on, keeping only
        events carrying this battle's correlation key. Returns every match
        of the first scan pass that found any.

        Raises DefenderTimeoutError if nothing arrives within `timeout`
        seconds; the caller decides whether to time the defender out.
        """
        sources = [(self.battle_manager, name) for name in RESPONSE_EVENTS]
        try:
            events = self.poller.poll(sources, from_block, timeout, self._is_ours, cancel)
        except PollTimeoutError as exc:
            logger.warning("defender timed out on session %s after %ss", self.session_id, timeout)
            raise DefenderTimeoutError(self.session_id, timeout) from exc

        for event in events:
            logger.info("response %s for session %s at block %d",
                        event.name, self.session_id, event.block_number)
        return events

    def _is_ours(self, event: LedgerEvent) -> bool:
        return isinstance(event, BattleResponseEvent) and event.matches(self.key)
