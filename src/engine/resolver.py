from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from core.cancel import CancelToken, check_cancelled
from core.enums import EventName, SuperblockStatus
from core.errors import (
    NoActiveBattleError,
    NoVerificationGameError,
    PollTimeoutError,
    WrongChallengerError,
)
from core.events import (
    ClaimCreatedEvent,
    LedgerEvent,
    NewBattleEvent,
    NewSuperblockEvent,
    SuperblockClaimChallengedEvent,
    decode_event,
    decode_events,
)
from core.models import ContractRef, CorrelationKey, Receipt, SuperblockInfo
from engine.poller import EventPoller
from engine.transactions import submit_and_wait
from helper.hexutil import normalize_hex
from ledger.base import LedgerEventSource

logger = logging.getLogger(__name__)


def _latest(events: List[LedgerEvent]) -> LedgerEvent:
    # Emission order, not argument order or timestamps.
    return max(events, key=LedgerEvent.position)


def _fetch(
    ledger: LedgerEventSource,
    contract: ContractRef,
    name: EventName,
    from_block: int,
    cancel: Optional[CancelToken],
) -> List[LedgerEvent]:
    check_cancelled(cancel)
    return [decode_event(raw) for raw in ledger.query_events(contract, name.value, from_block, None)]


# ======================================================================
# 1. Header battles
# ======================================================================

def resolve_last_header_battle(
    ledger: LedgerEventSource,
    battle_manager: ContractRef,
    *,
    from_block: int = 0,
    cancel: Optional[CancelToken] = None,
) -> NewBattleEvent:
    """
    Return the most recent NewBattle event in [from_block, latest].

    Raises NoActiveBattleError when no battle was ever started. The
    result only depends on log positions, whatever order the source
    returns events in.
    """
    events = _fetch(ledger, battle_manager, EventName.NEW_BATTLE, from_block, cancel)
    if not events:
        raise NoActiveBattleError("No battles started yet.")
    last = _latest(events)
    logger.info("last battle: session=%s superblock=%s", last.session_id, last.superblock_id)
    return last


def resolve_header_battle_for(
    ledger: LedgerEventSource,
    battle_manager: ContractRef,
    session_id: str,
    *,
    from_block: int = 0,
    cancel: Optional[CancelToken] = None,
) -> NewBattleEvent:
    """Return the NewBattle event of a specific session."""
    wanted = normalize_hex(session_id)
    events = [
        ev for ev in _fetch(ledger, battle_manager, EventName.NEW_BATTLE, from_block, cancel)
        if ev.session_id == wanted
    ]
    if not events:
        raise NoActiveBattleError(f"No battle with session id {wanted}.")
    return _latest(events)


def bind_as_challenger(event: NewBattleEvent, local_address: str) -> CorrelationKey:
    """
    Check that `local_address` is the challenger recorded in `event` and
    return the battle's correlation key.

    Acting in a battle we are not the challenger of would only produce
    reverts further down, so this is refused up front.
    """
    local = normalize_hex(local_address)
    if local != event.challenger:
        raise WrongChallengerError(expected=event.challenger, actual=local)
    return event.correlation_key()


# ======================================================================
# 2. Scrypt claims
# ======================================================================

def resolve_last_scrypt_claim(
    ledger: LedgerEventSource,
    scrypt_claims: ContractRef,
    *,
    from_block: int = 0,
    cancel: Optional[CancelToken] = None,
) -> ClaimCreatedEvent:
    """Return the most recent ClaimCreated event of the scrypt claims contract."""
    events = _fetch(ledger, scrypt_claims, EventName.CLAIM_CREATED, from_block, cancel)
    if not events:
        raise NoVerificationGameError("No claims made yet.")
    return _latest(events)


# ======================================================================
# 3. Opening a battle
# ======================================================================

def ensure_deposit(
    ledger: LedgerEventSource,
    contract: ContractRef,
    *,
    deposit: Optional[int] = None,
    default_deposit: int = 1000,
    cancel: Optional[CancelToken] = None,
) -> int:
    """
    Make sure the local account has funds deposited in `contract`.

    An explicit `deposit` is always made; otherwise `default_deposit` is
    deposited only when the current balance is zero. Returns the balance
    after any deposit. Sufficiency is left for the contract to judge.
    """
    balance = int(ledger.call_view(contract, "getDeposit", ledger.sender))
    amount = deposit if deposit is not None else (default_deposit if balance == 0 else None)
    if amount is not None:
        submit_and_wait(ledger, contract, "makeDeposit", value=amount, cancel=cancel)
        balance = int(ledger.call_view(contract, "getDeposit", ledger.sender))
    logger.info("deposits of %s in %s: %d", ledger.sender, contract.name, balance)
    return balance


def next_superblock_id(
    ledger: LedgerEventSource,
    superblocks: ContractRef,
    poller: EventPoller,
    *,
    superblock_id: Optional[str] = None,
    from_block: Optional[int] = None,
    timeout: float = 600.0,
    cancel: Optional[CancelToken] = None,
) -> str:
    """
    Return the superblock to challenge.

    If `superblock_id` is already known to the superblocks contract it is
    returned right away. Otherwise wait for a NewSuperblock event (for that
    id, or any id other than the current best superblock).
    """
    if superblock_id is not None:
        wanted = normalize_hex(superblock_id)
        info = SuperblockInfo.from_view(wanted, ledger.call_view(superblocks, "getSuperblock", wanted))
        if info.status != SuperblockStatus.UNINITIALIZED:
            return wanted
    else:
        wanted = None

    best = normalize_hex(ledger.call_view(superblocks, "getBestSuperblock"))

    def _accept(event: LedgerEvent) -> bool:
        if event.superblock_id == best:
            return False
        return wanted is None or event.superblock_id == wanted

    start = ledger.block_number() + 1 if from_block is None else from_block
    try:
        events = poller.poll(
            [(superblocks, EventName.NEW_SUPERBLOCK)], start, timeout, _accept, cancel
        )
    except PollTimeoutError:
        logger.error("no new superblock within %ss", timeout)
        raise
    event: NewSuperblockEvent = events[0]
    return event.superblock_id


def challenge_superblock(
    ledger: LedgerEventSource,
    superblock_claims: ContractRef,
    superblock_id: str,
    *,
    cancel: Optional[CancelToken] = None,
) -> Tuple[Optional[SuperblockClaimChallengedEvent], Optional[NewBattleEvent], Receipt]:
    """
    Submit challengeSuperblock and pick the SuperblockClaimChallenged and
    NewBattle events out of the receipt. Either may be missing: the claim
    contract only starts a battle when no other challenger is ahead.

    The caller is expected to have a sufficient deposit (ensure_deposit).
    """
    wanted = normalize_hex(superblock_id)
    receipt = submit_and_wait(
        ledger, superblock_claims, "challengeSuperblock", wanted, cancel=cancel
    )
    challenged = decode_events(receipt.events, EventName.SUPERBLOCK_CLAIM_CHALLENGED)
    battles = decode_events(receipt.events, EventName.NEW_BATTLE)
    challenge_event = challenged[0] if challenged else None
    battle_event = battles[0] if battles else None
    if challenge_event is None:
        logger.warning("failed to challenge superblock %s", wanted)
    elif battle_event is not None:
        logger.info("battle started: session=%s", battle_event.session_id)
    return challenge_event, battle_event, receipt
