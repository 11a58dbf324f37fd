from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from pydantic import BaseModel, Field, field_validator

from core.enums import ChallengeState, SuperblockStatus, challenge_state_label
from helper.hexutil import normalize_hex

JsonDict = Dict[str, Any]

# An event's position in the ledger: (block_number, log_index).
LogPosition = Tuple[int, int]


def _struct_to_dict(value: Any, field_order: Sequence[str]) -> JsonDict:
    """
    View calls returning a Solidity struct come back either as a mapping
    (named outputs) or as a plain tuple in declaration order. Normalize
    both to a dict keyed by the contract's field names.
    """
    if isinstance(value, Mapping):
        return dict(value)
    values = list(value)
    if len(values) < len(field_order):
        raise ValueError(
            f"Struct has {len(values)} fields, expected at least {len(field_order)}"
        )
    return dict(zip(field_order, values))


# ======================================================================
# 1. Contract references
# ======================================================================

class ContractRef(BaseModel):
    """
    Handle on a deployed contract: its ABI name (used by ledger adapters to
    look up the interface) and its address.
    """

    name: str = Field(..., description="Contract (ABI) name, e.g. 'DogeBattleManager'.")
    address: str = Field(..., description="Deployed address.")

    class Config:
        frozen = True

    @field_validator("address", mode="before")
    @classmethod
    def _normalize_address(cls, v: Any) -> str:
        return normalize_hex(v)


class DisputeContracts(BaseModel):
    """
    The set of contracts a challenger talks to. Passed explicitly to every
    component instead of being looked up from a global deployment cache.
    """

    superblocks: ContractRef
    superblock_claims: ContractRef
    battle_manager: ContractRef
    scrypt_claims: ContractRef

    @classmethod
    def from_addresses(
        cls,
        *,
        superblocks: str,
        superblock_claims: str,
        battle_manager: str,
        scrypt_claims: str,
    ) -> "DisputeContracts":
        return cls(
            superblocks=ContractRef(name="DogeSuperblocks", address=superblocks),
            superblock_claims=ContractRef(name="DogeSuperblockClaims", address=superblock_claims),
            battle_manager=ContractRef(name="DogeBattleManager", address=battle_manager),
            scrypt_claims=ContractRef(name="ScryptClaims", address=scrypt_claims),
        )


# ======================================================================
# 2. Raw ledger data (what a LedgerEventSource hands back)
# ======================================================================

class RawEvent(BaseModel):
    """
    An event as delivered by the ledger: name, loosely typed arguments and
    its position. Decoded into a typed event by core.events.decode_event
    before anything else looks at it.
    """

    name: str
    args: JsonDict = Field(default_factory=dict)
    block_number: int
    log_index: int = 0
    transaction_hash: Optional[str] = None
    address: Optional[str] = Field(
        default=None,
        description="Emitting contract, when the source knows it.",
    )

    def position(self) -> LogPosition:
        return (self.block_number, self.log_index)


class PendingTransaction(BaseModel):
    """A submitted, not yet included, transaction."""

    transaction_hash: str
    contract: ContractRef
    method: str
    args: List[Any] = Field(default_factory=list)
    value: int = 0


class Receipt(BaseModel):
    """
    Inclusion receipt: success flag plus every event emitted by the
    transaction, in log order.
    """

    transaction_hash: str
    block_number: int
    status: bool
    events: List[RawEvent] = Field(default_factory=list)


# ======================================================================
# 3. Correlation key
# ======================================================================

class CorrelationKey(BaseModel):
    """
    (superblock_id, session_id): binds ledger events to one battle.
    Response events with any other key belong to another dispute.
    """

    superblock_id: str
    session_id: str

    class Config:
        frozen = True

    @field_validator("superblock_id", "session_id", mode="before")
    @classmethod
    def _normalize(cls, v: Any) -> str:
        return normalize_hex(v)

    def to_tuple(self) -> Tuple[str, str]:
        return (self.superblock_id, self.session_id)


# ======================================================================
# 4. On-chain state projections
# ======================================================================

CLAIM_FIELDS = (
    "superblockHash",
    "submitter",
    "createdAt",
    "currentChallenger",
    "challengeTimeout",
    "verificationOngoing",
    "decided",
    "invalid",
)

SESSION_FIELDS = (
    "id",
    "superblockHash",
    "submitter",
    "challenger",
    "lastActionTimestamp",
    "lastActionClaimant",
    "lastActionChallenger",
    "actionsCounter",
    "countBlockHeaderQueries",
    "countBlockHeaderResponses",
    "pendingScryptHashId",
    "challengeState",
)

# Output order of DogeSuperblocks.getSuperblock(); fields we do not use
# are still listed so positional results line up.
SUPERBLOCK_FIELDS = (
    "blocksMerkleRoot",
    "accumulatedWork",
    "timestamp",
    "prevTimestamp",
    "lastHash",
    "lastBits",
    "parentId",
    "submitter",
    "status",
)


class ClaimInfo(BaseModel):
    """
    Projection of a superblock claim held by the claims contract.

    `current_challenger` is 1-based; 0 means no challenger is active.
    The claim is terminal once `decided` is true.
    """

    superblock_id: str
    submitter: str
    created_at: int
    current_challenger: int = 0
    challenge_timeout: int = 0
    verification_ongoing: bool = False
    decided: bool = False
    invalid: bool = False

    @field_validator("superblock_id", "submitter", mode="before")
    @classmethod
    def _normalize(cls, v: Any) -> str:
        return normalize_hex(v)

    @classmethod
    def from_view(cls, superblock_id: str, value: Any) -> "ClaimInfo":
        raw = _struct_to_dict(value, CLAIM_FIELDS)
        return cls(
            superblock_id=superblock_id,
            submitter=raw["submitter"],
            created_at=int(raw["createdAt"]),
            current_challenger=int(raw["currentChallenger"]),
            challenge_timeout=int(raw["challengeTimeout"]),
            verification_ongoing=bool(raw["verificationOngoing"]),
            decided=bool(raw["decided"]),
            invalid=bool(raw["invalid"]),
        )


class SessionInfo(BaseModel):
    """
    Projection of one header battle session held by the battle manager.

    `challenge_state` is kept as the raw integer so that codes unknown to
    this client still round-trip; use `state` / `state_label` to interpret.
    """

    id: str
    superblock_id: str
    submitter: str
    challenger: str
    last_action_timestamp: int = 0
    last_action_claimant: int = 0
    last_action_challenger: int = 0
    actions_counter: int = 0
    count_block_header_queries: int = 0
    count_block_header_responses: int = 0
    pending_scrypt_hash_id: Optional[str] = None
    challenge_state: int = 0

    @field_validator("id", "superblock_id", "submitter", "challenger", mode="before")
    @classmethod
    def _normalize(cls, v: Any) -> str:
        return normalize_hex(v)

    @field_validator("pending_scrypt_hash_id", mode="before")
    @classmethod
    def _normalize_pending(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        h = normalize_hex(v)
        # bytes32(0) means nothing is pending
        return None if int(h, 16) == 0 else h

    @classmethod
    def from_view(cls, value: Any) -> "SessionInfo":
        raw = _struct_to_dict(value, SESSION_FIELDS)
        return cls(
            id=raw["id"],
            superblock_id=raw["superblockHash"],
            submitter=raw["submitter"],
            challenger=raw["challenger"],
            last_action_timestamp=int(raw["lastActionTimestamp"]),
            last_action_claimant=int(raw["lastActionClaimant"]),
            last_action_challenger=int(raw["lastActionChallenger"]),
            actions_counter=int(raw["actionsCounter"]),
            count_block_header_queries=int(raw["countBlockHeaderQueries"]),
            count_block_header_responses=int(raw["countBlockHeaderResponses"]),
            pending_scrypt_hash_id=raw.get("pendingScryptHashId"),
            challenge_state=int(raw["challengeState"]),
        )

    @property
    def state(self) -> Optional[ChallengeState]:
        try:
            return ChallengeState(self.challenge_state)
        except ValueError:
            return None

    @property
    def state_label(self) -> str:
        return challenge_state_label(self.challenge_state)

    def last_actor(self) -> str:
        """Which side acted last, judged from the two action counters."""
        if self.last_action_claimant > self.last_action_challenger:
            return "claimant"
        return "challenger"

    def is_challenger_turn(self) -> bool:
        state = self.state
        return state is not None and state.is_challenger_turn

    def is_finished(self) -> bool:
        state = self.state
        return state is not None and state.is_terminal


class BattleStatus(BaseModel):
    """One challenger's battle on a superblock, as shown by the status report."""

    session_id: str
    challenger: str
    battle: SessionInfo

    @field_validator("session_id", "challenger", mode="before")
    @classmethod
    def _normalize(cls, v: Any) -> str:
        return normalize_hex(v)


class SuperblockInfo(BaseModel):
    superblock_id: str
    submitter: str
    timestamp: int
    last_hash: Optional[str] = None
    status: int = SuperblockStatus.UNINITIALIZED.value

    @field_validator("superblock_id", "submitter", mode="before")
    @classmethod
    def _normalize(cls, v: Any) -> str:
        return normalize_hex(v)

    @classmethod
    def from_view(cls, superblock_id: str, value: Any) -> "SuperblockInfo":
        raw = _struct_to_dict(value, SUPERBLOCK_FIELDS)
        last_hash = raw.get("lastHash")
        return cls(
            superblock_id=superblock_id,
            submitter=raw["submitter"],
            timestamp=int(raw["timestamp"]),
            last_hash=normalize_hex(last_hash) if last_hash is not None else None,
            status=int(raw["status"]),
        )


# ======================================================================
# 5. Scrypt sub-battle
# ======================================================================

class ScryptClaim(BaseModel):
    """A bound scrypt verification game: claim, session and verifier."""

    claim_id: str
    session_id: str
    verifier: ContractRef

    @field_validator("claim_id", "session_id", mode="before")
    @classmethod
    def _normalize(cls, v: Any) -> str:
        return normalize_hex(v)
