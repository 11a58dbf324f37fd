# src/core/enums.py
from __future__ import annotations

from enum import Enum
from typing import Dict


class SuperblockStatus(int, Enum):
    """
    Acceptance lifecycle of a superblock, mirroring the `Status` enum of
    the superblocks contract.

    This is independent of any single battle: a superblock stays InBattle
    while one or more challengers are disputing it, then becomes
    SemiApproved/Approved or Invalid once the claim is decided.
    """
    UNINITIALIZED = 0
    NEW = 1
    IN_BATTLE = 2
    SEMI_APPROVED = 3
    APPROVED = 4
    INVALID = 5


class ChallengeState(int, Enum):
    """
    State of one header battle, mirroring the `ChallengeState` enum of the
    battle manager contract.

    The values are ordered by the progress of one battle round:

        Unchallenged → Challenged
          → QueryMerkleRootHashes → RespondMerkleRootHashes
          → QueryBlockHeader → RespondBlockHeader
          → VerifyScryptHash → RequestScryptVerification
          → PendingScryptVerification → PendingVerification
          → {SuperblockVerified | SuperblockFailed}

    The client never computes transitions. The battle manager is the only
    authority; these values are only used to decide whose turn it is and
    to render state for operators.
    """
    UNCHALLENGED = 0
    CHALLENGED = 1
    QUERY_MERKLE_ROOT_HASHES = 2
    RESPOND_MERKLE_ROOT_HASHES = 3
    QUERY_BLOCK_HEADER = 4
    RESPOND_BLOCK_HEADER = 5
    VERIFY_SCRYPT_HASH = 6
    REQUEST_SCRYPT_VERIFICATION = 7
    PENDING_SCRYPT_VERIFICATION = 8
    PENDING_VERIFICATION = 9
    SUPERBLOCK_VERIFIED = 10
    SUPERBLOCK_FAILED = 11

    @property
    def is_terminal(self) -> bool:
        return self in (ChallengeState.SUPERBLOCK_VERIFIED, ChallengeState.SUPERBLOCK_FAILED)

    @property
    def is_challenger_turn(self) -> bool:
        """
        True when the battle is waiting on the challenger to issue the next
        query (as opposed to waiting on the submitter or on a verifier).
        """
        return self in _CHALLENGER_TURN


_CHALLENGER_TURN = frozenset({
    ChallengeState.CHALLENGED,
    ChallengeState.RESPOND_MERKLE_ROOT_HASHES,
    ChallengeState.RESPOND_BLOCK_HEADER,
    ChallengeState.VERIFY_SCRYPT_HASH,
})


class EventName(str, Enum):
    """
    Canonical names of the contract events consumed by the dispute engine.
    """

    # ---- Superblocks / claims ----
    NEW_SUPERBLOCK = "NewSuperblock"
    SUPERBLOCK_CLAIM_CHALLENGED = "SuperblockClaimChallenged"

    # ---- Battle manager ----
    NEW_BATTLE = "NewBattle"
    RESPOND_MERKLE_ROOT_HASHES = "RespondMerkleRootHashes"
    RESPOND_BLOCK_HEADER = "RespondBlockHeader"
    RESOLVED_SCRYPT_HASH_VALIDATION = "ResolvedScryptHashValidation"

    # ---- Scrypt claims / verifier ----
    CLAIM_CREATED = "ClaimCreated"
    VERIFICATION_GAME_STARTED = "VerificationGameStarted"


# ======================================================================
# Labels
# ======================================================================

SUPERBLOCK_STATUS_LABELS: Dict[SuperblockStatus, str] = {
    SuperblockStatus.UNINITIALIZED: "Uninitialized",
    SuperblockStatus.NEW: "New",
    SuperblockStatus.IN_BATTLE: "InBattle",
    SuperblockStatus.SEMI_APPROVED: "SemiApproved",
    SuperblockStatus.APPROVED: "Approved",
    SuperblockStatus.INVALID: "Invalid",
}

CHALLENGE_STATE_LABELS: Dict[ChallengeState, str] = {
    ChallengeState.UNCHALLENGED: "Unchallenged",
    ChallengeState.CHALLENGED: "Challenged",
    ChallengeState.QUERY_MERKLE_ROOT_HASHES: "Merkle root hashes queried",
    ChallengeState.RESPOND_MERKLE_ROOT_HASHES: "Merkle root hashes replied",
    ChallengeState.QUERY_BLOCK_HEADER: "Block header queried",
    ChallengeState.RESPOND_BLOCK_HEADER: "Block header replied",
    ChallengeState.VERIFY_SCRYPT_HASH: "Waiting scrypt hash request",
    ChallengeState.REQUEST_SCRYPT_VERIFICATION: "Scrypt hash verification requested",
    ChallengeState.PENDING_SCRYPT_VERIFICATION: "Scrypt hash verification pending",
    ChallengeState.PENDING_VERIFICATION: "Superblock verification pending",
    ChallengeState.SUPERBLOCK_VERIFIED: "Superblock verified",
    ChallengeState.SUPERBLOCK_FAILED: "Superblock failed",
}


def challenge_state_label(code: int) -> str:
    """
    Human-readable label for a raw challenge-state code.

    Total over all integers: codes the contract may add in a later version
    map to an explicit invalid-state label instead of raising.
    """
    try:
        state = ChallengeState(int(code))
    except (TypeError, ValueError):
        return f"--Invalid state ({code})--"
    return CHALLENGE_STATE_LABELS[state]


def superblock_status_label(code: int) -> str:
    """Human-readable label for a raw superblock status code (total)."""
    try:
        status = SuperblockStatus(int(code))
    except (TypeError, ValueError):
        return f"--Unknown status ({code})--"
    return SUPERBLOCK_STATUS_LABELS[status]
