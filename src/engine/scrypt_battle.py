from __future__ import annotations

import logging
from typing import Optional

from core.cancel import CancelToken, check_cancelled
from core.enums import EventName
from core.errors import NoVerificationGameError
from core.events import ClaimCreatedEvent, VerificationGameStartedEvent, decode_events
from core.models import ContractRef, Receipt, ScryptClaim
from engine.resolver import ensure_deposit, resolve_last_scrypt_claim
from engine.transactions import submit_and_wait
from helper.hexutil import normalize_hex
from ledger.base import LedgerEventSource

logger = logging.getLogger(__name__)

SCRYPT_VERIFIER_ABI = "ScryptVerifier"

# 0.1 ether
DEFAULT_SCRYPT_DEPOSIT = 10 ** 17


class ScryptBattle:
    """
    Challenger side of a scrypt verification game.

    Started when a header battle asks for a scrypt hash to be proven. The
    scrypt claims contract creates a claim; the challenger challenges it
    and starts a verification game, which then runs on a dedicated
    verifier contract under a session id of its own (unrelated to the
    header battle's session id).

    `query(step)` submits one bisection step. Interpreting the verifier's
    answers (which half to descend into, when the game is won) is left to
    the caller's strategy.
    """

    def __init__(
        self,
        ledger: LedgerEventSource,
        scrypt_verifier: ContractRef,
        claim_id: str,
        session_id: str,
    ) -> None:
        self.ledger = ledger
        self.claim = ScryptClaim(claim_id=claim_id, session_id=session_id, verifier=scrypt_verifier)

    def __repr__(self) -> str:
        return f"ScryptBattle(claim={self.claim_id}, session={self.session_id})"

    @property
    def claim_id(self) -> str:
        return self.claim.claim_id

    @property
    def session_id(self) -> str:
        return self.claim.session_id

    @property
    def scrypt_verifier(self) -> ContractRef:
        return self.claim.verifier

    # ------------------------------------------------------------------
    # Bootstrap
    # ------------------------------------------------------------------

    @classmethod
    def challenge_claim_created_event(
        cls,
        ledger: LedgerEventSource,
        scrypt_claims: ContractRef,
        event: ClaimCreatedEvent,
        *,
        cancel: Optional[CancelToken] = None,
    ) -> "ScryptBattle":
        """
        Challenge the claim announced by `event` and start its verification
        game:

          1. challengeClaim(claimId)
          2. runNextVerificationGame(claimId); the game's session id is
             taken from the VerificationGameStarted event in that receipt
          3. look up the verifier contract through scryptVerifier()
        """
        claim_id = event.claim_id
        submit_and_wait(ledger, scrypt_claims, "challengeClaim", claim_id, cancel=cancel)

        receipt = submit_and_wait(
            ledger, scrypt_claims, "runNextVerificationGame", claim_id, cancel=cancel
        )
        started = decode_events(receipt.events, EventName.VERIFICATION_GAME_STARTED)
        if not started:
            raise NoVerificationGameError(
                f"No verification games found! (claim {claim_id}, tx {receipt.transaction_hash})"
            )
        game: VerificationGameStartedEvent = started[0]

        check_cancelled(cancel)
        verifier_address = ledger.call_view(scrypt_claims, "scryptVerifier")
        verifier = ContractRef(name=SCRYPT_VERIFIER_ABI, address=verifier_address)

        logger.info(
            "verification game started: claim=%s session=%s verifier=%s",
            claim_id, game.session_id, verifier.address,
        )
        return cls(ledger, verifier, claim_id, game.session_id)

    @classmethod
    def challenge_last_scrypt_claim(
        cls,
        ledger: LedgerEventSource,
        scrypt_claims: ContractRef,
        *,
        from_block: int = 0,
        deposit: Optional[int] = DEFAULT_SCRYPT_DEPOSIT,
        cancel: Optional[CancelToken] = None,
    ) -> "ScryptBattle":
        """
        Deposit (unless `deposit` is None), then challenge the most recent
        scrypt claim.
        """
        if deposit is not None:
            ensure_deposit(ledger, scrypt_claims, deposit=deposit, cancel=cancel)
        event = resolve_last_scrypt_claim(
            ledger, scrypt_claims, from_block=from_block, cancel=cancel
        )
        return cls.challenge_claim_created_event(ledger, scrypt_claims, event, cancel=cancel)

    # ------------------------------------------------------------------
    # Bisection
    # ------------------------------------------------------------------

    def query(self, step: int, cancel: Optional[CancelToken] = None) -> Receipt:
        """Ask the claimant for the computation state at `step`."""
        if step < 0:
            raise ValueError(f"step must be non-negative, got {step}")
        return submit_and_wait(
            self.ledger,
            self.scrypt_verifier,
            "query",
            self.session_id,
            int(step),
            session_id=self.session_id,
            cancel=cancel,
        )

    def session(self, cancel: Optional[CancelToken] = None):
        """Raw verifier session state (getSession), uninterpreted."""
        check_cancelled(cancel)
        return self.ledger.call_view(self.scrypt_verifier, "getSession", self.session_id)
