from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional

from core.cancel import CancelToken, check_cancelled
from core.enums import EventName, challenge_state_label, superblock_status_label
from core.events import NewSuperblockEvent, decode_events
from core.models import BattleStatus, ClaimInfo, DisputeContracts, SessionInfo, SuperblockInfo
from helper.hexutil import normalize_hex
from ledger.base import LedgerEventSource

logger = logging.getLogger(__name__)

SEPARATOR = "----------"
INNER_SEPARATOR = "    ----------"


def format_timestamp(ts: int) -> str:
    """UNIX seconds → ISO-8601 in UTC."""
    return datetime.fromtimestamp(int(ts), tz=timezone.utc).isoformat()


class StatusReporter:
    """
    Read-only view over superblocks, their claims and the battles fought
    over them, rendered as a plain-text report for operators.

    Nothing here submits a transaction or keeps state between calls:
    every report is rebuilt from view calls and events.

    Per challenger, the report distinguishes (with `current` the claim's
    1-based current challenger index):

        index == current, claim decided   → succeeded / failed
        index == current, verification on → battle details + state label
        index == current, otherwise       → waiting
        index <  current                  → failed
        index >  current                  → pending
    """

    def __init__(self, ledger: LedgerEventSource, contracts: DisputeContracts) -> None:
        self.ledger = ledger
        self.contracts = contracts

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def superblock_info(self, superblock_id: str) -> SuperblockInfo:
        value = self.ledger.call_view(self.contracts.superblocks, "getSuperblock", superblock_id)
        return SuperblockInfo.from_view(superblock_id, value)

    def claim_info(self, superblock_id: str) -> ClaimInfo:
        value = self.ledger.call_view(self.contracts.superblock_claims, "claims", superblock_id)
        return ClaimInfo.from_view(superblock_id, value)

    def challengers(self, superblock_id: str) -> List[str]:
        value = self.ledger.call_view(
            self.contracts.superblock_claims, "getClaimChallengers", superblock_id
        )
        return [normalize_hex(c) for c in value]

    def battle_status(self, superblock_id: str, challenger: str) -> BattleStatus:
        session_id = self.ledger.call_view(
            self.contracts.superblock_claims, "getSession", superblock_id, challenger
        )
        session = SessionInfo.from_view(
            self.ledger.call_view(self.contracts.battle_manager, "sessions", session_id)
        )
        return BattleStatus(session_id=session_id, challenger=challenger, battle=session)

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def render_superblock(
        self, superblock_id: str, cancel: Optional[CancelToken] = None
    ) -> str:
        superblock_id = normalize_hex(superblock_id)
        check_cancelled(cancel)
        superblock = self.superblock_info(superblock_id)
        challengers = self.challengers(superblock_id)
        claim = self.claim_info(superblock_id)
        check_cancelled(cancel)
        battles = [self.battle_status(superblock_id, c) for c in challengers]

        lines = [
            f"Superblock: {superblock_id}",
            f"Submitter: {superblock.submitter}",
            f"Last block Timestamp: {format_timestamp(superblock.timestamp)}",
            f"Status: {superblock_status_label(superblock.status)}",
            f"Superblock submitted: {format_timestamp(claim.created_at)}",
            f"Challengers: {len(challengers)}",
            f"Challengers Timeout: {format_timestamp(claim.challenge_timeout)}",
        ]
        if claim.decided:
            lines.append(f"Claim decided: {'invalid' if claim.invalid else 'valid'}")
        else:
            lines.append(
                f"Verification: {'ongoing' if claim.verification_ongoing else 'paused/stopped'}"
            )

        if challengers:
            lines.append(f"Current challenger: {claim.current_challenger}")
            for index, status in enumerate(battles, start=1):
                lines.append(INNER_SEPARATOR)
                lines.append(f"    Challenger: {status.challenger}")
                lines.append(f"    Battle session: {status.session_id}")
                lines.extend(self._challenge_lines(claim, index, status.battle))

        return "\n".join(lines)

    @staticmethod
    def _challenge_lines(claim: ClaimInfo, index: int, battle: SessionInfo) -> List[str]:
        if claim.current_challenger == index:
            if claim.decided:
                return [f"    Challenge state: {'succeeded' if claim.invalid else 'failed'}"]
            if claim.verification_ongoing:
                return [
                    f"        Last action timestamp: {format_timestamp(battle.last_action_timestamp)}",
                    f"        Last action: {battle.last_actor()}",
                    f"        State: {challenge_state_label(battle.challenge_state)}",
                    f"    Challenge state: {challenge_state_label(battle.challenge_state)}",
                ]
            return ["    Challenge state: waiting"]
        if claim.current_challenger > index:
            return ["    Challenge state: failed"]
        return ["    Challenge state: pending"]

    def render_best_superblock(self, cancel: Optional[CancelToken] = None) -> str:
        """Tip of the superblock chain: id, height, date and last Dogecoin block."""
        check_cancelled(cancel)
        superblocks = self.contracts.superblocks
        best = normalize_hex(self.ledger.call_view(superblocks, "getBestSuperblock"))
        superblock = self.superblock_info(best)
        height = self.ledger.call_view(superblocks, "getSuperblockHeight", best)
        return "\n".join([
            f"Last superblock: {best}",
            f"Height: {height}",
            f"Date: {format_timestamp(superblock.timestamp)}",
            f"Last doge hash: {superblock.last_hash}",
        ])

    def render_range(
        self,
        from_block: int = 0,
        to_block: Optional[int] = None,
        cancel: Optional[CancelToken] = None,
    ) -> str:
        """Report every superblock announced by NewSuperblock in the block range."""
        check_cancelled(cancel)
        raws = self.ledger.query_events(
            self.contracts.superblocks, EventName.NEW_SUPERBLOCK.value, from_block, to_block
        )
        events: List[NewSuperblockEvent] = decode_events(raws, EventName.NEW_SUPERBLOCK)
        logger.debug("%d superblock(s) in blocks %s..%s", len(events), from_block, to_block)

        sections = [self.render_superblock(ev.superblock_id, cancel) for ev in events]
        return f"\n{SEPARATOR}\n".join(sections)
