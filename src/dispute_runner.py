# dispute_runner.py
from __future__ import annotations

import argparse
import logging
from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence

from core.cancel import CancelToken
from core.config import DisputeConfig, load_config
from core.errors import DefenderTimeoutError, DisputeError
from core.models import DisputeContracts
from engine.battle import Battle
from engine.poller import EventPoller
from engine.resolver import (
    challenge_superblock,
    ensure_deposit,
    next_superblock_id,
)
from engine.scrypt_battle import ScryptBattle
from engine.strategy import advance_battle
from helper.log import configure_logging
from ledger.base import LedgerEventSource
from reporting.status import SEPARATOR, StatusReporter

logger = logging.getLogger("dispute_runner")


@dataclass
class RunContext:
    """
    Everything a command needs, built once from the configuration:

      - config:    validated DisputeConfig
      - ledger:    LedgerEventSource bound to the local signer
      - contracts: the four contract handles
      - cancel:    token shared by every wait of this run
    """
    config: DisputeConfig
    ledger: LedgerEventSource
    contracts: DisputeContracts
    cancel: CancelToken

    def poller(self) -> EventPoller:
        return EventPoller(self.ledger, poll_interval=self.config.poll_interval)


def make_context(config: DisputeConfig) -> RunContext:
    # web3 is only needed when talking to a real node
    from ledger.web3_source import Web3EventSource, load_abis

    if config.challenger_address is None:
        raise ValueError("challenger_address is not configured")
    contracts = config.contracts()
    ledger = Web3EventSource.from_rpc(
        config.rpc_url,
        load_abis(config.abi_dir),
        sender=config.challenger_address,
        receipt_timeout=config.response_timeout,
    )
    ledger.bind(
        contracts.superblocks,
        contracts.superblock_claims,
        contracts.battle_manager,
        contracts.scrypt_claims,
    )
    return RunContext(config=config, ledger=ledger, contracts=contracts, cancel=CancelToken())


# -------------------------------------------------------------------------
# Commands
# -------------------------------------------------------------------------

def run_status(ctx: RunContext, args: argparse.Namespace) -> List[str]:
    reporter = StatusReporter(ctx.ledger, ctx.contracts)
    out = ["status superblocks", SEPARATOR]
    if args.superblock_id:
        out.append(reporter.render_superblock(args.superblock_id, ctx.cancel))
    else:
        from_block = args.from_block if args.from_block is not None else ctx.config.from_block
        out.append(reporter.render_range(from_block, args.to_block, ctx.cancel))
    out.extend([SEPARATOR, "status superblocks complete"])
    return out


def run_challenge(ctx: RunContext, args: argparse.Namespace) -> Iterator[str]:
    # Yields each line as soon as it is known.
    ledger, contracts, cfg = ctx.ledger, ctx.contracts, ctx.config
    yield f"Making a challenge from: {ledger.sender}"

    balance = ensure_deposit(
        ledger,
        contracts.superblock_claims,
        deposit=args.deposit,
        default_deposit=cfg.default_deposit,
        cancel=ctx.cancel,
    )
    yield f"Deposits: {balance}"

    yield SEPARATOR
    yield StatusReporter(ledger, contracts).render_best_superblock(ctx.cancel)
    yield SEPARATOR

    superblock_id = next_superblock_id(
        ledger,
        contracts.superblocks,
        ctx.poller(),
        superblock_id=args.superblock_id,
        cancel=ctx.cancel,
    )
    challenge_event, battle_event, _ = challenge_superblock(
        ledger, contracts.superblock_claims, superblock_id, cancel=ctx.cancel
    )
    yield SEPARATOR
    if challenge_event is None:
        yield "Failed to challenge next superblock"
        return

    yield f"Challenged superblock: {challenge_event.superblock_id}"
    if battle_event is None:
        yield f"challenger: {challenge_event.challenger}"
        return

    yield "Battle started"
    yield f"sessionId: {battle_event.session_id}"
    yield f"submitter: {battle_event.submitter}"
    yield f"challenger: {battle_event.challenger}"

    if args.advance_battle:
        battle = Battle.from_event(
            ledger, contracts.battle_manager, battle_event, poller=ctx.poller()
        )
        try:
            hashes = advance_battle(
                battle,
                max_headers=cfg.advance_headers,
                timeout=cfg.response_timeout,
                cancel=ctx.cancel,
            )
        except DefenderTimeoutError as exc:
            yield f"{exc} The defender can be timed out."
            return
        yield f"Queried {len(hashes)} block header(s). Challenge abandoned."


def run_battle(ctx: RunContext, args: argparse.Namespace) -> List[str]:
    """Advance the most recent battle the local account is challenger of."""
    battle = Battle.from_last_battle(
        ctx.ledger,
        ctx.contracts.battle_manager,
        from_block=ctx.config.from_block,
        cancel=ctx.cancel,
        poller=ctx.poller(),
    )
    out = [repr(battle)]
    try:
        hashes = advance_battle(
            battle,
            max_headers=ctx.config.advance_headers,
            timeout=ctx.config.response_timeout,
            cancel=ctx.cancel,
        )
    except DefenderTimeoutError as exc:
        out.append(f"{exc} The defender can be timed out.")
        return out
    out.append(f"Queried {len(hashes)} block header(s).")
    return out


def run_scrypt_challenge(ctx: RunContext, args: argparse.Namespace) -> List[str]:
    scrypt_battle = ScryptBattle.challenge_last_scrypt_claim(
        ctx.ledger,
        ctx.contracts.scrypt_claims,
        from_block=ctx.config.from_block,
        deposit=args.deposit,
        cancel=ctx.cancel,
    )
    out = [repr(scrypt_battle)]
    for step in args.steps:
        receipt = scrypt_battle.query(step, cancel=ctx.cancel)
        out.append(f"query({step}) included in block {receipt.block_number}")
    return out


COMMANDS = {
    "status": run_status,
    "challenge": run_challenge,
    "battle": run_battle,
    "scrypt-challenge": run_scrypt_challenge,
}


# -------------------------------------------------------------------------
# Argument parsing
# -------------------------------------------------------------------------

def _int_or_hex(value: str) -> int:
    return int(value, 0)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dispute",
        description="Challenger-side client for superblock verification battles.",
    )
    parser.add_argument("--config", help="YAML configuration file.")
    sub = parser.add_subparsers(dest="command", required=True)

    status = sub.add_parser(
        "status",
        help="Show one superblock, or every superblock proposed in a block range.",
    )
    status.add_argument("--superblock-id", help="Overrides --from-block/--to-block.")
    status.add_argument("--from-block", type=int, default=None)
    status.add_argument("--to-block", type=int, default=None)

    challenge = sub.add_parser("challenge", help="Challenge a superblock (the next one by default).")
    challenge.add_argument("--superblock-id", help="Wait for this superblock if not yet proposed.")
    challenge.add_argument("--deposit", type=_int_or_hex, default=None, help="Deposit in wei.")
    challenge.add_argument(
        "--advance-battle",
        action="store_true",
        help="Query the first block headers of the battle, then abandon it.",
    )

    sub.add_parser("battle", help="Advance the last battle of the local challenger.")

    scrypt = sub.add_parser("scrypt-challenge", help="Challenge the last scrypt claim.")
    scrypt.add_argument("--deposit", type=_int_or_hex, default=10 ** 17)
    scrypt.add_argument("--steps", type=int, nargs="*", default=[], help="Bisection steps to query.")
    return parser


def main(argv: Optional[Sequence[str]] = None, ctx: Optional[RunContext] = None) -> int:
    args = build_parser().parse_args(argv)
    config = ctx.config if ctx is not None else load_config(args.config)
    configure_logging(config.log_level, config.log_format)

    if ctx is None:
        ctx = make_context(config)

    try:
        for line in COMMANDS[args.command](ctx, args):
            print(line)
    except KeyboardInterrupt:
        ctx.cancel.cancel()
        logger.warning("interrupted")
        return 130
    except DisputeError as exc:
        logger.error("%s: %s", type(exc).__name__, exc)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
