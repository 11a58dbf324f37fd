import io
import json
import logging

import pytest

from core.cancel import CancelToken
from core.config import DisputeConfig
from dispute_runner import RunContext, build_parser, main, run_challenge
from helper.log import configure_logging
from reporting.status import SEPARATOR
from tests.scenario import (
    CHALLENGER,
    OTHER_SUPERBLOCK_ID,
    SESSION_ID,
    SUBMITTER,
    SUPERBLOCK_ID,
    claim_tuple,
    new_battle_args,
    session_tuple,
    superblock_tuple,
)


@pytest.fixture
def ctx(ledger, contracts):
    return RunContext(
        config=DisputeConfig(poll_interval=0.01, response_timeout=0.05),
        ledger=ledger,
        contracts=contracts,
        cancel=CancelToken(),
    )


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def test_parser():
    args = build_parser().parse_args(
        ["challenge", "--superblock-id", SUPERBLOCK_ID, "--deposit", "0x10", "--advance-battle"]
    )
    assert args.command == "challenge"
    assert args.deposit == 16
    assert args.advance_battle

    args = build_parser().parse_args(["scrypt-challenge", "--steps", "1", "5"])
    assert args.steps == [1, 5]
    assert args.deposit == 10 ** 17


def test_status_command(ledger, contracts, ctx, capsys):
    ledger.set_view(contracts.superblocks, "getSuperblock", superblock_tuple(2))
    ledger.set_view(contracts.superblock_claims, "claims", claim_tuple())
    ledger.set_view(contracts.superblock_claims, "getClaimChallengers", [CHALLENGER])
    ledger.set_view(contracts.superblock_claims, "getSession", SESSION_ID)
    ledger.set_view(contracts.battle_manager, "sessions", session_tuple(4))

    assert main(["status", "--superblock-id", SUPERBLOCK_ID], ctx=ctx) == 0

    out = capsys.readouterr().out
    assert f"Superblock: {SUPERBLOCK_ID}" in out
    assert "Challenge state: Block header queried" in out
    assert out.rstrip().endswith("status superblocks complete")


def challenge_views(ledger, contracts):
    ledger.set_view(contracts.superblock_claims, "getDeposit", 10)
    ledger.set_view(contracts.superblocks, "getSuperblock", superblock_tuple(1))
    ledger.set_view(contracts.superblocks, "getBestSuperblock", OTHER_SUPERBLOCK_ID)
    ledger.set_view(contracts.superblocks, "getSuperblockHeight", 42)


def test_challenge_command(ledger, contracts, ctx, capsys):
    claims, bm = contracts.superblock_claims, contracts.battle_manager
    challenge_views(ledger, contracts)
    ledger.on_transaction(
        claims,
        "challengeSuperblock",
        lambda pending: [
            (claims, "SuperblockClaimChallenged",
             {"superblockHash": SUPERBLOCK_ID, "challenger": CHALLENGER}),
            (bm, "NewBattle", new_battle_args()),
        ],
    )

    assert main(["challenge", "--superblock-id", SUPERBLOCK_ID], ctx=ctx) == 0

    out = capsys.readouterr().out
    assert "Deposits: 10" in out
    assert f"Last superblock: {OTHER_SUPERBLOCK_ID}\nHeight: 42\n" in out
    assert "Date: 2017-07-14T02:40:00+00:00" in out
    assert f"Last doge hash: {'0x' + 'ee' * 32}" in out
    assert f"sessionId: {SESSION_ID}" in out
    assert f"submitter: {SUBMITTER}" in out
    assert ledger.sent_methods() == ["challengeSuperblock"]


def test_challenge_reports_best_superblock_before_waiting(ledger, contracts, ctx):
    challenge_views(ledger, contracts)
    lines = run_challenge(ctx, build_parser().parse_args(["challenge"]))

    head = [next(lines) for _ in range(5)]
    lines.close()

    assert head[2] == head[4] == SEPARATOR
    assert head[3].splitlines() == [
        f"Last superblock: {OTHER_SUPERBLOCK_ID}",
        "Height: 42",
        "Date: 2017-07-14T02:40:00+00:00",
        f"Last doge hash: {'0x' + 'ee' * 32}",
    ]
    assert ledger.sent == []


def test_battle_command_without_battles(ctx, capsys):
    assert main(["battle"], ctx=ctx) == 1
    assert capsys.readouterr().out == ""


def test_battle_command_reports_defender_timeout(ledger, contracts, ctx, capsys):
    ledger.emit(contracts.battle_manager, "NewBattle", new_battle_args())

    assert main(["battle"], ctx=ctx) == 0

    out = capsys.readouterr().out
    assert "Defender timed out!" in out
    assert ledger.sent_methods() == ["queryMerkleRootHashes"]


def test_json_logging():
    stream = io.StringIO()
    configure_logging("debug", "json", stream=stream)
    configure_logging("debug", "json", stream=stream)

    logging.getLogger("engine.battle").info("response %s", "RespondBlockHeader")

    records = [json.loads(line) for line in stream.getvalue().splitlines()]
    assert records == [
        {
            "time": records[0]["time"],
            "level": "INFO",
            "logger": "engine.battle",
            "message": "response RespondBlockHeader",
        }
    ]
