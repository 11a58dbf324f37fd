import pytest

from core.enums import EventName
from core.errors import OperationCancelledError, PollTimeoutError
from engine.poller import EventPoller
from tests.scenario import (
    OTHER_SESSION_ID,
    SESSION_ID,
    response_args,
)

MERKLE = EventName.RESPOND_MERKLE_ROOT_HASHES
HEADER = EventName.RESPOND_BLOCK_HEADER


def test_returns_all_matches_of_first_productive_pass(ledger, contracts, poller):
    bm = contracts.battle_manager
    ledger.schedule(2, bm, HEADER.value, response_args(blockHash="0x" + "11" * 32))
    ledger.schedule(2, bm, MERKLE.value, response_args())
    ledger.schedule(3, bm, MERKLE.value, response_args())

    events = poller.poll([(bm, MERKLE), (bm, HEADER)], from_block=1, timeout=10)

    assert [e.block_number for e in events] == [2, 2]
    # log order, not source order
    assert [e.name for e in events] == ["RespondBlockHeader", "RespondMerkleRootHashes"]


def test_filter_discards_foreign_events(ledger, contracts, poller):
    bm = contracts.battle_manager
    ledger.schedule(1, bm, MERKLE.value, response_args(session_id=OTHER_SESSION_ID))
    ledger.schedule(2, bm, MERKLE.value, response_args())

    events = poller.poll(
        [(bm, MERKLE)], 1, 10, accept=lambda ev: ev.session_id == SESSION_ID
    )

    assert len(events) == 1
    assert events[0].block_number == 2


def test_blocks_before_cursor_are_not_scanned(ledger, contracts, poller):
    bm = contracts.battle_manager
    ledger.emit(bm, MERKLE.value, response_args())
    ledger.schedule(3, bm, MERKLE.value, response_args())

    events = poller.poll([(bm, MERKLE)], from_block=1, timeout=10)

    assert [e.block_number for e in events] == [3]


@pytest.mark.parametrize("timeout", [1.0, 0.5, 0.3])
def test_timeout_is_bounded(ledger, contracts, clock, poller, timeout):
    start = clock()
    with pytest.raises(PollTimeoutError):
        poller.poll([(contracts.battle_manager, MERKLE)], 1, timeout)

    elapsed = clock() - start
    assert elapsed >= timeout - 1e-9
    assert elapsed <= timeout + poller.poll_interval
    assert all(s <= poller.poll_interval for s in clock.sleeps)


def test_cancel_stops_polling(ledger, contracts, clock, cancel):
    def sleep(seconds):
        clock.advance(seconds)
        cancel.cancel()

    poller = EventPoller(ledger, poll_interval=0.2, clock=clock, sleep=sleep)
    with pytest.raises(OperationCancelledError):
        poller.poll([(contracts.battle_manager, MERKLE)], 1, 60, cancel=cancel)
    assert clock() == pytest.approx(0.2)


def test_poll_interval_must_be_positive(ledger):
    with pytest.raises(ValueError):
        EventPoller(ledger, poll_interval=0)
