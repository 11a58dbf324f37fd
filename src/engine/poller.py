from __future__ import annotations

import logging
import time
from typing import Callable, List, Optional, Sequence, Tuple

from core.cancel import CancelToken, check_cancelled
from core.enums import EventName
from core.errors import PollTimeoutError
from core.events import LedgerEvent, decode_event
from core.models import ContractRef
from ledger.base import LedgerEventSource

logger = logging.getLogger(__name__)

EventSource = Tuple[ContractRef, EventName]
EventFilter = Callable[[LedgerEvent], bool]

DEFAULT_POLL_INTERVAL = 0.2


class EventPoller:
    """
    Cooperative poll-with-cursor over the ledger's event log.

    The ledger offers no push notifications, so waiting for the opponent is
    modelled as:

        cursor := from_block
        loop:
            if deadline passed           → PollTimeoutError
            latest := ledger.block_number()
            if latest >= cursor:
                scan [cursor, latest] for every (contract, event) source
                keep events accepted by the filter
                cursor := latest + 1           (never rescan a range)
                if any kept                    → return all of them
            sleep(poll_interval)               (fixed, no backoff)

    All matches from the scan pass that found any are returned together,
    in log order; a result is never split across polls.

    `clock` and `sleep` are injectable so timing can be tested without
    real delays. When no `sleep` is given, the wait is interruptible
    through the CancelToken.
    """

    def __init__(
        self,
        ledger: LedgerEventSource,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        if poll_interval <= 0:
            raise ValueError(f"poll_interval must be positive, got {poll_interval}")
        self.ledger = ledger
        self.poll_interval = poll_interval
        self._clock = clock
        self._sleep = sleep

    def poll(
        self,
        sources: Sequence[EventSource],
        from_block: int,
        timeout: float,
        accept: Optional[EventFilter] = None,
        cancel: Optional[CancelToken] = None,
    ) -> List[LedgerEvent]:
        deadline = self._clock() + timeout
        cursor = from_block

        while True:
            check_cancelled(cancel)
            if self._clock() >= deadline:
                raise PollTimeoutError(timeout)

            latest = self.ledger.block_number()
            if latest >= cursor:
                matches = self.scan(sources, cursor, latest, accept)
                logger.debug("scanned blocks %d..%d, %d match(es)", cursor, latest, len(matches))
                cursor = latest + 1
                if matches:
                    return matches

            self._wait(min(self.poll_interval, max(0.0, deadline - self._clock())), cancel)

    def scan(
        self,
        sources: Sequence[EventSource],
        from_block: int,
        to_block: int,
        accept: Optional[EventFilter] = None,
    ) -> List[LedgerEvent]:
        """One pass over [from_block, to_block] for every source."""
        matches: List[LedgerEvent] = []
        for contract, name in sources:
            for raw in self.ledger.query_events(contract, name.value, from_block, to_block):
                event = decode_event(raw)
                if accept is None or accept(event):
                    matches.append(event)
                else:
                    logger.debug("discarded %s at %s (foreign key)", event.name, event.position())
        matches.sort(key=LedgerEvent.position)
        return matches

    def _wait(self, seconds: float, cancel: Optional[CancelToken]) -> None:
        if self._sleep is not None:
            self._sleep(seconds)
        elif cancel is not None:
            cancel.wait(seconds)
        else:
            time.sleep(seconds)
