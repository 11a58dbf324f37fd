# src/core/errors.py
"""
Error taxonomy of the dispute engine.

    DisputeError
      ├── DiscoveryError
      │     ├── NoActiveBattleError
      │     ├── NoVerificationGameError
      │     └── WrongChallengerError
      ├── DuplicateQueryError
      ├── PollTimeoutError
      │     └── DefenderTimeoutError
      ├── LedgerError
      │     ├── TransactionRevertedError
      │     ├── TransactionCancelledError
      │     ├── InclusionTimeoutError
      │     └── LedgerConnectionError
      ├── EventDecodingError
      │     ├── MissingEventArgumentsError
      │     └── UnknownEventError
      └── OperationCancelledError

None of these are retried by the engine itself.
"""
from __future__ import annotations

from typing import Any, Optional, Sequence


class DisputeError(Exception):
    """Base class for every error raised by the dispute engine."""


# ======================================================================
# 1. Discovery
# ======================================================================

class DiscoveryError(DisputeError):
    """No session could be found, or the caller does not take part in it."""


class NoActiveBattleError(DiscoveryError):
    pass


class NoVerificationGameError(DiscoveryError):
    pass


class WrongChallengerError(DiscoveryError):
    def __init__(self, expected: str, actual: str) -> None:
        super().__init__(
            f"Local account {actual} is not the challenger of this battle "
            f"(challenger is {expected})."
        )
        self.expected = expected
        self.actual = actual


# ======================================================================
# 2. Idempotency
# ======================================================================

class DuplicateQueryError(DisputeError):
    def __init__(self, block_hash: str, query: str = "block header") -> None:
        super().__init__(f"{query.capitalize()} {block_hash} already queried!")
        self.block_hash = block_hash
        self.query = query


# ======================================================================
# 3. Liveness
# ======================================================================

class PollTimeoutError(DisputeError):
    def __init__(self, timeout: float, message: Optional[str] = None) -> None:
        super().__init__(message or f"No matching events within {timeout}s.")
        self.timeout = timeout


class DefenderTimeoutError(PollTimeoutError):
    """
    The submitter did not answer a query in time.

    This is a decision point for the caller (the defender may be timed out
    to win the battle), not an internal fault.
    """

    def __init__(self, session_id: str, timeout: float) -> None:
        super().__init__(timeout, f"Defender timed out! (session {session_id}, {timeout}s)")
        self.session_id = session_id


# ======================================================================
# 4. Ledger / transactions
# ======================================================================

class LedgerError(DisputeError):
    pass


class TransactionRevertedError(LedgerError):
    def __init__(
        self,
        method: str,
        args: Sequence[Any] = (),
        session_id: Optional[str] = None,
        receipt: Any = None,
        reason: Optional[str] = None,
    ) -> None:
        detail = f"Transaction {method}({', '.join(map(str, args))}) reverted"
        if session_id is not None:
            detail += f" [session {session_id}]"
        if reason:
            detail += f": {reason}"
        super().__init__(detail)
        self.method = method
        self.call_args = tuple(args)
        self.session_id = session_id
        self.receipt = receipt
        self.reason = reason


class TransactionCancelledError(LedgerError):
    """
    The wait for inclusion was cancelled after submission. The transaction
    may still be mined; `pending` identifies it.
    """

    def __init__(self, pending: Any) -> None:
        super().__init__(
            f"Cancelled while waiting for {pending.method} "
            f"(tx {pending.transaction_hash})"
        )
        self.pending = pending


class InclusionTimeoutError(LedgerError):
    def __init__(self, pending: Any, timeout: float) -> None:
        super().__init__(
            f"Transaction {pending.transaction_hash} ({pending.method}) "
            f"not included after {timeout}s"
        )
        self.pending = pending
        self.timeout = timeout


class LedgerConnectionError(LedgerError):
    pass


# ======================================================================
# 5. Malformed event data
# ======================================================================

class EventDecodingError(DisputeError):
    pass


class MissingEventArgumentsError(EventDecodingError):
    def __init__(self, name: str, missing: Sequence[str] = ()) -> None:
        detail = f"Missing arguments to {name} event"
        if missing:
            detail += f": {', '.join(missing)}"
        super().__init__(detail + ".")
        self.name = name
        self.missing = tuple(missing)


class UnknownEventError(EventDecodingError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown event: {name!r}")
        self.name = name


# ======================================================================
# 6. Cancellation
# ======================================================================

class OperationCancelledError(DisputeError):
    pass
