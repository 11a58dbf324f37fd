from __future__ import annotations

from typing import Any, ClassVar, Dict, List, Optional, Type, Union

from pydantic import BaseModel, Field, field_validator

from core.enums import EventName
from core.errors import MissingEventArgumentsError, UnknownEventError
from core.models import CorrelationKey, LogPosition, RawEvent
from helper.hexutil import normalize_hex

# ========== 1. Base: typed ledger event ==========


class LedgerEvent(BaseModel):
    """
    Abstract base class for decoded contract events.

    The ledger hands back events as (name, args) pairs with loosely typed
    argument maps. Every event the engine consumes is decoded at the
    boundary into exactly one subclass of LedgerEvent, keyed by its name,
    with a fixed set of typed fields:

      • required fields have no default; an event that lacks one of them
        is rejected with MissingEventArgumentsError (contract/client
        version mismatch);
      • optional fields default to None;
      • argument names on the wire (camelCase, as in the contract ABI)
        are mapped to fields through aliases;
      • identifiers are normalized to lowercase 0x-hex so comparisons
        against the correlation key are exact.

    Position fields (block_number, log_index) come from the log itself,
    not from the event arguments.
    """

    event_name: ClassVar[EventName]

    block_number: int = Field(..., description="Block containing the log.")
    log_index: int = Field(default=0, description="Log index inside the block.")
    transaction_hash: Optional[str] = None

    class Config:
        populate_by_name = True
        frozen = True

    @property
    def name(self) -> str:
        return self.event_name.value

    def position(self) -> LogPosition:
        return (self.block_number, self.log_index)

    @classmethod
    def required_args(cls) -> List[str]:
        """Wire names of the arguments this event must carry."""
        return [
            field.alias
            for field in cls.model_fields.values()
            if field.alias is not None and field.is_required()
        ]


class _HexIds(LedgerEvent):
    """Mixin normalizing every *_id / address-like field to hex."""

    @field_validator(
        "superblock_id", "session_id", "claim_id", "submitter", "challenger",
        "claimant", "block_hash", "scrypt_hash_id",
        mode="before", check_fields=False,
    )
    @classmethod
    def _normalize_ids(cls, v: Any) -> Any:
        if v is None:
            return None
        return normalize_hex(v)


class BattleResponseEvent(_HexIds):
    """
    Common shape of the submitter's responses in a header battle. All of
    them carry the correlation key.
    """

    superblock_id: str = Field(..., alias="superblockHash")
    session_id: str = Field(..., alias="sessionId")

    def correlation_key(self) -> CorrelationKey:
        return CorrelationKey(superblock_id=self.superblock_id, session_id=self.session_id)

    def matches(self, key: CorrelationKey) -> bool:
        return (self.superblock_id, self.session_id) == key.to_tuple()


# ========== 2. Superblocks / claims ==========


class NewSuperblockEvent(_HexIds):
    event_name = EventName.NEW_SUPERBLOCK

    superblock_id: str = Field(..., alias="superblockHash")
    submitter: Optional[str] = Field(default=None, alias="who")


class SuperblockClaimChallengedEvent(_HexIds):
    event_name = EventName.SUPERBLOCK_CLAIM_CHALLENGED

    superblock_id: str = Field(..., alias="superblockHash")
    challenger: str = Field(..., alias="challenger")


# ========== 3. Battle manager ==========


class NewBattleEvent(_HexIds):
    event_name = EventName.NEW_BATTLE

    superblock_id: str = Field(..., alias="superblockHash")
    session_id: str = Field(..., alias="sessionId")
    submitter: Optional[str] = Field(default=None, alias="submitter")
    challenger: str = Field(..., alias="challenger")

    def correlation_key(self) -> CorrelationKey:
        return CorrelationKey(superblock_id=self.superblock_id, session_id=self.session_id)


class RespondMerkleRootHashesEvent(BattleResponseEvent):
    event_name = EventName.RESPOND_MERKLE_ROOT_HASHES

    challenger: Optional[str] = Field(default=None, alias="challenger")


class RespondBlockHeaderEvent(BattleResponseEvent):
    event_name = EventName.RESPOND_BLOCK_HEADER

    challenger: Optional[str] = Field(default=None, alias="challenger")
    block_hash: Optional[str] = Field(default=None, alias="blockHash")


class ResolvedScryptHashValidationEvent(BattleResponseEvent):
    event_name = EventName.RESOLVED_SCRYPT_HASH_VALIDATION

    submitter: Optional[str] = Field(default=None, alias="submitter")
    challenger: Optional[str] = Field(default=None, alias="challenger")
    scrypt_hash_id: Optional[str] = Field(default=None, alias="scryptHashId")
    succeeded: Optional[bool] = Field(default=None, alias="succeeded")


# ========== 4. Scrypt claims / verifier ==========


class ClaimCreatedEvent(_HexIds):
    event_name = EventName.CLAIM_CREATED

    claim_id: str = Field(..., alias="claimId")
    claimant: Optional[str] = Field(default=None, alias="claimant")


class VerificationGameStartedEvent(_HexIds):
    event_name = EventName.VERIFICATION_GAME_STARTED

    claim_id: Optional[str] = Field(default=None, alias="claimId")
    claimant: Optional[str] = Field(default=None, alias="claimant")
    challenger: Optional[str] = Field(default=None, alias="challenger")
    session_id: str = Field(..., alias="sessionId")


BattleEvent = Union[
    RespondMerkleRootHashesEvent,
    RespondBlockHeaderEvent,
    ResolvedScryptHashValidationEvent,
]

EVENT_TYPES: Dict[str, Type[LedgerEvent]] = {
    cls.event_name.value: cls
    for cls in (
        NewSuperblockEvent,
        SuperblockClaimChallengedEvent,
        NewBattleEvent,
        RespondMerkleRootHashesEvent,
        RespondBlockHeaderEvent,
        ResolvedScryptHashValidationEvent,
        ClaimCreatedEvent,
        VerificationGameStartedEvent,
    )
}


# ========== 5. Decoding ==========


def decode_event(raw: RawEvent) -> LedgerEvent:
    """
    Decode a raw (name, args) event into its typed variant.

    Raises:
      - UnknownEventError if no variant is registered for raw.name;
      - MissingEventArgumentsError if a required argument is absent.

    Extra arguments the variant does not model are ignored.
    """
    cls = EVENT_TYPES.get(raw.name)
    if cls is None:
        raise UnknownEventError(raw.name)

    args = dict(raw.args or {})
    missing = [name for name in cls.required_args() if args.get(name) is None]
    if missing:
        raise MissingEventArgumentsError(raw.name, missing)

    # Only wire names are taken from args; position comes from the log.
    try:
        return cls.model_validate(
            {
                **{k: v for k, v in args.items() if k in _aliases(cls)},
                "block_number": raw.block_number,
                "log_index": raw.log_index,
                "transaction_hash": raw.transaction_hash,
            }
        )
    except ValueError as exc:
        raise MissingEventArgumentsError(raw.name, [str(exc).splitlines()[0]]) from exc


def decode_events(raws: List[RawEvent], name: EventName) -> List[LedgerEvent]:
    """Decode every raw event called `name`, skipping other names."""
    return [decode_event(raw) for raw in raws if raw.name == name.value]


def _aliases(cls: Type[LedgerEvent]) -> set[str]:
    return {f.alias for f in cls.model_fields.values() if f.alias is not None}
