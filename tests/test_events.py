import pytest

from core.errors import MissingEventArgumentsError, UnknownEventError
from core.events import (
    NewBattleEvent,
    RespondBlockHeaderEvent,
    decode_event,
    decode_events,
)
from core.enums import EventName
from core.models import CorrelationKey, RawEvent
from tests.scenario import CHALLENGER, SESSION_ID, SUPERBLOCK_ID, new_battle_args


def raw(name, args, block_number=3, log_index=1):
    return RawEvent(name=name, args=args, block_number=block_number, log_index=log_index)


def test_decode_new_battle():
    event = decode_event(raw("NewBattle", new_battle_args()))

    assert isinstance(event, NewBattleEvent)
    assert event.superblock_id == SUPERBLOCK_ID
    assert event.session_id == SESSION_ID
    assert event.challenger == CHALLENGER
    assert event.position() == (3, 1)
    assert event.correlation_key() == CorrelationKey(
        superblock_id=SUPERBLOCK_ID, session_id=SESSION_ID
    )


def test_identifiers_are_normalized():
    args = new_battle_args(
        superblock_id=SUPERBLOCK_ID.upper().replace("0X", "0x"),
        session_id=bytes.fromhex(SESSION_ID[2:]),
    )
    event = decode_event(raw("NewBattle", args))

    assert event.superblock_id == SUPERBLOCK_ID
    assert event.session_id == SESSION_ID


def test_integer_session_id_becomes_bytes32():
    event = decode_event(raw("NewBattle", new_battle_args(session_id=7)))
    assert event.session_id == "0x" + "0" * 63 + "7"


def test_missing_required_argument():
    args = new_battle_args()
    del args["challenger"]

    with pytest.raises(MissingEventArgumentsError) as excinfo:
        decode_event(raw("NewBattle", args))

    assert excinfo.value.missing == ("challenger",)
    assert "NewBattle" in str(excinfo.value)


def test_none_counts_as_missing():
    args = {"superblockHash": SUPERBLOCK_ID, "sessionId": None}
    with pytest.raises(MissingEventArgumentsError):
        decode_event(raw("RespondMerkleRootHashes", args))


def test_malformed_identifier_is_rejected():
    with pytest.raises(MissingEventArgumentsError):
        decode_event(raw("NewBattle", new_battle_args(session_id="0xnot-hex")))


def test_unknown_event():
    with pytest.raises(UnknownEventError):
        decode_event(raw("Transfer", {"from": CHALLENGER}))


def test_optional_arguments_and_extras():
    event = decode_event(
        raw(
            "RespondBlockHeader",
            {"superblockHash": SUPERBLOCK_ID, "sessionId": SESSION_ID, "unmodelled": 1},
        )
    )
    assert isinstance(event, RespondBlockHeaderEvent)
    assert event.block_hash is None


def test_required_args_use_wire_names():
    assert NewBattleEvent.required_args() == ["superblockHash", "sessionId", "challenger"]


def test_decode_events_filters_by_name():
    raws = [
        raw("SuperblockClaimChallenged", {"superblockHash": SUPERBLOCK_ID, "challenger": CHALLENGER}),
        raw("NewBattle", new_battle_args()),
    ]
    decoded = decode_events(raws, EventName.NEW_BATTLE)
    assert [e.name for e in decoded] == ["NewBattle"]
