import time
from unittest.mock import MagicMock

import pytest
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted
from web3.providers import BaseProvider

from core.cancel import CancelToken
from core.errors import (
    InclusionTimeoutError,
    LedgerConnectionError,
    OperationCancelledError,
    TransactionRevertedError,
)
from core.models import ContractRef, PendingTransaction
from ledger.web3_source import Web3EventSource, load_abis
from tests.scenario import BLOCK_HASHES, CHALLENGER, CONTRACTS, SESSION_ID, SUPERBLOCK_ID

BATTLE_MANAGER = ContractRef(name="DogeBattleManager", address="0x" + "a3" * 20)
TX_HASH = "0x" + "fe" * 32


def abi_function(name, inputs, outputs=(), mutability="view"):
    return {
        "type": "function",
        "name": name,
        "stateMutability": mutability,
        "inputs": [{"name": n, "type": t} for n, t in inputs],
        "outputs": [{"name": "", "type": t} for t in outputs],
    }


ABIS = {
    CONTRACTS.superblock_claims.name: [
        abi_function("getDeposit", [("account", "address")], ["uint256"]),
        abi_function(
            "getSession", [("superblockHash", "bytes32"), ("challenger", "address")], ["bytes32"]
        ),
    ],
    CONTRACTS.battle_manager.name: [
        abi_function(
            "queryBlockHeader",
            [("superblockHash", "bytes32"), ("sessionId", "bytes32"), ("blockHash", "bytes32")],
            mutability="nonpayable",
        ),
    ],
}


class RecordingProvider(BaseProvider):
    """Answers each RPC method from `results` and records the requests."""

    def __init__(self, results):
        super().__init__()
        self.results = results
        self.requests = []

    def make_request(self, method, params):
        self.requests.append((method, params))
        return {"jsonrpc": "2.0", "id": len(self.requests), "result": self.results[method]}

    def is_connected(self, show_traceback=False):
        return True


def selector(signature):
    return bytes(Web3.keccak(text=signature)[:4])


def word(hex_value):
    return bytes.fromhex(hex_value[2:]).rjust(32, b"\0")


@pytest.fixture
def w3():
    return MagicMock()


@pytest.fixture
def source(w3):
    return Web3EventSource(
        w3, {"DogeBattleManager": []}, sender=CHALLENGER, receipt_timeout=5, poll_latency=0.001
    )


def log(block_number, log_index, **args):
    return {
        "event": "RespondMerkleRootHashes",
        "args": args,
        "blockNumber": block_number,
        "logIndex": log_index,
        "transactionHash": bytes.fromhex(TX_HASH[2:]),
        "address": BATTLE_MANAGER.address,
    }


def pending_header_query():
    return PendingTransaction(
        transaction_hash=TX_HASH, contract=BATTLE_MANAGER, method="queryBlockHeader"
    )


def test_load_abis(tmp_path):
    (tmp_path / "Bare.json").write_text('[{"type": "event", "name": "E"}]')
    (tmp_path / "Artifact.json").write_text('{"abi": [], "bytecode": "0x"}')

    abis = load_abis(tmp_path)

    assert abis == {"Artifact": [], "Bare": [{"type": "event", "name": "E"}]}


def test_query_events(w3, source):
    event = w3.eth.contract.return_value.events.RespondMerkleRootHashes
    event.get_logs.return_value = [
        log(9, 0, superblockHash=SUPERBLOCK_ID, sessionId=SESSION_ID),
        log(8, 3, superblockHash=SUPERBLOCK_ID, sessionId=SESSION_ID),
    ]

    raws = source.query_events(BATTLE_MANAGER, "RespondMerkleRootHashes", 5)

    event.get_logs.assert_called_once_with(from_block=5, to_block="latest")
    assert [r.position() for r in raws] == [(8, 3), (9, 0)]
    assert raws[0].transaction_hash == TX_HASH
    assert raws[0].address == BATTLE_MANAGER.address


def test_missing_abi(source):
    unknown = ContractRef(name="Nope", address="0x" + "99" * 20)
    with pytest.raises(LedgerConnectionError):
        source.call_view(unknown, "anything")


def test_call_view(w3, source):
    fn = w3.eth.contract.return_value.functions.getDogeBlockHashes
    fn.return_value.call.return_value = ["0x01"]

    assert source.call_view(BATTLE_MANAGER, "getDogeBlockHashes", SESSION_ID) == ["0x01"]
    fn.assert_called_once_with(SESSION_ID)


def test_address_arguments_are_checksummed(w3, source):
    fn = w3.eth.contract.return_value.functions.getSession

    source.call_view(BATTLE_MANAGER, "getSession", SUPERBLOCK_ID, CHALLENGER)

    fn.assert_called_once_with(SUPERBLOCK_ID, Web3.to_checksum_address(CHALLENGER))


def test_send_transaction(w3, source):
    fn = w3.eth.contract.return_value.functions.queryMerkleRootHashes
    fn.return_value.transact.return_value = bytes.fromhex(TX_HASH[2:])

    pending = source.send_transaction(BATTLE_MANAGER, "queryMerkleRootHashes", SUPERBLOCK_ID, SESSION_ID)

    assert pending.transaction_hash == TX_HASH
    assert pending.args == [SUPERBLOCK_ID, SESSION_ID]
    params = fn.return_value.transact.call_args[0][0]
    assert params["from"].lower() == CHALLENGER
    assert params["value"] == 0


def test_rejected_submission(w3, source):
    fn = w3.eth.contract.return_value.functions.queryBlockHeader
    fn.return_value.transact.side_effect = ContractLogicError("execution reverted")

    with pytest.raises(TransactionRevertedError) as excinfo:
        source.send_transaction(BATTLE_MANAGER, "queryBlockHeader", SUPERBLOCK_ID, SESSION_ID, "0x00")

    assert excinfo.value.method == "queryBlockHeader"


# ---------------------------------------------------------------------------
# ABI encoding against a real web3 contract
# ---------------------------------------------------------------------------

def test_view_with_address_argument_reaches_the_node():
    provider = RecordingProvider({"eth_call": "0x" + "00" * 31 + "2a"})
    source = Web3EventSource(Web3(provider, middleware=[]), ABIS, sender=CHALLENGER)

    assert source.call_view(CONTRACTS.superblock_claims, "getDeposit", CHALLENGER) == 42

    [(method, params)] = provider.requests
    assert method == "eth_call"
    data = Web3.to_bytes(hexstr=params[0]["data"])
    assert data == selector("getDeposit(address)") + word(CHALLENGER)


def test_normalized_ids_encode_as_call_data():
    source = Web3EventSource(Web3(RecordingProvider({}), middleware=[]), ABIS, sender=CHALLENGER)

    session = source.function_call(
        CONTRACTS.superblock_claims, "getSession", SUPERBLOCK_ID, CHALLENGER
    )
    header = source.function_call(
        CONTRACTS.battle_manager, "queryBlockHeader", SUPERBLOCK_ID, SESSION_ID, BLOCK_HASHES[0]
    )

    assert Web3.to_bytes(hexstr=session._encode_transaction_data()) == (
        selector("getSession(bytes32,address)") + word(SUPERBLOCK_ID) + word(CHALLENGER)
    )
    assert Web3.to_bytes(hexstr=header._encode_transaction_data()) == (
        selector("queryBlockHeader(bytes32,bytes32,bytes32)")
        + word(SUPERBLOCK_ID)
        + word(SESSION_ID)
        + word(BLOCK_HASHES[0])
    )


# ---------------------------------------------------------------------------
# Inclusion
# ---------------------------------------------------------------------------

def test_await_inclusion(w3, source):
    w3.eth.wait_for_transaction_receipt.side_effect = [
        TimeExhausted("pending"),
        {"blockNumber": 12, "status": 0, "logs": []},
    ]

    receipt = source.await_inclusion(pending_header_query())

    assert receipt.block_number == 12
    assert receipt.status is False
    assert receipt.events == []
    assert w3.eth.wait_for_transaction_receipt.call_count == 2
    _, kwargs = w3.eth.wait_for_transaction_receipt.call_args
    assert kwargs["timeout"] <= 0.001


def test_await_inclusion_checks_token_between_waits(w3, source):
    cancel = CancelToken()

    def not_yet(tx_hash, timeout, poll_latency):
        cancel.cancel()
        raise TimeExhausted("pending")

    w3.eth.wait_for_transaction_receipt.side_effect = not_yet

    with pytest.raises(OperationCancelledError):
        source.await_inclusion(pending_header_query(), cancel=cancel)

    assert w3.eth.wait_for_transaction_receipt.call_count == 1


def test_await_inclusion_times_out(w3):
    source = Web3EventSource(
        w3, {}, sender=CHALLENGER, receipt_timeout=0.02, poll_latency=0.005
    )

    def not_yet(tx_hash, timeout, poll_latency):
        time.sleep(timeout)
        raise TimeExhausted("pending")

    w3.eth.wait_for_transaction_receipt.side_effect = not_yet

    with pytest.raises(InclusionTimeoutError) as excinfo:
        source.await_inclusion(pending_header_query())

    assert excinfo.value.pending.method == "queryBlockHeader"
