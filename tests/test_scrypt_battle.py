import pytest

from core.errors import NoVerificationGameError
from core.events import ClaimCreatedEvent
from engine.scrypt_battle import DEFAULT_SCRYPT_DEPOSIT, ScryptBattle
from tests.scenario import CHALLENGER, SUBMITTER, VERIFIER_ADDRESS

CLAIM_ID = "0x" + "0" * 62 + "2a"
GAME_SESSION_ID = "0x" + "5e" * 32


@pytest.fixture
def scrypt_claims(ledger, contracts):
    sc = contracts.scrypt_claims
    balance = {"value": 0}

    def deposit(pending):
        balance["value"] += pending.value

    def run_game(pending):
        return [
            (sc, "VerificationGameStarted", {
                "claimId": pending.args[0],
                "claimant": SUBMITTER,
                "challenger": CHALLENGER,
                "sessionId": GAME_SESSION_ID,
            }),
        ]

    ledger.set_view(sc, "getDeposit", lambda who: balance["value"])
    ledger.set_view(sc, "scryptVerifier", VERIFIER_ADDRESS)
    ledger.on_transaction(sc, "makeDeposit", deposit)
    ledger.on_transaction(sc, "runNextVerificationGame", run_game)
    ledger.emit(sc, "ClaimCreated", {"claimId": CLAIM_ID, "claimant": SUBMITTER})
    return sc


def test_challenge_last_claim(ledger, scrypt_claims):
    battle = ScryptBattle.challenge_last_scrypt_claim(ledger, scrypt_claims)

    assert ledger.sent_methods() == ["makeDeposit", "challengeClaim", "runNextVerificationGame"]
    assert ledger.sent[0].value == DEFAULT_SCRYPT_DEPOSIT
    assert ledger.sent[1].args == [CLAIM_ID]
    assert battle.claim_id == CLAIM_ID
    assert battle.session_id == GAME_SESSION_ID
    assert battle.scrypt_verifier.address == VERIFIER_ADDRESS
    assert battle.scrypt_verifier.name == "ScryptVerifier"


def test_query_sends_one_transaction(ledger, scrypt_claims):
    battle = ScryptBattle.challenge_last_scrypt_claim(ledger, scrypt_claims, deposit=None)
    before = len(ledger.sent)

    receipt = battle.query(1)

    assert receipt.status
    assert len(ledger.sent) == before + 1
    tx = ledger.sent[-1]
    assert tx.method == "query"
    assert tx.contract.address == VERIFIER_ADDRESS
    assert tx.args == [GAME_SESSION_ID, 1]


def test_negative_step_is_rejected(ledger, scrypt_claims):
    battle = ScryptBattle.challenge_last_scrypt_claim(ledger, scrypt_claims, deposit=None)
    before = len(ledger.sent)
    with pytest.raises(ValueError):
        battle.query(-1)
    assert len(ledger.sent) == before


def test_no_verification_game(ledger, scrypt_claims):
    ledger.on_transaction(scrypt_claims, "runNextVerificationGame", lambda pending: None)
    event = ClaimCreatedEvent.model_validate({"claimId": CLAIM_ID, "block_number": 0})

    with pytest.raises(NoVerificationGameError, match="No verification games found"):
        ScryptBattle.challenge_claim_created_event(ledger, scrypt_claims, event)

    assert ledger.sent_methods() == ["challengeClaim", "runNextVerificationGame"]


def test_session_view(ledger, scrypt_claims):
    battle = ScryptBattle.challenge_last_scrypt_claim(ledger, scrypt_claims, deposit=None)
    ledger.set_view(battle.scrypt_verifier, "getSession", lambda session_id: (session_id, 0, 1024))

    assert battle.session() == (GAME_SESSION_ID, 0, 1024)
