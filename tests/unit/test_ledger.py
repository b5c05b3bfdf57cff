import pytest

from conftest import new_pubkey
from mcp_token_sale import errors
from mcp_token_sale.ledger import FungibleLedger
from mcp_token_sale.utils import atomic


@pytest.fixture
def ledger():
    return FungibleLedger("SOL", 9)


def test_mint_and_transfer(ledger):
    alice, bob = new_pubkey(), new_pubkey()
    ledger.mint(alice, 100)
    ledger.transfer(alice, bob, 40)

    assert ledger.balance_of(alice) == 60
    assert ledger.balance_of(bob) == 40
    assert ledger.total_supply == 100


def test_transfer_insufficient_balance_changes_nothing(ledger):
    alice, bob = new_pubkey(), new_pubkey()
    ledger.mint(alice, 10)
    with pytest.raises(errors.InsufficientBalanceError):
        ledger.transfer(alice, bob, 11)
    assert ledger.balance_of(alice) == 10
    assert ledger.balance_of(bob) == 0


def test_insufficient_balance_is_a_transfer_failure(ledger):
    with pytest.raises(errors.TransferFailedError):
        ledger.transfer(new_pubkey(), new_pubkey(), 1)


def test_negative_amount_rejected(ledger):
    with pytest.raises(errors.InvalidAmountError):
        ledger.mint(new_pubkey(), -1)
    with pytest.raises(errors.InvalidAmountError):
        ledger.approve(new_pubkey(), new_pubkey(), -1)


def test_transfer_from_consumes_allowance(ledger):
    owner, spender, recipient = new_pubkey(), new_pubkey(), new_pubkey()
    ledger.mint(owner, 50)
    ledger.approve(owner, spender, 30)

    ledger.transfer_from(spender, owner, recipient, 20)
    assert ledger.balance_of(recipient) == 20
    assert ledger.allowance(owner, spender) == 10

    with pytest.raises(errors.InsufficientAllowanceError):
        ledger.transfer_from(spender, owner, recipient, 11)
    assert ledger.balance_of(owner) == 30


def test_atomic_restores_ledger_on_error(ledger):
    alice, bob = new_pubkey(), new_pubkey()
    ledger.mint(alice, 10)

    with pytest.raises(RuntimeError):
        with atomic(ledger):
            ledger.transfer(alice, bob, 5)
            ledger.approve(alice, bob, 3)
            raise RuntimeError("boom")

    assert ledger.balance_of(alice) == 10
    assert ledger.balance_of(bob) == 0
    assert ledger.allowance(alice, bob) == 0
