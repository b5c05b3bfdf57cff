"""
In-memory fungible ledger.

Stands in for the token and base-currency ledgers the sale talks to. It offers
the usual fungible-token primitives (mint, transfer, approve, transfer_from,
balance_of) keyed by Solana public keys, and it is journaled so an enclosing
operation can unwind every balance change it made.

A failed transfer raises a TransferFailedError subclass and changes nothing.
"""
from typing import Dict, Tuple

from solders.pubkey import Pubkey

from mcp_token_sale.errors import InsufficientAllowanceError, InsufficientBalanceError, InvalidAmountError
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)


class FungibleLedger:
    def __init__(self, symbol: str, decimals: int):
        self.symbol = symbol
        self.decimals = decimals
        self._balances: Dict[Pubkey, int] = {}
        self._allowances: Dict[Tuple[Pubkey, Pubkey], int] = {}
        self._total_supply = 0

    @property
    def total_supply(self) -> int:
        return self._total_supply

    def balance_of(self, holder: Pubkey) -> int:
        return self._balances.get(holder, 0)

    def allowance(self, owner: Pubkey, spender: Pubkey) -> int:
        return self._allowances.get((owner, spender), 0)

    def mint(self, to: Pubkey, amount: int) -> None:
        self._check_amount(amount)
        self._balances[to] = self.balance_of(to) + amount
        self._total_supply += amount
        logger.debug(f"Minted {amount} {self.symbol} to {to}")

    def transfer(self, sender: Pubkey, recipient: Pubkey, amount: int) -> None:
        self._check_amount(amount)
        balance = self.balance_of(sender)
        if balance < amount:
            raise InsufficientBalanceError(
                f"Insufficient {self.symbol} balance for {sender}: has {balance}, needs {amount}"
            )
        self._balances[sender] = balance - amount
        self._balances[recipient] = self.balance_of(recipient) + amount
        logger.debug(f"Transferred {amount} {self.symbol} from {sender} to {recipient}")

    def approve(self, owner: Pubkey, spender: Pubkey, amount: int) -> None:
        if amount < 0:
            raise InvalidAmountError("Allowance cannot be negative")
        self._allowances[(owner, spender)] = amount

    def transfer_from(self, spender: Pubkey, owner: Pubkey, recipient: Pubkey, amount: int) -> None:
        allowed = self.allowance(owner, spender)
        if allowed < amount:
            raise InsufficientAllowanceError(
                f"{spender} may move {allowed} {self.symbol} from {owner}, requested {amount}"
            )
        self.transfer(owner, recipient, amount)
        self._allowances[(owner, spender)] = allowed - amount

    @staticmethod
    def _check_amount(amount: int) -> None:
        if not isinstance(amount, int) or amount < 0:
            raise InvalidAmountError(f"Amount must be a non-negative integer, got {amount!r}")

    def snapshot(self) -> tuple:
        return dict(self._balances), dict(self._allowances), self._total_supply

    def restore(self, snapshot: tuple) -> None:
        balances, allowances, total_supply = snapshot
        self._balances = dict(balances)
        self._allowances = dict(allowances)
        self._total_supply = total_supply
