"""
Token Sale State Machine

Orchestrates a fixed-price token sale with a soft cap, a hard cap, a liquidity
lock and vesting of both the fixed allocations and the public buyers' tokens.

Lifecycle:
    Open --close_sale()--> Closed{Success} --unlock_liquidity()--> liquidity swept
                      +--> Closed{Failure}

- buy(): only while Open and inside [start_time, end_time]. A purchase that
  reaches the hard cap is filled up to the remaining capacity, the rest of the
  payment is refunded and the sale closes in the same call.
- close_sale(): after end_time, or as soon as the hard cap is sold. The soft
  cap decision is taken here exactly once and cached in `outcome`.
  Success locks the liquidity allocation in a pool, starts the fixed-allocation
  vesting if nobody did it earlier and forwards the net proceeds to the project.
  Failure moves nothing; contributors pull refunds.
- claim() / airdrop(): settle one contributor (or a batch). Success pays a
  quarter of the purchased tokens out immediately and vests the rest; failure
  refunds contribution * price in currency.
- unlock_liquidity(): after liquidity_unlock_time, sweeps the pool shares held
  in custody to the project, once.

Every mutating call runs atomically: all bookkeeping, ledger movements, vesting
records and events of a call that raises are rolled back. Local bookkeeping is
always updated before tokens or currency leave the sale.
"""
import time
from typing import Callable, Dict, Iterable, List, NamedTuple, Optional

from solders.pubkey import Pubkey

from mcp_token_sale.errors import (
    AlreadyInitializedError,
    InvalidAmountError,
    LiquidityAlreadyUnlockedError,
    LiquidityStillLockedError,
    NoLiquidityLockedError,
    NothingToClaimError,
    RefundFailedError,
    SaleAlreadyClosedError,
    SaleEndedError,
    SaleNotClosedError,
    SaleNotEndedError,
    SaleNotStartedError,
    StateViolationError,
    TransferFailedError,
)
from mcp_token_sale.events import Claimed, EventLog, LiquidityUnlocked, Purchase, Refunded, SaleClosed
from mcp_token_sale.ledger import FungibleLedger
from mcp_token_sale.liquidity import PairDescriptor
from mcp_token_sale.schemas import SaleConfigModel, SaleOutcome, SalePhase, SaleStatus
from mcp_token_sale.utils import atomic, currency_for_tokens, tokens_for_currency
from mcp_token_sale.vesting import VestingEngine
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)


class PurchaseReceipt(NamedTuple):
    """Outcome of a single buy() call."""

    buyer: str
    tokens_accepted: int
    currency_charged: int
    currency_refunded: int
    closed_sale: bool


class ClaimResult(NamedTuple):
    """Settlement of one contributor."""

    beneficiary: str
    tokens_purchased: int
    immediate_amount: int
    vested_amount: int
    schedule_id: Optional[int]
    refund_amount: int


class UnsoldWithdrawal(NamedTuple):
    """What withdraw_unsold_tokens() sent to the project."""

    tokens: int
    currency: int


class TokenSale:
    """Sale state machine for one token and one base currency."""

    def __init__(
        self,
        config: SaleConfigModel,
        address: Pubkey,
        token: FungibleLedger,
        currency: FungibleLedger,
        vesting: VestingEngine,
        bridge,
        events: Optional[EventLog] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        if token.decimals != config.token.decimals:
            raise ValueError(f"Token ledger has {token.decimals} decimals, config expects {config.token.decimals}")
        self.config = config
        self.address = address
        self.token = token
        self.currency = currency
        self.vesting = vesting
        self.bridge = bridge
        self.events = events if events is not None else vesting.events
        self._clock = clock

        self._beneficiaries = {
            name: Pubkey.from_string(getattr(config.beneficiaries, name))
            for name in ("project", "team", "dao", "airdrop")
        }

        self._total_raised = 0
        self._total_tokens_sold = 0
        self._contributions: Dict[Pubkey, int] = {}
        self._phase = SalePhase.open
        self._outcome = SaleOutcome.undetermined
        self._vesting_initialized = False
        self._liquidity_pool = None
        self._liquidity_locked = 0
        self._liquidity_unlocked = False
        self._unsold_withdrawn = False

    @classmethod
    def deploy(
        cls,
        config: SaleConfigModel,
        address: Pubkey,
        vesting_address: Pubkey,
        bridge,
        clock: Optional[Callable[[], float]] = None,
    ) -> "TokenSale":
        """Creates fresh ledgers, mints the whole supply to the sale and wires the vesting engine."""
        events = EventLog()
        token = FungibleLedger(config.token.symbol, config.token.decimals)
        currency = FungibleLedger(config.sale.currency_symbol, config.sale.currency_decimals)
        token.mint(address, config.token.total_supply)
        vesting = VestingEngine(vesting_address, token, events=events, clock=clock)
        logger.info(
            f"Deployed sale '{config.sale.sale_id}' at {address}: {config.token.total_supply} {config.token.symbol} minted"
        )
        return cls(config, address, token, currency, vesting, bridge, events=events, clock=clock)

    # --- Views ---

    def now(self) -> int:
        return int(self._clock() if self._clock else time.time())

    @property
    def sale_id(self) -> str:
        return self.config.sale.sale_id

    @property
    def phase(self) -> SalePhase:
        return self._phase

    @property
    def outcome(self) -> SaleOutcome:
        return self._outcome

    @property
    def is_closed(self) -> bool:
        return self._phase == SalePhase.closed

    @property
    def soft_cap_reached(self) -> Optional[bool]:
        """Cached settlement decision; None while the sale is open."""
        if self._outcome == SaleOutcome.undetermined:
            return None
        return self._outcome == SaleOutcome.success

    @property
    def total_raised(self) -> int:
        return self._total_raised

    @property
    def total_tokens_sold(self) -> int:
        return self._total_tokens_sold

    @property
    def hard_cap_tokens(self) -> int:
        return self.config.hard_cap_tokens

    @property
    def remaining_tokens(self) -> int:
        return self.hard_cap_tokens - self._total_tokens_sold

    @property
    def vesting_initialized(self) -> bool:
        return self._vesting_initialized

    @property
    def liquidity_pool(self):
        return self._liquidity_pool

    @property
    def liquidity_locked(self) -> int:
        return self._liquidity_locked

    def beneficiary(self, name: str) -> Pubkey:
        return self._beneficiaries[name]

    def contribution_of(self, address: Pubkey) -> int:
        return self._contributions.get(address, 0)

    def contributions(self) -> Dict[Pubkey, int]:
        return dict(self._contributions)

    def status(self) -> SaleStatus:
        sale = self.config.sale
        return SaleStatus(
            sale_id=sale.sale_id,
            phase=self._phase,
            outcome=self._outcome,
            start_time=sale.start_time,
            end_time=sale.end_time,
            liquidity_unlock_time=sale.liquidity_unlock_time,
            price_per_token=sale.price_per_token,
            soft_cap=sale.soft_cap,
            hard_cap_tokens=self.hard_cap_tokens,
            total_raised=self._total_raised,
            total_tokens_sold=self._total_tokens_sold,
            participants=len(self._contributions),
            vesting_initialized=self._vesting_initialized,
            liquidity_locked=self._liquidity_locked,
            liquidity_unlocked=self._liquidity_unlocked,
        )

    # --- Journaling ---

    def snapshot(self) -> tuple:
        return (
            self._total_raised,
            self._total_tokens_sold,
            dict(self._contributions),
            self._phase,
            self._outcome,
            self._vesting_initialized,
            self._liquidity_pool,
            self._liquidity_locked,
            self._liquidity_unlocked,
            self._unsold_withdrawn,
        )

    def restore(self, snapshot: tuple) -> None:
        (
            self._total_raised,
            self._total_tokens_sold,
            contributions,
            self._phase,
            self._outcome,
            self._vesting_initialized,
            self._liquidity_pool,
            self._liquidity_locked,
            self._liquidity_unlocked,
            self._unsold_withdrawn,
        ) = snapshot
        self._contributions = dict(contributions)

    def _transaction(self, *extra):
        return atomic(self, self.token, self.currency, self.vesting, self.events, *extra)

    # --- Operations ---

    def buy(self, buyer: Pubkey, amount: int) -> PurchaseReceipt:
        """
        Buys tokens with `amount` currency base units taken from the buyer.

        Below the hard cap the whole payment is credited and the truncated token
        amount is recorded. When the purchase reaches the hard cap only the
        remaining tokens are sold, their cost is rounded up, the rest of the
        payment goes back to the buyer and the sale closes.

        Raises:
            SaleNotStartedError / SaleEndedError: outside the sale window.
            SaleAlreadyClosedError: the hard cap was already reached.
            InvalidAmountError: zero amount, or too small to buy one base unit.
            TransferFailedError: the buyer cannot pay.
        """
        now = self.now()
        sale = self.config.sale
        if now < sale.start_time:
            raise SaleNotStartedError("Sale has not started yet")
        if now > sale.end_time:
            raise SaleEndedError("Sale has ended")
        if self.is_closed:
            raise SaleAlreadyClosedError("Sale is closed")
        if not isinstance(amount, int) or amount <= 0:
            raise InvalidAmountError("Amount must be greater than 0")

        decimals = self.config.token.decimals
        tokens_requested = tokens_for_currency(amount, sale.price_per_token, decimals)
        if tokens_requested == 0:
            raise InvalidAmountError(f"Amount {amount} is too small to buy any tokens")

        with self._transaction():
            self.currency.transfer(buyer, self.address, amount)

            remaining = self.remaining_tokens
            if tokens_requested < remaining:
                accepted, charged = tokens_requested, amount
            else:
                accepted = remaining
                charged = currency_for_tokens(accepted, sale.price_per_token, decimals, round_up=True)
            refund = amount - charged

            self._contributions[buyer] = self._contributions.get(buyer, 0) + accepted
            self._total_tokens_sold += accepted
            self._total_raised += charged
            self.events.emit(Purchase(buyer=str(buyer), tokens_accepted=accepted))

            if refund:
                self.currency.transfer(self.address, buyer, refund)
                logger.info(f"Hard cap reached by {buyer}: refunded {refund} of {amount}")

            closed = False
            if self._total_tokens_sold == self.hard_cap_tokens:
                self._close()
                closed = True

        logger.info(
            f"Purchase in '{self.sale_id}' by {buyer}: {accepted} tokens for {charged} "
            f"(sold {self._total_tokens_sold}/{self.hard_cap_tokens}, raised {self._total_raised})"
        )
        return PurchaseReceipt(str(buyer), accepted, charged, refund, closed)

    def close_sale(self) -> SaleOutcome:
        """
        Closes the sale and settles it on the soft cap.

        Raises:
            SaleAlreadyClosedError: the sale is already closed.
            SaleNotEndedError: end_time has not passed and the hard cap is not sold.
        """
        if self.is_closed:
            raise SaleAlreadyClosedError("Sale has already ended")
        if not (self.now() > self.config.sale.end_time or self._total_tokens_sold == self.hard_cap_tokens):
            raise SaleNotEndedError("Sale has not ended yet")
        self._close()
        return self._outcome

    def _close(self) -> None:
        with self._transaction(self.bridge):
            soft_cap_reached = self._total_raised >= self.config.sale.soft_cap
            self._phase = SalePhase.closed
            self._outcome = SaleOutcome.success if soft_cap_reached else SaleOutcome.failure

            if soft_cap_reached:
                if not self._vesting_initialized:
                    self._initialize_vesting()
                self._lock_liquidity()
                net = self._total_raised - self.config.sale.liquidity_currency_amount
                if net > 0:
                    self.currency.transfer(self.address, self._beneficiaries["project"], net)
                logger.info(f"Forwarded {net} in proceeds to project {self._beneficiaries['project']}")

            self.events.emit(SaleClosed(total_sold=self._total_tokens_sold, soft_cap_reached=soft_cap_reached))

        logger.info(
            f"Sale '{self.sale_id}' closed with outcome {self._outcome.value}: "
            f"raised {self._total_raised}, sold {self._total_tokens_sold}"
        )

    def initialize_vesting(self) -> List[int]:
        """
        Escrows the team, DAO and airdrop allocations into the vesting engine
        and creates their schedules. Can only run once.
        """
        if self._vesting_initialized:
            raise AlreadyInitializedError("Vesting is already initialized")
        with self._transaction():
            return self._initialize_vesting()

    def _initialize_vesting(self) -> List[int]:
        self._vesting_initialized = True
        allocations = self.config.allocations
        if allocations.vested_total:
            self.token.transfer(self.address, self.vesting.address, allocations.vested_total)

        start = max(self.now(), self.config.sale.end_time)
        fixed = [
            ("team", allocations.team, self.config.team_vesting),
            ("dao", allocations.dao_treasury, self.config.dao_vesting),
            ("airdrop", allocations.airdrop, self.config.airdrop_vesting),
        ]
        schedule_ids = []
        for name, amount, terms in fixed:
            if amount <= 0:
                continue
            schedule_ids.append(
                self.vesting.create_schedule(
                    self._beneficiaries[name],
                    start,
                    terms.cliff_count,
                    terms.unit,
                    amount,
                    duration_count=terms.duration_count,
                )
            )
        logger.info(f"Initialized fixed-allocation vesting for '{self.sale_id}': {len(schedule_ids)} schedules")
        return schedule_ids

    def _lock_liquidity(self) -> None:
        token_amount = self.config.allocations.liquidity
        currency_amount = self.config.sale.liquidity_currency_amount
        if token_amount == 0 or currency_amount == 0:
            logger.warning(f"Sale '{self.sale_id}' has no liquidity to lock")
            return

        pool = self.bridge.create_pool(PairDescriptor(self.token.symbol, self.currency.symbol))
        self.token.approve(self.address, self.bridge.address, token_amount)
        self.currency.approve(self.address, self.bridge.address, currency_amount)
        received = self.bridge.add_liquidity(
            pool,
            [(self.token, token_amount), (self.currency, currency_amount)],
            self.config.sale.min_liquidity_out,
            self.address,
        )
        self._liquidity_pool = pool
        self._liquidity_locked = received
        logger.info(f"Locked {received} pool shares until {self.config.sale.liquidity_unlock_time}")

    def claim(self, caller: Pubkey) -> ClaimResult:
        """
        Settles the caller's contribution.

        Raises:
            SaleNotClosedError: the sale is still open.
            NothingToClaimError: the caller has no contribution left.
            RefundFailedError: the refund transfer failed (failure outcome).
        """
        if not self.is_closed:
            raise SaleNotClosedError("Sale has not ended yet")
        if self.contribution_of(caller) == 0:
            raise NothingToClaimError(f"Nothing to claim for {caller}")
        with self._transaction():
            return self._settle(caller)

    def airdrop(self, addresses: Iterable[Pubkey]) -> List[ClaimResult]:
        """Settles a batch of contributors, skipping addresses with nothing to claim."""
        if not self.is_closed:
            raise SaleNotClosedError("Sale has not ended yet")
        results = []
        with self._transaction():
            for address in addresses:
                if self.contribution_of(address) == 0:
                    logger.debug(f"Airdrop skipped {address}: nothing to claim")
                    continue
                results.append(self._settle(address))
        logger.info(f"Airdrop for '{self.sale_id}' settled {len(results)} contributors")
        return results

    def _settle(self, address: Pubkey) -> ClaimResult:
        purchased = self._contributions[address]
        self._contributions[address] = 0

        if self._outcome == SaleOutcome.success:
            immediate = purchased // self.config.public_immediate_divisor
            vested = purchased - immediate
            if immediate:
                self.token.transfer(self.address, address, immediate)
            schedule_id = None
            if vested:
                terms = self.config.public_vesting
                self.token.transfer(self.address, self.vesting.address, vested)
                schedule_id = self.vesting.create_schedule(
                    address, self.now(), terms.cliff_count, terms.unit, vested, duration_count=terms.duration_count
                )
            self.events.emit(Claimed(beneficiary=str(address), immediate_amount=immediate))
            logger.info(f"Claimed for {address}: {immediate} now, {vested} vesting")
            return ClaimResult(str(address), purchased, immediate, vested, schedule_id, 0)

        refund = currency_for_tokens(purchased, self.config.sale.price_per_token, self.config.token.decimals)
        try:
            self.currency.transfer(self.address, address, refund)
        except TransferFailedError as e:
            logger.error(f"Refund of {refund} to {address} failed: {e}")
            raise RefundFailedError(f"Refund of {refund} to {address} failed: {e}") from e
        self.events.emit(Refunded(beneficiary=str(address), currency_amount=refund))
        logger.info(f"Refunded {refund} to {address}")
        return ClaimResult(str(address), purchased, 0, 0, None, refund)

    def unlock_liquidity(self) -> int:
        """
        Sweeps the pool shares held in custody to the project, once.

        Raises:
            LiquidityStillLockedError: liquidity_unlock_time has not passed.
            NoLiquidityLockedError: no liquidity was locked.
            LiquidityAlreadyUnlockedError: the shares were already swept.
        """
        if self.now() <= self.config.sale.liquidity_unlock_time:
            raise LiquidityStillLockedError("Liquidity is still locked")
        if self._liquidity_pool is None:
            raise NoLiquidityLockedError("No liquidity locked")
        if self._liquidity_unlocked:
            raise LiquidityAlreadyUnlockedError("Liquidity already unlocked")

        project = self._beneficiaries["project"]
        with self._transaction(self.bridge):
            self._liquidity_unlocked = True
            amount = self._liquidity_pool.balance_of(self.address)
            if amount:
                self._liquidity_pool.transfer(self.address, project, amount)
            self.events.emit(LiquidityUnlocked(amount=amount))

        logger.info(f"Unlocked {amount} pool shares to project {project}")
        return amount

    def outstanding_refunds(self) -> int:
        """Currency still owed to contributors who have not claimed a refund."""
        if self._outcome != SaleOutcome.failure:
            return 0
        sale = self.config.sale
        return sum(
            currency_for_tokens(c, sale.price_per_token, self.config.token.decimals)
            for c in self._contributions.values()
        )

    def withdraw_unsold_tokens(self) -> UnsoldWithdrawal:
        """
        Sends the public allocation that was never sold to the project, together
        with any currency the sale does not owe to contributors.

        On failure the whole public allocation and the liquidity allocation are
        unsold, since nothing was delivered to contributors. The currency kept
        back is exactly what pending refunds will pay out; the truncation dust
        left over from purchases goes to the project.
        """
        if not self.is_closed:
            raise SaleNotClosedError("Sale has not ended yet")
        if self._unsold_withdrawn:
            raise StateViolationError("Unsold tokens already withdrawn")

        unsold = self.hard_cap_tokens - self._total_tokens_sold
        if self._outcome == SaleOutcome.failure:
            unsold = self.hard_cap_tokens + self.config.allocations.liquidity
        surplus = max(self.currency.balance_of(self.address) - self.outstanding_refunds(), 0)

        project = self._beneficiaries["project"]
        with self._transaction():
            self._unsold_withdrawn = True
            if unsold:
                self.token.transfer(self.address, project, unsold)
            if surplus:
                self.currency.transfer(self.address, project, surplus)

        logger.info(f"Withdrew {unsold} unsold tokens and {surplus} surplus currency to project")
        return UnsoldWithdrawal(unsold, surplus)
