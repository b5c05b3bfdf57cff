"""
Vesting Engine

Holds tokens in its own custody and releases them to beneficiaries on a
cliff/linear schedule. The engine never trusts a future transfer: a schedule can
only be created for tokens already sitting in its custody and not yet committed
to another schedule.

Release Algorithm:
    elapsed_units = floor((now - start_time) / unit_length)
    elapsed_units <  cliff_count          -> nothing vested
    duration_count == 0                   -> everything vested once the cliff has passed
    otherwise                             -> total * min(elapsed - cliff, duration) // duration

A cliff of 0 with no duration makes the whole amount releasable at start_time
(used for the airdrop allocation). Unit lengths are Days = 86400s,
Weeks = 7 days and Months = 30 days; months are an approximation.

Schedules live in an arena keyed by an opaque integer id, with a secondary index
from beneficiary to its ids. Records are never deleted; only released_amount
changes, and a fully released schedule is terminal.
"""
import time
from typing import Callable, Dict, List, Optional

from solders.pubkey import Pubkey

from mcp_token_sale.errors import (
    InsufficientEscrowError,
    InvalidAmountError,
    InvalidScheduleError,
    TransferFailedError,
)
from mcp_token_sale.events import EventLog, VestingScheduleCreated
from mcp_token_sale.ledger import FungibleLedger
from mcp_token_sale.schemas import TimeUnit, VestingSchedule
from mcp_token_sale.utils import atomic, mul_div, unit_seconds
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)


class VestingEngine:
    def __init__(
        self,
        address: Pubkey,
        ledger: FungibleLedger,
        events: Optional[EventLog] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.address = address
        self.ledger = ledger
        self.events = events if events is not None else EventLog()
        self._clock = clock
        self._schedules: Dict[int, VestingSchedule] = {}
        self._by_beneficiary: Dict[Pubkey, List[int]] = {}
        self._next_id = 0
        self._outstanding = 0

    def now(self) -> int:
        return int(self._clock() if self._clock else time.time())

    @property
    def outstanding(self) -> int:
        """Tokens committed to schedules and not yet released."""
        return self._outstanding

    @property
    def available(self) -> int:
        """Tokens in custody not yet committed to any schedule."""
        return self.ledger.balance_of(self.address) - self._outstanding

    def create_schedule(
        self,
        beneficiary: Pubkey,
        start_time: int,
        cliff_count: int,
        unit: TimeUnit,
        total_amount: int,
        duration_count: int = 0,
    ) -> int:
        """
        Creates a schedule for tokens already escrowed in the engine's custody.

        Returns:
            The new schedule id.

        Raises:
            InvalidAmountError: total_amount is not positive or counts are negative.
            InsufficientEscrowError: custody does not cover total_amount.
        """
        if total_amount <= 0:
            raise InvalidAmountError("Vesting amount must be greater than 0")
        if cliff_count < 0 or duration_count < 0:
            raise InvalidAmountError("Cliff and duration counts must be non-negative")
        unit = TimeUnit(unit)
        if self.available < total_amount:
            raise InsufficientEscrowError(
                f"Vesting custody holds {self.available} unallocated tokens, schedule needs {total_amount}"
            )

        schedule_id = self._next_id
        self._next_id += 1
        self._schedules[schedule_id] = VestingSchedule(
            schedule_id=schedule_id,
            beneficiary=beneficiary,
            total_amount=total_amount,
            start_time=start_time,
            cliff_count=cliff_count,
            duration_count=duration_count,
            unit=unit,
        )
        self._by_beneficiary.setdefault(beneficiary, []).append(schedule_id)
        self._outstanding += total_amount

        self.events.emit(
            VestingScheduleCreated(beneficiary=str(beneficiary), schedule_id=schedule_id, total_amount=total_amount)
        )
        logger.info(
            f"Created vesting schedule {schedule_id} for {beneficiary}: {total_amount} tokens, "
            f"cliff {cliff_count} {unit.value}, duration {duration_count} {unit.value}"
        )
        return schedule_id

    def get_schedule(self, schedule_id: int) -> VestingSchedule:
        try:
            return self._schedules[schedule_id]
        except KeyError:
            raise InvalidScheduleError(f"Unknown vesting schedule {schedule_id}")

    def schedules_of(self, beneficiary: Pubkey) -> List[VestingSchedule]:
        return [self._schedules[i] for i in self._by_beneficiary.get(beneficiary, [])]

    def vested_amount(self, schedule_id: int, at: Optional[int] = None) -> int:
        schedule = self.get_schedule(schedule_id)
        return self._vested(schedule, self.now() if at is None else at)

    def releasable_amount(self, schedule_id: int, at: Optional[int] = None) -> int:
        schedule = self.get_schedule(schedule_id)
        return self._vested(schedule, self.now() if at is None else at) - schedule.released_amount

    @staticmethod
    def _vested(schedule: VestingSchedule, timestamp: int) -> int:
        if timestamp < schedule.start_time:
            return 0
        elapsed_units = (timestamp - schedule.start_time) // unit_seconds(schedule.unit)
        if elapsed_units < schedule.cliff_count:
            return 0
        if schedule.duration_count == 0:
            return schedule.total_amount
        completed = min(elapsed_units - schedule.cliff_count, schedule.duration_count)
        return min(mul_div(schedule.total_amount, completed, schedule.duration_count), schedule.total_amount)

    def release(self, beneficiary: Pubkey, schedule_id: int) -> int:
        """
        Transfers whatever has vested and not been released yet.

        Anyone may call this; tokens always go to the schedule's beneficiary.
        Nothing releasable is a no-op returning 0.

        Raises:
            InvalidScheduleError: schedule_id is unknown or belongs to someone else.
            TransferFailedError: the token transfer failed; the schedule is unchanged.
        """
        if schedule_id not in self._by_beneficiary.get(beneficiary, []):
            raise InvalidScheduleError(f"Vesting schedule {schedule_id} not found for {beneficiary}")
        schedule = self._schedules[schedule_id]
        if schedule.is_fully_released:
            return 0

        released_now = self._vested(schedule, self.now()) - schedule.released_amount
        if released_now <= 0:
            logger.debug(f"Nothing releasable on schedule {schedule_id} for {beneficiary}")
            return 0

        with atomic(self, self.ledger):
            schedule.released_amount += released_now
            self._outstanding -= released_now
            try:
                self.ledger.transfer(self.address, beneficiary, released_now)
            except TransferFailedError as e:
                logger.error(f"Release of {released_now} tokens on schedule {schedule_id} failed: {e}")
                raise

        logger.info(
            f"Released {released_now} tokens to {beneficiary} from schedule {schedule_id} "
            f"({schedule.released_amount}/{schedule.total_amount})"
        )
        return released_now

    def release_all(self, beneficiary: Pubkey) -> int:
        """Releases every schedule of a beneficiary; returns the total released."""
        total = 0
        with atomic(self, self.ledger):
            for schedule_id in list(self._by_beneficiary.get(beneficiary, [])):
                total += self.release(beneficiary, schedule_id)
        return total

    def snapshot(self) -> tuple:
        return (
            {k: s.model_copy() for k, s in self._schedules.items()},
            {k: list(v) for k, v in self._by_beneficiary.items()},
            self._next_id,
            self._outstanding,
        )

    def restore(self, snapshot: tuple) -> None:
        schedules, by_beneficiary, next_id, outstanding = snapshot
        self._schedules = {k: s.model_copy() for k, s in schedules.items()}
        self._by_beneficiary = {k: list(v) for k, v in by_beneficiary.items()}
        self._next_id = next_id
        self._outstanding = outstanding
