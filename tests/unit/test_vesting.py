import pytest
from unittest.mock import patch

from conftest import FakeClock, new_pubkey
from mcp_token_sale import errors
from mcp_token_sale.events import EventLog, VestingScheduleCreated
from mcp_token_sale.ledger import FungibleLedger
from mcp_token_sale.schemas import TimeUnit
from mcp_token_sale.utils import DAY_IN_SECONDS, MONTH_IN_SECONDS, WEEK_IN_SECONDS
from mcp_token_sale.vesting import VestingEngine

START = 1_800_000_000


@pytest.fixture
def vesting_clock():
    return FakeClock(START)


@pytest.fixture
def ledger():
    return FungibleLedger("BOLT", 18)


@pytest.fixture
def engine(ledger, vesting_clock):
    engine = VestingEngine(new_pubkey(), ledger, events=EventLog(), clock=vesting_clock)
    ledger.mint(engine.address, 1_000_000)
    return engine


def test_create_schedule_requires_escrow(engine):
    beneficiary = new_pubkey()
    engine.create_schedule(beneficiary, START, 3, TimeUnit.weeks, 600_000)
    assert engine.available == 400_000

    with pytest.raises(errors.InsufficientEscrowError):
        engine.create_schedule(beneficiary, START, 3, TimeUnit.weeks, 400_001)
    assert len(engine.schedules_of(beneficiary)) == 1


def test_create_schedule_rejects_zero_amount(engine):
    with pytest.raises(errors.InvalidAmountError):
        engine.create_schedule(new_pubkey(), START, 3, TimeUnit.weeks, 0)


def test_create_schedule_emits_event(engine):
    beneficiary = new_pubkey()
    schedule_id = engine.create_schedule(beneficiary, START, 1, TimeUnit.days, 500)

    created = engine.events.of_type(VestingScheduleCreated)
    assert created == [VestingScheduleCreated(beneficiary=str(beneficiary), schedule_id=schedule_id, total_amount=500)]


def test_release_before_cliff_is_noop(engine, ledger, vesting_clock):
    beneficiary = new_pubkey()
    schedule_id = engine.create_schedule(beneficiary, START, 3, TimeUnit.weeks, 900)

    vesting_clock.advance(3 * WEEK_IN_SECONDS - 1)
    assert engine.release(beneficiary, schedule_id) == 0
    assert ledger.balance_of(beneficiary) == 0
    assert engine.get_schedule(schedule_id).released_amount == 0


def test_release_full_amount_after_cliff(engine, ledger, vesting_clock):
    beneficiary = new_pubkey()
    schedule_id = engine.create_schedule(beneficiary, START, 3, TimeUnit.weeks, 900)

    vesting_clock.advance(3 * WEEK_IN_SECONDS)
    assert engine.release(beneficiary, schedule_id) == 900
    assert ledger.balance_of(beneficiary) == 900
    assert engine.get_schedule(schedule_id).is_fully_released

    # Terminal: nothing more to release
    vesting_clock.advance(52 * WEEK_IN_SECONDS)
    assert engine.release(beneficiary, schedule_id) == 0
    assert engine.outstanding == 0


def test_zero_cliff_is_instant(engine, ledger):
    beneficiary = new_pubkey()
    schedule_id = engine.create_schedule(beneficiary, START, 0, TimeUnit.days, 250)
    assert engine.release(beneficiary, schedule_id) == 250
    assert ledger.balance_of(beneficiary) == 250


def test_nothing_vested_before_start(engine):
    beneficiary = new_pubkey()
    schedule_id = engine.create_schedule(beneficiary, START + DAY_IN_SECONDS, 0, TimeUnit.days, 250)
    assert engine.releasable_amount(schedule_id) == 0
    assert engine.release(beneficiary, schedule_id) == 0


def test_linear_release_after_cliff_is_monotone_and_bounded(engine, vesting_clock):
    beneficiary = new_pubkey()
    schedule_id = engine.create_schedule(beneficiary, START, 1, TimeUnit.weeks, 1000, duration_count=4)

    released = []
    for _ in range(8):
        engine.release(beneficiary, schedule_id)
        released.append(engine.get_schedule(schedule_id).released_amount)
        vesting_clock.advance(WEEK_IN_SECONDS)

    assert released == [0, 0, 250, 500, 750, 1000, 1000, 1000]
    assert released == sorted(released)
    assert all(r <= 1000 for r in released)


def test_months_are_thirty_days(engine):
    beneficiary = new_pubkey()
    schedule_id = engine.create_schedule(beneficiary, START, 2, TimeUnit.months, 100)

    assert MONTH_IN_SECONDS == 30 * DAY_IN_SECONDS
    assert engine.vested_amount(schedule_id, at=START + 2 * MONTH_IN_SECONDS - 1) == 0
    assert engine.vested_amount(schedule_id, at=START + 2 * MONTH_IN_SECONDS) == 100


def test_release_unknown_schedule(engine):
    with pytest.raises(errors.InvalidScheduleError):
        engine.release(new_pubkey(), 42)


def test_release_schedule_of_other_beneficiary(engine):
    owner, other = new_pubkey(), new_pubkey()
    schedule_id = engine.create_schedule(owner, START, 0, TimeUnit.days, 10)
    with pytest.raises(errors.InvalidScheduleError):
        engine.release(other, schedule_id)


def test_release_transfer_failure_leaves_schedule_unchanged(engine, ledger):
    beneficiary = new_pubkey()
    schedule_id = engine.create_schedule(beneficiary, START, 0, TimeUnit.days, 300)

    with patch.object(ledger, "transfer", side_effect=errors.TransferFailedError("ledger offline")):
        with pytest.raises(errors.TransferFailedError):
            engine.release(beneficiary, schedule_id)

    assert engine.get_schedule(schedule_id).released_amount == 0
    assert engine.outstanding == 300
    assert engine.release(beneficiary, schedule_id) == 300


def test_multiple_schedules_per_beneficiary(engine, ledger, vesting_clock):
    beneficiary = new_pubkey()
    first = engine.create_schedule(beneficiary, START, 0, TimeUnit.days, 100)
    second = engine.create_schedule(beneficiary, START, 1, TimeUnit.weeks, 200)

    assert [s.schedule_id for s in engine.schedules_of(beneficiary)] == [first, second]
    assert engine.release_all(beneficiary) == 100

    vesting_clock.advance(WEEK_IN_SECONDS)
    assert engine.release_all(beneficiary) == 200
    assert ledger.balance_of(beneficiary) == 300
