"""
Sale and vesting events.

Events are observable records of what a call did. They are appended to an
EventLog shared by the sale, the vesting engine and the liquidity lock, and each
one is also written to the logger. Events emitted inside a call that fails are
discarded together with the rest of that call's effects.
"""
from typing import List, Literal, Type, TypeVar, Union

from pydantic import BaseModel

from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)


class Purchase(BaseModel):
    name: Literal["purchase"] = "purchase"
    buyer: str
    tokens_accepted: int


class Claimed(BaseModel):
    name: Literal["claimed"] = "claimed"
    beneficiary: str
    immediate_amount: int


class Refunded(BaseModel):
    name: Literal["refunded"] = "refunded"
    beneficiary: str
    currency_amount: int


class SaleClosed(BaseModel):
    name: Literal["sale_closed"] = "sale_closed"
    total_sold: int
    soft_cap_reached: bool


class LiquidityUnlocked(BaseModel):
    name: Literal["liquidity_unlocked"] = "liquidity_unlocked"
    amount: int


class VestingScheduleCreated(BaseModel):
    name: Literal["vesting_schedule_created"] = "vesting_schedule_created"
    beneficiary: str
    schedule_id: int
    total_amount: int


Event = Union[Purchase, Claimed, Refunded, SaleClosed, LiquidityUnlocked, VestingScheduleCreated]
E = TypeVar("E", bound=BaseModel)


class EventLog:
    """Append-only list of emitted events."""

    def __init__(self) -> None:
        self._events: List[Event] = []

    def emit(self, event: Event) -> None:
        self._events.append(event)
        logger.info(f"Event {event.name}: {event.model_dump(exclude={'name'})}")

    def of_type(self, event_type: Type[E]) -> List[E]:
        return [e for e in self._events if isinstance(e, event_type)]

    def __iter__(self):
        return iter(list(self._events))

    def __len__(self) -> int:
        return len(self._events)

    def snapshot(self) -> int:
        return len(self._events)

    def restore(self, snapshot: int) -> None:
        del self._events[snapshot:]
