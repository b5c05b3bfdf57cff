from contextlib import contextmanager
from typing import Iterator, Protocol

DAY_IN_SECONDS = 24 * 3600
WEEK_IN_SECONDS = 7 * DAY_IN_SECONDS
MONTH_IN_SECONDS = 30 * DAY_IN_SECONDS  # approximation, not calendar months

# Keyed by TimeUnit value
SECONDS_PER_UNIT = {
    "days": DAY_IN_SECONDS,
    "weeks": WEEK_IN_SECONDS,
    "months": MONTH_IN_SECONDS,
}


def unit_seconds(unit: str) -> int:
    """Length of a vesting time unit in seconds."""
    try:
        return SECONDS_PER_UNIT[unit]
    except KeyError:
        raise ValueError(f"Unknown time unit: {unit}")


def mul_div(a: int, b: int, denominator: int) -> int:
    """Computes a * b // denominator without intermediate rounding."""
    if denominator <= 0:
        raise ZeroDivisionError("denominator must be positive")
    return (a * b) // denominator


def ceil_div(a: int, b: int) -> int:
    return -(-a // b)


def tokens_for_currency(amount: int, price_per_token: int, token_decimals: int) -> int:
    """Token base units bought by `amount` currency base units, truncated."""
    return mul_div(amount, 10**token_decimals, price_per_token)


def currency_for_tokens(tokens: int, price_per_token: int, token_decimals: int, round_up: bool = False) -> int:
    """Currency base units worth `tokens` token base units."""
    if round_up:
        return ceil_div(tokens * price_per_token, 10**token_decimals)
    return mul_div(tokens, price_per_token, 10**token_decimals)


class Journaled(Protocol):
    def snapshot(self) -> object: ...

    def restore(self, snapshot: object) -> None: ...


@contextmanager
def atomic(*participants: Journaled) -> Iterator[None]:
    """
    Runs the enclosed block all-or-nothing.

    Every participant is snapshotted on entry. If the block raises, all of them
    are restored in reverse order and the exception propagates unchanged.
    """
    snapshots = [(p, p.snapshot()) for p in participants]
    try:
        yield
    except BaseException:
        for participant, snapshot in reversed(snapshots):
            participant.restore(snapshot)
        raise
