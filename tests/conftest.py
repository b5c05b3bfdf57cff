import pytest
from solders.keypair import Keypair

from mcp_token_sale.liquidity import InMemoryLiquidityBridge
from mcp_token_sale.sale import TokenSale
from mcp_token_sale.schemas import SaleConfigModel

ONE = 10**18
PRICE = 169_789_088_349

START_TIME = 1_800_000_000
END_TIME = START_TIME + 24 * 3600
UNLOCK_TIME = END_TIME + 24 * 3600

TOTAL_SUPPLY = 420_690_000_000 * ONE
PUBLIC_SALE_ALLOCATION = 294_483_000_000 * ONE
LIQUIDITY_ALLOCATION = 63_103_500_000 * ONE
TEAM_ALLOCATION = 21_034_500_000 * ONE


class FakeClock:
    """Controllable clock injected into the sale and the vesting engine."""

    def __init__(self, now: int):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


def new_pubkey():
    return Keypair().pubkey()


def make_config(beneficiaries, **overrides) -> SaleConfigModel:
    """Bolt-style sale: 25 SOL soft cap, 12.5 SOL of liquidity seeding."""
    sale = {
        "sale_id": "bolt_test",
        "start_time": START_TIME,
        "end_time": END_TIME,
        "liquidity_unlock_time": UNLOCK_TIME,
        "price_per_token": PRICE,
        "soft_cap": 25 * ONE,
        "liquidity_currency_amount": 12 * ONE + ONE // 2,
    }
    sale.update(overrides.pop("sale", {}))
    data = {
        "token": {"name": "Bolt", "symbol": "BOLT", "total_supply": TOTAL_SUPPLY, "decimals": 18},
        "sale": sale,
        "allocations": {
            "team": TEAM_ALLOCATION,
            "dao_treasury": TEAM_ALLOCATION,
            "airdrop": TEAM_ALLOCATION,
            "liquidity": LIQUIDITY_ALLOCATION,
            "public_sale": PUBLIC_SALE_ALLOCATION,
        },
        "beneficiaries": {name: str(key) for name, key in beneficiaries.items()},
    }
    data.update(overrides)
    return SaleConfigModel.model_validate(data)


def make_small_config(beneficiaries, **overrides) -> SaleConfigModel:
    """Tiny sale priced at 2 SOL per token with a 10 token public allocation (hard cap 20 SOL)."""
    sale = {
        "sale_id": "small_test",
        "start_time": START_TIME,
        "end_time": END_TIME,
        "liquidity_unlock_time": UNLOCK_TIME,
        "price_per_token": 2 * ONE,
        "soft_cap": 5 * ONE,
        "liquidity_currency_amount": ONE,
    }
    sale.update(overrides.pop("sale", {}))
    data = {
        "token": {"name": "Small", "symbol": "SMALL", "total_supply": 16 * ONE, "decimals": 18},
        "sale": sale,
        "allocations": {
            "team": ONE,
            "dao_treasury": ONE,
            "airdrop": ONE,
            "liquidity": 3 * ONE,
            "public_sale": 10 * ONE,
        },
        "beneficiaries": {name: str(key) for name, key in beneficiaries.items()},
    }
    data.update(overrides)
    return SaleConfigModel.model_validate(data)


@pytest.fixture
def clock():
    return FakeClock(START_TIME - 60)


@pytest.fixture
def beneficiaries():
    return {"project": new_pubkey(), "team": new_pubkey(), "dao": new_pubkey(), "airdrop": new_pubkey()}


@pytest.fixture
def addresses():
    return {"sale": new_pubkey(), "vesting": new_pubkey(), "bridge": new_pubkey()}


@pytest.fixture
def bridge(addresses):
    return InMemoryLiquidityBridge(addresses["bridge"])


@pytest.fixture
def sale_config(beneficiaries):
    return make_config(beneficiaries)


@pytest.fixture
def sale(sale_config, addresses, bridge, clock):
    return TokenSale.deploy(sale_config, addresses["sale"], addresses["vesting"], bridge, clock=clock)


@pytest.fixture
def small_sale(beneficiaries, addresses, bridge, clock):
    return TokenSale.deploy(
        make_small_config(beneficiaries), addresses["sale"], addresses["vesting"], bridge, clock=clock
    )


@pytest.fixture
def buyers(sale):
    """alice, bob and carol, each holding 100 SOL."""
    keys = {name: new_pubkey() for name in ("alice", "bob", "carol")}
    for key in keys.values():
        sale.currency.mint(key, 100 * ONE)
    return keys


@pytest.fixture
def small_buyers(small_sale):
    keys = {name: new_pubkey() for name in ("alice", "bob")}
    for key in keys.values():
        small_sale.currency.mint(key, 100 * ONE)
    return keys
