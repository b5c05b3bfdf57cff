"""
Pydantic Data Models and Validation Schemas

This module defines the data models for the token sale system. Configuration
models are frozen once validated; a sale never changes its terms after it has
been created.

Key Components:
- TimeUnit / SalePhase / SaleOutcome enums
- TokenConfig: token metadata and supply
- Allocations: how the total supply is split between the parties
- Beneficiaries: the four receiving addresses (base58 public keys)
- VestingTerms: cliff / duration / unit for a class of schedules
- SaleConfig: timing, price and cap settings of one sale
- SaleConfigModel: complete sale configuration, validated as a whole
- VestingSchedule: one release schedule held by the vesting engine
- SaleStatus: read-only snapshot of a running sale

Amounts are integers in base units everywhere: token base units
(10**token.decimals per token) and currency base units
(10**sale.currency_decimals per currency unit). The price is expressed in
currency base units per whole token.
"""
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator, model_validator
from solders.pubkey import Pubkey

from mcp_token_sale import config
from mcp_token_sale.utils import ceil_div


class TimeUnit(str, Enum):
    days = "days"
    weeks = "weeks"
    months = "months"


class SalePhase(str, Enum):
    open = "open"
    closed = "closed"


class SaleOutcome(str, Enum):
    undetermined = "undetermined"
    success = "success"
    failure = "failure"


class TokenConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    symbol: str
    total_supply: int = Field(gt=0)
    decimals: int = Field(default=config.DEFAULT_TOKEN_DECIMALS, ge=0, le=18)


class Allocations(BaseModel):
    model_config = ConfigDict(frozen=True)

    team: int = Field(ge=0)
    dao_treasury: int = Field(ge=0)
    airdrop: int = Field(ge=0)
    liquidity: int = Field(ge=0)
    public_sale: int = Field(gt=0)

    @property
    def total(self) -> int:
        return self.team + self.dao_treasury + self.airdrop + self.liquidity + self.public_sale

    @property
    def vested_total(self) -> int:
        """Amount escrowed into the vesting engine for the fixed allocations."""
        return self.team + self.dao_treasury + self.airdrop


class Beneficiaries(BaseModel):
    model_config = ConfigDict(frozen=True)

    project: str
    team: str
    dao: str
    airdrop: str

    @field_validator("project", "team", "dao", "airdrop")
    @classmethod
    def _check_pubkey(cls, value: str) -> str:
        # Raises ValueError on malformed base58, reported by pydantic
        Pubkey.from_string(value)
        return value


class VestingTerms(BaseModel):
    model_config = ConfigDict(frozen=True)

    cliff_count: int = Field(ge=0)
    duration_count: int = Field(default=0, ge=0)
    unit: TimeUnit


class SaleConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    sale_id: str
    start_time: int = Field(ge=0)
    end_time: int = Field(ge=0)
    liquidity_unlock_time: int = Field(ge=0)
    price_per_token: int = Field(default=config.DEFAULT_PRICE_PER_TOKEN, gt=0)
    soft_cap: int = Field(ge=0)
    liquidity_currency_amount: int = Field(ge=0)
    min_liquidity_out: int = Field(default=0, ge=0)
    currency_decimals: int = Field(default=config.DEFAULT_CURRENCY_DECIMALS, ge=0, le=18)
    currency_symbol: str = "SOL"


def _team_terms() -> VestingTerms:
    return VestingTerms(
        cliff_count=config.TEAM_CLIFF_MONTHS,
        duration_count=config.TEAM_VESTING_MONTHS,
        unit=TimeUnit.months,
    )


def _dao_terms() -> VestingTerms:
    return VestingTerms(
        cliff_count=config.DAO_CLIFF_MONTHS,
        duration_count=config.DAO_VESTING_MONTHS,
        unit=TimeUnit.months,
    )


def _airdrop_terms() -> VestingTerms:
    return VestingTerms(cliff_count=0, unit=TimeUnit.days)


def _public_terms() -> VestingTerms:
    return VestingTerms(cliff_count=config.PUBLIC_VEST_CLIFF_WEEKS, unit=TimeUnit.weeks)


class SaleConfigModel(BaseModel):
    model_config = ConfigDict(frozen=True)

    token: TokenConfig
    sale: SaleConfig
    allocations: Allocations
    beneficiaries: Beneficiaries
    team_vesting: VestingTerms = Field(default_factory=_team_terms)
    dao_vesting: VestingTerms = Field(default_factory=_dao_terms)
    airdrop_vesting: VestingTerms = Field(default_factory=_airdrop_terms)
    public_vesting: VestingTerms = Field(default_factory=_public_terms)
    public_immediate_divisor: int = Field(default=config.PUBLIC_IMMEDIATE_DIVISOR, ge=1)
    resources: Optional[list] = []

    @model_validator(mode="after")
    def _check_consistency(self) -> "SaleConfigModel":
        sale = self.sale
        if self.token.symbol == sale.currency_symbol:
            raise ValueError("Token symbol must differ from the currency symbol")
        if sale.start_time >= sale.end_time:
            raise ValueError("Sale start time must be before end time")
        if sale.liquidity_unlock_time < sale.end_time:
            raise ValueError("Liquidity unlock time must not be before the sale end time")
        if self.allocations.total != self.token.total_supply:
            raise ValueError(
                f"Allocations sum to {self.allocations.total}, expected total supply {self.token.total_supply}"
            )
        if sale.liquidity_currency_amount > sale.soft_cap:
            raise ValueError("Liquidity currency amount must not exceed the soft cap")
        if (self.allocations.liquidity > 0) != (sale.liquidity_currency_amount > 0):
            raise ValueError("Liquidity token allocation and liquidity currency amount must both be set or both be zero")
        if sale.soft_cap > self.hard_cap_amount:
            raise ValueError("Soft cap must not exceed the hard cap")
        return self

    @property
    def hard_cap_tokens(self) -> int:
        return self.allocations.public_sale

    @property
    def hard_cap_amount(self) -> int:
        """Currency needed to buy the whole public allocation."""
        return ceil_div(self.hard_cap_tokens * self.sale.price_per_token, 10**self.token.decimals)


class VestingSchedule(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    schedule_id: int
    beneficiary: Pubkey
    total_amount: int
    start_time: int
    cliff_count: int
    duration_count: int = 0
    unit: TimeUnit
    released_amount: int = 0

    @field_serializer("beneficiary")
    def _serialize_beneficiary(self, value: Pubkey) -> str:
        return str(value)

    @property
    def is_fully_released(self) -> bool:
        return self.released_amount >= self.total_amount


class SaleStatus(BaseModel):
    sale_id: str
    phase: SalePhase
    outcome: SaleOutcome
    start_time: int
    end_time: int
    liquidity_unlock_time: int
    price_per_token: int
    soft_cap: int
    hard_cap_tokens: int
    total_raised: int
    total_tokens_sold: int
    participants: int
    vesting_initialized: bool
    liquidity_locked: int
    liquidity_unlocked: bool
