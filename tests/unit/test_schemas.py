import pytest
from pydantic import ValidationError

from conftest import ONE, make_small_config


def test_small_config_is_valid(beneficiaries):
    sale_config = make_small_config(beneficiaries)
    assert sale_config.hard_cap_tokens == 10 * ONE
    assert sale_config.hard_cap_amount == 20 * ONE


def test_liquidity_tokens_without_currency_rejected(beneficiaries):
    with pytest.raises(ValidationError, match="must both be set or both be zero"):
        make_small_config(beneficiaries, sale={"liquidity_currency_amount": 0})


def test_liquidity_currency_without_tokens_rejected(beneficiaries):
    allocations = {"team": ONE, "dao_treasury": ONE, "airdrop": ONE, "liquidity": 0, "public_sale": 13 * ONE}
    with pytest.raises(ValidationError, match="must both be set or both be zero"):
        make_small_config(beneficiaries, allocations=allocations)


def test_sale_without_liquidity_is_allowed(beneficiaries):
    allocations = {"team": ONE, "dao_treasury": ONE, "airdrop": ONE, "liquidity": 0, "public_sale": 13 * ONE}
    sale_config = make_small_config(beneficiaries, allocations=allocations, sale={"liquidity_currency_amount": 0})
    assert sale_config.allocations.liquidity == 0


def test_liquidity_currency_above_soft_cap_rejected(beneficiaries):
    with pytest.raises(ValidationError, match="must not exceed the soft cap"):
        make_small_config(beneficiaries, sale={"liquidity_currency_amount": 6 * ONE})


def test_allocations_must_sum_to_supply(beneficiaries):
    allocations = {"team": ONE, "dao_treasury": ONE, "airdrop": ONE, "liquidity": 3 * ONE, "public_sale": 9 * ONE}
    with pytest.raises(ValidationError, match="expected total supply"):
        make_small_config(beneficiaries, allocations=allocations)
