"""
Token Sale Server - MCP Server Implementation

This module exposes the token sale operations as MCP tools. Each tool validates
its input, looks the sale up through the sale manager, runs one sale operation
and turns domain errors into short user-facing messages while logging the
details.

Tools:
- get_sale_info / create_sale: inspect and register sales
- faucet_currency: credit base currency to an account on the in-memory ledger
- buy_tokens: contribute during the sale window
- close_sale: settle the sale on the soft cap
- claim_tokens / airdrop_tokens: settle contributors (tokens + vesting, or refund)
- initialize_vesting / release_vesting / get_vesting_schedules: fixed-allocation and public vesting
- unlock_liquidity / withdraw_unsold_tokens: post-sale sweeps to the project

Sale operations never await, so tool calls are serialized on the event loop and
each one is atomic with respect to the others.
"""

import json
import time
from typing import List

from pydantic import Field, ValidationError
from solders.pubkey import Pubkey

from mcp.server.fastmcp import Context, FastMCP
from mcp.server.fastmcp.utilities.logging import get_logger

from mcp_token_sale import sale_manager
from mcp_token_sale.schemas import SaleConfigModel
from mcp_token_sale.errors import (
    InvalidAmountError,
    LiquidityBridgeError,
    StateViolationError,
    TemporalViolationError,
    TransferFailedError,
)

logger = get_logger(__name__)

# Constants
MAX_SALE_ID_LENGTH = 100
MAX_AMOUNT = 10**36
MAX_AIRDROP_BATCH = 500
MAX_CONFIG_JSON_LENGTH = 10000

mcp = FastMCP(name="Token Sale Server")


def validate_sale_id(sale_id: str) -> None:
    if not sale_id or not isinstance(sale_id, str):
        raise ValueError("Sale ID must be a non-empty string")
    if len(sale_id) > MAX_SALE_ID_LENGTH:
        raise ValueError("Sale ID is too long")
    if "/" in sale_id or "\\" in sale_id or ".." in sale_id:
        raise ValueError("Sale ID must not contain path separators or '..'")


def validate_amount(amount: int) -> None:
    if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
        raise ValueError("Amount must be a positive integer")
    if amount > MAX_AMOUNT:
        raise ValueError("Amount is too large")


def parse_pubkey(value: str, label: str = "Address") -> Pubkey:
    if not value or not isinstance(value, str):
        raise ValueError(f"{label} must be a non-empty string")
    try:
        return Pubkey.from_string(value.strip())
    except ValueError:
        raise ValueError(f"{label} is not a valid public key: {value}")


def format_token_amount(amount: int, decimals: int, symbol: str) -> str:
    """Format token amount with proper decimal places and symbol."""
    whole, frac = divmod(amount, 10**decimals)
    if decimals == 0:
        return f"{whole} {symbol}"
    return f"{whole}.{frac:0{decimals}d} {symbol}"


def log_operation_error(operation: str, sale_id: str, error: Exception, duration: float) -> None:
    """Log operation error with structured information."""
    logger.error(f"{operation} failed for sale '{sale_id}': {error}, duration: {duration:.3f}s")


def _handle_error(operation: str, sale_id: str, error: Exception, start_time: float) -> str:
    duration = time.time() - start_time
    if isinstance(error, (TemporalViolationError, StateViolationError, TransferFailedError, InvalidAmountError)):
        log_operation_error(operation, sale_id, error, duration)
        return str(error)
    if isinstance(error, LiquidityBridgeError):
        log_operation_error(operation, sale_id, error, duration)
        return f"Liquidity bridge error: {error}"
    if isinstance(error, ValueError):
        log_operation_error(operation, sale_id, error, duration)
        return f"Error: {error}"
    logger.exception(f"Unexpected error during {operation} for sale '{sale_id}': {error}")
    return "An unexpected server error occurred"


def _not_found(sale_id: str) -> str:
    logger.warning(f"Sale not found: {sale_id}")
    return f"Sale with id {sale_id} not found."


# --- Sale Registry ---

@mcp.tool()
async def get_sale_info(context: Context, sale_id: str = Field(..., description="The sale ID.")) -> str:
    """Get configuration and live status of a sale."""
    start_time = time.time()
    try:
        validate_sale_id(sale_id)
        sale = sale_manager.get_sale(sale_id)
        if not sale:
            return _not_found(sale_id)
        info = {
            "config": sale.config.model_dump(mode="json"),
            "status": sale.status().model_dump(mode="json"),
        }
        return json.dumps(info, indent=2)
    except Exception as e:
        return _handle_error("Get sale info", sale_id, e, start_time)


@mcp.tool()
async def create_sale(context: Context, config_json: str = Field(..., description="The sale configuration as a JSON string.")) -> str:
    """Creates a new sale from a JSON configuration string."""
    try:
        if not config_json or not isinstance(config_json, str):
            raise ValueError("Configuration JSON must be a non-empty string")
        if len(config_json) > MAX_CONFIG_JSON_LENGTH:
            raise ValueError("Configuration JSON is too large (max 10KB)")

        sale_config = SaleConfigModel.model_validate(json.loads(config_json))
        sale_id = sale_config.sale.sale_id
        validate_sale_id(sale_id)

        if sale_manager.add_sale(sale_config):
            logger.info(f"Sale '{sale_id}' created successfully")
            return f"Sale '{sale_id}' created successfully."
        return f"Error: sale '{sale_id}' could not be created (it may already exist)."

    except json.JSONDecodeError as e:
        logger.error(f"Error decoding JSON for create_sale request: {e}")
        return "Error: Invalid JSON format provided. Please check your JSON syntax."
    except ValidationError as e:
        logger.error(f"Invalid sale configuration provided to create_sale: {e}")
        return f"Error: Invalid sale configuration - {e}"
    except ValueError as e:
        logger.error(f"Validation error in create_sale: {e}")
        return f"Error: {e}"
    except Exception as e:
        logger.exception(f"Unexpected error creating sale: {e}")
        return "An unexpected server error occurred while creating the sale."


@mcp.tool()
async def faucet_currency(
    context: Context,
    sale_id: str = Field(..., description="The sale ID."),
    account: str = Field(..., description="Account to credit (base58 public key)."),
    amount: int = Field(..., description="Currency amount in base units."),
) -> str:
    """Credits base currency to an account on the sale's in-memory currency ledger."""
    start_time = time.time()
    try:
        validate_sale_id(sale_id)
        validate_amount(amount)
        pubkey = parse_pubkey(account, "Account")
        sale = sale_manager.get_sale(sale_id)
        if not sale:
            return _not_found(sale_id)
        sale.currency.mint(pubkey, amount)
        return f"Credited {format_token_amount(amount, sale.currency.decimals, sale.currency.symbol)} to {pubkey}."
    except Exception as e:
        return _handle_error("Faucet", sale_id, e, start_time)


# --- Sale Lifecycle ---

@mcp.tool()
async def buy_tokens(
    context: Context,
    sale_id: str = Field(..., description="The sale ID."),
    buyer: str = Field(..., description="Buyer account (base58 public key)."),
    amount: int = Field(..., description="Currency to spend, in base units."),
) -> str:
    """
    Buys tokens during the sale window.

    The payment is taken from the buyer's currency balance. If the purchase
    reaches the hard cap, only the remaining tokens are sold, the rest of the
    payment is refunded and the sale closes.
    """
    start_time = time.time()
    try:
        validate_sale_id(sale_id)
        validate_amount(amount)
        buyer_pubkey = parse_pubkey(buyer, "Buyer")
        sale = sale_manager.get_sale(sale_id)
        if not sale:
            return _not_found(sale_id)

        receipt = sale.buy(buyer_pubkey, amount)
        token = sale.config.token
        message = (
            f"Successfully purchased {format_token_amount(receipt.tokens_accepted, token.decimals, token.symbol)} "
            f"for {format_token_amount(receipt.currency_charged, sale.currency.decimals, sale.currency.symbol)}."
        )
        if receipt.currency_refunded:
            message += f" Refunded {format_token_amount(receipt.currency_refunded, sale.currency.decimals, sale.currency.symbol)}."
        if receipt.closed_sale:
            message += " Hard cap reached; the sale is now closed."
        logger.info(f"buy_tokens completed for '{sale_id}' in {time.time() - start_time:.3f}s")
        return message
    except Exception as e:
        return _handle_error("Token purchase", sale_id, e, start_time)


@mcp.tool()
async def close_sale(context: Context, sale_id: str = Field(..., description="The sale ID.")) -> str:
    """Closes the sale once it has ended (or sold out) and settles it on the soft cap."""
    start_time = time.time()
    try:
        validate_sale_id(sale_id)
        sale = sale_manager.get_sale(sale_id)
        if not sale:
            return _not_found(sale_id)
        outcome = sale.close_sale()
        return (
            f"Sale '{sale_id}' closed with outcome '{outcome.value}'. "
            f"Raised {sale.total_raised}, sold {sale.total_tokens_sold} token base units."
        )
    except Exception as e:
        return _handle_error("Close sale", sale_id, e, start_time)


@mcp.tool()
async def claim_tokens(
    context: Context,
    sale_id: str = Field(..., description="The sale ID."),
    claimant: str = Field(..., description="Contributor account (base58 public key)."),
) -> str:
    """Claims tokens (and a vesting schedule) after a successful sale, or a refund after a failed one."""
    start_time = time.time()
    try:
        validate_sale_id(sale_id)
        claimant_pubkey = parse_pubkey(claimant, "Claimant")
        sale = sale_manager.get_sale(sale_id)
        if not sale:
            return _not_found(sale_id)

        result = sale.claim(claimant_pubkey)
        if result.refund_amount:
            return f"Refunded {format_token_amount(result.refund_amount, sale.currency.decimals, sale.currency.symbol)} to {claimant_pubkey}."
        token = sale.config.token
        message = f"Claimed {format_token_amount(result.immediate_amount, token.decimals, token.symbol)}."
        if result.schedule_id is not None:
            message += (
                f" {format_token_amount(result.vested_amount, token.decimals, token.symbol)} "
                f"vesting under schedule {result.schedule_id}."
            )
        return message
    except Exception as e:
        return _handle_error("Claim", sale_id, e, start_time)


@mcp.tool()
async def airdrop_tokens(
    context: Context,
    sale_id: str = Field(..., description="The sale ID."),
    addresses: List[str] = Field(..., description="Contributor accounts to settle (base58 public keys)."),
) -> str:
    """Settles a batch of contributors; addresses with nothing to claim are skipped."""
    start_time = time.time()
    try:
        validate_sale_id(sale_id)
        if not isinstance(addresses, list):
            raise ValueError("Addresses must be a list")
        if len(addresses) > MAX_AIRDROP_BATCH:
            raise ValueError(f"At most {MAX_AIRDROP_BATCH} addresses per airdrop")
        pubkeys = [parse_pubkey(a, "Address") for a in addresses]
        sale = sale_manager.get_sale(sale_id)
        if not sale:
            return _not_found(sale_id)

        results = sale.airdrop(pubkeys)
        return f"Airdrop settled {len(results)} of {len(pubkeys)} addresses."
    except Exception as e:
        return _handle_error("Airdrop", sale_id, e, start_time)


# --- Vesting ---

@mcp.tool()
async def initialize_vesting(context: Context, sale_id: str = Field(..., description="The sale ID.")) -> str:
    """Escrows the team, DAO and airdrop allocations and creates their vesting schedules."""
    start_time = time.time()
    try:
        validate_sale_id(sale_id)
        sale = sale_manager.get_sale(sale_id)
        if not sale:
            return _not_found(sale_id)
        schedule_ids = sale.initialize_vesting()
        return f"Vesting initialized with schedules {schedule_ids}."
    except Exception as e:
        return _handle_error("Initialize vesting", sale_id, e, start_time)


@mcp.tool()
async def release_vesting(
    context: Context,
    sale_id: str = Field(..., description="The sale ID."),
    beneficiary: str = Field(..., description="Schedule beneficiary (base58 public key)."),
    schedule_id: int = Field(..., description="The vesting schedule ID."),
) -> str:
    """Releases whatever has vested on a schedule to its beneficiary."""
    start_time = time.time()
    try:
        validate_sale_id(sale_id)
        beneficiary_pubkey = parse_pubkey(beneficiary, "Beneficiary")
        sale = sale_manager.get_sale(sale_id)
        if not sale:
            return _not_found(sale_id)
        released = sale.vesting.release(beneficiary_pubkey, schedule_id)
        token = sale.config.token
        return f"Released {format_token_amount(released, token.decimals, token.symbol)} from schedule {schedule_id}."
    except Exception as e:
        return _handle_error("Release vesting", sale_id, e, start_time)


@mcp.tool()
async def get_vesting_schedules(
    context: Context,
    sale_id: str = Field(..., description="The sale ID."),
    beneficiary: str = Field(..., description="Schedule beneficiary (base58 public key)."),
) -> str:
    """Lists the vesting schedules of a beneficiary with their releasable amounts."""
    start_time = time.time()
    try:
        validate_sale_id(sale_id)
        beneficiary_pubkey = parse_pubkey(beneficiary, "Beneficiary")
        sale = sale_manager.get_sale(sale_id)
        if not sale:
            return _not_found(sale_id)
        schedules = []
        for schedule in sale.vesting.schedules_of(beneficiary_pubkey):
            entry = schedule.model_dump(mode="json")
            entry["releasable_amount"] = sale.vesting.releasable_amount(schedule.schedule_id)
            schedules.append(entry)
        return json.dumps(schedules, indent=2)
    except Exception as e:
        return _handle_error("Get vesting schedules", sale_id, e, start_time)


# --- Post-sale ---

@mcp.tool()
async def unlock_liquidity(context: Context, sale_id: str = Field(..., description="The sale ID.")) -> str:
    """Sweeps the locked pool shares to the project once the unlock date has passed."""
    start_time = time.time()
    try:
        validate_sale_id(sale_id)
        sale = sale_manager.get_sale(sale_id)
        if not sale:
            return _not_found(sale_id)
        amount = sale.unlock_liquidity()
        return f"Unlocked {amount} pool shares to the project."
    except Exception as e:
        return _handle_error("Unlock liquidity", sale_id, e, start_time)


@mcp.tool()
async def withdraw_unsold_tokens(context: Context, sale_id: str = Field(..., description="The sale ID.")) -> str:
    """Sends unsold tokens, and currency not owed to contributors, to the project after the sale closes."""
    start_time = time.time()
    try:
        validate_sale_id(sale_id)
        sale = sale_manager.get_sale(sale_id)
        if not sale:
            return _not_found(sale_id)
        withdrawal = sale.withdraw_unsold_tokens()
        token = sale.config.token
        message = f"Withdrew {format_token_amount(withdrawal.tokens, token.decimals, token.symbol)} unsold"
        if withdrawal.currency:
            message += f" and {format_token_amount(withdrawal.currency, sale.currency.decimals, sale.currency.symbol)} surplus"
        return message + " to the project."
    except Exception as e:
        return _handle_error("Withdraw unsold tokens", sale_id, e, start_time)


# --- Main Execution ---
def main() -> None:
    logger.info("Starting Token Sale MCP Server...")
    logger.info(f"Loaded {len(sale_manager.sale_configs)} sale configuration(s).")
    try:
        mcp.run(transport="stdio")
    except KeyboardInterrupt:
        logger.info("Server shutdown requested by user")
    finally:
        sale_manager.close_sales()
        logger.info("Token Sale MCP Server stopped.")


if __name__ == "__main__":
    main()
