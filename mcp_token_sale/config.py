import os
import logging
from typing import Optional
from solders.keypair import Keypair
from dotenv import load_dotenv

from mcp_token_sale.errors import ConfigurationError

"""
Configuration Management for the Token Sale Server

This module loads the defaults used when a sale configuration file leaves a
setting out, plus the custody wallets of the sale, the vesting engine and the
in-memory liquidity bridge. Settings come from environment variables (a .env
file is honoured) and are validated on import.

Configuration Sources (in order of precedence):
1. Environment variables
2. Default values defined in this module

Environment Variables:
    SALE_CONFIG_DIR: Directory (relative to the package) holding <sale_id>.json files
    TOKEN_DECIMALS: Token decimals (0-18)
    CURRENCY_DECIMALS: Base currency decimals (0-18)
    DEFAULT_PRICE_PER_TOKEN: Currency base units per whole token
    PUBLIC_IMMEDIATE_DIVISOR: Public buyers receive 1/N of their tokens at claim
    PUBLIC_VEST_CLIFF_WEEKS: Cliff of the public buyer vest, in weeks
    TEAM_CLIFF_MONTHS / TEAM_VESTING_MONTHS: Team allocation vest
    DAO_CLIFF_MONTHS / DAO_VESTING_MONTHS: DAO treasury allocation vest
    LIQUIDITY_BRIDGE_RPC_ENDPOINT: JSON-RPC endpoint of a remote liquidity bridge (empty = in-memory)
    SALE_WALLET_SEED / VESTING_WALLET_SEED / BRIDGE_WALLET_SEED: Comma-separated seed bytes
"""

logger = logging.getLogger(__name__)

load_dotenv()


def _get_env_str(key: str, default: str, required: bool = False) -> str:
    """Get environment variable as string with validation."""
    value = os.getenv(key, default)
    if required and not value:
        raise ConfigurationError(f"Required environment variable {key} is not set")
    return value


def _get_env_int(key: str, default: int, min_val: Optional[int] = None, max_val: Optional[int] = None) -> int:
    """Get environment variable as integer with validation."""
    try:
        value = int(os.getenv(key, str(default)))
    except ValueError:
        raise ConfigurationError(f"Environment variable {key} must be a valid integer")
    if min_val is not None and value < min_val:
        raise ConfigurationError(f"Environment variable {key} must be >= {min_val}")
    if max_val is not None and value > max_val:
        raise ConfigurationError(f"Environment variable {key} must be <= {max_val}")
    return value


def _load_wallet(key: str, default_byte: int) -> Keypair:
    """Load a custody wallet from a comma-separated seed in the environment."""
    seed_str = os.getenv(key, ",".join([str(default_byte)] * 32))

    try:
        seed_parts = [x.strip() for x in seed_str.split(",")]
        if len(seed_parts) != 32:
            raise ValueError(f"{key} must contain exactly 32 comma-separated integers, got {len(seed_parts)}")

        wallet = Keypair.from_seed(bytes([int(x) for x in seed_parts]))
        logger.info(f"Loaded wallet from {key}: {wallet.pubkey()}")
        return wallet

    except (ValueError, TypeError) as e:
        logger.warning(f"Error loading {key}: {e}. Using a default insecure seed for development.")
        return Keypair.from_seed(bytes([default_byte] * 32))


try:
    # --- Token / Currency ---
    DEFAULT_TOKEN_DECIMALS = _get_env_int("TOKEN_DECIMALS", 18, min_val=0, max_val=18)
    DEFAULT_CURRENCY_DECIMALS = _get_env_int("CURRENCY_DECIMALS", 18, min_val=0, max_val=18)
    # ~5,889,660 tokens per currency unit
    DEFAULT_PRICE_PER_TOKEN = _get_env_int("DEFAULT_PRICE_PER_TOKEN", 169_789_088_349, min_val=1)

    # --- Vesting ---
    PUBLIC_IMMEDIATE_DIVISOR = _get_env_int("PUBLIC_IMMEDIATE_DIVISOR", 4, min_val=1)
    PUBLIC_VEST_CLIFF_WEEKS = _get_env_int("PUBLIC_VEST_CLIFF_WEEKS", 3, min_val=0)
    TEAM_CLIFF_MONTHS = _get_env_int("TEAM_CLIFF_MONTHS", 12, min_val=0)
    TEAM_VESTING_MONTHS = _get_env_int("TEAM_VESTING_MONTHS", 0, min_val=0)
    DAO_CLIFF_MONTHS = _get_env_int("DAO_CLIFF_MONTHS", 6, min_val=0)
    DAO_VESTING_MONTHS = _get_env_int("DAO_VESTING_MONTHS", 0, min_val=0)

    # --- Liquidity Bridge ---
    LIQUIDITY_BRIDGE_RPC_ENDPOINT = _get_env_str("LIQUIDITY_BRIDGE_RPC_ENDPOINT", "")

    # --- Custody Wallets ---
    SALE_WALLET = _load_wallet("SALE_WALLET_SEED", 1)
    VESTING_WALLET = _load_wallet("VESTING_WALLET_SEED", 2)
    BRIDGE_WALLET = _load_wallet("BRIDGE_WALLET_SEED", 3)

    # --- Directories ---
    SALE_CONFIG_DIR = _get_env_str("SALE_CONFIG_DIR", "sale_configs", required=True)

    logger.info("Configuration loaded successfully")

except ConfigurationError as e:
    logger.error(f"Configuration error: {e}")
    raise
