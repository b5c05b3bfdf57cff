import json
from pathlib import Path
from typing import Dict, Optional

from pydantic import ValidationError

from mcp_token_sale import config
from mcp_token_sale.liquidity import HttpLiquidityBridge, InMemoryLiquidityBridge
from mcp_token_sale.sale import TokenSale
from mcp_token_sale.schemas import SaleConfigModel
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)

# Determine the absolute path to the directory containing this file
MODULE_DIR = Path(__file__).parent.resolve()

# Validated configurations, and the live sales deployed from them
sale_configs: Dict[str, SaleConfigModel] = {}
sales: Dict[str, TokenSale] = {}


def load_sales_from_config_files(config_dir_name: str = config.SALE_CONFIG_DIR) -> Dict[str, SaleConfigModel]:
    """
    Loads sale configurations from <sale_id>.json files in the specified
    directory relative to this module's location.

    Args:
        config_dir_name: The name of the directory containing sale configuration files.

    Returns:
        A dictionary mapping sale_id to the validated SaleConfigModel instance.
    """
    loaded: Dict[str, SaleConfigModel] = {}
    config_path = MODULE_DIR / config_dir_name

    if not config_path.is_dir():
        logger.warning(f"Sale configuration directory not found: {config_path}. No sales loaded.")
        return loaded

    logger.info(f"Loading sale configurations from: {config_path}")

    for file_path in sorted(config_path.glob("*.json")):
        try:
            with open(file_path, "r") as f:
                sale_config = SaleConfigModel.model_validate(json.load(f))

            sale_id = sale_config.sale.sale_id
            if sale_id != file_path.stem:
                logger.warning(f"Sale ID mismatch in {file_path}: expected '{file_path.stem}', found '{sale_id}'. Skipping.")
                continue
            if sale_id in loaded:
                logger.warning(f"Duplicate sale ID '{sale_id}' found in {file_path}. Skipping.")
                continue

            loaded[sale_id] = sale_config
            logger.info(f"Successfully loaded sale config: {sale_id}")

        except json.JSONDecodeError:
            logger.error(f"Error decoding JSON from file: {file_path}")
        except ValidationError as e:
            logger.error(f"Invalid sale configuration in file {file_path}: {e}")
        except OSError as e:
            logger.error(f"Could not read sale config {file_path}: {e}")

    logger.info(f"Finished loading sales. Total loaded: {len(loaded)}")
    return loaded


def _make_bridge():
    if config.LIQUIDITY_BRIDGE_RPC_ENDPOINT:
        return HttpLiquidityBridge(config.LIQUIDITY_BRIDGE_RPC_ENDPOINT, config.BRIDGE_WALLET.pubkey())
    return InMemoryLiquidityBridge(config.BRIDGE_WALLET.pubkey())


def get_sale(sale_id: str) -> Optional[TokenSale]:
    """Retrieves the live sale for an ID, deploying it on first access."""
    if sale_id in sales:
        return sales[sale_id]
    sale_config = sale_configs.get(sale_id)
    if sale_config is None:
        return None
    sale = TokenSale.deploy(
        sale_config,
        config.SALE_WALLET.pubkey(),
        config.VESTING_WALLET.pubkey(),
        _make_bridge(),
    )
    sales[sale_id] = sale
    return sale


def add_sale(sale_config: SaleConfigModel, config_dir_name: str = config.SALE_CONFIG_DIR) -> bool:
    """
    Registers a new sale and saves its config file.

    A sale's terms are immutable once created, so an existing sale ID is
    rejected rather than overwritten.
    """
    sale_id = sale_config.sale.sale_id
    if sale_id in sale_configs:
        logger.warning(f"Sale '{sale_id}' already exists; configurations are immutable")
        return False

    config_path = MODULE_DIR / config_dir_name
    file_path = config_path / f"{sale_id}.json"
    try:
        config_path.mkdir(parents=True, exist_ok=True)
        with open(file_path, "w") as f:
            json.dump(sale_config.model_dump(mode="json"), f, indent=4)
    except OSError as e:
        logger.error(f"Error saving sale configuration to {file_path}: {e}")
        return False

    sale_configs[sale_id] = sale_config
    logger.info(f"Successfully saved sale configuration to {file_path}")
    return True


def close_sales() -> None:
    """Releases the resources held by live sales (remote bridge connections)."""
    for sale_id, sale in sales.items():
        close = getattr(sale.bridge, "close", None)
        if close is not None:
            close()
            logger.info(f"Closed liquidity bridge of sale '{sale_id}'")


# --- Initial Load ---
sale_configs.update(load_sales_from_config_files())
