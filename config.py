"""Configuration management for the cross-chain swap relay"""

import os
import logging
from decimal import Decimal
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Application configuration"""

    # Environment detection
    ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower().strip()
    IS_PRODUCTION = ENVIRONMENT == "production"
    CURRENT_ENVIRONMENT = "production" if IS_PRODUCTION else "development"

    # Database (ledger) configuration
    # postgresql:// URLs are rewritten to postgresql+asyncpg:// by database.py
    DATABASE_URL = os.getenv("DATABASE_URL")

    # Escrow wallet configuration
    ESCROW_PRIVATE_KEY = os.getenv("ESCROW_PRIVATE_KEY")
    ESCROW_WALLET_ADDRESS = os.getenv(
        "ESCROW_WALLET_ADDRESS",
        os.getenv("WALLET_ADDRESS", "0x9c77c6fafc1eb0821F1De12972Ef0199C97C6e45"),
    )
    # Mismatch between the key's address and ESCROW_WALLET_ADDRESS only warns unless this is set
    ESCROW_ADDRESS_MISMATCH_FATAL = _env_bool("ESCROW_ADDRESS_MISMATCH_FATAL", False)

    # Relay loop
    RELAY_ENABLED = _env_bool("RELAY_ENABLED", True)
    RELAY_POLL_INTERVAL_SECONDS = int(os.getenv("RELAY_POLL_INTERVAL_SECONDS", "30"))
    RELAY_MISFIRE_GRACE_SECONDS = int(os.getenv("RELAY_MISFIRE_GRACE_SECONDS", "60"))

    # Source-chain finality approximation (number of blocks including the tx block)
    SOURCE_CONFIRMATION_DEPTH = int(os.getenv("SOURCE_CONFIRMATION_DEPTH", "1"))

    # Minimum native balance the escrow must exceed on a payout chain (native units)
    ESCROW_MIN_GAS_RESERVE = Decimal(os.getenv("ESCROW_MIN_GAS_RESERVE", "0.0001"))

    # RPC
    RPC_REQUEST_TIMEOUT_SECONDS = int(os.getenv("RPC_REQUEST_TIMEOUT_SECONDS", "20"))
    BASE_RPC_URL = os.getenv("BASE_RPC_URL", "https://mainnet.base.org")
    ARBITRUM_RPC_URL = os.getenv("ARBITRUM_RPC_URL", "https://arb1.arbitrum.io/rpc")
    MANTLE_RPC_URL = os.getenv("MANTLE_RPC_URL", "https://rpc.mantle.xyz")
    ZKSYNC_RPC_URL = os.getenv("ZKSYNC_RPC_URL", "https://mainnet.era.zksync.io")

    # Swap pricing (used by the intake flow when quoting target amounts)
    SWAP_FEE_PERCENTAGE = Decimal(os.getenv("SWAP_FEE_PERCENTAGE", "0.5"))
    MAX_SWAP_AMOUNT_USD = Decimal(os.getenv("MAX_SWAP_AMOUNT_USD", "1000"))

    # Conversion rates, expressed as target units per source unit
    SWAP_RATE_XOC_TO_MXNB = Decimal(os.getenv("SWAP_RATE_XOC_TO_MXNB", "1.0"))
    SWAP_RATE_USDT_TO_XOC = Decimal(os.getenv("SWAP_RATE_USDT_TO_XOC", "20.0"))
    SWAP_RATE_USDT_TO_MXNB = Decimal(os.getenv("SWAP_RATE_USDT_TO_MXNB", "20.0"))
    SWAP_RATE_USDT_TO_USDT = Decimal(os.getenv("SWAP_RATE_USDT_TO_USDT", "1.0"))

    # Fallback USD prices for tokens without a price feed
    TOKEN_PRICES_USD: Dict[str, Decimal] = {
        "XOC": Decimal(os.getenv("PRICE_USD_XOC", "1.0")),
        "MXNB": Decimal(os.getenv("PRICE_USD_MXNB", "1.0")),
        "USDT": Decimal(os.getenv("PRICE_USD_USDT", "1.0")),
    }

    @staticmethod
    def rpc_url_for(chain: str) -> Optional[str]:
        """RPC endpoint for a chain tag, honoring <CHAIN>_RPC_URL overrides"""
        return getattr(Config, f"{chain.upper()}_RPC_URL", None)

    @staticmethod
    def validate_relay_configuration() -> List[str]:
        """Return a list of configuration problems that prevent the relay from starting"""
        problems = []
        if not Config.ESCROW_PRIVATE_KEY:
            problems.append("ESCROW_PRIVATE_KEY is not set")
        if not Config.DATABASE_URL:
            problems.append("DATABASE_URL is not set")
        if Config.RELAY_POLL_INTERVAL_SECONDS <= 0:
            problems.append("RELAY_POLL_INTERVAL_SECONDS must be positive")
        if Config.SOURCE_CONFIRMATION_DEPTH < 1:
            problems.append("SOURCE_CONFIRMATION_DEPTH must be at least 1")
        if Config.ESCROW_MIN_GAS_RESERVE < 0:
            problems.append("ESCROW_MIN_GAS_RESERVE cannot be negative")
        return problems

    @staticmethod
    def log_relay_config():
        """Log current relay configuration for debugging (never logs secrets)"""
        logger.info("🔧 Swap Relay Configuration:")
        logger.info(f"   Environment: {Config.CURRENT_ENVIRONMENT.upper()}")
        logger.info(f"   Escrow Wallet: {Config.ESCROW_WALLET_ADDRESS}")
        logger.info(f"   Escrow Key: {'✅ Set' if Config.ESCROW_PRIVATE_KEY else '❌ Not set'}")
        logger.info(f"   Database: {'✅ Set' if Config.DATABASE_URL else '❌ Not set'}")
        logger.info(f"   Poll Interval: {Config.RELAY_POLL_INTERVAL_SECONDS}s")
        logger.info(f"   Confirmation Depth: {Config.SOURCE_CONFIRMATION_DEPTH}")
        logger.info(f"   Min Gas Reserve: {Config.ESCROW_MIN_GAS_RESERVE}")
        logger.info(
            f"   Address Mismatch: {'FATAL' if Config.ESCROW_ADDRESS_MISMATCH_FATAL else 'warning only'}"
        )
