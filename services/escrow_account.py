"""
Escrow Account

Wraps the single custodial key that funds every payout. Derives the escrow
address, signs payout transactions and reads per-chain balance snapshots.
The private key never leaves this object and is never logged.
"""

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from eth_account import Account
from web3 import Web3

from config import Config
from services.relay_errors import EscrowAddressMismatchError, RelayConfigurationError
from utils.decimal_precision import TokenAmount

logger = logging.getLogger(__name__)


@dataclass
class EscrowBalanceSnapshot:
    """Escrow balances on one chain, fetched in a single pass"""
    chain: str
    native_symbol: str
    token_symbol: str
    native_gas_units: int
    payout_token_units: int
    token_decimals: int
    native_decimals: int = 18

    @property
    def native_gas(self) -> Decimal:
        return TokenAmount.from_base_units(self.native_gas_units, self.native_decimals)

    @property
    def payout_token(self) -> Decimal:
        return TokenAmount.from_base_units(self.payout_token_units, self.token_decimals)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chain": self.chain,
            "native_gas": TokenAmount.format_amount(self.native_gas, self.native_decimals),
            "native_symbol": self.native_symbol,
            "payout_token": TokenAmount.format_amount(self.payout_token, self.token_decimals),
            "token_symbol": self.token_symbol,
        }


class EscrowAccount:
    """Custodial escrow wallet backed by an eth-account local key"""

    def __init__(self, private_key: Optional[str]):
        if not private_key:
            raise RelayConfigurationError("ESCROW_PRIVATE_KEY environment variable is required")
        try:
            self._account = Account.from_key(private_key)
        except Exception as e:
            # Never include the key material in the message
            raise RelayConfigurationError(f"ESCROW_PRIVATE_KEY is not a valid private key ({type(e).__name__})") from e

    @classmethod
    def from_config(cls) -> "EscrowAccount":
        return cls(Config.ESCROW_PRIVATE_KEY)

    @property
    def address(self) -> str:
        return self._account.address

    def verify_expected_address(self, expected: Optional[str] = None, fatal: Optional[bool] = None) -> bool:
        """
        Compare the derived address with the configured escrow wallet.

        Returns True on match. On mismatch logs a warning and returns False,
        or raises EscrowAddressMismatchError when the mismatch is configured fatal.
        """
        expected = expected if expected is not None else Config.ESCROW_WALLET_ADDRESS
        fatal = Config.ESCROW_ADDRESS_MISMATCH_FATAL if fatal is None else fatal

        if not expected:
            logger.warning("⚠️ ESCROW_ACCOUNT: No expected escrow address configured, skipping verification")
            return True

        if expected.lower() == self.address.lower():
            logger.info(f"✅ ESCROW_ACCOUNT: Escrow address verified: {self.address}")
            return True

        if fatal:
            logger.error(f"🚨 ESCROW_ACCOUNT: Address mismatch! Expected {expected}, key derives {self.address}")
            raise EscrowAddressMismatchError(expected, self.address)

        logger.warning(f"⚠️ ESCROW_ACCOUNT: Address mismatch! Expected {expected}, key derives {self.address}")
        return False

    def sign_transaction(self, tx: Dict[str, Any]) -> Tuple[bytes, str]:
        """Sign a transaction dict, returning (raw bytes, 0x tx hash)"""
        signed = self._account.sign_transaction(tx)
        return bytes(signed.raw_transaction), Web3.to_hex(signed.hash)

    async def get_balance_snapshot(self, client) -> EscrowBalanceSnapshot:
        """Read native gas and payout token balances on the client's chain"""
        profile = client.profile
        token = profile.payout_token
        native_units, token_units = await asyncio.gather(
            client.get_native_balance(self.address),
            client.get_token_balance(token.address, self.address),
        )
        return EscrowBalanceSnapshot(
            chain=profile.name,
            native_symbol=profile.native_symbol,
            token_symbol=token.symbol,
            native_gas_units=int(native_units),
            payout_token_units=int(token_units),
            token_decimals=token.decimals,
            native_decimals=profile.native_decimals,
        )
