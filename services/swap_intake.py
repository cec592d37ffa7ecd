"""
Swap Intake Service

Front door of the relay: quotes a swap (conversion rate and fee), records the
pending swap in the ledger, accepts the user's deposit hash once it exists and
renders receipts with block explorer links. All amounts are Decimal.
"""

import logging
import random
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional, Union

from web3 import Web3

from config import Config
from services.confirmation_oracle import looks_like_tx_hash
from services.relay_errors import RelayError, UnsupportedSwapPairError
from utils.constants import get_explorer_link, get_transaction_text_link
from utils.decimal_precision import TokenAmount

logger = logging.getLogger(__name__)


def create_swap_id() -> str:
    """Opaque swap identifier: swap-<unix ms>-<0..999>"""
    return f"swap-{int(time.time() * 1000)}-{random.randint(0, 999)}"


def conversion_rate(source_token: str, target_token: str) -> Decimal:
    """Target units received per source unit, before fees"""
    if source_token == target_token:
        return Config.SWAP_RATE_USDT_TO_USDT if source_token == "USDT" else Decimal("1")

    rates = {
        ("XOC", "MXNB"): Config.SWAP_RATE_XOC_TO_MXNB,
        ("USDT", "XOC"): Config.SWAP_RATE_USDT_TO_XOC,
        ("USDT", "MXNB"): Config.SWAP_RATE_USDT_TO_MXNB,
    }
    if (source_token, target_token) in rates:
        return rates[(source_token, target_token)]
    if (target_token, source_token) in rates:
        return Decimal(1) / rates[(target_token, source_token)]
    raise ValueError(f"No conversion rate for {source_token} to {target_token}")


@dataclass
class SwapQuote:
    source_chain: str
    target_chain: str
    source_token: str
    target_token: str
    source_amount: Decimal
    rate: Decimal
    gross_target_amount: Decimal
    fee_amount: Decimal
    target_amount: Decimal
    fee_percentage: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_chain": self.source_chain,
            "target_chain": self.target_chain,
            "source_token": self.source_token,
            "target_token": self.target_token,
            "source_amount": str(self.source_amount),
            "rate": str(self.rate),
            "fee_percentage": str(self.fee_percentage),
            "fee_amount": str(self.fee_amount),
            "target_amount": str(self.target_amount),
        }


class SwapIntakeService:
    """Creates swap records for the relay to settle"""

    def __init__(self, ledger, registry):
        self.ledger = ledger
        self.registry = registry

    def quote_swap(self, source_chain: str, target_chain: str, source_amount: Union[str, Decimal]) -> SwapQuote:
        """Price a swap; raises ValueError or RelayError for invalid requests"""
        if source_chain == target_chain:
            raise UnsupportedSwapPairError(source_chain, target_chain)

        source_token = self.registry.profile(source_chain).payout_token
        target_token = self.registry.profile(target_chain).payout_token

        amount = TokenAmount.to_decimal(source_amount, "swap amount")
        if amount <= 0:
            raise ValueError("Swap amount must be greater than zero")
        if TokenAmount.quantize_to_decimals(amount, source_token.decimals) != amount:
            raise ValueError(f"{source_token.symbol} supports at most {source_token.decimals} decimal places")

        usd_price = Config.TOKEN_PRICES_USD.get(source_token.symbol, Decimal("1"))
        usd_value = amount * usd_price
        if usd_value > Config.MAX_SWAP_AMOUNT_USD:
            raise ValueError(
                f"Swap value ${usd_value} exceeds the maximum of ${Config.MAX_SWAP_AMOUNT_USD}"
            )

        rate = conversion_rate(source_token.symbol, target_token.symbol)
        fee_percentage = Config.SWAP_FEE_PERCENTAGE
        gross = amount * rate
        fee = gross * fee_percentage / Decimal(100)
        net = TokenAmount.quantize_to_decimals(gross - fee, target_token.decimals)

        return SwapQuote(
            source_chain=source_chain,
            target_chain=target_chain,
            source_token=source_token.symbol,
            target_token=target_token.symbol,
            source_amount=amount,
            rate=rate,
            gross_target_amount=gross,
            fee_amount=fee,
            target_amount=net,
            fee_percentage=fee_percentage,
        )

    async def submit_swap(
        self,
        source_chain: str,
        target_chain: str,
        source_amount: Union[str, Decimal],
        recipient_address: str,
        sender_address: Optional[str] = None,
        source_tx_hash: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Quote and record a swap. Returns a result dict, never raises for bad input."""
        try:
            if not Web3.is_address(recipient_address):
                raise ValueError(f"Invalid recipient address: {recipient_address}")
            quote = self.quote_swap(source_chain, target_chain, source_amount)
        except (ValueError, RelayError) as e:
            logger.warning(f"⚠️ SWAP_INTAKE: Rejected swap {source_chain} -> {target_chain}: {e}")
            return {"success": False, "error": str(e)}

        swap_id = create_swap_id()
        # Provisional hash until the user's deposit is known
        provisional_hash = source_tx_hash or f"pending-{swap_id}"

        record = await self.ledger.record_swap(
            swap_id=swap_id,
            source_chain=source_chain,
            target_chain=target_chain,
            source_amount=quote.source_amount,
            target_amount=quote.target_amount,
            recipient_address=Web3.to_checksum_address(recipient_address),
            source_tx_hash=provisional_hash,
            sender_address=sender_address,
            source_token=quote.source_token,
            target_token=quote.target_token,
        )

        logger.info(
            f"✅ SWAP_INTAKE: Swap {swap_id} accepted: {quote.source_amount} {quote.source_token} "
            f"on {source_chain} -> {quote.target_amount} {quote.target_token} on {target_chain}"
        )
        return {
            "success": True,
            "swap_id": record.swap_id,
            "status": record.status,
            "awaiting_deposit": not looks_like_tx_hash(provisional_hash),
            **quote.to_dict(),
        }

    async def confirm_deposit(self, swap_id: str, tx_hash: str) -> Dict[str, Any]:
        """Attach the user's real deposit hash so the relay can verify it"""
        if not looks_like_tx_hash(tx_hash):
            return {"success": False, "error": f"Invalid transaction hash: {tx_hash}"}

        updated = await self.ledger.backfill_source_tx_hash(swap_id, tx_hash)
        if not updated:
            return {"success": False, "error": f"Swap {swap_id} not found or already settled"}
        return {
            "success": True,
            "swap_id": swap_id,
            "source_tx_hash": tx_hash,
        }

    async def get_swap_receipt(self, swap_id: Optional[str] = None) -> Dict[str, Any]:
        """Receipt for a swap, or for the most recent swap when no id is given"""
        if swap_id:
            record = await self.ledger.get_by_id(swap_id)
        else:
            record = await self.ledger.get_most_recent_swap()
        if record is None:
            return {"success": False, "error": "Swap not found"}

        receipt: Dict[str, Any] = {
            "success": True,
            "swap_id": record.swap_id,
            "status": record.status,
            "source_chain": record.source_chain,
            "target_chain": record.target_chain,
            "source_token": record.source_token,
            "target_token": record.target_token,
            "source_amount": record.source_amount,
            "target_amount": record.target_amount,
            "recipient_address": record.recipient_address,
            "source_tx_hash": record.source_tx_hash,
            "target_tx_hash": record.target_tx_hash,
            "error_message": record.error_message,
        }
        if looks_like_tx_hash(record.source_tx_hash):
            receipt["source_explorer_url"] = get_explorer_link(record.source_chain, record.source_tx_hash)
        if record.target_tx_hash:
            receipt["target_explorer_url"] = get_explorer_link(record.target_chain, record.target_tx_hash)
            receipt["target_link_text"] = get_transaction_text_link(record.target_chain, record.target_tx_hash)
        return receipt
