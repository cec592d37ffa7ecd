"""
Confirmation Oracle - decides whether a swap's source deposit is final enough
to act on. Finality is approximated by a confirmation count threshold.
"""

import logging
import re
from typing import Optional

from config import Config
from services.relay_errors import RelayError
from utils.constants import PLACEHOLDER_HASH_MARKERS

logger = logging.getLogger(__name__)

_TX_HASH_PATTERN = re.compile(r"^0x[0-9a-fA-F]{64}$")


def looks_like_tx_hash(value: Optional[str]) -> bool:
    """True for a real 32-byte 0x transaction hash, False for placeholders"""
    if not value:
        return False
    lowered = value.lower()
    if any(marker in lowered for marker in PLACEHOLDER_HASH_MARKERS):
        return False
    return bool(_TX_HASH_PATTERN.match(value))


class ConfirmationOracle:
    """Checks source-chain deposits against the configured confirmation depth"""

    def __init__(self, registry, confirmation_depth: Optional[int] = None):
        self.registry = registry
        self.confirmation_depth = confirmation_depth or Config.SOURCE_CONFIRMATION_DEPTH

    async def is_source_confirmed(self, record) -> bool:
        swap_id = record.swap_id
        tx_hash = record.source_tx_hash

        if not looks_like_tx_hash(tx_hash):
            logger.info(f"⏳ CONFIRMATION: Swap {swap_id} has no real source hash yet ({tx_hash!r})")
            return False

        try:
            client = self.registry.get(record.source_chain)
            confirmations = await client.get_transaction_confirmations(tx_hash)
        except RelayError as e:
            logger.warning(f"⚠️ CONFIRMATION: Could not verify {tx_hash} for swap {swap_id}: {e}")
            return False
        except Exception as e:
            logger.error(f"❌ CONFIRMATION: Unexpected error verifying swap {swap_id} on {record.source_chain}: {e}")
            return False

        if confirmations >= self.confirmation_depth:
            logger.info(
                f"✅ CONFIRMATION: Swap {swap_id} source tx confirmed "
                f"({confirmations}/{self.confirmation_depth} on {record.source_chain})"
            )
            return True

        logger.info(
            f"⏳ CONFIRMATION: Swap {swap_id} waiting for confirmations "
            f"({confirmations}/{self.confirmation_depth} on {record.source_chain})"
        )
        return False
