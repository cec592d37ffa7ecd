"""
Preflight Checker

Fail-closed balance validation run before every escrow payout:
- payout token balance must cover the amount
- native gas balance must exceed the chain's minimum reserve
Both balances come from one snapshot so they describe the same moment.
"""

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Union

from services.escrow_account import EscrowBalanceSnapshot
from services.relay_errors import RelayError
from utils.decimal_precision import TokenAmount

logger = logging.getLogger(__name__)


class PreflightStatus(Enum):
    """Outcome of a payout feasibility check"""
    OK = "ok"
    INSUFFICIENT_PAYOUT_TOKEN = "insufficient_payout_token"
    INSUFFICIENT_GAS = "insufficient_gas"


@dataclass
class PreflightResult:
    status: PreflightStatus
    chain: str
    required_amount: Decimal
    snapshot: Optional[EscrowBalanceSnapshot] = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.status == PreflightStatus.OK


class PreflightChecker:
    """Validates that the escrow can fund a payout on a chain"""

    def __init__(self, registry, escrow):
        self.registry = registry
        self.escrow = escrow

    async def check_payout_feasible(self, chain: str, payout_token_amount: Union[str, Decimal]) -> PreflightResult:
        """
        Snapshot escrow balances on `chain` and classify the payout.
        Balance read failures propagate as ChainQueryError.
        """
        amount = TokenAmount.to_decimal(payout_token_amount, "preflight")
        client = self.registry.get(chain)
        reserve = client.profile.min_gas_reserve

        snapshot = await self.escrow.get_balance_snapshot(client)
        logger.info(
            f"💰 PREFLIGHT: {chain} escrow has {snapshot.payout_token} {snapshot.token_symbol}, "
            f"{snapshot.native_gas} {snapshot.native_symbol} (need {amount} {snapshot.token_symbol})"
        )

        if snapshot.payout_token < amount:
            message = (
                f"Insufficient {snapshot.token_symbol} on {chain}: "
                f"required {amount}, available {snapshot.payout_token}"
            )
            logger.warning(f"⚠️ PREFLIGHT: {message}")
            return PreflightResult(PreflightStatus.INSUFFICIENT_PAYOUT_TOKEN, chain, amount, snapshot, message)

        if not snapshot.native_gas > reserve:
            message = (
                f"Insufficient {snapshot.native_symbol} for gas on {chain}: "
                f"balance {snapshot.native_gas}, reserve {reserve}"
            )
            logger.warning(f"⚠️ PREFLIGHT: {message}")
            return PreflightResult(PreflightStatus.INSUFFICIENT_GAS, chain, amount, snapshot, message)

        return PreflightResult(PreflightStatus.OK, chain, amount, snapshot)

    async def snapshot_all(self) -> Dict[str, Optional[EscrowBalanceSnapshot]]:
        """Balance snapshot for every registered chain; None where the read failed"""
        chains: List[str] = self.registry.chains
        results = await asyncio.gather(
            *(self.escrow.get_balance_snapshot(self.registry.get(chain)) for chain in chains),
            return_exceptions=True,
        )

        snapshots: Dict[str, Optional[EscrowBalanceSnapshot]] = {}
        for chain, result in zip(chains, results):
            if isinstance(result, RelayError):
                logger.error(f"❌ PREFLIGHT: Balance snapshot failed on {chain}: {result}")
                snapshots[chain] = None
            elif isinstance(result, Exception):
                logger.error(f"❌ PREFLIGHT: Unexpected error reading balances on {chain}: {result}", exc_info=result)
                snapshots[chain] = None
            elif isinstance(result, BaseException):
                raise result
            else:
                snapshots[chain] = result
        return snapshots
