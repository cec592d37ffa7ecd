"""
Atomic Swap Relay Job
Settles pending cross-chain swaps: confirms the user's deposit on the source
chain, then pays the recipient from the escrow wallet on the target chain,
exactly once per swap.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from models import SwapStatus
from services.confirmation_oracle import ConfirmationOracle
from services.dispatch_matrix import DispatchMatrix, PayoutSender
from services.preflight_checker import PreflightChecker
from services.relay_errors import (
    InsufficientEscrowBalanceError, RelayError, UnsupportedSwapPairError
)

logger = logging.getLogger(__name__)

COMPLETED = "completed"
FAILED = "failed"
PENDING = "pending"


class AtomicSwapRelay:
    """One relay cycle over the ledger's pending swaps"""

    def __init__(
        self,
        ledger,
        registry,
        escrow,
        oracle: Optional[ConfirmationOracle] = None,
        preflight: Optional[PreflightChecker] = None,
        matrix: Optional[DispatchMatrix] = None,
    ):
        self.ledger = ledger
        self.registry = registry
        self.escrow = escrow
        self.oracle = oracle or ConfirmationOracle(registry)
        self.preflight = preflight or PreflightChecker(registry, escrow)
        self.matrix = matrix or DispatchMatrix.default(PayoutSender(registry, escrow, self.preflight), registry)
        self._lock = asyncio.Lock()
        self.last_run_at: Optional[datetime] = None

    async def process_pending_swaps(self) -> Dict[str, Any]:
        """
        Main job function, called by the scheduler every poll interval.
        Never raises; a cycle started while another runs is skipped.
        """
        stats: Dict[str, Any] = {
            "processed": 0,
            "completed": 0,
            "failed": 0,
            "pending": 0,
            "errors": 0,
            "skipped": False,
        }

        if self._lock.locked():
            logger.info("⏭️ SWAP_RELAY: Previous cycle still running, skipping this tick")
            stats["skipped"] = True
            return stats

        async with self._lock:
            start_time = datetime.now(timezone.utc)
            try:
                pending_swaps = await self.ledger.list_pending()
            except Exception as e:
                logger.error(f"❌ SWAP_RELAY: Could not load pending swaps: {e}")
                stats["errors"] += 1
                return stats

            if pending_swaps:
                logger.info(f"🔄 SWAP_RELAY: Processing {len(pending_swaps)} pending swaps")

            # Sequential: payouts share the escrow nonce and balance
            for record in pending_swaps:
                stats["processed"] += 1
                try:
                    outcome = await self._process_swap(record)
                except Exception as e:
                    logger.error(f"❌ SWAP_RELAY: Unexpected error processing swap {record.swap_id}: {e}", exc_info=True)
                    stats["errors"] += 1
                    outcome = PENDING
                stats[outcome] += 1

            self.last_run_at = datetime.now(timezone.utc)
            if pending_swaps:
                elapsed = (self.last_run_at - start_time).total_seconds()
                logger.info(
                    f"✅ SWAP_RELAY: Cycle done - Completed: {stats['completed']}, "
                    f"Failed: {stats['failed']}, Pending: {stats['pending']}, "
                    f"Errors: {stats['errors']}, Time: {elapsed:.2f}s"
                )
            return stats

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    async def wait_idle(self):
        """Wait for a running cycle to finish; payouts are never cut off mid-flight"""
        async with self._lock:
            pass

    async def _process_swap(self, record) -> str:
        swap_id = record.swap_id

        try:
            entry = self.matrix.resolve(record.source_chain, record.target_chain)
        except UnsupportedSwapPairError as e:
            logger.error(f"🚫 SWAP_RELAY: Swap {swap_id} failed: {e}")
            await self.ledger.update_status(swap_id, SwapStatus.FAILED, error_note=str(e))
            return FAILED

        # Unknown source chains never confirm, whatever the matrix routes
        if not await self.oracle.is_source_confirmed(record):
            return PENDING

        try:
            recovered, reuse_nonce = await self._check_previous_payout(record)
            if recovered:
                return COMPLETED

            amount = record.target_amount_decimal
            check = await self.preflight.check_payout_feasible(entry.payout_chain, amount)
            if not check.ok:
                await self._note_pending(swap_id, check.message)
                return PENDING

            async def on_signed(tx_hash: str, nonce: int):
                await self.ledger.record_payout_attempt(
                    swap_id=swap_id,
                    chain=entry.payout_chain,
                    token_address=entry.payout_token.address,
                    recipient_address=record.recipient_address,
                    amount=amount,
                    nonce=nonce,
                    tx_hash=tx_hash,
                )

            tx_hash = await entry.send(record.recipient_address, amount, nonce=reuse_nonce, on_signed=on_signed)
        except InsufficientEscrowBalanceError as e:
            logger.warning(f"⚠️ SWAP_RELAY: Swap {swap_id} waiting for escrow funds: {e}")
            await self._note_pending(swap_id, str(e))
            return PENDING
        except RelayError as e:
            logger.warning(f"⚠️ SWAP_RELAY: Swap {swap_id} will be retried: {e}")
            await self._note_pending(swap_id, str(e))
            return PENDING

        await self.ledger.mark_payout_broadcast(swap_id)
        await self.ledger.update_status(swap_id, SwapStatus.COMPLETED, target_tx_hash=tx_hash)
        logger.info(
            f"🎉 SWAP_RELAY: Swap {swap_id} completed: {record.target_amount} {entry.payout_token.symbol} "
            f"to {record.recipient_address} on {entry.payout_chain} (tx {tx_hash})"
        )
        return COMPLETED

    async def _check_previous_payout(self, record):
        """
        Returns (recovered, nonce_to_reuse).

        A payout signed in an earlier cycle either reached the chain, in which
        case the swap is completed with that hash, or it did not, in which case
        it is discarded and its nonce reused so at most one of the two can mine.
        """
        attempt = await self.ledger.get_payout_attempt(record.swap_id)
        if attempt is None:
            return False, None

        client = self.registry.get(attempt.chain)
        if await client.transaction_exists(attempt.tx_hash):
            logger.warning(
                f"🔁 SWAP_RELAY: Payout {attempt.tx_hash} for swap {record.swap_id} already on chain, "
                f"completing without resending"
            )
            await self.ledger.mark_payout_broadcast(record.swap_id)
            await self.ledger.update_status(
                record.swap_id,
                SwapStatus.COMPLETED,
                error_note="Recovered previously broadcast payout",
                target_tx_hash=attempt.tx_hash,
            )
            return True, None

        pending_nonce = await client.get_pending_nonce(self.escrow.address)
        reuse_nonce = attempt.nonce if attempt.nonce >= pending_nonce else None
        await self.ledger.discard_payout_attempt(record.swap_id)
        logger.warning(
            f"🔁 SWAP_RELAY: Payout {attempt.tx_hash} for swap {record.swap_id} never reached the chain, "
            f"resending (nonce {reuse_nonce if reuse_nonce is not None else 'fresh'})"
        )
        return False, reuse_nonce

    async def _note_pending(self, swap_id: str, note: str):
        try:
            await self.ledger.update_status(swap_id, SwapStatus.PENDING, error_note=note)
        except Exception as e:
            logger.error(f"❌ SWAP_RELAY: Could not record note for swap {swap_id}: {e}")

    async def run_startup_diagnostics(self) -> Dict[str, Any]:
        """
        Verify the escrow address and report balances on every chain.
        Raises EscrowAddressMismatchError only when the mismatch is configured fatal.
        """
        logger.info(f"🔍 SWAP_RELAY: Escrow wallet {self.escrow.address}")
        address_verified = self.escrow.verify_expected_address()

        warnings = []
        balances: Dict[str, Optional[Dict[str, Any]]] = {}
        snapshots = await self.preflight.snapshot_all()
        for chain, snapshot in snapshots.items():
            if snapshot is None:
                warnings.append(f"{chain}: balance unavailable")
                balances[chain] = None
                continue

            balances[chain] = snapshot.to_dict()
            reserve = self.registry.profile(chain).min_gas_reserve
            logger.info(
                f"💰 SWAP_RELAY: {chain}: {snapshot.native_gas} {snapshot.native_symbol}, "
                f"{snapshot.payout_token} {snapshot.token_symbol}"
            )
            if snapshot.native_gas <= reserve:
                warnings.append(f"{chain}: low {snapshot.native_symbol} for gas ({snapshot.native_gas})")
            if snapshot.payout_token == 0:
                warnings.append(f"{chain}: no {snapshot.token_symbol} available for payouts")

        for warning in warnings:
            logger.warning(f"⚠️ SWAP_RELAY: Escrow balance warning - {warning}")

        return {
            "escrow_address": self.escrow.address,
            "address_verified": address_verified,
            "balances": balances,
            "warnings": warnings,
        }


__all__ = ["AtomicSwapRelay"]
