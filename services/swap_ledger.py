"""
Swap Ledger - durable store of swap records, their status history and the
payout attempts that guard against paying a swap twice.

Status changes go through update_status only. Completed and failed records
are terminal: a later update to a different outcome is refused and logged.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional, Union

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import async_sessionmaker

from database import async_managed_session
from models import (
    SwapRecord, SwapStatusHistory, PayoutAttempt, SwapStatus, PayoutAttemptStatus, TERMINAL_SWAP_STATUSES
)
from utils.decimal_precision import TokenAmount

logger = logging.getLogger(__name__)

_VALID_STATUSES = {status.value for status in SwapStatus}


def _status_value(status: Union[SwapStatus, str]) -> str:
    value = status.value if isinstance(status, SwapStatus) else str(status).lower()
    if value not in _VALID_STATUSES:
        raise ValueError(f"Invalid swap status: {status}")
    return value


def _amount_text(amount: Union[str, int, Decimal], context: str) -> str:
    return format(TokenAmount.to_decimal(amount, context), "f")


class SwapLedger:
    """Async SQLAlchemy-backed ledger of cross-chain swaps"""

    def __init__(self, session_factory: Optional[async_sessionmaker] = None):
        self.session_factory = session_factory

    def _session(self):
        return async_managed_session(self.session_factory)

    # ==================== SWAP RECORDS ====================

    async def record_swap(
        self,
        swap_id: str,
        source_chain: str,
        target_chain: str,
        source_amount: Union[str, Decimal],
        target_amount: Union[str, Decimal],
        recipient_address: str,
        source_tx_hash: Optional[str] = None,
        sender_address: Optional[str] = None,
        source_token: Optional[str] = None,
        target_token: Optional[str] = None,
    ) -> SwapRecord:
        """Create a pending swap record"""
        if source_chain == target_chain:
            raise ValueError(f"Swap {swap_id} source and target chain must differ ({source_chain})")

        async with self._session() as session:
            record = SwapRecord(
                swap_id=swap_id,
                source_chain=source_chain,
                target_chain=target_chain,
                source_token=source_token,
                target_token=target_token,
                source_amount=_amount_text(source_amount, "source_amount"),
                target_amount=_amount_text(target_amount, "target_amount"),
                sender_address=sender_address,
                recipient_address=recipient_address,
                source_tx_hash=source_tx_hash,
                status=SwapStatus.PENDING.value,
                created_at=datetime.now(timezone.utc),
            )
            session.add(record)
            session.add(SwapStatusHistory(
                swap_id=swap_id,
                from_status=None,
                to_status=SwapStatus.PENDING.value,
                note="Swap created",
                tx_hash=source_tx_hash,
            ))
            await session.flush()

        logger.info(f"📝 SWAP_LEDGER: Recorded swap {swap_id} ({source_chain} -> {target_chain})")
        return record

    async def list_pending(self) -> List[SwapRecord]:
        """Pending swaps, oldest first"""
        async with self._session() as session:
            result = await session.execute(
                select(SwapRecord)
                .where(SwapRecord.status == SwapStatus.PENDING.value)
                .order_by(SwapRecord.created_at, SwapRecord.id)
            )
            return list(result.scalars().all())

    async def get_by_id(self, swap_id: str) -> Optional[SwapRecord]:
        async with self._session() as session:
            result = await session.execute(select(SwapRecord).where(SwapRecord.swap_id == swap_id))
            return result.scalar_one_or_none()

    async def get_most_recent_swap(self) -> Optional[SwapRecord]:
        async with self._session() as session:
            result = await session.execute(
                select(SwapRecord).order_by(SwapRecord.created_at.desc(), SwapRecord.id.desc()).limit(1)
            )
            return result.scalar_one_or_none()

    async def update_status(
        self,
        swap_id: str,
        new_status: Union[SwapStatus, str],
        error_note: Optional[str] = None,
        target_tx_hash: Optional[str] = None,
    ) -> Optional[SwapRecord]:
        """
        Apply a status change and append a history row.

        Returns the stored record (unchanged when the update is refused or a
        no-op), or None when the swap id is unknown.
        """
        new_value = _status_value(new_status)
        if new_value == SwapStatus.COMPLETED.value and not target_tx_hash:
            raise ValueError(f"Completing swap {swap_id} requires a target transaction hash")

        async with self._session() as session:
            result = await session.execute(
                select(SwapRecord).where(SwapRecord.swap_id == swap_id).with_for_update()
            )
            record = result.scalar_one_or_none()
            if record is None:
                logger.warning(f"⚠️ SWAP_LEDGER: Status update for unknown swap {swap_id}")
                return None

            current = record.status
            now = datetime.now(timezone.utc)

            if current in TERMINAL_SWAP_STATUSES:
                same_outcome = new_value == current and (
                    target_tx_hash is None or target_tx_hash == record.target_tx_hash
                )
                if same_outcome:
                    logger.debug(f"SWAP_LEDGER: Swap {swap_id} already {current}, nothing to do")
                else:
                    logger.warning(
                        f"🚫 SWAP_LEDGER: Refused update of terminal swap {swap_id}: "
                        f"{current} -> {new_value} (tx {target_tx_hash})"
                    )
                return record

            if new_value == current:
                # Still pending; only the note moves
                if error_note and error_note != record.error_message:
                    record.error_message = error_note
                    record.updated_at = now
                return record

            record.status = new_value
            record.updated_at = now
            record.error_message = error_note
            if new_value == SwapStatus.COMPLETED.value:
                record.target_tx_hash = target_tx_hash
                record.completed_at = now

            session.add(SwapStatusHistory(
                swap_id=swap_id,
                from_status=current,
                to_status=new_value,
                note=error_note,
                tx_hash=target_tx_hash,
            ))

        logger.info(f"🔄 SWAP_LEDGER: Swap {swap_id} {current} -> {new_value}")
        return record

    async def backfill_source_tx_hash(self, swap_id: str, tx_hash: str) -> bool:
        """Replace a provisional source hash with the real deposit hash"""
        async with self._session() as session:
            result = await session.execute(
                select(SwapRecord).where(SwapRecord.swap_id == swap_id).with_for_update()
            )
            record = result.scalar_one_or_none()
            if record is None:
                logger.warning(f"⚠️ SWAP_LEDGER: Source hash backfill for unknown swap {swap_id}")
                return False
            if record.is_terminal:
                logger.warning(f"🚫 SWAP_LEDGER: Refused source hash backfill for {record.status} swap {swap_id}")
                return False

            record.source_tx_hash = tx_hash
            record.updated_at = datetime.now(timezone.utc)

        logger.info(f"🔗 SWAP_LEDGER: Swap {swap_id} source tx set to {tx_hash}")
        return True

    async def get_status_history(self, swap_id: str) -> List[SwapStatusHistory]:
        async with self._session() as session:
            result = await session.execute(
                select(SwapStatusHistory)
                .where(SwapStatusHistory.swap_id == swap_id)
                .order_by(SwapStatusHistory.id)
            )
            return list(result.scalars().all())

    # ==================== PAYOUT ATTEMPTS ====================

    async def get_payout_attempt(self, swap_id: str) -> Optional[PayoutAttempt]:
        async with self._session() as session:
            result = await session.execute(select(PayoutAttempt).where(PayoutAttempt.swap_id == swap_id))
            return result.scalar_one_or_none()

    async def record_payout_attempt(
        self,
        swap_id: str,
        chain: str,
        token_address: str,
        recipient_address: str,
        amount: Union[str, Decimal],
        nonce: int,
        tx_hash: str,
    ) -> PayoutAttempt:
        """Persist a signed payout before it is broadcast"""
        async with self._session() as session:
            result = await session.execute(
                select(PayoutAttempt).where(PayoutAttempt.swap_id == swap_id).with_for_update()
            )
            attempt = result.scalar_one_or_none()
            if attempt is None:
                attempt = PayoutAttempt(swap_id=swap_id, created_at=datetime.now(timezone.utc))
                session.add(attempt)
            else:
                attempt.updated_at = datetime.now(timezone.utc)

            attempt.chain = chain
            attempt.token_address = token_address
            attempt.recipient_address = recipient_address
            attempt.amount = _amount_text(amount, "payout_amount")
            attempt.nonce = nonce
            attempt.tx_hash = tx_hash
            attempt.status = PayoutAttemptStatus.SIGNED.value
            await session.flush()

        logger.info(f"🧾 SWAP_LEDGER: Payout for {swap_id} signed as {tx_hash} (nonce {nonce} on {chain})")
        return attempt

    async def mark_payout_broadcast(self, swap_id: str) -> bool:
        async with self._session() as session:
            result = await session.execute(
                select(PayoutAttempt).where(PayoutAttempt.swap_id == swap_id).with_for_update()
            )
            attempt = result.scalar_one_or_none()
            if attempt is None:
                return False
            attempt.status = PayoutAttemptStatus.BROADCAST.value
            attempt.updated_at = datetime.now(timezone.utc)
        return True

    async def discard_payout_attempt(self, swap_id: str) -> bool:
        """Forget a payout that never reached the chain"""
        async with self._session() as session:
            result = await session.execute(delete(PayoutAttempt).where(PayoutAttempt.swap_id == swap_id))
            removed = result.rowcount > 0

        if removed:
            logger.info(f"🗑️ SWAP_LEDGER: Discarded unbroadcast payout attempt for {swap_id}")
        return removed
