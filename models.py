"""
Swap Relay Database Schema
==========================

Durable audit trail for cross-chain swaps settled by the escrow relay:
- swap_records: one row per user-initiated swap (source of truth for
  "what has been promised" and "what has been paid")
- swap_status_history: every effective status change
- payout_attempts: signed payout transactions, keyed by swap, written before
  broadcast so a re-observed swap is never paid twice

Records are never deleted.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from sqlalchemy import (
    Integer, String, DateTime, Text, UniqueConstraint, Index, CheckConstraint, func
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


# ============================================================================
# ENUMS - Business Logic Constants
# ============================================================================

class SwapStatus(Enum):
    """Swap lifecycle states"""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_SWAP_STATUSES = (SwapStatus.COMPLETED.value, SwapStatus.FAILED.value)


class PayoutAttemptStatus(Enum):
    """Payout transaction states as seen by the relay"""
    SIGNED = "signed"        # Signed and persisted, broadcast outcome unknown
    BROADCAST = "broadcast"  # Node accepted the raw transaction


# ============================================================================
# MODELS
# ============================================================================

class SwapRecord(Base):
    """Cross-chain swap request settled from the escrow wallet"""
    __tablename__ = 'swap_records'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    swap_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)

    # Legs
    source_chain: Mapped[str] = mapped_column(String(32), nullable=False)
    target_chain: Mapped[str] = mapped_column(String(32), nullable=False)
    source_token: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    target_token: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)

    # Decimal strings in token units; target_amount is already net of the swap fee
    source_amount: Mapped[str] = mapped_column(String(80), nullable=False)
    target_amount: Mapped[str] = mapped_column(String(80), nullable=False)

    sender_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    recipient_address: Mapped[str] = mapped_column(String(64), nullable=False)

    # May hold a provisional placeholder until the intake flow backfills the real hash
    source_tx_hash: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    target_tx_hash: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    status: Mapped[str] = mapped_column(String(20), default=SwapStatus.PENDING.value, nullable=False)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            f"status IN ('{SwapStatus.PENDING.value}', '{SwapStatus.COMPLETED.value}', '{SwapStatus.FAILED.value}')",
            name='ck_swap_status_valid'
        ),
        CheckConstraint('source_chain <> target_chain', name='ck_swap_chains_distinct'),
        Index('ix_swap_records_status_created', 'status', 'created_at'),
    )

    @property
    def target_amount_decimal(self) -> Decimal:
        return Decimal(self.target_amount)

    @property
    def source_amount_decimal(self) -> Decimal:
        return Decimal(self.source_amount)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_SWAP_STATUSES

    def __repr__(self):
        return f"<SwapRecord({self.swap_id}, {self.source_chain}->{self.target_chain}, {self.status})>"


class SwapStatusHistory(Base):
    """Audit trail for all status changes of a swap"""
    __tablename__ = "swap_status_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    swap_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    from_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)  # null for initial
    to_status: Mapped[str] = mapped_column(String(20), nullable=False)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    tx_hash: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    changed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index('ix_swap_status_history_changed_at', 'changed_at'),
    )

    def __repr__(self):
        return f"<SwapStatusHistory(swap_id={self.swap_id}, {self.from_status} -> {self.to_status})>"


class PayoutAttempt(Base):
    """Signed escrow payout for a swap; at most one live attempt per swap"""
    __tablename__ = "payout_attempts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    swap_id: Mapped[str] = mapped_column(String(64), nullable=False)

    chain: Mapped[str] = mapped_column(String(32), nullable=False)
    token_address: Mapped[str] = mapped_column(String(64), nullable=False)
    recipient_address: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[str] = mapped_column(String(80), nullable=False)
    nonce: Mapped[int] = mapped_column(Integer, nullable=False)
    tx_hash: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=PayoutAttemptStatus.SIGNED.value, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint('swap_id', name='uq_payout_attempts_swap_id'),
        Index('ix_payout_attempts_tx_hash', 'tx_hash'),
    )

    def __repr__(self):
        return f"<PayoutAttempt(swap_id={self.swap_id}, chain={self.chain}, nonce={self.nonce}, {self.status})>"
