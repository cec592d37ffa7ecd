"""
Shared fixtures for the swap relay test suite

Key Components:
1. SQLite (aiosqlite) swap ledger, one fresh database file per test
2. In-process fake chain clients with scriptable balances, confirmations and broadcasts
3. Deterministic escrow key with a spy on transaction signing
4. Helpers for seeding swaps and building the relay
"""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

import pytest
import pytest_asyncio
from eth_abi import decode
from web3 import Web3

from database import build_async_engine, build_session_factory, create_tables
from jobs.atomic_swap_relay import AtomicSwapRelay
from services.chain_clients import ChainClientRegistry, build_default_profiles
from services.escrow_account import EscrowAccount
from services.relay_errors import ChainQueryError
from services.swap_ledger import SwapLedger
from utils.decimal_precision import TokenAmount

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Well-known throwaway key from the web3.py documentation; never funded
TEST_ESCROW_PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"

RECIPIENT_ADDRESS = "0x1111111111111111111111111111111111111111"
SENDER_ADDRESS = "0x2222222222222222222222222222222222222222"


def real_tx_hash(seed: int) -> str:
    """Deterministic, well-formed 32-byte transaction hash"""
    return "0x" + format(seed, "064x")


class FakeChainClient:
    """In-process stand-in for ChainClient with scriptable chain state"""

    def __init__(self, profile):
        self.profile = profile
        self.name = profile.name
        self.native_balance = 0
        self.token_balance = 0
        self.confirmations: Dict[str, int] = {}
        self.known_transactions = set()
        self.sent_transactions: List[Dict[str, Any]] = []
        self.nonce = 0
        self.gas_price = 1_000_000_000
        self.estimate_result = 100_000
        self.estimate_error: Optional[Exception] = None
        self.query_error: Optional[Exception] = None
        self.fail_broadcast = False
        self.confirmation_queries = 0

    def fund(self, native: str = "0", token: str = "0"):
        self.native_balance = TokenAmount.to_base_units(Decimal(native), self.profile.native_decimals)
        self.token_balance = TokenAmount.to_base_units(Decimal(token), self.profile.payout_token.decimals)

    def _maybe_fail(self, operation: str):
        if self.query_error is not None:
            raise ChainQueryError(self.name, operation, self.query_error)

    async def get_native_balance(self, address: str) -> int:
        self._maybe_fail("get_native_balance")
        return self.native_balance

    async def get_token_balance(self, token_address: str, owner: str) -> int:
        self._maybe_fail("balanceOf")
        return self.token_balance

    async def get_allowance(self, token_address: str, owner: str, spender: str) -> int:
        self._maybe_fail("allowance")
        return 0

    async def get_transaction_confirmations(self, tx_hash: str) -> int:
        self.confirmation_queries += 1
        self._maybe_fail("get_transaction_receipt")
        return self.confirmations.get(tx_hash, 0)

    async def transaction_exists(self, tx_hash: str) -> bool:
        self._maybe_fail("get_transaction")
        return tx_hash in self.known_transactions

    async def estimate_gas(self, tx: Dict[str, Any]) -> int:
        if self.estimate_error is not None:
            raise ChainQueryError(self.name, "estimate_gas", self.estimate_error)
        return self.estimate_result

    async def get_pending_nonce(self, address: str) -> int:
        self._maybe_fail("get_transaction_count")
        return self.nonce

    async def get_gas_price(self) -> int:
        return self.gas_price

    async def send_raw_transaction(self, raw_transaction: bytes) -> str:
        if self.fail_broadcast:
            raise ConnectionError("node unavailable")
        tx_hash = Web3.to_hex(Web3.keccak(raw_transaction))
        self.known_transactions.add(tx_hash)
        self.sent_transactions.append({"raw": raw_transaction, "hash": tx_hash})
        self.nonce += 1
        return tx_hash


def decode_transfer(tx: Dict[str, Any]):
    """(recipient, amount_units) from an ERC-20 transfer/approve tx dict"""
    data = bytes.fromhex(tx["data"][2:])
    recipient, amount_units = decode(["address", "uint256"], data[4:])
    return Web3.to_checksum_address(recipient), amount_units


@pytest.fixture
def chain_profiles():
    return build_default_profiles()


@pytest.fixture
def fake_clients(chain_profiles):
    return {name: FakeChainClient(profile) for name, profile in chain_profiles.items()}


@pytest.fixture
def registry(fake_clients):
    return ChainClientRegistry(fake_clients.values())


@pytest.fixture
def escrow():
    """Escrow account whose sign_transaction records every tx dict it signs"""
    account = EscrowAccount(TEST_ESCROW_PRIVATE_KEY)
    account.sign_transaction = MagicMock(wraps=account.sign_transaction)
    return account


@pytest_asyncio.fixture(scope="function")
async def ledger(tmp_path):
    """Swap ledger on a fresh SQLite database"""
    engine = build_async_engine(f"sqlite:///{tmp_path}/ledger.db")
    assert await create_tables(engine)
    yield SwapLedger(build_session_factory(engine))
    await engine.dispose()


@pytest.fixture
def relay(ledger, registry, escrow):
    return AtomicSwapRelay(ledger, registry, escrow)


@pytest.fixture
def seed_swap(ledger):
    """Factory inserting a pending swap record"""
    counter = {"n": 0}

    async def _seed(
        source_chain: str = "base",
        target_chain: str = "arbitrum",
        source_amount: str = "100",
        target_amount: str = "100.0",
        source_tx_hash: Optional[str] = None,
        recipient_address: str = RECIPIENT_ADDRESS,
        swap_id: Optional[str] = None,
    ):
        counter["n"] += 1
        return await ledger.record_swap(
            swap_id=swap_id or f"swap-test-{counter['n']}",
            source_chain=source_chain,
            target_chain=target_chain,
            source_amount=source_amount,
            target_amount=target_amount,
            recipient_address=recipient_address,
            source_tx_hash=source_tx_hash if source_tx_hash is not None else real_tx_hash(counter["n"]),
            sender_address=SENDER_ADDRESS,
        )

    return _seed


def pytest_configure(config):
    """Configure pytest with custom marks"""
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "unit: Unit tests")
