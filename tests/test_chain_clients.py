"""
Chain Client Tests
ChainClient behaviour against a mocked AsyncWeb3 and the default profile table
"""

import pytest
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

from web3 import AsyncWeb3
from web3.exceptions import TransactionNotFound

from config import Config
from services.chain_clients import ChainClient, ChainClientRegistry, build_default_profiles, build_default_registry
from services.relay_errors import ChainQueryError, UnknownChainError
from conftest import RECIPIENT_ADDRESS, real_tx_hash


async def _value(value):
    return value


@pytest.fixture
def web3_mock():
    mock = MagicMock()
    mock.eth = MagicMock()
    return mock


@pytest.fixture
def base_client(chain_profiles, web3_mock):
    return ChainClient(chain_profiles["base"], web3=web3_mock)


class TestDefaultProfiles:

    def test_payout_tokens_and_gas_policy(self):
        profiles = build_default_profiles()

        assert set(profiles) == {"base", "arbitrum", "mantle", "zksync"}
        assert profiles["base"].payout_token.symbol == "XOC"
        assert profiles["base"].payout_token.decimals == 18
        assert profiles["arbitrum"].payout_token.decimals == 6
        assert profiles["zksync"].fixed_gas_limit == 300_000
        assert profiles["mantle"].fixed_gas_limit is None
        assert profiles["mantle"].gas_buffer_multiplier == Decimal("1.5")
        assert profiles["mantle"].fallback_gas_limit == 150_000_000
        assert profiles["mantle"].native_symbol == "MNT"
        assert all(p.min_gas_reserve == Config.ESCROW_MIN_GAS_RESERVE for p in profiles.values())

    def test_rpc_override(self):
        with patch.object(Config, "MANTLE_RPC_URL", "https://mantle.example/rpc"):
            profiles = build_default_profiles()

        assert profiles["mantle"].rpc_url == "https://mantle.example/rpc"

    def test_default_registry_uses_async_web3(self):
        registry = build_default_registry()

        assert isinstance(registry.get("arbitrum").web3, AsyncWeb3)
        assert registry.chains == ["base", "arbitrum", "mantle", "zksync"]


class TestRegistry:

    def test_unknown_chain(self, registry):
        with pytest.raises(UnknownChainError):
            registry.get("solana")
        assert not registry.has("solana")
        assert registry.profile("zksync").chain_id == 324

    def test_registry_accepts_any_clients(self, chain_profiles, web3_mock):
        registry = ChainClientRegistry([ChainClient(chain_profiles["base"], web3=web3_mock)])

        assert registry.chains == ["base"]


class TestChainClient:

    @pytest.mark.asyncio
    async def test_native_balance(self, base_client, web3_mock):
        web3_mock.eth.get_balance = AsyncMock(return_value=10 ** 18)

        assert await base_client.get_native_balance(RECIPIENT_ADDRESS) == 10 ** 18

    @pytest.mark.asyncio
    async def test_token_balance(self, base_client, web3_mock):
        contract = web3_mock.eth.contract.return_value
        contract.functions.balanceOf.return_value.call = AsyncMock(return_value=42)

        assert await base_client.get_token_balance(base_client.profile.payout_token.address, RECIPIENT_ADDRESS) == 42

    @pytest.mark.asyncio
    async def test_rpc_failure_wrapped(self, base_client, web3_mock):
        web3_mock.eth.get_balance = AsyncMock(side_effect=TimeoutError("timed out"))

        with pytest.raises(ChainQueryError) as exc_info:
            await base_client.get_native_balance(RECIPIENT_ADDRESS)
        assert exc_info.value.chain == "base"

    @pytest.mark.asyncio
    async def test_confirmations_counted_from_receipt_block(self, base_client, web3_mock):
        web3_mock.eth.get_transaction_receipt = AsyncMock(return_value={"blockNumber": 100})
        web3_mock.eth.block_number = _value(104)

        assert await base_client.get_transaction_confirmations(real_tx_hash(1)) == 5

    @pytest.mark.asyncio
    async def test_missing_receipt_means_zero(self, base_client, web3_mock):
        web3_mock.eth.get_transaction_receipt = AsyncMock(side_effect=TransactionNotFound("not found"))

        assert await base_client.get_transaction_confirmations(real_tx_hash(1)) == 0

    @pytest.mark.asyncio
    async def test_transaction_exists(self, base_client, web3_mock):
        web3_mock.eth.get_transaction = AsyncMock(return_value={"hash": real_tx_hash(1)})
        assert await base_client.transaction_exists(real_tx_hash(1)) is True

        web3_mock.eth.get_transaction = AsyncMock(side_effect=TransactionNotFound("not found"))
        assert await base_client.transaction_exists(real_tx_hash(1)) is False

    @pytest.mark.asyncio
    async def test_pending_nonce(self, base_client, web3_mock):
        web3_mock.eth.get_transaction_count = AsyncMock(return_value=17)

        assert await base_client.get_pending_nonce(RECIPIENT_ADDRESS) == 17
        assert web3_mock.eth.get_transaction_count.call_args.args[1] == "pending"

    @pytest.mark.asyncio
    async def test_send_raw_transaction_returns_hex(self, base_client, web3_mock):
        web3_mock.eth.send_raw_transaction = AsyncMock(return_value=bytes.fromhex("ab" * 32))

        assert await base_client.send_raw_transaction(b"\x01") == "0x" + "ab" * 32
