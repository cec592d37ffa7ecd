"""
Chain Client Registry

One connection profile and one web3 client per supported network. Clients
expose only the primitives the relay needs: native/token balance reads,
confirmation counts, nonce/gas queries and raw transaction broadcast.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional

from aiohttp import ClientTimeout
from web3 import AsyncWeb3, Web3
from web3.exceptions import TransactionNotFound

from config import Config
from services.relay_errors import ChainQueryError, UnknownChainError
from utils.constants import (
    ARBITRUM, BASE, MANTLE, ZKSYNC, CHAIN_DISPLAY_NAMES, CHAIN_IDS, NATIVE_SYMBOLS, ERC20_ABI,
    XOC_TOKEN_ADDRESS, XOC_DECIMALS, MXNB_TOKEN_ADDRESS, MXNB_DECIMALS,
    USDT_MANTLE_TOKEN_ADDRESS, USDT_MANTLE_DECIMALS,
    USDT_ZKSYNC_ERA_TOKEN_ADDRESS, USDT_ZKSYNC_ERA_DECIMALS,
    DEFAULT_TRANSFER_GAS_LIMIT, MANTLE_GAS_BUFFER_MULTIPLIER, MANTLE_FALLBACK_GAS_LIMIT,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenProfile:
    """ERC-20 token the escrow pays out on one chain"""
    symbol: str
    address: str
    decimals: int


@dataclass(frozen=True)
class ChainProfile:
    """Connection and payout policy for one network"""
    name: str
    chain_id: int
    rpc_url: str
    native_symbol: str
    payout_token: TokenProfile
    min_gas_reserve: Decimal
    # Fixed limit for token transfers; None means estimate
    fixed_gas_limit: Optional[int] = DEFAULT_TRANSFER_GAS_LIMIT
    gas_buffer_multiplier: Decimal = Decimal("1")
    # Used only when estimation fails; None means estimation failure aborts the payout
    fallback_gas_limit: Optional[int] = None
    native_decimals: int = 18
    display_name: str = field(default="")

    @property
    def label(self) -> str:
        return self.display_name or self.name


class ChainClient:
    """Read/transaction client for a single chain backed by AsyncWeb3"""

    def __init__(self, profile: ChainProfile, web3: Optional[AsyncWeb3] = None):
        self.profile = profile
        self.name = profile.name
        self.web3 = web3 or AsyncWeb3(
            AsyncWeb3.AsyncHTTPProvider(
                profile.rpc_url,
                request_kwargs={"timeout": ClientTimeout(total=Config.RPC_REQUEST_TIMEOUT_SECONDS)},
            )
        )

    def _token_contract(self, token_address: str):
        return self.web3.eth.contract(address=Web3.to_checksum_address(token_address), abi=ERC20_ABI)

    async def get_native_balance(self, address: str) -> int:
        """Native balance in base units (wei)"""
        try:
            return int(await self.web3.eth.get_balance(Web3.to_checksum_address(address)))
        except Exception as e:
            raise ChainQueryError(self.name, "get_native_balance", e) from e

    async def get_token_balance(self, token_address: str, owner: str) -> int:
        """ERC-20 balanceOf in base units"""
        try:
            contract = self._token_contract(token_address)
            return int(await contract.functions.balanceOf(Web3.to_checksum_address(owner)).call())
        except Exception as e:
            raise ChainQueryError(self.name, "balanceOf", e) from e

    async def get_allowance(self, token_address: str, owner: str, spender: str) -> int:
        """ERC-20 allowance in base units"""
        try:
            contract = self._token_contract(token_address)
            return int(await contract.functions.allowance(
                Web3.to_checksum_address(owner), Web3.to_checksum_address(spender)
            ).call())
        except Exception as e:
            raise ChainQueryError(self.name, "allowance", e) from e

    async def get_transaction_confirmations(self, tx_hash: str) -> int:
        """
        Number of blocks including and after the one that mined tx_hash.
        Returns 0 while the transaction is unknown or still in the mempool.
        """
        try:
            receipt = await self.web3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return 0
        except Exception as e:
            raise ChainQueryError(self.name, "get_transaction_receipt", e) from e

        block_number = receipt.get("blockNumber") if receipt else None
        if block_number is None:
            return 0

        try:
            head = await self.web3.eth.block_number
        except Exception as e:
            raise ChainQueryError(self.name, "block_number", e) from e
        return max(0, int(head) - int(block_number) + 1)

    async def transaction_exists(self, tx_hash: str) -> bool:
        """True when the node knows tx_hash (pending or mined)"""
        try:
            await self.web3.eth.get_transaction(tx_hash)
            return True
        except TransactionNotFound:
            return False
        except Exception as e:
            raise ChainQueryError(self.name, "get_transaction", e) from e

    async def estimate_gas(self, tx: Dict[str, Any]) -> int:
        try:
            return int(await self.web3.eth.estimate_gas(tx))
        except Exception as e:
            raise ChainQueryError(self.name, "estimate_gas", e) from e

    async def get_pending_nonce(self, address: str) -> int:
        try:
            return int(await self.web3.eth.get_transaction_count(Web3.to_checksum_address(address), "pending"))
        except Exception as e:
            raise ChainQueryError(self.name, "get_transaction_count", e) from e

    async def get_gas_price(self) -> int:
        try:
            return int(await self.web3.eth.gas_price)
        except Exception as e:
            raise ChainQueryError(self.name, "gas_price", e) from e

    async def send_raw_transaction(self, raw_transaction: bytes) -> str:
        """Broadcast a signed transaction and return its 0x hash"""
        tx_hash = await self.web3.eth.send_raw_transaction(raw_transaction)
        return Web3.to_hex(tx_hash)


class ChainClientRegistry:
    """Lookup table of chain clients keyed by network tag"""

    def __init__(self, clients: Iterable[Any]):
        self._clients: Dict[str, Any] = {client.name: client for client in clients}

    def get(self, chain: str):
        client = self._clients.get(chain)
        if client is None:
            raise UnknownChainError(chain)
        return client

    def profile(self, chain: str) -> ChainProfile:
        return self.get(chain).profile

    def has(self, chain: str) -> bool:
        return chain in self._clients

    @property
    def chains(self):
        return list(self._clients)


def build_default_profiles() -> Dict[str, ChainProfile]:
    """Profiles for every supported network, read from Config at call time"""
    reserve = Config.ESCROW_MIN_GAS_RESERVE

    def _profile(name: str, token: TokenProfile, **overrides) -> ChainProfile:
        return ChainProfile(
            name=name,
            chain_id=CHAIN_IDS[name],
            rpc_url=Config.rpc_url_for(name),
            native_symbol=NATIVE_SYMBOLS[name],
            payout_token=token,
            min_gas_reserve=reserve,
            display_name=CHAIN_DISPLAY_NAMES[name],
            **overrides,
        )

    return {
        BASE: _profile(BASE, TokenProfile("XOC", XOC_TOKEN_ADDRESS, XOC_DECIMALS)),
        ARBITRUM: _profile(ARBITRUM, TokenProfile("MXNB", MXNB_TOKEN_ADDRESS, MXNB_DECIMALS)),
        MANTLE: _profile(
            MANTLE,
            TokenProfile("USDT", USDT_MANTLE_TOKEN_ADDRESS, USDT_MANTLE_DECIMALS),
            fixed_gas_limit=None,
            gas_buffer_multiplier=Decimal(MANTLE_GAS_BUFFER_MULTIPLIER),
            fallback_gas_limit=MANTLE_FALLBACK_GAS_LIMIT,
        ),
        ZKSYNC: _profile(ZKSYNC, TokenProfile("USDT", USDT_ZKSYNC_ERA_TOKEN_ADDRESS, USDT_ZKSYNC_ERA_DECIMALS)),
    }


def build_default_registry(profiles: Optional[Dict[str, ChainProfile]] = None) -> ChainClientRegistry:
    """Registry of live web3 clients for the supported networks"""
    profiles = profiles or build_default_profiles()
    clients = [ChainClient(profile) for profile in profiles.values()]
    logger.info(f"🔗 CHAIN_REGISTRY: Initialized clients for {', '.join(profiles)}")
    return ChainClientRegistry(clients)
