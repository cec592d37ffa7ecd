"""
Dispatch Matrix and Payout Sender

The dispatch matrix maps an ordered (source_chain, target_chain) pair to the
payout chain, payout token and send routine. Every supported target shares
one PayoutSender; per-chain behaviour (token, decimals, gas policy) lives in
the chain profile rather than in per-chain code.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from functools import partial
from itertools import permutations
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Tuple, Union

from eth_abi import encode
from web3 import Web3

from services.chain_clients import ChainProfile, TokenProfile
from services.preflight_checker import PreflightChecker, PreflightStatus
from services.relay_errors import (
    ChainQueryError, GasEstimationError, InsufficientEscrowBalanceError,
    PayoutDispatchError, UnsupportedSwapPairError,
)
from utils.constants import APPROVE_GAS_LIMIT, ERC20_APPROVE_SELECTOR, ERC20_TRANSFER_SELECTOR
from utils.decimal_precision import TokenAmount

logger = logging.getLogger(__name__)

# Called with (tx_hash, nonce) after signing and before broadcast
OnSignedCallback = Callable[[str, int], Awaitable[Any]]


def encode_erc20_call(selector: str, address: str, amount_units: int) -> str:
    """Calldata for transfer/approve(address,uint256)"""
    args = encode(["address", "uint256"], [Web3.to_checksum_address(address), int(amount_units)])
    return "0x" + selector + args.hex()


class PayoutSender:
    """Signs and broadcasts ERC-20 payouts from the escrow wallet"""

    def __init__(self, registry, escrow, preflight: Optional[PreflightChecker] = None):
        self.registry = registry
        self.escrow = escrow
        self.preflight = preflight or PreflightChecker(registry, escrow)

    async def send_payout(
        self,
        chain: str,
        token_address: str,
        recipient: str,
        amount: Union[str, Decimal],
        *,
        nonce: Optional[int] = None,
        on_signed: Optional[OnSignedCallback] = None,
    ) -> str:
        """
        Transfer `amount` payout tokens to `recipient` on `chain`.

        Returns the transaction hash once the node accepts the transaction;
        target-chain confirmation is not awaited.
        """
        client = self.registry.get(chain)
        profile: ChainProfile = client.profile
        token = self._payout_token(profile, token_address)
        amount_units = self._amount_units(amount, token)
        amount = TokenAmount.from_base_units(amount_units, token.decimals)

        check = await self.preflight.check_payout_feasible(chain, amount)
        if check.status == PreflightStatus.INSUFFICIENT_PAYOUT_TOKEN:
            raise InsufficientEscrowBalanceError(chain, token.symbol, amount, check.snapshot.payout_token)
        if check.status == PreflightStatus.INSUFFICIENT_GAS:
            raise InsufficientEscrowBalanceError(
                chain, profile.native_symbol, profile.min_gas_reserve, check.snapshot.native_gas
            )

        data = encode_erc20_call(ERC20_TRANSFER_SELECTOR, recipient, amount_units)

        logger.info(
            f"📤 DISPATCH: Sending {amount} {token.symbol} to {recipient} on {profile.label}"
        )
        return await self._sign_and_broadcast(
            client, token.address, data, profile.fixed_gas_limit, nonce=nonce, on_signed=on_signed
        )

    async def approve(self, chain: str, token_address: str, spender: str, amount: Union[str, Decimal]) -> str:
        """Approve `spender` to move `amount` of the escrow's payout token on `chain`"""
        client = self.registry.get(chain)
        profile: ChainProfile = client.profile
        token = self._payout_token(profile, token_address)
        amount_units = self._amount_units(amount, token)

        native_units = await client.get_native_balance(self.escrow.address)
        native_balance = TokenAmount.from_base_units(native_units, profile.native_decimals)
        if not native_balance > profile.min_gas_reserve:
            raise InsufficientEscrowBalanceError(chain, profile.native_symbol, profile.min_gas_reserve, native_balance)

        data = encode_erc20_call(ERC20_APPROVE_SELECTOR, spender, amount_units)
        fixed_limit = APPROVE_GAS_LIMIT if profile.fixed_gas_limit is not None else None

        logger.info(f"🔓 DISPATCH: Approving {spender} for {amount} {token.symbol} on {profile.label}")
        return await self._sign_and_broadcast(client, token.address, data, fixed_limit)

    @staticmethod
    def _amount_units(amount: Union[str, Decimal], token: TokenProfile) -> int:
        """Exact base units; an amount the token cannot represent is never rounded away"""
        try:
            return TokenAmount.to_base_units(amount, token.decimals)
        except ValueError as e:
            raise PayoutDispatchError(f"Cannot pay {amount!r} {token.symbol}: {e}") from e

    def _payout_token(self, profile: ChainProfile, token_address: str) -> TokenProfile:
        token = profile.payout_token
        if token_address.lower() != token.address.lower():
            raise PayoutDispatchError(
                f"Token {token_address} is not the payout token on {profile.name} (expected {token.address})"
            )
        return token

    async def _resolve_gas_limit(self, client, tx: Dict[str, Any], fixed_limit: Optional[int]) -> int:
        if fixed_limit is not None:
            return fixed_limit

        profile: ChainProfile = client.profile
        try:
            estimate = await client.estimate_gas({
                "from": self.escrow.address,
                "to": tx["to"],
                "data": tx["data"],
                "value": 0,
            })
        except ChainQueryError as e:
            if profile.fallback_gas_limit is not None:
                logger.warning(
                    f"⚠️ DISPATCH: Gas estimation failed on {profile.name}, "
                    f"using fallback limit {profile.fallback_gas_limit}: {e}"
                )
                return profile.fallback_gas_limit
            raise GasEstimationError(profile.name, "estimate_gas", e.cause or e) from e

        gas_limit = int(Decimal(estimate) * profile.gas_buffer_multiplier)
        logger.info(f"⛽ DISPATCH: Estimated gas on {profile.name}: {estimate} -> limit {gas_limit}")
        return gas_limit

    async def _sign_and_broadcast(
        self,
        client,
        to_address: str,
        data: str,
        fixed_gas_limit: Optional[int],
        *,
        nonce: Optional[int] = None,
        on_signed: Optional[OnSignedCallback] = None,
    ) -> str:
        profile: ChainProfile = client.profile
        if nonce is None:
            nonce = await client.get_pending_nonce(self.escrow.address)

        tx: Dict[str, Any] = {
            "chainId": profile.chain_id,
            "nonce": nonce,
            "to": Web3.to_checksum_address(to_address),
            "value": 0,
            "data": data,
        }
        tx["gas"] = await self._resolve_gas_limit(client, tx, fixed_gas_limit)
        tx["gasPrice"] = await client.get_gas_price()

        try:
            raw_transaction, tx_hash = self.escrow.sign_transaction(tx)
        except Exception as e:
            raise PayoutDispatchError(f"Failed to sign transaction on {profile.name}: {e}") from e

        if on_signed is not None:
            await on_signed(tx_hash, nonce)

        try:
            broadcast_hash = await client.send_raw_transaction(raw_transaction)
        except Exception as e:
            logger.error(f"❌ DISPATCH: Broadcast of {tx_hash} failed on {profile.name}: {e}")
            raise PayoutDispatchError(f"Broadcast failed on {profile.name}: {e}") from e

        if broadcast_hash and broadcast_hash.lower() != tx_hash.lower():
            logger.warning(f"⚠️ DISPATCH: Node returned {broadcast_hash}, signed hash was {tx_hash}")

        logger.info(f"✅ DISPATCH: Transaction {tx_hash} broadcast on {profile.name} (nonce {nonce})")
        return tx_hash


@dataclass(frozen=True)
class DispatchEntry:
    """How to pay out one (source, target) direction"""
    source_chain: str
    target_chain: str
    payout_chain: str
    payout_token: TokenProfile
    # send(recipient, amount, *, nonce=None, on_signed=None) -> tx_hash
    send: Callable[..., Awaitable[str]]


class DispatchMatrix:
    """Lookup of supported swap directions"""

    def __init__(self, entries: Iterable[DispatchEntry] = ()):
        self._entries: Dict[Tuple[str, str], DispatchEntry] = {}
        for entry in entries:
            self.register(entry)

    def register(self, entry: DispatchEntry):
        self._entries[(entry.source_chain, entry.target_chain)] = entry

    def resolve(self, source_chain: str, target_chain: str) -> DispatchEntry:
        entry = self._entries.get((source_chain, target_chain))
        if entry is None:
            raise UnsupportedSwapPairError(source_chain, target_chain)
        return entry

    def supports(self, source_chain: str, target_chain: str) -> bool:
        return (source_chain, target_chain) in self._entries

    @property
    def pairs(self):
        return sorted(self._entries)

    @classmethod
    def default(cls, sender: PayoutSender, registry) -> "DispatchMatrix":
        """Every ordered pair of distinct registered chains, paid in the target's payout token"""
        entries = []
        for source_chain, target_chain in permutations(registry.chains, 2):
            token = registry.profile(target_chain).payout_token
            entries.append(DispatchEntry(
                source_chain=source_chain,
                target_chain=target_chain,
                payout_chain=target_chain,
                payout_token=token,
                send=partial(sender.send_payout, target_chain, token.address),
            ))
        logger.info(f"🧭 DISPATCH: Registered {len(entries)} swap directions")
        return cls(entries)
