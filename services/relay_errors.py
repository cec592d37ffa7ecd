"""
Error taxonomy for the cross-chain swap relay

Transient errors leave a swap pending for the next cycle; only routing errors
are permanent.
"""

from decimal import Decimal
from typing import Optional


class RelayError(Exception):
    """Base exception for swap relay errors"""

    pass


class RelayConfigurationError(RelayError):
    """Missing or invalid relay configuration (escrow key, database URL)"""

    pass


class EscrowAddressMismatchError(RelayConfigurationError):
    """Escrow key does not derive the configured escrow wallet address"""

    def __init__(self, expected: str, actual: str):
        super().__init__(f"Escrow key derives {actual}, expected {expected}")
        self.expected = expected
        self.actual = actual


class ChainQueryError(RelayError):
    """Transient RPC failure (timeout, node error, missing data)"""

    def __init__(self, chain: str, operation: str, cause: Optional[BaseException] = None):
        message = f"{operation} failed on {chain}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
        self.chain = chain
        self.operation = operation
        self.cause = cause


class GasEstimationError(ChainQueryError):
    """Gas estimation failed on a chain without a fallback gas limit"""

    pass


class UnknownChainError(RelayError):
    """No client profile is registered for a chain tag"""

    def __init__(self, chain: str):
        super().__init__(f"Unsupported chain: {chain}")
        self.chain = chain


class UnsupportedSwapPairError(RelayError):
    """No dispatch entry for a (source, target) pair; retrying cannot help"""

    def __init__(self, source_chain: str, target_chain: str):
        super().__init__(f"Unsupported swap direction: {source_chain} to {target_chain}")
        self.source_chain = source_chain
        self.target_chain = target_chain


class InsufficientEscrowBalanceError(RelayError):
    """Escrow lacks payout token or native gas on the payout chain"""

    def __init__(self, chain: str, asset: str, required: Decimal, available: Decimal):
        super().__init__(
            f"Insufficient {asset} in escrow wallet on {chain}. "
            f"Required: {required}, Available: {available}"
        )
        self.chain = chain
        self.asset = asset
        self.required = required
        self.available = available


class PayoutDispatchError(RelayError):
    """Payout transaction could not be signed or broadcast"""

    pass
