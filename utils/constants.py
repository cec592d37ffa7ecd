"""Constants for the cross-chain swap relay"""

from typing import Dict, Optional

# ==================== NETWORKS ====================

BASE = "base"
ARBITRUM = "arbitrum"
MANTLE = "mantle"
ZKSYNC = "zksync"

SUPPORTED_CHAINS = (BASE, ARBITRUM, MANTLE, ZKSYNC)

CHAIN_IDS: Dict[str, int] = {
    BASE: 8453,
    ARBITRUM: 42161,
    MANTLE: 5000,
    ZKSYNC: 324,
}

CHAIN_DISPLAY_NAMES: Dict[str, str] = {
    BASE: "Base",
    ARBITRUM: "Arbitrum",
    MANTLE: "Mantle",
    ZKSYNC: "zkSync Era",
}

NATIVE_SYMBOLS: Dict[str, str] = {
    BASE: "ETH",
    ARBITRUM: "ETH",
    MANTLE: "MNT",
    ZKSYNC: "ETH",
}

# ==================== PAYOUT TOKENS ====================

XOC_TOKEN_ADDRESS = "0xa411c9Aa00E020e4f88Bc19996d29c5B7ADB4ACf"            # XOC on Base
MXNB_TOKEN_ADDRESS = "0xF197FFC28c23E0309B5559e7a166f2c6164C80aA"           # MXNB on Arbitrum
USDT_MANTLE_TOKEN_ADDRESS = "0x201EBa5CC46D216Ce6DC03F6a759e8E766e956aE"    # USDT on Mantle
USDT_ZKSYNC_ERA_TOKEN_ADDRESS = "0x493257fD37EDB34451f62EDf8D2a0C418852bA4C"  # USDT on zkSync Era

XOC_DECIMALS = 18
MXNB_DECIMALS = 6
USDT_MANTLE_DECIMALS = 6
USDT_ZKSYNC_ERA_DECIMALS = 6

# ==================== GAS ====================

# Token transfers on these chains use a fixed limit instead of estimation
DEFAULT_TRANSFER_GAS_LIMIT = 300_000
# Mantle estimation is unreliable under congestion: estimate with a buffer,
# fall back to a very high fixed limit when estimation fails
MANTLE_GAS_BUFFER_MULTIPLIER = "1.5"
MANTLE_FALLBACK_GAS_LIMIT = 150_000_000
APPROVE_GAS_LIMIT = 100_000

# ==================== EXPLORERS ====================

EXPLORER_TX_URLS: Dict[str, str] = {
    BASE: "https://basescan.org/tx/",
    ARBITRUM: "https://arbiscan.io/tx/",
    MANTLE: "https://mantlescan.xyz/tx/",
    ZKSYNC: "https://era.zksync.network/tx/",
}

EXPLORER_NAMES: Dict[str, str] = {
    BASE: "BaseScan",
    ARBITRUM: "Arbiscan",
    MANTLE: "MantleScan",
    ZKSYNC: "zkSync Era Explorer",
}

# ==================== ERC-20 ====================

ERC20_ABI = [
    {
        "inputs": [{"name": "account", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "name": "transfer",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "spender", "type": "address"},
        ],
        "name": "allowance",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "spender", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "name": "approve",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]

# Function selectors (first 4 bytes of keccak256 of the signature)
ERC20_TRANSFER_SELECTOR = "a9059cbb"   # transfer(address,uint256)
ERC20_APPROVE_SELECTOR = "095ea7b3"    # approve(address,uint256)

# Markers the intake flow uses for provisional source hashes
PLACEHOLDER_HASH_MARKERS = ("tx-", "pending")


def get_explorer_link(chain: str, tx_hash: str) -> Optional[str]:
    """Block explorer URL for a transaction, None for unknown chains"""
    base_url = EXPLORER_TX_URLS.get(chain)
    if not base_url or not tx_hash:
        return None
    return f"{base_url}{tx_hash}"


def get_transaction_text_link(chain: str, tx_hash: str) -> str:
    """Markdown link to a transaction for receipts"""
    url = get_explorer_link(chain, tx_hash)
    if not url:
        return tx_hash or ""
    return f"[View transaction on {EXPLORER_NAMES[chain]}]({url})"
