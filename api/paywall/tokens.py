"""
Token registry for supported networks

Read-only metadata used to fill in token display names and the EIP-712
domain (name/version) when resource metadata leaves them out.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Any

from .addresses import network_family, EVM_FAMILY, SVM_FAMILY

DEFAULT_EIP712_NAME = 'USD Coin'
DEFAULT_EIP712_VERSION = '2'


@dataclass(frozen=True)
class TokenInfo:
    """Token metadata for one network"""
    network: str
    address: str
    symbol: str
    decimals: int
    token_name: Optional[str] = None
    token_version: Optional[str] = None


@dataclass(frozen=True)
class NetworkInfo:
    """Network display metadata"""
    network: str
    name: str
    family: str


DEFAULT_NETWORKS = (
    NetworkInfo('base-mainnet', 'Base Mainnet', EVM_FAMILY),
    NetworkInfo('base-sepolia', 'Base Sepolia (Testnet)', EVM_FAMILY),
    NetworkInfo('ethereum-mainnet', 'Ethereum Mainnet', EVM_FAMILY),
    NetworkInfo('ethereum-sepolia', 'Ethereum Sepolia (Testnet)', EVM_FAMILY),
    NetworkInfo('solana-mainnet', 'Solana Mainnet', SVM_FAMILY),
    NetworkInfo('solana-devnet', 'Solana Devnet (Testnet)', SVM_FAMILY),
)

DEFAULT_TOKENS = (
    TokenInfo('base-mainnet', '0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913', 'USDC', 6, 'USD Coin', '2'),
    TokenInfo('base-sepolia', '0x036CbD53842c5426634e7929541eC2318f3dCF7e', 'USDC', 6, 'USD Coin', '2'),
    TokenInfo('ethereum-mainnet', '0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48', 'USDC', 6, 'USD Coin', '2'),
    TokenInfo('ethereum-sepolia', '0x1c7D4B196Cb0C7B01d743Fbc6116a902379C7238', 'USDC', 6, 'USD Coin', '2'),
    TokenInfo('solana-mainnet', 'EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v', 'USDC', 6),
    TokenInfo('solana-devnet', '4zMMC9srt5Ri5X14GAgXhaHii3GnPAEERYPJgZJDncDU', 'USDC', 6),
)


class TokenRegistry:
    """Immutable lookup of known networks and tokens"""

    def __init__(self, networks=DEFAULT_NETWORKS, tokens=DEFAULT_TOKENS):
        self._networks: Dict[str, NetworkInfo] = {n.network: n for n in networks}
        self._tokens: Dict[tuple, TokenInfo] = {
            (t.network, self._key(t.network, t.address)): t for t in tokens
        }

    @staticmethod
    def _key(network: str, address: str) -> str:
        # EVM contract addresses are case-insensitive, SPL mints are not
        if network_family(network) == EVM_FAMILY:
            return address.strip().lower()
        return address.strip()

    def get_token(self, network: str, token_address: str) -> Optional[TokenInfo]:
        """Token configuration for a network/token pair"""
        if not network or not token_address:
            return None
        return self._tokens.get((network, self._key(network, token_address)))

    def default_token(self, network: str) -> Optional[TokenInfo]:
        """First registered token on a network (USDC for the built-in set)"""
        for token in self._tokens.values():
            if token.network == network:
                return token
        return None

    def get_network(self, network: str) -> Optional[NetworkInfo]:
        return self._networks.get(network)

    def networks(self, family: Optional[str] = None) -> List[NetworkInfo]:
        return [n for n in self._networks.values() if family is None or n.family == family]

    def to_dict(self, families: Optional[List[str]] = None) -> Dict[str, Any]:
        """Registry grouped by family -> network -> tokens"""
        result: Dict[str, Any] = {}
        for network in self._networks.values():
            if families is not None and network.family not in families:
                continue
            tokens = {
                token.address: {
                    'name': token.symbol,
                    'decimals': token.decimals,
                    **({'token_name': token.token_name} if token.token_name else {}),
                    **({'token_version': token.token_version} if token.token_version else {}),
                }
                for token in self._tokens.values()
                if token.network == network.network
            }
            result.setdefault(network.family, {})[network.network] = {
                'name': network.name,
                'tokens': tokens,
            }
        return result
