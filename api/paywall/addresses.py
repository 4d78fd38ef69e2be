"""
Wallet address validation and normalization per chain family
"""

import re
from typing import Optional

EVM_FAMILY = 'evm'
SVM_FAMILY = 'svm'

SVM_NETWORK_PREFIXES = ('solana',)

EVM_ADDRESS_PATTERN = re.compile(r'^0x[0-9a-fA-F]{40}$')
SVM_ADDRESS_PATTERN = re.compile(r'^[1-9A-HJ-NP-Za-km-z]{32,44}$')


def network_family(network: Optional[str]) -> str:
    """Chain family for a network identifier ('svm' for solana-*, else 'evm')"""
    name = (network or '').strip().lower()
    if name.startswith(SVM_NETWORK_PREFIXES):
        return SVM_FAMILY
    return EVM_FAMILY


class AddressValidator:
    """Blockchain address validation"""

    @staticmethod
    def validate_evm_address(address: str) -> bool:
        """Validate Ethereum/EVM address"""
        if not isinstance(address, str):
            return False
        return EVM_ADDRESS_PATTERN.match(address) is not None

    @staticmethod
    def validate_svm_address(address: str) -> bool:
        """Validate Solana address (base58, 32-44 chars)"""
        if not isinstance(address, str):
            return False
        return SVM_ADDRESS_PATTERN.match(address) is not None

    @staticmethod
    def validate_address(address: str, network: str) -> bool:
        """Validate address for the network's chain family"""
        return normalize_address(address, network) is not None


def normalize_address(address: Optional[str], network: Optional[str]) -> Optional[str]:
    """
    Canonical form of a wallet address, or None if it is not valid.

    EVM addresses are lowercased. Base58 is case-sensitive, so SVM addresses
    only have whitespace removed.
    """
    if not isinstance(address, str):
        return None

    if network_family(network) == SVM_FAMILY:
        candidate = re.sub(r'\s+', '', address)
        if not AddressValidator.validate_svm_address(candidate):
            return None
        return candidate

    candidate = address.strip()
    if not AddressValidator.validate_evm_address(candidate):
        return None
    return candidate.lower()
