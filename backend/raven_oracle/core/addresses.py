from __future__ import annotations

from web3 import Web3

from raven_oracle.core.errors import InvalidAddress


def is_address(value: object) -> bool:
    return isinstance(value, str) and Web3.is_address(value)


def normalize_address(value: object) -> str:
    """Return the EIP-55 checksummed form of ``value`` or raise InvalidAddress."""
    if not is_address(value):
        raise InvalidAddress(value)
    return Web3.to_checksum_address(str(value))
