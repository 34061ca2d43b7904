"""Contract codec and read client for trustless mode."""

from clawvault.ledger.abi import CONTRACT_STATUSES, encode_call, keccak_hex
from clawvault.ledger.client import ContractClient

__all__ = ["CONTRACT_STATUSES", "ContractClient", "encode_call", "keccak_hex"]
