"""Minimal Solidity ABI codec for the ClawVault escrow contract.

Only the types the contract interface uses are supported: ``address``,
``uint256``, ``uint8``, ``bool``, ``bytes32`` and ``string``. Calldata is a
4-byte selector (first bytes of keccak256 of the canonical signature)
followed by 32-byte head words; ``string`` arguments are encoded in the
tail and referenced by offset.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import ROUND_DOWN, Decimal

from Cryptodome.Hash import keccak

from clawvault.domain.exceptions import InvalidArgumentError

WORD = 32
MAX_UINT256 = 2**256 - 1

# Write functions
CREATE_ESCROW = "createEscrow(address,uint256,bytes32,uint256,uint256)"
MARK_DELIVERED = "markDelivered(uint256,bytes32)"
ACCEPT_DELIVERY = "acceptDelivery(uint256)"
OPEN_DISPUTE = "openDispute(uint256,string)"
RESOLVE_DISPUTE = "resolveDispute(uint256,bool)"
RECLAIM_EXPIRED = "reclaimExpired(uint256)"
CLAIM_BY_TIMEOUT = "claimByTimeout(uint256)"
ERC20_APPROVE = "approve(address,uint256)"

# Views
GET_ESCROW = "getEscrow(uint256)"
GET_STATS = "getStats()"
FEE_BPS = "feeBps()"
CAN_RECLAIM = "canReclaim(uint256)"
CAN_CLAIM_BY_TIMEOUT = "canClaimByTimeout(uint256)"
NEXT_ESCROW_ID = "nextEscrowId()"

# Contract status enum, indexed by the uint8 the contract returns.
CONTRACT_STATUSES = ("Active", "Delivered", "Completed", "Disputed", "Refunded", "Resolved")


class AbiDecodeError(ValueError):
    """Return data does not match the expected layout."""


def keccak256(data: bytes | str) -> bytes:
    if isinstance(data, str):
        data = data.encode("utf-8")
    h = keccak.new(digest_bits=256)
    h.update(data)
    return h.digest()


def keccak_hex(data: bytes | str) -> str:
    return "0x" + keccak256(data).hex()


def selector(signature: str) -> bytes:
    return keccak256(signature)[:4]


def param_types(signature: str) -> list[str]:
    """``f(address,uint256)`` -> ``["address", "uint256"]``."""
    inner = signature[signature.index("(") + 1 : signature.rindex(")")]
    return [t.strip() for t in inner.split(",")] if inner.strip() else []


# ---------------------------------------------------------------------------
# Unit conversion
# ---------------------------------------------------------------------------


def to_base_units(amount: Decimal | int | str, decimals: int = 6) -> int:
    """100.5 USDC -> 100500000 (truncating below the token's precision)."""
    value = Decimal(str(amount)).scaleb(decimals).to_integral_value(rounding=ROUND_DOWN)
    return int(value)


def from_base_units(raw: int, decimals: int = 6) -> Decimal:
    return Decimal(raw).scaleb(-decimals)


def from_timestamp(seconds: int) -> datetime:
    return datetime.fromtimestamp(seconds, tz=UTC)


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


def encode_uint(value: int) -> bytes:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidArgumentError(f"uint expected, got {value!r}")
    if not 0 <= value <= MAX_UINT256:
        raise InvalidArgumentError(f"uint256 out of range: {value}")
    return value.to_bytes(WORD, "big")


def encode_bool(value: bool) -> bytes:
    return encode_uint(1 if value else 0)


def encode_address(value: str) -> bytes:
    raw = _hex_bytes(value, "address")
    if len(raw) != 20:
        raise InvalidArgumentError(f"Invalid address: {value!r}", field="address")
    return raw.rjust(WORD, b"\x00")


def encode_bytes32(value: bytes | str) -> bytes:
    raw = value if isinstance(value, bytes) else _hex_bytes(value, "bytes32")
    if len(raw) != WORD:
        raise InvalidArgumentError(f"bytes32 must be 32 bytes, got {len(raw)}")
    return raw


def encode_string(value: str) -> bytes:
    raw = value.encode("utf-8")
    padded = raw.ljust((len(raw) + WORD - 1) // WORD * WORD, b"\x00")
    return encode_uint(len(raw)) + padded


def encode_args(types: list[str], args: list | tuple) -> bytes:
    if len(types) != len(args):
        raise InvalidArgumentError(f"Expected {len(types)} arguments, got {len(args)}")

    head: list[bytes | None] = []
    tails: list[bytes] = []
    for abi_type, arg in zip(types, args, strict=True):
        if abi_type == "string":
            head.append(None)
            tails.append(encode_string(arg))
        else:
            head.append(_encode_static(abi_type, arg))

    offset = WORD * len(types)
    out = bytearray()
    tail_iter = iter(tails)
    tail_blob = bytearray()
    for word in head:
        if word is None:
            tail = next(tail_iter)
            out += encode_uint(offset + len(tail_blob))
            tail_blob += tail
        else:
            out += word
    return bytes(out + tail_blob)


def encode_call(signature: str, *args: object) -> str:
    """0x-prefixed calldata for ``signature`` applied to ``args``."""
    data = selector(signature) + encode_args(param_types(signature), args)
    return "0x" + data.hex()


def _encode_static(abi_type: str, value: object) -> bytes:
    if abi_type.startswith("uint"):
        return encode_uint(value)  # type: ignore[arg-type]
    if abi_type == "address":
        return encode_address(value)  # type: ignore[arg-type]
    if abi_type == "bool":
        return encode_bool(bool(value))
    if abi_type == "bytes32":
        return encode_bytes32(value)  # type: ignore[arg-type]
    raise InvalidArgumentError(f"Unsupported ABI type: {abi_type}")


def _hex_bytes(value: str, name: str) -> bytes:
    text = (value or "").strip()
    if text[:2].lower() == "0x":
        text = text[2:]
    try:
        return bytes.fromhex(text)
    except ValueError as err:
        raise InvalidArgumentError(f"Invalid {name}: {value!r}", field=name) from err


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


def hex_to_bytes(result: str) -> bytes:
    text = result[2:] if result.startswith("0x") else result
    try:
        return bytes.fromhex(text)
    except ValueError as err:
        raise AbiDecodeError(f"Return data is not hex: {result[:20]!r}") from err


def word_at(data: bytes, index: int, base: int = 0) -> bytes:
    start = base + index * WORD
    if start + WORD > len(data):
        raise AbiDecodeError(f"Return data too short: need word {index} at offset {base}")
    return data[start : start + WORD]


def decode_uint(word: bytes) -> int:
    return int.from_bytes(word, "big")


def decode_bool(word: bytes) -> bool:
    return decode_uint(word) != 0


def decode_address(word: bytes) -> str:
    return "0x" + word[12:].hex()


def decode_bytes32(word: bytes) -> str:
    return "0x" + word.hex()


def decode_string(data: bytes, offset: int) -> str:
    length = decode_uint(word_at(data, 0, offset))
    start = offset + WORD
    if start + length > len(data):
        raise AbiDecodeError("String runs past the end of return data")
    return data[start : start + length].decode("utf-8", errors="replace")


def decode_uints(data: bytes, count: int) -> tuple[int, ...]:
    return tuple(decode_uint(word_at(data, i)) for i in range(count))


def decode_escrow(data: bytes) -> dict:
    """Decode the ``getEscrow`` return tuple.

    The tuple holds a string, so it is dynamic: word 0 is the offset of the
    tuple body, and the string field holds an offset relative to that body.
    """
    base = decode_uint(word_at(data, 0))
    fields = [word_at(data, i, base) for i in range(11)]
    status_index = decode_uint(fields[9])
    if status_index >= len(CONTRACT_STATUSES):
        raise AbiDecodeError(f"Unknown contract status {status_index}")
    return {
        "buyer": decode_address(fields[0]),
        "seller": decode_address(fields[1]),
        "amount": decode_uint(fields[2]),
        "fee": decode_uint(fields[3]),
        "service_hash": decode_bytes32(fields[4]),
        "delivery_hash": decode_bytes32(fields[5]),
        "deadline": decode_uint(fields[6]),
        "delivered_at": decode_uint(fields[7]),
        "acceptance_window": decode_uint(fields[8]),
        "status": CONTRACT_STATUSES[status_index],
        "dispute_reason": decode_string(data, base + decode_uint(fields[10])),
    }
