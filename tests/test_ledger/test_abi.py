"""Tests for the ABI codec."""

from __future__ import annotations

from decimal import Decimal

import pytest

from clawvault.domain.exceptions import InvalidArgumentError
from clawvault.ledger import abi
from tests.fake_chain import DEADLINE_TS, escrow_return
from tests.parties import BUYER, SELLER


class TestHashing:
    def test_keccak_of_empty_input(self) -> None:
        assert abi.keccak_hex("") == (
            "0xc5d2460186f7233c927e7db2dcc703c0e500b653ca82273b7bfad8045d85a470"
        )

    @pytest.mark.parametrize(
        ("signature", "expected"),
        [
            ("approve(address,uint256)", "095ea7b3"),
            ("transfer(address,uint256)", "a9059cbb"),
            ("balanceOf(address)", "70a08231"),
        ],
    )
    def test_known_selectors(self, signature: str, expected: str) -> None:
        assert abi.selector(signature).hex() == expected

    def test_param_types(self) -> None:
        assert abi.param_types(abi.CREATE_ESCROW) == [
            "address", "uint256", "bytes32", "uint256", "uint256",
        ]
        assert abi.param_types(abi.GET_STATS) == []


class TestUnits:
    def test_to_base_units(self) -> None:
        assert abi.to_base_units(Decimal("100")) == 100_000_000
        assert abi.to_base_units("100.5") == 100_500_000

    def test_sub_unit_precision_is_truncated(self) -> None:
        assert abi.to_base_units("0.0000019") == 1

    def test_from_base_units(self) -> None:
        assert abi.from_base_units(1_500_000) == Decimal("1.5")


class TestEncoding:
    def test_static_call(self) -> None:
        data = abi.encode_call(abi.ACCEPT_DELIVERY, 7)
        assert data.startswith("0x" + abi.selector(abi.ACCEPT_DELIVERY).hex())
        assert len(data) == 2 + 8 + 64
        assert int(data[-64:], 16) == 7

    def test_address_is_left_padded(self) -> None:
        word = abi.encode_address(BUYER)
        assert word[:12] == b"\x00" * 12
        assert "0x" + word[12:].hex() == BUYER.lower()

    def test_string_goes_to_the_tail(self) -> None:
        raw = bytes.fromhex(abi.encode_call(abi.OPEN_DISPUTE, 3, "late")[10:])

        assert abi.decode_uint(raw[0:32]) == 3
        assert abi.decode_uint(raw[32:64]) == 64  # offset past the two head words
        assert abi.decode_uint(raw[64:96]) == 4
        assert raw[96:128] == b"late" + b"\x00" * 28

    def test_bool_argument(self) -> None:
        data = abi.encode_call(abi.RESOLVE_DISPUTE, 1, True)
        assert int(data[-64:], 16) == 1

    @pytest.mark.parametrize("value", [-1, 2**256, True, "12"])
    def test_bad_uint(self, value) -> None:  # noqa: ANN001
        with pytest.raises(InvalidArgumentError):
            abi.encode_uint(value)

    @pytest.mark.parametrize("value", ["0x1234", "not-an-address", ""])
    def test_bad_address(self, value: str) -> None:
        with pytest.raises(InvalidArgumentError):
            abi.encode_address(value)

    def test_argument_count_mismatch(self) -> None:
        with pytest.raises(InvalidArgumentError):
            abi.encode_call(abi.ACCEPT_DELIVERY)


class TestDecoding:
    def test_decode_escrow(self) -> None:
        data = escrow_return(
            delivered_at=DEADLINE_TS - 600,
            status=3,
            dispute_reason="Output is in the wrong language",
        )

        escrow = abi.decode_escrow(data)

        assert escrow["buyer"] == BUYER.lower()
        assert escrow["seller"] == SELLER.lower()
        assert escrow["amount"] == 100_000_000
        assert escrow["fee"] == 1_000_000
        assert escrow["service_hash"] == "0x" + "11" * 32
        assert escrow["deadline"] == DEADLINE_TS
        assert escrow["delivered_at"] == DEADLINE_TS - 600
        assert escrow["status"] == "Disputed"
        assert escrow["dispute_reason"] == "Output is in the wrong language"

    def test_unknown_status(self) -> None:
        with pytest.raises(abi.AbiDecodeError):
            abi.decode_escrow(escrow_return(status=9))

    def test_truncated_data(self) -> None:
        with pytest.raises(abi.AbiDecodeError):
            abi.decode_escrow(escrow_return()[:200])

    def test_non_hex_result(self) -> None:
        with pytest.raises(abi.AbiDecodeError):
            abi.hex_to_bytes("0xzz")
