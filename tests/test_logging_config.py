"""Tests for the structlog helpers in logging_config."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

import structlog

from clawvault.domain.enums import EscrowStatus, SettlementKind
from clawvault.logging_config import render_domain_values, sweep_context


def test_domain_values_become_plain_strings() -> None:
    event = render_domain_values(
        None,
        "info",
        {
            "event": "escrow.accepted",
            "amount": Decimal("99.000000"),
            "deadline": datetime(2026, 3, 2, 12, 0, tzinfo=UTC),
            "new_status": EscrowStatus.COMPLETED,
            "directives": [{"kind": SettlementKind.FEE, "amount": Decimal("1")}],
            "escrow_id": "esc_1",
        },
    )

    assert event == {
        "event": "escrow.accepted",
        "amount": "99.000000",
        "deadline": "2026-03-02T12:00:00+00:00",
        "new_status": "COMPLETED",
        "directives": [{"kind": "FEE", "amount": "1"}],
        "escrow_id": "esc_1",
    }


def test_exc_info_is_left_alone() -> None:
    exc_info = (ValueError, ValueError("boom"), None)
    event = render_domain_values(None, "error", {"event": "x", "exc_info": exc_info})
    assert event["exc_info"] is exc_info


def test_sweep_context_binds_and_clears() -> None:
    with sweep_context(7):
        assert structlog.contextvars.get_contextvars()["sweep_id"] == 7
    assert "sweep_id" not in structlog.contextvars.get_contextvars()
