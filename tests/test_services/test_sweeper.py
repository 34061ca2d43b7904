"""Tests for the ExpirySweeper."""

from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest

from clawvault.domain.enums import EscrowStatus, SettlementKind
from clawvault.services.sweeper import ExpirySweeper, SweepReport
from tests.parties import BUYER, SELLER


@pytest.fixture
def sweeper(service) -> ExpirySweeper:  # noqa: ANN001
    return ExpirySweeper(service, interval_seconds=0.01)


class TestRunOnce:
    @pytest.mark.asyncio
    async def test_nothing_due(self, sweeper, make_escrow) -> None:
        await make_escrow("FUNDED")
        await make_escrow("DELIVERED")

        report = await sweeper.run_once()

        assert report == SweepReport()
        assert report.total == 0
        assert sweeper.runs == 1

    @pytest.mark.asyncio
    async def test_completes_and_refunds(self, sweeper, service, make_escrow, clock) -> None:
        delivered = await make_escrow("DELIVERED")
        funded = await make_escrow("FUNDED")
        disputed = await make_escrow("DISPUTED")
        clock.advance(days=2)

        report = await sweeper.run_once()

        assert report.auto_completed == 1
        assert report.auto_refunded == 1
        assert report.failed == 0
        assert (await service.get(delivered)).status is EscrowStatus.COMPLETED
        assert (await service.get(funded)).status is EscrowStatus.REFUNDED
        # Disputes wait for the arbiter no matter how old they are.
        assert (await service.get(disputed)).status is EscrowStatus.DISPUTED

        payout = await service.get_settlements(delivered)
        assert [(s.kind, s.recipient, s.amount) for s in payout][0] == (
            SettlementKind.PAYOUT, SELLER, Decimal("99")
        )
        refund = await service.get_settlements(funded)
        assert [(s.kind, s.recipient, s.amount) for s in refund] == [
            (SettlementKind.REFUND, BUYER, Decimal("100"))
        ]

    @pytest.mark.asyncio
    async def test_events_record_system_actor(self, sweeper, service, make_escrow, clock) -> None:
        escrow_id = await make_escrow("DELIVERED")
        clock.advance(days=2)
        await sweeper.run_once()

        events = await service.get_events(escrow_id)
        assert events[-1].event_type == "CLAIMED_BY_TIMEOUT"
        assert events[-1].actor == "SYSTEM"

    @pytest.mark.asyncio
    async def test_unfunded_expiry_has_no_settlement(
        self, sweeper, service, make_escrow, clock
    ) -> None:
        escrow_id = await make_escrow()
        clock.advance(days=2)

        report = await sweeper.run_once()

        assert report.auto_refunded == 1
        assert (await service.get(escrow_id)).status is EscrowStatus.REFUNDED
        assert await service.get_settlements(escrow_id) == []

    @pytest.mark.asyncio
    async def test_second_run_finds_nothing(self, sweeper, make_escrow, clock) -> None:
        await make_escrow("DELIVERED")
        clock.advance(days=2)
        await sweeper.run_once()

        report = await sweeper.run_once()

        assert report.total == 0
        assert sweeper.runs == 2
        assert sweeper.last_report is report

    @pytest.mark.asyncio
    async def test_lost_race_is_skipped(
        self, sweeper, service, make_escrow, clock, monkeypatch
    ) -> None:
        escrow_id = await make_escrow("DELIVERED")
        await service.accept(escrow_id, actor=BUYER)

        async def stale_list_due(now=None):  # noqa: ANN001, ANN202
            return [escrow_id], []

        monkeypatch.setattr(service, "list_due", stale_list_due)
        report = await sweeper.run_once()

        assert report.skipped == 1
        assert report.auto_completed == 0

    @pytest.mark.asyncio
    async def test_failure_is_counted_and_cycle_continues(
        self, sweeper, service, make_escrow, clock, monkeypatch
    ) -> None:
        funded = await make_escrow("FUNDED")
        clock.advance(days=2)

        async def list_due(now=None):  # noqa: ANN001, ANN202
            return ["esc_does_not_exist"], [funded]

        monkeypatch.setattr(service, "list_due", list_due)
        report = await sweeper.run_once()

        assert report.failed == 1
        assert report.auto_refunded == 1
        assert report.to_dict() == {
            "auto_completed": 0,
            "auto_refunded": 1,
            "skipped": 0,
            "failed": 1,
        }

    @pytest.mark.asyncio
    async def test_overlapping_cycles_apply_each_timeout_once(
        self, sweeper, service, make_escrow, clock
    ) -> None:
        escrow_ids = [await make_escrow("DELIVERED") for _ in range(3)]
        clock.advance(days=2)

        first, second = await asyncio.gather(sweeper.run_once(), sweeper.run_once())

        assert first.auto_completed + second.auto_completed == 3
        assert first.failed == second.failed == 0
        assert sweeper.runs == 2
        for escrow_id in escrow_ids:
            assert (await service.get(escrow_id)).status is EscrowStatus.COMPLETED
            kinds = sorted(s.kind for s in await service.get_settlements(escrow_id))
            assert kinds == sorted([SettlementKind.PAYOUT, SettlementKind.FEE])


class TestLoop:
    @pytest.mark.asyncio
    async def test_start_and_stop(self, sweeper, make_escrow, clock) -> None:
        await make_escrow("FUNDED")
        clock.advance(days=2)

        await sweeper.start()
        assert sweeper.is_running
        for _ in range(100):
            if sweeper.runs:
                break
            await asyncio.sleep(0.01)
        await sweeper.stop()

        assert not sweeper.is_running
        assert sweeper.runs >= 1

    @pytest.mark.asyncio
    async def test_double_start_is_harmless(self, sweeper) -> None:
        await sweeper.start()
        await sweeper.start()
        await sweeper.stop()
        assert not sweeper.is_running
