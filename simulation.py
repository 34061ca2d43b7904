#!/usr/bin/env python3
"""ClawVault: End-to-End Simulation.

Simulates three scenarios between a BuyerBot, a SellerBot and the arbiter,
with a manual clock so deadlines pass instantly:

    Scenario 1: Happy Path
        - Buyer creates and funds a 100 USDC escrow
        - Seller delivers, buyer accepts -> COMPLETED, 99 to seller, 1 fee

    Scenario 2: Timeout Refund
        - Buyer creates and funds an escrow with a 1h deadline
        - Seller never delivers; the clock passes the deadline
        - The expiry sweeper refunds the buyer -> REFUNDED

    Scenario 3: Dispute, Seller Wins
        - Seller delivers, buyer disputes inside the acceptance window
        - Arbiter rules for the seller -> RESOLVED, payout + fee

Usage:
    # Option A: SQLite in-memory (no Docker needed):
    uv run python simulation.py --sqlite

    # Option B: With Docker (PostgreSQL from DATABASE_URL):
    docker compose up -d
    uv run python simulation.py

    # Run a specific scenario:
    uv run python simulation.py --sqlite --scenario 2
"""

from __future__ import annotations

import argparse
import asyncio
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal

from sqlalchemy.pool import StaticPool

# ---------------------------------------------------------------------------
# Configure structured logging BEFORE importing app modules
# ---------------------------------------------------------------------------
from clawvault.logging_config import get_logger, setup_logging

setup_logging(log_level="INFO", json_logs=False)
logger = get_logger("simulation")

from clawvault.config import get_settings  # noqa: E402
from clawvault.domain.clock import ManualClock  # noqa: E402
from clawvault.infrastructure.database.engine import (  # noqa: E402
    build_engine,
    build_session_factory,
    create_schema,
)
from clawvault.schemas.escrow import CreateEscrowRequest, ResolveDisputeRequest  # noqa: E402
from clawvault.services.arbiter import DisputeArbiter  # noqa: E402
from clawvault.services.escrow_service import EscrowService  # noqa: E402
from clawvault.services.sweeper import ExpirySweeper  # noqa: E402

BUYER = "0x" + "b" * 40
SELLER = "0x" + "5" * 40


@dataclass
class World:
    """Everything a scenario needs."""

    service: EscrowService
    sweeper: ExpirySweeper
    arbiter: DisputeArbiter
    clock: ManualClock


# ---------------------------------------------------------------------------
# Database lifecycle helpers
# ---------------------------------------------------------------------------
async def build_world(use_sqlite: bool = False):  # noqa: ANN201
    """Create the engine, the tables and the wired-up services."""
    settings = get_settings()
    if use_sqlite:
        # One shared connection so every session sees the same in-memory DB.
        engine = build_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    else:
        engine = build_engine(settings.database_url)
    await create_schema(engine)

    clock = ManualClock()
    service = EscrowService.from_settings(settings, build_session_factory(engine), clock=clock)
    world = World(
        service=service,
        sweeper=ExpirySweeper(service, interval_seconds=settings.sweep_interval_seconds),
        arbiter=DisputeArbiter(service, settings.arbiter_address),
        clock=clock,
    )
    logger.info("database.initialized", sqlite=use_sqlite)
    return engine, world


# ---------------------------------------------------------------------------
# Bot Agents
# ---------------------------------------------------------------------------
@dataclass
class BuyerBot:
    """Simulated buyer agent that creates, funds, accepts and disputes."""

    address: str = BUYER

    async def create_and_fund(
        self,
        world: World,
        amount: Decimal,
        description: str,
        deadline_hours: float = 24,
    ) -> str:
        request = CreateEscrowRequest(
            buyer=self.address,
            seller=SELLER,
            amount=amount,
            service_description=description,
            deadline_hours=deadline_hours,
        )
        result = await world.service.create_escrow(**request.to_kwargs())
        escrow_id = result.escrow.id
        logger.info("🔵 BUYER: Escrow created", escrow_id=escrow_id, amount=str(amount))

        funded = await world.service.fund(escrow_id, deposit_proof="0x" + "d" * 64)
        logger.info("🔵 BUYER: Escrow funded", escrow_id=escrow_id, message=funded.message)
        return escrow_id

    async def accept(self, world: World, escrow_id: str) -> None:
        result = await world.service.accept(escrow_id, actor=self.address)
        logger.info("🔵 BUYER: Delivery accepted", escrow_id=escrow_id, message=result.message)
        print_directives(result.directives)

    async def dispute(self, world: World, escrow_id: str, reason: str) -> None:
        result = await world.service.dispute(escrow_id, actor=self.address, reason=reason)
        logger.info("🔵 BUYER: Dispute opened", escrow_id=escrow_id, message=result.message)


@dataclass
class SellerBot:
    """Simulated seller agent that delivers the service."""

    address: str = SELLER

    async def deliver(self, world: World, escrow_id: str, proof: str) -> None:
        result = await world.service.deliver(escrow_id, proof=proof, actor=self.address)
        logger.info("🟢 SELLER: Delivery marked", escrow_id=escrow_id, message=result.message)


# ---------------------------------------------------------------------------
# Print helpers
# ---------------------------------------------------------------------------
def banner(text: str) -> None:
    """Print a prominent banner."""
    width = 70
    print("\n" + "=" * width)
    print(f"  {text}")
    print("=" * width + "\n")


def section(text: str) -> None:
    """Print a section header."""
    print(f"\n--- {text} ---\n")


def print_directives(directives: list) -> None:
    for d in directives:
        print(f"  💸 {d.kind}: {d.amount} USDC -> {d.recipient}")


async def print_audit_trail(world: World, escrow_id: str) -> None:
    """Print the full audit trail and settlements for an escrow."""
    escrow = await world.service.get(escrow_id)
    events = await world.service.get_events(escrow_id)
    settlements = await world.service.get_settlements(escrow_id)
    print(f"\n  Final status: {escrow.status}")
    print("\n  📜 Audit Trail:")
    for evt in events:
        old = evt.old_status or "-"
        print(f"    {evt.sequence}. [{evt.event_type}] {old} → {evt.new_status} (by {evt.actor})")
    if settlements:
        print("\n  💰 Settlements:")
        print_directives(settlements)
    print()


# ===========================================================================
# Scenario 1: Happy Path
# ===========================================================================
async def scenario_1_happy_path(world: World) -> None:
    banner("SCENARIO 1: Happy Path: Deliver and Accept")
    buyer, seller = BuyerBot(), SellerBot()

    section("Step 1: Buyer creates and funds escrow")
    escrow_id = await buyer.create_and_fund(
        world, Decimal("100"), "Translate the README into Spanish."
    )

    section("Step 2: Seller delivers")
    world.clock.advance(hours=2)
    await seller.deliver(world, escrow_id, proof="ipfs://bafy-translation")

    section("Step 3: Buyer accepts")
    world.clock.advance(hours=1)
    await buyer.accept(world, escrow_id)

    await print_audit_trail(world, escrow_id)


# ===========================================================================
# Scenario 2: Timeout Refund
# ===========================================================================
async def scenario_2_timeout_refund(world: World) -> None:
    banner("SCENARIO 2: Timeout Refund: Seller Never Delivers")
    buyer = BuyerBot()

    section("Step 1: Buyer creates and funds escrow (1h deadline)")
    escrow_id = await buyer.create_and_fund(
        world, Decimal("50"), "Summarize 20 research papers.", deadline_hours=1
    )

    section("Step 2: Clock passes the deadline; sweeper runs")
    world.clock.advance(hours=1, seconds=1)
    report = await world.sweeper.run_once()
    print(f"  🧹 Sweep report: {report.to_dict()}")

    await print_audit_trail(world, escrow_id)


# ===========================================================================
# Scenario 3: Dispute, Seller Wins
# ===========================================================================
async def scenario_3_dispute_seller_wins(world: World) -> None:
    banner("SCENARIO 3: Dispute: Arbiter Rules for the Seller")
    buyer, seller = BuyerBot(), SellerBot()

    section("Step 1: Create, fund, deliver")
    escrow_id = await buyer.create_and_fund(world, Decimal("100"), "Design a logo.")
    world.clock.advance(timedelta(hours=3))
    await seller.deliver(world, escrow_id, proof="https://files.example/logo.svg")

    section("Step 2: Buyer disputes inside the acceptance window")
    world.clock.advance(hours=5)
    await buyer.dispute(world, escrow_id, reason="Colors do not match the brief.")

    section("Step 3: Arbiter resolves for the seller")
    ruling = ResolveDisputeRequest(winner="Seller", resolution="Brief did not specify colors.")
    result = await world.arbiter.resolve(
        escrow_id,
        winner=ruling.winner,
        resolution=ruling.resolution,
    )
    print(f"  ⚖️  {result.message}")
    print_directives(result.directives)

    await print_audit_trail(world, escrow_id)


SCENARIOS = {
    1: scenario_1_happy_path,
    2: scenario_2_timeout_refund,
    3: scenario_3_dispute_seller_wins,
}


# ===========================================================================
# Main
# ===========================================================================
async def run(scenario: int = 0, use_sqlite: bool = False) -> None:
    """Run one scenario, or all of them when ``scenario`` is 0."""
    if scenario and scenario not in SCENARIOS:
        print(f"Unknown scenario {scenario}. Available: 1, 2, 3")
        return

    engine, world = await build_world(use_sqlite=use_sqlite)
    try:
        print("\n" + "🚀" * 35)
        print("  CLAWVAULT: ESCROW SIMULATION")
        print(f"  Database: {'SQLite (in-memory)' if use_sqlite else 'PostgreSQL'}")
        print("🚀" * 35 + "\n")

        for num, fn in SCENARIOS.items():
            if scenario in (0, num):
                await fn(world)

        stats = await world.service.stats()
        print("\n" + "=" * 70)
        print(f"  ✅ DONE  {stats.model_dump()}")
        totals = await world.service.settlement_totals()
        print("  Settled: " + ", ".join(f"{kind}={amount}" for kind, amount in totals.items()))
        print("=" * 70 + "\n")
    finally:
        await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="ClawVault Simulation")
    parser.add_argument(
        "--scenario",
        type=int,
        default=0,
        help="Run a specific scenario (1, 2, or 3). Default: run all.",
    )
    parser.add_argument(
        "--sqlite",
        action="store_true",
        help="Use SQLite in-memory instead of PostgreSQL (no Docker needed).",
    )
    args = parser.parse_args()
    asyncio.run(run(scenario=args.scenario, use_sqlite=args.sqlite))
