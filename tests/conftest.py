"""Shared test fixtures for the ClawVault test suite.

Provides:
    - A manual clock pinned to a fixed instant
    - A lifecycle engine with the default 1% fee
    - A throwaway SQLite database (file in tmp_path) per test
    - An EscrowService wired to all of the above
    - Helpers that walk an escrow to a given status
"""

from __future__ import annotations

from decimal import Decimal

import pytest
import pytest_asyncio

from clawvault.domain.clock import ManualClock
from clawvault.domain.lifecycle import LifecycleEngine
from clawvault.infrastructure.database.engine import (
    build_engine,
    build_session_factory,
    create_schema,
)
from clawvault.services.escrow_service import EscrowService
from tests.parties import ARBITER, BUYER, FEE_RECIPIENT, SELLER, T0


# ---------------------------------------------------------------------------
# Domain Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(T0)


@pytest.fixture
def lifecycle() -> LifecycleEngine:
    return LifecycleEngine(fee_bps=100, fee_recipient=FEE_RECIPIENT, arbiter_address=ARBITER)


@pytest.fixture
def sample_escrow_data() -> dict:
    """Return valid create_escrow keyword arguments."""
    return {
        "buyer": BUYER,
        "seller": SELLER,
        "amount": Decimal("100"),
        "description": "Translate the project README into Spanish",
        "criteria": "Native-level fluency, all sections translated",
        "deadline_hours": 24,
        "acceptance_window_hours": 24,
    }


# ---------------------------------------------------------------------------
# Database Fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def session_factory(tmp_path):  # noqa: ANN001, ANN201
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'clawvault.db'}")
    await create_schema(engine)
    yield build_session_factory(engine)
    await engine.dispose()


@pytest_asyncio.fixture
async def service(session_factory, lifecycle, clock) -> EscrowService:  # noqa: ANN001
    return EscrowService(session_factory, lifecycle, clock=clock)


# ---------------------------------------------------------------------------
# Lifecycle helpers
# ---------------------------------------------------------------------------


@pytest.fixture
def make_escrow(service, sample_escrow_data):  # noqa: ANN001, ANN201
    """Return an async helper that creates an escrow and walks it to ``status``."""

    async def _make(status: str = "CREATED", **overrides) -> str:  # noqa: ANN003
        data = {**sample_escrow_data, **overrides}
        result = await service.create_escrow(**data)
        escrow_id = result.escrow.id
        if status == "CREATED":
            return escrow_id
        await service.fund(escrow_id, deposit_proof="0x" + "d" * 64)
        if status == "FUNDED":
            return escrow_id
        await service.deliver(escrow_id, proof="ipfs://bafy-delivery")
        if status == "DELIVERED":
            return escrow_id
        await service.dispute(escrow_id, actor=data["buyer"], reason="Incomplete translation")
        if status == "DISPUTED":
            return escrow_id
        raise ValueError(f"make_escrow cannot reach {status}")

    return _make
