"""Database infrastructure: engine, ORM models, and repositories."""

from clawvault.infrastructure.database.engine import (
    build_engine,
    build_session_factory,
    close_db,
    create_schema,
    get_session_factory,
    init_db,
    unit_of_work,
)
from clawvault.infrastructure.database.orm_models import (
    Base,
    Escrow,
    EscrowEvent,
    Settlement,
)
from clawvault.infrastructure.database.repositories import (
    EscrowRepository,
    EventRepository,
    SettlementRepository,
)

__all__ = [
    "Base",
    "Escrow",
    "EscrowEvent",
    "Settlement",
    "EscrowRepository",
    "EventRepository",
    "SettlementRepository",
    "build_engine",
    "build_session_factory",
    "close_db",
    "create_schema",
    "get_session_factory",
    "init_db",
    "unit_of_work",
]
