"""Database infrastructure — engine, ORM models, and repositories."""

from secure_swap.infrastructure.database.engine import (
    close_db,
    get_session_factory,
    init_db,
)
from secure_swap.infrastructure.database.orm_models import (
    Base,
    Trade,
    TradeEvent,
)
from secure_swap.infrastructure.database.repositories import (
    EventRepository,
    TradeRepository,
)

__all__ = [
    "Base",
    "Trade",
    "TradeEvent",
    "TradeRepository",
    "EventRepository",
    "get_session_factory",
    "init_db",
    "close_db",
]
