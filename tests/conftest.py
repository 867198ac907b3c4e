"""Test configuration and fixtures."""

from datetime import datetime
from decimal import Decimal

import pytest
from sqlmodel import Session, create_engine, SQLModel, select
from sqlmodel.pool import StaticPool

from lotledger.db.models import BUY, LedgerEntry, Position
from lotledger.domain.coordinator import LedgerCoordinator
from lotledger.io.quotes import Quote, QuoteNotFound, WrongInstrumentType

OWNER = "auth0|owner-1"
NOW = datetime(2025, 6, 30, 12, 0, 0)


@pytest.fixture(name="session")
def session_fixture():
    """Create in-memory SQLite test database."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        yield session


@pytest.fixture(name="ledger")
def ledger_fixture(session: Session):
    """Coordinator with UTC dates and a fixed clock."""
    return LedgerCoordinator(session, report_timezone="UTC", clock=lambda: NOW)


class FakeQuoteProvider:
    """In-memory quotes keyed by symbol."""

    def __init__(self, quotes, quote_types=None):
        self.quotes = quotes
        self.quote_types = quote_types or {}

    def get_quotes(self, symbols):
        return {s: self.quotes[s] for s in symbols if s in self.quotes}

    def validate_instrument(self, symbol):
        if symbol not in self.quotes:
            raise QuoteNotFound(f"No data found for ticker: {symbol}")
        if self.quote_types.get(symbol, "ETF") != "ETF":
            raise WrongInstrumentType(f"{symbol} not an ETF")
        return self.quotes[symbol]


@pytest.fixture(name="quotes")
def quotes_fixture():
    return FakeQuoteProvider(
        {
            "VAS.AX": Quote("VAS.AX", "Vanguard Australian Shares Index ETF", "AUD", 100.0),
            "IVV.AX": Quote("IVV.AX", "iShares S&P 500 ETF", "AUD", 50.0),
            "BHP.AX": Quote("BHP.AX", "BHP Group Ltd", "AUD", 45.0),
        },
        quote_types={"BHP.AX": "EQUITY"},
    )


def assert_position_consistent(session: Session, owner_id: str, instrument: str) -> None:
    """held_units == sum of remaining lot units, and every lot stays within bounds."""
    buys = session.exec(
        select(LedgerEntry).where(
            LedgerEntry.owner_id == owner_id,
            LedgerEntry.instrument == instrument,
            LedgerEntry.side == BUY,
        )
    ).all()
    position = session.exec(
        select(Position).where(Position.owner_id == owner_id, Position.instrument == instrument)
    ).first()

    remaining = sum((b.remaining_units for b in buys), Decimal("0"))
    held = position.held_units if position is not None else Decimal("0")
    assert held == remaining

    for b in buys:
        assert 0 <= b.remaining_units <= b.units
        assert b.sold_units == b.units - b.remaining_units

    if held == 0 and position is not None:
        assert position.average_cost == 0
