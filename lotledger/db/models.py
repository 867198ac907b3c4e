"""
SQLModel definitions for the FIFO lot ledger.
Designed for SQLite locally, PostgreSQL in production.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
import uuid

from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field

BUY = "buy"
SELL = "sell"

# Lot states of a buy entry
LOT_OPEN = "open"
LOT_PARTIALLY_MATCHED = "partially_matched"
LOT_FULLY_MATCHED = "fully_matched"

# NUMERIC(20, 8) for every quantity and money column
DECIMAL_PLACES = 8
MONEY = dict(max_digits=20, decimal_places=DECIMAL_PLACES)
QUANTUM = Decimal("0.00000001")


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every datetime column is stored in."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


class Position(SQLModel, table=True):
    """Current holding (units + average cost) of one instrument for one owner."""
    __tablename__ = "position"

    id: str = Field(default_factory=new_id, primary_key=True)
    owner_id: str = Field(index=True)
    instrument: str = Field(index=True)  # normalized ticker, e.g. VAS.AX

    held_units: Decimal = Field(default=Decimal("0"), **MONEY)
    average_cost: Decimal = Field(default=Decimal("0"), **MONEY)

    # Display metadata, never used by ledger arithmetic
    target_allocation: Decimal = Field(default=Decimal("0"), **MONEY)
    management_fee: Decimal = Field(default=Decimal("0"), **MONEY)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    __table_args__ = (
        UniqueConstraint("owner_id", "instrument", name="uq_owner_instrument"),
    )


class LedgerEntry(SQLModel, table=True):
    """A single buy or sell order. Buy entries double as FIFO lots."""
    __tablename__ = "ledger_entry"

    id: str = Field(default_factory=new_id, primary_key=True)
    owner_id: str = Field(index=True)
    instrument: str = Field(index=True)

    side: str = Field(index=True)  # buy or sell
    order_date: datetime = Field(index=True)  # UTC
    units: Decimal = Field(**MONEY)
    unit_price: Decimal = Field(**MONEY)
    fee: Decimal = Field(default=Decimal("0"), **MONEY)

    # Insertion order within (owner_id, instrument); FIFO tie-breaker
    seq: int = Field(default=0, index=True)

    # Lot bookkeeping (buy entries only)
    remaining_units: Decimal = Field(default=Decimal("0"), **MONEY)
    sold_units: Decimal = Field(default=Decimal("0"), **MONEY)

    # Buy: gain accumulated from its matches. Sell: total gain of the sale.
    realized_gain: Decimal = Field(default=Decimal("0"), **MONEY)

    created_at: datetime = Field(default_factory=utcnow)

    @property
    def is_buy(self) -> bool:
        return self.side == BUY

    @property
    def order_value(self) -> Decimal:
        return self.units * self.unit_price

    @property
    def lot_state(self) -> Optional[str]:
        """Open / partially matched / fully matched; None for sells."""
        if not self.is_buy:
            return None
        if self.remaining_units == self.units:
            return LOT_OPEN
        if self.remaining_units == 0:
            return LOT_FULLY_MATCHED
        return LOT_PARTIALLY_MATCHED


class MatchLink(SQLModel, table=True):
    """Units of one buy lot consumed by one sell, with the gain they realized."""
    __tablename__ = "match_link"

    id: str = Field(default_factory=new_id, primary_key=True)
    sell_id: str = Field(foreign_key="ledger_entry.id", index=True)
    buy_id: str = Field(foreign_key="ledger_entry.id", index=True)

    matched_units: Decimal = Field(**MONEY)
    gain_per_unit: Decimal = Field(**MONEY)
    gain_total: Decimal = Field(**MONEY)

    __table_args__ = (
        UniqueConstraint("sell_id", "buy_id", name="uq_sell_buy"),
    )


class CashBalance(SQLModel, table=True):
    """Cash held by an owner at one bank, in one currency."""
    __tablename__ = "cash_balance"

    id: str = Field(default_factory=new_id, primary_key=True)
    owner_id: str = Field(index=True)
    bank: str
    currency: str = Field(index=True)  # ISO 4217 code, e.g. AUD
    balance: Decimal = Field(default=Decimal("0"), **MONEY)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
