"""Shared select statements over positions, ledger entries and match links."""

from typing import List, Optional

from sqlalchemy import func
from sqlmodel import Session, select

from lotledger.db.models import BUY, LedgerEntry, MatchLink, Position


def lock_position(session: Session, owner_id: str, instrument: str) -> Optional[Position]:
    """
    Load the position row for update.

    Every mutation of an (owner, instrument) pair goes through this lock
    first, which serializes writers on databases with row locking.
    """
    stmt = (
        select(Position)
        .where(Position.owner_id == owner_id, Position.instrument == instrument)
        .with_for_update()
    )
    return session.exec(stmt).first()


def open_lots(session: Session, owner_id: str, instrument: str) -> List[LedgerEntry]:
    """Buy entries with units left, oldest first (order date, then insertion)."""
    stmt = (
        select(LedgerEntry)
        .where(
            LedgerEntry.owner_id == owner_id,
            LedgerEntry.instrument == instrument,
            LedgerEntry.side == BUY,
            LedgerEntry.remaining_units > 0,
        )
        .order_by(LedgerEntry.order_date, LedgerEntry.seq)
        .with_for_update()
    )
    return list(session.exec(stmt).all())


def next_seq(session: Session, owner_id: str, instrument: str) -> int:
    stmt = select(func.max(LedgerEntry.seq)).where(
        LedgerEntry.owner_id == owner_id,
        LedgerEntry.instrument == instrument,
    )
    current = session.exec(stmt).one()
    return (current or 0) + 1


def links_for_sell(session: Session, sell_id: str) -> List[MatchLink]:
    """
    Links of a sell in the FIFO order their lots were consumed.

    Outer join: a link whose buy row is gone is still returned.
    """
    stmt = (
        select(MatchLink)
        .join(LedgerEntry, LedgerEntry.id == MatchLink.buy_id, isouter=True)
        .where(MatchLink.sell_id == sell_id)
        .order_by(LedgerEntry.order_date, LedgerEntry.seq)
    )
    return list(session.exec(stmt).all())


def links_for_buy(session: Session, buy_id: str) -> List[MatchLink]:
    stmt = (
        select(MatchLink)
        .join(LedgerEntry, LedgerEntry.id == MatchLink.sell_id)
        .where(MatchLink.buy_id == buy_id)
        .order_by(LedgerEntry.order_date, LedgerEntry.seq)
    )
    return list(session.exec(stmt).all())
