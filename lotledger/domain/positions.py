"""
Position aggregate updates.
Keeps held units and weighted average cost in step with the ledger.
"""

import logging
from decimal import Decimal
from typing import Optional

from sqlmodel import Session

from lotledger.db.models import QUANTUM, LedgerEntry, Position, utcnow
from lotledger.db.queries import open_lots
from lotledger.domain.errors import DataIntegrity, InsufficientHoldings

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class PositionUpdater:
    """Applies buys, sells and their reversals to a Position row."""

    @staticmethod
    def apply_buy(
        session: Session,
        position: Optional[Position],
        owner_id: str,
        instrument: str,
        units: Decimal,
        price: Decimal,
    ) -> Position:
        """
        Fold a buy into the position, creating it on the first buy.

        new_avg = (held * avg + units * price) / (held + units)
        """
        if position is None:
            position = Position(
                owner_id=owner_id,
                instrument=instrument,
                held_units=units,
                average_cost=price,
            )
            session.add(position)
            session.flush()
            logger.info("Opened position %s for owner %s", instrument, owner_id)
            return position

        old_held = position.held_units
        old_avg = position.average_cost
        total_units = old_held + units

        position.average_cost = ((old_held * old_avg + units * price) / total_units).quantize(QUANTUM)
        position.held_units = total_units
        position.updated_at = utcnow()
        session.add(position)
        return position

    @staticmethod
    def ensure_can_sell(position: Optional[Position], instrument: str, units: Decimal) -> None:
        """Raise InsufficientHoldings unless the position holds at least ``units``."""
        if position is None:
            raise InsufficientHoldings(
                f"Cannot sell {instrument}. You do not currently hold this instrument.",
                field="instrument",
            )
        if position.held_units < units:
            raise InsufficientHoldings(
                f"Cannot sell {units} units of {instrument}. "
                f"You only hold {position.held_units} units.",
                field="units",
            )

    @staticmethod
    def apply_sell(session: Session, position: Optional[Position], instrument: str, units: Decimal) -> Position:
        """Remove sold units. Average cost is untouched unless the position closes."""
        PositionUpdater.ensure_can_sell(position, instrument, units)

        position.held_units = position.held_units - units
        if position.held_units == 0:
            position.average_cost = ZERO
        position.updated_at = utcnow()
        session.add(position)
        return position

    @staticmethod
    def apply_buy_reversal(session: Session, position: Optional[Position], buy: LedgerEntry) -> Position:
        """Take a deleted buy's contribution back out of the weighted average."""
        if position is None:
            logger.error(
                "Position %s missing for owner %s while deleting buy %s",
                buy.instrument, buy.owner_id, buy.id,
            )
            raise DataIntegrity(
                f"No position for {buy.instrument} while deleting buy {buy.id}",
                entry_id=buy.id,
            )

        new_held = position.held_units - buy.units
        if new_held < 0:
            logger.error(
                "Deleting buy %s would leave %s held units of %s for owner %s",
                buy.id, new_held, buy.instrument, buy.owner_id,
            )
            raise DataIntegrity(
                f"Deleting buy {buy.id} would make held units negative",
                entry_id=buy.id,
            )

        if new_held == 0:
            position.average_cost = ZERO
        else:
            remaining_cost = position.held_units * position.average_cost - buy.units * buy.unit_price
            position.average_cost = max((remaining_cost / new_held).quantize(QUANTUM), ZERO)

        position.held_units = new_held
        position.updated_at = utcnow()
        session.add(position)
        return position

    @staticmethod
    def apply_sell_reversal(session: Session, position: Optional[Position], sell: LedgerEntry) -> Position:
        """
        Give a deleted sell's units back to the position.

        Call after the lots were restored: when the position reopens from
        zero its average cost is rebuilt from the reopened lots.
        """
        if position is None:
            # Row was removed while flat; bring it back
            position = Position(owner_id=sell.owner_id, instrument=sell.instrument)
            session.add(position)

        was_flat = position.held_units == 0
        position.held_units = position.held_units + sell.units

        if was_flat and position.held_units > 0:
            position.average_cost = PositionUpdater.average_cost_of_open_lots(
                session, sell.owner_id, sell.instrument
            )

        position.updated_at = utcnow()
        session.add(position)
        session.flush()
        return position

    @staticmethod
    def average_cost_of_open_lots(session: Session, owner_id: str, instrument: str) -> Decimal:
        lots = open_lots(session, owner_id, instrument)
        units = sum((lot.remaining_units for lot in lots), ZERO)
        if units == 0:
            return ZERO
        cost = sum((lot.remaining_units * lot.unit_price for lot in lots), ZERO)
        return (cost / units).quantize(QUANTUM)
