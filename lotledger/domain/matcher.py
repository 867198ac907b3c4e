"""
FIFO lot matching.
Consumes open buy lots oldest-first to cover a sell and records the matches.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List

from sqlmodel import Session

from lotledger.db.models import LedgerEntry, MatchLink
from lotledger.db.queries import open_lots
from lotledger.domain.errors import BackdatedSell, InsufficientLots

logger = logging.getLogger(__name__)


@dataclass
class MatchResult:
    """Everything one sell consumed."""
    links: List[MatchLink] = field(default_factory=list)
    updated_buys: List[LedgerEntry] = field(default_factory=list)
    realized_gain: Decimal = Decimal("0")

    @property
    def matched_units(self) -> Decimal:
        return sum((link.matched_units for link in self.links), Decimal("0"))


class FifoMatcher:
    """Matches sells against buy lots using FIFO."""

    @staticmethod
    def match(
        session: Session,
        owner_id: str,
        instrument: str,
        sell_units: Decimal,
        sell_price: Decimal,
        sell_order_date: datetime,
        sell_entry_id: str,
    ) -> MatchResult:
        """
        Consume open lots for a sell.

        Lots are planned first and only mutated once the whole sell is
        covered, so a failure leaves every lot untouched. The caller's
        transaction discards anything else.

        Raises:
            BackdatedSell: sell is dated before the oldest open lot
            InsufficientLots: open lots hold fewer units than the sell
        """
        lots = open_lots(session, owner_id, instrument)

        if lots and sell_order_date < lots[0].order_date:
            raise BackdatedSell(
                f"Sell date {sell_order_date:%Y-%m-%d} is before earliest buy date "
                f"({lots[0].order_date:%Y-%m-%d}) with remaining units. "
                "Please correct the transaction date.",
                field="order_date",
                entry_id=lots[0].id,
            )

        # Plan the walk
        plan = []
        remaining_to_sell = sell_units
        for lot in lots:
            if remaining_to_sell == 0:
                break
            consumed = min(lot.remaining_units, remaining_to_sell)
            plan.append((lot, consumed))
            remaining_to_sell -= consumed

        if remaining_to_sell > 0:
            available = sell_units - remaining_to_sell
            logger.warning(
                "Open lots of %s for owner %s cover %s of %s units",
                instrument, owner_id, available, sell_units,
            )
            raise InsufficientLots(
                f"Not enough buy units available to match the sell order (FIFO): "
                f"{available} open, {sell_units} requested.",
                field="units",
                entry_id=sell_entry_id,
            )

        # Apply
        result = MatchResult()
        for lot, consumed in plan:
            gain_per_unit = sell_price - lot.unit_price
            gain_total = gain_per_unit * consumed

            lot.remaining_units -= consumed
            lot.sold_units += consumed
            lot.realized_gain += gain_total
            session.add(lot)

            link = MatchLink(
                sell_id=sell_entry_id,
                buy_id=lot.id,
                matched_units=consumed,
                gain_per_unit=gain_per_unit,
                gain_total=gain_total,
            )
            session.add(link)

            result.links.append(link)
            result.updated_buys.append(lot)
            result.realized_gain += gain_total

        if result.matched_units != sell_units:
            # Unreachable unless the plan above is wrong
            raise InsufficientLots(
                f"Matched {result.matched_units} of {sell_units} units",
                entry_id=sell_entry_id,
            )

        session.flush()
        return result
