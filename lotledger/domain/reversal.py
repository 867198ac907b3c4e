"""Reversal of FIFO matches when a sell is deleted."""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import List

from sqlmodel import Session

from lotledger.db.models import LedgerEntry
from lotledger.db.queries import links_for_sell
from lotledger.domain.errors import DataIntegrity

logger = logging.getLogger(__name__)


@dataclass
class ReversedLot:
    """A buy lot after restoration, with its remaining units before it."""
    entry: LedgerEntry
    remaining_units_before: Decimal

    @property
    def reopened(self) -> bool:
        """True when the lot was fully closed and is open again."""
        return self.remaining_units_before == 0 and self.entry.remaining_units > 0


class ReversalEngine:
    """Exact inverse of FifoMatcher.match."""

    @staticmethod
    def reverse(session: Session, sell: LedgerEntry) -> List[ReversedLot]:
        """
        Restore every lot a sell consumed and drop its match links.

        Gains recorded on the links are discarded with them, never recomputed.

        Raises:
            DataIntegrity: a linked buy is missing or would overflow its units
        """
        reversed_lots: List[ReversedLot] = []
        links = links_for_sell(session, sell.id)

        buys = []
        for link in links:
            buy = session.get(LedgerEntry, link.buy_id)
            if buy is None:
                logger.error(
                    "Sell %s links missing buy %s (%s units); ledger is corrupt",
                    sell.id, link.buy_id, link.matched_units,
                )
                raise DataIntegrity(
                    f"Buy {link.buy_id} linked from sell {sell.id} not found",
                    entry_id=link.buy_id,
                )
            buys.append(buy)

        matched = sum((link.matched_units for link in links), Decimal("0"))
        if matched != sell.units:
            logger.error(
                "Sell %s has %s units but its links match %s",
                sell.id, sell.units, matched,
            )
            raise DataIntegrity(
                f"Links of sell {sell.id} match {matched} of {sell.units} units",
                entry_id=sell.id,
            )

        for link, buy in zip(links, buys):
            remaining_before = buy.remaining_units
            restored = remaining_before + link.matched_units
            if restored > buy.units:
                logger.error(
                    "Reversing sell %s would give buy %s %s remaining of %s units",
                    sell.id, buy.id, restored, buy.units,
                )
                raise DataIntegrity(
                    f"Buy {buy.id} would exceed its units after reversal",
                    entry_id=buy.id,
                )

            buy.remaining_units = restored
            buy.sold_units -= link.matched_units
            buy.realized_gain -= link.gain_total
            session.add(buy)
            session.delete(link)

            reversed_lots.append(ReversedLot(entry=buy, remaining_units_before=remaining_before))

        session.flush()
        return reversed_lots
