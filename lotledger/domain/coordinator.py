"""
Ledger coordinator.
Runs every buy, sell and delete as one ordered, atomic unit of work:
validate -> lock position -> mutate position -> match/reverse lots -> persist.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from lotledger.db.models import BUY, SELL, LedgerEntry, MatchLink, Position, utcnow
from lotledger.db.queries import links_for_buy, links_for_sell, lock_position, next_seq
from lotledger.db.session import atomic
from lotledger.domain.errors import Conflict, DataIntegrity, LedgerError, NotFound, ValidationError
from lotledger.domain.matcher import FifoMatcher
from lotledger.domain.positions import PositionUpdater
from lotledger.domain.reversal import ReversalEngine, ReversedLot
from lotledger.domain.validation import normalize_instrument, validate_order, validate_setting
from lotledger.io.quotes import QuoteNotFound, QuoteProvider, WrongInstrumentType

logger = logging.getLogger(__name__)


@dataclass
class SellResult:
    sell_entry: LedgerEntry
    affected_buy_entries: List[LedgerEntry]
    position: Position


@dataclass
class DeleteResult:
    position: Optional[Position]
    affected_entries: List[ReversedLot] = field(default_factory=list)


class LedgerCoordinator:
    """
    Entry point for every ledger mutation of one session.

    Owner, timezone and clock are passed in explicitly; nothing is read
    from global state while handling a request. Failed operations are
    rolled back and never retried here.
    """

    def __init__(
        self,
        session: Session,
        report_timezone: str = "US/Eastern",
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session = session
        self.report_timezone = report_timezone
        self.clock = clock

    # ------------------------------------------------------------------
    # Mutations

    def create_buy(self, owner_id: str, instrument, units, price, fee=0, order_date=None) -> LedgerEntry:
        order = validate_order(
            instrument, units, price, fee, order_date,
            report_timezone=self.report_timezone, now=self.clock(),
        )

        try:
            with atomic(self.session):
                position = lock_position(self.session, owner_id, order.instrument)
                try:
                    PositionUpdater.apply_buy(
                        self.session, position, owner_id, order.instrument, order.units, order.price
                    )
                except IntegrityError:
                    # Concurrent first buy created the position first
                    raise Conflict(
                        f"Position {order.instrument} was created concurrently; retry the request",
                        field="instrument",
                    )

                entry = LedgerEntry(
                    owner_id=owner_id,
                    instrument=order.instrument,
                    side=BUY,
                    order_date=order.order_date,
                    units=order.units,
                    unit_price=order.price,
                    fee=order.fee,
                    remaining_units=order.units,
                    seq=next_seq(self.session, owner_id, order.instrument),
                )
                self.session.add(entry)
                self.session.flush()
        except LedgerError as exc:
            self._log_rejection("buy", owner_id, order.instrument, exc)
            raise

        logger.info(
            "Recorded buy %s: %s %s @ %s for owner %s",
            entry.id, order.units, order.instrument, order.price, owner_id,
        )
        return entry

    def create_sell(self, owner_id: str, instrument, units, price, fee=0, order_date=None) -> SellResult:
        order = validate_order(
            instrument, units, price, fee, order_date,
            report_timezone=self.report_timezone, now=self.clock(),
        )

        try:
            with atomic(self.session):
                position = lock_position(self.session, owner_id, order.instrument)
                PositionUpdater.ensure_can_sell(position, order.instrument, order.units)

                sell = LedgerEntry(
                    owner_id=owner_id,
                    instrument=order.instrument,
                    side=SELL,
                    order_date=order.order_date,
                    units=order.units,
                    unit_price=order.price,
                    fee=order.fee,
                    seq=next_seq(self.session, owner_id, order.instrument),
                )
                self.session.add(sell)
                self.session.flush()

                match = FifoMatcher.match(
                    self.session,
                    owner_id=owner_id,
                    instrument=order.instrument,
                    sell_units=order.units,
                    sell_price=order.price,
                    sell_order_date=order.order_date,
                    sell_entry_id=sell.id,
                )
                sell.realized_gain = match.realized_gain
                self.session.add(sell)

                position = PositionUpdater.apply_sell(self.session, position, order.instrument, order.units)
                self.session.flush()
        except LedgerError as exc:
            self._log_rejection("sell", owner_id, order.instrument, exc)
            raise

        logger.info(
            "Recorded sell %s: %s %s @ %s for owner %s across %d lot(s), realized %s",
            sell.id, order.units, order.instrument, order.price, owner_id,
            len(match.links), match.realized_gain,
        )
        return SellResult(sell_entry=sell, affected_buy_entries=match.updated_buys, position=position)

    def delete_entry(self, owner_id: str, entry_id: str) -> DeleteResult:
        """
        Delete a ledger entry.

        Sells are reversed lot by lot. Buys can only go while still fully
        open; delete their sells first.
        """
        try:
            with atomic(self.session):
                entry = self._owned_entry(owner_id, entry_id)
                position = lock_position(self.session, owner_id, entry.instrument)

                if entry.is_buy:
                    if entry.sold_units > 0 or entry.remaining_units != entry.units or \
                            links_for_buy(self.session, entry.id):
                        raise Conflict(
                            f"Buy {entry.id} has matched sells; delete those sells first",
                            entry_id=entry.id,
                        )
                    position = PositionUpdater.apply_buy_reversal(self.session, position, entry)
                    affected: List[ReversedLot] = []
                else:
                    affected = ReversalEngine.reverse(self.session, entry)
                    position = PositionUpdater.apply_sell_reversal(self.session, position, entry)

                side, instrument = entry.side, entry.instrument
                self.session.delete(entry)
                self.session.flush()
        except LedgerError as exc:
            self._log_rejection("delete", owner_id, entry_id, exc)
            raise

        logger.info(
            "Deleted %s %s (%s) for owner %s, %d lot(s) restored",
            side, entry_id, instrument, owner_id, len(affected),
        )
        return DeleteResult(position=position, affected_entries=affected)

    def update_position_settings(
        self,
        owner_id: str,
        instrument,
        target_allocation=None,
        management_fee=None,
    ) -> Position:
        """Edit display metadata of a position; ledger figures are untouched."""
        ticker = normalize_instrument(instrument)
        target = validate_setting("target_allocation", target_allocation) \
            if target_allocation is not None else None
        fee = validate_setting("management_fee", management_fee) \
            if management_fee is not None else None

        with atomic(self.session):
            position = lock_position(self.session, owner_id, ticker)
            if position is None:
                raise NotFound(f"No position {ticker} for this owner", field="instrument")
            if target is not None:
                position.target_allocation = target
            if fee is not None:
                position.management_fee = fee
            position.updated_at = utcnow()
            self.session.add(position)

        return position

    def track_instrument(self, owner_id: str, instrument, quote_provider: QuoteProvider) -> Position:
        """
        Start tracking an instrument before its first buy.

        The quote provider only confirms the symbol is real and of the
        expected type; the new position holds nothing.
        """
        ticker = normalize_instrument(instrument) if isinstance(instrument, str) else ""
        if not ticker:
            raise ValidationError({"instrument": ["Instrument is required"]})

        try:
            quote_provider.validate_instrument(ticker)
        except (QuoteNotFound, WrongInstrumentType) as e:
            logger.warning("Rejected tracking of %s for owner %s: %s", ticker, owner_id, e)
            raise ValidationError({"instrument": [str(e)]}) from e

        try:
            with atomic(self.session):
                if lock_position(self.session, owner_id, ticker) is not None:
                    raise Conflict(
                        f"Instrument {ticker} is already tracked for this owner.",
                        field="instrument",
                    )
                position = Position(owner_id=owner_id, instrument=ticker)
                self.session.add(position)
                self.session.flush()
        except IntegrityError:
            raise Conflict(f"Instrument {ticker} is already tracked for this owner.", field="instrument")

        logger.info("Tracking %s for owner %s", ticker, owner_id)
        return position

    def delete_position(self, owner_id: str, instrument) -> None:
        """Stop tracking an instrument. Only allowed once nothing is held."""
        ticker = normalize_instrument(instrument)

        with atomic(self.session):
            position = lock_position(self.session, owner_id, ticker)
            if position is None:
                raise NotFound(f"No position {ticker} for this owner", field="instrument")
            if position.held_units > 0:
                raise Conflict(
                    f"Cannot delete {ticker} because held units are greater than 0.",
                    field="instrument",
                )
            self.session.delete(position)

        logger.info("Deleted position %s for owner %s", ticker, owner_id)

    # ------------------------------------------------------------------
    # Reads

    def get_position(self, owner_id: str, instrument) -> Optional[Position]:
        stmt = select(Position).where(
            Position.owner_id == owner_id,
            Position.instrument == normalize_instrument(instrument),
        )
        return self.session.exec(stmt).first()

    def list_positions(self, owner_id: str) -> List[Position]:
        stmt = select(Position).where(Position.owner_id == owner_id).order_by(Position.instrument)
        return list(self.session.exec(stmt).all())

    def list_entries(self, owner_id: str, instrument=None) -> List[LedgerEntry]:
        stmt = select(LedgerEntry).where(LedgerEntry.owner_id == owner_id)
        if instrument is not None:
            stmt = stmt.where(LedgerEntry.instrument == normalize_instrument(instrument))
        stmt = stmt.order_by(LedgerEntry.instrument, LedgerEntry.order_date, LedgerEntry.seq)
        return list(self.session.exec(stmt).all())

    def get_links(self, owner_id: str, entry_id: str) -> List[MatchLink]:
        """Match links of a buy or a sell, in FIFO order."""
        entry = self._owned_entry(owner_id, entry_id)
        if entry.is_buy:
            return links_for_buy(self.session, entry.id)
        return links_for_sell(self.session, entry.id)

    # ------------------------------------------------------------------

    def _owned_entry(self, owner_id: str, entry_id: str) -> LedgerEntry:
        entry = self.session.get(LedgerEntry, entry_id)
        # Entries of other owners are indistinguishable from missing ones
        if entry is None or entry.owner_id != owner_id:
            raise NotFound(f"Ledger entry {entry_id} not found", entry_id=entry_id)
        return entry

    @staticmethod
    def _log_rejection(action: str, owner_id: str, subject: str, exc: LedgerError) -> None:
        if isinstance(exc, DataIntegrity):
            # Already logged at ERROR where it was detected
            return
        logger.warning("Rejected %s of %s for owner %s: %s (%s)", action, subject, owner_id, exc.message, exc.code)
