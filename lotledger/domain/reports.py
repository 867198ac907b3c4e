"""Holdings and realized gain reports."""

import logging
from typing import Optional

import pandas as pd
from sqlmodel import Session, select

from lotledger.db.models import BUY, SELL, CashBalance, LedgerEntry, Position
from lotledger.domain.validation import normalize_instrument
from lotledger.io.order_dates import format_order_date
from lotledger.io.quotes import QuoteProvider

logger = logging.getLogger(__name__)

HOLDINGS_COLUMNS = [
    "instrument", "held_units", "average_cost", "cost_basis",
    "display_name", "currency", "live_price", "live_value", "unrealized_gain",
    "current_allocation", "target_allocation", "management_fee",
]

ENTRY_COLUMNS = [
    "id", "instrument", "side", "order_date", "units", "unit_price", "fee",
    "order_value", "remaining_units", "sold_units", "realized_gain", "lot_state",
]

GAINS_COLUMNS = ["date", "instrument", "units_sold", "realized_gain", "cumulative_gain"]

CASH_COLUMNS = ["id", "bank", "currency", "balance"]

TOTAL_BANK = "Total Balance"


class PortfolioReport:
    """Builds DataFrames over an owner's positions and ledger."""

    @staticmethod
    def holdings_frame(
        session: Session,
        owner_id: str,
        quote_provider: Optional[QuoteProvider] = None,
    ) -> pd.DataFrame:
        """
        One row per position, enriched with live quotes when a provider is given.

        Instruments the provider cannot quote keep None in the live columns.
        current_allocation is each row's share (%) of the total live value.
        """
        stmt = select(Position).where(Position.owner_id == owner_id).order_by(Position.instrument)
        positions = session.exec(stmt).all()

        if not positions:
            return pd.DataFrame(columns=HOLDINGS_COLUMNS)

        quotes = {}
        if quote_provider is not None:
            quotes = quote_provider.get_quotes([p.instrument for p in positions])

        rows = []
        for p in positions:
            held = float(p.held_units)
            average_cost = float(p.average_cost)
            quote = quotes.get(p.instrument)
            if quote is None and quote_provider is not None:
                logger.warning("No quote data found for ticker: %s", p.instrument)

            live_price = quote.price if quote else None
            live_value = live_price * held if live_price is not None else None

            rows.append(
                {
                    "instrument": p.instrument,
                    "held_units": held,
                    "average_cost": average_cost,
                    "cost_basis": held * average_cost,
                    "display_name": quote.display_name if quote else None,
                    "currency": quote.currency if quote else None,
                    "live_price": live_price,
                    "live_value": live_value,
                    "unrealized_gain": live_value - held * average_cost if live_value is not None else None,
                    "current_allocation": None,
                    "target_allocation": float(p.target_allocation),
                    "management_fee": float(p.management_fee),
                }
            )

        df = pd.DataFrame(rows, columns=HOLDINGS_COLUMNS)

        total_value = df["live_value"].sum(skipna=True)
        if total_value > 0:
            df["current_allocation"] = df["live_value"] / total_value * 100

        return df

    @staticmethod
    def entries_frame(
        session: Session,
        owner_id: str,
        instrument: Optional[str] = None,
        report_timezone: str = "US/Eastern",
    ) -> pd.DataFrame:
        """Ledger rows with order dates as YYYY-MM-DD in the report timezone."""
        stmt = select(LedgerEntry).where(LedgerEntry.owner_id == owner_id)
        if instrument is not None:
            stmt = stmt.where(LedgerEntry.instrument == normalize_instrument(instrument))
        stmt = stmt.order_by(LedgerEntry.instrument, LedgerEntry.order_date, LedgerEntry.seq)
        entries = session.exec(stmt).all()

        if not entries:
            return pd.DataFrame(columns=ENTRY_COLUMNS)

        rows = []
        for e in entries:
            rows.append(
                {
                    "id": e.id,
                    "instrument": e.instrument,
                    "side": e.side,
                    "order_date": format_order_date(e.order_date, report_timezone),
                    "units": float(e.units),
                    "unit_price": float(e.unit_price),
                    "fee": float(e.fee),
                    "order_value": float(e.order_value),
                    "remaining_units": float(e.remaining_units) if e.side == BUY else None,
                    "sold_units": float(e.sold_units) if e.side == BUY else None,
                    "realized_gain": float(e.realized_gain),
                    "lot_state": e.lot_state,
                }
            )

        return pd.DataFrame(rows, columns=ENTRY_COLUMNS)

    @staticmethod
    def realized_gains_frame(
        session: Session,
        owner_id: str,
        report_timezone: str = "US/Eastern",
    ) -> pd.DataFrame:
        """Realized gain per sell day and instrument, with a running total."""
        stmt = (
            select(LedgerEntry)
            .where(LedgerEntry.owner_id == owner_id, LedgerEntry.side == SELL)
            .order_by(LedgerEntry.order_date, LedgerEntry.seq)
        )
        sells = session.exec(stmt).all()

        if not sells:
            return pd.DataFrame(columns=GAINS_COLUMNS)

        df = pd.DataFrame(
            [
                {
                    "date": format_order_date(s.order_date, report_timezone),
                    "instrument": s.instrument,
                    "units_sold": float(s.units),
                    "realized_gain": float(s.realized_gain),
                }
                for s in sells
            ]
        )

        df = (
            df.groupby(["date", "instrument"], as_index=False)[["units_sold", "realized_gain"]]
            .sum()
            .sort_values(["date", "instrument"])
            .reset_index(drop=True)
        )
        df["cumulative_gain"] = df["realized_gain"].cumsum()
        return df[GAINS_COLUMNS]

    @staticmethod
    def cash_frame(session: Session, owner_id: str, with_totals: bool = True) -> pd.DataFrame:
        """
        Cash balances, one row each, ordered by currency then bank.

        With ``with_totals`` a "Total Balance" row (id None) follows each
        currency's rows. Currencies are never summed together.
        """
        stmt = (
            select(CashBalance)
            .where(CashBalance.owner_id == owner_id)
            .order_by(CashBalance.currency, CashBalance.bank, CashBalance.created_at)
        )
        balances = session.exec(stmt).all()

        if not balances:
            return pd.DataFrame(columns=CASH_COLUMNS)

        df = pd.DataFrame(
            [
                {"id": c.id, "bank": c.bank, "currency": c.currency, "balance": float(c.balance)}
                for c in balances
            ],
            columns=CASH_COLUMNS,
        )
        if not with_totals:
            return df

        frames = []
        for currency, group in df.groupby("currency", sort=True):
            total = pd.DataFrame(
                [{"id": None, "bank": TOTAL_BANK, "currency": currency, "balance": group["balance"].sum()}],
                columns=CASH_COLUMNS,
            )
            frames.extend([group, total])
        return pd.concat(frames, ignore_index=True)
