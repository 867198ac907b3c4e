from __future__ import annotations

from datetime import datetime
from decimal import Decimal

import pytest
from sqlmodel import select

from lotledger.db.models import LOT_FULLY_MATCHED, LOT_OPEN, LOT_PARTIALLY_MATCHED, LedgerEntry, MatchLink
from lotledger.domain.errors import BackdatedSell, InsufficientLots
from lotledger.domain.matcher import FifoMatcher

from conftest import OWNER, assert_position_consistent


def test_fifo_realized_gain_correctness(session, ledger):
    # Buy 10 @ 100, Buy 10 @ 110, Sell 15 @ 120
    # FIFO realized = 10*(120-100) + 5*(120-110) = 250
    b1 = ledger.create_buy(OWNER, "vas.ax", 10, 100, fee=9.5, order_date="2025-01-01")
    b2 = ledger.create_buy(OWNER, "VAS.AX", 10, 110, fee=9.5, order_date="2025-01-02")

    result = ledger.create_sell(OWNER, "VAS.AX", 15, 120, fee=9.5, order_date="2025-01-10")

    sell = result.sell_entry
    assert sell.realized_gain == 250
    assert [b.id for b in result.affected_buy_entries] == [b1.id, b2.id]

    session.refresh(b1)
    session.refresh(b2)
    assert b1.remaining_units == 0
    assert b1.sold_units == 10
    assert b1.realized_gain == 200
    assert b1.lot_state == LOT_FULLY_MATCHED
    assert b2.remaining_units == 5
    assert b2.sold_units == 5
    assert b2.realized_gain == 50
    assert b2.lot_state == LOT_PARTIALLY_MATCHED

    links = ledger.get_links(OWNER, sell.id)
    assert [(l.buy_id, l.matched_units, l.gain_per_unit, l.gain_total) for l in links] == [
        (b1.id, 10, 20, 200),
        (b2.id, 5, 10, 50),
    ]
    assert sum(l.matched_units for l in links) == sell.units

    # Same link rows seen from the buy side
    assert [l.id for l in ledger.get_links(OWNER, b2.id)] == [links[1].id]

    assert result.position.held_units == 5
    assert_position_consistent(session, OWNER, "VAS.AX")


def test_same_day_lots_are_consumed_in_insertion_order(session, ledger):
    first = ledger.create_buy(OWNER, "IVV.AX", 4, 50, order_date="2025-02-03")
    second = ledger.create_buy(OWNER, "IVV.AX", 4, 40, order_date="2025-02-03")

    result = ledger.create_sell(OWNER, "IVV.AX", 5, 60, order_date="2025-02-03")

    session.refresh(first)
    session.refresh(second)
    assert first.remaining_units == 0
    assert second.remaining_units == 3
    # 4*(60-50) + 1*(60-40)
    assert result.sell_entry.realized_gain == 60


def test_sell_on_later_lots_after_earlier_fully_consumed(session, ledger):
    ledger.create_buy(OWNER, "VAS.AX", 5, 100, order_date="2025-01-01")
    later = ledger.create_buy(OWNER, "VAS.AX", 5, 90, order_date="2025-03-01")
    ledger.create_sell(OWNER, "VAS.AX", 5, 95, order_date="2025-02-01")

    # The oldest open lot is now dated 2025-03-01
    with pytest.raises(BackdatedSell):
        ledger.create_sell(OWNER, "VAS.AX", 1, 95, order_date="2025-02-15")

    result = ledger.create_sell(OWNER, "VAS.AX", 2, 95, order_date="2025-03-01")
    assert [b.id for b in result.affected_buy_entries] == [later.id]
    assert result.sell_entry.realized_gain == 10


def test_backdated_sell_rejected_without_changes(session, ledger):
    buy = ledger.create_buy(OWNER, "VAS.AX", 10, 100, order_date="2025-01-05")

    with pytest.raises(BackdatedSell) as exc_info:
        ledger.create_sell(OWNER, "VAS.AX", 5, 120, order_date="2025-01-03")

    assert exc_info.value.field == "order_date"
    assert exc_info.value.entry_id == buy.id

    session.refresh(buy)
    assert buy.remaining_units == 10
    assert buy.lot_state == LOT_OPEN
    assert ledger.get_position(OWNER, "VAS.AX").held_units == 10
    assert session.exec(select(MatchLink)).all() == []
    assert len(ledger.list_entries(OWNER)) == 1


def test_matcher_fails_atomically_when_lots_run_short(session, ledger):
    buy = ledger.create_buy(OWNER, "VAS.AX", 10, 100, order_date="2025-01-01")

    # Simulate drift: the lot lost units the position still counts
    buy.remaining_units = Decimal("3")
    buy.sold_units = Decimal("7")
    session.add(buy)
    session.commit()

    with pytest.raises(InsufficientLots) as exc_info:
        ledger.create_sell(OWNER, "VAS.AX", 5, 120, order_date="2025-01-10")
    assert "3" in exc_info.value.message

    session.refresh(buy)
    assert buy.remaining_units == 3
    assert ledger.get_position(OWNER, "VAS.AX").held_units == 10
    sells = session.exec(select(LedgerEntry).where(LedgerEntry.side == "sell")).all()
    assert sells == []
    assert session.exec(select(MatchLink)).all() == []


def test_match_leaves_lots_untouched_on_failure(session, ledger):
    ledger.create_buy(OWNER, "VAS.AX", 2, 100, order_date="2025-01-01")
    ledger.create_buy(OWNER, "VAS.AX", 2, 110, order_date="2025-01-02")

    with pytest.raises(InsufficientLots):
        FifoMatcher.match(
            session,
            owner_id=OWNER,
            instrument="VAS.AX",
            sell_units=Decimal("5"),
            sell_price=Decimal("120"),
            sell_order_date=datetime(2025, 1, 10),
            sell_entry_id="missing-sell",
        )

    lots = session.exec(select(LedgerEntry).order_by(LedgerEntry.seq)).all()
    assert [lot.remaining_units for lot in lots] == [2, 2]
    assert session.exec(select(MatchLink)).all() == []


def test_fractional_units_match_exactly(session, ledger):
    ledger.create_buy(OWNER, "VAS.AX", "0.1", "100.10", order_date="2025-01-01")
    ledger.create_buy(OWNER, "VAS.AX", "0.2", "100.20", order_date="2025-01-02")

    result = ledger.create_sell(OWNER, "VAS.AX", "0.3", "101", order_date="2025-01-03")

    assert result.position.held_units == 0
    assert result.position.average_cost == 0
    # 0.1*0.90 + 0.2*0.80
    assert result.sell_entry.realized_gain == Decimal("0.25")
    assert_position_consistent(session, OWNER, "VAS.AX")
