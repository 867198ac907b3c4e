from __future__ import annotations

from decimal import Decimal

import pytest

from lotledger.db.models import LedgerEntry, Position
from lotledger.domain.errors import DataIntegrity, InsufficientHoldings
from lotledger.domain.positions import PositionUpdater

from conftest import OWNER


def D(value) -> Decimal:
    return Decimal(str(value))


def test_first_buy_creates_position(session):
    position = PositionUpdater.apply_buy(session, None, OWNER, "VAS.AX", D(10), D(100))

    assert position.id is not None
    assert position.held_units == 10
    assert position.average_cost == 100


def test_buy_updates_weighted_average(session):
    position = PositionUpdater.apply_buy(session, None, OWNER, "VAS.AX", D(10), D(100))
    PositionUpdater.apply_buy(session, position, OWNER, "VAS.AX", D(10), D(120))

    assert position.held_units == 20
    assert position.average_cost == 110


def test_sell_keeps_average_until_flat(session):
    position = Position(owner_id=OWNER, instrument="VAS.AX", held_units=D(20), average_cost=D(110))

    PositionUpdater.apply_sell(session, position, "VAS.AX", D(5))
    assert position.held_units == 15
    assert position.average_cost == 110

    PositionUpdater.apply_sell(session, position, "VAS.AX", D(15))
    assert position.held_units == 0
    assert position.average_cost == 0


def test_sell_more_than_held(session):
    position = Position(owner_id=OWNER, instrument="VAS.AX", held_units=D(10), average_cost=D(100))

    with pytest.raises(InsufficientHoldings) as exc_info:
        PositionUpdater.apply_sell(session, position, "VAS.AX", D(15))

    assert exc_info.value.field == "units"
    assert position.held_units == 10


def test_sell_without_position(session):
    with pytest.raises(InsufficientHoldings) as exc_info:
        PositionUpdater.apply_sell(session, None, "VAS.AX", D(1))
    assert exc_info.value.field == "instrument"


def test_buy_reversal_removes_contribution(session):
    position = Position(owner_id=OWNER, instrument="VAS.AX", held_units=D(20), average_cost=D(110))
    buy = LedgerEntry(
        owner_id=OWNER, instrument="VAS.AX", side="buy", order_date=None,
        units=D(10), unit_price=D(120), remaining_units=D(10),
    )

    PositionUpdater.apply_buy_reversal(session, position, buy)

    assert position.held_units == 10
    assert position.average_cost == 100


def test_buy_reversal_to_zero_resets_average(session):
    position = Position(owner_id=OWNER, instrument="VAS.AX", held_units=D(10), average_cost=D(100))
    buy = LedgerEntry(
        owner_id=OWNER, instrument="VAS.AX", side="buy", order_date=None,
        units=D(10), unit_price=D(100), remaining_units=D(10),
    )

    PositionUpdater.apply_buy_reversal(session, position, buy)

    assert position.held_units == 0
    assert position.average_cost == 0


def test_buy_reversal_never_goes_negative(session):
    position = Position(owner_id=OWNER, instrument="VAS.AX", held_units=D(5), average_cost=D(100))
    buy = LedgerEntry(
        owner_id=OWNER, instrument="VAS.AX", side="buy", order_date=None,
        units=D(10), unit_price=D(100), remaining_units=D(10),
    )

    with pytest.raises(DataIntegrity):
        PositionUpdater.apply_buy_reversal(session, position, buy)
    assert position.held_units == 5


def test_buy_reversal_without_position(session):
    buy = LedgerEntry(
        owner_id=OWNER, instrument="VAS.AX", side="buy", order_date=None,
        units=D(1), unit_price=D(1), remaining_units=D(1),
    )
    with pytest.raises(DataIntegrity):
        PositionUpdater.apply_buy_reversal(session, None, buy)
