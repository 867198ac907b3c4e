"""Normalization of order input before it reaches the ledger."""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional

from lotledger.db.models import DECIMAL_PLACES, utcnow
from lotledger.domain.errors import ValidationError
from lotledger.io.order_dates import OrderDateParser


@dataclass
class OrderRequest:
    """A buy or sell order with every field in its stored form."""
    instrument: str
    units: Decimal
    price: Decimal
    fee: Decimal
    order_date: datetime  # naive UTC


def normalize_instrument(value) -> str:
    return str(value).strip().upper()


def to_decimal(value) -> Optional[Decimal]:
    """Decimal for int/float/str/Decimal input, None when not a finite number."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, Decimal):
        number = value
    else:
        try:
            number = Decimal(str(value).strip())
        except InvalidOperation:
            return None
    if not number.is_finite():
        return None
    return number


def too_precise(number: Decimal) -> bool:
    """True when the number carries more decimal places than a column stores."""
    return number.normalize().as_tuple().exponent < -DECIMAL_PLACES


def validate_order(
    instrument,
    units,
    price,
    fee,
    order_date,
    report_timezone: str = "US/Eastern",
    now: Optional[datetime] = None,
) -> OrderRequest:
    """
    Check and coerce raw order fields.

    Raises:
        ValidationError: with every failing field, not just the first one
    """
    errors: Dict[str, List[str]] = {}

    ticker = normalize_instrument(instrument) if isinstance(instrument, str) else ""
    if not ticker:
        errors.setdefault("instrument", []).append("Instrument is required")

    units_dec = to_decimal(units)
    if units_dec is None:
        errors.setdefault("units", []).append("Units must be a valid number")
    elif units_dec <= 0:
        errors.setdefault("units", []).append("Units must be greater than 0")
    elif too_precise(units_dec):
        errors.setdefault("units", []).append(f"Units cannot have more than {DECIMAL_PLACES} decimal places")

    price_dec = to_decimal(price)
    if price_dec is None:
        errors.setdefault("price", []).append("Order price must be a valid number")
    elif price_dec < 0:
        errors.setdefault("price", []).append("Order price cannot be negative")
    elif too_precise(price_dec):
        errors.setdefault("price", []).append(f"Order price cannot have more than {DECIMAL_PLACES} decimal places")

    fee_dec = to_decimal(0 if fee is None else fee)
    if fee_dec is None:
        errors.setdefault("fee", []).append("Fee must be a valid number")
    elif fee_dec < 0:
        errors.setdefault("fee", []).append("Fee cannot be negative")
    elif too_precise(fee_dec):
        errors.setdefault("fee", []).append(f"Fee cannot have more than {DECIMAL_PLACES} decimal places")

    order_dt = None
    if order_date is None:
        errors.setdefault("order_date", []).append("Order date is required")
    else:
        try:
            order_dt = OrderDateParser.parse(order_date, report_timezone)
        except ValueError:
            errors.setdefault("order_date", []).append("Order date must be a valid date")
        else:
            if order_dt > (now or utcnow()):
                errors.setdefault("order_date", []).append("Order date cannot be in the future")

    if errors:
        raise ValidationError(errors)

    return OrderRequest(
        instrument=ticker,
        units=units_dec,
        price=price_dec,
        fee=fee_dec,
        order_date=order_dt,
    )


def validate_setting(field: str, value) -> Decimal:
    label = field.replace("_", " ").capitalize()
    number = to_decimal(value)
    if number is None:
        raise ValidationError({field: [f"{label} must be a valid number"]})
    if too_precise(number):
        raise ValidationError({field: [f"{label} cannot have more than {DECIMAL_PLACES} decimal places"]})
    return number


def validate_cash(bank=None, balance=None, currency=None, partial: bool = False) -> Dict[str, object]:
    """
    Check and coerce cash balance fields.

    With ``partial`` only the fields that were given (not None) are checked
    and returned, for updates. Balances may be negative (overdrawn).

    Raises:
        ValidationError: with every failing field
    """
    errors: Dict[str, List[str]] = {}
    cleaned: Dict[str, object] = {}

    if bank is not None or not partial:
        if not isinstance(bank, str) or not bank.strip():
            errors.setdefault("bank", []).append("Bank name is required")
        else:
            cleaned["bank"] = bank.strip()

    if balance is not None or not partial:
        number = to_decimal(balance)
        if number is None:
            errors.setdefault("balance", []).append("Balance must be a valid number")
        elif too_precise(number):
            errors.setdefault("balance", []).append(
                f"Balance cannot have more than {DECIMAL_PLACES} decimal places"
            )
        else:
            cleaned["balance"] = number

    if currency is not None or not partial:
        code = currency.strip().upper() if isinstance(currency, str) else ""
        if not code:
            errors.setdefault("currency", []).append("Currency is required")
        elif len(code) != 3 or not code.isalpha():
            errors.setdefault("currency", []).append("Currency must be a 3-letter code")
        else:
            cleaned["currency"] = code

    if errors:
        raise ValidationError(errors)
    return cleaned
