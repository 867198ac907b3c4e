"""Domain errors raised by the ledger. Each one aborts the enclosing transaction."""

from typing import Dict, List, Optional


class LedgerError(Exception):
    """Base class; carries enough structure to point at a field or entry."""

    code = "ledger_error"

    def __init__(self, message: str, field: Optional[str] = None, entry_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field
        self.entry_id = entry_id

    def to_dict(self) -> dict:
        data = {"code": self.code, "message": self.message}
        if self.field:
            data["field"] = self.field
        if self.entry_id:
            data["entry_id"] = self.entry_id
        return data


class ValidationError(LedgerError):
    """Malformed input. ``errors`` maps each field to its messages."""

    code = "validation"

    def __init__(self, errors: Dict[str, List[str]]):
        self.errors = errors
        flat = ", ".join(msg for messages in errors.values() for msg in messages)
        field = next(iter(errors)) if len(errors) == 1 else None
        super().__init__(flat, field=field)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["errors"] = self.errors
        return data


class InsufficientHoldings(LedgerError):
    code = "insufficient_holdings"


class InsufficientLots(LedgerError):
    """Open lots cannot cover a sell the position allowed; ledger and position drifted."""

    code = "insufficient_lots"


class BackdatedSell(LedgerError):
    code = "backdated_sell"


class Conflict(LedgerError):
    code = "conflict"


class DataIntegrity(LedgerError):
    """A referenced record is missing or inconsistent. Needs an operator."""

    code = "data_integrity"


class NotFound(LedgerError):
    code = "not_found"
