"""Cash balances held alongside the instrument ledger."""

import logging
from decimal import Decimal
from typing import Dict, List

from sqlmodel import Session, select

from lotledger.db.models import CashBalance, utcnow
from lotledger.db.session import atomic
from lotledger.domain.errors import LedgerError, NotFound
from lotledger.domain.validation import validate_cash

logger = logging.getLogger(__name__)


class CashBook:
    """
    Per-owner bank balances.

    Balances are plain records: they are not debited by buys or credited
    by sells, and totals are only ever summed within one currency.
    """

    def __init__(self, session: Session):
        self.session = session

    def create_balance(self, owner_id: str, bank, balance, currency) -> CashBalance:
        try:
            fields = validate_cash(bank, balance, currency)
        except LedgerError as exc:
            self._log_rejection("create", owner_id, exc)
            raise

        cash = CashBalance(owner_id=owner_id, **fields)
        with atomic(self.session):
            self.session.add(cash)

        logger.info("Added %s %s cash at %s for owner %s", cash.balance, cash.currency, cash.bank, owner_id)
        return cash

    def update_balance(self, owner_id: str, balance_id: str, bank=None, balance=None, currency=None) -> CashBalance:
        """Change only the fields that were given."""
        try:
            fields = validate_cash(bank, balance, currency, partial=True)
            with atomic(self.session):
                cash = self._owned_balance(owner_id, balance_id)
                for name, value in fields.items():
                    setattr(cash, name, value)
                cash.updated_at = utcnow()
                self.session.add(cash)
        except LedgerError as exc:
            self._log_rejection("update", owner_id, exc)
            raise

        logger.info("Updated cash balance %s for owner %s: %s", balance_id, owner_id, sorted(fields))
        return cash

    def delete_balance(self, owner_id: str, balance_id: str) -> None:
        try:
            with atomic(self.session):
                cash = self._owned_balance(owner_id, balance_id)
                self.session.delete(cash)
        except LedgerError as exc:
            self._log_rejection("delete", owner_id, exc)
            raise

        logger.info("Deleted cash balance %s for owner %s", balance_id, owner_id)

    def list_balances(self, owner_id: str) -> List[CashBalance]:
        stmt = (
            select(CashBalance)
            .where(CashBalance.owner_id == owner_id)
            .order_by(CashBalance.currency, CashBalance.bank, CashBalance.created_at)
        )
        return list(self.session.exec(stmt).all())

    def totals(self, owner_id: str) -> Dict[str, Decimal]:
        """Sum of balances per currency, e.g. {"AUD": Decimal("1500.00")}."""
        totals: Dict[str, Decimal] = {}
        for cash in self.list_balances(owner_id):
            totals[cash.currency] = totals.get(cash.currency, Decimal("0")) + cash.balance
        return totals

    def _owned_balance(self, owner_id: str, balance_id: str) -> CashBalance:
        cash = self.session.get(CashBalance, balance_id)
        if cash is None or cash.owner_id != owner_id:
            raise NotFound(f"Cash balance {balance_id} not found", entry_id=balance_id)
        return cash

    @staticmethod
    def _log_rejection(action: str, owner_id: str, exc: LedgerError) -> None:
        logger.warning("Rejected cash %s for owner %s: %s (%s)", action, owner_id, exc.message, exc.code)
