"""
Market quote lookup for display enrichment.
Quotes never feed ledger arithmetic.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Protocol

import yfinance as yf

logger = logging.getLogger(__name__)


@dataclass
class Quote:
    """Live data for one instrument."""
    symbol: str
    display_name: Optional[str]
    currency: Optional[str]
    price: Optional[float]


class QuoteNotFound(LookupError):
    """The provider has no data for a symbol."""


class WrongInstrumentType(ValueError):
    """The symbol exists but is not the kind of instrument being tracked."""


class QuoteProvider(Protocol):
    def get_quotes(self, symbols: Iterable[str]) -> Dict[str, Quote]:
        """Quotes keyed by symbol; missing symbols are left out."""
        ...

    def validate_instrument(self, symbol: str) -> Quote:
        """Quote for ``symbol`` or QuoteNotFound / WrongInstrumentType."""
        ...


class YahooQuoteProvider:
    """Quotes from Yahoo Finance via yfinance."""

    def __init__(self, expected_quote_type: str = "ETF"):
        self.expected_quote_type = expected_quote_type.upper()

    def _info(self, symbol: str) -> dict:
        try:
            info = yf.Ticker(symbol).info
        except Exception as e:
            raise QuoteNotFound(f"No data found for ticker: {symbol}") from e

        if not info or (info.get("regularMarketPrice") is None and not info.get("longName")):
            raise QuoteNotFound(f"No data found for ticker: {symbol}")
        return info

    @staticmethod
    def _to_quote(symbol: str, info: dict) -> Quote:
        price = info.get("regularMarketPrice")
        return Quote(
            symbol=symbol,
            display_name=info.get("longName") or info.get("shortName"),
            currency=info.get("currency"),
            price=float(price) if price is not None else None,
        )

    def get_quotes(self, symbols: Iterable[str]) -> Dict[str, Quote]:
        quotes = {}
        for symbol in symbols:
            try:
                quotes[symbol] = self._to_quote(symbol, self._info(symbol))
            except QuoteNotFound:
                logger.warning("No quote data found for ticker: %s", symbol)
        return quotes

    def validate_instrument(self, symbol: str) -> Quote:
        info = self._info(symbol)
        quote_type = (info.get("quoteType") or "").upper()
        if quote_type != self.expected_quote_type:
            raise WrongInstrumentType(f"{symbol} not an {self.expected_quote_type}")
        return self._to_quote(symbol, info)
