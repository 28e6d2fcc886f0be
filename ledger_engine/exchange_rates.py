from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Iterable, Mapping

logger = logging.getLogger(__name__)

ONE = Decimal("1")


class MultiCurrencyAlgorithm(str, Enum):
    """How values recorded in different currencies are made comparable.

    - SHOW_ALL_CURRENCIES: no conversion, one series per currency
    - CALCULATE_WITH_NEWEST_EXCHANGES: newest rate not after the as-of day
    - CALCULATE_WITH_EXCHANGES_CLOSEST_TO_TRANSACTION: rate nearest the transfer day
    - *_BUT: as above, falling back to the inverse pair when the exact pair has no rate
    """

    SHOW_ALL_CURRENCIES = "SHOW_ALL_CURRENCIES"
    CALCULATE_WITH_NEWEST_EXCHANGES = "CALCULATE_WITH_NEWEST_EXCHANGES"
    CALCULATE_WITH_EXCHANGES_CLOSEST_TO_TRANSACTION = "CALCULATE_WITH_EXCHANGES_CLOSEST_TO_TRANSACTION"
    CALCULATE_WITH_NEWEST_EXCHANGES_BUT = "CALCULATE_WITH_NEWEST_EXCHANGES_BUT"
    CALCULATE_WITH_EXCHANGES_CLOSEST_TO_TRANSACTION_BUT = "CALCULATE_WITH_EXCHANGES_CLOSEST_TO_TRANSACTION_BUT"


CLOSEST_TO_TRANSACTION_ALGORITHMS = {
    MultiCurrencyAlgorithm.CALCULATE_WITH_EXCHANGES_CLOSEST_TO_TRANSACTION,
    MultiCurrencyAlgorithm.CALCULATE_WITH_EXCHANGES_CLOSEST_TO_TRANSACTION_BUT,
}


@dataclass(frozen=True)
class Currency:
    id: int
    symbol: str
    long_symbol: str
    name: str
    is_default: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "long_symbol", normalize_currency(self.long_symbol))


@dataclass(frozen=True)
class Exchange:
    """A dated rate: 1 unit of the left currency buys `rate` units of the right one."""

    id: int
    left_currency_id: int
    right_currency_id: int
    rate: Decimal
    day: date

    def __post_init__(self) -> None:
        object.__setattr__(self, "rate", coerce_amount(self.rate))
        if self.rate <= 0:
            raise ValueError("Exchange rate must be greater than zero.")
        if self.left_currency_id == self.right_currency_id:
            raise ValueError("Exchange currencies must differ.")

    def covers(self, currency_a: int, currency_b: int) -> bool:
        return {self.left_currency_id, self.right_currency_id} == {currency_a, currency_b}

    def rate_for(self, from_currency_id: int, to_currency_id: int) -> Decimal:
        if (from_currency_id, to_currency_id) == (self.left_currency_id, self.right_currency_id):
            return self.rate
        if (from_currency_id, to_currency_id) == (self.right_currency_id, self.left_currency_id):
            return ONE / self.rate
        raise ValueError("Invalid currency pair for this exchange.")


class ExchangeRateNotFound(LookupError):
    def __init__(
        self,
        from_currency_id: int,
        to_currency_id: int,
        on_date: date,
        algorithm: MultiCurrencyAlgorithm,
        from_label: str | None = None,
        to_label: str | None = None,
    ) -> None:
        self.from_currency_id = from_currency_id
        self.to_currency_id = to_currency_id
        self.on_date = on_date
        self.algorithm = algorithm
        from_label = from_label or str(from_currency_id)
        to_label = to_label or str(to_currency_id)
        super().__init__(f"missing exchange rate for {from_label}→{to_label} on {on_date.isoformat()}")


class ExchangeRateResolver:
    """Resolves directed rates under one algorithm.

    Instances hold a memo keyed by (from, to, reference day) and are meant to
    live for a single report computation.
    """

    def __init__(
        self,
        exchanges: Iterable[Exchange],
        algorithm: MultiCurrencyAlgorithm,
        as_of: date | None = None,
        currencies: Mapping[int, Currency] | None = None,
    ) -> None:
        self.algorithm = MultiCurrencyAlgorithm(algorithm)
        self.as_of = as_of or date.today()
        self._currencies = dict(currencies or {})
        self._pairs: dict[tuple[int, int], list[Exchange]] = {}
        for exchange in exchanges:
            self._pairs.setdefault(
                (exchange.left_currency_id, exchange.right_currency_id), []
            ).append(exchange)
        self._memo: dict[tuple[int, int, date], Decimal] = {}

    @property
    def converts(self) -> bool:
        return self.algorithm is not MultiCurrencyAlgorithm.SHOW_ALL_CURRENCIES

    def resolve(
        self,
        from_currency_id: int,
        to_currency_id: int,
        on_date: date,
        pinned: Iterable[Exchange] = (),
    ) -> Decimal | None:
        """Return the rate converting `from` into `to`, or None when the
        algorithm keeps currencies apart."""
        algorithm = self.algorithm
        if algorithm is MultiCurrencyAlgorithm.SHOW_ALL_CURRENCIES:
            return None
        if from_currency_id == to_currency_id:
            return ONE

        if algorithm in CLOSEST_TO_TRANSACTION_ALGORITHMS:
            pinned_rate = _pinned_rate(
                pinned,
                from_currency_id,
                to_currency_id,
                allow_inverse=algorithm is MultiCurrencyAlgorithm.CALCULATE_WITH_EXCHANGES_CLOSEST_TO_TRANSACTION_BUT,
            )
            if pinned_rate is not None:
                return pinned_rate
            reference_day = on_date
        else:
            reference_day = self.as_of

        key = (from_currency_id, to_currency_id, reference_day)
        cached = self._memo.get(key)
        if cached is not None:
            logger.debug("Rate memo hit for %s", key)
            return cached

        if algorithm is MultiCurrencyAlgorithm.CALCULATE_WITH_NEWEST_EXCHANGES:
            rate = self._newest(from_currency_id, to_currency_id, allow_inverse=False)
        elif algorithm is MultiCurrencyAlgorithm.CALCULATE_WITH_NEWEST_EXCHANGES_BUT:
            rate = self._newest(from_currency_id, to_currency_id, allow_inverse=True)
        elif algorithm is MultiCurrencyAlgorithm.CALCULATE_WITH_EXCHANGES_CLOSEST_TO_TRANSACTION:
            rate = self._closest(from_currency_id, to_currency_id, on_date, allow_inverse=False)
        elif algorithm is MultiCurrencyAlgorithm.CALCULATE_WITH_EXCHANGES_CLOSEST_TO_TRANSACTION_BUT:
            rate = self._closest(from_currency_id, to_currency_id, on_date, allow_inverse=True)
        else:
            raise ValueError(f"Unsupported algorithm: {algorithm}")

        if rate is None:
            error = ExchangeRateNotFound(
                from_currency_id,
                to_currency_id,
                reference_day,
                algorithm,
                from_label=self._label(from_currency_id),
                to_label=self._label(to_currency_id),
            )
            logger.warning("%s (%s)", error, algorithm.value)
            raise error
        self._memo[key] = rate
        return rate

    def convert(
        self,
        value: Decimal | int | float | str,
        from_currency_id: int,
        to_currency_id: int,
        on_date: date,
        pinned: Iterable[Exchange] = (),
    ) -> Decimal:
        rate = self.resolve(from_currency_id, to_currency_id, on_date, pinned=pinned)
        if rate is None:
            raise ValueError("Conversion is disabled when showing all currencies.")
        return coerce_amount(value) * rate

    def _newest(self, from_currency_id: int, to_currency_id: int, allow_inverse: bool) -> Decimal | None:
        exchange = _pick_newest(self._pairs.get((from_currency_id, to_currency_id), []), self.as_of)
        if exchange is not None:
            return exchange.rate
        if allow_inverse:
            exchange = _pick_newest(self._pairs.get((to_currency_id, from_currency_id), []), self.as_of)
            if exchange is not None:
                return ONE / exchange.rate
        return None

    def _closest(
        self,
        from_currency_id: int,
        to_currency_id: int,
        on_date: date,
        allow_inverse: bool,
    ) -> Decimal | None:
        exchange = _pick_closest(self._pairs.get((from_currency_id, to_currency_id), []), on_date)
        if exchange is not None:
            return exchange.rate
        if allow_inverse:
            exchange = _pick_closest(self._pairs.get((to_currency_id, from_currency_id), []), on_date)
            if exchange is not None:
                return ONE / exchange.rate
        return None

    def _label(self, currency_id: int) -> str:
        currency = self._currencies.get(currency_id)
        return currency.long_symbol if currency else str(currency_id)


def _pinned_rate(
    pinned: Iterable[Exchange],
    from_currency_id: int,
    to_currency_id: int,
    allow_inverse: bool,
) -> Decimal | None:
    inverse: Exchange | None = None
    for exchange in pinned:
        if (exchange.left_currency_id, exchange.right_currency_id) == (from_currency_id, to_currency_id):
            return exchange.rate
        if inverse is None and exchange.covers(from_currency_id, to_currency_id):
            inverse = exchange
    if allow_inverse and inverse is not None:
        return inverse.rate_for(from_currency_id, to_currency_id)
    return None


def _pick_newest(exchanges: Iterable[Exchange], as_of: date) -> Exchange | None:
    candidates = [exchange for exchange in exchanges if exchange.day <= as_of]
    if not candidates:
        return None
    return max(candidates, key=lambda exchange: (exchange.day, exchange.id))


def _pick_closest(exchanges: Iterable[Exchange], on_date: date) -> Exchange | None:
    candidates = list(exchanges)
    if not candidates:
        return None
    return min(
        candidates,
        key=lambda exchange: (abs((exchange.day - on_date).days), exchange.day, -exchange.id),
    )


def normalize_currency(value: str) -> str:
    normalized = value.strip().upper()
    if len(normalized) != 3 or not normalized.isalpha():
        raise ValueError("Currency must be a 3-letter ISO 4217 code.")
    return normalized


def coerce_amount(amount: Decimal | int | float | str) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))
