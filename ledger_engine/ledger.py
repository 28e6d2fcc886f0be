from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Iterable, Mapping, Optional, Tuple

from ledger_engine.category_tree import Category, CategoryTreeSnapshot
from ledger_engine.exchange_rates import (
    Currency,
    Exchange,
    ExchangeRateResolver,
    MultiCurrencyAlgorithm,
    coerce_amount,
)
from ledger_engine.transaction_limits import TransactionAmountLimitType

ZERO = Decimal("0")


class TransferItemType(str, Enum):
    INCOME = "INCOME"
    OUTCOME = "OUTCOME"


@dataclass(frozen=True)
class TransferItem:
    id: int
    transfer_id: int
    category_id: int
    currency_id: int
    value: Decimal
    description: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "value", coerce_amount(self.value))

    @property
    def item_type(self) -> TransferItemType:
        return TransferItemType.INCOME if self.value >= ZERO else TransferItemType.OUTCOME


@dataclass(frozen=True)
class Conversion:
    id: int
    transfer_id: int
    exchange_id: int


@dataclass(frozen=True)
class Transfer:
    id: int
    day: date
    items: Tuple[TransferItem, ...]
    user_id: Optional[int] = None
    description: str = ""
    conversions: Tuple[Conversion, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "items", tuple(self.items))
        object.__setattr__(self, "conversions", tuple(self.conversions))
        if len(self.items) < 2:
            raise ValueError("A transfer needs at least two items.")
        for item in self.items:
            if item.transfer_id != self.id:
                raise ValueError(f"Item {item.id} does not belong to transfer {self.id}.")


@dataclass(frozen=True)
class UserPreferences:
    default_currency_id: int
    multi_currency_balance_calculating_algorithm: MultiCurrencyAlgorithm = (
        MultiCurrencyAlgorithm.SHOW_ALL_CURRENCIES
    )
    include_transactions_from_subcategories: bool = False
    invert_saldo_for_income: bool = True
    transaction_amount_limit_type: TransactionAmountLimitType = TransactionAmountLimitType.THIS_MONTH
    transaction_amount_limit_value: Optional[int] = None

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "multi_currency_balance_calculating_algorithm",
            MultiCurrencyAlgorithm(self.multi_currency_balance_calculating_algorithm),
        )
        object.__setattr__(
            self,
            "transaction_amount_limit_type",
            TransactionAmountLimitType(self.transaction_amount_limit_type),
        )


@dataclass(frozen=True)
class LedgerSnapshot:
    """Everything one report computation reads, fetched up front.

    `loaded_from` and `loaded_until` record the transfer date bounds the
    snapshot was loaded with; None means unbounded.
    """

    categories: Tuple[Category, ...] = ()
    currencies: Tuple[Currency, ...] = ()
    exchanges: Tuple[Exchange, ...] = ()
    transfers: Tuple[Transfer, ...] = ()
    loaded_from: Optional[date] = None
    loaded_until: Optional[date] = None
    _exchanges_by_id: Mapping[int, Exchange] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        for name in ("categories", "currencies", "exchanges", "transfers"):
            object.__setattr__(self, name, tuple(getattr(self, name)))
        object.__setattr__(
            self,
            "_exchanges_by_id",
            {exchange.id: exchange for exchange in self.exchanges},
        )

    def category_tree(self) -> CategoryTreeSnapshot:
        return CategoryTreeSnapshot(self.categories)

    def currency_map(self) -> dict[int, Currency]:
        return {currency.id: currency for currency in self.currencies}

    def resolver(
        self,
        algorithm: MultiCurrencyAlgorithm,
        as_of: Optional[date] = None,
    ) -> ExchangeRateResolver:
        return ExchangeRateResolver(
            self.exchanges,
            algorithm,
            as_of=as_of,
            currencies=self.currency_map(),
        )

    def pinned_exchanges(self, transfer: Transfer) -> Tuple[Exchange, ...]:
        return tuple(
            self._exchanges_by_id[conversion.exchange_id]
            for conversion in transfer.conversions
            if conversion.exchange_id in self._exchanges_by_id
        )


def transfers_in_order(transfers: Iterable[Transfer]) -> list[Transfer]:
    return sorted(transfers, key=lambda transfer: transfer.id)
