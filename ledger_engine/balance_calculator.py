from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Collection, Dict, Iterable, List, Optional

from ledger_engine.category_tree import CategoryTreeSnapshot, CategoryType
from ledger_engine.exchange_rates import ExchangeRateResolver
from ledger_engine.ledger import (
    LedgerSnapshot,
    TransferItemType,
    UserPreferences,
    transfers_in_order,
)
from ledger_engine.periods import checked_period

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

CurrencyTotals = Dict[int, Decimal]


@dataclass(frozen=True)
class ConvertedItem:
    transfer_id: int
    item_id: int
    day: date
    category_id: int
    currency_id: int
    value: Decimal

    @property
    def item_type(self) -> TransferItemType:
        return TransferItemType.INCOME if self.value >= ZERO else TransferItemType.OUTCOME


class BalanceCalculator:
    """Converts transfer items into comparable totals for one request.

    `currency_id` on every converted item is the target currency when the
    user's algorithm converts, and the item's own currency when it does not.
    """

    def __init__(
        self,
        ledger: LedgerSnapshot,
        tree: CategoryTreeSnapshot,
        preferences: UserPreferences,
        resolver: Optional[ExchangeRateResolver] = None,
        target_currency_id: Optional[int] = None,
    ) -> None:
        self.ledger = ledger
        self.tree = tree
        self.preferences = preferences
        self.resolver = resolver or ledger.resolver(
            preferences.multi_currency_balance_calculating_algorithm
        )
        self.target_currency_id = (
            target_currency_id if target_currency_id is not None else preferences.default_currency_id
        )

    def converted_items(
        self,
        scope: Optional[Collection[int]],
        start_date: Optional[date],
        end_date: Optional[date],
    ) -> List[ConvertedItem]:
        """Items in scope dated within [start_date, end_date], converted and
        sign-adjusted, in ascending transfer id then item id order.

        `scope=None` means every category; a missing bound is open-ended.
        Raises ExchangeRateNotFound without returning partial results.
        """
        if start_date is not None and end_date is not None:
            checked_period(start_date, end_date)
        invert_income = self.preferences.invert_saldo_for_income
        converting = self.resolver.converts

        converted: List[ConvertedItem] = []
        for transfer in transfers_in_order(self.ledger.transfers):
            if start_date is not None and transfer.day < start_date:
                continue
            if end_date is not None and transfer.day > end_date:
                continue
            pinned = self.ledger.pinned_exchanges(transfer)
            for item in sorted(transfer.items, key=lambda entry: entry.id):
                if scope is not None and item.category_id not in scope:
                    continue
                category = self.tree.get(item.category_id)
                if converting:
                    value = self.resolver.convert(
                        item.value,
                        item.currency_id,
                        self.target_currency_id,
                        transfer.day,
                        pinned=pinned,
                    )
                    currency_id = self.target_currency_id
                else:
                    value = item.value
                    currency_id = item.currency_id
                if invert_income and category.category_type is CategoryType.INCOME:
                    value = -value
                converted.append(
                    ConvertedItem(
                        transfer_id=transfer.id,
                        item_id=item.id,
                        day=transfer.day,
                        category_id=item.category_id,
                        currency_id=currency_id,
                        value=value,
                    )
                )
        logger.debug(
            "Converted %d items between %s and %s", len(converted), start_date, end_date
        )
        return converted

    def total(
        self,
        scope: Optional[Collection[int]],
        start_date: Optional[date],
        end_date: Optional[date],
    ) -> CurrencyTotals:
        return sum_by_currency(self.converted_items(scope, start_date, end_date))

    def totals_by_category(
        self,
        scope: Optional[Collection[int]],
        start_date: Optional[date],
        end_date: Optional[date],
    ) -> Dict[int, CurrencyTotals]:
        totals: Dict[int, CurrencyTotals] = {}
        for item in self.converted_items(scope, start_date, end_date):
            category_totals = totals.setdefault(item.category_id, {})
            category_totals[item.currency_id] = category_totals.get(item.currency_id, ZERO) + item.value
        return totals

    def category_saldo(
        self,
        category_id: int,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> CurrencyTotals:
        scope = self.tree.scope_of(
            category_id, self.preferences.include_transactions_from_subcategories
        )
        return self.total(scope, start_date, end_date)


def sum_by_currency(items: Iterable[ConvertedItem]) -> CurrencyTotals:
    totals: CurrencyTotals = {}
    for item in items:
        totals[item.currency_id] = totals.get(item.currency_id, ZERO) + item.value
    return totals
