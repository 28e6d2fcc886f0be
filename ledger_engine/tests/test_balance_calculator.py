import unittest
from datetime import date
from decimal import Decimal

from ledger_engine.balance_calculator import BalanceCalculator
from ledger_engine.category_tree import Category, CategoryType
from ledger_engine.exchange_rates import (
    Currency,
    Exchange,
    ExchangeRateNotFound,
    MultiCurrencyAlgorithm,
)
from ledger_engine.ledger import LedgerSnapshot, Transfer, TransferItem, UserPreferences
from ledger_engine.periods import InvalidDateRange

EUR = 1
USD = 2
GBP = 3

SALARY = 10
WALLET = 20
SAVINGS = 21


def item(item_id: int, transfer_id: int, category_id: int, currency_id: int, value: str) -> TransferItem:
    return TransferItem(
        id=item_id,
        transfer_id=transfer_id,
        category_id=category_id,
        currency_id=currency_id,
        value=Decimal(value),
    )


def build_ledger(extra_transfers: tuple = ()) -> LedgerSnapshot:
    return LedgerSnapshot(
        categories=(
            Category(id=SALARY, name="Salary", category_type=CategoryType.INCOME, left=1, right=2),
            Category(id=WALLET, name="Wallet", category_type=CategoryType.ASSET, left=3, right=6),
            Category(id=SAVINGS, name="Savings", category_type=CategoryType.ASSET, left=4, right=5, parent_id=WALLET),
        ),
        currencies=(
            Currency(id=EUR, symbol="€", long_symbol="EUR", name="Euro", is_default=True),
            Currency(id=USD, symbol="$", long_symbol="USD", name="US Dollar"),
            Currency(id=GBP, symbol="£", long_symbol="GBP", name="Pound"),
        ),
        exchanges=(
            Exchange(id=1, left_currency_id=USD, right_currency_id=EUR, rate=Decimal("0.9"), day=date(2024, 1, 1)),
        ),
        transfers=(
            Transfer(
                id=2,
                day=date(2024, 1, 20),
                items=(item(21, 2, WALLET, EUR, "-50"), item(22, 2, SAVINGS, EUR, "50")),
            ),
            Transfer(
                id=1,
                day=date(2024, 1, 10),
                items=(item(12, 1, WALLET, USD, "-100"), item(11, 1, SALARY, USD, "100")),
            ),
        )
        + tuple(extra_transfers),
    )


def calculator(
    ledger: LedgerSnapshot,
    algorithm: MultiCurrencyAlgorithm = MultiCurrencyAlgorithm.CALCULATE_WITH_EXCHANGES_CLOSEST_TO_TRANSACTION,
    **preferences,
) -> BalanceCalculator:
    prefs = UserPreferences(
        default_currency_id=EUR,
        multi_currency_balance_calculating_algorithm=algorithm,
        **preferences,
    )
    return BalanceCalculator(ledger, ledger.category_tree(), prefs)


class BalanceCalculatorTests(unittest.TestCase):
    def test_income_is_inverted_after_conversion(self) -> None:
        totals = calculator(build_ledger()).total({SALARY}, date(2024, 1, 1), date(2024, 1, 31))

        self.assertEqual(totals, {EUR: Decimal("-90")})

    def test_income_keeps_raw_sign_without_inversion(self) -> None:
        totals = calculator(build_ledger(), invert_saldo_for_income=False).total(
            {SALARY}, date(2024, 1, 1), date(2024, 1, 31)
        )

        self.assertEqual(totals, {EUR: Decimal("90")})

    def test_show_all_currencies_keeps_per_currency_totals(self) -> None:
        totals = calculator(build_ledger(), MultiCurrencyAlgorithm.SHOW_ALL_CURRENCIES).total(
            {WALLET}, None, None
        )

        self.assertEqual(totals, {USD: Decimal("-100"), EUR: Decimal("-50")})

    def test_missing_rate_fails_the_whole_computation(self) -> None:
        ledger = build_ledger(
            (
                Transfer(
                    id=3,
                    day=date(2024, 1, 25),
                    items=(item(31, 3, WALLET, GBP, "-10"), item(32, 3, SAVINGS, GBP, "10")),
                ),
            )
        )

        with self.assertRaises(ExchangeRateNotFound):
            calculator(ledger).total({WALLET, SAVINGS}, None, None)

    def test_items_are_accumulated_in_transfer_then_item_order(self) -> None:
        items = calculator(build_ledger()).converted_items(None, None, None)

        self.assertEqual([(entry.transfer_id, entry.item_id) for entry in items], [(1, 11), (1, 12), (2, 21), (2, 22)])
        self.assertTrue(all(entry.currency_id == EUR for entry in items))

    def test_date_range_is_inclusive(self) -> None:
        engine = calculator(build_ledger())

        self.assertEqual(engine.total({WALLET}, date(2024, 1, 20), date(2024, 1, 20)), {EUR: Decimal("-50")})
        self.assertEqual(engine.total({WALLET}, date(2024, 2, 1), date(2024, 2, 29)), {})

    def test_category_saldo_follows_subcategory_preference(self) -> None:
        ledger = build_ledger()

        own = calculator(ledger).category_saldo(WALLET)
        nested = calculator(ledger, include_transactions_from_subcategories=True).category_saldo(WALLET)

        self.assertEqual(own, {EUR: Decimal("-140.0")})
        self.assertEqual(nested, {EUR: Decimal("-90.0")})

    def test_totals_by_category(self) -> None:
        totals = calculator(build_ledger()).totals_by_category({WALLET, SAVINGS}, None, None)

        self.assertEqual(totals, {WALLET: {EUR: Decimal("-140")}, SAVINGS: {EUR: Decimal("50")}})

    def test_inverted_range_is_rejected(self) -> None:
        with self.assertRaises(InvalidDateRange):
            calculator(build_ledger()).total({WALLET}, date(2024, 2, 1), date(2024, 1, 1))


if __name__ == "__main__":
    unittest.main()
