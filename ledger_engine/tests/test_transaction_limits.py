import unittest
from datetime import date
from decimal import Decimal

from ledger_engine.ledger import Transfer, TransferItem
from ledger_engine.transaction_limits import (
    TransactionAmountLimitType,
    TransactionLimit,
    apply_transaction_limit,
    resolve_transaction_limit,
)


def make_transfer(transfer_id: int, day: date) -> Transfer:
    return Transfer(
        id=transfer_id,
        day=day,
        items=(
            TransferItem(id=transfer_id * 10, transfer_id=transfer_id, category_id=1, currency_id=1, value=Decimal("5")),
            TransferItem(id=transfer_id * 10 + 1, transfer_id=transfer_id, category_id=2, currency_id=1, value=Decimal("-5")),
        ),
    )


class TransactionLimitTests(unittest.TestCase):
    def test_transaction_count_caps_rows(self) -> None:
        limit = resolve_transaction_limit(TransactionAmountLimitType.TRANSACTION_COUNT, 5)

        self.assertEqual(limit, TransactionLimit(max_count=5))

    def test_week_count_starts_on_iso_monday(self) -> None:
        limit = resolve_transaction_limit(
            TransactionAmountLimitType.WEEK_COUNT, 2, today=date(2024, 3, 14)
        )

        self.assertEqual(limit.start_date, date(2024, 3, 4))
        self.assertEqual(limit.end_date, date(2024, 3, 14))

    def test_this_month_uses_calendar_bounds(self) -> None:
        limit = resolve_transaction_limit(TransactionAmountLimitType.THIS_MONTH, today=date(2024, 2, 10))

        self.assertEqual((limit.start_date, limit.end_date), (date(2024, 2, 1), date(2024, 2, 29)))

    def test_this_and_last_month_crosses_year_boundary(self) -> None:
        limit = resolve_transaction_limit(
            TransactionAmountLimitType.THIS_AND_LAST_MONTH, today=date(2024, 1, 20)
        )

        self.assertEqual((limit.start_date, limit.end_date), (date(2023, 12, 1), date(2024, 1, 31)))

    def test_count_types_require_positive_value(self) -> None:
        for limit_type in (
            TransactionAmountLimitType.TRANSACTION_COUNT,
            TransactionAmountLimitType.WEEK_COUNT,
        ):
            with self.subTest(limit_type=limit_type):
                with self.assertRaises(ValueError):
                    resolve_transaction_limit(limit_type, 0)
                with self.assertRaises(ValueError):
                    resolve_transaction_limit(limit_type, None)

    def test_apply_keeps_newest_transfers_in_ascending_order(self) -> None:
        transfers = [
            make_transfer(3, date(2024, 1, 5)),
            make_transfer(1, date(2024, 1, 9)),
            make_transfer(2, date(2024, 1, 9)),
            make_transfer(4, date(2023, 12, 30)),
        ]

        limited = apply_transaction_limit(transfers, TransactionLimit(max_count=2))

        self.assertEqual([transfer.id for transfer in limited], [1, 2])

    def test_apply_filters_by_date_range(self) -> None:
        transfers = [
            make_transfer(1, date(2024, 1, 31)),
            make_transfer(2, date(2024, 2, 1)),
            make_transfer(3, date(2024, 3, 1)),
        ]
        limit = resolve_transaction_limit(TransactionAmountLimitType.THIS_MONTH, today=date(2024, 2, 10))

        self.assertEqual([transfer.id for transfer in apply_transaction_limit(transfers, limit)], [2])


if __name__ == "__main__":
    unittest.main()
