from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Iterable, List, Optional

from ledger_engine.periods import month_end, month_start, shift_month

if TYPE_CHECKING:
    from ledger_engine.ledger import Transfer


class TransactionAmountLimitType(str, Enum):
    TRANSACTION_COUNT = "TRANSACTION_COUNT"
    WEEK_COUNT = "WEEK_COUNT"
    THIS_MONTH = "THIS_MONTH"
    THIS_AND_LAST_MONTH = "THIS_AND_LAST_MONTH"


@dataclass(frozen=True)
class TransactionLimit:
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    max_count: Optional[int] = None


def resolve_transaction_limit(
    limit_type: TransactionAmountLimitType,
    value: Optional[int] = None,
    today: Optional[date] = None,
) -> TransactionLimit:
    limit_type = TransactionAmountLimitType(limit_type)
    today = today or date.today()

    if limit_type is TransactionAmountLimitType.TRANSACTION_COUNT:
        return TransactionLimit(max_count=_require_positive(value, limit_type))
    if limit_type is TransactionAmountLimitType.WEEK_COUNT:
        weeks = _require_positive(value, limit_type)
        this_week_start = today - timedelta(days=today.weekday())
        return TransactionLimit(
            start_date=this_week_start - timedelta(weeks=weeks - 1),
            end_date=today,
        )
    if limit_type is TransactionAmountLimitType.THIS_MONTH:
        return TransactionLimit(start_date=month_start(today), end_date=month_end(today))
    if limit_type is TransactionAmountLimitType.THIS_AND_LAST_MONTH:
        return TransactionLimit(start_date=shift_month(today, -1), end_date=month_end(today))
    raise ValueError(f"Unsupported transaction limit type: {limit_type}")


def apply_transaction_limit(
    transfers: Iterable["Transfer"],
    limit: TransactionLimit,
) -> List["Transfer"]:
    selected = [
        transfer
        for transfer in transfers
        if (limit.start_date is None or transfer.day >= limit.start_date)
        and (limit.end_date is None or transfer.day <= limit.end_date)
    ]
    selected.sort(key=lambda transfer: (transfer.day, transfer.id))
    if limit.max_count is not None:
        selected = selected[-limit.max_count:] if limit.max_count else []
    return selected


def _require_positive(value: Optional[int], limit_type: TransactionAmountLimitType) -> int:
    if value is None or value <= 0:
        raise ValueError(f"{limit_type.value} requires a positive limit value.")
    return int(value)
