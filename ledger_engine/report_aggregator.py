from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from pydantic import BaseModel

from ledger_engine.balance_calculator import BalanceCalculator, ConvertedItem
from ledger_engine.category_tree import (
    Category,
    CategoryTreeCorrupt,
    CategoryTreeSnapshot,
    CategoryType,
    InvalidCategoryMove,
)
from ledger_engine.exchange_rates import ExchangeRateNotFound, MultiCurrencyAlgorithm
from ledger_engine.ledger import LedgerSnapshot, Transfer, UserPreferences
from ledger_engine.periods import (
    InvalidDateRange,
    Period,
    PeriodDivision,
    PeriodType,
    bucket_index,
    check_division,
    checked_period,
    resolve_period_range,
    split_period,
)
from ledger_engine.transaction_limits import apply_transaction_limit, resolve_transaction_limit

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
HUNDRED = Decimal("100")
OTHER_CATEGORIES_NAME = "Other"


class InclusionType(str, Enum):
    NONE = "none"
    BOTH = "both"
    CATEGORY_ONLY = "category_only"
    CATEGORY_AND_SUBCATEGORIES = "category_and_subcategories"


class ShareType(str, Enum):
    PERCENTAGE = "percentage"
    VALUE = "value"


class CategoryOption(BaseModel):
    category_id: int
    inclusion_type: InclusionType = InclusionType.CATEGORY_AND_SUBCATEGORIES


class ReportOptions(BaseModel):
    name: str = "Report"
    period_type: PeriodType = PeriodType.MONTH
    period_start: date | None = None
    period_end: date | None = None
    period_division: PeriodDivision = PeriodDivision.NONE
    categories: list[CategoryOption] = []
    target_currency_id: int | None = None

    @classmethod
    def validate_payload(cls, payload: "ReportOptions") -> "ReportOptions":
        payload.name = payload.name.strip()
        if not payload.name:
            raise ValueError("Report name required.")
        if payload.period_type is PeriodType.SELECTED:
            if payload.period_start is None or payload.period_end is None:
                raise InvalidDateRange("A selected period requires start and end dates.")
            checked_period(payload.period_start, payload.period_end)
        check_division(payload.period_type, payload.period_division)
        return payload


class FlowReportOptions(ReportOptions):
    period_division: PeriodDivision = PeriodDivision.MONTH


class ValueReportOptions(ReportOptions):
    period_division: PeriodDivision = PeriodDivision.MONTH


class ShareReportOptions(ReportOptions):
    share_type: ShareType = ShareType.PERCENTAGE
    max_categories_values_count: int = 0

    @classmethod
    def validate_payload(cls, payload: "ShareReportOptions") -> "ShareReportOptions":
        payload = super().validate_payload(payload)
        if payload.max_categories_values_count < 0:
            raise ValueError("max_categories_values_count cannot be negative.")
        return payload


class FlowBucket(BaseModel):
    period_start: date
    period_end: date
    income_total: Decimal
    expense_total: Decimal
    saldo: Decimal


class FlowSeries(BaseModel):
    currency_id: int
    buckets: list[FlowBucket]


class FlowReportRow(BaseModel):
    category_id: int
    category_name: str
    category_type: CategoryType
    inclusion_type: InclusionType
    series: list[FlowSeries]


class FlowReport(BaseModel):
    name: str
    period_start: date
    period_end: date
    period_division: PeriodDivision
    algorithm: MultiCurrencyAlgorithm
    rows: list[FlowReportRow]


class ValueBucket(BaseModel):
    period_start: date
    period_end: date
    balance: Decimal


class ValueSeries(BaseModel):
    currency_id: int
    opening_balance: Decimal
    buckets: list[ValueBucket]


class ValueReportRow(BaseModel):
    category_id: int
    category_name: str
    category_type: CategoryType
    inclusion_type: InclusionType
    series: list[ValueSeries]


class ValueReport(BaseModel):
    name: str
    period_start: date
    period_end: date
    period_division: PeriodDivision
    algorithm: MultiCurrencyAlgorithm
    rows: list[ValueReportRow]


class ShareEntry(BaseModel):
    category_id: int | None = None
    category_name: str
    category_type: CategoryType | None = None
    currency_id: int
    total: Decimal
    share: Decimal


class ShareReport(BaseModel):
    name: str
    period_start: date
    period_end: date
    share_type: ShareType
    algorithm: MultiCurrencyAlgorithm
    grand_totals: dict[int, Decimal]
    entries: list[ShareEntry]


@dataclass(frozen=True)
class ReportLine:
    category: Category
    inclusion_type: InclusionType
    scope: frozenset[int]


class ReportAggregator:
    """Shapes converted balances into flow, value and share reports.

    Every public call builds its own rate resolver, so one aggregator can
    serve concurrent requests against the same snapshot.
    """

    def __init__(
        self,
        ledger: LedgerSnapshot,
        preferences: UserPreferences,
        today: Optional[date] = None,
        tree: Optional[CategoryTreeSnapshot] = None,
    ) -> None:
        self.ledger = ledger
        self.preferences = preferences
        self.today = today or date.today()
        self.tree = tree if tree is not None else ledger.category_tree()

    @property
    def algorithm(self) -> MultiCurrencyAlgorithm:
        return self.preferences.multi_currency_balance_calculating_algorithm

    def flow_report(self, options: FlowReportOptions) -> FlowReport:
        options = FlowReportOptions.validate_payload(options)
        period = self._period(options)
        buckets = split_period(period.start, period.end, options.period_division)
        starts = [bucket.start for bucket in buckets]
        lines = self.report_lines(options.categories)
        calculator = self._calculator(options)
        items = calculator.converted_items(_union_scope(lines), period.start, period.end)
        currencies = self._report_currencies(calculator, items)

        rows: List[FlowReportRow] = []
        for line in lines:
            income: Dict[tuple[int, int], Decimal] = {}
            expense: Dict[tuple[int, int], Decimal] = {}
            for item in items:
                if item.category_id not in line.scope:
                    continue
                key = (item.currency_id, bucket_index(buckets, item.day, starts))
                if item.value >= ZERO:
                    income[key] = income.get(key, ZERO) + item.value
                else:
                    expense[key] = expense.get(key, ZERO) - item.value
            series = []
            for currency_id in currencies:
                flow_buckets = []
                for index, bucket in enumerate(buckets):
                    income_total = income.get((currency_id, index), ZERO)
                    expense_total = expense.get((currency_id, index), ZERO)
                    flow_buckets.append(
                        FlowBucket(
                            period_start=bucket.start,
                            period_end=bucket.end,
                            income_total=income_total,
                            expense_total=expense_total,
                            saldo=income_total - expense_total,
                        )
                    )
                series.append(FlowSeries(currency_id=currency_id, buckets=flow_buckets))
            rows.append(
                FlowReportRow(
                    category_id=line.category.id,
                    category_name=line.category.name,
                    category_type=line.category.category_type,
                    inclusion_type=line.inclusion_type,
                    series=series,
                )
            )

        logger.info(
            "Flow report %r: %d rows, %d buckets, %d items",
            options.name,
            len(rows),
            len(buckets),
            len(items),
        )
        return FlowReport(
            name=options.name,
            period_start=period.start,
            period_end=period.end,
            period_division=options.period_division,
            algorithm=self.algorithm,
            rows=rows,
        )

    def value_report(self, options: ValueReportOptions) -> ValueReport:
        options = ValueReportOptions.validate_payload(options)
        period = self._period(options, needs_history=True)
        buckets = split_period(period.start, period.end, options.period_division)
        starts = [bucket.start for bucket in buckets]
        lines = self.report_lines(options.categories)
        calculator = self._calculator(options)
        items = calculator.converted_items(_union_scope(lines), None, period.end)
        currencies = self._report_currencies(calculator, items)

        rows: List[ValueReportRow] = []
        for line in lines:
            opening: Dict[int, Decimal] = {}
            flows: Dict[tuple[int, int], Decimal] = {}
            for item in items:
                if item.category_id not in line.scope:
                    continue
                if item.day < period.start:
                    opening[item.currency_id] = opening.get(item.currency_id, ZERO) + item.value
                    continue
                key = (item.currency_id, bucket_index(buckets, item.day, starts))
                flows[key] = flows.get(key, ZERO) + item.value
            series = []
            for currency_id in currencies:
                balance = opening.get(currency_id, ZERO)
                value_buckets = []
                for index, bucket in enumerate(buckets):
                    balance += flows.get((currency_id, index), ZERO)
                    value_buckets.append(
                        ValueBucket(period_start=bucket.start, period_end=bucket.end, balance=balance)
                    )
                series.append(
                    ValueSeries(
                        currency_id=currency_id,
                        opening_balance=opening.get(currency_id, ZERO),
                        buckets=value_buckets,
                    )
                )
            rows.append(
                ValueReportRow(
                    category_id=line.category.id,
                    category_name=line.category.name,
                    category_type=line.category.category_type,
                    inclusion_type=line.inclusion_type,
                    series=series,
                )
            )

        logger.info("Value report %r: %d rows, %d buckets", options.name, len(rows), len(buckets))
        return ValueReport(
            name=options.name,
            period_start=period.start,
            period_end=period.end,
            period_division=options.period_division,
            algorithm=self.algorithm,
            rows=rows,
        )

    def share_report(self, options: ShareReportOptions) -> ShareReport:
        options = ShareReportOptions.validate_payload(options)
        period = self._period(options)
        lines = self.report_lines(options.categories)
        calculator = self._calculator(options)
        items = calculator.converted_items(_union_scope(lines), period.start, period.end)
        currencies = self._report_currencies(calculator, items)

        line_totals: List[Dict[int, Decimal]] = []
        for line in lines:
            totals: Dict[int, Decimal] = {}
            for item in items:
                if item.category_id in line.scope:
                    totals[item.currency_id] = totals.get(item.currency_id, ZERO) + item.value
            line_totals.append(totals)

        entries: List[ShareEntry] = []
        grand_totals: Dict[int, Decimal] = {}
        limit = options.max_categories_values_count
        for currency_id in currencies:
            values = [totals.get(currency_id, ZERO) for totals in line_totals]
            grand_total = sum(values, ZERO)
            grand_totals[currency_id] = grand_total

            kept = set(range(len(lines)))
            if limit and len(lines) > limit:
                ranked = sorted(range(len(lines)), key=lambda index: (-abs(values[index]), index))
                kept = set(ranked[:limit])

            for index, line in enumerate(lines):
                if index not in kept:
                    continue
                entries.append(
                    ShareEntry(
                        category_id=line.category.id,
                        category_name=line.category.name,
                        category_type=line.category.category_type,
                        currency_id=currency_id,
                        total=values[index],
                        share=_share(values[index], grand_total, options.share_type),
                    )
                )
            if len(kept) < len(lines):
                other_total = sum(
                    (values[index] for index in range(len(lines)) if index not in kept), ZERO
                )
                entries.append(
                    ShareEntry(
                        category_name=OTHER_CATEGORIES_NAME,
                        currency_id=currency_id,
                        total=other_total,
                        share=_share(other_total, grand_total, options.share_type),
                    )
                )

        logger.info("Share report %r: %d entries", options.name, len(entries))
        return ShareReport(
            name=options.name,
            period_start=period.start,
            period_end=period.end,
            share_type=options.share_type,
            algorithm=self.algorithm,
            grand_totals=grand_totals,
            entries=entries,
        )

    def recent_transfers(self) -> List[Transfer]:
        limit = resolve_transaction_limit(
            self.preferences.transaction_amount_limit_type,
            self.preferences.transaction_amount_limit_value,
            today=self.today,
        )
        return apply_transaction_limit(self.ledger.transfers, limit)

    def report_lines(self, options: Iterable[CategoryOption]) -> List[ReportLine]:
        lines: Dict[tuple[int, frozenset[int]], ReportLine] = {}
        for option in options:
            category = self.tree.get(option.category_id)
            inclusion = InclusionType(option.inclusion_type)
            if inclusion is InclusionType.NONE:
                continue
            if inclusion is InclusionType.CATEGORY_ONLY:
                candidates = [ReportLine(category, inclusion, frozenset({category.id}))]
            elif inclusion is InclusionType.CATEGORY_AND_SUBCATEGORIES:
                candidates = [ReportLine(category, inclusion, self.tree.scope_of(category.id, True))]
            else:
                candidates = [
                    ReportLine(member, inclusion, frozenset({member.id}))
                    for member in self.tree.subtree(category.id)
                ]
            for line in candidates:
                lines.setdefault((line.category.id, line.scope), line)
        return sorted(lines.values(), key=lambda line: self.tree.sort_key(line.category.id))

    def _period(self, options: ReportOptions, needs_history: bool = False) -> Period:
        """Resolve the report period and make sure the snapshot holds every
        transfer it needs; balances also need everything before the start."""
        period = resolve_period_range(
            options.period_type,
            today=self.today,
            start=options.period_start,
            end=options.period_end,
        )
        loaded_from = self.ledger.loaded_from
        loaded_until = self.ledger.loaded_until
        if loaded_from is not None and (needs_history or period.start < loaded_from):
            raise InvalidDateRange(
                f"Ledger was loaded from {loaded_from.isoformat()}; "
                f"cannot report from {period.start.isoformat()}."
            )
        if loaded_until is not None and period.end > loaded_until:
            raise InvalidDateRange(
                f"Ledger was loaded until {loaded_until.isoformat()}; "
                f"cannot report until {period.end.isoformat()}."
            )
        return period

    def _calculator(self, options: ReportOptions) -> BalanceCalculator:
        resolver = self.ledger.resolver(self.algorithm, as_of=self.today)
        return BalanceCalculator(
            self.ledger,
            self.tree,
            self.preferences,
            resolver=resolver,
            target_currency_id=options.target_currency_id,
        )

    def _report_currencies(
        self, calculator: BalanceCalculator, items: Sequence[ConvertedItem]
    ) -> List[int]:
        if calculator.resolver.converts:
            return [calculator.target_currency_id]
        currencies = sorted({item.currency_id for item in items})
        return currencies or [self.preferences.default_currency_id]


def text_report_lines(
    report: FlowReport | ValueReport | ShareReport,
    currency_labels: Optional[Mapping[int, str]] = None,
) -> List[str]:
    labels = dict(currency_labels or {})

    def label(currency_id: int) -> str:
        return labels.get(currency_id, str(currency_id))

    lines = [f"{report.name}\t{report.period_start.isoformat()}\t{report.period_end.isoformat()}"]
    if isinstance(report, FlowReport):
        for row in report.rows:
            for series in row.series:
                for bucket in series.buckets:
                    lines.append(
                        "\t".join(
                            [
                                row.category_name,
                                label(series.currency_id),
                                bucket.period_start.isoformat(),
                                bucket.period_end.isoformat(),
                                str(bucket.income_total),
                                str(bucket.expense_total),
                                str(bucket.saldo),
                            ]
                        )
                    )
    elif isinstance(report, ValueReport):
        for row in report.rows:
            for series in row.series:
                for bucket in series.buckets:
                    lines.append(
                        "\t".join(
                            [
                                row.category_name,
                                label(series.currency_id),
                                bucket.period_start.isoformat(),
                                bucket.period_end.isoformat(),
                                str(bucket.balance),
                            ]
                        )
                    )
    else:
        for entry in report.entries:
            lines.append(
                "\t".join(
                    [entry.category_name, label(entry.currency_id), str(entry.total), str(entry.share)]
                )
            )
    return lines


def describe_error(error: Exception) -> str:
    if isinstance(error, ExchangeRateNotFound):
        return f"Exchange rates missing for period: {error}"
    if isinstance(error, InvalidDateRange):
        return f"Invalid report period: {error}"
    if isinstance(error, InvalidCategoryMove):
        return f"Invalid category move: {error}"
    if isinstance(error, CategoryTreeCorrupt):
        return f"Category tree is inconsistent: {error}"
    return str(error)


def _share(total: Decimal, grand_total: Decimal, share_type: ShareType) -> Decimal:
    if share_type is ShareType.VALUE:
        return total
    if grand_total == ZERO:
        return ZERO
    return total / grand_total * HUNDRED


def _union_scope(lines: Iterable[ReportLine]) -> frozenset[int]:
    scope: set[int] = set()
    for line in lines:
        scope.update(line.scope)
    return frozenset(scope)
