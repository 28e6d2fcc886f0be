from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    create_engine,
    delete,
    insert,
    or_,
    select,
    update,
)
from sqlalchemy.engine import Connection, Engine

from ledger_engine.category_tree import Category, CategoryTree, CategoryTreeSnapshot
from ledger_engine.config import get_settings
from ledger_engine.exchange_rates import Currency, Exchange, MultiCurrencyAlgorithm, coerce_amount
from ledger_engine.ledger import (
    Conversion,
    LedgerSnapshot,
    Transfer,
    TransferItem,
    UserPreferences,
)
from ledger_engine.transaction_limits import TransactionAmountLimitType

logger = logging.getLogger(__name__)

metadata = MetaData()

currencies = Table(
    "currencies",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer),
    Column("symbol", String(10), nullable=False),
    Column("long_symbol", String(3), nullable=False),
    Column("name", String(255), nullable=False),
    Column("is_default", Boolean, nullable=False, server_default="0"),
)

categories = Table(
    "categories",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False),
    Column("name", String(255), nullable=False),
    Column("category_type", String(20), nullable=False),
    Column("parent_id", Integer, ForeignKey("categories.id")),
    Column("lft", Integer, nullable=False),
    Column("rgt", Integer, nullable=False),
)

exchanges = Table(
    "exchanges",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer),
    Column("left_currency_id", Integer, ForeignKey("currencies.id"), nullable=False),
    Column("right_currency_id", Integer, ForeignKey("currencies.id"), nullable=False),
    Column("rate", Numeric(18, 8), nullable=False),
    Column("day", Date, nullable=False),
)

transfers = Table(
    "transfers",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False),
    Column("day", Date, nullable=False),
    Column("description", String(500), nullable=False, server_default=""),
)

transfer_items = Table(
    "transfer_items",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("transfer_id", Integer, ForeignKey("transfers.id"), nullable=False),
    Column("category_id", Integer, ForeignKey("categories.id"), nullable=False),
    Column("currency_id", Integer, ForeignKey("currencies.id"), nullable=False),
    Column("value", Numeric(12, 2), nullable=False),
    Column("description", String(500), nullable=False, server_default=""),
)

conversions = Table(
    "conversions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("transfer_id", Integer, ForeignKey("transfers.id"), nullable=False),
    Column("exchange_id", Integer, ForeignKey("exchanges.id"), nullable=False),
)

user_preferences = Table(
    "user_preferences",
    metadata,
    Column("user_id", Integer, primary_key=True),
    Column("default_currency_id", Integer, ForeignKey("currencies.id")),
    Column("multi_currency_algorithm", String(60)),
    Column("include_transactions_from_subcategories", Boolean, nullable=False, server_default="0"),
    Column("invert_saldo_for_income", Boolean, nullable=False, server_default="1"),
    Column("transaction_amount_limit_type", String(30), nullable=False, server_default="THIS_MONTH"),
    Column("transaction_amount_limit_value", Integer),
)


def create_ledger_engine(database_url: str | None = None) -> Engine:
    database_url = database_url or get_settings().database_url
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
    return create_engine(database_url, connect_args=connect_args)


def load_category_tree(conn: Connection, user_id: int) -> CategoryTree:
    return CategoryTree(_load_categories(conn, user_id))


def load_ledger_snapshot(
    conn: Connection,
    user_id: int,
    start_date: date | None = None,
    end_date: date | None = None,
) -> LedgerSnapshot:
    transfer_filters = [transfers.c.user_id == user_id]
    if start_date is not None:
        transfer_filters.append(transfers.c.day >= start_date)
    if end_date is not None:
        transfer_filters.append(transfers.c.day <= end_date)

    transfer_rows = conn.execute(
        select(transfers).where(*transfer_filters).order_by(transfers.c.id)
    ).mappings().all()
    item_rows = conn.execute(
        select(transfer_items)
        .select_from(transfer_items.join(transfers, transfer_items.c.transfer_id == transfers.c.id))
        .where(*transfer_filters)
        .order_by(transfer_items.c.id)
    ).mappings().all()
    conversion_rows = conn.execute(
        select(conversions)
        .select_from(conversions.join(transfers, conversions.c.transfer_id == transfers.c.id))
        .where(*transfer_filters)
        .order_by(conversions.c.id)
    ).mappings().all()

    items_by_transfer: dict[int, list[TransferItem]] = {}
    for row in item_rows:
        items_by_transfer.setdefault(row["transfer_id"], []).append(
            TransferItem(
                id=row["id"],
                transfer_id=row["transfer_id"],
                category_id=row["category_id"],
                currency_id=row["currency_id"],
                value=coerce_amount(row["value"]),
                description=row["description"] or "",
            )
        )
    conversions_by_transfer: dict[int, list[Conversion]] = {}
    for row in conversion_rows:
        conversions_by_transfer.setdefault(row["transfer_id"], []).append(
            Conversion(id=row["id"], transfer_id=row["transfer_id"], exchange_id=row["exchange_id"])
        )

    loaded_transfers = [
        Transfer(
            id=row["id"],
            day=row["day"],
            items=tuple(items_by_transfer.get(row["id"], [])),
            user_id=row["user_id"],
            description=row["description"] or "",
            conversions=tuple(conversions_by_transfer.get(row["id"], [])),
        )
        for row in transfer_rows
    ]

    snapshot = LedgerSnapshot(
        categories=tuple(_load_categories(conn, user_id)),
        currencies=tuple(_load_currencies(conn, user_id)),
        exchanges=tuple(_load_exchanges(conn, user_id)),
        transfers=tuple(loaded_transfers),
        loaded_from=start_date,
        loaded_until=end_date,
    )
    logger.debug(
        "Loaded ledger for user %s: %d categories, %d exchanges, %d transfers",
        user_id,
        len(snapshot.categories),
        len(snapshot.exchanges),
        len(snapshot.transfers),
    )
    return snapshot


def load_user_preferences(conn: Connection, user_id: int) -> UserPreferences:
    row = conn.execute(
        select(user_preferences).where(user_preferences.c.user_id == user_id)
    ).mappings().first()
    if row is None:
        raise LookupError(f"Preferences not found for user {user_id}.")

    default_currency_id = row["default_currency_id"]
    if default_currency_id is None:
        default_currency_id = conn.execute(
            select(currencies.c.id).where(
                currencies.c.user_id == user_id,
                currencies.c.is_default.is_(True),
            )
        ).scalar_one_or_none()
    if default_currency_id is None:
        raise LookupError(f"No default currency configured for user {user_id}.")

    algorithm = get_settings().default_algorithm
    if row["multi_currency_algorithm"]:
        algorithm = MultiCurrencyAlgorithm(row["multi_currency_algorithm"])

    return UserPreferences(
        default_currency_id=default_currency_id,
        multi_currency_balance_calculating_algorithm=algorithm,
        include_transactions_from_subcategories=bool(row["include_transactions_from_subcategories"]),
        invert_saldo_for_income=bool(row["invert_saldo_for_income"]),
        transaction_amount_limit_type=TransactionAmountLimitType(row["transaction_amount_limit_type"]),
        transaction_amount_limit_value=row["transaction_amount_limit_value"],
    )


def save_category_tree(conn: Connection, user_id: int, tree: CategoryTreeSnapshot) -> None:
    """Write a mutated tree back: new categories inserted, removed ones
    deleted, bounds and parents of the rest rewritten."""
    existing = set(
        conn.execute(select(categories.c.id).where(categories.c.user_id == user_id)).scalars()
    )
    kept = {category.id for category in tree.categories()}
    removed = existing - kept
    if removed:
        conn.execute(delete(categories).where(categories.c.id.in_(removed)))

    for category in tree.categories():
        values = {
            "name": category.name,
            "category_type": category.category_type.value,
            "parent_id": category.parent_id,
            "lft": category.left,
            "rgt": category.right,
        }
        if category.id in existing:
            conn.execute(update(categories).where(categories.c.id == category.id).values(**values))
        else:
            conn.execute(insert(categories).values(id=category.id, user_id=user_id, **values))
    logger.info(
        "Saved category tree for user %s: %d categories, %d removed",
        user_id,
        len(kept),
        len(removed),
    )


def _load_categories(conn: Connection, user_id: int) -> list[Category]:
    rows = conn.execute(
        select(categories).where(categories.c.user_id == user_id).order_by(categories.c.lft)
    ).mappings().all()
    return [
        Category(
            id=row["id"],
            name=row["name"],
            category_type=row["category_type"],
            left=row["lft"],
            right=row["rgt"],
            parent_id=row["parent_id"],
        )
        for row in rows
    ]


def _load_currencies(conn: Connection, user_id: int) -> list[Currency]:
    rows = conn.execute(
        select(currencies)
        .where(or_(currencies.c.user_id == user_id, currencies.c.user_id.is_(None)))
        .order_by(currencies.c.id)
    ).mappings().all()
    return [
        Currency(
            id=row["id"],
            symbol=row["symbol"],
            long_symbol=row["long_symbol"],
            name=row["name"],
            is_default=bool(row["is_default"]) and row["user_id"] == user_id,
        )
        for row in rows
    ]


def _load_exchanges(conn: Connection, user_id: int) -> list[Exchange]:
    rows = conn.execute(
        select(exchanges)
        .where(or_(exchanges.c.user_id == user_id, exchanges.c.user_id.is_(None)))
        .order_by(exchanges.c.id)
    ).mappings().all()
    return [
        Exchange(
            id=row["id"],
            left_currency_id=row["left_currency_id"],
            right_currency_id=row["right_currency_id"],
            rate=coerce_amount(row["rate"]),
            day=row["day"],
        )
        for row in rows
    ]
