from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import asdict, fields
from datetime import date
from pathlib import Path
from typing import Iterable, Iterator, List, Optional

from ..data_sources.base import CatalogDataSource, Country, DailyAdEntry, OverrideRecord, Product, ProductStatus
from ..errors import PersistenceError
from ..metrics.calculations import AnalysisRow, Totals
from ..metrics.overrides import OVERRIDE_FIELDS, AnalysisOverride
from ..metrics.simulation import SavedScenario, inputs_from_dict, results_from_dict
from ..snapshots.manager import AnalysisSnapshot

logger = logging.getLogger(__name__)

_OVERRIDE_COLUMNS = list(OVERRIDE_FIELDS)
_TOTALS_COLUMNS = [item.name for item in fields(Totals)]
_ROW_COLUMNS = [item.name for item in fields(AnalysisRow)]

_SCHEMA = """
CREATE TABLE IF NOT EXISTS countries (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    currency TEXT NOT NULL,
    code TEXT NOT NULL DEFAULT '',
    default_shipping REAL NOT NULL DEFAULT 0,
    default_cod REAL NOT NULL DEFAULT 0,
    default_return REAL NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS products (
    id TEXT PRIMARY KEY,
    sku TEXT NOT NULL,
    name TEXT NOT NULL,
    status TEXT NOT NULL,
    cost REAL NOT NULL DEFAULT 0,
    price REAL NOT NULL DEFAULT 0,
    country_ids TEXT NOT NULL DEFAULT '[]',
    image TEXT
);

CREATE TABLE IF NOT EXISTS overrides (
    country_id TEXT NOT NULL,
    product_id TEXT NOT NULL,
    revenue REAL,
    ads REAL,
    service_fees REAL,
    product_fees REAL,
    delivered_orders REAL,
    total_orders REAL,
    orders_confirmed REAL,
    quantity_delivery REAL,
    PRIMARY KEY (country_id, product_id)
);

CREATE TABLE IF NOT EXISTS daily_ads (
    product_id TEXT NOT NULL,
    day TEXT NOT NULL,
    amount REAL NOT NULL CHECK (amount >= 0),
    PRIMARY KEY (product_id, day)
);

CREATE TABLE IF NOT EXISTS snapshots (
    id TEXT PRIMARY KEY,
    period_name TEXT NOT NULL,
    country_id TEXT NOT NULL,
    country_name TEXT NOT NULL,
    currency TEXT NOT NULL,
    total_orders REAL NOT NULL,
    orders_confirmed REAL NOT NULL,
    delivered_orders REAL NOT NULL,
    quantity_delivery REAL NOT NULL,
    total_revenue REAL NOT NULL,
    total_ads REAL NOT NULL,
    total_service_fees REAL NOT NULL,
    total_product_fees REAL NOT NULL,
    profit REAL NOT NULL,
    margin REAL NOT NULL,
    confirmation_rate REAL NOT NULL,
    delivery_rate REAL NOT NULL,
    delivery_rate_per_lead REAL NOT NULL,
    cpa REAL,
    cpad REAL,
    cpd REAL,
    row_count INTEGER NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS snapshot_rows (
    snapshot_id TEXT NOT NULL,
    position INTEGER NOT NULL,
    product_id TEXT NOT NULL,
    product_name TEXT NOT NULL,
    product_sku TEXT NOT NULL,
    total_orders REAL NOT NULL,
    orders_confirmed REAL NOT NULL,
    confirmation_rate REAL NOT NULL,
    delivered_orders REAL NOT NULL,
    delivery_rate REAL NOT NULL,
    delivery_rate_per_lead REAL NOT NULL,
    revenue REAL NOT NULL,
    ads REAL NOT NULL,
    service_fees REAL NOT NULL,
    quantity_delivery REAL NOT NULL,
    product_fees REAL NOT NULL,
    profit REAL NOT NULL,
    margin REAL NOT NULL,
    PRIMARY KEY (snapshot_id, position),
    FOREIGN KEY (snapshot_id) REFERENCES snapshots(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS simulations (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    saved_on TEXT NOT NULL,
    inputs TEXT NOT NULL,
    results TEXT NOT NULL
);
"""


def _placeholders(count: int) -> str:
    return ", ".join("?" for _ in range(count))


class SQLiteRepository(CatalogDataSource):
    """基于 SQLite 的持久化仓储：目录、覆盖值、每日广告费、快照与模拟方案。

    所有 sqlite3 异常统一转换为 PersistenceError，不做自动重试。
    """

    def __init__(self, db_path: Path | str) -> None:
        self.name = "sqlite"
        self._db_path = Path(db_path)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """打开连接并开启外键约束；with 块内为一个事务，异常时整体回滚。"""
        try:
            conn = sqlite3.connect(self._db_path)
            try:
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA foreign_keys = ON;")
                with conn:
                    yield conn
            finally:
                conn.close()
        except sqlite3.Error as exc:
            logger.error("SQLite operation failed on %s: %s", self._db_path, exc)
            raise PersistenceError(f"数据库操作失败：{exc}") from exc

    def initialize(self) -> None:
        """初始化数据库文件及表结构。"""

        if not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)

        with self._connect() as conn:
            conn.executescript(_SCHEMA)

    def is_empty(self) -> bool:
        """目录中既没有国家也没有商品时返回 True，用于决定是否写入演示数据。"""

        with self._connect() as conn:
            countries = conn.execute("SELECT COUNT(*) FROM countries").fetchone()[0]
            products = conn.execute("SELECT COUNT(*) FROM products").fetchone()[0]
        return countries == 0 and products == 0

    # 目录 ---------------------------------------------------------------

    def fetch_countries(self) -> List[Country]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM countries ORDER BY rowid").fetchall()
        return [
            Country(
                id=row["id"],
                name=row["name"],
                currency=row["currency"],
                code=row["code"],
                default_shipping=row["default_shipping"],
                default_cod=row["default_cod"],
                default_return=row["default_return"],
            )
            for row in rows
        ]

    def fetch_products(self) -> List[Product]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM products ORDER BY rowid").fetchall()
        return [
            Product(
                id=row["id"],
                sku=row["sku"],
                name=row["name"],
                status=ProductStatus(row["status"]),
                cost=row["cost"],
                price=row["price"],
                country_ids=json.loads(row["country_ids"]),
                image=row["image"],
            )
            for row in rows
        ]

    def save_countries(self, countries: Iterable[Country]) -> None:
        with self._connect() as conn:
            conn.executemany(
                """
                INSERT INTO countries (id, name, currency, code, default_shipping, default_cod, default_return)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    currency = excluded.currency,
                    code = excluded.code,
                    default_shipping = excluded.default_shipping,
                    default_cod = excluded.default_cod,
                    default_return = excluded.default_return
                """,
                [
                    (
                        country.id,
                        country.name,
                        country.currency,
                        country.code,
                        country.default_shipping,
                        country.default_cod,
                        country.default_return,
                    )
                    for country in countries
                ],
            )

    def save_products(self, products: Iterable[Product]) -> None:
        with self._connect() as conn:
            conn.executemany(
                """
                INSERT INTO products (id, sku, name, status, cost, price, country_ids, image)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    sku = excluded.sku,
                    name = excluded.name,
                    status = excluded.status,
                    cost = excluded.cost,
                    price = excluded.price,
                    country_ids = excluded.country_ids,
                    image = excluded.image
                """,
                [
                    (
                        product.id,
                        product.sku,
                        product.name,
                        ProductStatus(product.status).value,
                        product.cost,
                        product.price,
                        json.dumps(list(product.country_ids)),
                        product.image,
                    )
                    for product in products
                ],
            )

    def delete_country(self, country_id: str, products: Iterable[Product] = ()) -> None:
        """删除国家及其覆盖值，并在同一事务内写回已清理 country_ids 的商品。"""

        with self._connect() as conn:
            conn.execute("DELETE FROM countries WHERE id = ?", (country_id,))
            conn.execute("DELETE FROM overrides WHERE country_id = ?", (country_id,))
            conn.executemany(
                "UPDATE products SET country_ids = ? WHERE id = ?",
                [(json.dumps(list(product.country_ids)), product.id) for product in products],
            )

    def delete_product(self, product_id: str) -> None:
        """删除商品及其覆盖值与每日广告费。"""

        with self._connect() as conn:
            conn.execute("DELETE FROM products WHERE id = ?", (product_id,))
            conn.execute("DELETE FROM overrides WHERE product_id = ?", (product_id,))
            conn.execute("DELETE FROM daily_ads WHERE product_id = ?", (product_id,))

    # 覆盖值 -------------------------------------------------------------

    def fetch_overrides(self) -> List[OverrideRecord]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM overrides ORDER BY rowid").fetchall()
        return [
            (
                row["country_id"],
                row["product_id"],
                AnalysisOverride(**{name: row[name] for name in _OVERRIDE_COLUMNS}),
            )
            for row in rows
        ]

    def save_override(self, country_id: str, product_id: str, override: AnalysisOverride) -> None:
        """写入合并后的完整覆盖值，NULL 表示未设置。"""

        columns = ["country_id", "product_id", *_OVERRIDE_COLUMNS]
        updates = ", ".join(f"{name} = excluded.{name}" for name in _OVERRIDE_COLUMNS)
        with self._connect() as conn:
            conn.execute(
                f"""
                INSERT INTO overrides ({", ".join(columns)})
                VALUES ({_placeholders(len(columns))})
                ON CONFLICT(country_id, product_id) DO UPDATE SET {updates}
                """,
                (country_id, product_id, *(getattr(override, name) for name in _OVERRIDE_COLUMNS)),
            )

    # 每日广告费 ---------------------------------------------------------

    def fetch_daily_ads(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[DailyAdEntry]:
        query = "SELECT product_id, day, amount FROM daily_ads WHERE 1 = 1"
        params: List[str] = []
        if start is not None:
            query += " AND day >= ?"
            params.append(start.isoformat())
        if end is not None:
            query += " AND day <= ?"
            params.append(end.isoformat())
        query += " ORDER BY day, product_id"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [
            DailyAdEntry(product_id=row["product_id"], day=date.fromisoformat(row["day"]), amount=row["amount"])
            for row in rows
        ]

    def save_daily_ads(self, entries: Iterable[DailyAdEntry]) -> int:
        """按 (商品, 日期) 写入，已存在的记录被替换；返回写入条数。"""

        payload = [(entry.product_id, entry.day.isoformat(), entry.amount) for entry in entries]
        with self._connect() as conn:
            conn.executemany(
                """
                INSERT INTO daily_ads (product_id, day, amount) VALUES (?, ?, ?)
                ON CONFLICT(product_id, day) DO UPDATE SET amount = excluded.amount
                """,
                payload,
            )
        return len(payload)

    # 快照 ---------------------------------------------------------------

    def _insert_snapshot(self, conn: sqlite3.Connection, snapshot: AnalysisSnapshot) -> None:
        header = ["id", "period_name", "country_id", "country_name", "currency", *_TOTALS_COLUMNS, "created_at"]
        conn.execute(
            f"INSERT INTO snapshots ({', '.join(header)}) VALUES ({_placeholders(len(header))})",
            (
                snapshot.id,
                snapshot.period_name,
                snapshot.country_id,
                snapshot.country_name,
                snapshot.currency,
                *(getattr(snapshot.totals, name) for name in _TOTALS_COLUMNS),
                snapshot.created_at,
            ),
        )
        row_columns = ["snapshot_id", "position", *_ROW_COLUMNS]
        conn.executemany(
            f"INSERT INTO snapshot_rows ({', '.join(row_columns)}) VALUES ({_placeholders(len(row_columns))})",
            [
                (snapshot.id, position, *(getattr(row, name) for name in _ROW_COLUMNS))
                for position, row in enumerate(snapshot.rows)
            ],
        )

    def insert_snapshot(self, snapshot: AnalysisSnapshot) -> None:
        with self._connect() as conn:
            self._insert_snapshot(conn, snapshot)

    def replace_snapshot(self, snapshot: AnalysisSnapshot) -> None:
        """删除 + 重建在同一事务内完成，任一步失败时原快照保持不变。"""

        with self._connect() as conn:
            conn.execute("DELETE FROM snapshots WHERE id = ?", (snapshot.id,))
            self._insert_snapshot(conn, snapshot)

    def delete_snapshot(self, snapshot_id: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM snapshots WHERE id = ?", (snapshot_id,))

    def rename_snapshot(self, snapshot_id: str, period_name: str) -> Optional[AnalysisSnapshot]:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE snapshots SET period_name = ? WHERE id = ?",
                (period_name, snapshot_id),
            )
            if cursor.rowcount == 0:
                return None
        return self.fetch_snapshot(snapshot_id)

    def fetch_snapshot(self, snapshot_id: str) -> Optional[AnalysisSnapshot]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM snapshots WHERE id = ?", (snapshot_id,)).fetchone()
            if not row:
                return None
            return self._to_snapshot(conn, row)

    def fetch_snapshots(self, limit: Optional[int] = None) -> List[AnalysisSnapshot]:
        """按保存时间逆序返回快照，limit 为 None 时返回全部。"""

        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM snapshots
                ORDER BY created_at DESC, rowid DESC
                LIMIT ?
                """,
                (-1 if limit is None else limit,),
            ).fetchall()
            return [self._to_snapshot(conn, row) for row in rows]

    def _to_snapshot(self, conn: sqlite3.Connection, row: sqlite3.Row) -> AnalysisSnapshot:
        """获取指定快照的商品行（按保存顺序）并组装快照。"""

        product_rows = conn.execute(
            f"""
            SELECT {", ".join(_ROW_COLUMNS)}
            FROM snapshot_rows
            WHERE snapshot_id = ?
            ORDER BY position
            """,
            (row["id"],),
        )
        return AnalysisSnapshot(
            id=row["id"],
            period_name=row["period_name"],
            country_id=row["country_id"],
            country_name=row["country_name"],
            currency=row["currency"],
            rows=[AnalysisRow(*item) for item in product_rows],
            totals=Totals(**{name: row[name] for name in _TOTALS_COLUMNS}),
            created_at=row["created_at"],
        )

    # 模拟方案 -----------------------------------------------------------

    def save_simulation(self, scenario: SavedScenario) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO simulations (id, name, saved_on, inputs, results) VALUES (?, ?, ?, ?, ?)",
                (
                    scenario.id,
                    scenario.name,
                    scenario.date,
                    json.dumps(asdict(scenario.inputs)),
                    json.dumps(asdict(scenario.results)),
                ),
            )

    def fetch_simulations(self) -> List[SavedScenario]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM simulations ORDER BY rowid").fetchall()
        return [
            SavedScenario(
                id=row["id"],
                name=row["name"],
                date=row["saved_on"],
                inputs=inputs_from_dict(json.loads(row["inputs"])),
                results=results_from_dict(json.loads(row["results"])),
            )
            for row in rows
        ]

    def delete_simulation(self, scenario_id: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM simulations WHERE id = ?", (scenario_id,))
