"""SQLite persistence layer for the restock monitor."""

from __future__ import annotations

import datetime as _dt
import sqlite3
from contextlib import contextmanager
from decimal import Decimal
from pathlib import Path
from typing import Iterable, Iterator, Optional

from .models import (
    NOTIFY_PENDING,
    MonitoringConfig,
    NotificationRecord,
    Product,
    ProductCategory,
    ProductFilter,
    RawProduct,
    Region,
    RestockEvent,
    ScanLogEntry,
    User,
)
from .repository import RepositoryError
from .utils import utcnow

# (code, name, url, currency)
DEFAULT_REGIONS: tuple[tuple[str, str, str, str], ...] = (
    ("US", "United States", "https://www.hermes.com/us/en/", "USD"),
    ("UK", "United Kingdom", "https://www.hermes.com/uk/en/", "GBP"),
    ("FR", "France", "https://www.hermes.com/fr/fr/", "EUR"),
    ("DE", "Germany", "https://www.hermes.com/de/de/", "EUR"),
    ("IT", "Italy", "https://www.hermes.com/it/it/", "EUR"),
    ("ES", "Spain", "https://www.hermes.com/es/es/", "EUR"),
    ("JP", "Japan", "https://www.hermes.com/jp/ja/", "JPY"),
    ("CN", "China", "https://www.hermes.com/cn/zh/", "CNY"),
    ("HK", "Hong Kong", "https://www.hermes.com/hk/en/", "HKD"),
    ("SG", "Singapore", "https://www.hermes.com/sg/en/", "SGD"),
    ("AU", "Australia", "https://www.hermes.com/au/en/", "AUD"),
    ("CA", "Canada", "https://www.hermes.com/ca/en/", "CAD"),
    ("KR", "South Korea", "https://www.hermes.com/kr/ko/", "KRW"),
    ("TW", "Taiwan", "https://www.hermes.com/tw/zh/", "TWD"),
    ("TH", "Thailand", "https://www.hermes.com/th/en/", "THB"),
)

# (name, slug)
DEFAULT_CATEGORIES: tuple[tuple[str, str], ...] = (
    ("Birkin", "birkin"),
    ("Kelly", "kelly"),
    ("Constance", "constance"),
    ("Evelyne", "evelyne"),
    ("Picotin", "picotin"),
    ("Garden Party", "garden-party"),
    ("Herbag", "herbag"),
    ("Lindy", "lindy"),
    ("Bolide", "bolide"),
    ("Jypsiere", "jypsiere"),
)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS regions (
      id        INTEGER PRIMARY KEY AUTOINCREMENT,
      code      TEXT NOT NULL UNIQUE,
      name      TEXT NOT NULL,
      url       TEXT NOT NULL,
      currency  TEXT NOT NULL,
      is_active INTEGER NOT NULL DEFAULT 1,
      created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS product_categories (
      id   INTEGER PRIMARY KEY AUTOINCREMENT,
      name TEXT NOT NULL,
      slug TEXT NOT NULL UNIQUE,
      is_active INTEGER NOT NULL DEFAULT 1
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS users (
      id    INTEGER PRIMARY KEY AUTOINCREMENT,
      email TEXT,
      name  TEXT,
      created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_channels (
      user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
      channel TEXT NOT NULL CHECK (channel IN ('email', 'push')),
      PRIMARY KEY (user_id, channel)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS monitoring_configs (
      id        INTEGER PRIMARY KEY AUTOINCREMENT,
      user_id   INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
      region_id INTEGER NOT NULL REFERENCES regions(id),
      is_active INTEGER NOT NULL DEFAULT 1,
      created_at TEXT NOT NULL,
      UNIQUE (user_id, region_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS product_filters (
      id          INTEGER PRIMARY KEY AUTOINCREMENT,
      user_id     INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
      category_id INTEGER,
      min_price   TEXT,
      max_price   TEXT,
      keywords    TEXT,
      notify_all_restocks INTEGER NOT NULL DEFAULT 0,
      is_active   INTEGER NOT NULL DEFAULT 1,
      created_at  TEXT NOT NULL,
      updated_at  TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS product_filter_colors (
      filter_id INTEGER NOT NULL REFERENCES product_filters(id) ON DELETE CASCADE,
      color     TEXT NOT NULL,
      PRIMARY KEY (filter_id, color)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS product_filter_sizes (
      filter_id INTEGER NOT NULL REFERENCES product_filters(id) ON DELETE CASCADE,
      size      TEXT NOT NULL,
      PRIMARY KEY (filter_id, size)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS products (
      id           INTEGER PRIMARY KEY AUTOINCREMENT,
      region_id    INTEGER NOT NULL REFERENCES regions(id),
      category_id  INTEGER,
      external_id  TEXT,
      name         TEXT NOT NULL,
      description  TEXT,
      price        TEXT,
      currency     TEXT,
      color        TEXT,
      size         TEXT,
      image_url    TEXT,
      product_url  TEXT NOT NULL,
      is_available INTEGER NOT NULL DEFAULT 1,
      last_seen_at TEXT NOT NULL,
      created_at   TEXT NOT NULL,
      updated_at   TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS restock_history (
      id          INTEGER PRIMARY KEY AUTOINCREMENT,
      product_id  INTEGER NOT NULL REFERENCES products(id),
      detected_at TEXT NOT NULL,
      price       TEXT,
      was_notified INTEGER NOT NULL DEFAULT 0,
      notification_count INTEGER NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS notifications (
      id         INTEGER PRIMARY KEY AUTOINCREMENT,
      user_id    INTEGER NOT NULL REFERENCES users(id),
      product_id INTEGER NOT NULL REFERENCES products(id),
      restock_id INTEGER NOT NULL REFERENCES restock_history(id),
      filter_id  INTEGER,
      channel    TEXT NOT NULL CHECK (channel IN ('email', 'push')),
      status     TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ('pending', 'sent', 'failed')),
      sent_at    TEXT,
      error_message TEXT,
      created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS monitoring_logs (
      id             INTEGER PRIMARY KEY AUTOINCREMENT,
      region_id      INTEGER NOT NULL REFERENCES regions(id),
      status         TEXT NOT NULL CHECK (status IN ('success', 'failed', 'blocked')),
      products_found INTEGER NOT NULL DEFAULT 0,
      new_restocks   INTEGER NOT NULL DEFAULT 0,
      duration       INTEGER NOT NULL,
      error_message  TEXT,
      product_details TEXT,
      created_at     TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_products_region_external ON products(region_id, external_id)",
    "CREATE INDEX IF NOT EXISTS idx_products_available ON products(is_available)",
    "CREATE INDEX IF NOT EXISTS idx_restock_product ON restock_history(product_id)",
    "CREATE INDEX IF NOT EXISTS idx_notifications_user ON notifications(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_logs_region_created ON monitoring_logs(region_id, created_at)",
)

_PRODUCT_COLUMNS = (
    "id, region_id, category_id, external_id, name, description, price, currency, "
    "color, size, image_url, product_url, is_available, last_seen_at"
)


def _ts(value: Optional[_dt.datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_ts(value: Optional[str]) -> Optional[_dt.datetime]:
    return _dt.datetime.fromisoformat(value) if value else None


def _dec(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


def _parse_dec(value: Optional[str]) -> Optional[Decimal]:
    return Decimal(value) if value not in (None, "") else None


def _row_to_region(r: sqlite3.Row) -> Region:
    return Region(
        id=r["id"],
        code=r["code"],
        name=r["name"],
        url=r["url"],
        currency=r["currency"],
        is_active=bool(r["is_active"]),
    )


def _row_to_product(r: sqlite3.Row) -> Product:
    return Product(
        id=r["id"],
        region_id=r["region_id"],
        category_id=r["category_id"],
        external_id=r["external_id"],
        name=r["name"],
        description=r["description"],
        price=_parse_dec(r["price"]),
        currency=r["currency"],
        color=r["color"],
        size=r["size"],
        image_url=r["image_url"],
        product_url=r["product_url"],
        is_available=bool(r["is_available"]),
        last_seen_at=_parse_ts(r["last_seen_at"]),
    )


def _row_to_restock(r: sqlite3.Row) -> RestockEvent:
    return RestockEvent(
        id=r["id"],
        product_id=r["product_id"],
        detected_at=_parse_ts(r["detected_at"]),
        price=_parse_dec(r["price"]),
        was_notified=bool(r["was_notified"]),
        notification_count=int(r["notification_count"]),
    )


def _row_to_log(r: sqlite3.Row) -> ScanLogEntry:
    return ScanLogEntry(
        id=r["id"],
        region_id=r["region_id"],
        status=r["status"],
        products_found=int(r["products_found"]),
        new_restocks=int(r["new_restocks"]),
        duration_ms=int(r["duration"]),
        error_message=r["error_message"],
        product_details=r["product_details"],
        created_at=_parse_ts(r["created_at"]),
    )


def _row_to_notification(r: sqlite3.Row) -> NotificationRecord:
    return NotificationRecord(
        id=r["id"],
        user_id=r["user_id"],
        product_id=r["product_id"],
        restock_id=r["restock_id"],
        filter_id=r["filter_id"],
        channel=r["channel"],
        status=r["status"],
        sent_at=_parse_ts(r["sent_at"]),
        error_message=r["error_message"],
    )


class SQLiteRepository:
    """Repository backed by a single SQLite file.

    Every call opens its own connection, so one instance can be shared by
    the scheduler thread, manual scans and admin queries.
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        try:
            conn = sqlite3.connect(self.db_path, timeout=30)
        except sqlite3.Error as e:
            raise RepositoryError(f"cannot open database {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA foreign_keys = ON")
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise RepositoryError(str(e)) from e
        finally:
            conn.close()

    # ---- schema -------------------------------------------------------------

    def init_db(self) -> None:
        """Create tables if they don't exist."""
        with self._connect() as conn:
            for stmt in _SCHEMA:
                conn.execute(stmt)

    def seed_defaults(self) -> None:
        """Insert the built-in regions and categories (idempotent)."""
        now = _ts(utcnow())
        with self._connect() as conn:
            conn.executemany(
                """
                INSERT INTO regions (code, name, url, currency, is_active, created_at)
                VALUES (?, ?, ?, ?, 1, ?)
                ON CONFLICT(code) DO NOTHING
                """,
                [(code, name, url, cur, now) for code, name, url, cur in DEFAULT_REGIONS],
            )
            conn.executemany(
                "INSERT OR IGNORE INTO product_categories (name, slug) VALUES (?, ?)",
                list(DEFAULT_CATEGORIES),
            )

    # ---- regions ------------------------------------------------------------

    def add_region(self, code: str, name: str, url: str, currency: str, *, is_active: bool = True) -> Region:
        with self._connect() as conn:
            cur = conn.execute(
                "INSERT INTO regions (code, name, url, currency, is_active, created_at) VALUES (?, ?, ?, ?, ?, ?)",
                (code, name, url, currency, int(is_active), _ts(utcnow())),
            )
            return Region(id=cur.lastrowid, code=code, name=name, url=url, currency=currency, is_active=is_active)

    def load_active_regions(self) -> list[Region]:
        with self._connect() as conn:
            cur = conn.execute("SELECT * FROM regions WHERE is_active = 1 ORDER BY id")
            return [_row_to_region(r) for r in cur.fetchall()]

    def load_monitored_regions(self) -> list[Region]:
        """Active regions that at least one active monitoring config points at."""
        with self._connect() as conn:
            cur = conn.execute(
                """
                SELECT DISTINCT r.*
                  FROM regions r
                  JOIN monitoring_configs mc ON mc.region_id = r.id
                 WHERE r.is_active = 1 AND mc.is_active = 1
                 ORDER BY r.id
                """
            )
            return [_row_to_region(r) for r in cur.fetchall()]

    def get_region(self, region_id: int) -> Optional[Region]:
        with self._connect() as conn:
            r = conn.execute("SELECT * FROM regions WHERE id = ?", (region_id,)).fetchone()
            return _row_to_region(r) if r else None

    # ---- categories -----------------------------------------------------------

    def add_category(self, name: str, slug: str, *, is_active: bool = True) -> ProductCategory:
        with self._connect() as conn:
            cur = conn.execute(
                "INSERT INTO product_categories (name, slug, is_active) VALUES (?, ?, ?)",
                (name, slug, int(is_active)),
            )
            return ProductCategory(id=cur.lastrowid, name=name, slug=slug, is_active=is_active)

    def load_categories(self) -> list[ProductCategory]:
        """Active product categories in id order."""
        with self._connect() as conn:
            cur = conn.execute("SELECT * FROM product_categories WHERE is_active = 1 ORDER BY id")
            return [
                ProductCategory(id=r["id"], name=r["name"], slug=r["slug"], is_active=bool(r["is_active"]))
                for r in cur.fetchall()
            ]

    # ---- users & subscriptions ----------------------------------------------

    def add_user(self, email: Optional[str] = None, name: Optional[str] = None,
                 channels: Iterable[str] = ()) -> User:
        with self._connect() as conn:
            cur = conn.execute(
                "INSERT INTO users (email, name, created_at) VALUES (?, ?, ?)",
                (email, name, _ts(utcnow())),
            )
            user_id = cur.lastrowid
            conn.executemany(
                "INSERT OR IGNORE INTO user_channels (user_id, channel) VALUES (?, ?)",
                [(user_id, ch) for ch in channels],
            )
            return User(id=user_id, email=email, name=name)

    def get_user(self, user_id: int) -> Optional[User]:
        with self._connect() as conn:
            r = conn.execute("SELECT id, email, name FROM users WHERE id = ?", (user_id,)).fetchone()
            return User(id=r["id"], email=r["email"], name=r["name"]) if r else None

    def load_user_channels(self, user_id: int) -> list[str]:
        with self._connect() as conn:
            cur = conn.execute(
                "SELECT channel FROM user_channels WHERE user_id = ? ORDER BY channel", (user_id,)
            )
            return [r["channel"] for r in cur.fetchall()]

    def add_monitoring_config(self, user_id: int, region_id: int, *, is_active: bool = True) -> MonitoringConfig:
        """Subscribe a user to a region; re-subscribing reactivates the existing row."""
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO monitoring_configs (user_id, region_id, is_active, created_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(user_id, region_id) DO UPDATE SET is_active = excluded.is_active
                """,
                (user_id, region_id, int(is_active), _ts(utcnow())),
            )
            r = conn.execute(
                "SELECT id FROM monitoring_configs WHERE user_id = ? AND region_id = ?",
                (user_id, region_id),
            ).fetchone()
            return MonitoringConfig(id=r["id"], user_id=user_id, region_id=region_id, is_active=is_active)

    def load_active_configs(self, region_id: int) -> list[MonitoringConfig]:
        with self._connect() as conn:
            cur = conn.execute(
                "SELECT * FROM monitoring_configs WHERE region_id = ? AND is_active = 1 ORDER BY user_id, id",
                (region_id,),
            )
            return [
                MonitoringConfig(id=r["id"], user_id=r["user_id"], region_id=r["region_id"], is_active=True)
                for r in cur.fetchall()
            ]

    # ---- filters --------------------------------------------------------------

    def add_filter(
        self,
        user_id: int,
        *,
        category_id: Optional[int] = None,
        colors: Iterable[str] = (),
        sizes: Iterable[str] = (),
        min_price: Optional[Decimal] = None,
        max_price: Optional[Decimal] = None,
        keywords: Optional[str] = None,
        notify_all_restocks: bool = False,
        is_active: bool = True,
    ) -> ProductFilter:
        now = _ts(utcnow())
        with self._connect() as conn:
            cur = conn.execute(
                """
                INSERT INTO product_filters (
                  user_id, category_id, min_price, max_price, keywords,
                  notify_all_restocks, is_active, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (user_id, category_id, _dec(min_price), _dec(max_price), keywords,
                 int(notify_all_restocks), int(is_active), now, now),
            )
            filter_id = cur.lastrowid
            self._write_filter_sets(conn, filter_id, colors, sizes)
            return self._load_filter(conn, filter_id)

    def update_filter(self, filter_id: int, **changes) -> ProductFilter:
        """Update scalar fields and/or replace the color and size sets of a filter."""
        scalar = ("category_id", "min_price", "max_price", "keywords", "notify_all_restocks", "is_active")
        unknown = set(changes) - set(scalar) - {"colors", "sizes"}
        if unknown:
            raise ValueError(f"unknown filter field(s): {', '.join(sorted(unknown))}")

        sets, params = [], []
        for name in scalar:
            if name not in changes:
                continue
            value = changes[name]
            if name in ("min_price", "max_price"):
                value = _dec(value)
            elif name in ("notify_all_restocks", "is_active"):
                value = int(bool(value))
            sets.append(f"{name} = ?")
            params.append(value)
        sets.append("updated_at = ?")
        params.append(_ts(utcnow()))
        params.append(filter_id)

        with self._connect() as conn:
            conn.execute(f"UPDATE product_filters SET {', '.join(sets)} WHERE id = ?", tuple(params))
            if "colors" in changes:
                conn.execute("DELETE FROM product_filter_colors WHERE filter_id = ?", (filter_id,))
                self._write_filter_sets(conn, filter_id, changes["colors"], ())
            if "sizes" in changes:
                conn.execute("DELETE FROM product_filter_sizes WHERE filter_id = ?", (filter_id,))
                self._write_filter_sets(conn, filter_id, (), changes["sizes"])
            return self._load_filter(conn, filter_id)

    def delete_filter(self, filter_id: int) -> bool:
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM product_filters WHERE id = ?", (filter_id,))
            return cur.rowcount > 0

    def load_active_filters(self, user_id: int) -> list[ProductFilter]:
        with self._connect() as conn:
            cur = conn.execute(
                "SELECT id FROM product_filters WHERE user_id = ? AND is_active = 1 ORDER BY id",
                (user_id,),
            )
            return [self._load_filter(conn, r["id"]) for r in cur.fetchall()]

    @staticmethod
    def _write_filter_sets(conn: sqlite3.Connection, filter_id: int,
                           colors: Iterable[str], sizes: Iterable[str]) -> None:
        conn.executemany(
            "INSERT OR IGNORE INTO product_filter_colors (filter_id, color) VALUES (?, ?)",
            [(filter_id, c) for c in colors],
        )
        conn.executemany(
            "INSERT OR IGNORE INTO product_filter_sizes (filter_id, size) VALUES (?, ?)",
            [(filter_id, s) for s in sizes],
        )

    @staticmethod
    def _load_filter(conn: sqlite3.Connection, filter_id: int) -> ProductFilter:
        r = conn.execute("SELECT * FROM product_filters WHERE id = ?", (filter_id,)).fetchone()
        if r is None:
            raise RepositoryError(f"product filter {filter_id} does not exist")
        colors = conn.execute(
            "SELECT color FROM product_filter_colors WHERE filter_id = ?", (filter_id,)
        ).fetchall()
        sizes = conn.execute(
            "SELECT size FROM product_filter_sizes WHERE filter_id = ?", (filter_id,)
        ).fetchall()
        return ProductFilter(
            id=r["id"],
            user_id=r["user_id"],
            category_id=r["category_id"],
            colors=frozenset(c["color"] for c in colors),
            sizes=frozenset(s["size"] for s in sizes),
            min_price=_parse_dec(r["min_price"]),
            max_price=_parse_dec(r["max_price"]),
            keywords=r["keywords"],
            notify_all_restocks=bool(r["notify_all_restocks"]),
            is_active=bool(r["is_active"]),
        )

    # ---- products -------------------------------------------------------------

    def find_product(self, region_id: int, external_id: str) -> Optional[Product]:
        with self._connect() as conn:
            r = conn.execute(
                f"SELECT {_PRODUCT_COLUMNS} FROM products WHERE region_id = ? AND external_id = ? ORDER BY id LIMIT 1",
                (region_id, external_id),
            ).fetchone()
            return _row_to_product(r) if r else None

    def get_product(self, product_id: int) -> Optional[Product]:
        with self._connect() as conn:
            r = conn.execute(f"SELECT {_PRODUCT_COLUMNS} FROM products WHERE id = ?", (product_id,)).fetchone()
            return _row_to_product(r) if r else None

    def list_products(self, region_id: int, *, available_only: bool = False) -> list[Product]:
        sql = f"SELECT {_PRODUCT_COLUMNS} FROM products WHERE region_id = ?"
        if available_only:
            sql += " AND is_available = 1"
        with self._connect() as conn:
            return [_row_to_product(r) for r in conn.execute(sql + " ORDER BY id", (region_id,)).fetchall()]

    def insert_product(self, region_id: int, raw: RawProduct, seen_at: _dt.datetime) -> Product:
        now = _ts(seen_at)
        with self._connect() as conn:
            cur = conn.execute(
                """
                INSERT INTO products (
                  region_id, category_id, external_id, name, description, price, currency,
                  color, size, image_url, product_url, is_available, last_seen_at,
                  created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    region_id, raw.category_id, raw.external_id, raw.name, raw.description,
                    _dec(raw.price), raw.currency, raw.color, raw.size, raw.image_url,
                    raw.product_url, int(raw.is_available), now, now, now,
                ),
            )
            r = conn.execute(f"SELECT {_PRODUCT_COLUMNS} FROM products WHERE id = ?", (cur.lastrowid,)).fetchone()
            return _row_to_product(r)

    def mark_restocked(self, product_id: int, price: Optional[Decimal], seen_at: _dt.datetime) -> None:
        """Flip a product back to available, keeping the old price if none was scraped."""
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE products
                   SET is_available = 1,
                       last_seen_at = ?,
                       updated_at   = ?,
                       price = COALESCE(?, price)
                 WHERE id = ?
                """,
                (_ts(seen_at), _ts(seen_at), _dec(price), product_id),
            )

    def mark_unavailable(self, product_id: int, seen_at: _dt.datetime) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE products SET is_available = 0, updated_at = ? WHERE id = ?",
                (_ts(seen_at), product_id),
            )

    def touch_product(self, product_id: int, seen_at: _dt.datetime) -> None:
        with self._connect() as conn:
            conn.execute("UPDATE products SET last_seen_at = ? WHERE id = ?", (_ts(seen_at), product_id))

    # ---- restock history ------------------------------------------------------

    def insert_restock_event(self, product_id: int, price: Optional[Decimal],
                             detected_at: _dt.datetime) -> RestockEvent:
        with self._connect() as conn:
            cur = conn.execute(
                "INSERT INTO restock_history (product_id, detected_at, price) VALUES (?, ?, ?)",
                (product_id, _ts(detected_at), _dec(price)),
            )
            return RestockEvent(id=cur.lastrowid, product_id=product_id, detected_at=detected_at, price=price)

    def update_restock_notified(self, restock_id: int, was_notified: bool, notification_count: int) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE restock_history SET was_notified = ?, notification_count = ? WHERE id = ?",
                (int(was_notified), int(notification_count), restock_id),
            )

    def get_restock_event(self, restock_id: int) -> Optional[RestockEvent]:
        with self._connect() as conn:
            r = conn.execute("SELECT * FROM restock_history WHERE id = ?", (restock_id,)).fetchone()
            return _row_to_restock(r) if r else None

    def list_restock_events(self, product_id: Optional[int] = None, limit: int = 100) -> list[RestockEvent]:
        """Most recent restocks first, optionally for a single product."""
        sql, params = "SELECT * FROM restock_history", []
        if product_id is not None:
            sql += " WHERE product_id = ?"
            params.append(product_id)
        sql += " ORDER BY detected_at DESC, id DESC LIMIT ?"
        params.append(limit)
        with self._connect() as conn:
            return [_row_to_restock(r) for r in conn.execute(sql, tuple(params)).fetchall()]

    def count_restock_events(self) -> int:
        with self._connect() as conn:
            return int(conn.execute("SELECT COUNT(*) FROM restock_history").fetchone()[0])

    # ---- notifications ------------------------------------------------------

    def insert_notification(self, user_id: int, product_id: int, restock_id: int, channel: str,
                            filter_id: Optional[int] = None) -> NotificationRecord:
        with self._connect() as conn:
            cur = conn.execute(
                """
                INSERT INTO notifications (user_id, product_id, restock_id, filter_id, channel, status, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (user_id, product_id, restock_id, filter_id, channel, NOTIFY_PENDING, _ts(utcnow())),
            )
            return NotificationRecord(
                id=cur.lastrowid, user_id=user_id, product_id=product_id, restock_id=restock_id,
                channel=channel, filter_id=filter_id,
            )

    def update_notification(self, notification_id: int, status: str,
                            sent_at: Optional[_dt.datetime] = None,
                            error_message: Optional[str] = None) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE notifications SET status = ?, sent_at = ?, error_message = ? WHERE id = ?",
                (status, _ts(sent_at), error_message, notification_id),
            )

    def list_notifications(self, user_id: Optional[int] = None, limit: int = 50) -> list[NotificationRecord]:
        sql, params = "SELECT * FROM notifications", []
        if user_id is not None:
            sql += " WHERE user_id = ?"
            params.append(user_id)
        sql += " ORDER BY id DESC LIMIT ?"
        params.append(limit)
        with self._connect() as conn:
            return [_row_to_notification(r) for r in conn.execute(sql, tuple(params)).fetchall()]

    # ---- scan logs ------------------------------------------------------------

    def insert_scan_log(self, entry: ScanLogEntry) -> ScanLogEntry:
        created = entry.created_at or utcnow()
        with self._connect() as conn:
            cur = conn.execute(
                """
                INSERT INTO monitoring_logs (
                  region_id, status, products_found, new_restocks, duration,
                  error_message, product_details, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.region_id, entry.status, entry.products_found, entry.new_restocks,
                    entry.duration_ms, entry.error_message, entry.product_details, _ts(created),
                ),
            )
            r = conn.execute("SELECT * FROM monitoring_logs WHERE id = ?", (cur.lastrowid,)).fetchone()
            return _row_to_log(r)

    def list_scan_logs(self, region_id: Optional[int] = None, limit: int = 100) -> list[ScanLogEntry]:
        """Newest entries first."""
        sql, params = "SELECT * FROM monitoring_logs", []
        if region_id is not None:
            sql += " WHERE region_id = ?"
            params.append(region_id)
        sql += " ORDER BY created_at DESC, id DESC LIMIT ?"
        params.append(limit)
        with self._connect() as conn:
            return [_row_to_log(r) for r in conn.execute(sql, tuple(params)).fetchall()]

    def clear_scan_logs(self) -> int:
        with self._connect() as conn:
            return conn.execute("DELETE FROM monitoring_logs").rowcount


__all__ = ["DEFAULT_CATEGORIES", "DEFAULT_REGIONS", "SQLiteRepository"]
