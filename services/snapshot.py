"""Read-only snapshots of the greenhouse tables used by the insights engine."""

from __future__ import annotations

import logging
import sqlite3
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

logger = logging.getLogger(__name__)

__all__ = ["DataUnavailableError", "GreenhouseSnapshot", "_table_exists"]


class DataUnavailableError(RuntimeError):
    """Raised when the source tables cannot be read."""


def _table_exists(conn: sqlite3.Connection, table_name: str) -> bool:
    """Return ``True`` if the table exists in the connected database."""

    cursor = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?",
        (table_name,),
    )
    return cursor.fetchone() is not None


def _rows_to_dicts(rows: Iterable[sqlite3.Row]) -> List[Dict[str, Any]]:
    """Normalise sqlite rows to plain dictionaries."""

    normalised: List[Dict[str, Any]] = []
    for row in rows:
        if isinstance(row, sqlite3.Row):
            normalised.append({key: row[key] for key in row.keys()})
        else:
            normalised.append(dict(row))
    return normalised


def _fetch_table(conn: sqlite3.Connection, table_name: str) -> List[Dict[str, Any]]:
    """Fetch all rows from ``table_name`` as dictionaries.

    Missing tables are treated as empty datasets so a fresh install renders
    empty charts instead of failing.
    """

    if not _table_exists(conn, table_name):
        return []
    cursor = conn.execute(f"SELECT * FROM {table_name}")
    return _rows_to_dicts(cursor.fetchall())


@dataclass
class GreenhouseSnapshot:
    """Rows from the order and crop tables, fetched once per request.

    Attributes are lists of plain dictionaries. The snapshot is never written
    back; analytics callers treat every row as immutable.
    """

    orders: List[Dict[str, Any]] = field(default_factory=list)
    order_items: List[Dict[str, Any]] = field(default_factory=list)
    crops: List[Dict[str, Any]] = field(default_factory=list)

    _items_by_order: Optional[Dict[str, List[Dict[str, Any]]]] = field(
        init=False, default=None, repr=False
    )

    @classmethod
    def build(cls, conn: sqlite3.Connection) -> "GreenhouseSnapshot":
        """Assemble a snapshot from the underlying SQLite database."""

        snapshot = cls()
        try:
            snapshot.orders = _fetch_table(conn, "orders")
            snapshot.order_items = _fetch_table(conn, "order_items")
            snapshot.crops = _fetch_table(conn, "crops")
        except sqlite3.Error as exc:
            logger.error("Failed to read greenhouse tables: %s", exc)
            raise DataUnavailableError(f"Could not load records: {exc}") from exc
        logger.debug(
            "Loaded snapshot with %d orders, %d order items, %d crops",
            len(snapshot.orders),
            len(snapshot.order_items),
            len(snapshot.crops),
        )
        return snapshot

    # ------------------------------------------------------------------
    # Derived lookups
    # ------------------------------------------------------------------
    @property
    def items_by_order(self) -> Mapping[str, List[Dict[str, Any]]]:
        if self._items_by_order is None:
            mapping: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
            for item in self.order_items:
                order_id = item.get("order_id")
                if order_id is None:
                    continue
                mapping[str(order_id)].append(item)
            self._items_by_order = mapping
        return self._items_by_order

    def item_quantity(self, order_id: Any) -> int:
        total = 0
        for item in self.items_by_order.get(str(order_id), []):
            try:
                total += int(item.get("quantity") or 0)
            except (TypeError, ValueError):
                continue
        return total

    # ------------------------------------------------------------------
    # Convenience helpers
    # ------------------------------------------------------------------
    def sales_records(self) -> List[Dict[str, Any]]:
        """Orders that count towards sales, each with an ``item_count`` field."""

        records: List[Dict[str, Any]] = []
        for order in self.orders:
            status = (order.get("status") or "").strip().lower()
            if status in {"cancelled", "canceled", "refunded"}:
                continue
            record = dict(order)
            record["item_count"] = self.item_quantity(order.get("id"))
            records.append(record)
        return records

    def crop_records(self) -> List[Dict[str, Any]]:
        return list(self.crops)
