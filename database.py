import sqlite3
import logging
from pathlib import Path

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

import data_paths

DATABASE_FILENAME = 'cropflow.db'


def database_file() -> Path:
    return data_paths.ensure_data_root() / DATABASE_FILENAME


def get_db_connection():
    """Establishes a connection to the SQLite database."""
    conn = sqlite3.connect(str(database_file()), timeout=30.0, isolation_level='DEFERRED')
    try:
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        conn.execute("PRAGMA cache_size=10000;")
        conn.execute("PRAGMA temp_store=MEMORY;")
    except sqlite3.Error as e:
        logger.warning(f"Could not set PRAGMA settings: {e}")
    conn.row_factory = sqlite3.Row
    return conn


def _ensure_column(cursor: sqlite3.Cursor, table: str, column: str, definition: str) -> None:
    cursor.execute(f"PRAGMA table_info({table})")
    existing_columns = {row[1] for row in cursor.fetchall()}
    if column not in existing_columns:
        logger.info("Adding column %s.%s", table, column)
        cursor.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition}")


def init_db(conn: sqlite3.Connection = None):
    """Initializes the database schema."""
    owns_connection = conn is None
    if owns_connection:
        conn = get_db_connection()
    cursor = conn.cursor()

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS crops (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            batch_code TEXT,
            name TEXT NOT NULL,
            location TEXT,
            growth_stage TEXT,
            health_status TEXT,
            seeding_date TEXT,
            expected_harvest_date TEXT,
            harvest_date TEXT,
            quantity INTEGER DEFAULT 0,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT DEFAULT CURRENT_TIMESTAMP
        );
    """)
    _ensure_column(cursor, 'crops', 'expected_harvest_date', 'TEXT')
    _ensure_column(cursor, 'crops', 'updated_at', 'TEXT')
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_crops_seeding_date ON crops(seeding_date)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_crops_harvest_date ON crops(harvest_date)")
    cursor.execute("CREATE TRIGGER IF NOT EXISTS update_crops_updated_at AFTER UPDATE ON crops FOR EACH ROW BEGIN UPDATE crops SET updated_at = CURRENT_TIMESTAMP WHERE id = OLD.id; END;")

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS orders (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            customer_id INTEGER,
            status TEXT DEFAULT 'pending',
            total_amount REAL DEFAULT 0,
            paypal_order_id TEXT,
            completed_at TEXT,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT DEFAULT CURRENT_TIMESTAMP
        );
    """)
    _ensure_column(cursor, 'orders', 'completed_at', 'TEXT')
    _ensure_column(cursor, 'orders', 'updated_at', 'TEXT')
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_orders_completed_at ON orders(completed_at)")
    cursor.execute("CREATE TRIGGER IF NOT EXISTS update_orders_updated_at AFTER UPDATE ON orders FOR EACH ROW BEGIN UPDATE orders SET updated_at = CURRENT_TIMESTAMP WHERE id = OLD.id; END;")

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS order_items (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            order_id INTEGER NOT NULL,
            plant_id INTEGER,
            plant_name TEXT,
            quantity INTEGER NOT NULL DEFAULT 1,
            unit_price REAL DEFAULT 0,
            FOREIGN KEY (order_id) REFERENCES orders (id) ON DELETE CASCADE
        );
    """)
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_order_items_order_id ON order_items(order_id)")

    conn.commit()
    if owns_connection:
        conn.close()
    logger.info("Database initialized/verified.")
