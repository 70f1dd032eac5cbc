import sqlite3
import logging

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

from data_paths import DATA_ROOT, ensure_data_root

ensure_data_root()

DATA_DIR = DATA_ROOT
DATABASE_FILE = DATA_DIR / 'studio_orders.db'


def get_db_connection():
    """Establishes a connection to the SQLite database."""
    ensure_data_root()
    conn = sqlite3.connect(str(DATABASE_FILE), timeout=30.0, isolation_level='DEFERRED')
    try:
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        conn.execute("PRAGMA temp_store=MEMORY;")
    except sqlite3.Error as e:
        logger.warning(f"Could not set PRAGMA settings: {e}")
    conn.row_factory = sqlite3.Row
    return conn


def ensure_documents_schema(cursor: sqlite3.Cursor) -> None:
    """Create the JSON document table and its indexes if they are missing."""
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS documents (
            collection TEXT NOT NULL,
            doc_id TEXT NOT NULL,
            data TEXT NOT NULL,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
            PRIMARY KEY (collection, doc_id)
        );
    """)
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_documents_collection ON documents(collection)")


def init_db():
    """Initializes the database schema."""
    conn = get_db_connection()
    cursor = conn.cursor()
    ensure_documents_schema(cursor)
    conn.commit()
    conn.close()
    logger.info("Database initialized.")

if __name__ == '__main__':
    init_db()
