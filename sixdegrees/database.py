import sqlite3
import json
import time
import logging
from contextlib import contextmanager
from sixdegrees.config import DATABASE_PATH
from sixdegrees.models import UserResult

logger = logging.getLogger(__name__)

# Use database path from config
DATABASE_NAME = str(DATABASE_PATH)


@contextmanager
def get_db():
    """Context manager for database connections with proper timeout"""
    # Set timeout to 20 seconds to handle concurrent writes better
    conn = sqlite3.connect(DATABASE_NAME, timeout=20.0)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
        conn.commit()
    except Exception as e:
        conn.rollback()
        raise e
    finally:
        conn.close()


def encode_value(value):
    """Serialize an entity value for storage"""
    if isinstance(value, UserResult):
        return json.dumps(value.model_dump(), sort_keys=True)
    return json.dumps(value)


def decode_value(raw):
    value = json.loads(raw)
    if isinstance(value, dict):
        return UserResult(**value)
    return value


def init_db():
    """Initialize the database with required tables and enable WAL mode"""
    with get_db() as conn:
        cursor = conn.cursor()

        # WAL lets readers proceed while a search is writing
        cursor.execute('PRAGMA journal_mode=WAL')
        cursor.execute('PRAGMA busy_timeout=20000')

        # One row per entity whose neighbors have been looked up
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS queried_nodes (
                label TEXT NOT NULL,
                node TEXT NOT NULL,
                use_count INTEGER DEFAULT 1,
                last_used TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (label, node)
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS connections (
                label TEXT NOT NULL,
                node TEXT NOT NULL,
                neighbor TEXT NOT NULL,
                position INTEGER NOT NULL,
                PRIMARY KEY (label, node, neighbor)
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS evidence (
                label TEXT NOT NULL,
                node TEXT NOT NULL,
                evidence_id TEXT NOT NULL,
                entities TEXT NOT NULL,
                PRIMARY KEY (label, node, evidence_id)
            )
        ''')

        # Reverse lookups for undirected path queries
        cursor.execute('''
            CREATE INDEX IF NOT EXISTS idx_connections_neighbor ON connections(label, neighbor)
        ''')
        cursor.execute('''
            CREATE INDEX IF NOT EXISTS idx_queried_nodes_last_used ON queried_nodes(last_used DESC)
        ''')


def save_connections(label, node, neighbors, evidence=None, max_retries=3):
    """
    Save the neighbors (and optional evidence) found for a queried entity

    Uses a single transaction for all rows, retrying with exponential backoff
    while the database is locked by a concurrent writer.

    Args:
        label: Cache partition ("Hashtag", "User", ...)
        node: The queried entity
        neighbors: Distinct neighbors in discovery order
        evidence: Optional mapping of evidence id -> entities it names
        max_retries: Maximum retry attempts for database lock errors (default: 3)

    Raises:
        sqlite3.OperationalError: If database remains locked after all retries
    """
    node_key = encode_value(node)
    last_exception = None

    for attempt in range(max_retries):
        try:
            with get_db() as conn:
                cursor = conn.cursor()

                cursor.execute('''
                    INSERT INTO queried_nodes (label, node) VALUES (?, ?)
                    ON CONFLICT(label, node) DO UPDATE SET
                        use_count = use_count + 1,
                        last_used = CURRENT_TIMESTAMP
                ''', (label, node_key))

                cursor.execute('DELETE FROM connections WHERE label = ? AND node = ?', (label, node_key))
                cursor.executemany('''
                    INSERT OR IGNORE INTO connections (label, node, neighbor, position)
                    VALUES (?, ?, ?, ?)
                ''', [(label, node_key, encode_value(n), i) for i, n in enumerate(neighbors)])

                cursor.execute('DELETE FROM evidence WHERE label = ? AND node = ?', (label, node_key))
                if evidence:
                    cursor.executemany('''
                        INSERT INTO evidence (label, node, evidence_id, entities)
                        VALUES (?, ?, ?, ?)
                    ''', [
                        (label, node_key, evidence_id, json.dumps([encode_value(v) for v in values]))
                        for evidence_id, values in evidence.items()
                    ])
                return len(neighbors)

        except sqlite3.OperationalError as e:
            last_exception = e
            error_str = str(e).lower()
            if 'locked' in error_str or 'busy' in error_str:
                if attempt < max_retries - 1:
                    # Exponential backoff: 0.1s, 0.2s, 0.4s
                    sleep_time = 0.1 * (2 ** attempt)
                    logger.warning(f"Database locked, retrying in {sleep_time}s (attempt {attempt + 1}/{max_retries})")
                    time.sleep(sleep_time)
                    continue
            raise

    if last_exception:
        raise last_exception


def get_connections(label, node):
    """
    Retrieve the stored neighbors of a queried entity

    Returns:
        List of neighbors in discovery order, or None if the entity was never queried
    """
    node_key = encode_value(node)
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute('''
            SELECT 1 FROM queried_nodes WHERE label = ? AND node = ?
        ''', (label, node_key))
        if cursor.fetchone() is None:
            return None

        cursor.execute('''
            UPDATE queried_nodes
            SET last_used = CURRENT_TIMESTAMP, use_count = use_count + 1
            WHERE label = ? AND node = ?
        ''', (label, node_key))

        cursor.execute('''
            SELECT neighbor FROM connections
            WHERE label = ? AND node = ?
            ORDER BY position
        ''', (label, node_key))
        return [decode_value(row['neighbor']) for row in cursor.fetchall()]


def get_evidence(label, node):
    """Evidence recorded when the entity was queried, as {evidence_id: [entities]}"""
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute('''
            SELECT evidence_id, entities FROM evidence
            WHERE label = ? AND node = ?
        ''', (label, encode_value(node)))
        return {
            row['evidence_id']: [decode_value(v) for v in json.loads(row['entities'])]
            for row in cursor.fetchall()
        }


def get_referencing_nodes(label, neighbor):
    """Queried entities that listed the given entity as a neighbor"""
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute('''
            SELECT node FROM connections
            WHERE label = ? AND neighbor = ?
        ''', (label, encode_value(neighbor)))
        return [decode_value(row['node']) for row in cursor.fetchall()]


def get_recent_nodes(limit=1000):
    """Most recently used queried entities as (label, node) pairs"""
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute('''
            SELECT label, node FROM queried_nodes
            ORDER BY last_used DESC, use_count DESC
            LIMIT ?
        ''', (limit,))
        return [(row['label'], decode_value(row['node'])) for row in cursor.fetchall()]


def cleanup_old_connections(days_old=30):
    """
    Remove queried entities (and their rows) not used within days_old days

    Returns:
        int: Number of entities removed
    """
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute('''
            SELECT label, node FROM queried_nodes
            WHERE last_used < datetime('now', '-' || ? || ' days')
        ''', (days_old,))
        stale = [(row['label'], row['node']) for row in cursor.fetchall()]

        for label, node in stale:
            cursor.execute('DELETE FROM connections WHERE label = ? AND node = ?', (label, node))
            cursor.execute('DELETE FROM evidence WHERE label = ? AND node = ?', (label, node))
            cursor.execute('DELETE FROM queried_nodes WHERE label = ? AND node = ?', (label, node))

        return len(stale)
