"""
model_persistence.py
~~~~~~~~~~~~~~~~~~~~

SQLite-based snapshot store for networks.

Networks are stored in the plain-text network format, so a snapshot can
be read back by any version that understands the layer kinds it uses.
The training program keeps its best-scoring checkpoints here.
"""

import sqlite3
import json
import os
import logging
from typing import Optional, List, Dict, Any, Generator, Iterable
from contextlib import contextmanager

from layercake.fft import FFT
from layercake.network import Network
from layercake.persistence import serialize_network, deserialize_network

# Configure module logger
logger = logging.getLogger(__name__)


class ModelDatabase:
    """
    Manages the SQLite database of network snapshots.

    The database stores:
    - Snapshot metadata (layer kinds and widths, training status, accuracy)
    - The serialized network text
    """

    def __init__(
        self,
        db_path: str = 'models/networks.db',
        fft: Optional[FFT] = None
    ):
        """
        Initialize the database connection.

        Args:
            db_path: Path to the SQLite database file
            fft: Engine handed to convolution layers of loaded networks
        """
        self.db_path = db_path
        self.fft = fft
        self._ensure_directory()
        self._initialize_schema()

    def _ensure_directory(self) -> None:
        """Create the database directory if it doesn't exist."""
        db_dir = os.path.dirname(self.db_path)
        if db_dir and not os.path.exists(db_dir):
            os.makedirs(db_dir)

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Context manager for database connections.

        Yields:
            sqlite3.Connection: Database connection
        """
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row  # Enable column access by name
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _initialize_schema(self) -> None:
        """Create the database schema if it doesn't exist."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS networks (
                    network_id TEXT PRIMARY KEY,
                    architecture TEXT NOT NULL,
                    network_data TEXT NOT NULL,
                    trained INTEGER NOT NULL DEFAULT 0,
                    accuracy REAL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            ''')

            cursor.execute('''
                CREATE INDEX IF NOT EXISTS idx_created_at
                ON networks(created_at DESC)
            ''')

    def save_network_to_db(
        self,
        network: Network,
        network_id: str,
        trained: bool = True,
        accuracy: Optional[float] = None
    ) -> bool:
        """
        Save a network snapshot, replacing any snapshot with the same id.

        Args:
            network: Connected network to save
            network_id: Unique identifier for the snapshot
            trained: Whether the network has been trained
            accuracy: Test accuracy (0.0 to 1.0)

        Returns:
            bool: True if successful

        Raises:
            ValueError: If accuracy is out of valid range
        """
        if accuracy is not None and not 0.0 <= accuracy <= 1.0:
            raise ValueError(
                f"Accuracy must be between 0.0 and 1.0, got {accuracy}"
            )

        network_data = serialize_network(network)
        architecture_json = json.dumps(network.describe())

        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                INSERT OR REPLACE INTO networks
                (network_id, architecture, network_data, trained,
                 accuracy, updated_at)
                VALUES (?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
            ''', (
                network_id,
                architecture_json,
                network_data,
                1 if trained else 0,
                accuracy
            ))

        logger.info(
            f"Saved network '{network_id}' with sizes {network.sizes}, "
            f"trained={trained}, accuracy={accuracy}"
        )
        return True

    def load_network_from_db(self, network_id: str) -> Optional[Network]:
        """
        Load a network snapshot.

        Args:
            network_id: Unique identifier of the snapshot

        Returns:
            Network or None if not found
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                'SELECT network_data FROM networks WHERE network_id = ?',
                (network_id,)
            )
            row = cursor.fetchone()

        if row is None:
            logger.warning(f"Network '{network_id}' not found")
            return None

        network = deserialize_network(row['network_data'], self.fft)
        logger.info(f"Loaded network '{network_id}'")
        return network

    def _row_to_metadata(self, row: sqlite3.Row) -> Dict[str, Any]:
        architecture = json.loads(row['architecture'])
        return {
            'network_id': row['network_id'],
            'architecture': architecture,
            'sizes': [layer['n'] for layer in architecture],
            'trained': bool(row['trained']),
            'accuracy': row['accuracy'],
            'created_at': row['created_at'],
            'updated_at': row['updated_at']
        }

    def list_networks_from_db(self) -> List[Dict[str, Any]]:
        """
        List all snapshots with metadata, newest first.

        Returns:
            List of metadata dictionaries
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                SELECT
                    network_id,
                    architecture,
                    trained,
                    accuracy,
                    created_at,
                    updated_at
                FROM networks
                ORDER BY created_at DESC
            ''')
            networks = [self._row_to_metadata(row) for row in cursor.fetchall()]

        logger.debug(f"Listed {len(networks)} networks")
        return networks

    def delete_network_from_db(self, network_id: str) -> bool:
        """
        Delete a snapshot.

        Args:
            network_id: Unique identifier of the snapshot

        Returns:
            bool: True if deleted, False if not found
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                'DELETE FROM networks WHERE network_id = ?',
                (network_id,)
            )
            deleted = cursor.rowcount > 0

        if deleted:
            logger.info(f"Deleted network '{network_id}'")
        else:
            logger.warning(
                f"Could not delete network '{network_id}': not found"
            )
        return deleted

    def get_network_metadata_from_db(
        self,
        network_id: str
    ) -> Optional[Dict[str, Any]]:
        """
        Get snapshot metadata without rebuilding the network.

        Args:
            network_id: Unique identifier of the snapshot

        Returns:
            Metadata dictionary or None if not found
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                SELECT
                    network_id,
                    architecture,
                    trained,
                    accuracy,
                    created_at,
                    updated_at
                FROM networks
                WHERE network_id = ?
            ''', (network_id,))
            row = cursor.fetchone()

        if row is None:
            logger.warning(f"Metadata for network '{network_id}' not found")
            return None
        return self._row_to_metadata(row)

    def delete_old_networks_from_db(
        self,
        days: int,
        keep: Iterable[str] = ()
    ) -> int:
        """
        Delete snapshots created more than ``days`` days ago.

        Args:
            days: Age threshold in days
            keep: Snapshot ids to leave in place regardless of age

        Returns:
            int: Number of deleted snapshots

        Raises:
            ValueError: If days is negative
        """
        if days < 0:
            raise ValueError(f"days must be non-negative, got {days}")

        keep = list(keep)
        query = "DELETE FROM networks WHERE created_at < datetime('now', ?)"
        if keep:
            query += f" AND network_id NOT IN ({', '.join('?' * len(keep))})"

        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, [f'-{int(days)} days'] + keep)
            deleted = cursor.rowcount

        logger.info(f"Deleted {deleted} network(s) older than {days} day(s)")
        return deleted


# Global database instance
_db = None


def _get_db(model_dir: str = 'models') -> ModelDatabase:
    """
    Get the database for ``model_dir``.

    The default directory shares one global instance.

    Returns:
        ModelDatabase: The database instance
    """
    global _db
    if model_dir != 'models':
        return ModelDatabase(db_path=os.path.join(model_dir, 'networks.db'))
    if _db is None:
        _db = ModelDatabase()
    return _db


def save_network(
    network: Network,
    network_id: str,
    model_dir: str = 'models',
    trained: bool = True,
    accuracy: Optional[float] = None
) -> bool:
    """
    Save a network snapshot to the SQLite database.

    Args:
        network: The network to save
        network_id: A unique identifier for the snapshot
        model_dir: Directory for the database file
        trained: Whether the network has been trained
        accuracy: The test accuracy of the network (0.0 to 1.0)

    Returns:
        bool: True if the save was successful, False otherwise

    Example:
        >>> save_network(build_mnist_network(), "fresh", trained=False)
        True
    """
    if not network_id or not isinstance(network_id, str):
        logger.error("Invalid network_id: must be a non-empty string")
        return False

    try:
        return _get_db(model_dir).save_network_to_db(
            network, network_id, trained, accuracy
        )
    except ValueError as e:
        logger.error(f"Validation error saving network '{network_id}': {e}")
        return False
    except sqlite3.Error as e:
        logger.error(f"Database error saving network '{network_id}': {e}")
        return False


def load_network(
    network_id: str,
    model_dir: str = 'models'
) -> Optional[Network]:
    """
    Load a network snapshot from the SQLite database.

    Args:
        network_id: The unique identifier of the snapshot
        model_dir: Directory where the database is stored

    Returns:
        The loaded network or None if not found
    """
    if not network_id or not isinstance(network_id, str):
        logger.error("Invalid network_id: must be a non-empty string")
        return None

    try:
        return _get_db(model_dir).load_network_from_db(network_id)
    except sqlite3.Error as e:
        logger.error(f"Database error loading network '{network_id}': {e}")
        return None


def list_saved_networks(model_dir: str = 'models') -> List[Dict[str, Any]]:
    """
    List all saved snapshots with their metadata.

    Args:
        model_dir: Directory where the database is stored

    Returns:
        list: Metadata dictionaries, newest first
    """
    try:
        return _get_db(model_dir).list_networks_from_db()
    except sqlite3.Error as e:
        logger.error(f"Database error listing networks: {e}")
        return []
    except json.JSONDecodeError as e:
        logger.error(f"JSON decode error listing networks: {e}")
        return []


def delete_network(network_id: str, model_dir: str = 'models') -> bool:
    """
    Delete a saved snapshot.

    Args:
        network_id: The unique identifier of the snapshot
        model_dir: Directory where the database is stored

    Returns:
        bool: True if deletion was successful, False otherwise
    """
    if not network_id or not isinstance(network_id, str):
        logger.error("Invalid network_id: must be a non-empty string")
        return False

    try:
        return _get_db(model_dir).delete_network_from_db(network_id)
    except sqlite3.Error as e:
        logger.error(f"Database error deleting network '{network_id}': {e}")
        return False


def get_network_metadata(
    network_id: str,
    model_dir: str = 'models'
) -> Optional[Dict[str, Any]]:
    """
    Get metadata for a snapshot without rebuilding the network.

    Args:
        network_id: The unique identifier of the snapshot
        model_dir: Directory where the database is stored

    Returns:
        dict: Snapshot metadata or None if not found
    """
    if not network_id or not isinstance(network_id, str):
        logger.error("Invalid network_id: must be a non-empty string")
        return None

    try:
        return _get_db(model_dir).get_network_metadata_from_db(network_id)
    except sqlite3.Error as e:
        logger.error(
            f"Database error getting metadata for '{network_id}': {e}"
        )
        return None
    except json.JSONDecodeError as e:
        logger.error(
            f"JSON decode error getting metadata for '{network_id}': {e}"
        )
        return None


def delete_old_networks(
    days: int = 2,
    model_dir: str = 'models',
    keep: Iterable[str] = ()
) -> int:
    """
    Delete snapshots older than the given number of days.

    Args:
        days: Age threshold in days (must be non-negative)
        model_dir: Directory where the database is stored
        keep: Snapshot ids to leave in place regardless of age

    Returns:
        int: Number of deleted snapshots, -1 on a database error

    Raises:
        ValueError: If days is negative
    """
    if days < 0:
        raise ValueError(f"days must be non-negative, got {days}")

    try:
        return _get_db(model_dir).delete_old_networks_from_db(days, keep)
    except sqlite3.Error as e:
        logger.error(f"Database error deleting old networks: {e}")
        return -1
