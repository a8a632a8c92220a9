"""
Status source connection: a single psycopg2 connection used for polling
"""
import psycopg2
from typing import Optional, List, Tuple
import logging

logger = logging.getLogger(__name__)


class StatusSourceError(Exception):
    """Raised when the replication status source cannot be reached or queried"""


class DatabaseConnection:
    """Manages the one connection the poller keeps open for its whole run"""

    def __init__(self, connection_string: str):
        """
        Initialize connection manager

        Args:
            connection_string: libpq connection string, passed through unmodified
        """
        self.connection_string = connection_string
        self.conn = None

    def connect(self):
        """Open the connection, failing immediately on error"""
        try:
            self.conn = psycopg2.connect(self.connection_string)
        except psycopg2.Error as e:
            raise StatusSourceError(f"could not connect to server: {e}") from e

        # Each poll must see current replication state, not a transaction snapshot
        self.conn.autocommit = True
        logger.debug(f"Connected to server version {self.conn.server_version}")
        return self

    @property
    def server_version(self) -> int:
        """Integer server version, e.g. 150004"""
        if self.conn is None:
            self.connect()
        return self.conn.server_version

    def fetch_status(
        self,
        query: str,
        params: Optional[tuple] = None
    ) -> Tuple[List[tuple], int]:
        """
        Execute the status query

        Args:
            query: SQL query to execute
            params: Query parameters

        Returns:
            All result rows and the number of result columns
        """
        if self.conn is None:
            self.connect()

        try:
            with self.conn.cursor() as cursor:
                cursor.execute(query, params)
                if cursor.description is None:
                    raise StatusSourceError("status query did not return a result set")
                return cursor.fetchall(), len(cursor.description)
        except psycopg2.Error as e:
            raise StatusSourceError(f"could not query for replication status: {e}") from e

    def close(self):
        """Close the connection"""
        if self.conn is not None:
            self.conn.close()
            self.conn = None
            logger.debug("Connection closed")

    def __enter__(self):
        return self.connect()

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
