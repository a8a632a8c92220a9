"""
Centralized poller configuration and status query construction
"""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple
from dotenv import load_dotenv

# Load environment variables from .env file
env_path = Path(__file__).parent.parent / '.env'
if env_path.exists():
    load_dotenv(env_path)

# Application name pg_receivewal reports to the primary unless told otherwise
DEFAULT_APPNAME = os.getenv("RETAIN_WAL_APPNAME", "pg_receivewal")

# Polling defaults (seconds)
DEFAULT_POLL_INTERVAL = os.getenv("RETAIN_WAL_SLEEP", "10")
DEFAULT_INITIAL_DELAY = os.getenv("RETAIN_WAL_INITIAL_SLEEP", "0")

# pg_stat_replication and its helper functions were renamed in PostgreSQL 10
WAL_RENAME_VERSION = 100000

STATUS_QUERY = (
    "SELECT write_lsn, pg_walfile_name(write_lsn) "
    "FROM pg_stat_replication WHERE application_name = %s"
)
LEGACY_STATUS_QUERY = (
    "SELECT write_location, pg_xlogfile_name(write_location) "
    "FROM pg_stat_replication WHERE application_name = %s"
)


class ConfigError(ValueError):
    """Raised when the poller configuration is inconsistent"""


@dataclass
class PollerConfig:
    """Readiness poller settings, built once from command line arguments"""
    client_selector: Optional[str] = None
    custom_query: Optional[str] = None
    poll_interval: int = 10
    initial_delay: int = 0
    verbose: bool = False

    def validate(self) -> "PollerConfig":
        """Check option constraints without touching the database"""
        if self.client_selector is not None and self.custom_query is not None:
            raise ConfigError("cannot specify both appname and query")

        for name in ("poll_interval", "initial_delay"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ConfigError(f"{name} must be an integer, got {value!r}")
            if value < 0:
                raise ConfigError(f"{name} must not be negative, got {value}")

        return self

    @property
    def application_name(self) -> str:
        """Streaming client label to look for in pg_stat_replication"""
        return self.client_selector if self.client_selector is not None else DEFAULT_APPNAME

    def status_query(self, server_version: int = WAL_RENAME_VERSION) -> Tuple[str, Optional[tuple]]:
        """
        Build the query that reports the client's position and segment

        Args:
            server_version: Integer server version, as libpq reports it

        Returns:
            Tuple of SQL text and its parameters (None for custom queries)
        """
        if self.custom_query is not None:
            return self.custom_query, None

        if server_version < WAL_RENAME_VERSION:
            return LEGACY_STATUS_QUERY, (self.application_name,)
        return STATUS_QUERY, (self.application_name,)
