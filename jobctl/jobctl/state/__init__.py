"""State persistence layer (PostgreSQL in production, SQLite locally)."""

from jobctl.state.database import get_engine, get_session
from jobctl.state.repository import AlertRepository, MetricRepository, RunLedgerRepository
from jobctl.state.sqlite_adapter import create_local_tables, get_local_engine

__all__ = [
    "AlertRepository",
    "MetricRepository",
    "RunLedgerRepository",
    "create_local_tables",
    "get_engine",
    "get_local_engine",
    "get_session",
]
