"""Run ledger: one durable record per ``(job_id, run_date)``."""

from jobctl.ledger.base import RunLedger
from jobctl.ledger.memory import InMemoryRunLedger
from jobctl.ledger.sql_ledger import SqlRunLedger

__all__ = ["InMemoryRunLedger", "RunLedger", "SqlRunLedger"]
