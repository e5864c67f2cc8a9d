"""jobctl -- job-control and dependency-orchestration core for ETL jobs."""

__version__ = "0.1.0"
