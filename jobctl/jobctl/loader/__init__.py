"""Job definition loading."""

from jobctl.loader.job_loader import (
    JobDefinitionError,
    dependency_order,
    get_job,
    load_job_definitions,
    load_job_file,
)

__all__ = [
    "JobDefinitionError",
    "dependency_order",
    "get_job",
    "load_job_definitions",
    "load_job_file",
]
