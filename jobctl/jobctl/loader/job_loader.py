"""Load job definitions from a directory of YAML files.

One file per job (``*.yaml`` / ``*.yml``).  Every file is parsed with
``yaml.safe_load`` and validated into a :class:`JobDefinition`.  The loader
rejects duplicate job ids and dependency cycles among the loaded jobs;
dependencies on job ids that are not loaded are allowed (they may be
managed elsewhere) and only logged.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import networkx as nx
import yaml  # type: ignore[import-untyped]
from pydantic import ValidationError

from jobctl.models.job_definition import JobDefinition

logger = logging.getLogger(__name__)


class JobDefinitionError(Exception):
    """Raised when a job definition is missing, unparseable or invalid."""


def _format_validation_error(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        location = ".".join(str(p) for p in err["loc"]) or "<root>"
        parts.append(f"{location}: {err['msg']}")
    return "; ".join(parts)


def load_job_file(path: Path) -> JobDefinition:
    """Parse and validate a single job definition file."""
    try:
        raw: Any = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise JobDefinitionError(f"Cannot read job definition {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise JobDefinitionError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise JobDefinitionError(f"Job definition {path} must be a mapping, got {type(raw).__name__}")

    try:
        return JobDefinition.model_validate(raw)
    except ValidationError as exc:
        raise JobDefinitionError(f"Invalid job definition {path}: {_format_validation_error(exc)}") from exc


def build_dependency_graph(jobs: dict[str, JobDefinition]) -> nx.DiGraph:
    """Build a graph with an edge ``dependency -> job`` for every loaded pair."""
    graph = nx.DiGraph()
    for job_id in jobs:
        graph.add_node(job_id)
    for job in jobs.values():
        for dep in job.dependencies:
            if dep in jobs:
                graph.add_edge(dep, job.job_id)
    return graph


def dependency_order(jobs: dict[str, JobDefinition]) -> list[str]:
    """Return job ids with every job after its loaded dependencies.

    Jobs at the same depth are sorted by id so the order is reproducible.
    """
    graph = build_dependency_graph(jobs)
    return [job_id for generation in nx.topological_generations(graph) for job_id in sorted(generation)]


def load_job_definitions(jobs_dir: Path) -> dict[str, JobDefinition]:
    """Load every job definition under *jobs_dir*, keyed by job id.

    Raises
    ------
    JobDefinitionError
        The directory is missing, a file is invalid, two files declare the
        same job id, or the dependencies form a cycle.
    """
    if not jobs_dir.is_dir():
        raise JobDefinitionError(f"Jobs directory not found: {jobs_dir}")

    jobs: dict[str, JobDefinition] = {}
    sources: dict[str, Path] = {}
    paths = sorted(p for p in jobs_dir.iterdir() if p.suffix in (".yaml", ".yml") and p.is_file())
    for path in paths:
        job = load_job_file(path)
        if job.job_id in jobs:
            raise JobDefinitionError(
                f"Duplicate job_id '{job.job_id}' in {path} (already defined in {sources[job.job_id]})"
            )
        jobs[job.job_id] = job
        sources[job.job_id] = path

    graph = build_dependency_graph(jobs)
    if not nx.is_directed_acyclic_graph(graph):
        cycles = sorted(" -> ".join([*c, c[0]]) for c in nx.simple_cycles(graph))
        raise JobDefinitionError(f"Cyclic job dependencies: {'; '.join(cycles)}")

    for job in jobs.values():
        external = sorted(dep for dep in job.dependencies if dep not in jobs)
        if external:
            logger.info("Job %s depends on jobs not defined in %s: %s", job.job_id, jobs_dir, ", ".join(external))

    logger.info("Loaded %d job definition(s) from %s", len(jobs), jobs_dir)
    return jobs


def get_job(jobs_dir: Path, job_id: str) -> JobDefinition:
    """Load *jobs_dir* and return the definition for *job_id*."""
    jobs = load_job_definitions(jobs_dir)
    try:
        return jobs[job_id]
    except KeyError:
        raise JobDefinitionError(f"Unknown job '{job_id}' (known: {', '.join(sorted(jobs)) or 'none'})") from None
