"""Compute engines invoked by the lifecycle controller."""

from jobctl.compute.base import ComputeEngine
from jobctl.compute.noop import NoopComputeEngine
from jobctl.compute.spark_submit import SparkSubmitEngine, normalize_exit_code

__all__ = ["ComputeEngine", "NoopComputeEngine", "SparkSubmitEngine", "normalize_exit_code"]
