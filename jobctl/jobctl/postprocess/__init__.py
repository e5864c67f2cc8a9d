"""Idempotent post-processing gate."""

from jobctl.postprocess.gate import PostProcessGate, PostProcessResult

__all__ = ["PostProcessGate", "PostProcessResult"]
