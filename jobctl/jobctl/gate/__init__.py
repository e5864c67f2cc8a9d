"""Dependency gating of a job on its prerequisites."""

from jobctl.gate.dependency_gate import DependencyGate, GateDecision, UnmetDependency

__all__ = ["DependencyGate", "GateDecision", "UnmetDependency"]
