"""Cascading deletion of a cluster and its dependents."""

from cluster_cleaner.cascade.orchestrator import CascadeOrchestrator, CascadeResult, CascadeStatus

__all__ = ["CascadeOrchestrator", "CascadeResult", "CascadeStatus"]
