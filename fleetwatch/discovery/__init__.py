"""Dynamic scrape-target discovery.

Submodules:
    client      -- OrchestratorClient protocol and the ECS (boto3) implementation.
    store       -- TargetStore: atomic-replace publication of the file_sd target file.
    reconciler  -- DiscoveryReconciler: periodic, non-overlapping reconciliation cycles.
"""

from fleetwatch.discovery.client import EcsOrchestratorClient, OrchestratorClient, QueryError
from fleetwatch.discovery.reconciler import CycleResult, DiscoveryReconciler, build_target_set
from fleetwatch.discovery.store import TargetPublishError, TargetStore, parse_targets, serialize_targets

__all__ = [
    "CycleResult",
    "DiscoveryReconciler",
    "EcsOrchestratorClient",
    "OrchestratorClient",
    "QueryError",
    "TargetPublishError",
    "TargetStore",
    "build_target_set",
    "parse_targets",
    "serialize_targets",
]
