"""
Batching policies for grouping one request's inputs into batches.

Provides:
- BatchingPolicy: Abstract base class for policies
- FCFSPolicy: Arrival order
- LengthBucketPolicy: Length-sorted groups to minimize padding
- get_policy: Look up a policy by name
"""

from textinfer_lite.scheduler.policy import BatchingPolicy
from textinfer_lite.scheduler.fcfs_policy import FCFSPolicy
from textinfer_lite.scheduler.length_policy import LengthBucketPolicy

_POLICIES = {
    "fcfs": FCFSPolicy,
    "length": LengthBucketPolicy,
}


def get_policy(name: str) -> BatchingPolicy:
    """Create a batching policy from its config name ("fcfs" or "length")."""
    try:
        return _POLICIES[name.lower()]()
    except KeyError:
        raise ValueError(
            f"Unknown batching policy {name!r}, expected one of {sorted(_POLICIES)}"
        )


__all__ = ["BatchingPolicy", "FCFSPolicy", "LengthBucketPolicy", "get_policy"]
